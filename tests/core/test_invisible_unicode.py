#!/usr/bin/env python3
"""Unit tests for the invisible character scanner in _threat_utils.py.

Run: python3 -m pytest tests/core/test_invisible_unicode.py -v
  or: python3 tests/core/test_invisible_unicode.py
"""
import sys
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: F401, E402

from _agentic_model import InvisibleCharInfo, ToolCall
from _threat_utils import (
    INVISIBLE_UNICODE_RANGES,
    detect_invisible_unicode,
    format_invisible_chars,
    get_invisible_char_name,
    scan_for_invisible,
)

ZWSP = "\u200b"


class TestGetInvisibleCharName(unittest.TestCase):

    def test_named_ranges(self):
        self.assertEqual(get_invisible_char_name(ZWSP), "Zero-width space")
        self.assertEqual(get_invisible_char_name("\u202e"), "Right-to-left override")
        self.assertEqual(get_invisible_char_name("\ufeff"), "Zero-width no-break space (BOM)")
        self.assertEqual(get_invisible_char_name("\u00ad"), "Soft hyphen")
        self.assertEqual(get_invisible_char_name("\U000e0041"), "Tag characters")

    def test_control_characters(self):
        self.assertEqual(get_invisible_char_name("\x00"), "Control character U+0000")
        self.assertEqual(get_invisible_char_name("\x1b"), "Control character U+001B")
        self.assertEqual(get_invisible_char_name("\x85"), "Control character U+0085")

    def test_allowed_whitespace(self):
        for ch in "\n\r\t":
            self.assertEqual(get_invisible_char_name(ch), "")

    def test_visible(self):
        for ch in "aZ0 é中😀":
            self.assertEqual(get_invisible_char_name(ch), "")


class TestScanForInvisible(unittest.TestCase):

    def test_zero_width_space_position(self):
        findings = scan_for_invisible(f"Hello{ZWSP}World", "content")
        self.assertEqual(len(findings), 1)
        f = findings[0]
        self.assertEqual(f.name, "Zero-width space")
        self.assertEqual(f.position, 5)
        self.assertEqual(f.codepoint, 0x200B)
        self.assertEqual(f.field, "content")
        self.assertEqual(f.context, "Hello[HERE]World")

    def test_context_window_is_bounded(self):
        text = "abcdefghij" + ZWSP + "klmnopqrst"
        f = scan_for_invisible(text, "command")[0]
        self.assertEqual(f.context, "fghij[HERE]klmno")

    def test_other_hits_masked_in_window(self):
        text = f"ab{ZWSP}cd\u200dxy"
        findings = scan_for_invisible(text, "content")
        self.assertEqual(len(findings), 2)
        self.assertEqual(findings[0].context, "ab[HERE]cd[?]xy")
        self.assertEqual(findings[1].context, "ab[?]cd[HERE]xy")

    def test_positions_count_code_points(self):
        findings = scan_for_invisible("😀" + ZWSP, "content")
        self.assertEqual(findings[0].position, 1)

    def test_tag_characters(self):
        hidden = "".join(chr(0xE0000 + ord(c)) for c in "hi")
        findings = scan_for_invisible("ok" + hidden, "content")
        self.assertEqual([f.name for f in findings], ["Tag characters", "Tag characters"])

    def test_every_range_boundary_detected(self):
        for name, start, end in INVISIBLE_UNICODE_RANGES:
            for cp in (start, end):
                findings = scan_for_invisible(f"a{chr(cp)}b", "content")
                self.assertEqual([f.name for f in findings], [name], f"U+{cp:04X}")

    def test_neighbours_of_ranges_not_detected(self):
        for cp in (0x200A, 0x2010, 0x2029, 0x202F, 0x205F, 0x2065, 0xFEFE, 0xDFFFF, 0xE0080):
            self.assertEqual(scan_for_invisible(f"a{chr(cp)}b", "content"), [], f"U+{cp:04X}")

    def test_newlines_and_tabs_allowed(self):
        self.assertEqual(scan_for_invisible("line1\nline2\r\n\tindent", "content"), [])

    def test_empty(self):
        self.assertEqual(scan_for_invisible("", "content"), [])

    def test_pure(self):
        text = f"x{ZWSP}y\x07z"
        self.assertEqual(scan_for_invisible(text, "f"), scan_for_invisible(text, "f"))


class TestDetectInvisibleUnicode(unittest.TestCase):

    def test_write_scans_path_and_content(self):
        call = ToolCall("Write", {"file_path": f"a{ZWSP}.txt", "content": f"b{ZWSP}"})
        fields = [f.field for f in detect_invisible_unicode(call)]
        self.assertEqual(fields, ["file_path", "content"])

    def test_edit_scans_old_and_new(self):
        call = ToolCall("Edit", {"file_path": "a.py", "old_string": ZWSP, "new_string": ZWSP})
        fields = [f.field for f in detect_invisible_unicode(call)]
        self.assertEqual(fields, ["old_string", "new_string"])

    def test_grep_scans_pattern(self):
        call = ToolCall("Grep", {"pattern": f"foo{ZWSP}", "path": "."})
        self.assertEqual(len(detect_invisible_unicode(call)), 1)

    def test_webfetch_not_scanned(self):
        call = ToolCall("WebFetch", {"url": f"https://x{ZWSP}.com", "prompt": ZWSP})
        self.assertEqual(detect_invisible_unicode(call), [])

    def test_non_string_fields_ignored(self):
        call = ToolCall("Bash", {"command": 42})
        self.assertEqual(detect_invisible_unicode(call), [])


class TestFormatInvisibleChars(unittest.TestCase):

    def test_single(self):
        findings = scan_for_invisible(f"Hello{ZWSP}World", "content")
        self.assertEqual(
            format_invisible_chars(findings),
            "Zero-width space (U+200B) at position 5: ...Hello[HERE]World...",
        )

    def test_grouped(self):
        findings = [
            InvisibleCharInfo(0x200B, "Zero-width space", 0, "", "content"),
            InvisibleCharInfo(0xE0041, "Tag characters", 3, "", "content"),
            InvisibleCharInfo(0x200B, "Zero-width space", 7, "", "content"),
        ]
        self.assertEqual(
            format_invisible_chars(findings),
            "3 invisible characters: Zero-width space (x2), Tag characters (x1)",
        )

    def test_empty(self):
        self.assertEqual(format_invisible_chars([]), "")


if __name__ == "__main__":
    unittest.main(verbosity=2)
