#!/usr/bin/env python3
"""Critical threat detection for agentic tool calls.

Critical threats bypass Rule of Two scoring and are evaluated first.
Two checks run in fixed priority, first hit wins:

1. agent_config_write: a Write/Edit/Bash call targets a file that can
   change an assistant's future behavior (instructions, hook wiring).
   Always blocks, even in ask-mode.
2. invisible_unicode: a text field carries invisible or spoofing
   characters (zero-width, bidi controls, tag characters, stray control
   characters). Respects ask-mode.

Everything here is pure apart from resolving the home directory for
home-relative config paths.
"""

import posixpath
import unicodedata
from collections import Counter
from pathlib import Path

import regex

from _agentic_model import CriticalThreat, InvisibleCharInfo, ThreatType, ToolCall
from _bash_targets import clean_bash_path_token, extract_bash_write_targets

# ============================================================
# Protected Agent Configuration Paths
# ============================================================

AGENT_CONFIG_PATHS = (
    # Claude Code
    ".claude/settings.json",
    ".claude/settings.local.json",
    ".claude/commands/",  # custom slash commands
    "CLAUDE.md",
    # Cursor (project-level)
    ".cursor/hooks.json",
    ".cursor/rules",
)
"""Project-level config patterns. A trailing / marks a directory pattern."""

AGENT_CONFIG_HOME_PATHS = (
    ".cursor/cli-config.json",
    ".cursor/hooks.json",
)
"""Config files relative to the user's home; matched against absolute paths."""

HOME_PREFIXES = ("~/", "$HOME/", "${HOME}/")
"""Shell spellings of the home directory expanded before matching."""

AGENT_CONFIG_SAFE_SUBDIRS = (
    ".claude/plans/",
    ".claude/todos/",
)
"""Working directories inside .claude/ that agents may write freely."""


def normalize_path(path: str) -> str:
    """Clean a path for comparison and strip a leading ./"""
    path = posixpath.normpath(path)
    if path.startswith("./"):
        path = path[2:]
    return path


def is_in_safe_subdir(path: str) -> bool:
    for safe_dir in AGENT_CONFIG_SAFE_SUBDIRS:
        bare = safe_dir.rstrip("/")
        if (
            path.startswith(safe_dir)
            or f"/{safe_dir}" in path
            or f"/{bare}/" in path
        ):
            return True
    return False


def matches_agent_config_path(path: str, pattern: str) -> bool:
    """Match a normalized path against one project-level config pattern."""
    if pattern.endswith("/"):
        directory = pattern.rstrip("/")
        return (
            path == directory
            or path.startswith(pattern)
            or f"/{directory}/" in path
            or path.endswith(f"/{directory}")
        )

    return (
        path == pattern
        or path.endswith(f"/{pattern}")
        or posixpath.basename(path) == pattern
    )


def _home_dir(home: str | None) -> str:
    if home:
        return home
    try:
        return str(Path.home())
    except (RuntimeError, KeyError):
        return ""


def expand_home_prefix(path: str, home: str | None = None) -> str:
    """Expand a leading ~/, $HOME/ or ${HOME}/ the way the shell would.

    Paths without one of these prefixes, or with no resolvable home,
    are returned unchanged.
    """
    for prefix in HOME_PREFIXES:
        if path.startswith(prefix):
            home_dir = _home_dir(home)
            if not home_dir:
                return path
            return posixpath.join(home_dir, path[len(prefix) :])
    return path


def matches_home_config_path(path: str, home: str | None = None) -> bool:
    """Match an absolute path against the home-relative config files."""
    if not posixpath.isabs(path):
        return False

    home_dir = _home_dir(home)
    if not home_dir:
        return False

    for config_path in AGENT_CONFIG_HOME_PATHS:
        full_path = posixpath.join(home_dir, config_path)
        if path == full_path or path == posixpath.normpath(full_path):
            return True
    return False


def is_protected_agent_config_path(path: str, home: str | None = None) -> bool:
    """Check whether writing to path could alter agent configuration.

    Safe subdirectories (.claude/plans/, .claude/todos/) are checked first
    and exclude a match unconditionally.

    Args:
        path: Raw path (quotes and trailing shell separators are cleaned).
        home: Home directory override (default: the live home directory).

    Returns:
        True if the path is a protected agent configuration file.
    """
    cleaned = clean_bash_path_token(path)
    if not cleaned:
        return False

    normalized = normalize_path(expand_home_prefix(cleaned, home))
    if is_in_safe_subdir(normalized):
        return False

    if any(matches_agent_config_path(normalized, p) for p in AGENT_CONFIG_PATHS):
        return True

    return matches_home_config_path(normalized, home)


# ============================================================
# Invisible Unicode Detection
# ============================================================

INVISIBLE_UNICODE_RANGES = (
    ("Zero-width space", 0x200B, 0x200B),
    ("Zero-width non-joiner", 0x200C, 0x200C),
    ("Zero-width joiner", 0x200D, 0x200D),
    ("Word joiner", 0x2060, 0x2060),
    ("Zero-width no-break space (BOM)", 0xFEFF, 0xFEFF),
    ("Left-to-right mark", 0x200E, 0x200E),
    ("Right-to-left mark", 0x200F, 0x200F),
    ("Left-to-right embedding", 0x202A, 0x202A),
    ("Right-to-left embedding", 0x202B, 0x202B),
    ("Pop directional formatting", 0x202C, 0x202C),
    ("Left-to-right override", 0x202D, 0x202D),
    ("Right-to-left override", 0x202E, 0x202E),
    ("Soft hyphen", 0x00AD, 0x00AD),
    ("Invisible separator", 0x2063, 0x2063),
    ("Invisible times", 0x2062, 0x2062),
    ("Invisible plus", 0x2064, 0x2064),
    ("Function application", 0x2061, 0x2061),
    # Tag characters (used for invisible text encoding)
    ("Tag characters", 0xE0000, 0xE007F),
)

ALLOWED_CONTROL_CHARS = frozenset("\n\r\t")

CONTEXT_RADIUS = 5
"""Code points shown on each side of a finding."""


def _build_invisible_pattern() -> "regex.Pattern":
    ranges = "".join(
        f"\\U{start:08X}-\\U{end:08X}" for _, start, end in INVISIBLE_UNICODE_RANGES
    )
    # Cc (U+0000-001F, U+007F-009F) minus tab, newline and carriage return
    controls = "\\x00-\\x08\\x0B\\x0C\\x0E-\\x1F\\x7F-\\x9F"
    return regex.compile(f"[{ranges}{controls}]")


_INVISIBLE_RE = _build_invisible_pattern()


def get_invisible_char_name(ch: str) -> str:
    """Return the name of an invisible character, or "" if it is visible."""
    cp = ord(ch)
    for name, start, end in INVISIBLE_UNICODE_RANGES:
        if start <= cp <= end:
            return name

    # Other control characters that shouldn't appear in code
    if ch not in ALLOWED_CONTROL_CHARS and unicodedata.category(ch) == "Cc":
        return f"Control character U+{cp:04X}"

    return ""


def _context_window(text: str, pos: int, hits: set[int]) -> str:
    start = max(0, pos - CONTEXT_RADIUS)
    end = min(len(text), pos + CONTEXT_RADIUS + 1)

    parts = []
    for i in range(start, end):
        if i == pos:
            parts.append("[HERE]")
        elif i in hits:
            parts.append("[?]")
        else:
            parts.append(text[i])
    return "".join(parts)


def scan_for_invisible(text: str, field_name: str) -> list[InvisibleCharInfo]:
    """Scan a string for invisible Unicode and stray control characters.

    Args:
        text: The text to scan.
        field_name: Name of the tool input field (recorded on each finding).

    Returns:
        One InvisibleCharInfo per offending code point, in order.
    """
    if not text:
        return []

    hits = {m.start(): m.group() for m in _INVISIBLE_RE.finditer(text)}
    if not hits:
        return []

    positions = set(hits)
    return [
        InvisibleCharInfo(
            codepoint=ord(ch),
            name=get_invisible_char_name(ch),
            position=pos,
            context=_context_window(text, pos, positions),
            field=field_name,
        )
        for pos, ch in hits.items()
    ]


SCANNED_FIELDS = {
    "Write": ("file_path", "content"),
    "Edit": ("file_path", "old_string", "new_string"),
    "Bash": ("command",),
    "Read": ("file_path",),
    "Glob": ("pattern", "path"),
    "Grep": ("pattern", "path"),
}
"""Text fields scanned for invisible characters, per tool."""


def detect_invisible_unicode(call: ToolCall) -> list[InvisibleCharInfo]:
    findings: list[InvisibleCharInfo] = []
    for field_name in SCANNED_FIELDS.get(call.tool_name, ()):
        findings.extend(scan_for_invisible(call.get_str(field_name), field_name))
    return findings


def format_invisible_chars(findings: list[InvisibleCharInfo]) -> str:
    """Describe findings for humans.

    One finding:  "Zero-width space (U+200B) at position 5: ...Hello[HERE]World..."
    Several:      "3 invisible characters: Zero-width space (x2), Tag characters (x1)"
    """
    if not findings:
        return ""

    if len(findings) == 1:
        f = findings[0]
        return f"{f.name} (U+{f.codepoint:04X}) at position {f.position}: ...{f.context}..."

    counts = Counter(f.name for f in findings)
    parts = [f"{name} (x{count})" for name, count in counts.items()]
    return f"{len(findings)} invisible characters: {', '.join(parts)}"


# ============================================================
# Critical Threat Detection
# ============================================================


def extract_write_target_paths(call: ToolCall) -> list[str]:
    """Candidate write targets for the call's tool type."""
    if call.tool_name in ("Write", "Edit"):
        return [call.file_path] if call.file_path else []
    if call.tool_name == "Bash":
        return extract_bash_write_targets(call.command)
    return []


def detect_agent_config_write(call: ToolCall, home: str | None = None) -> CriticalThreat | None:
    for target in extract_write_target_paths(call):
        if target and is_protected_agent_config_path(target, home):
            return CriticalThreat(ThreatType.AGENT_CONFIG_WRITE, f"Write to {target}")
    return None


def detect_invisible_unicode_threat(call: ToolCall) -> CriticalThreat | None:
    findings = detect_invisible_unicode(call)
    if not findings:
        return None
    return CriticalThreat(ThreatType.INVISIBLE_UNICODE, format_invisible_chars(findings))


def detect_critical_threat(call: ToolCall, home: str | None = None) -> CriticalThreat | None:
    """Check for threats that bypass Rule of Two scoring.

    Config writes are checked first (always block, no ask-mode), then
    invisible Unicode (respects ask-mode).

    Args:
        call: The normalized tool call.
        home: Home directory override for home-relative config paths.

    Returns:
        The first CriticalThreat found, or None.
    """
    threat = detect_agent_config_write(call, home)
    if threat is not None:
        return threat
    return detect_invisible_unicode_threat(call)
