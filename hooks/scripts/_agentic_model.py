#!/usr/bin/env python3
"""Data model for the agentic security hook.

A ToolCall is the unit of analysis: one tool invocation proposed by an AI
coding assistant, normalized from either host protocol. Analysis produces
either a CriticalThreat (checked first, bypasses scoring) or an
AnalysisResult scoring the call on the three Rule of Two capabilities:

    [A] untrustworthy input
    [B] sensitive access
    [C] state change or external communication
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any


class AgenticMode(str, Enum):
    """Controls behavior when a blocking decision is reached."""

    BLOCK = "block"
    ASK = "ask"


class Protocol(str, Enum):
    """Host hook protocol. UNKNOWN renders as CLAUDE_CODE."""

    CLAUDE_CODE = "claude_code"
    CURSOR = "cursor"
    UNKNOWN = "unknown"


class ThreatType(str, Enum):
    AGENT_CONFIG_WRITE = "agent_config_write"
    INVISIBLE_UNICODE = "invisible_unicode"


KNOWN_TOOLS = ("Write", "Edit", "Bash", "Read", "WebFetch", "WebSearch", "Grep", "Glob")


# ============================================================
# Tool Input Field Access
# ============================================================


def get_string_field(tool_input: Mapping[str, Any], key: str) -> str:
    """Return tool_input[key] if it is a string, else ""."""
    value = tool_input.get(key)
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation, immutable once built."""

    tool_name: str
    tool_input: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    cwd: str = ""
    session_id: str = ""
    hook_event_name: str = ""
    transcript_path: str = ""
    tool_use_id: str = ""

    def __post_init__(self):
        if not isinstance(self.tool_input, MappingProxyType):
            object.__setattr__(self, "tool_input", MappingProxyType(dict(self.tool_input)))

    @property
    def is_known_tool(self) -> bool:
        return self.tool_name in KNOWN_TOOLS

    def get_str(self, key: str) -> str:
        return get_string_field(self.tool_input, key)

    # Fields the engine reads directly; the rest go through get_str().

    @property
    def file_path(self) -> str:
        """Write/Edit/Read target."""
        return self.get_str("file_path")

    @property
    def command(self) -> str:
        return self.get_str("command")

    @property
    def url(self) -> str:
        return self.get_str("url")

    @property
    def path(self) -> str:
        """Grep/Glob search root."""
        return self.get_str("path")


# ============================================================
# Analysis Results
# ============================================================


@dataclass
class CapabilityResult:
    """Detection result for a single capability axis."""

    detected: bool = False
    reasons: list[str] = field(default_factory=list)

    def add(self, reason: str) -> None:
        self.detected = True
        self.reasons.append(reason)


@dataclass
class AnalysisResult:
    """Complete Rule of Two analysis for one tool call."""

    tool_name: str
    capability_a: CapabilityResult = field(default_factory=CapabilityResult)
    capability_b: CapabilityResult = field(default_factory=CapabilityResult)
    capability_c: CapabilityResult = field(default_factory=CapabilityResult)
    signal_hits: list[str] = field(default_factory=list)

    def _labelled(self):
        return (
            ("A", self.capability_a),
            ("B", self.capability_b),
            ("C", self.capability_c),
        )

    @property
    def capability_count(self) -> int:
        return sum(1 for _, cap in self._labelled() if cap.detected)

    @property
    def violates_rule_of_two(self) -> bool:
        return self.capability_count >= 3

    @property
    def capability_string(self) -> str:
        """Detected capabilities joined with "+", e.g. "A+B"."""
        return "+".join(label for label, cap in self._labelled() if cap.detected)

    @property
    def all_reasons(self) -> list[str]:
        reasons: list[str] = []
        for _, cap in self._labelled():
            reasons.extend(cap.reasons)
        return reasons

    def format_block_message(self) -> str:
        """Multi-line summary of what was detected, for logs and stderr."""
        parts = [f"Tool: {self.tool_name}", f"Capabilities: {self.capability_string}"]
        if self.capability_a.detected:
            parts.append(f"  [A] Untrustworthy input: {', '.join(self.capability_a.reasons)}")
        if self.capability_b.detected:
            parts.append(f"  [B] Sensitive access: {', '.join(self.capability_b.reasons)}")
        if self.capability_c.detected:
            parts.append(f"  [C] State change: {', '.join(self.capability_c.reasons)}")
        if self.signal_hits:
            parts.append(f"  Signals: {', '.join(self.signal_hits)}")
        return "\n".join(parts)


@dataclass(frozen=True)
class InvisibleCharInfo:
    """One invisible or control character found in a tool input field."""

    codepoint: int
    name: str
    position: int
    context: str
    field: str


@dataclass(frozen=True)
class CriticalThreat:
    """A threat that bypasses Rule of Two scoring.

    Agent config writes always block; invisible Unicode respects ask-mode.
    """

    type: ThreatType
    details: str

    @property
    def allow_ask_mode(self) -> bool:
        return self.type is ThreatType.INVISIBLE_UNICODE
