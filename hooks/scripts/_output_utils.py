#!/usr/bin/env python3
"""Decision table and protocol renderers for the agentic hook.

The decision is made once, independent of the host protocol:

    Input                  Mode    Permission  Exit
    0-1 capabilities       any     allow       0
    2 capabilities         any     allow+warn  0
    3 capabilities         block   deny        2
    3 capabilities         ask     ask         0
    agent_config_write     any     deny        2
    invisible_unicode      block   deny        2
    invisible_unicode      ask     ask         0

A thin renderer then maps the Decision onto one wire format:

    Claude Code (PreToolUse):
        {"hookSpecificOutput": {...}, "systemMessage": "..."}
        deny renders no body; the message goes to stderr.
    Cursor (beforeShellExecution):
        {"permission": "...", "user_message": "...", "agent_message": "..."}
        always rendered; deny also writes the message to stderr.
"""

from dataclasses import dataclass
from typing import Any, Union

from _agentic_model import AgenticMode, AnalysisResult, CriticalThreat, Protocol, ThreatType

# Outcomes
OUTCOME_ALLOW = "allow"
OUTCOME_WARN = "warn"
OUTCOME_VIOLATION = "violation"
OUTCOME_AGENT_CONFIG_WRITE = ThreatType.AGENT_CONFIG_WRITE.value
OUTCOME_INVISIBLE_UNICODE = ThreatType.INVISIBLE_UNICODE.value
OUTCOME_UNKNOWN_THREAT = "unknown_threat"
OUTCOME_DISABLED = "disabled"

# Permissions
PERMISSION_ALLOW = "allow"
PERMISSION_DENY = "deny"
PERMISSION_ASK = "ask"

EXIT_ALLOW = 0
EXIT_DENY = 2

HOOK_EVENT_NAME = "PreToolUse"

Subject = Union[AnalysisResult, CriticalThreat]


@dataclass(frozen=True)
class Decision:
    """Protocol-agnostic permission decision.

    stderr is only non-empty for deny decisions. The remaining fields carry
    what the renderers need to phrase their messages.
    """

    outcome: str
    permission: str
    exit_code: int = EXIT_ALLOW
    stderr: str = ""
    tool_name: str = ""
    capabilities: str = ""
    reasons: str = ""
    details: str = ""


# ============================================================
# Decision Table
# ============================================================


def join_reasons(reasons: list[str]) -> str:
    return "; ".join(reasons)


def _decide_analysis(result: AnalysisResult, mode: AgenticMode) -> Decision:
    count = result.capability_count
    reasons = join_reasons(result.all_reasons)
    common = {
        "tool_name": result.tool_name,
        "capabilities": result.capability_string,
        "reasons": reasons,
    }

    if count >= 3:
        if mode is AgenticMode.ASK:
            return Decision(OUTCOME_VIOLATION, PERMISSION_ASK, **common)
        stderr = (
            f"Rule of Two Violation: {result.tool_name} combines all three capabilities "
            f"(A: untrustworthy input, B: sensitive access, C: state change). "
            f"Reasons: {reasons}"
        )
        return Decision(OUTCOME_VIOLATION, PERMISSION_DENY, EXIT_DENY, stderr, **common)

    if count == 2:
        return Decision(OUTCOME_WARN, PERMISSION_ALLOW, **common)

    return Decision(OUTCOME_ALLOW, PERMISSION_ALLOW, **common)


def _decide_threat(threat: CriticalThreat, mode: AgenticMode) -> Decision:
    details = threat.details

    if threat.type is ThreatType.AGENT_CONFIG_WRITE:
        # Never eligible for ask-mode
        return Decision(
            OUTCOME_AGENT_CONFIG_WRITE,
            PERMISSION_DENY,
            EXIT_DENY,
            f"Blocked: Attempted write to agent configuration. {details}",
            details=details,
        )

    if threat.type is ThreatType.INVISIBLE_UNICODE:
        if mode is AgenticMode.ASK and threat.allow_ask_mode:
            return Decision(OUTCOME_INVISIBLE_UNICODE, PERMISSION_ASK, details=details)
        return Decision(
            OUTCOME_INVISIBLE_UNICODE,
            PERMISSION_DENY,
            EXIT_DENY,
            f"Blocked: Invisible Unicode detected in tool input. {details}",
            details=details,
        )

    return Decision(
        OUTCOME_UNKNOWN_THREAT,
        PERMISSION_DENY,
        EXIT_DENY,
        f"Blocked: Unknown critical threat: {threat.type}",
        details=details,
    )


def decide(subject: Subject, mode: AgenticMode) -> Decision:
    """Apply the decision table to an analysis result or critical threat."""
    if isinstance(subject, CriticalThreat):
        return _decide_threat(subject, mode)
    return _decide_analysis(subject, mode)


DISABLED_DECISION = Decision(OUTCOME_DISABLED, PERMISSION_ALLOW)


# ============================================================
# Protocol A: Claude Code
# ============================================================


def _claude_code_body(permission: str, reason: str, system_message: str = "") -> dict[str, Any]:
    body: dict[str, Any] = {
        "hookSpecificOutput": {
            "hookEventName": HOOK_EVENT_NAME,
            "permissionDecision": permission,
            "permissionDecisionReason": reason,
        }
    }
    if system_message:
        body["systemMessage"] = system_message
    return body


def render_claude_code(decision: Decision) -> dict[str, Any] | None:
    """Render a Decision as a PreToolUse hook response.

    Returns:
        Response dict, or None for deny (the message goes to stderr).
    """
    if decision.permission == PERMISSION_DENY:
        return None

    tool, caps, reasons = decision.tool_name, decision.capabilities, decision.reasons

    if decision.outcome == OUTCOME_DISABLED:
        return _claude_code_body(PERMISSION_ALLOW, "Rule of Two: disabled")

    if decision.outcome == OUTCOME_WARN:
        return _claude_code_body(
            PERMISSION_ALLOW,
            f"Rule of Two: {tool} combines {caps} capabilities (2 of 3)",
            f"Rule of Two: {tool} combines {caps} capabilities. Reasons: {reasons}",
        )

    if decision.outcome == OUTCOME_VIOLATION:
        return _claude_code_body(
            PERMISSION_ASK,
            f"Rule of Two: {tool} combines A+B+C capabilities. Reasons: {reasons}",
            f"Rule of Two Violation: {tool} combines all three capabilities (A+B+C). "
            f"This action processes untrustworthy input, accesses sensitive data, "
            f"AND changes state. Reasons: {reasons}",
        )

    if decision.outcome == OUTCOME_INVISIBLE_UNICODE:
        return _claude_code_body(
            PERMISSION_ASK,
            f"Invisible Unicode detected: {decision.details}",
            "Invisible Unicode characters detected in tool input. "
            f"These may indicate a prompt injection attack. Details: {decision.details}",
        )

    return _claude_code_body(PERMISSION_ALLOW, "Rule of Two: OK")


# ============================================================
# Protocol B: Cursor
# ============================================================


def _cursor_body(permission: str, user_message: str = "", agent_message: str = "") -> dict[str, str]:
    body = {"permission": permission}
    if user_message:
        body["user_message"] = user_message
    if agent_message:
        body["agent_message"] = agent_message
    return body


def render_cursor(decision: Decision) -> dict[str, str]:
    """Render a Decision as a Cursor hook response. Always returns a body."""
    tool, caps, reasons = decision.tool_name, decision.capabilities, decision.reasons
    outcome, permission = decision.outcome, decision.permission

    if outcome == OUTCOME_WARN:
        return _cursor_body(
            PERMISSION_ALLOW,
            agent_message=f"Rule of Two: {tool} combines {caps} capabilities. Reasons: {reasons}",
        )

    if outcome == OUTCOME_VIOLATION:
        if permission == PERMISSION_DENY:
            return _cursor_body(
                PERMISSION_DENY,
                f"Rule of Two Violation: {tool} combines all three capabilities (A+B+C). "
                f"Reasons: {reasons}",
            )
        return _cursor_body(
            PERMISSION_ASK,
            f"Rule of Two: {tool} combines all three capabilities. Confirm?",
            f"Security check triggered. Reasons: {reasons}",
        )

    if outcome == OUTCOME_INVISIBLE_UNICODE:
        if permission == PERMISSION_ASK:
            return _cursor_body(
                PERMISSION_ASK,
                f"Invisible Unicode detected: {decision.details}",
                "Security check: invisible characters detected in input",
            )
        return _cursor_body(
            PERMISSION_DENY, f"Blocked: Invisible Unicode detected. {decision.details}"
        )

    if outcome in (OUTCOME_AGENT_CONFIG_WRITE, OUTCOME_UNKNOWN_THREAT):
        return _cursor_body(PERMISSION_DENY, f"Blocked: {decision.details}")

    return _cursor_body(PERMISSION_ALLOW)


# ============================================================
# Composite
# ============================================================


def render(decision: Decision, protocol: Protocol) -> dict[str, Any] | None:
    """Render for the given protocol. UNKNOWN renders as Claude Code."""
    if protocol is Protocol.CURSOR:
        return render_cursor(decision)
    return render_claude_code(decision)


def generate_output(
    subject: Subject, mode: AgenticMode, protocol: Protocol
) -> tuple[dict[str, Any] | None, int, str]:
    """Decide and render in one step.

    Returns:
        (rendered body or None, exit code, stderr text)
    """
    decision = decide(subject, mode)
    return render(decision, protocol), decision.exit_code, decision.stderr


def generate_disabled_output(protocol: Protocol) -> tuple[dict[str, Any] | None, int, str]:
    """Unconditional allow used when agentic checks are disabled."""
    return render(DISABLED_DECISION, protocol), EXIT_ALLOW, ""
