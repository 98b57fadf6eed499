#!/usr/bin/env python3
"""Agentic Guardian Hook.

Gates every tool call an AI coding assistant proposes:
1. Blocks writes to agent configuration (CLAUDE.md, .claude/settings.json, ...)
2. Blocks or asks on invisible Unicode in tool input
3. Scores the call on the Rule of Two capabilities and blocks or asks
   when all three combine

Speaks both host protocols:
- Claude Code PreToolUse hooks (tool_name/tool_input JSON)
- Cursor beforeShellExecution hooks (command JSON, normalized to Bash)

Usage:
    Claude Code (.claude/settings.json):
        {"hooks": {"PreToolUse": [{"matcher": "*", "hooks": [
            {"type": "command", "command": "python3 hooks/scripts/agentic_guardian.py"}]}]}}

    Cursor (.cursor/hooks.json):
        {"hooks": {"beforeShellExecution": [
            {"command": "python3 hooks/scripts/agentic_guardian.py"}]}}

Exit codes:
    0: allow or ask (decision in the JSON on stdout)
    1: input error (empty, oversize, malformed), non-blocking for the host
    2: deny (message on stderr)

Environment:
    DASHLIGHTS_AGENTIC_MODE=ask      ask instead of blocking where allowed
    DASHLIGHTS_DISABLE_AGENTIC=1     allow everything
    DASHLIGHTS_AGENTIC_LOG=<path>    append decisions to a log file
"""

import json
import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import IO, Any

# Add hooks directory to path
sys.path.insert(0, str(Path(__file__).parent))

try:
    from _agentic_model import Protocol, ToolCall
    from _agentic_utils import (
        LOG_ENV,
        MAX_INPUT_BYTES,
        configure_logging,
        load_agentic_config,
        log_agentic,
        truncate_command,
        truncate_path,
    )
    from _capability_utils import Analyzer
    from _output_utils import generate_disabled_output, generate_output
    from _threat_utils import detect_critical_threat
except ImportError as e:
    # Exit 1 is a non-blocking error for the host
    print(f"Error: agentic guardian unavailable: {e}", file=sys.stderr)
    sys.exit(1)


class HookInputError(ValueError):
    """Raised for stdin that cannot be turned into a ToolCall."""


CURSOR_HOOK_EVENTS = ("beforeShellExecution", "beforeMCPExecution")


# ============================================================
# Input
# ============================================================


def read_input(stdin: IO[bytes]) -> bytes:
    """Read at most MAX_INPUT_BYTES from stdin.

    Raises:
        HookInputError: On read failure, oversize input, or empty input.
    """
    try:
        raw = stdin.read(MAX_INPUT_BYTES + 1)
    except OSError as e:
        raise HookInputError(f"Error reading stdin: {e}") from e

    if len(raw) > MAX_INPUT_BYTES:
        raise HookInputError(f"Error: input exceeds {MAX_INPUT_BYTES} bytes")
    if not raw:
        raise HookInputError("Error: no input provided on stdin")
    return raw


def detect_protocol_from_input(raw: bytes) -> Protocol:
    """Guess the host protocol from the JSON shape.

    Used only when no environment marker names the host.
    """
    try:
        data = json.loads(raw)
    except ValueError:
        return Protocol.UNKNOWN
    if not isinstance(data, dict):
        return Protocol.UNKNOWN

    def text(key: str) -> str:
        value = data.get(key)
        return value if isinstance(value, str) else ""

    if text("cursor_version"):
        return Protocol.CURSOR
    if text("hook_event_name") in CURSOR_HOOK_EVENTS:
        return Protocol.CURSOR
    if text("tool_name") and text("hook_event_name") in ("", "PreToolUse"):
        return Protocol.CLAUDE_CODE
    if text("command") and not text("tool_name"):
        return Protocol.CURSOR
    return Protocol.UNKNOWN


def _load_object(raw: bytes, what: str) -> dict[str, Any]:
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise HookInputError(f"Error parsing {what}: {e}") from e
    if not isinstance(data, dict):
        raise HookInputError(f"Error parsing {what}: expected a JSON object")
    return data


def _optional_str(data: Mapping[str, Any], key: str, what: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise HookInputError(
            f"Error parsing {what}: field {key!r} must be a string, got {type(value).__name__}"
        )
    return value


def parse_claude_code_input(raw: bytes) -> ToolCall:
    """Parse a PreToolUse payload into a ToolCall.

    Raises:
        HookInputError: On malformed JSON or mistyped fields.
    """
    what = "JSON"
    data = _load_object(raw, what)

    tool_input = data.get("tool_input")
    if tool_input is None:
        tool_input = {}
    if not isinstance(tool_input, dict):
        raise HookInputError(f"Error parsing {what}: field 'tool_input' must be an object")

    return ToolCall(
        tool_name=_optional_str(data, "tool_name", what),
        tool_input=tool_input,
        cwd=_optional_str(data, "cwd", what),
        session_id=_optional_str(data, "session_id", what),
        hook_event_name=_optional_str(data, "hook_event_name", what),
        transcript_path=_optional_str(data, "transcript_path", what),
        tool_use_id=_optional_str(data, "tool_use_id", what),
    )


def parse_cursor_input(raw: bytes) -> ToolCall:
    """Parse a Cursor shell hook payload into a synthetic Bash ToolCall.

    Raises:
        HookInputError: On malformed JSON or mistyped fields.
    """
    what = "Cursor input"
    data = _load_object(raw, what)

    for key in ("conversation_id", "generation_id", "model", "cursor_version", "user_email"):
        _optional_str(data, key, what)

    roots = data.get("workspace_roots")
    if roots is not None and (
        not isinstance(roots, list) or not all(isinstance(r, str) for r in roots)
    ):
        raise HookInputError(f"Error parsing {what}: field 'workspace_roots' must be a list of strings")

    return ToolCall(
        tool_name="Bash",
        tool_input={"command": _optional_str(data, "command", what)},
        cwd=_optional_str(data, "cwd", what),
        session_id=_optional_str(data, "conversation_id", what),
        hook_event_name=_optional_str(data, "hook_event_name", what),
    )


def parse_tool_call(raw: bytes, protocol: Protocol) -> ToolCall:
    if protocol is Protocol.CURSOR:
        return parse_cursor_input(raw)
    return parse_claude_code_input(raw)


# ============================================================
# Output
# ============================================================


def emit(
    rendered: dict[str, Any] | None,
    exit_code: int,
    stderr_text: str,
    stdout: IO[str],
    stderr: IO[str],
) -> int:
    if exit_code == 2 and stderr_text:
        print(stderr_text, file=stderr)
    if rendered is not None:
        print(json.dumps(rendered), file=stdout)
    return exit_code


def _call_preview(call: ToolCall) -> str:
    if call.tool_name == "Bash":
        return truncate_command(call.command)
    target = call.file_path or call.path or call.url
    return truncate_path(target) if target else ""


# ============================================================
# Hook
# ============================================================


def run_hook(
    stdin: IO[bytes],
    stdout: IO[str],
    stderr: IO[str],
    environ: Mapping[str, str] | None = None,
) -> int:
    """Run one hook invocation and return the process exit code.

    Args:
        stdin: Binary input stream carrying one JSON object.
        stdout: Text stream for the rendered decision.
        stderr: Text stream for deny messages and input errors.
        environ: Environment mapping (default: os.environ).
    """
    environ = os.environ if environ is None else environ
    configure_logging(environ.get(LOG_ENV, ""))

    try:
        raw = read_input(stdin)
    except HookInputError as e:
        log_agentic("ERROR", str(e))
        print(str(e), file=stderr)
        return 1

    config = load_agentic_config(environ)

    protocol = config.protocol_hint
    if protocol is Protocol.UNKNOWN:
        protocol = detect_protocol_from_input(raw)

    if config.disabled:
        log_agentic("INFO", f"Agentic checks disabled ({protocol.value})")
        return emit(*generate_disabled_output(protocol), stdout, stderr)

    try:
        call = parse_tool_call(raw, protocol)
    except HookInputError as e:
        log_agentic("ERROR", str(e))
        print(str(e), file=stderr)
        return 1

    preview = _call_preview(call)
    if not call.is_known_tool:
        log_agentic("INFO", f"Unrecognized tool {call.tool_name!r}: no capability heuristics apply")

    threat = detect_critical_threat(call, config.home)
    if threat is not None:
        log_agentic("THREAT", f"{threat.type.value} in {call.tool_name}: {threat.details}")
        return emit(*generate_output(threat, config.mode, protocol), stdout, stderr)

    result = Analyzer(config).analyze(call)
    rendered, exit_code, stderr_text = generate_output(result, config.mode, protocol)

    if exit_code == 2:
        log_agentic("DENY", f"{call.tool_name} {preview}\n{result.format_block_message()}")
    elif result.violates_rule_of_two:
        log_agentic("ASK", f"{call.tool_name} {preview}\n{result.format_block_message()}")
    else:
        caps = result.capability_string or "none"
        log_agentic("ALLOW", f"{call.tool_name} [{caps}] {preview}")

    return emit(rendered, exit_code, stderr_text, stdout, stderr)


def main() -> None:
    """Main hook entry point."""
    try:
        exit_code = run_hook(sys.stdin.buffer, sys.stdout, sys.stderr)
    except Exception as e:
        # Exit 1 is a non-blocking error: the tool call proceeds
        log_agentic("ERROR", f"Agentic guardian error: {type(e).__name__}: {e}")
        print(f"Error: agentic analysis failed: {type(e).__name__}", file=sys.stderr)
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
