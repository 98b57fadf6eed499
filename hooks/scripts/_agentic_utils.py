#!/usr/bin/env python3
"""Shared utilities for the agentic security hook.

This module provides the ambient pieces every other agentic module uses:
- Configuration loading from the process environment (AgenticConfig)
- Logging with rotation (log_agentic)
- Regex search with timeout defense (safe_regex_search)
- Preview truncation for logs and reasons

Usage:
    from _agentic_utils import (
        AgenticConfig,
        load_agentic_config,
        log_agentic,
        safe_regex_search,
        truncate_command,
    )

Note on log_agentic():
    - Silent no-op if DASHLIGHTS_AGENTIC_LOG is not set
    - Silent fail on file write errors
    - Never writes to stdout/stderr: both belong to the hook protocol

Design Principles:
    1. Configuration is read ONCE per invocation and passed explicitly,
       so tests can inject a config without touching os.environ.
    2. Fail-open on non-critical errors (logging, regex timeouts).
"""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from types import MappingProxyType

import regex

from _agentic_model import AgenticMode, Protocol

# ============================================================
# Constants
# ============================================================

MODE_ENV = "DASHLIGHTS_AGENTIC_MODE"
"""Environment variable selecting the agentic mode.
Case-insensitive "ask" selects ask-mode; anything else means block."""

DISABLE_ENV = "DASHLIGHTS_DISABLE_AGENTIC"
"""Environment variable disabling all agentic checks when non-empty."""

SIGNALS_ENV = "DASHLIGHTS_AGENTIC_SIGNALS"
"""Environment variable controlling signal consultation.
Set to "0", "false", "no" or "off" to skip signals entirely."""

SIGNAL_TIMEOUT_ENV = "DASHLIGHTS_AGENTIC_SIGNAL_TIMEOUT_MS"
"""Environment variable overriding the signal deadline (milliseconds)."""

SIGNAL_DISABLE_PREFIX = "DASHLIGHTS_DISABLE_"
"""Prefix for per-signal disable toggles (e.g. DASHLIGHTS_DISABLE_PROD_PANIC)."""

LOG_ENV = "DASHLIGHTS_AGENTIC_LOG"
"""Environment variable naming the log file. Logging is off when unset."""

CURSOR_AGENT_ENV = "CURSOR_AGENT"
CLAUDE_CODE_ENV = "CLAUDECODE"

MAX_INPUT_BYTES = 1024 * 1024
"""Maximum stdin size. Larger input is an input error (exit 1)."""

DEFAULT_SIGNAL_TIMEOUT_SECONDS = 0.005
"""Shared deadline for all signal checks (5 ms)."""

MAX_PATH_PREVIEW_LENGTH = 60
"""Maximum path length for log display. Paths longer than this are truncated."""

MAX_COMMAND_PREVIEW_LENGTH = 80
"""Maximum command length for log display. Commands longer than this are truncated."""

MAX_LOG_SIZE_BYTES = 1_000_000
"""Maximum log file size before rotation (1 MB)."""

REGEX_TIMEOUT_SECONDS = 0.05
"""Default timeout for regex operations to prevent ReDoS."""

_FALSE_VALUES = ("0", "false", "no", "off")


# ============================================================
# Configuration
# ============================================================


def signal_disable_env(signal_name: str) -> str:
    """Return the environment variable that disables a named signal.

    "Prod Panic" -> "DASHLIGHTS_DISABLE_PROD_PANIC"
    """
    return SIGNAL_DISABLE_PREFIX + signal_name.replace(" ", "_").upper()


@dataclass(frozen=True)
class AgenticConfig:
    """Immutable configuration for one hook invocation.

    Built once by load_agentic_config() and threaded explicitly into the
    analyzer and output layer.
    """

    mode: AgenticMode = AgenticMode.BLOCK
    disabled: bool = False
    run_signals: bool = True
    signal_timeout: float = DEFAULT_SIGNAL_TIMEOUT_SECONDS
    protocol_hint: Protocol = Protocol.UNKNOWN
    log_path: str = ""
    home: str = ""
    environ: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))


def get_agentic_mode(environ: Mapping[str, str]) -> AgenticMode:
    """Read the agentic mode. Only a case-insensitive "ask" selects ask-mode."""
    if environ.get(MODE_ENV, "").lower() == "ask":
        return AgenticMode.ASK
    return AgenticMode.BLOCK


def is_disabled(environ: Mapping[str, str]) -> bool:
    """Check whether agentic checks are disabled process-wide."""
    return environ.get(DISABLE_ENV, "") != ""


def detect_protocol_from_env(environ: Mapping[str, str]) -> Protocol:
    """Detect the host protocol from explicit environment markers.

    Priority: CURSOR_AGENT=1 > CLAUDECODE=1 > unknown
    """
    if environ.get(CURSOR_AGENT_ENV) == "1":
        return Protocol.CURSOR
    if environ.get(CLAUDE_CODE_ENV) == "1":
        return Protocol.CLAUDE_CODE
    return Protocol.UNKNOWN


def _parse_signal_timeout(raw: str) -> float:
    if not raw:
        return DEFAULT_SIGNAL_TIMEOUT_SECONDS
    try:
        millis = float(raw)
    except ValueError:
        millis = -1.0
    if millis <= 0:
        log_agentic(
            "WARN",
            f"Invalid {SIGNAL_TIMEOUT_ENV}={raw!r} (must be positive), using default",
        )
        return DEFAULT_SIGNAL_TIMEOUT_SECONDS
    return millis / 1000.0


def _resolve_home(environ: Mapping[str, str]) -> str:
    home = environ.get("HOME", "")
    if home:
        return home
    try:
        return str(Path.home())
    except (RuntimeError, KeyError):
        return ""


def load_agentic_config(environ: Mapping[str, str] | None = None) -> AgenticConfig:
    """Build the configuration for this invocation from the environment.

    Args:
        environ: Environment mapping (default: os.environ). A snapshot
            is taken so the config never observes later mutations.

    Returns:
        AgenticConfig with all environment-driven settings resolved.
    """
    snapshot = MappingProxyType(dict(os.environ if environ is None else environ))
    return AgenticConfig(
        mode=get_agentic_mode(snapshot),
        disabled=is_disabled(snapshot),
        run_signals=snapshot.get(SIGNALS_ENV, "").lower() not in _FALSE_VALUES,
        signal_timeout=_parse_signal_timeout(snapshot.get(SIGNAL_TIMEOUT_ENV, "")),
        protocol_hint=detect_protocol_from_env(snapshot),
        log_path=snapshot.get(LOG_ENV, ""),
        home=_resolve_home(snapshot),
        environ=snapshot,
    )


# ============================================================
# Safe Regex with Timeout Defense (ReDoS Prevention)
# ============================================================


def safe_regex_search(
    pattern: "str | regex.Pattern",
    text: str,
    flags: int = 0,
    timeout: float = REGEX_TIMEOUT_SECONDS,
) -> "regex.Match | None":
    """Regex search with timeout defense against ReDoS.

    Args:
        pattern: Regular expression pattern (string or compiled).
        text: Text to search.
        flags: Regex flags (only used for string patterns).
        timeout: Timeout in seconds (default: REGEX_TIMEOUT_SECONDS).

    Returns:
        Match object if found, None otherwise.
        Returns None on timeout or invalid pattern (treated as no match).
    """
    try:
        if isinstance(pattern, str):
            return regex.search(pattern, text, flags, timeout=timeout)
        return pattern.search(text, timeout=timeout)
    except TimeoutError:
        shown = pattern if isinstance(pattern, str) else pattern.pattern
        log_agentic("WARN", f"Regex timeout ({timeout}s) for pattern: {shown[:50]}...")
        return None
    except regex.error as e:
        log_agentic("WARN", f"Invalid regex pattern: {e}")
        return None


# ============================================================
# Logging with Rotation
# ============================================================

_log_path_override: str | None = None
"""Log path set by configure_logging(); takes precedence over the environment."""


def configure_logging(log_path: str | None) -> None:
    """Point log_agentic() at the log file named in the active config.

    None restores the default lookup of DASHLIGHTS_AGENTIC_LOG.
    """
    global _log_path_override
    _log_path_override = log_path


def _rotate_log_if_needed(log_file: Path) -> None:
    """Rotate log file if it exceeds MAX_LOG_SIZE_BYTES.

    Keeps exactly one backup (.log.1). Silent fail on any error.
    """
    try:
        if not log_file.exists():
            return
        if log_file.stat().st_size < MAX_LOG_SIZE_BYTES:
            return
        backup_file = log_file.with_suffix(".log.1")
        if backup_file.exists():
            backup_file.unlink()
        log_file.rename(backup_file)
    except OSError:
        # Rotation is non-critical
        pass


def log_agentic(level: str, message: str) -> None:
    """Log an agentic hook event.

    Log format:
        TIMESTAMP [LEVEL] MESSAGE

    Args:
        level: Log level (INFO, WARN, ERROR, ALLOW, ASK, DENY, THREAT)
        message: Message to log.
    """
    log_path = _log_path_override
    if log_path is None:
        log_path = os.environ.get(LOG_ENV, "")
    if not log_path:
        return

    log_file = Path(log_path)
    try:
        timestamp = datetime.now().isoformat(timespec="seconds")
        line = f"{timestamp} [{level}] {message}\n"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _rotate_log_if_needed(log_file)
        with open(log_file, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError:
        # Silent fail - don't break hook on log error
        pass


# ============================================================
# Display Helpers
# ============================================================


def truncate_path(path: str, max_length: int = MAX_PATH_PREVIEW_LENGTH) -> str:
    """Truncate path for display, keeping the end (most relevant part)."""
    if len(path) <= max_length:
        return path
    return f"...{path[-(max_length - 3) :]}"


def truncate_command(command: str, max_length: int = MAX_COMMAND_PREVIEW_LENGTH) -> str:
    """Truncate command for display, keeping the start (most relevant part)."""
    if len(command) <= max_length:
        return command
    return f"{command[: max_length - 3]}..."


if __name__ == "__main__":
    config = load_agentic_config()
    print("_agentic_utils.py - Module loaded successfully")
    print(f"Mode: {config.mode.value}")
    print(f"Disabled: {config.disabled}")
    print(f"Signals: {config.run_signals} (timeout {config.signal_timeout * 1000:.1f}ms)")
    print(f"Protocol hint: {config.protocol_hint.value}")
