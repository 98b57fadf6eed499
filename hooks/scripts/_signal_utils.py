#!/usr/bin/env python3
"""Environment signals that indicate sensitive access (capability B).

Five opportunistic checks consulted by the capability analyzer:
- Naked Credential:        raw secrets exported in environment variables
- Dangerous TF_VAR:        Terraform secrets passed as TF_VAR_* variables
- Prod Panic:              AWS profile or kube context points at production
- Root Kube Context:       current kube context uses the kube-system namespace
- AWS CLI Alias Hijacking: ~/.aws/cli/alias overrides core commands or is not 0600

Each check receives only immutable inputs (an environment snapshot and the
home directory) and returns a bool. run_signals() runs them in parallel
under one shared deadline; late or failing checks contribute no hit.
"""

import os
import queue
import stat
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from _agentic_utils import DEFAULT_SIGNAL_TIMEOUT_SECONDS, log_agentic, signal_disable_env

SignalCheck = Callable[[Mapping[str, str], str], bool]


@dataclass(frozen=True)
class Signal:
    name: str
    check: SignalCheck
    legacy_disable_envs: tuple[str, ...] = ()

    @property
    def disable_env(self) -> str:
        return signal_disable_env(self.name)

    def is_disabled(self, environ: Mapping[str, str]) -> bool:
        """True if the name-derived toggle or a legacy alias is non-empty."""
        return any(
            environ.get(env, "") for env in (self.disable_env, *self.legacy_disable_envs)
        )


# ============================================================
# Naked Credential
# ============================================================

SECRET_ENV_NAMES = frozenset({
    "AWS_SECRET_ACCESS_KEY",
    "AWS_SESSION_TOKEN",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "GITHUB_TOKEN",
    "GITLAB_TOKEN",
    "DOCKER_PASSWORD",
    "NPM_TOKEN",
    "SLACK_TOKEN",
    "STRIPE_SECRET_KEY",
    "TWILIO_AUTH_TOKEN",
})

SECRET_ENV_SUFFIXES = ("_TOKEN", "_SECRET", "_KEY", "_PASSWORD", "_APIKEY", "_API_KEY")


def find_naked_credentials(environ: Mapping[str, str]) -> list[str]:
    """Names of non-empty environment variables that look like raw secrets."""
    found = []
    for name, value in environ.items():
        if not value or name.startswith("DASHLIGHT_") or name.startswith("XDG_"):
            continue
        if name in SECRET_ENV_NAMES or name.endswith(SECRET_ENV_SUFFIXES):
            found.append(name)
    return found


def check_naked_credentials(environ: Mapping[str, str], home: str) -> bool:
    return bool(find_naked_credentials(environ))


# ============================================================
# Dangerous TF_VAR
# ============================================================

TF_VAR_SECRET_WORDS = (
    "access_key",
    "secret_key",
    "password",
    "token",
    "api_key",
    "private_key",
    "secret",
    "credential",
)


def check_dangerous_tf_var(environ: Mapping[str, str], home: str) -> bool:
    for name in environ:
        if not name.startswith("TF_VAR_"):
            continue
        lowered = name.lower()
        if any(word in lowered for word in TF_VAR_SECRET_WORDS):
            return True
    return False


# ============================================================
# Kubeconfig helpers
# ============================================================

PROD_INDICATORS = ("prod", "production", "live", "prd")


def is_prod_indicator(value: str) -> bool:
    lowered = value.lower()
    return bool(value) and any(indicator in lowered for indicator in PROD_INDICATORS)


def _kubeconfig_lines(home: str) -> list[str]:
    if not home:
        return []
    kube_config = Path(home) / ".kube" / "config"
    try:
        return kube_config.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return []


def _value_after_colon(line: str) -> str:
    return line.split(":", 1)[1].strip() if ":" in line else ""


def read_current_kube_context(home: str) -> str:
    for line in _kubeconfig_lines(home):
        stripped = line.strip()
        if stripped.startswith("current-context:"):
            return _value_after_colon(stripped)
    return ""


# ============================================================
# Prod Panic
# ============================================================


def check_prod_panic(environ: Mapping[str, str], home: str) -> bool:
    if is_prod_indicator(environ.get("AWS_PROFILE", "")):
        return True
    return is_prod_indicator(read_current_kube_context(home))


# ============================================================
# Root Kube Context
# ============================================================


def read_kube_context_namespaces(home: str) -> dict[str, str]:
    """Map context name -> namespace from the top-level contexts: list.

    Line-oriented, no YAML parser: each "- " item in the contexts section
    is one entry; its name: and namespace: keys may come in either order.
    """
    namespaces: dict[str, str] = {}
    in_contexts = False
    entry: dict[str, str] = {}

    def flush() -> None:
        if entry.get("name"):
            namespaces[entry["name"]] = entry.get("namespace", "")

    for line in _kubeconfig_lines(home):
        stripped = line.strip()
        if stripped == "contexts:":
            in_contexts = True
            continue
        # Another top-level key ends the contexts section
        if in_contexts and line and line[0] not in (" ", "\t", "-"):
            flush()
            entry = {}
            in_contexts = False
            continue
        if not in_contexts:
            continue

        if stripped.startswith("- "):
            flush()
            entry = {}
            stripped = stripped[2:].strip()
        if stripped.startswith("name:"):
            entry["name"] = _value_after_colon(stripped)
        elif stripped.startswith("namespace:"):
            entry["namespace"] = _value_after_colon(stripped)

    if in_contexts:
        flush()
    return namespaces


def check_root_kube_context(environ: Mapping[str, str], home: str) -> bool:
    current_context = read_current_kube_context(home)
    if not current_context:
        return False
    return read_kube_context_namespaces(home).get(current_context) == "kube-system"


# ============================================================
# AWS CLI Alias Hijacking
# ============================================================

AWS_CORE_COMMANDS = frozenset({
    "cloudformation",
    "cloudtrail",
    "cloudwatch",
    "configure",
    "dynamodb",
    "ec2",
    "ecr",
    "eks",
    "iam",
    "kms",
    "lambda",
    "login",
    "logs",
    "rds",
    "s3",
    "secretsmanager",
    "ssm",
    "sso",
    "sts",
})


def check_aws_alias_hijack(environ: Mapping[str, str], home: str) -> bool:
    if not home or ".." in home or not os.path.isabs(home):
        return False

    alias_path = Path(os.path.normpath(home)) / ".aws" / "cli" / "alias"
    try:
        mode = stat.S_IMODE(alias_path.stat().st_mode)
    except OSError:
        return False
    if mode != 0o600:
        return True

    try:
        lines = alias_path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        return False

    for line in lines:
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", ";")) or "=" not in stripped:
            continue
        alias_name = stripped.split("=", 1)[0].strip()
        if alias_name in AWS_CORE_COMMANDS:
            return True
    return False


# ============================================================
# Registry and Runner
# ============================================================

SENSITIVE_ACCESS_SIGNALS = (
    Signal("Naked Credential", check_naked_credentials),
    Signal("Dangerous TF_VAR", check_dangerous_tf_var),
    Signal("Prod Panic", check_prod_panic),
    Signal("Root Kube Context", check_root_kube_context),
    Signal(
        "AWS CLI Alias Hijacking",
        check_aws_alias_hijack,
        legacy_disable_envs=("DASHLIGHTS_DISABLE_AWS_ALIAS_HIJACK",),
    ),
)
"""Signals relevant to sensitive access, in reporting order."""


def enabled_signals(
    signals: tuple[Signal, ...], environ: Mapping[str, str]
) -> list[Signal]:
    """Drop signals whose DASHLIGHTS_DISABLE_<NAME> toggle (or legacy alias) is set."""
    return [sig for sig in signals if not sig.is_disabled(environ)]


def run_signals(
    signals: tuple[Signal, ...] | list[Signal],
    environ: Mapping[str, str],
    home: str,
    timeout: float = DEFAULT_SIGNAL_TIMEOUT_SECONDS,
) -> list[str]:
    """Run signal checks in parallel under one shared deadline.

    Each check runs on its own daemon thread and reports into a queue.
    Results are drained until every check has reported or the deadline
    passes; stragglers are abandoned (daemon threads do not hold up exit).

    Args:
        signals: Signals to run (already filtered for disable toggles).
        environ: Immutable environment snapshot.
        home: Home directory.
        timeout: Shared deadline in seconds.

    Returns:
        Names of signals that fired, in the order given.
    """
    if not signals:
        return []

    results: queue.Queue = queue.Queue()

    def worker(sig: Signal) -> None:
        try:
            detected = bool(sig.check(environ, home))
        except Exception as e:
            log_agentic("WARN", f"Signal '{sig.name}' failed: {type(e).__name__}: {e}")
            detected = False
        results.put((sig.name, detected))

    for sig in signals:
        threading.Thread(target=worker, args=(sig,), daemon=True).start()

    deadline = time.monotonic() + timeout
    fired: set[str] = set()
    pending = len(signals)
    while pending:
        remaining = deadline - time.monotonic()
        try:
            if remaining > 0:
                name, detected = results.get(timeout=remaining)
            else:
                # Past the deadline: take only what already arrived
                name, detected = results.get_nowait()
        except queue.Empty:
            break
        pending -= 1
        if detected:
            fired.add(name)

    if pending:
        log_agentic("INFO", f"{pending} signal(s) missed the {timeout * 1000:.1f}ms deadline")

    return [sig.name for sig in signals if sig.name in fired]
