#!/usr/bin/env python3
"""Rule of Two capability analysis.

An action that combines all three of the following is disproportionately
risky and warrants blocking or explicit confirmation:

    [A] processing untrustworthy input
    [B] access to sensitive systems or data
    [C] state change or external communication

Each axis is evaluated independently by substring/regex heuristics over
the tool name and input. Each heuristic table contributes at most one
reason per axis. Axis B may additionally be confirmed by environment
signals (see _signal_utils).
"""

import posixpath
from collections.abc import Mapping
from typing import Any

import regex

from _agentic_model import AnalysisResult, CapabilityResult, ToolCall, get_string_field
from _agentic_utils import AgenticConfig, log_agentic, safe_regex_search, truncate_command
from _bash_targets import extract_bash_write_targets
from _signal_utils import SENSITIVE_ACCESS_SIGNALS, enabled_signals, run_signals

REASON_PREVIEW_LENGTH = 50

# ============================================================
# Capability A: Untrustworthy Input
# ============================================================

UNTRUSTED_PATH_PATTERNS = (
    "/tmp/",
    "/var/tmp/",
    "/dev/shm/",
    "/downloads/",
    "/Downloads/",
    "~/Downloads/",
)

UNTRUSTED_CONTENT_MARKERS = (
    "${",  # variable expansion
    "$(",  # command substitution
    "`",  # backtick substitution
    "eval(",
)

EXTERNAL_DATA_COMMANDS = (
    "curl",
    "wget",
    "fetch",
    "http",
    "nc ",
    "netcat",
    # Version control fetching
    "git clone",
    "git pull",
    "git fetch",
    "svn checkout",
    "svn update",
    "hg clone",
    "hg pull",
    # Alternative downloaders
    "aria2c",
    "lynx -source",
    "w3m -dump",
)

# Encoded or piped-to-shell execution may hide what actually runs
OBFUSCATION_PATTERNS = (
    "base64 -d",
    "base64 --decode",
    "xxd -r",
    "| bash",
    "| sh",
    "| zsh",
    "| /bin/bash",
    "| /bin/sh",
    "eval ",
    "source <(",
    ". <(",
)

REVERSE_SHELL_PATTERNS = (
    "/dev/tcp/",
    "/dev/udp/",
    "nc -e",
    "nc -c",
    "ncat -e",
    "ncat -c",
    "socat exec:",
    "bash -i >",
    "sh -i >",
    "mkfifo",
    "0<&1",
    ">&0 2>&0",
)

PIPE_FROM_EXTERNAL_RE = regex.compile(r"(curl|wget|nc|netcat)\s+[^|]*\|")

TRUSTED_HOME_ROOTS = ("/Users/", "/home/")

# ============================================================
# Capability B: Sensitive Access
# ============================================================

SENSITIVE_PATH_PATTERNS = (
    ".env",
    ".aws/",
    ".ssh/",
    ".kube/",
    ".gnupg/",
    ".npmrc",
    ".pypirc",
    ".netrc",
    ".docker/config.json",
    "credentials",
    "secrets",
    "id_rsa",
    "id_ed25519",
    "id_ecdsa",
    "id_dsa",
    "known_hosts",
    "authorized_keys",
    # Cloud provider configs
    ".config/gcloud/",
    ".azure/",
    ".config/doctl/",
    ".oci/",
    ".config/gh/",
    ".config/hub",
    # Package manager credentials
    ".gem/credentials",
    ".cargo/credentials",
    ".gradle/gradle.properties",
    ".m2/settings.xml",
    ".composer/auth.json",
    ".terraform.d/credentials",
    ".terraformrc",
    # Database credentials
    ".pgpass",
    ".my.cnf",
    ".mysql_history",
    # Git config (may contain creds)
    ".git/config",
    ".gitconfig",
    ".htpasswd",
)

SENSITIVE_FILE_EXTENSIONS = (".pem", ".key", ".p12", ".pfx", ".crt", ".cer")

SENSITIVE_COMMANDS = (
    "aws ",
    "kubectl ",
    "gcloud ",
    "az ",
    "terraform ",
    "vault ",
    "op ",  # 1Password CLI
    "pass ",  # password-store
    "gpg ",
    "ssh-add",
    "ssh-keygen",
    "doctl ",
    "linode-cli ",
    "heroku ",
    "oci ",
    "ibmcloud ",
    "flyctl ",
    "podman ",
    "buildah ",
    "helm ",
    "oc ",  # OpenShift
    "nomad ",
    "consul ",
    "ansible ",
    "ansible-playbook ",
    "psql ",
    "mysql ",
    "mongo ",
    "mongosh ",
    "redis-cli ",
)

PRODUCTION_INDICATORS = (
    "/prod/",
    "/production/",
    "prd-",
    "prod-",
    "-prod",
    "-prd",
    ".prod.",
    ".production.",
)

# ============================================================
# Capability C: State Change / External Communication
# ============================================================

STATE_CHANGING_COMMANDS = (
    "rm ",
    "rm\t",
    "rmdir ",
    "mv ",
    "cp ",
    "chmod ",
    "chown ",
    "touch ",
    "mkdir ",
    "ln ",
    "install ",
    "git commit",
    "git push",
    "git checkout",
    "git reset",
    "git rebase",
    "git merge",
    "npm install",
    "npm publish",
    "npm update",
    "yarn add",
    "yarn install",
    "pip install",
    "pip uninstall",
    "docker run",
    "docker exec",
    "docker build",
    "docker push",
    "kubectl apply",
    "kubectl delete",
    "kubectl exec",
    "kubectl create",
    "kubectl patch",
    "terraform apply",
    "terraform destroy",
    "terraform import",
    "make ",
    "make\t",
    "shred ",
    "truncate ",
    "dd if=",
    "sed -i",
    "perl -i",
    "kill ",
    "killall ",
    "pkill ",
    "systemctl ",
    "go install",
    "go get ",
    "cargo install",
    "gem install",
    "composer install",
    "composer update",
    "brew install",
    "brew uninstall",
    "apt install",
    "apt-get install",
    "apt remove",
    "yum install",
    "dnf install",
    "pacman -S",
    "snap install",
    "podman run",
    "podman exec",
    "podman build",
    "docker-compose up",
    "docker-compose down",
    "pulumi up",
    "pulumi destroy",
    "rclone ",
    "s3cmd ",
    "gsutil ",
    "az storage ",
)

EXTERNAL_COMM_PATTERNS = (
    "curl",
    "wget",
    "ssh ",
    "scp ",
    "rsync ",
    "sftp ",
    "ftp ",
    "nc ",
    "netcat ",
    "ncat ",
    "telnet ",
    "nmap ",
    "socat ",
    "/dev/tcp/",
    "/dev/udp/",
)

REDIRECT_PATTERNS = (" > ", " >> ", " >| ", " 2> ", " 2>> ", " &> ", " &>> ")

ALWAYS_STATE_CHANGING_TOOLS = {
    "Write": "writing file",
    "Edit": "editing file",
}


# ============================================================
# Heuristic Helpers
# ============================================================


def _first_contained(haystack: str, needles: tuple[str, ...]) -> str | None:
    """Return the first needle found in haystack (case-insensitive), or None."""
    lowered = haystack.lower()
    for needle in needles:
        if needle.lower() in lowered:
            return needle
    return None


def _first_suffix(haystack: str, suffixes: tuple[str, ...]) -> str | None:
    lowered = haystack.lower()
    for suffix in suffixes:
        if lowered.endswith(suffix):
            return suffix
    return None


# ============================================================
# Detectors
# ============================================================


def detect_capability_a(tool_name: str, tool_input: Mapping[str, Any], cwd: str = "") -> CapabilityResult:
    """Check for processing of untrustworthy input."""
    result = CapabilityResult()

    if tool_name == "WebFetch":
        url = get_string_field(tool_input, "url")
        result.add("fetching external URL: " + truncate_command(url, REASON_PREVIEW_LENGTH))

    elif tool_name == "WebSearch":
        result.add("web search returns external data")

    elif tool_name == "Bash":
        cmd = get_string_field(tool_input, "command")

        ext_cmd = _first_contained(cmd, EXTERNAL_DATA_COMMANDS)
        if ext_cmd:
            result.add("command fetches external data: " + ext_cmd)

        if safe_regex_search(PIPE_FROM_EXTERNAL_RE, cmd):
            result.add("piping data from external source")

        pattern = _first_contained(cmd, OBFUSCATION_PATTERNS)
        if pattern:
            result.add("obfuscated/encoded command: " + pattern)

        pattern = _first_contained(cmd, REVERSE_SHELL_PATTERNS)
        if pattern:
            result.add("reverse shell pattern: " + pattern)

    elif tool_name == "Read":
        path = get_string_field(tool_input, "file_path")

        pattern = _first_contained(path, UNTRUSTED_PATH_PATTERNS)
        if pattern:
            result.add("reading from untrusted path: " + pattern)

        # Reads outside the project are untrusted, except under home directories
        if (
            cwd
            and posixpath.isabs(path)
            and not path.startswith(cwd)
            and not path.startswith(TRUSTED_HOME_ROOTS)
        ):
            result.add("reading file outside project directory")

    elif tool_name in ("Write", "Edit"):
        field_name = "content" if tool_name == "Write" else "new_string"
        content = get_string_field(tool_input, field_name)
        for marker in UNTRUSTED_CONTENT_MARKERS:
            if marker in content:
                result.add("content contains dynamic expansion: " + marker)
                break

    return result


PATH_FIELDS = {
    "Read": "file_path",
    "Write": "file_path",
    "Edit": "file_path",
    "Glob": "path",
    "Grep": "path",
}


def detect_capability_b(tool_name: str, tool_input: Mapping[str, Any]) -> CapabilityResult:
    """Check for access to sensitive systems or data."""
    result = CapabilityResult()

    path_field = PATH_FIELDS.get(tool_name)
    file_path = get_string_field(tool_input, path_field) if path_field else ""
    if file_path:
        pattern = _first_contained(file_path, SENSITIVE_PATH_PATTERNS)
        if pattern:
            result.add("accessing sensitive path: " + pattern)

        ext = _first_suffix(file_path, SENSITIVE_FILE_EXTENSIONS)
        if ext:
            result.add("accessing sensitive file type: " + ext)

        indicator = _first_contained(file_path, PRODUCTION_INDICATORS)
        if indicator:
            result.add("accessing production path: " + indicator)

    if tool_name == "Bash":
        cmd = get_string_field(tool_input, "command")

        sensitive_cmd = _first_contained(cmd, SENSITIVE_COMMANDS)
        if sensitive_cmd:
            result.add("running sensitive command: " + sensitive_cmd.strip())

        pattern = _first_contained(cmd, SENSITIVE_PATH_PATTERNS)
        if pattern:
            result.add("command accesses sensitive path: " + pattern)

        ext = _first_contained(cmd, SENSITIVE_FILE_EXTENSIONS)
        if ext:
            result.add("command accesses sensitive file type: " + ext)

        indicator = _first_contained(cmd, PRODUCTION_INDICATORS)
        if indicator:
            result.add("command references production: " + indicator)

    return result


def detect_capability_c(tool_name: str, tool_input: Mapping[str, Any]) -> CapabilityResult:
    """Check for state changes or external communication."""
    result = CapabilityResult()

    if tool_name in ALWAYS_STATE_CHANGING_TOOLS:
        path = get_string_field(tool_input, "file_path")
        result.add(
            f"{ALWAYS_STATE_CHANGING_TOOLS[tool_name]}: "
            + truncate_command(path, REASON_PREVIEW_LENGTH)
        )

    elif tool_name == "NotebookEdit":
        result.add("modifying notebook")

    elif tool_name == "TodoWrite":
        result.add("modifying todo list state")

    elif tool_name == "Bash":
        cmd = get_string_field(tool_input, "command")

        # First match wins: state change, then network, then redirection
        state_cmd = _first_contained(cmd, STATE_CHANGING_COMMANDS)
        if state_cmd:
            result.add("state-changing command: " + state_cmd.strip())
            return result

        ext_comm = _first_contained(cmd, EXTERNAL_COMM_PATTERNS)
        if ext_comm:
            result.add("external communication: " + ext_comm.strip())
            return result

        if any(redirect in cmd for redirect in REDIRECT_PATTERNS):
            result.add("output redirection to file")
            return result

        targets = extract_bash_write_targets(cmd)
        if targets:
            result.add("writing via shell: " + truncate_command(targets[0], REASON_PREVIEW_LENGTH))

    return result


# ============================================================
# Analyzer
# ============================================================


class Analyzer:
    """Performs Rule of Two analysis on tool calls.

    The configuration decides whether environment signals are consulted,
    under which deadline, and which signals are disabled.
    """

    def __init__(self, config: AgenticConfig, signals=SENSITIVE_ACCESS_SIGNALS):
        self.config = config
        self.signals = tuple(signals)

    def analyze(self, call: ToolCall) -> AnalysisResult:
        result = AnalysisResult(
            tool_name=call.tool_name,
            capability_a=detect_capability_a(call.tool_name, call.tool_input, call.cwd),
            capability_b=detect_capability_b(call.tool_name, call.tool_input),
            capability_c=detect_capability_c(call.tool_name, call.tool_input),
        )

        # Signals can only confirm B, so skip them once B is already detected
        if self.config.run_signals and not result.capability_b.detected:
            hits = self.run_relevant_signals()
            result.signal_hits = hits
            for hit in hits:
                result.capability_b.add("signal detected: " + hit)

        return result

    def run_relevant_signals(self) -> list[str]:
        signals = enabled_signals(self.signals, self.config.environ)
        skipped = len(self.signals) - len(signals)
        if skipped:
            log_agentic("INFO", f"{skipped} signal(s) disabled by environment")
        return run_signals(
            signals,
            self.config.environ,
            self.config.home,
            self.config.signal_timeout,
        )
