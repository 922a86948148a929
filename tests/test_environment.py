"""Tests for execution environment detection."""

import pytest

from agentic_gate.config import GateSettings
from agentic_gate.environment import ExecutionEnvironment, detect_backend, detect_environment
from agentic_gate.errors import GateError
from agentic_gate.persistence import WorkspaceTrustStore
from agentic_gate.shell.models import NetworkPolicy, TrustLevel


class TestExecutionEnvironment:
    """Tests for the environment value object."""

    def test_trust(self, trusted_env, untrusted_env):
        assert trusted_env.is_trusted
        assert not untrusted_env.is_trusted
        assert untrusted_env.with_trust(TrustLevel.SESSION).is_trusted

    def test_backend_label(self, trusted_env):
        assert trusted_env.backend_label == "Linux (host)"

    def test_change_cwd(self, trusted_env, workspace):
        (workspace / "src").mkdir()

        moved = trusted_env.change_cwd("src")

        assert moved.cwd == workspace / "src"
        assert trusted_env.cwd == workspace

    def test_change_cwd_outside_workspace(self, trusted_env):
        with pytest.raises(GateError, match="outside workspace root"):
            trusted_env.change_cwd("..")

    def test_change_cwd_missing(self, trusted_env):
        with pytest.raises(GateError, match="directory does not exist"):
            trusted_env.change_cwd("nope")

    def test_to_dict(self, make_env, workspace):
        env = make_env(network_policy=NetworkPolicy.ALLOWLIST, allowed_domains=("pypi.org",))

        assert env.to_dict() == {
            "os": "linux",
            "backend": "linux-host",
            "workspace_root": str(workspace),
            "cwd": str(workspace),
            "network_policy": "allowlist",
            "allowed_domains": ["pypi.org"],
            "trust_level": "trusted",
        }


class TestDetectEnvironment:
    """Tests for building the environment from settings."""

    def test_from_settings(self, workspace, data_dir):
        settings = GateSettings(
            workspace_root=workspace,
            data_dir=data_dir,
            network_policy="allowlist",
            allowed_domains=["pypi.org"],
        )

        env = detect_environment(settings)

        assert isinstance(env, ExecutionEnvironment)
        assert env.workspace_root == workspace
        assert env.cwd == workspace
        assert env.network_policy is NetworkPolicy.ALLOWLIST
        assert env.allowed_domains == ("pypi.org",)
        assert env.trust_level is TrustLevel.UNTRUSTED
        assert env.backend == detect_backend()

    def test_trust_store_raises_trust(self, workspace, data_dir):
        settings = GateSettings(workspace_root=workspace, data_dir=data_dir)
        store = WorkspaceTrustStore(settings.trust_file)
        store.trust(workspace)

        assert detect_environment(settings, store).trust_level is TrustLevel.TRUSTED

    def test_trust_store_never_lowers_trust(self, workspace, data_dir):
        settings = GateSettings(workspace_root=workspace, data_dir=data_dir, trust_level="trusted")
        store = WorkspaceTrustStore(settings.trust_file)

        assert detect_environment(settings, store).trust_level is TrustLevel.TRUSTED

    def test_explicit_cwd(self, workspace, data_dir):
        settings = GateSettings(workspace_root=workspace, data_dir=data_dir)

        env = detect_environment(settings, cwd=workspace / "sub")

        assert env.cwd == workspace / "sub"

    def test_uses_active_settings(self, settings, workspace):
        assert detect_environment().workspace_root == workspace
