"""Shared test fixtures for agentic-gate tests.

Provides:
- Temporary workspace and data directories
- Settings isolated from the user's environment
- Trusted and untrusted execution environments
- Gates backed by in-memory rule stores

No test executes anything but harmless commands such as ``echo``.
"""

import os
from pathlib import Path
from typing import Generator

import pytest

from agentic_gate.config import GateSettings, SettingsContext
from agentic_gate.environment import ExecutionEnvironment
from agentic_gate.persistence import RuleStore
from agentic_gate.shell.audit import AuditLogger
from agentic_gate.shell.gate import PermissionGate
from agentic_gate.shell.models import NetworkPolicy, TrustLevel


@pytest.fixture(autouse=True)
def clean_gate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove AGENTIC_GATE_* variables so tests see defaults."""
    for var in list(os.environ):
        if var.startswith("AGENTIC_GATE_"):
            monkeypatch.delenv(var)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A real, symlink-resolved workspace directory."""
    root = tmp_path / "workspace"
    root.mkdir()
    return Path(os.path.realpath(root))


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "data"


@pytest.fixture
def settings(workspace: Path, data_dir: Path) -> Generator[GateSettings, None, None]:
    """Settings pointing at the temporary workspace, active for the test."""
    gate_settings = GateSettings(
        workspace_root=workspace,
        data_dir=data_dir,
        trust_level="trusted",
    )
    with SettingsContext(gate_settings) as s:
        yield s


def make_environment(
    workspace: Path,
    trust_level: TrustLevel = TrustLevel.TRUSTED,
    network_policy: NetworkPolicy = NetworkPolicy.OFF,
    allowed_domains: tuple[str, ...] = (),
) -> ExecutionEnvironment:
    return ExecutionEnvironment(
        os_name="linux",
        backend="linux-host",
        workspace_root=workspace,
        cwd=workspace,
        network_policy=network_policy,
        allowed_domains=allowed_domains,
        trust_level=trust_level,
    )


@pytest.fixture
def make_env(workspace: Path):
    """Factory for environments rooted at the temporary workspace."""

    def factory(**kwargs) -> ExecutionEnvironment:
        return make_environment(workspace, **kwargs)

    return factory


@pytest.fixture
def trusted_env(workspace: Path) -> ExecutionEnvironment:
    return make_environment(workspace, TrustLevel.TRUSTED)


@pytest.fixture
def untrusted_env(workspace: Path) -> ExecutionEnvironment:
    return make_environment(workspace, TrustLevel.UNTRUSTED)


@pytest.fixture
def rule_store() -> RuleStore:
    """Rule store with default rules and in-memory persistent rules."""
    return RuleStore()


@pytest.fixture
def gate(trusted_env: ExecutionEnvironment, rule_store: RuleStore) -> PermissionGate:
    """Gate for a trusted workspace with network access off."""
    return PermissionGate(trusted_env, rule_store)


@pytest.fixture
def untrusted_gate(untrusted_env: ExecutionEnvironment) -> PermissionGate:
    return PermissionGate(untrusted_env, RuleStore())


@pytest.fixture
def audit_logger(tmp_path: Path) -> AuditLogger:
    return AuditLogger(tmp_path / "audit" / "audit.jsonl", session_id="test-session")
