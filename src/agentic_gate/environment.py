"""Execution environment detection.

Captures where commands would run: host OS, execution backend (host,
WSL or container), workspace root, current directory, network policy
and workspace trust.
"""

import os
import platform
from dataclasses import dataclass, field, replace
from pathlib import Path

from agentic_gate.config import GateSettings, get_settings
from agentic_gate.errors import GateError
from agentic_gate.persistence.trust_store import WorkspaceTrustStore
from agentic_gate.shell.models import NetworkPolicy, TrustLevel
from agentic_gate.shell.path_analyzer import is_within_workspace

_BACKEND_LABELS = {
    "windows-host": "Windows (host)",
    "linux-host": "Linux (host)",
    "macos-host": "macOS (host)",
    "wsl": "WSL",
    "container": "Container",
}


def _read_text(path: str) -> str:
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            return f.read()
    except OSError:
        return ""


def detect_wsl() -> bool:
    """Whether we run inside Windows Subsystem for Linux."""
    if platform.system() != "Linux":
        return False
    if os.environ.get("WSL_DISTRO_NAME") or os.environ.get("WSLENV"):
        return True
    return "microsoft" in _read_text("/proc/version").lower()


def detect_container() -> bool:
    """Whether we run inside a container."""
    if os.path.exists("/.dockerenv") or os.environ.get("KUBERNETES_SERVICE_HOST"):
        return True
    cgroup = _read_text("/proc/1/cgroup")
    return any(marker in cgroup for marker in ("docker", "lxc", "kubepods", "containerd"))


def detect_backend() -> str:
    """Execution backend: container, wsl, or the host OS."""
    if detect_container():
        return "container"
    if detect_wsl():
        return "wsl"
    system = platform.system()
    if system == "Windows":
        return "windows-host"
    if system == "Darwin":
        return "macos-host"
    return "linux-host"


@dataclass(frozen=True)
class ExecutionEnvironment:
    """Environment-level configuration consumed by the gate."""

    os_name: str
    backend: str
    workspace_root: Path
    cwd: Path
    network_policy: NetworkPolicy = NetworkPolicy.OFF
    allowed_domains: tuple[str, ...] = field(default_factory=tuple)
    trust_level: TrustLevel = TrustLevel.UNTRUSTED

    @property
    def is_trusted(self) -> bool:
        return self.trust_level.is_trusted

    @property
    def backend_label(self) -> str:
        return _BACKEND_LABELS.get(self.backend, self.backend)

    def with_trust(self, trust_level: TrustLevel) -> "ExecutionEnvironment":
        return replace(self, trust_level=trust_level)

    def with_cwd(self, cwd: str | Path) -> "ExecutionEnvironment":
        return replace(self, cwd=Path(cwd))

    def change_cwd(self, new_cwd: str | Path) -> "ExecutionEnvironment":
        """Move to another directory inside the workspace.

        Raises:
            GateError: If the directory is outside the workspace or missing.
        """
        resolved = Path(os.path.realpath(os.path.join(self.cwd, os.path.expanduser(os.fspath(new_cwd)))))
        if not is_within_workspace(os.fspath(resolved), self.workspace_root, self.cwd):
            raise GateError(f"Cannot change to {resolved}: outside workspace root")
        if not resolved.is_dir():
            raise GateError(f"Cannot change to {resolved}: directory does not exist")
        return self.with_cwd(resolved)

    def to_dict(self) -> dict:
        return {
            "os": self.os_name,
            "backend": self.backend,
            "workspace_root": str(self.workspace_root),
            "cwd": str(self.cwd),
            "network_policy": self.network_policy.value,
            "allowed_domains": list(self.allowed_domains),
            "trust_level": self.trust_level.value,
        }


def detect_environment(
    settings: GateSettings | None = None,
    trust_store: WorkspaceTrustStore | None = None,
    cwd: str | Path | None = None,
) -> ExecutionEnvironment:
    """Build the execution environment from settings and the trust store.

    The trust store can only raise the configured trust level.
    """
    settings = settings or get_settings()
    workspace_root = Path(os.path.realpath(settings.workspace_root))

    trust_level = settings.trust
    if trust_store is not None and not trust_level.is_trusted:
        trust_level = trust_store.trust_level_for(workspace_root)

    return ExecutionEnvironment(
        os_name=platform.system().lower() or "unknown",
        backend=detect_backend(),
        workspace_root=workspace_root,
        cwd=Path(cwd) if cwd is not None else workspace_root,
        network_policy=settings.network,
        allowed_domains=tuple(settings.allowed_domains),
        trust_level=trust_level,
    )
