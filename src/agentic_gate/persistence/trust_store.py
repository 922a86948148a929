"""Workspace trust store.

Persists the list of workspaces a human has trusted, as
``{"trusted_workspaces": [{"path", "normalized_path", "trusted_at"}]}``.
Session trust is held in memory only.
"""

import os
import threading
from datetime import datetime
from pathlib import Path

from agentic_gate.logging import get_logger
from agentic_gate.persistence._utils import atomic_write_json, read_json
from agentic_gate.shell.models import TrustLevel

logger = get_logger(__name__)


def normalize_workspace(path: str | Path) -> str:
    """Absolute, symlink-resolved, case-normalized form used for comparison."""
    return os.path.normcase(os.path.realpath(os.path.expanduser(os.fspath(path))))


class WorkspaceTrustStore:
    """Remembers which workspaces are trusted."""

    def __init__(self, path: Path):
        self.path = path
        self._lock = threading.Lock()
        self._session_trusted: set[str] = set()

    def _load(self) -> list[dict]:
        data = read_json(self.path, default={"trusted_workspaces": []})
        return list(data.get("trusted_workspaces", []))

    def is_trusted(self, workspace: str | Path) -> bool:
        """Whether a workspace is persistently trusted."""
        normalized = normalize_workspace(workspace)
        return any(entry.get("normalized_path") == normalized for entry in self._load())

    def trust(self, workspace: str | Path) -> bool:
        """Persistently trust a workspace. Returns False if it already was."""
        normalized = normalize_workspace(workspace)
        with self._lock:
            entries = self._load()
            if any(entry.get("normalized_path") == normalized for entry in entries):
                return False
            entries.append(
                {
                    "path": os.fspath(workspace),
                    "normalized_path": normalized,
                    "trusted_at": datetime.now().isoformat(),
                }
            )
            atomic_write_json(self.path, {"trusted_workspaces": entries})
        logger.info("workspace_trusted", workspace=normalized)
        return True

    def trust_for_session(self, workspace: str | Path) -> None:
        """Trust a workspace until the process ends."""
        self._session_trusted.add(normalize_workspace(workspace))

    def untrust(self, workspace: str | Path) -> bool:
        """Remove persistent and session trust. Returns True if anything changed."""
        normalized = normalize_workspace(workspace)
        with self._lock:
            had_session = normalized in self._session_trusted
            self._session_trusted.discard(normalized)
            entries = self._load()
            remaining = [entry for entry in entries if entry.get("normalized_path") != normalized]
            if len(remaining) != len(entries):
                atomic_write_json(self.path, {"trusted_workspaces": remaining})
        changed = had_session or len(remaining) != len(entries)
        if changed:
            logger.info("workspace_untrusted", workspace=normalized)
        return changed

    def list_trusted(self) -> list[str]:
        """Paths of persistently trusted workspaces."""
        return [entry.get("path", entry.get("normalized_path", "")) for entry in self._load()]

    def trust_level_for(self, workspace: str | Path) -> TrustLevel:
        """Trust level recorded for a workspace."""
        if self.is_trusted(workspace):
            return TrustLevel.TRUSTED
        if normalize_workspace(workspace) in self._session_trusted:
            return TrustLevel.SESSION
        return TrustLevel.UNTRUSTED
