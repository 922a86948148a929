"""Workspace containment checks for command paths.

A path is within the workspace only if, after resolution, its path
relative to the workspace root neither ascends above the root nor is
absolute. String-prefix comparison is never used: ``/work/app-secrets``
shares a prefix with ``/work/app`` but is outside it.
"""

import os
import re
from pathlib import Path
from typing import Iterable

from agentic_gate.shell.models import PathEffect, PathOperation, Violation, ViolationSeverity

# Sensitive paths that need explicit approval even inside the workspace
SENSITIVE_PATHS: list[Path] = [
    Path.home() / ".ssh",
    Path.home() / ".gnupg",
    Path.home() / ".aws",
    Path.home() / ".azure",
    Path.home() / ".config" / "gcloud",
    Path.home() / ".kube",
    Path.home() / ".docker",
    Path("/etc"),
    Path("/usr"),
    Path("/var"),
    Path("/boot"),
    Path("/root"),
    Path("/System"),  # macOS
    Path("/Library"),  # macOS
]

_WINDOWS_ABSOLUTE = re.compile(r"^(?:[A-Za-z]:[\\/]|\\\\)")
_UNEXPANDED = re.compile(r"[$`]")


def expand_candidate(path: str) -> str | None:
    """Expand ``~`` and environment variables.

    Returns None when the path still depends on something that cannot
    be resolved statically (unset variables, substitutions).
    """
    expanded = os.path.expanduser(os.path.expandvars(path))
    if _UNEXPANDED.search(expanded):
        return None
    return expanded


def _is_relative_inside(rel: str) -> bool:
    if rel == os.curdir:
        return True
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        return False
    return not os.path.isabs(rel)


def is_within_workspace(path: str, workspace_root: str | Path, cwd: str | Path) -> bool:
    """Whether a path, resolved against cwd, lies inside the workspace root.

    Symlinks are resolved on both sides. Paths that cannot be resolved
    statically, or that live on another drive, are outside.

    Args:
        path: Candidate path as it appears in the command.
        workspace_root: Workspace boundary.
        cwd: Directory relative paths are resolved against.
    """
    expanded = expand_candidate(path)
    if expanded is None:
        return False
    if os.name != "nt" and _WINDOWS_ABSOLUTE.match(expanded):
        return False

    resolved = os.path.realpath(os.path.join(os.fspath(cwd), expanded))
    root = os.path.realpath(os.fspath(workspace_root))
    try:
        rel = os.path.relpath(resolved, root)
    except ValueError:
        # Different drives on Windows
        return False
    return _is_relative_inside(rel)


def is_sensitive_path(path: str, cwd: str | Path) -> bool:
    """Whether a resolved path equals or lies under a sensitive location."""
    expanded = expand_candidate(path)
    if expanded is None:
        return False
    resolved = os.path.realpath(os.path.join(os.fspath(cwd), expanded))
    for sensitive in SENSITIVE_PATHS:
        try:
            rel = os.path.relpath(resolved, os.fspath(sensitive))
        except ValueError:
            continue
        if _is_relative_inside(rel):
            return True
    return False


class PathAnalyzer:
    """Validates extracted path effects against the workspace boundary."""

    def __init__(self, workspace_root: str | Path):
        self.workspace_root = Path(workspace_root)

    def contains(self, path: str, cwd: str | Path) -> bool:
        return is_within_workspace(path, self.workspace_root, cwd)

    def validate_paths(self, paths: Iterable[PathEffect], cwd: str | Path) -> list[Violation]:
        """Promptable violations for writes outside the workspace.

        Writes to sensitive locations inside the workspace are flagged
        as well. Reads are never violations.
        """
        violations: list[Violation] = []
        seen: set[str] = set()
        for effect in paths:
            if effect.operation is not PathOperation.WRITE or effect.path in seen:
                continue
            seen.add(effect.path)
            if not self.contains(effect.path, cwd):
                violations.append(
                    Violation(
                        message=f"Write to path outside workspace: {effect.path}",
                        severity=ViolationSeverity.PROMPTABLE,
                    )
                )
            elif is_sensitive_path(effect.path, cwd):
                violations.append(
                    Violation(
                        message=f"Write to sensitive path: {effect.path}",
                        severity=ViolationSeverity.PROMPTABLE,
                    )
                )
        return violations

    def validate_cwd(self, cwd: str | Path) -> Violation | None:
        """A promptable violation when the working directory leaves the workspace."""
        if self.contains(os.fspath(cwd), self.workspace_root):
            return None
        return Violation(
            message=f"Working directory outside workspace: {cwd}",
            severity=ViolationSeverity.PROMPTABLE,
        )
