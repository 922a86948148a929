"""Policy tables for the command gate.

The reviewable, data-driven part of the gate: which commands imply
network access to well-known domains, extra hard-deny patterns, and the
bounds used while unwrapping nested shells. Loaded from YAML.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class ImpliedDomainEntry:
    """Network domains a program contacts even without a literal URL.

    Attributes:
        program: Program name (first token, case-insensitive).
        domains: Domains assumed to be contacted.
        subcommands: Subcommands that trigger the assumption (None = any).
    """

    program: str
    domains: tuple[str, ...]
    subcommands: frozenset[str] | None = None

    def applies_to(self, program: str, subcommand: str | None) -> bool:
        if program.lower() != self.program:
            return False
        if self.subcommands is None:
            return True
        return subcommand is not None and subcommand.lower() in self.subcommands


_NPM_NETWORK = ("install", "i", "add", "ci", "update", "upgrade", "up", "publish", "exec", "dlx", "create", "outdated", "audit")
_PIP_NETWORK = ("install", "download", "wheel", "search")

DEFAULT_IMPLIED_DOMAINS: dict[str, dict[str, Any]] = {
    "npm": {"domains": ["registry.npmjs.org"], "subcommands": list(_NPM_NETWORK)},
    "pnpm": {"domains": ["registry.npmjs.org"], "subcommands": list(_NPM_NETWORK)},
    "yarn": {"domains": ["registry.yarnpkg.com", "registry.npmjs.org"], "subcommands": None},
    "npx": {"domains": ["registry.npmjs.org"], "subcommands": None},
    "pip": {"domains": ["pypi.org", "files.pythonhosted.org"], "subcommands": list(_PIP_NETWORK)},
    "pip3": {"domains": ["pypi.org", "files.pythonhosted.org"], "subcommands": list(_PIP_NETWORK)},
    "pipx": {"domains": ["pypi.org", "files.pythonhosted.org"], "subcommands": ["install", "run", "upgrade"]},
    "poetry": {"domains": ["pypi.org", "files.pythonhosted.org"], "subcommands": ["install", "add", "update", "lock", "publish"]},
    "uv": {"domains": ["pypi.org", "files.pythonhosted.org"], "subcommands": ["pip", "add", "sync", "lock", "tool", "run"]},
    "cargo": {"domains": ["crates.io", "index.crates.io"], "subcommands": ["install", "add", "update", "fetch", "build", "publish"]},
    "gem": {"domains": ["rubygems.org"], "subcommands": ["install", "update", "push"]},
    "go": {"domains": ["proxy.golang.org"], "subcommands": ["get", "install", "mod"]},
    "brew": {"domains": ["formulae.brew.sh", "ghcr.io"], "subcommands": ["install", "upgrade", "update", "tap"]},
    "docker": {"domains": ["registry-1.docker.io"], "subcommands": ["pull", "push", "run", "build", "login"]},
}


def _build_implied_domains(data: dict[str, dict[str, Any]]) -> tuple[ImpliedDomainEntry, ...]:
    entries = []
    for program, spec in data.items():
        subcommands = spec.get("subcommands")
        entries.append(
            ImpliedDomainEntry(
                program=program.lower(),
                domains=tuple(spec.get("domains", [])),
                subcommands=frozenset(s.lower() for s in subcommands) if subcommands is not None else None,
            )
        )
    return tuple(entries)


@dataclass
class GatePolicy:
    """Policy tables consumed by the gate.

    Attributes:
        implied_domains: Programs that imply network access to known domains.
        deny_patterns: Extra hard-deny regexes as (pattern, message) pairs.
        include_default_rules: Whether the built-in rule pool is active.
        max_wrapper_depth: Maximum nesting of shell wrappers that is unwrapped.
        max_and_chain: Maximum number of commands an ``&&`` chain is split into;
            longer chains make a script complex.
        max_script_length: Embedded scripts longer than this are complex.
    """

    implied_domains: dict[str, dict[str, Any]] = field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_IMPLIED_DOMAINS.items()}
    )
    deny_patterns: list[tuple[str, str]] = field(default_factory=list)
    include_default_rules: bool = True
    max_wrapper_depth: int = 4
    max_and_chain: int = 2
    max_script_length: int = 4096

    @property
    def implied_domain_entries(self) -> tuple[ImpliedDomainEntry, ...]:
        return _build_implied_domains(self.implied_domains)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GatePolicy":
        """Create policy from dictionary.

        ``implied_domains`` entries replace the default entry for the same
        program; programs not mentioned keep their defaults.
        """
        implied = {k: dict(v) for k, v in DEFAULT_IMPLIED_DOMAINS.items()}
        for program, spec in (data.get("implied_domains") or {}).items():
            if spec is None:
                implied.pop(program, None)
            else:
                implied[program] = dict(spec)

        deny_patterns = []
        for item in data.get("deny_patterns", []) or []:
            if isinstance(item, dict):
                deny_patterns.append((item["pattern"], item.get("message", "Denied by policy pattern")))
            else:
                deny_patterns.append((str(item), "Denied by policy pattern"))

        return cls(
            implied_domains=implied,
            deny_patterns=deny_patterns,
            include_default_rules=data.get("include_default_rules", True),
            max_wrapper_depth=data.get("max_wrapper_depth", 4),
            max_and_chain=data.get("max_and_chain", 2),
            max_script_length=data.get("max_script_length", 4096),
        )

    @classmethod
    def from_yaml(cls, path: Path | str) -> "GatePolicy":
        """Load policy from a YAML file. A missing file yields defaults."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Convert policy to dictionary."""
        return {
            "implied_domains": self.implied_domains,
            "deny_patterns": [{"pattern": p, "message": m} for p, m in self.deny_patterns],
            "include_default_rules": self.include_default_rules,
            "max_wrapper_depth": self.max_wrapper_depth,
            "max_and_chain": self.max_and_chain,
            "max_script_length": self.max_script_length,
        }
