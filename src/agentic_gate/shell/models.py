"""Data models for the command-authorization gate.

Provides dataclasses for parsed commands, side effects, violations,
rules and the final gate decision record.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any


class RiskTier(IntEnum):
    """Ordinal risk tier of a command. Combining tiers takes the maximum."""

    READ_ONLY = 0
    WORKSPACE_WRITE = 1
    SYSTEM = 2
    DANGEROUS = 3

    @property
    def label(self) -> str:
        """Short human-readable label for display."""
        return _TIER_LABELS[self]


_TIER_LABELS = {
    RiskTier.READ_ONLY: "read-only",
    RiskTier.WORKSPACE_WRITE: "workspace write",
    RiskTier.SYSTEM: "system/package",
    RiskTier.DANGEROUS: "dangerous",
}


def max_tier(tiers: list[RiskTier] | tuple[RiskTier, ...]) -> RiskTier:
    """Return the most restrictive tier, READ_ONLY for an empty list."""
    return max(tiers, default=RiskTier.READ_ONLY)


class PathOperation(Enum):
    """Intent of a path occurring in a command."""

    READ = "read"
    WRITE = "write"


class ViolationSeverity(Enum):
    """Severity of a policy violation."""

    HARD = "hard"  # Never negotiable
    PROMPTABLE = "promptable"  # A human may resolve it


class Decision(Enum):
    """Final gate decision."""

    ALLOW = "allow"
    PROMPT = "prompt"
    DENY = "deny"


class RuleAction(Enum):
    """Action taken when a rule matches."""

    ALLOW = "allow"
    PROMPT = "prompt"
    FORBID = "forbid"

    @property
    def restriction(self) -> int:
        """Restriction level; higher wins when several rules match."""
        return {RuleAction.ALLOW: 0, RuleAction.PROMPT: 1, RuleAction.FORBID: 2}[self]


class RuleScope(Enum):
    """Where a rule lives."""

    DEFAULT = "default"  # Built in, never persisted
    PERSISTENT = "persistent"  # Survives restarts
    SESSION = "session"  # Discarded at process end


class TrustLevel(Enum):
    """Trust level of the current workspace."""

    UNTRUSTED = "untrusted"
    SESSION = "session"
    TRUSTED = "trusted"

    @property
    def is_trusted(self) -> bool:
        return self is not TrustLevel.UNTRUSTED


class NetworkPolicy(Enum):
    """Network access policy."""

    OFF = "off"
    ALLOWLIST = "allowlist"
    ON = "on"


class ApprovalChoice(Enum):
    """The six answers a human can give to a prompt."""

    APPROVE_ONCE = "approve_once"
    APPROVE_SESSION = "approve_session"
    ALWAYS_ALLOW = "always_allow"
    ALWAYS_PROMPT = "always_prompt"
    ALWAYS_FORBID = "always_forbid"
    DENY = "deny"

    @property
    def permits_execution(self) -> bool:
        """Whether the current command may run after this choice."""
        return self in (
            ApprovalChoice.APPROVE_ONCE,
            ApprovalChoice.APPROVE_SESSION,
            ApprovalChoice.ALWAYS_ALLOW,
            ApprovalChoice.ALWAYS_PROMPT,
        )


@dataclass(frozen=True)
class ParsedCommand:
    """Token vector of a raw command string. First token is the program."""

    raw: str
    tokens: tuple[str, ...] = ()

    @property
    def program(self) -> str:
        return self.tokens[0] if self.tokens else ""

    @property
    def args(self) -> tuple[str, ...]:
        return self.tokens[1:]

    @property
    def is_empty(self) -> bool:
        return not self.tokens


@dataclass(frozen=True)
class WrapperAnalysis:
    """Result of shell-wrapper detection.

    Attributes:
        is_wrapper: The program is a known shell interpreter.
        wrapper_type: Normalized wrapper name (bash, cmd, powershell, ...).
        embedded_script: Script handed to the interpreter, if any.
        sub_commands: Constituent commands when the script is safely splittable.
        is_complex: The script cannot be decomposed safely.
        is_encoded: The script was passed in encoded form.
    """

    is_wrapper: bool = False
    wrapper_type: str | None = None
    embedded_script: str | None = None
    sub_commands: tuple[str, ...] | None = None
    is_complex: bool = False
    is_encoded: bool = False


@dataclass(frozen=True)
class PathEffect:
    """A path the command may touch."""

    path: str
    operation: PathOperation
    position: int  # Argument index, -1 for redirections

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "operation": self.operation.value, "position": self.position}


@dataclass(frozen=True)
class SideEffects:
    """Side effects a command may have. Over-reporting is acceptable."""

    paths: tuple[PathEffect, ...] = ()
    domains: tuple[str, ...] = ()
    ports: tuple[int, ...] = ()

    @property
    def write_paths(self) -> tuple[PathEffect, ...]:
        return tuple(p for p in self.paths if p.operation is PathOperation.WRITE)

    @property
    def read_paths(self) -> tuple[PathEffect, ...]:
        return tuple(p for p in self.paths if p.operation is PathOperation.READ)

    def merge(self, other: SideEffects) -> SideEffects:
        """Union of two side-effect sets, preserving first-seen order."""
        return SideEffects(
            paths=_unique(self.paths + other.paths),
            domains=_unique(self.domains + other.domains),
            ports=_unique(self.ports + other.ports),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "paths": [p.to_dict() for p in self.paths],
            "domains": list(self.domains),
            "ports": list(self.ports),
        }


def _unique(items: tuple) -> tuple:
    return tuple(dict.fromkeys(items))


@dataclass(frozen=True)
class Violation:
    """A detected policy violation."""

    message: str
    severity: ViolationSeverity

    @property
    def is_hard(self) -> bool:
        return self.severity is ViolationSeverity.HARD

    def to_dict(self) -> dict[str, str]:
        return {"message": self.message, "severity": self.severity.value}


# A pattern element is one token or a union of alternative tokens
PatternElement = str | tuple[str, ...]


@dataclass(frozen=True)
class Rule:
    """A user-authored (or built-in) token-prefix rule."""

    id: str
    pattern: tuple[PatternElement, ...]
    action: RuleAction
    description: str = ""
    scope: RuleScope = RuleScope.PERSISTENT
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "pattern": [list(p) if isinstance(p, tuple) else p for p in self.pattern],
            "action": self.action.value,
            "description": self.description,
            "scope": self.scope.value,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        """Create from dictionary."""
        return cls(
            id=str(data["id"]),
            pattern=tuple(
                tuple(p) if isinstance(p, list) else str(p) for p in data.get("pattern", [])
            ),
            action=RuleAction(data["action"]),
            description=data.get("description", "") or "",
            scope=RuleScope(data.get("scope", RuleScope.PERSISTENT.value)),
            created_at=data.get("created_at", "") or "",
        )

    @classmethod
    def create(
        cls,
        rule_id: str,
        pattern: list[PatternElement] | tuple[PatternElement, ...],
        action: RuleAction,
        description: str = "",
        scope: RuleScope = RuleScope.PERSISTENT,
    ) -> Rule:
        """Build a new rule stamped with the current time."""
        return cls(
            id=rule_id,
            pattern=tuple(tuple(p) if isinstance(p, list) else p for p in pattern),
            action=action,
            description=description,
            scope=scope,
            created_at=datetime.now().isoformat(),
        )

    def describe_pattern(self) -> str:
        return " ".join("|".join(p) if isinstance(p, tuple) else p for p in self.pattern)


@dataclass(frozen=True)
class RuleEvaluation:
    """Outcome of matching a token vector against a rule set."""

    matched: tuple[Rule, ...] = ()
    most_restrictive: Rule | None = None

    @property
    def action(self) -> RuleAction | None:
        return self.most_restrictive.action if self.most_restrictive else None


@dataclass(frozen=True)
class GateResult:
    """The immutable decision record of one evaluation."""

    decision: Decision
    risk_tier: RiskTier
    command: str
    cwd: str
    tokens: tuple[str, ...]
    side_effects: SideEffects
    violations: tuple[Violation, ...]
    reason: str
    matched_rule_id: str | None = None
    wrapper: WrapperAnalysis = field(default_factory=WrapperAnalysis)
    justification: str | None = None

    @property
    def is_shell_wrapper(self) -> bool:
        return self.wrapper.is_wrapper

    @property
    def sub_commands(self) -> tuple[str, ...] | None:
        return self.wrapper.sub_commands

    @property
    def has_hard_violation(self) -> bool:
        return any(v.is_hard for v in self.violations)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        return {
            "decision": self.decision.value,
            "risk_tier": int(self.risk_tier),
            "command": self.command,
            "cwd": self.cwd,
            "tokens": list(self.tokens),
            "side_effects": self.side_effects.to_dict(),
            "violations": [v.to_dict() for v in self.violations],
            "reason": self.reason,
            "matched_rule_id": self.matched_rule_id,
            "is_shell_wrapper": self.wrapper.is_wrapper,
            "sub_commands": list(self.wrapper.sub_commands) if self.wrapper.sub_commands else None,
            "justification": self.justification,
        }
