"""Agentic Gate - an authorization gate for shell commands proposed by LLM agents.

Every proposed command passes through one checkpoint that answers
allow, prompt or deny:

- Quote-aware tokenizing and shell-wrapper unwrapping (bash -c, cmd /c,
  powershell -Command / -EncodedCommand)
- Side-effect extraction: file paths with read/write intent, network
  domains, ports
- Risk tiers 0-3 and hard-deny patterns that no rule can override
- Workspace containment, workspace trust and network policy
- Token-prefix allow / prompt / forbid rules (default, persistent, session)
- Append-only JSONL audit log

Usage:
    from agentic_gate import PermissionGate, Decision

    gate = PermissionGate.from_settings()
    result = gate.evaluate("npm install lodash")
    if result.decision is Decision.PROMPT:
        ...
"""

__version__ = "0.1.0"

from agentic_gate.config import (
    GateSettings,
    SettingsContext,
    get_settings,
    reload_settings,
    set_settings,
)
from agentic_gate.environment import ExecutionEnvironment, detect_environment
from agentic_gate.errors import ApprovalCancelledError, GateError, PersistenceError
from agentic_gate.guard import CommandGuard, GuardOutcome
from agentic_gate.hitl import ApprovalManager
from agentic_gate.persistence import RuleStore, WorkspaceTrustStore
from agentic_gate.shell import (
    ApprovalChoice,
    AuditLogger,
    Decision,
    ExecutionSandbox,
    GatePolicy,
    GateResult,
    RiskTier,
    Rule,
    RuleAction,
    RuleScope,
)
from agentic_gate.shell.gate import PermissionGate

__all__ = [
    "__version__",
    # Configuration
    "GateSettings",
    "GatePolicy",
    "SettingsContext",
    "get_settings",
    "set_settings",
    "reload_settings",
    # Environment
    "ExecutionEnvironment",
    "detect_environment",
    # Errors
    "GateError",
    "PersistenceError",
    "ApprovalCancelledError",
    # Gate
    "PermissionGate",
    "GateResult",
    "Decision",
    "RiskTier",
    "Rule",
    "RuleAction",
    "RuleScope",
    "ApprovalChoice",
    # Stores and collaborators
    "RuleStore",
    "WorkspaceTrustStore",
    "AuditLogger",
    "ExecutionSandbox",
    "ApprovalManager",
    "CommandGuard",
    "GuardOutcome",
]
