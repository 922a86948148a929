"""Command analysis for the authorization gate.

Analysis stages, each usable on its own:
- Tokenizing: quote-aware argv, segments, substitutions, redirections
- Wrapper unwrapping: bash -c, cmd /c, powershell -Command/-EncodedCommand
- Side-effect extraction: file paths with intent, domains, ports
- Risk classification: hard-deny patterns and the 0-3 risk tier
- Path validation: workspace containment and sensitive paths
- Rules: token-prefix allow/prompt/forbid rules

The decision itself is made by ``agentic_gate.shell.gate.PermissionGate``.

Usage:
    from agentic_gate.shell import RiskClassifier

    RiskClassifier().classify("git status")  # RiskTier.READ_ONLY
"""

from agentic_gate.shell.models import (
    ApprovalChoice,
    Decision,
    GateResult,
    NetworkPolicy,
    ParsedCommand,
    PathEffect,
    PathOperation,
    RiskTier,
    Rule,
    RuleAction,
    RuleEvaluation,
    RuleScope,
    SideEffects,
    TrustLevel,
    Violation,
    ViolationSeverity,
    WrapperAnalysis,
)
from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.tokenizer import CommandTokenizer, effective_tokens, tokenize
from agentic_gate.shell.wrappers import ShellWrapperDetector
from agentic_gate.shell.classifier import RiskClassifier
from agentic_gate.shell.side_effects import SideEffectExtractor
from agentic_gate.shell.path_analyzer import PathAnalyzer, is_within_workspace
from agentic_gate.shell.rules import DEFAULT_RULES, RulesEngine
from agentic_gate.shell.audit import AuditEvent, AuditEventType, AuditLogger
from agentic_gate.shell.sandbox import ExecutionResult, ExecutionSandbox

__all__ = [
    # Models
    "ApprovalChoice",
    "Decision",
    "GateResult",
    "NetworkPolicy",
    "ParsedCommand",
    "PathEffect",
    "PathOperation",
    "RiskTier",
    "Rule",
    "RuleAction",
    "RuleEvaluation",
    "RuleScope",
    "SideEffects",
    "TrustLevel",
    "Violation",
    "ViolationSeverity",
    "WrapperAnalysis",
    # Configuration
    "GatePolicy",
    # Analysis
    "CommandTokenizer",
    "effective_tokens",
    "tokenize",
    "ShellWrapperDetector",
    "RiskClassifier",
    "SideEffectExtractor",
    "PathAnalyzer",
    "is_within_workspace",
    "DEFAULT_RULES",
    "RulesEngine",
    # Audit and execution
    "AuditEvent",
    "AuditEventType",
    "AuditLogger",
    "ExecutionResult",
    "ExecutionSandbox",
]
