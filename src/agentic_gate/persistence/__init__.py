"""Durable stores for rules and workspace trust."""

from agentic_gate.persistence.rules_store import RuleStore
from agentic_gate.persistence.trust_store import WorkspaceTrustStore

__all__ = [
    "RuleStore",
    "WorkspaceTrustStore",
]
