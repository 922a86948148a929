"""Human-in-the-loop approval for prompted commands."""

from agentic_gate.hitl.approval import ApprovalManager, ApprovalRequest, ApprovalStatus

__all__ = [
    "ApprovalManager",
    "ApprovalRequest",
    "ApprovalStatus",
]
