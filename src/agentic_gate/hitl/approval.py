"""Approval management for prompted commands.

The gate never waits for a human. When it decides ``prompt``, the caller
registers an approval request here and blocks until some front end (a
terminal prompt, an IDE panel) records the human's choice.
"""

import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from agentic_gate.errors import ApprovalCancelledError
from agentic_gate.logging import get_logger
from agentic_gate.shell.models import ApprovalChoice, GateResult

logger = get_logger(__name__)


class ApprovalStatus(Enum):
    """Status of an approval request."""

    PENDING = "pending"
    DECIDED = "decided"
    CANCELLED = "cancelled"


@dataclass
class ApprovalRequest:
    """Request for a human decision on one gate result."""

    id: str
    result: GateResult
    created_at: datetime = field(default_factory=datetime.now)
    status: ApprovalStatus = ApprovalStatus.PENDING
    choice: ApprovalChoice | None = None
    decided_at: datetime | None = None
    _event: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def command(self) -> str:
        return self.result.command


class ApprovalManager:
    """Tracks pending approval requests.

    Example:
        manager = ApprovalManager()
        request_id = manager.request(result)
        # another thread: manager.decide(request_id, ApprovalChoice.APPROVE_ONCE)
        choice = manager.wait(request_id, timeout=300)
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._requests: dict[str, ApprovalRequest] = {}

    def request(self, result: GateResult) -> str:
        """Register a prompt and return its request id."""
        request = ApprovalRequest(id=str(uuid.uuid4())[:8], result=result)
        with self._lock:
            self._requests[request.id] = request
        logger.debug("approval_requested", request_id=request.id, tier=int(result.risk_tier))
        return request.id

    def get_request(self, request_id: str) -> ApprovalRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def pending(self) -> list[ApprovalRequest]:
        """Requests still waiting for a decision."""
        with self._lock:
            return [r for r in self._requests.values() if r.status is ApprovalStatus.PENDING]

    def decide(self, request_id: str, choice: ApprovalChoice) -> bool:
        """Record the human's choice and wake the waiter.

        Returns:
            False if the request is unknown or no longer pending.
        """
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status is not ApprovalStatus.PENDING:
                return False
            request.status = ApprovalStatus.DECIDED
            request.choice = choice
            request.decided_at = datetime.now()
        request._event.set()
        logger.debug("approval_decided", request_id=request_id, choice=choice.value)
        return True

    def wait(self, request_id: str, timeout: float | None = None) -> ApprovalChoice:
        """Block until the request is decided.

        Args:
            request_id: Request to wait for.
            timeout: Seconds to wait; None waits forever. A timeout
                cancels the request.

        Raises:
            KeyError: If the request id is unknown.
            ApprovalCancelledError: If the request was cancelled or timed out.
        """
        request = self.get_request(request_id)
        if request is None:
            raise KeyError(request_id)

        if not request._event.wait(timeout):
            self.cancel(request_id)

        with self._lock:
            self._requests.pop(request_id, None)
            if request.status is ApprovalStatus.DECIDED and request.choice is not None:
                return request.choice
        raise ApprovalCancelledError(request_id)

    def cancel(self, request_id: str) -> bool:
        """Cancel a pending request. Returns False if it was not pending."""
        with self._lock:
            request = self._requests.get(request_id)
            if request is None or request.status is not ApprovalStatus.PENDING:
                return False
            request.status = ApprovalStatus.CANCELLED
        request._event.set()
        logger.info("approval_cancelled", request_id=request_id)
        return True

    def cancel_all(self) -> int:
        """Cancel every pending request, e.g. at session teardown."""
        cancelled = 0
        for request in self.pending():
            if self.cancel(request.id):
                cancelled += 1
        return cancelled
