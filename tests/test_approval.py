"""Tests for the approval manager."""

import threading

import pytest

from agentic_gate.errors import ApprovalCancelledError
from agentic_gate.hitl import ApprovalManager
from agentic_gate.hitl.approval import ApprovalStatus
from agentic_gate.shell.models import ApprovalChoice


@pytest.fixture
def manager() -> ApprovalManager:
    return ApprovalManager()


@pytest.fixture
def prompted(gate):
    return gate.evaluate("touch a.txt")


class TestApprovalManager:
    """Tests for request / decide / wait."""

    def test_request_is_pending(self, manager, prompted):
        request_id = manager.request(prompted)

        assert len(request_id) == 8
        request = manager.get_request(request_id)
        assert request.status is ApprovalStatus.PENDING
        assert request.command == "touch a.txt"
        assert [r.id for r in manager.pending()] == [request_id]

    def test_decide_then_wait(self, manager, prompted):
        request_id = manager.request(prompted)

        assert manager.decide(request_id, ApprovalChoice.ALWAYS_ALLOW)
        assert manager.wait(request_id, timeout=1) is ApprovalChoice.ALWAYS_ALLOW
        assert manager.get_request(request_id) is None

    def test_decide_twice(self, manager, prompted):
        request_id = manager.request(prompted)
        manager.decide(request_id, ApprovalChoice.DENY)

        assert not manager.decide(request_id, ApprovalChoice.APPROVE_ONCE)
        assert manager.get_request(request_id).choice is ApprovalChoice.DENY

    def test_decide_unknown(self, manager):
        assert not manager.decide("missing", ApprovalChoice.DENY)

    def test_wait_unknown(self, manager):
        with pytest.raises(KeyError):
            manager.wait("missing")

    def test_wait_wakes_on_decision_from_other_thread(self, manager, prompted):
        request_id = manager.request(prompted)
        timer = threading.Timer(0.05, manager.decide, args=(request_id, ApprovalChoice.APPROVE_SESSION))
        timer.start()

        choice = manager.wait(request_id, timeout=5)
        timer.join()

        assert choice is ApprovalChoice.APPROVE_SESSION

    def test_timeout_cancels(self, manager, prompted):
        request_id = manager.request(prompted)

        with pytest.raises(ApprovalCancelledError) as exc_info:
            manager.wait(request_id, timeout=0.01)

        assert exc_info.value.request_id == request_id
        assert manager.pending() == []

    def test_cancel(self, manager, prompted):
        request_id = manager.request(prompted)

        assert manager.cancel(request_id)
        assert not manager.cancel(request_id)
        assert not manager.decide(request_id, ApprovalChoice.APPROVE_ONCE)
        with pytest.raises(ApprovalCancelledError):
            manager.wait(request_id, timeout=1)

    def test_cancel_all(self, manager, prompted):
        for _ in range(3):
            manager.request(prompted)
        decided = manager.request(prompted)
        manager.decide(decided, ApprovalChoice.DENY)

        assert manager.cancel_all() == 3
        assert manager.pending() == []
