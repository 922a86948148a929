"""Exceptions raised by the command gate.

Parsing, extraction and classification never raise; they degrade to
conservative results. Only persistence problems and cancelled prompts
surface as exceptions.
"""


class GateError(Exception):
    """Base class for gate errors."""


class PersistenceError(GateError):
    """A rule store, trust store or audit log could not be read or written."""

    def __init__(self, message: str, path: object | None = None):
        super().__init__(message)
        self.path = path


class ApprovalCancelledError(GateError):
    """A pending human prompt was cancelled before a decision was made."""

    def __init__(self, request_id: str):
        super().__init__(f"Approval request {request_id} was cancelled")
        self.request_id = request_id
