"""Audit log for gate decisions.

Append-only JSONL file, one record per event, one file per installation.
Every event is flushed and fsynced before the call returns. Records of
one logger carry a monotonically increasing sequence number, so replay
order matches decision order even when executions finish out of order.
"""

import csv
import io
import json
import os
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from agentic_gate.errors import PersistenceError
from agentic_gate.logging import get_logger
from agentic_gate.shell.models import ApprovalChoice, GateResult, Rule

logger = get_logger(__name__)

MAX_OUTPUT_LENGTH = 1000

CSV_COLUMNS = ["timestamp", "session_id", "event_type", "sequence", "command", "risk_tier", "decision", "choice"]


class AuditEventType(Enum):
    """Kinds of audit records."""

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    TRUST_DECISION = "trust_decision"
    EVALUATION = "evaluation"
    PROMPT_SHOWN = "prompt_shown"
    HUMAN_DECISION = "human_decision"
    EXECUTION_RESULT = "execution_result"
    RULE_CREATED = "rule_created"
    RULE_DELETED = "rule_deleted"
    LOG_CLEARED = "log_cleared"


def truncate_output(text: str | None, max_length: int = MAX_OUTPUT_LENGTH) -> str:
    """Truncate text, marking how much was cut."""
    if not text:
        return ""
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}... [{len(text) - max_length} more characters]"


@dataclass
class AuditEvent:
    """A single audit log record.

    Attributes:
        timestamp: ISO timestamp of the event.
        session_id: Session the event belongs to.
        event_type: Kind of event.
        sequence: Per-logger sequence number.
        payload: Event-specific fields.
    """

    timestamp: str
    session_id: str
    event_type: AuditEventType
    sequence: int
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "event_type": self.event_type.value,
            "sequence": self.sequence,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditEvent":
        """Create from dictionary."""
        return cls(
            timestamp=data.get("timestamp", ""),
            session_id=data.get("session_id", ""),
            event_type=AuditEventType(data["event_type"]),
            sequence=int(data.get("sequence", 0)),
            payload=data.get("payload", {}) or {},
        )

    def to_row(self) -> dict[str, Any]:
        """Flat row for tabular export."""
        return {
            "timestamp": self.timestamp,
            "session_id": self.session_id,
            "event_type": self.event_type.value,
            "sequence": self.sequence,
            "command": self.payload.get("command", ""),
            "risk_tier": self.payload.get("risk_tier", ""),
            "decision": self.payload.get("decision", ""),
            "choice": self.payload.get("choice", ""),
        }


class AuditLogger:
    """Append-only audit log.

    Example:
        audit = AuditLogger(settings.audit_file)
        audit.log_session_start({"workspace_root": "/work"})
        audit.log_evaluation(gate.evaluate("ls"))
    """

    def __init__(
        self,
        path: Path,
        session_id: str | None = None,
        max_output_length: int = MAX_OUTPUT_LENGTH,
    ):
        """Initialize the audit logger.

        Args:
            path: JSONL file shared by all sessions of the installation.
            session_id: Session identifier for grouping events.
            max_output_length: Truncation bound for output fields.
        """
        self.path = path
        self.session_id = session_id or uuid.uuid4().hex[:12]
        self.max_output_length = max_output_length
        self._lock = threading.Lock()
        self._sequence = 0

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def log(self, event_type: AuditEventType, payload: dict[str, Any] | None = None) -> AuditEvent:
        """Append one event and sync it to disk.

        Raises:
            PersistenceError: If the event cannot be written.
        """
        with self._lock:
            self._sequence += 1
            event = AuditEvent(
                timestamp=datetime.now().isoformat(),
                session_id=self.session_id,
                event_type=event_type,
                sequence=self._sequence,
                payload=payload or {},
            )
            self._write(event)
        return event

    def _write(self, event: AuditEvent) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), default=str) + "\n")
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.error("audit_write_failed", path=str(self.path), error=str(e))
            raise PersistenceError(f"Cannot write audit log {self.path}: {e}", path=self.path) from e

    def log_session_start(self, environment: dict[str, Any] | None = None) -> AuditEvent:
        return self.log(AuditEventType.SESSION_START, {"environment": environment or {}})

    def log_session_end(self) -> AuditEvent:
        return self.log(AuditEventType.SESSION_END)

    def log_trust_decision(self, workspace: str, trust_level: str) -> AuditEvent:
        return self.log(AuditEventType.TRUST_DECISION, {"workspace": workspace, "trust_level": trust_level})

    def log_evaluation(self, result: GateResult) -> AuditEvent:
        return self.log(AuditEventType.EVALUATION, result.to_dict())

    def log_prompt_shown(self, result: GateResult) -> AuditEvent:
        return self.log(
            AuditEventType.PROMPT_SHOWN,
            {
                "command": result.command,
                "risk_tier": int(result.risk_tier),
                "decision": result.decision.value,
                "reason": result.reason,
            },
        )

    def log_human_decision(self, result: GateResult, choice: ApprovalChoice) -> AuditEvent:
        return self.log(
            AuditEventType.HUMAN_DECISION,
            {
                "command": result.command,
                "risk_tier": int(result.risk_tier),
                "choice": choice.value,
            },
        )

    def log_execution_result(
        self,
        command: str,
        exit_code: int | None,
        output: str = "",
        error: str = "",
        duration_ms: int = 0,
        timed_out: bool = False,
    ) -> AuditEvent:
        """Record an execution outcome; output fields are truncated."""
        return self.log(
            AuditEventType.EXECUTION_RESULT,
            {
                "command": command,
                "exit_code": exit_code,
                "output": truncate_output(output, self.max_output_length),
                "error": truncate_output(error, self.max_output_length),
                "duration_ms": duration_ms,
                "timed_out": timed_out,
            },
        )

    def log_rule_created(self, rule: Rule) -> AuditEvent:
        return self.log(AuditEventType.RULE_CREATED, {"rule": rule.to_dict()})

    def log_rule_deleted(self, rule_id: str) -> AuditEvent:
        return self.log(AuditEventType.RULE_DELETED, {"rule_id": rule_id})

    def clear(self) -> AuditEvent:
        """Truncate the log, then record that it was cleared."""
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "w", encoding="utf-8"):
                    pass
            except OSError as e:
                raise PersistenceError(f"Cannot clear audit log {self.path}: {e}", path=self.path) from e
        logger.info("audit_log_cleared", path=str(self.path))
        return self.log(AuditEventType.LOG_CLEARED, {"cleared_at": datetime.now().isoformat()})

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def iter_events(self) -> Iterator[AuditEvent]:
        """Replay all events in file order. Malformed lines are skipped."""
        if not self.path.exists():
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                for line_number, line in enumerate(f, 1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        yield AuditEvent.from_dict(json.loads(line))
                    except (json.JSONDecodeError, KeyError, ValueError) as e:
                        logger.warning("audit_line_skipped", line=line_number, error=str(e))
        except OSError as e:
            raise PersistenceError(f"Cannot read audit log {self.path}: {e}", path=self.path) from e

    def read_events(
        self,
        session_id: str | None = None,
        event_type: AuditEventType | None = None,
        limit: int | None = None,
    ) -> list[AuditEvent]:
        """Events, optionally filtered; ``limit`` keeps the most recent ones."""
        events = [
            event
            for event in self.iter_events()
            if (session_id is None or event.session_id == session_id)
            and (event_type is None or event.event_type is event_type)
        ]
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def export_json(self, session_id: str | None = None) -> str:
        """Export events as a JSON array."""
        return json.dumps([event.to_dict() for event in self.read_events(session_id)], indent=2, default=str)

    def export_csv(self, session_id: str | None = None) -> str:
        """Export events as CSV, one row per event."""
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS)
        writer.writeheader()
        for event in self.read_events(session_id):
            writer.writerow(event.to_row())
        return buffer.getvalue()

    def session_summary(self, session_id: str | None = None) -> dict[str, Any]:
        """Counts of decisions and choices for one session."""
        session_id = session_id or self.session_id
        events = self.read_events(session_id)
        decisions: dict[str, int] = {}
        choices: dict[str, int] = {}
        for event in events:
            if event.event_type is AuditEventType.EVALUATION:
                decision = event.payload.get("decision", "unknown")
                decisions[decision] = decisions.get(decision, 0) + 1
            elif event.event_type is AuditEventType.HUMAN_DECISION:
                choice = event.payload.get("choice", "unknown")
                choices[choice] = choices.get(choice, 0) + 1
        return {
            "session_id": session_id,
            "total_events": len(events),
            "decisions": decisions,
            "choices": choices,
        }
