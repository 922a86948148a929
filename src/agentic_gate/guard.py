"""Guarded command execution.

CommandGuard is the caller side of the gate: it evaluates a command,
asks a human when the gate says ``prompt``, turns the human's choice
into rules, executes what was approved and records every step in the
audit log.

Persistence failures (rule store or audit log) never stop a command
that was already decided. They are logged and reported to the operator
through ``on_persistence_error``.
"""

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from agentic_gate.errors import ApprovalCancelledError, PersistenceError
from agentic_gate.hitl.approval import ApprovalManager
from agentic_gate.logging import get_logger, log_context
from agentic_gate.shell.audit import AuditLogger
from agentic_gate.shell.gate import PermissionGate
from agentic_gate.shell.models import ApprovalChoice, Decision, GateResult, Rule
from agentic_gate.shell.sandbox import ExecutionResult, ExecutionSandbox, LineCallback

logger = get_logger(__name__)

ApprovalHandler = Callable[[GateResult], ApprovalChoice]
PersistenceErrorHandler = Callable[[PersistenceError], None]


@dataclass
class GuardOutcome:
    """What happened to one proposed command.

    Attributes:
        result: The gate's decision record.
        choice: The human's choice, when the command was prompted.
        rule: The rule created from the choice, if any.
        execution: Execution result, None when the command did not run.
        cancelled: Whether a pending prompt was cancelled.
    """

    result: GateResult
    choice: ApprovalChoice | None = None
    rule: Rule | None = None
    execution: ExecutionResult | None = None
    cancelled: bool = False

    @property
    def executed(self) -> bool:
        return self.execution is not None

    @property
    def blocked_reason(self) -> str | None:
        """Why the command did not run, None if it ran."""
        if self.executed:
            return None
        if self.cancelled:
            return "Approval cancelled"
        if self.choice is not None:
            return f"Rejected by user ({self.choice.value})"
        return self.result.reason


class CommandGuard:
    """Evaluate, approve, execute and audit proposed commands.

    Example:
        guard = CommandGuard(gate, audit, approval_handler=ask_in_terminal)
        outcome = guard.run("npm install lodash")
        if outcome.executed:
            print(outcome.execution.output)
    """

    def __init__(
        self,
        gate: PermissionGate,
        audit: AuditLogger | None = None,
        sandbox: ExecutionSandbox | None = None,
        approval_handler: ApprovalHandler | None = None,
        approval_manager: ApprovalManager | None = None,
        approval_timeout: float | None = None,
        on_persistence_error: PersistenceErrorHandler | None = None,
    ):
        """Initialize the guard.

        Args:
            gate: Permission gate used for every decision.
            audit: Audit log; None disables auditing.
            sandbox: Executor for approved commands.
            approval_handler: Asks a human synchronously. Takes precedence
                over ``approval_manager``.
            approval_manager: Pending-request registry a front end answers
                from another thread.
            approval_timeout: Seconds to wait on ``approval_manager``.
            on_persistence_error: Called when the rule store or audit log
                could not be written.
        """
        self.gate = gate
        self.audit = audit
        self.sandbox = sandbox or ExecutionSandbox()
        self.approval_handler = approval_handler
        self.approval_manager = approval_manager
        self.approval_timeout = approval_timeout
        self.on_persistence_error = on_persistence_error

    def run(
        self,
        command: str,
        cwd: str | Path | None = None,
        justification: str | None = None,
        on_line: LineCallback | None = None,
    ) -> GuardOutcome:
        """Evaluate a command and execute it if allowed or approved.

        Log records written meanwhile carry the audit session and a
        per-command id.
        """
        session_id = self.audit.session_id if self.audit is not None else None
        with log_context(session_id=session_id, command_id=uuid.uuid4().hex[:8]):
            return self._run(command, cwd, justification, on_line)

    def _run(
        self,
        command: str,
        cwd: str | Path | None,
        justification: str | None,
        on_line: LineCallback | None,
    ) -> GuardOutcome:
        result = self.gate.evaluate(command, cwd=cwd, justification=justification)
        self._audit(lambda audit: audit.log_evaluation(result))

        if result.decision is Decision.DENY:
            logger.info("command_denied", reason=result.reason, tier=int(result.risk_tier))
            return GuardOutcome(result=result)

        outcome = GuardOutcome(result=result)
        if result.decision is Decision.PROMPT:
            self._audit(lambda audit: audit.log_prompt_shown(result))
            try:
                choice = self._ask(result)
            except ApprovalCancelledError:
                logger.info("approval_cancelled", command=command[:200])
                outcome.cancelled = True
                return outcome

            outcome.choice = choice
            self._audit(lambda audit: audit.log_human_decision(result, choice))
            outcome.rule = self._record_choice(result, choice)
            if not choice.permits_execution:
                return outcome

        outcome.execution = self.sandbox.execute(command, cwd=result.cwd, on_line=on_line)
        execution = outcome.execution
        self._audit(
            lambda audit: audit.log_execution_result(
                command,
                execution.exit_code,
                output=execution.output,
                error=execution.error,
                duration_ms=execution.duration_ms,
                timed_out=execution.timed_out,
            )
        )
        return outcome

    def _ask(self, result: GateResult) -> ApprovalChoice:
        if self.approval_handler is not None:
            return self.approval_handler(result)
        if self.approval_manager is not None:
            request_id = self.approval_manager.request(result)
            return self.approval_manager.wait(request_id, timeout=self.approval_timeout)
        # Nobody to ask
        return ApprovalChoice.DENY

    def _record_choice(self, result: GateResult, choice: ApprovalChoice) -> Rule | None:
        try:
            rule = self.gate.record_choice(result, choice)
        except PersistenceError as e:
            self._report(e)
            return None
        if rule is not None:
            self._audit(lambda audit: audit.log_rule_created(rule))
        return rule

    def _audit(self, write: Callable[[AuditLogger], object]) -> None:
        if self.audit is None:
            return
        try:
            write(self.audit)
        except PersistenceError as e:
            self._report(e)

    def _report(self, error: PersistenceError) -> None:
        logger.error("persistence_failed", error=str(error), path=str(error.path) if error.path else None)
        if self.on_persistence_error is not None:
            self.on_persistence_error(error)
