"""agentic-gate command line interface.

Evaluate proposed shell commands, run them through the guard, and
manage the rule store, audit log and workspace trust.
"""

import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from agentic_gate import __version__
from agentic_gate.cli.approval_prompt import prompt_for_choice, render_result
from agentic_gate.config import GateSettings
from agentic_gate.errors import PersistenceError
from agentic_gate.guard import CommandGuard
from agentic_gate.logging import configure_logging
from agentic_gate.persistence import RuleStore, WorkspaceTrustStore
from agentic_gate.shell.audit import AuditLogger
from agentic_gate.shell.gate import PermissionGate
from agentic_gate.shell.models import ApprovalChoice, GateResult, PatternElement, RuleAction, RuleScope
from agentic_gate.shell.sandbox import ExecutionSandbox


@dataclass
class CLIState:
    """Per-invocation state shared by subcommands."""

    settings: GateSettings

    def console(self) -> Console:
        return Console(highlight=False)

    def audit(self) -> AuditLogger:
        return AuditLogger(self.settings.audit_file, max_output_length=self.settings.max_output_length)

    def rule_store(self) -> RuleStore:
        return RuleStore(self.settings.rules_file, include_defaults=self.settings.load_policy().include_default_rules)

    def trust_store(self) -> WorkspaceTrustStore:
        return WorkspaceTrustStore(self.settings.trust_file)

    def gate(self) -> PermissionGate:
        return PermissionGate.from_settings(self.settings)


pass_state = click.make_pass_decorator(CLIState)


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _parse_pattern(tokens: tuple[str, ...]) -> list[PatternElement]:
    """Rule pattern from CLI arguments; ``a|b`` is a union position."""
    pattern: list[PatternElement] = []
    for token in tokens:
        alternatives = tuple(t for t in token.split("|") if t)
        pattern.append(alternatives if len(alternatives) > 1 else token)
    return pattern


@click.group()
@click.version_option(version=__version__, prog_name="agentic-gate")
@click.option("--workspace", type=click.Path(file_okay=False), default=None, help="Workspace root.")
@click.option("--data-dir", type=click.Path(file_okay=False), default=None,
              help="Directory holding rules, trust store and audit log.")
@click.option("--trust-level", type=click.Choice(["untrusted", "session", "trusted"]), default=None,
              help="Trust level when the trust store has no entry.")
@click.option("--network-policy", type=click.Choice(["off", "allowlist", "on"]), default=None,
              help="Network access policy.")
@click.option("--policy-file", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML file with policy tables.")
@click.option("--log-level", type=click.Choice(["debug", "info", "warning", "error"]), default=None)
@click.pass_context
def main(ctx, workspace, data_dir, trust_level, network_policy, policy_file, log_level):
    """Authorization gate for shell commands proposed by an agent.

    Every command is classified into a risk tier (0-3), checked against
    hard-deny patterns, workspace boundaries, network policy and rules,
    and answered with allow, prompt or deny.
    """
    overrides = {
        "workspace_root": workspace,
        "data_dir": data_dir,
        "trust_level": trust_level,
        "network_policy": network_policy,
        "policy_file": policy_file,
        "log_level": log_level,
    }
    settings = GateSettings(**{k: v for k, v in overrides.items() if v is not None})
    configure_logging(settings)
    ctx.obj = CLIState(settings=settings)


# ---------------------------------------------------------------------------
# Evaluation and execution
# ---------------------------------------------------------------------------


@main.command()
@click.argument("command")
@click.option("--cwd", default=None, help="Working directory, relative to the workspace root.")
@click.option("--json", "as_json", is_flag=True, help="Print the decision record as JSON.")
@click.option("--justification", default=None, help="Why the command is proposed.")
@pass_state
def evaluate(state: CLIState, command: str, cwd: str | None, as_json: bool, justification: str | None):
    """Evaluate COMMAND without running it."""
    gate = state.gate()
    result = gate.evaluate(command, cwd=cwd, justification=justification)

    try:
        state.audit().log_evaluation(result)
    except PersistenceError as e:
        click.echo(f"Warning: {e}", err=True)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        render_result(state.console(), result)


@main.command()
@click.argument("command")
@click.option("--cwd", default=None, help="Working directory, relative to the workspace root.")
@click.option("--yes-once", is_flag=True, help="Approve a prompted command once without asking.")
@click.option("--timeout", type=int, default=None, help="Execution timeout in seconds.")
@pass_state
def run(state: CLIState, command: str, cwd: str | None, yes_once: bool, timeout: int | None):
    """Evaluate COMMAND and run it if allowed or approved."""
    console = state.console()
    audit = state.audit()
    gate = state.gate()

    def approve(result: GateResult) -> ApprovalChoice:
        if yes_once:
            render_result(console, result, title="Approved Once")
            return ApprovalChoice.APPROVE_ONCE
        return prompt_for_choice(console, result)

    def report(error: PersistenceError) -> None:
        console.print(f"[bold red]Persistence failure:[/bold red] {escape(str(error))}")

    guard = CommandGuard(
        gate,
        audit=audit,
        sandbox=ExecutionSandbox(timeout_seconds=timeout or state.settings.execution_timeout_seconds),
        approval_handler=approve,
        on_persistence_error=report,
    )

    audit_ok = True
    try:
        audit.log_session_start(gate.environment.to_dict())
    except PersistenceError as e:
        report(e)
        audit_ok = False

    outcome = guard.run(command, cwd=cwd, on_line=lambda stream, line: click.echo(line, err=stream == "stderr"))

    if audit_ok:
        try:
            audit.log_session_end()
        except PersistenceError as e:
            report(e)

    if outcome.rule is not None:
        console.print(f"Created rule [bold]{outcome.rule.id}[/bold]: {escape(outcome.rule.describe_pattern())} "
                      f"-> {outcome.rule.action.value}")

    if not outcome.executed:
        if outcome.choice is None:
            render_result(console, outcome.result)
        click.echo(f"Not executed: {outcome.blocked_reason}", err=True)
        sys.exit(1)

    execution = outcome.execution
    if execution.timed_out:
        click.echo(execution.error.splitlines()[-1], err=True)
    sys.exit(execution.exit_code if execution.exit_code is not None else 1)


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------


@main.group()
def rules():
    """Manage allow / prompt / forbid rules."""


@rules.command("list")
@click.option("--scope", type=click.Choice([s.value for s in RuleScope]), default=None,
              help="Only list rules of this scope.")
@click.option("--json", "as_json", is_flag=True, help="Print rules as JSON.")
@pass_state
def rules_list(state: CLIState, scope: str | None, as_json: bool):
    """List rules."""
    try:
        listed = state.rule_store().list_rules(RuleScope(scope) if scope else None)
    except PersistenceError as e:
        _fail(str(e))

    if as_json:
        click.echo(json.dumps([rule.to_dict() for rule in listed], indent=2))
        return

    table = Table(title="Rules", padding=(0, 1))
    table.add_column("ID")
    table.add_column("Pattern")
    table.add_column("Action")
    table.add_column("Scope")
    table.add_column("Description")
    for rule in listed:
        table.add_row(rule.id, escape(rule.describe_pattern()), rule.action.value, rule.scope.value,
                      escape(rule.description))
    state.console().print(table)


@rules.command("add")
@click.argument("pattern", nargs=-1, required=True)
@click.option("--action", type=click.Choice([a.value for a in RuleAction]), required=True)
@click.option("--description", default="", help="Rule description.")
@pass_state
def rules_add(state: CLIState, pattern: tuple[str, ...], action: str, description: str):
    """Add a persistent rule matching the leading PATTERN tokens.

    Use a|b for a position that accepts either token.
    """
    try:
        rule = state.rule_store().add_rule(_parse_pattern(pattern), RuleAction(action), description)
        state.audit().log_rule_created(rule)
    except PersistenceError as e:
        _fail(str(e))
    click.echo(f"Added rule {rule.id}: {rule.describe_pattern()} -> {rule.action.value}")


@rules.command("remove")
@click.argument("rule_id")
@pass_state
def rules_remove(state: CLIState, rule_id: str):
    """Remove a persistent rule."""
    try:
        removed = state.rule_store().remove_rule(rule_id)
        if removed is None:
            _fail(f"No such rule: {rule_id}")
        state.audit().log_rule_deleted(rule_id)
    except PersistenceError as e:
        _fail(str(e))
    click.echo(f"Removed rule {rule_id}")


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@main.group()
def audit():
    """Inspect, export and clear the audit log."""


@audit.command("show")
@click.option("--session", "session_id", default=None, help="Only show events of this session.")
@click.option("--limit", type=int, default=50, show_default=True, help="Most recent events to show.")
@pass_state
def audit_show(state: CLIState, session_id: str | None, limit: int):
    """Show recent audit events."""
    try:
        events = state.audit().read_events(session_id=session_id, limit=limit)
    except PersistenceError as e:
        _fail(str(e))

    table = Table(title="Audit Log", padding=(0, 1))
    table.add_column("Time")
    table.add_column("Session")
    table.add_column("#", justify="right")
    table.add_column("Event")
    table.add_column("Details")
    for event in events:
        row = event.to_row()
        details = " ".join(
            f"{key}={row[key]}" for key in ("decision", "risk_tier", "choice") if row[key] != ""
        )
        if row["command"]:
            details = f"{row['command']} {details}".strip()
        table.add_row(event.timestamp[:19], event.session_id, str(event.sequence), event.event_type.value,
                      escape(details))
    state.console().print(table)


@audit.command("export")
@click.option("--format", "fmt", type=click.Choice(["json", "csv"]), default="json", show_default=True)
@click.option("--session", "session_id", default=None, help="Only export events of this session.")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None, help="Write to file.")
@pass_state
def audit_export(state: CLIState, fmt: str, session_id: str | None, output: str | None):
    """Export the audit log as JSON or CSV."""
    logger_ = state.audit()
    try:
        text = logger_.export_csv(session_id) if fmt == "csv" else logger_.export_json(session_id)
    except PersistenceError as e:
        _fail(str(e))

    if output:
        Path(output).write_text(text, encoding="utf-8")
        click.echo(f"Audit log written to {output}")
    else:
        click.echo(text)


@audit.command("clear")
@click.confirmation_option(prompt="Clear the audit log?")
@pass_state
def audit_clear(state: CLIState):
    """Truncate the audit log."""
    try:
        state.audit().clear()
    except PersistenceError as e:
        _fail(str(e))
    click.echo("Audit log cleared")


# ---------------------------------------------------------------------------
# Workspace trust
# ---------------------------------------------------------------------------


@main.group()
def trust():
    """Manage trusted workspaces."""


def _workspace_arg(state: CLIState, path: str | None) -> Path:
    return Path(path).expanduser().absolute() if path else state.settings.workspace_root


@trust.command("add")
@click.argument("path", required=False)
@pass_state
def trust_add(state: CLIState, path: str | None):
    """Trust PATH (default: the workspace root)."""
    workspace = _workspace_arg(state, path)
    try:
        added = state.trust_store().trust(workspace)
        state.audit().log_trust_decision(str(workspace), "trusted")
    except PersistenceError as e:
        _fail(str(e))
    click.echo(f"Trusted {workspace}" if added else f"Already trusted: {workspace}")


@trust.command("remove")
@click.argument("path", required=False)
@pass_state
def trust_remove(state: CLIState, path: str | None):
    """Stop trusting PATH (default: the workspace root)."""
    workspace = _workspace_arg(state, path)
    try:
        removed = state.trust_store().untrust(workspace)
        if removed:
            state.audit().log_trust_decision(str(workspace), "untrusted")
    except PersistenceError as e:
        _fail(str(e))
    if not removed:
        _fail(f"Not trusted: {workspace}")
    click.echo(f"Untrusted {workspace}")


@trust.command("list")
@pass_state
def trust_list(state: CLIState):
    """List trusted workspaces."""
    try:
        trusted = state.trust_store().list_trusted()
    except PersistenceError as e:
        _fail(str(e))
    if not trusted:
        click.echo("No trusted workspaces")
        return
    for workspace in trusted:
        click.echo(workspace)
