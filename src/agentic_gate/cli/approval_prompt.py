"""Terminal rendering of gate results and the six-way approval prompt."""

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table

from agentic_gate.shell.models import ApprovalChoice, Decision, GateResult, RiskTier

DECISION_STYLES = {
    Decision.ALLOW: "green",
    Decision.PROMPT: "yellow",
    Decision.DENY: "red",
}

TIER_STYLES = {
    RiskTier.READ_ONLY: "green",
    RiskTier.WORKSPACE_WRITE: "cyan",
    RiskTier.SYSTEM: "yellow",
    RiskTier.DANGEROUS: "red",
}

# Menu order shown to the user
CHOICES: list[tuple[str, ApprovalChoice, str]] = [
    ("1", ApprovalChoice.APPROVE_ONCE, "Approve once"),
    ("2", ApprovalChoice.APPROVE_SESSION, "Approve for this session"),
    ("3", ApprovalChoice.ALWAYS_ALLOW, "Always allow"),
    ("4", ApprovalChoice.ALWAYS_PROMPT, "Always ask"),
    ("5", ApprovalChoice.ALWAYS_FORBID, "Always forbid"),
    ("6", ApprovalChoice.DENY, "Deny"),
]


def result_table(result: GateResult) -> Table:
    """Key/value table describing a gate result."""
    table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
    table.add_column("Key", style="bold")
    table.add_column("Value")

    style = DECISION_STYLES[result.decision]
    tier_style = TIER_STYLES[result.risk_tier]
    table.add_row("Command", escape(result.command))
    table.add_row("Decision", f"[{style}]{result.decision.value}[/{style}]")
    table.add_row("Risk tier", f"[{tier_style}]{int(result.risk_tier)} ({result.risk_tier.label})[/{tier_style}]")
    table.add_row("Reason", escape(result.reason))
    table.add_row("Directory", escape(result.cwd))

    if result.matched_rule_id:
        table.add_row("Rule", escape(result.matched_rule_id))
    if result.wrapper.is_wrapper:
        wrapper = result.wrapper
        label = wrapper.wrapper_type or "shell"
        if wrapper.is_complex:
            label += " (complex)"
        table.add_row("Wrapper", escape(label))
        if wrapper.embedded_script:
            table.add_row("Script", escape(wrapper.embedded_script))
    for effect in result.side_effects.paths:
        table.add_row(f"Path ({effect.operation.value})", escape(effect.path))
    if result.side_effects.domains:
        table.add_row("Domains", escape(", ".join(result.side_effects.domains)))
    if result.side_effects.ports:
        table.add_row("Ports", ", ".join(str(p) for p in result.side_effects.ports))
    for violation in result.violations:
        color = "red" if violation.is_hard else "yellow"
        table.add_row(f"[{color}]Violation[/{color}]", escape(violation.message))
    if result.justification:
        table.add_row("Justification", escape(result.justification))
    return table


def render_result(console: Console, result: GateResult, title: str = "Gate Decision") -> None:
    style = DECISION_STYLES[result.decision]
    console.print(Panel(result_table(result), title=f"[bold]{title}[/bold]", border_style=style))


def prompt_for_choice(console: Console, result: GateResult) -> ApprovalChoice:
    """Show a prompted command and ask for one of the six choices."""
    render_result(console, result, title="Approval Required")
    for key, _, label in CHOICES:
        console.print(f"  [bold]{key}[/bold]  {label}")

    answer = Prompt.ask("Choice", choices=[key for key, _, _ in CHOICES], default="6", console=console)
    return next(choice for key, choice, _ in CHOICES if key == answer)
