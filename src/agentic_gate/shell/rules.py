"""Token-prefix rules engine.

Rules match the first N tokens of a command, case-insensitively. Each
pattern position is either a token or a union of alternatives. When
several rules match, the most restrictive action wins
(forbid > prompt > allow).
"""

import uuid
from typing import Iterable, Sequence

from agentic_gate.shell.models import PatternElement, Rule, RuleAction, RuleEvaluation, RuleScope

_GIT_READS = ("status", "diff", "log", "show")

# (id, pattern, action, description)
DEFAULT_RULE_TABLE: list[tuple[str, list[PatternElement], RuleAction, str]] = [
    ("default-ls", ["ls"], RuleAction.ALLOW, "List directory"),
    ("default-dir", ["dir"], RuleAction.ALLOW, "List directory (Windows)"),
    ("default-cat", ["cat"], RuleAction.ALLOW, "View file"),
    ("default-type", ["type"], RuleAction.ALLOW, "View file (Windows)"),
    ("default-pwd", ["pwd"], RuleAction.ALLOW, "Print working directory"),
    ("default-echo", ["echo"], RuleAction.ALLOW, "Print text"),
    ("default-head-tail", [("head", "tail")], RuleAction.ALLOW, "View part of a file"),
    ("default-find", ["find"], RuleAction.ALLOW, "Find files"),
    ("default-grep", [("grep", "rg", "findstr")], RuleAction.ALLOW, "Search in files"),
    ("default-git-read", ["git", _GIT_READS], RuleAction.ALLOW, "Inspect git repository"),
    ("default-touch", ["touch"], RuleAction.PROMPT, "Create file"),
    ("default-mkdir", ["mkdir"], RuleAction.PROMPT, "Create directory"),
    ("default-git-add", ["git", "add"], RuleAction.PROMPT, "Git add"),
    ("default-git-commit", ["git", "commit"], RuleAction.PROMPT, "Git commit"),
    ("default-npm-install", [("npm", "pnpm"), ("install", "i", "add")], RuleAction.PROMPT, "Install npm packages"),
    ("default-yarn", ["yarn", ("add", "install")], RuleAction.PROMPT, "Install yarn packages"),
    ("default-pip-install", [("pip", "pip3"), "install"], RuleAction.PROMPT, "Install Python packages"),
    ("default-http", [("curl", "wget")], RuleAction.PROMPT, "HTTP request"),
    ("default-sudo", ["sudo"], RuleAction.FORBID, "Elevated privileges"),
    ("default-rm-rf", ["rm", ("-rf", "-fr")], RuleAction.FORBID, "Recursive force delete"),
    ("default-chmod-777", ["chmod", "777"], RuleAction.FORBID, "World-writable permissions"),
    ("default-git-force-push", ["git", "push", ("--force", "-f")], RuleAction.FORBID, "Force push"),
]

DEFAULT_RULES: tuple[Rule, ...] = tuple(
    Rule(
        id=rule_id,
        pattern=tuple(pattern),
        action=action,
        description=description,
        scope=RuleScope.DEFAULT,
    )
    for rule_id, pattern, action, description in DEFAULT_RULE_TABLE
)


def new_rule_id(scope: RuleScope) -> str:
    prefix = "session" if scope is RuleScope.SESSION else "user"
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def _matches_position(token: str, element: PatternElement) -> bool:
    token = token.lower()
    if isinstance(element, tuple):
        return any(token == alternative.lower() for alternative in element)
    return token == element.lower()


def matches_pattern(tokens: Sequence[str], pattern: Sequence[PatternElement]) -> bool:
    """Prefix match of a token vector against a rule pattern.

    An empty pattern never matches.
    """
    if not pattern or len(tokens) < len(pattern):
        return False
    return all(_matches_position(token, element) for token, element in zip(tokens, pattern))


def most_restrictive(rules: Iterable[Rule]) -> Rule | None:
    """The rule with the most restrictive action; earliest wins ties."""
    best: Rule | None = None
    for rule in rules:
        if best is None or rule.action.restriction > best.action.restriction:
            best = rule
    return best


class RulesEngine:
    """Evaluates token vectors against rule lists."""

    def evaluate(self, tokens: Sequence[str], rules: Iterable[Rule]) -> RuleEvaluation:
        """Match one token vector against every rule.

        Returns:
            RuleEvaluation with all matched rules and the most restrictive one.
        """
        matched = tuple(rule for rule in rules if matches_pattern(tokens, rule.pattern))
        return RuleEvaluation(matched=matched, most_restrictive=most_restrictive(matched))

    def evaluate_all(self, units: Sequence[Sequence[str]], rules: Sequence[Rule]) -> RuleEvaluation:
        """Evaluate a compound command made of several simple commands.

        The most restrictive rule over all units wins, except that an
        allow is only reported when every unit matched some rule: one
        allowed command must not vouch for the others in a list.
        """
        if not units:
            return RuleEvaluation()

        evaluations = [self.evaluate(unit, rules) for unit in units]
        matched = tuple(dict.fromkeys(rule for ev in evaluations for rule in ev.matched))
        winner = most_restrictive(ev.most_restrictive for ev in evaluations if ev.most_restrictive)

        if winner is not None and winner.action is RuleAction.ALLOW:
            if any(ev.most_restrictive is None for ev in evaluations):
                winner = None

        return RuleEvaluation(matched=matched, most_restrictive=winner)
