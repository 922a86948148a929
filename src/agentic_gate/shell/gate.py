"""Permission gate.

The single checkpoint every proposed command passes through. Fuses the
risk tier, hard and promptable violations, workspace trust and the
rule set into one decision, first match wins:

1. hard violation -> deny
2. forbid rule -> deny
3. untrusted workspace and tier above 0 -> prompt
4. promptable violation -> prompt
5. allow rule and tier <= 1 -> allow
6. otherwise -> prompt

Evaluation has no side effects and never raises; internal failures
degrade to prompt (or deny, when a hard-deny pattern matches).
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from agentic_gate.config import GateSettings, get_settings
from agentic_gate.environment import ExecutionEnvironment, detect_environment
from agentic_gate.errors import PersistenceError
from agentic_gate.logging import get_logger
from agentic_gate.persistence.rules_store import RuleStore
from agentic_gate.persistence.trust_store import WorkspaceTrustStore
from agentic_gate.shell.classifier import RiskClassifier
from agentic_gate.shell.config import GatePolicy
from agentic_gate.shell.models import (
    ApprovalChoice,
    Decision,
    GateResult,
    NetworkPolicy,
    RiskTier,
    Rule,
    RuleAction,
    RuleEvaluation,
    RuleScope,
    SideEffects,
    Violation,
    ViolationSeverity,
)
from agentic_gate.shell.path_analyzer import PathAnalyzer
from agentic_gate.shell.rules import RulesEngine
from agentic_gate.shell.side_effects import SideEffectExtractor
from agentic_gate.shell.tokenizer import CommandTokenizer, effective_tokens
from agentic_gate.shell.wrappers import ShellWrapperDetector

logger = get_logger(__name__)

# Number of leading tokens a rule created from a prompt choice matches
RULE_PATTERN_LENGTH = 2

_TIER_DESCRIPTIONS = {
    RiskTier.READ_ONLY: "Read-only",
    RiskTier.WORKSPACE_WRITE: "Workspace modification",
    RiskTier.SYSTEM: "System/package operation",
    RiskTier.DANGEROUS: "Potentially dangerous",
}

UNTRUSTED_REASON = "Workspace is untrusted. Trust this folder to allow file writes and command execution."


def describe_tier(tier: RiskTier, tokens: Sequence[str]) -> str:
    """Human-readable reason for a tier-based prompt."""
    program = tokens[0] if tokens else "unknown"
    return f"{_TIER_DESCRIPTIONS[tier]}: {program}"


def validate_network(
    domains: Sequence[str],
    policy: NetworkPolicy,
    allowed_domains: Sequence[str],
) -> list[Violation]:
    """Promptable violations for network access the policy does not permit.

    Under ``allowlist`` a domain is allowed when it equals an allowed
    domain or is a subdomain of one.
    """
    if policy is NetworkPolicy.ON or not domains:
        return []

    if policy is NetworkPolicy.OFF:
        return [
            Violation(
                message=f"Network access requested: {', '.join(domains)}",
                severity=ViolationSeverity.PROMPTABLE,
            )
        ]

    allowed = [d.lower().lstrip(".") for d in allowed_domains]
    violations = []
    for domain in domains:
        domain = domain.lower()
        if not any(domain == a or domain.endswith("." + a) for a in allowed):
            violations.append(
                Violation(message=f"Domain not in allowlist: {domain}", severity=ViolationSeverity.PROMPTABLE)
            )
    return violations


@dataclass(frozen=True)
class RuleProposal:
    """A rule to create in response to a human choice."""

    pattern: tuple[str, ...]
    action: RuleAction
    scope: RuleScope
    description: str


_CHOICE_RULES = {
    ApprovalChoice.APPROVE_SESSION: (RuleAction.ALLOW, RuleScope.SESSION),
    ApprovalChoice.ALWAYS_ALLOW: (RuleAction.ALLOW, RuleScope.PERSISTENT),
    ApprovalChoice.ALWAYS_PROMPT: (RuleAction.PROMPT, RuleScope.PERSISTENT),
    ApprovalChoice.ALWAYS_FORBID: (RuleAction.FORBID, RuleScope.PERSISTENT),
}


class PermissionGate:
    """Evaluates proposed commands.

    Example:
        gate = PermissionGate.from_settings()
        result = gate.evaluate("npm install lodash")
        if result.decision is Decision.PROMPT:
            choice = ask_human(result)
            gate.record_choice(result, choice)
    """

    def __init__(
        self,
        environment: ExecutionEnvironment,
        rule_store: RuleStore | None = None,
        policy: GatePolicy | None = None,
    ):
        self.policy = policy or GatePolicy()
        self.environment = environment
        self.rule_store = rule_store or RuleStore(include_defaults=self.policy.include_default_rules)

        self._tokenizer = CommandTokenizer()
        self._detector = ShellWrapperDetector(self.policy)
        self._classifier = RiskClassifier(self.policy, self._tokenizer, self._detector)
        self._extractor = SideEffectExtractor(self.policy, self._tokenizer, self._detector)
        self._rules = RulesEngine()

    @classmethod
    def from_settings(
        cls,
        settings: GateSettings | None = None,
        cwd: str | Path | None = None,
    ) -> "PermissionGate":
        """Build a gate wired to the configured stores and environment."""
        settings = settings or get_settings()
        policy = settings.load_policy()
        environment = detect_environment(settings, WorkspaceTrustStore(settings.trust_file), cwd=cwd)
        rule_store = RuleStore(settings.rules_file, include_defaults=policy.include_default_rules)
        return cls(environment, rule_store, policy)

    @property
    def classifier(self) -> RiskClassifier:
        return self._classifier

    @property
    def extractor(self) -> SideEffectExtractor:
        return self._extractor

    def update_environment(self, environment: ExecutionEnvironment) -> None:
        """Swap the environment, e.g. after the workspace was trusted."""
        self.environment = environment

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        command: str,
        cwd: str | Path | None = None,
        justification: str | None = None,
    ) -> GateResult:
        """Evaluate a proposed command.

        Args:
            command: Raw command line.
            cwd: Working directory; relative values resolve against the
                environment's cwd.
            justification: Optional caller-supplied reason, carried through.

        Returns:
            The immutable decision record.
        """
        effective_cwd = self._resolve_cwd(cwd)
        try:
            result = self._evaluate(command, effective_cwd, justification)
        except Exception as e:
            logger.error("evaluation_failed", command=command[:200], error=str(e), exc_info=True)
            result = self._fallback_result(command, effective_cwd, justification, e)

        logger.debug(
            "command_evaluated",
            decision=result.decision.value,
            tier=int(result.risk_tier),
            rule_id=result.matched_rule_id,
            violations=len(result.violations),
        )
        return result

    def _resolve_cwd(self, cwd: str | Path | None) -> Path:
        if cwd is None:
            return self.environment.cwd
        return Path(os.path.join(self.environment.cwd, os.path.expanduser(os.fspath(cwd))))

    def _evaluate(self, command: str, cwd: Path, justification: str | None) -> GateResult:
        parsed = self._tokenizer.tokenize(command)
        tier = self._classifier.classify(command)
        side_effects = self._extractor.extract(command)
        wrapper = self._detector.detect(effective_tokens(parsed.tokens))

        analyzer = PathAnalyzer(self.environment.workspace_root)
        violations: list[Violation] = list(self._classifier.hard_violations(command))
        cwd_violation = analyzer.validate_cwd(cwd)
        if cwd_violation is not None:
            violations.append(cwd_violation)
        violations.extend(analyzer.validate_paths(side_effects.paths, cwd))
        violations.extend(
            validate_network(side_effects.domains, self.environment.network_policy, self.environment.allowed_domains)
        )

        try:
            rule_eval = self.evaluate_rules(command)
        except PersistenceError as e:
            logger.error("rule_store_unavailable", error=str(e))
            violations.append(
                Violation(message=f"Rule store unavailable: {e}", severity=ViolationSeverity.PROMPTABLE)
            )
            rule_eval = RuleEvaluation()

        decision, reason = self._fuse(tier, parsed.tokens, violations, rule_eval)
        if reason == UNTRUSTED_REASON:
            violations.append(Violation(message="Workspace not trusted", severity=ViolationSeverity.PROMPTABLE))

        return GateResult(
            decision=decision,
            risk_tier=tier,
            command=command,
            cwd=str(cwd),
            tokens=parsed.tokens,
            side_effects=side_effects,
            violations=tuple(violations),
            reason=reason,
            matched_rule_id=rule_eval.most_restrictive.id if rule_eval.most_restrictive else None,
            wrapper=wrapper,
            justification=justification,
        )

    def _fuse(
        self,
        tier: RiskTier,
        tokens: Sequence[str],
        violations: list[Violation],
        rule_eval: RuleEvaluation,
    ) -> tuple[Decision, str]:
        hard = next((v for v in violations if v.is_hard), None)
        if hard is not None:
            return Decision.DENY, hard.message

        rule = rule_eval.most_restrictive
        if rule is not None and rule.action is RuleAction.FORBID:
            return Decision.DENY, rule.description or "Forbidden by rule"

        if not self.environment.is_trusted and tier > RiskTier.READ_ONLY:
            return Decision.PROMPT, UNTRUSTED_REASON

        promptable = next((v for v in violations if not v.is_hard), None)
        if promptable is not None:
            return Decision.PROMPT, promptable.message

        if rule is not None and rule.action is RuleAction.ALLOW and tier <= RiskTier.WORKSPACE_WRITE:
            return Decision.ALLOW, rule.description or "Allowed by rule"

        return Decision.PROMPT, describe_tier(tier, tokens)

    def _fallback_result(
        self,
        command: str,
        cwd: Path,
        justification: str | None,
        error: Exception,
    ) -> GateResult:
        """Most conservative result when evaluation itself failed."""
        try:
            violations = self._classifier.hard_violations(command)
        except Exception:
            logger.error("hard_deny_check_failed", command=command[:200], exc_info=True)
            violations = []

        violations.append(
            Violation(message=f"Internal evaluation error: {error}", severity=ViolationSeverity.PROMPTABLE)
        )
        decision = Decision.DENY if any(v.is_hard for v in violations) else Decision.PROMPT
        return GateResult(
            decision=decision,
            risk_tier=RiskTier.DANGEROUS,
            command=command,
            cwd=str(cwd),
            tokens=(),
            side_effects=SideEffects(),
            violations=tuple(violations),
            reason=violations[0].message,
            justification=justification,
        )

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def rule_units(self, command: str, depth: int = 0) -> list[tuple[str, ...]]:
        """Token vectors of every simple command a rule must vouch for.

        Top-level list and pipeline segments plus command-substitution
        bodies, with leading assignments and prefix programs removed.
        """
        units: list[tuple[str, ...]] = []
        for segment in self._tokenizer.split_segments(command):
            tokens = effective_tokens(self._tokenizer.tokenize(segment).tokens)
            if tokens:
                units.append(tokens)
        if depth < self.policy.max_wrapper_depth:
            for body in self._tokenizer.extract_substitutions(command):
                units.extend(self.rule_units(body, depth + 1))
        return units

    def evaluate_rules(self, command: str) -> RuleEvaluation:
        """Evaluate a command against the current rule snapshot.

        Raises:
            PersistenceError: If the rule store cannot be read.
        """
        return self._rules.evaluate_all(self.rule_units(command), self.rule_store.snapshot())

    def propose_rule(self, result: GateResult, choice: ApprovalChoice) -> RuleProposal | None:
        """The rule a human choice asks for, None for one-off choices.

        Rules match the first two tokens of the command (program and
        subcommand) so they stay robust to argument order.
        """
        mapping = _CHOICE_RULES.get(choice)
        if mapping is None:
            return None

        units = self.rule_units(result.command)
        tokens = units[0] if units else effective_tokens(result.tokens)
        if not tokens:
            return None

        action, scope = mapping
        pattern = tuple(tokens[:RULE_PATTERN_LENGTH])
        description = f"{choice.value.replace('_', ' ').capitalize()}: {' '.join(pattern)}"
        return RuleProposal(pattern=pattern, action=action, scope=scope, description=description)

    def record_choice(self, result: GateResult, choice: ApprovalChoice) -> Rule | None:
        """Create the rule a human choice asks for.

        Returns:
            The created rule, or None for approve-once and deny.

        Raises:
            PersistenceError: If a persistent rule cannot be saved.
        """
        proposal = self.propose_rule(result, choice)
        if proposal is None:
            return None
        if proposal.scope is RuleScope.SESSION:
            return self.rule_store.add_session_rule(proposal.pattern, proposal.action, proposal.description)
        return self.rule_store.add_rule(proposal.pattern, proposal.action, proposal.description)
