"""Tests for token-prefix rule matching."""

from agentic_gate.shell.models import Rule, RuleAction, RuleScope
from agentic_gate.shell.rules import DEFAULT_RULES, RulesEngine, matches_pattern, most_restrictive, new_rule_id


def rule(rule_id: str, pattern, action: RuleAction) -> Rule:
    return Rule.create(rule_id, pattern, action)


class TestMatchesPattern:
    """Tests for prefix matching."""

    def test_prefix(self):
        assert matches_pattern(("git", "status", "-s"), ("git", "status"))

    def test_case_insensitive(self):
        assert matches_pattern(("GIT", "Status"), ("git", "status"))

    def test_union_element(self):
        pattern = (("npm", "pnpm"), "install")

        assert matches_pattern(("pnpm", "install"), pattern)
        assert not matches_pattern(("yarn", "install"), pattern)

    def test_pattern_longer_than_tokens(self):
        assert not matches_pattern(("git",), ("git", "status"))

    def test_empty_pattern_never_matches(self):
        assert not matches_pattern(("ls",), ())


class TestRulesEngine:
    """Tests for evaluation and restriction ordering."""

    def test_most_restrictive_wins(self):
        rules = [
            rule("a", ["git"], RuleAction.ALLOW),
            rule("b", ["git", "push"], RuleAction.FORBID),
            rule("c", ["git", "push"], RuleAction.PROMPT),
        ]

        evaluation = RulesEngine().evaluate(("git", "push"), rules)

        assert [r.id for r in evaluation.matched] == ["a", "b", "c"]
        assert evaluation.action is RuleAction.FORBID
        assert evaluation.most_restrictive.id == "b"

    def test_earliest_wins_ties(self):
        rules = [rule("first", ["ls"], RuleAction.PROMPT), rule("second", ["ls"], RuleAction.PROMPT)]

        assert most_restrictive(rules).id == "first"

    def test_no_match(self):
        evaluation = RulesEngine().evaluate(("make",), DEFAULT_RULES)

        assert evaluation.matched == ()
        assert evaluation.action is None

    def test_default_git_read(self):
        evaluation = RulesEngine().evaluate(("git", "status"), DEFAULT_RULES)

        assert evaluation.most_restrictive.id == "default-git-read"
        assert evaluation.action is RuleAction.ALLOW

    def test_default_force_push_is_forbidden(self):
        evaluation = RulesEngine().evaluate(("git", "push", "--force"), DEFAULT_RULES)

        assert evaluation.action is RuleAction.FORBID

    def test_compound_allow_needs_every_unit(self):
        engine = RulesEngine()

        evaluation = engine.evaluate_all([("ls",), ("make",)], DEFAULT_RULES)

        assert evaluation.most_restrictive is None
        assert [r.id for r in evaluation.matched] == ["default-ls"]

    def test_compound_all_allowed(self):
        evaluation = RulesEngine().evaluate_all([("ls",), ("pwd",)], DEFAULT_RULES)

        assert evaluation.action is RuleAction.ALLOW

    def test_compound_forbid_wins(self):
        evaluation = RulesEngine().evaluate_all([("ls",), ("sudo", "ls"), ("make",)], DEFAULT_RULES)

        assert evaluation.action is RuleAction.FORBID
        assert evaluation.most_restrictive.id == "default-sudo"

    def test_compound_empty(self):
        assert RulesEngine().evaluate_all([], DEFAULT_RULES).most_restrictive is None


class TestRuleModel:
    """Tests for rule serialization and identifiers."""

    def test_dict_roundtrip_with_union(self):
        original = Rule.create("user-1", [("npm", "pnpm"), "install"], RuleAction.PROMPT, "Install")

        restored = Rule.from_dict(original.to_dict())

        assert restored == original
        assert restored.describe_pattern() == "npm|pnpm install"

    def test_new_rule_id_prefix(self):
        assert new_rule_id(RuleScope.SESSION).startswith("session-")
        assert new_rule_id(RuleScope.PERSISTENT).startswith("user-")

    def test_default_rules_are_default_scope(self):
        assert all(r.scope is RuleScope.DEFAULT for r in DEFAULT_RULES)
        assert len({r.id for r in DEFAULT_RULES}) == len(DEFAULT_RULES)
