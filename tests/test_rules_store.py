"""Tests for the rule store."""

import json
from pathlib import Path

import pytest

from agentic_gate.errors import PersistenceError
from agentic_gate.persistence import RuleStore
from agentic_gate.shell.models import Rule, RuleAction, RuleScope
from agentic_gate.shell.rules import DEFAULT_RULES


@pytest.fixture
def rules_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "rules.json"


class TestRuleStore:
    """Tests for the three rule pools."""

    def test_defaults_only(self):
        store = RuleStore()

        assert store.snapshot() == tuple(DEFAULT_RULES)
        assert store.list_rules(RuleScope.PERSISTENT) == []

    def test_defaults_can_be_disabled(self):
        assert RuleStore(include_defaults=False).snapshot() == ()

    def test_add_rule_persists(self, rules_file):
        store = RuleStore(rules_file)

        rule = store.add_rule(["make", "deploy"], RuleAction.FORBID, "No deploys")

        data = json.loads(rules_file.read_text())
        assert [r["id"] for r in data["rules"]] == [rule.id]
        assert RuleStore(rules_file).list_rules(RuleScope.PERSISTENT) == [rule]

    def test_session_rules_are_not_persisted(self, rules_file):
        store = RuleStore(rules_file)

        rule = store.add_session_rule(["npm", "test"], RuleAction.ALLOW)

        assert rule.scope is RuleScope.SESSION
        assert store.list_rules(RuleScope.SESSION) == [rule]
        assert not rules_file.exists()
        assert RuleStore(rules_file).list_rules(RuleScope.SESSION) == []

    def test_snapshot_order(self):
        store = RuleStore()
        session = store.add_session_rule(["b"], RuleAction.ALLOW)
        persistent = store.add_rule(["a"], RuleAction.ALLOW)

        assert store.snapshot()[-2:] == (persistent, session)

    def test_remove_rule(self, rules_file):
        store = RuleStore(rules_file)
        persistent = store.add_rule(["make"], RuleAction.PROMPT)
        session = store.add_session_rule(["make"], RuleAction.ALLOW)

        assert store.remove_rule(session.id) == session
        assert store.remove_rule(persistent.id) == persistent
        assert store.remove_rule(persistent.id) is None
        assert json.loads(rules_file.read_text()) == {"rules": []}

    def test_default_rules_cannot_be_removed(self):
        store = RuleStore()

        assert store.remove_rule(DEFAULT_RULES[0].id) is None
        assert store.snapshot() == tuple(DEFAULT_RULES)

    def test_clear_session_rules(self):
        store = RuleStore()
        store.add_session_rule(["a"], RuleAction.ALLOW)
        store.add_session_rule(["b"], RuleAction.ALLOW)

        assert store.clear_session_rules() == 2
        assert store.list_rules(RuleScope.SESSION) == []

    def test_query_sees_new_rules(self):
        store = RuleStore(include_defaults=False)
        assert store.query(["make", "all"]).action is None

        store.add_rule(["make"], RuleAction.FORBID)

        assert store.query(["make", "all"]).action is RuleAction.FORBID


class TestRulesFile:
    """Tests for reading the rules file."""

    def test_malformed_entries_are_skipped(self, rules_file):
        good = Rule.create("user-good", ["make"], RuleAction.ALLOW, "", RuleScope.PERSISTENT)
        rules_file.parent.mkdir(parents=True)
        rules_file.write_text(json.dumps({"rules": [{"id": "broken"}, good.to_dict()]}))

        assert [r.id for r in RuleStore(rules_file).load()] == ["user-good"]

    def test_rewrites_keep_entries_that_do_not_parse(self, rules_file):
        hand_edited = {"id": "hand", "action": "forbidd", "pattern": ["make"]}
        rules_file.parent.mkdir(parents=True)
        rules_file.write_text(json.dumps({"rules": [hand_edited]}))
        store = RuleStore(rules_file)

        added = store.add_rule(["npm", "test"], RuleAction.ALLOW)

        entries = json.loads(rules_file.read_text())["rules"]
        assert entries[0] == hand_edited
        assert entries[1]["id"] == added.id
        assert [r.id for r in store.load()] == [added.id]

        assert store.remove_rule(added.id).id == added.id
        assert json.loads(rules_file.read_text())["rules"] == [hand_edited]

    def test_unparseable_entry_cannot_be_removed_by_id(self, rules_file):
        rules_file.parent.mkdir(parents=True)
        rules_file.write_text(json.dumps({"rules": [{"id": "hand", "pattern": []}]}))

        assert RuleStore(rules_file).remove_rule("hand") is None
        assert json.loads(rules_file.read_text())["rules"] == [{"id": "hand", "pattern": []}]

    def test_loaded_rules_are_persistent(self, rules_file):
        session = Rule.create("session-x", ["make"], RuleAction.ALLOW, "", RuleScope.SESSION)
        rules_file.parent.mkdir(parents=True)
        rules_file.write_text(json.dumps({"rules": [session.to_dict()]}))

        (loaded,) = RuleStore(rules_file).load()

        assert loaded.scope is RuleScope.PERSISTENT

    def test_invalid_json_raises(self, rules_file):
        rules_file.parent.mkdir(parents=True)
        rules_file.write_text("{not json")

        with pytest.raises(PersistenceError):
            RuleStore(rules_file).load()

    def test_non_list_rules_raises(self, rules_file):
        rules_file.parent.mkdir(parents=True)
        rules_file.write_text(json.dumps({"rules": "nope"}))

        with pytest.raises(PersistenceError, match="Malformed rules file"):
            RuleStore(rules_file).snapshot()
