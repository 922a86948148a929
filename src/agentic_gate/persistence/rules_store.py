"""Rule store.

Holds the three rule pools the gate consults:
- default rules (built in, never persisted)
- persistent rules, stored as ``{"rules": [...]}`` JSON
- session rules, kept in memory and discarded at process end

The gate only reads snapshots; mutations are serialized by a lock and
are visible to the next snapshot.
"""

import threading
from pathlib import Path
from typing import Sequence

from agentic_gate.errors import PersistenceError
from agentic_gate.logging import get_logger
from agentic_gate.persistence._utils import atomic_write_json, read_json
from agentic_gate.shell.models import PatternElement, Rule, RuleAction, RuleEvaluation, RuleScope
from agentic_gate.shell.rules import DEFAULT_RULES, RulesEngine, new_rule_id

logger = get_logger(__name__)


class RuleStore:
    """Default, persistent and session rule pools.

    Example:
        store = RuleStore(settings.rules_file)
        store.add_rule(["npm", "install"], RuleAction.ALLOW)
        store.query(["npm", "install", "lodash"]).action  # RuleAction.ALLOW
    """

    def __init__(
        self,
        path: Path | None = None,
        include_defaults: bool = True,
        engine: RulesEngine | None = None,
    ):
        """Initialize the store.

        Args:
            path: JSON file for persistent rules. None keeps them in memory.
            include_defaults: Whether the built-in rule pool is active.
            engine: Rules engine used by query().
        """
        self.path = path
        self.include_defaults = include_defaults
        self._engine = engine or RulesEngine()
        self._lock = threading.Lock()
        self._memory_rules: list[Rule] = []
        self._session_rules: list[Rule] = []

    def _document(self) -> dict:
        """The rules file as ``{"rules": [...]}``, unparseable entries included.

        Raises:
            PersistenceError: If the rules file exists but cannot be read.
        """
        data = read_json(self.path, default={"rules": []})
        document = dict(data) if isinstance(data, dict) else {"rules": data}
        if not isinstance(document.get("rules", []), list):
            raise PersistenceError(f"Malformed rules file: {self.path}", path=self.path)
        document["rules"] = list(document.get("rules", []))
        return document

    def _parse(self, entry) -> Rule | None:
        try:
            rule = Rule.from_dict(entry)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.warning("rule_skipped", path=str(self.path), error=str(e))
            return None
        if rule.scope is not RuleScope.PERSISTENT:
            rule = Rule(rule.id, rule.pattern, rule.action, rule.description, RuleScope.PERSISTENT, rule.created_at)
        return rule

    def load(self) -> list[Rule]:
        """Load persistent rules. Entries that do not parse are skipped.

        Raises:
            PersistenceError: If the rules file exists but cannot be read.
        """
        if self.path is None:
            return list(self._memory_rules)
        rules = [self._parse(entry) for entry in self._document()["rules"]]
        return [rule for rule in rules if rule is not None]

    def append(self, rule: Rule) -> Rule:
        """Append a rule to its pool (persistent or session).

        Existing entries of the rules file are written back unchanged,
        including ones that do not parse.
        """
        with self._lock:
            if rule.scope is RuleScope.SESSION:
                self._session_rules.append(rule)
            elif self.path is None:
                self._memory_rules.append(rule)
            else:
                document = self._document()
                document["rules"].append(rule.to_dict())
                atomic_write_json(self.path, document)
        logger.info("rule_added", rule_id=rule.id, pattern=rule.describe_pattern(), action=rule.action.value)
        return rule

    def add_rule(
        self,
        pattern: Sequence[PatternElement],
        action: RuleAction,
        description: str = "",
    ) -> Rule:
        """Create and persist a new rule."""
        rule = Rule.create(new_rule_id(RuleScope.PERSISTENT), list(pattern), action, description, RuleScope.PERSISTENT)
        return self.append(rule)

    def add_session_rule(
        self,
        pattern: Sequence[PatternElement],
        action: RuleAction,
        description: str = "",
    ) -> Rule:
        """Create a rule that lives until the process ends."""
        rule = Rule.create(new_rule_id(RuleScope.SESSION), list(pattern), action, description, RuleScope.SESSION)
        return self.append(rule)

    def remove_rule(self, rule_id: str) -> Rule | None:
        """Remove a persistent or session rule. Default rules cannot be removed.

        Returns:
            The removed rule, or None if no such rule exists.
        """
        with self._lock:
            for i, rule in enumerate(self._session_rules):
                if rule.id == rule_id:
                    del self._session_rules[i]
                    logger.info("rule_removed", rule_id=rule_id)
                    return rule

            if self.path is None:
                for i, rule in enumerate(self._memory_rules):
                    if rule.id == rule_id:
                        del self._memory_rules[i]
                        logger.info("rule_removed", rule_id=rule_id)
                        return rule
                return None

            document = self._document()
            for i, entry in enumerate(document["rules"]):
                if not isinstance(entry, dict) or entry.get("id") != rule_id:
                    continue
                rule = self._parse(entry)
                if rule is None:
                    continue
                del document["rules"][i]
                atomic_write_json(self.path, document)
                logger.info("rule_removed", rule_id=rule_id)
                return rule
        return None

    def clear_session_rules(self) -> int:
        """Drop all session rules. Returns how many were removed."""
        with self._lock:
            count = len(self._session_rules)
            self._session_rules = []
        return count

    def list_rules(self, scope: RuleScope | None = None) -> list[Rule]:
        """List rules, optionally of one scope only."""
        rules = list(self.snapshot())
        if scope is None:
            return rules
        return [rule for rule in rules if rule.scope is scope]

    def snapshot(self) -> tuple[Rule, ...]:
        """Immutable view of default, persistent and session rules."""
        with self._lock:
            persistent = self.load()
            session = list(self._session_rules)
        defaults = list(DEFAULT_RULES) if self.include_defaults else []
        return tuple(defaults + persistent + session)

    def query(self, tokens: Sequence[str]) -> RuleEvaluation:
        """Evaluate a token vector against the current snapshot."""
        return self._engine.evaluate(tokens, self.snapshot())
