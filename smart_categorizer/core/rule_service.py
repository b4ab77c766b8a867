"""
Rule Service

The write path for rules and composite rules. Every write is validated
first and publishes a MutationEvent once the store has committed it.
"""
import logging
from typing import Any, Dict, List, Optional, Union

from ..config import DEFAULT_CONFIG, EngineConfig
from ..errors import NotFoundError, ValidationError
from .composite_rule import CompositeRule
from .confidence import ConfidenceScorer
from .events import COMPOSITE, RULE, EventDispatcher, MutationEvent
from .rule_matcher import Rule
from .validation import validate_composite, validate_rule

logger = logging.getLogger(__name__)


def _rule_event(action: str, rule: Rule) -> MutationEvent:
    return MutationEvent(
        entity=RULE,
        action=action,
        entity_id=rule.id,
        category=rule.category,
        pattern_type=rule.pattern_type,
        pattern_value=rule.pattern_value,
    )


def _composite_event(action: str, composite: CompositeRule) -> MutationEvent:
    return MutationEvent(entity=COMPOSITE, action=action, entity_id=composite.id, category=composite.category)


class RuleService:
    """
    Validated create/update/delete, usage recording and maintenance for
    rules stored in a RuleStore
    """

    def __init__(self, store, dispatcher: Optional[EventDispatcher] = None,
                 config: Optional[EngineConfig] = None):
        """
        Args:
            store: RuleStore implementation
            dispatcher: Receives a MutationEvent after every committed write
            config: Engine configuration
        """
        self.store = store
        self.dispatcher = dispatcher or EventDispatcher()
        self.config = config or DEFAULT_CONFIG
        self.scorer = ConfidenceScorer(self.config)

    # Rules

    def _check_unique(self, rule: Rule):
        existing = self.store.find_rule(rule.category, rule.pattern_type, rule.pattern_value)
        if existing and existing.id != rule.id:
            raise ValidationError("Invalid rule", {
                'pattern_value': [f"has already been taken for this category (rule {existing.id})"]
            })

    def create_rule(self, rule: Rule) -> Rule:
        """
        Validate and persist a new rule

        Raises:
            ValidationError: invalid fields or a duplicate (category, type, value)
        """
        validate_rule(rule, self.config)
        self._check_unique(rule)
        created = self.store.create_rule(rule)
        logger.info("Created rule %s (%s -> %s)", created.id, created.type_value, created.category)
        self.dispatcher.publish(_rule_event('created', created))
        return created

    def update_rule(self, rule: Rule) -> Rule:
        """
        Validate and persist changes to an existing rule

        Usage counters are never written here; use record_usage.

        Raises:
            NotFoundError: unknown rule id
            ValidationError: invalid fields or a duplicate (category, type, value)
        """
        existing = self.store.get_rule(rule.id) if rule.id is not None else None
        if existing is None:
            raise NotFoundError('Rule', rule.id)
        validate_rule(rule, self.config)
        self._check_unique(rule)

        updated = self.store.update_rule(rule)
        self.dispatcher.publish(_rule_event('updated', updated))
        if existing.type_value != updated.type_value or existing.category != updated.category:
            self.dispatcher.publish(_rule_event('updated', existing))
        return updated

    def delete_rule(self, rule_id: int) -> bool:
        """Delete a rule; composites referencing it simply stop resolving it"""
        existing = self.store.get_rule(rule_id)
        if existing is None:
            return False
        deleted = self.store.delete_rule(rule_id)
        if deleted:
            logger.info("Deleted rule %s (%s)", rule_id, existing.type_value)
            self.dispatcher.publish(_rule_event('deleted', existing))
        return deleted

    def record_usage(self, rule: Rule, successful: bool) -> Rule:
        """
        Count one evaluated outcome for a rule

        The store increments atomically; the rule's stats are replaced with
        the returned counters before the deactivation check runs.

        Args:
            rule: Rule that produced a categorization
            successful: Whether that categorization was right

        Returns:
            The same rule with refreshed stats (and possibly deactivated)
        """
        rule.stats = self.store.increment_rule_usage(rule.id, bool(successful))
        if rule.check_and_deactivate_if_poor_performance(self.scorer):
            self.store.update_rule(rule)
            logger.warning("Deactivated rule %s (%s): success rate %.0f%% over %d uses",
                           rule.id, rule.type_value, rule.success_rate * 100, rule.usage_count)
        self.dispatcher.publish(_rule_event('usage', rule))
        return rule

    # Composite rules

    def create_composite(self, composite: CompositeRule) -> CompositeRule:
        """
        Validate and persist a new composite rule

        Raises:
            ValidationError: invalid fields, unknown or foreign member rules
        """
        validate_composite(composite, self.store, self.config)
        created = self.store.create_composite(composite)
        logger.info("Created composite rule %s (%s %s)", created.id, created.operator, created.rule_ids)
        self.dispatcher.publish(_composite_event('created', created))
        return created

    def update_composite(self, composite: CompositeRule) -> CompositeRule:
        existing = self.store.get_composite(composite.id) if composite.id is not None else None
        if existing is None:
            raise NotFoundError('CompositeRule', composite.id)
        validate_composite(composite, self.store, self.config)
        updated = self.store.update_composite(composite)
        self.dispatcher.publish(_composite_event('updated', updated))
        return updated

    def delete_composite(self, composite_id: int) -> bool:
        existing = self.store.get_composite(composite_id)
        if existing is None:
            return False
        deleted = self.store.delete_composite(composite_id)
        if deleted:
            self.dispatcher.publish(_composite_event('deleted', existing))
        return deleted

    def add_member(self, composite: CompositeRule, rule_id: int) -> CompositeRule:
        """
        Add a member rule and persist the composite

        Adding an existing member is a no-op.

        Raises:
            ValidationError: the rule does not exist or has another category
        """
        candidate = composite.copy()
        if not candidate.add_member(rule_id):
            return composite
        updated = self.update_composite(candidate)
        composite.rule_ids = list(updated.rule_ids)
        return updated

    def remove_member(self, composite: CompositeRule, rule_id: int) -> CompositeRule:
        """
        Remove a member rule and persist the composite

        Removing a non-member is a no-op.

        Raises:
            ValidationError: removing the last member
        """
        candidate = composite.copy()
        if not candidate.remove_member(rule_id):
            return composite
        updated = self.update_composite(candidate)
        composite.rule_ids = list(updated.rule_ids)
        return updated

    def record_composite_usage(self, composite: CompositeRule, successful: bool) -> CompositeRule:
        composite.stats = self.store.increment_composite_usage(composite.id, bool(successful))
        if composite.check_and_deactivate_if_poor_performance(self.scorer):
            self.store.update_composite(composite)
            logger.warning("Deactivated composite rule %s: success rate %.0f%% over %d uses",
                           composite.id, composite.success_rate * 100, composite.usage_count)
        self.dispatcher.publish(_composite_event('usage', composite))
        return composite

    # Maintenance

    def deactivate_poor_performers(self) -> List[Union[Rule, CompositeRule]]:
        """
        Sweep all active rules and composites and deactivate the poor
        performers

        Returns:
            The rules and composites deactivated by this sweep
        """
        deactivated = []
        for rule in self.store.active_rules():
            if rule.check_and_deactivate_if_poor_performance(self.scorer):
                self.store.update_rule(rule)
                self.dispatcher.publish(_rule_event('updated', rule))
                deactivated.append(rule)
        for composite in self.store.active_composites():
            if composite.check_and_deactivate_if_poor_performance(self.scorer):
                self.store.update_composite(composite)
                self.dispatcher.publish(_composite_event('updated', composite))
                deactivated.append(composite)

        if deactivated:
            logger.info("Deactivated %d poorly performing rules", len(deactivated))
        return deactivated

    def performance_report(self, min_usage: int = 10) -> Dict[str, Any]:
        """
        Summarize rule accuracy

        Args:
            min_usage: Rules need more uses than this to be ranked

        Returns:
            Dict with high_performing, low_performing, summary and
            recommendations (rules worth deactivating)
        """
        rules = self.store.all_rules()
        sampled = [rule for rule in rules if rule.usage_count > min_usage]
        high = [rule for rule in sampled if rule.success_rate > 0.8]
        low = [rule for rule in sampled if rule.success_rate < 0.5]

        average = sum(rule.success_rate for rule in rules) / len(rules) if rules else 0.0
        return {
            'high_performing': high,
            'low_performing': low,
            'summary': {
                'total_rules': len(rules),
                'active_rules': sum(1 for rule in rules if rule.active),
                'average_success_rate': average,
            },
            'recommendations': {
                'deactivate': [rule for rule in low if not rule.user_created],
            },
        }
