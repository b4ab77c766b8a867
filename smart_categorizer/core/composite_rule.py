"""
Composite Rules

Boolean combinations (AND / OR / NOT) of atomic rules with optional side
conditions, e.g. "uber OR lyft in the morning" or "restaurant AND amount
over 50 on weekends".

Members are held by id and resolved through a rule lookup at read time;
an id that no longer resolves is simply not a member anymore.
"""
import dataclasses
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .confidence import DEFAULT_SCORER, ConfidenceScorer, UsageStats
from .match_input import FieldsInput, to_decimal, to_match_input
from .rule_matcher import Rule, minutes_in_window
from .validation import WEEKDAYS, parse_clock

DEFAULT_COMPOSITE_CONFIDENCE_WEIGHT = 1.5
MAX_DESCRIBED_MEMBERS = 10


@dataclass
class CompositeRule:
    """
    Boolean combination of rules from the same category
    """
    category: Any
    operator: str
    rule_ids: List[int]
    name: str = ''
    conditions: Dict[str, Any] = field(default_factory=dict)
    confidence_weight: float = DEFAULT_COMPOSITE_CONFIDENCE_WEIGHT
    stats: UsageStats = field(default_factory=UsageStats)
    active: bool = True
    user_created: bool = False
    id: Optional[int] = None

    @property
    def usage_count(self) -> int:
        return self.stats.usage_count

    @property
    def success_count(self) -> int:
        return self.stats.success_count

    @property
    def success_rate(self) -> float:
        return self.stats.success_rate

    def copy(self, **changes) -> 'CompositeRule':
        changes.setdefault('rule_ids', list(self.rule_ids))
        changes.setdefault('conditions', dict(self.conditions))
        return dataclasses.replace(self, **changes)

    def members(self, rules) -> List[Rule]:
        """
        Resolve member ids through a rule lookup

        Args:
            rules: Anything exposing get_rules(ids)

        Returns:
            The member rules that still exist, in member order
        """
        if not self.rule_ids:
            return []
        found = {rule.id: rule for rule in rules.get_rules(list(self.rule_ids))}
        return [found[rule_id] for rule_id in self.rule_ids if rule_id in found]

    def matches(self, transaction: Any, rules) -> bool:
        """
        Check whether the transaction satisfies the conditions and the
        operator over the member rules

        Args:
            transaction: Transaction-like record, mapping or MatchInput
            rules: Lookup used to resolve member ids
        """
        if not self.active:
            return False
        members = self.members(rules)
        if not members:
            return False

        match_input = to_match_input(transaction)
        if not isinstance(match_input, FieldsInput):
            return False
        if not self.conditions_match(match_input):
            return False

        if self.operator == 'AND':
            return all(member.matches(match_input) for member in members)
        if self.operator == 'OR':
            return any(member.matches(match_input) for member in members)
        if self.operator == 'NOT':
            return not any(member.matches(match_input) for member in members)
        return False

    def conditions_match(self, fields: FieldsInput) -> bool:
        """Every configured condition must pass"""
        conditions = self.conditions or {}

        min_amount = conditions.get('min_amount')
        max_amount = conditions.get('max_amount')
        if min_amount is not None or max_amount is not None:
            if fields.amount is None:
                return False
            low = to_decimal(min_amount) if min_amount is not None else None
            high = to_decimal(max_amount) if max_amount is not None else None
            if (min_amount is not None and low is None) or (max_amount is not None and high is None):
                return False
            if low is not None and fields.amount < low:
                return False
            if high is not None and fields.amount > high:
                return False

        days = conditions.get('days_of_week')
        if days:
            if fields.timestamp is None:
                return False
            day_name = WEEKDAYS[fields.timestamp.weekday()]
            if day_name not in {str(day).lower() for day in days}:
                return False

        time_ranges = conditions.get('time_ranges')
        if time_ranges:
            if fields.timestamp is None:
                return False
            current = fields.timestamp.hour * 60 + fields.timestamp.minute
            if not any(_in_time_range(current, time_range) for time_range in time_ranges):
                return False

        blacklist = conditions.get('merchant_blacklist')
        if blacklist and fields.merchant:
            merchant = fields.merchant.strip().lower()
            if merchant in {str(name).strip().lower() for name in blacklist}:
                return False

        return True

    def effective_confidence(self, rules, scorer: Optional[ConfidenceScorer] = None) -> float:
        """Trust value combining own weight, member confidence and success rate"""
        scorer = scorer or DEFAULT_SCORER
        member_confidences = [member.effective_confidence(scorer) for member in self.members(rules)]
        return scorer.composite_confidence(self.confidence_weight, self.stats, member_confidences)

    def description(self, rules) -> str:
        """Human-readable summary such as "merchant:uber OR merchant:lyft" """
        labels = [member.type_value for member in self.members(rules)]
        if len(labels) > MAX_DESCRIBED_MEMBERS:
            hidden = len(labels) - MAX_DESCRIBED_MEMBERS
            labels = labels[:MAX_DESCRIBED_MEMBERS] + [f"… (+{hidden} more)"]

        if self.operator == 'AND':
            return ' AND '.join(labels)
        if self.operator == 'OR':
            return ' OR '.join(labels)
        if self.operator == 'NOT':
            return f"NOT ({' OR '.join(labels)})"
        return self.name

    def add_member(self, rule_id: int) -> bool:
        """Add a member id; returns False if it was already present"""
        if rule_id in self.rule_ids:
            return False
        self.rule_ids = list(self.rule_ids) + [rule_id]
        return True

    def remove_member(self, rule_id: int) -> bool:
        """Remove a member id; returns False if it was not present"""
        if rule_id not in self.rule_ids:
            return False
        self.rule_ids = [member_id for member_id in self.rule_ids if member_id != rule_id]
        return True

    def check_and_deactivate_if_poor_performance(self, scorer: Optional[ConfidenceScorer] = None) -> bool:
        scorer = scorer or DEFAULT_SCORER
        if not self.active or not scorer.should_deactivate(self.stats, self.user_created):
            return False
        self.active = False
        return True


def _in_time_range(current: int, time_range: Dict[str, str]) -> bool:
    if not isinstance(time_range, dict):
        return False
    start = parse_clock(time_range.get('start'))
    end = parse_clock(time_range.get('end'))
    if start is None or end is None:
        return False
    return minutes_in_window(current, start, end)
