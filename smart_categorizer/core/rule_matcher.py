"""
Rule Matcher

Atomic categorization rules. Each rule checks one transaction attribute:
- merchant: merchant name contains the value
- keyword: description (or merchant when there is no description) contains the value
- description: description contains the value
- amount_range: amount within "min-max"
- regex: description/merchant matches a case-insensitive regular expression
- time: transaction time falls in a named period or "HH:MM-HH:MM" window

Matching is read-only and never raises; anything it cannot interpret
simply does not match.
"""
import dataclasses
import re
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional

from .confidence import DEFAULT_SCORER, ConfidenceScorer, UsageStats
from .match_input import (
    AmountInput,
    FieldsInput,
    MatchInput,
    TextInput,
    TimestampInput,
    to_datetime,
    to_decimal,
    to_match_input,
)
from .validation import PATTERN_TYPES, parse_amount_range, parse_time_range

DEFAULT_CONFIDENCE_WEIGHT = 1.0

# Inclusive hour windows for named periods
TIME_PERIODS = {
    'morning': (6, 11),
    'afternoon': (12, 16),
    'evening': (17, 20),
}


@lru_cache(maxsize=512)
def compile_pattern(pattern: str) -> Optional[re.Pattern]:
    """Compile a case-insensitive regex, None if it does not compile"""
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error:
        return None


def _present(text: Optional[str]) -> bool:
    return bool(text and text.strip())


def _contains(haystack: Optional[str], needle: str) -> bool:
    if not _present(haystack) or not _present(needle):
        return False
    return needle.strip().lower() in haystack.strip().lower()


def minutes_in_window(current: int, start: int, end: int) -> bool:
    """Inclusive window check; end before start means the window crosses midnight"""
    if end < start:
        return current >= start or current <= end
    return start <= current <= end


@dataclass
class Rule:
    """
    A single-condition categorization rule with accuracy tracking
    """
    category: Any
    pattern_type: str
    pattern_value: str
    confidence_weight: float = DEFAULT_CONFIDENCE_WEIGHT
    stats: UsageStats = field(default_factory=UsageStats)
    active: bool = True
    user_created: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
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

    @property
    def type_value(self) -> str:
        return f"{self.pattern_type}:{self.pattern_value}"

    @property
    def normalized_value(self) -> str:
        return (self.pattern_value or '').strip().lower()

    def copy(self, **changes) -> 'Rule':
        changes.setdefault('metadata', dict(self.metadata))
        return dataclasses.replace(self, **changes)

    def matches(self, value: Any) -> bool:
        """
        Check whether this rule matches the given value

        Args:
            value: Raw text, an amount, a timestamp, a transaction-like
                   record/mapping or a MatchInput

        Returns:
            True if the rule matches
        """
        match_input = to_match_input(value)
        if match_input is None or self.pattern_type not in PATTERN_TYPES:
            return False

        matcher = getattr(self, f"_match_{self.pattern_type}")
        return matcher(match_input)

    def effective_confidence(self, scorer: Optional[ConfidenceScorer] = None) -> float:
        """Trust value in [0.3, 5.0] balancing weight against observed accuracy"""
        scorer = scorer or DEFAULT_SCORER
        return scorer.rule_confidence(self.confidence_weight, self.stats)

    def check_and_deactivate_if_poor_performance(self, scorer: Optional[ConfidenceScorer] = None) -> bool:
        """
        Deactivate this rule if it is sampled enough and mostly wrong.
        User-created rules are never deactivated.

        Returns:
            True if the rule was deactivated by this call
        """
        scorer = scorer or DEFAULT_SCORER
        if not self.active or not scorer.should_deactivate(self.stats, self.user_created):
            return False
        self.active = False
        return True

    # Per-type matchers

    def _match_merchant(self, match_input: MatchInput) -> bool:
        if isinstance(match_input, TextInput):
            return _contains(match_input.text, self.pattern_value)
        if isinstance(match_input, FieldsInput):
            return _contains(match_input.merchant, self.pattern_value)
        return False

    def _match_keyword(self, match_input: MatchInput) -> bool:
        if isinstance(match_input, TextInput):
            return _contains(match_input.text, self.pattern_value)
        if isinstance(match_input, FieldsInput):
            text = match_input.description if _present(match_input.description) else match_input.merchant
            return _contains(text, self.pattern_value)
        return False

    def _match_description(self, match_input: MatchInput) -> bool:
        if isinstance(match_input, TextInput):
            return _contains(match_input.text, self.pattern_value)
        if isinstance(match_input, FieldsInput):
            return _contains(match_input.description, self.pattern_value)
        return False

    def _match_regex(self, match_input: MatchInput) -> bool:
        if isinstance(match_input, TextInput):
            text = match_input.text
        elif isinstance(match_input, FieldsInput):
            parts = [part for part in (match_input.description, match_input.merchant) if _present(part)]
            text = ' '.join(parts)
        else:
            return False
        if not _present(text):
            return False

        pattern = compile_pattern(self.pattern_value)
        if pattern is None:
            return False
        return pattern.search(text) is not None

    def _match_amount_range(self, match_input: MatchInput) -> bool:
        if isinstance(match_input, AmountInput):
            amount = match_input.amount
        elif isinstance(match_input, FieldsInput):
            amount = match_input.amount
        elif isinstance(match_input, TextInput):
            amount = to_decimal(match_input.text)
        else:
            return False
        if amount is None:
            return False

        bounds = parse_amount_range(self.pattern_value)
        if bounds is None:
            return False
        low, high = bounds
        return low <= amount <= high

    def _match_time(self, match_input: MatchInput) -> bool:
        if isinstance(match_input, TimestampInput):
            moment = match_input.timestamp
        elif isinstance(match_input, FieldsInput):
            moment = match_input.timestamp
        elif isinstance(match_input, TextInput):
            moment = to_datetime(match_input.text)
        else:
            return False
        if moment is None:
            return False
        return self._matches_time_pattern(moment)

    def _matches_time_pattern(self, moment: datetime) -> bool:
        value = (self.pattern_value or '').strip()
        if value in TIME_PERIODS:
            start, end = TIME_PERIODS[value]
            return start <= moment.hour <= end
        if value == 'night':
            return moment.hour >= 21 or moment.hour <= 5
        if value == 'weekend':
            return moment.weekday() >= 5
        if value == 'weekday':
            return moment.weekday() < 5

        window = parse_time_range(value)
        if window is None:
            return False
        return minutes_in_window(moment.hour * 60 + moment.minute, *window)
