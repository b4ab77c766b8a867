"""
Rule Validation

Write-time checks for rules and composite rules. Every problem found is
collected per field and raised together as a ValidationError.
"""
import math
import re
from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from ..config import DEFAULT_CONFIG, EngineConfig
from ..errors import ValidationError

PATTERN_TYPES = ('merchant', 'keyword', 'description', 'amount_range', 'regex', 'time')
OPERATORS = ('AND', 'OR', 'NOT')
TIME_KEYWORDS = ('morning', 'afternoon', 'evening', 'night', 'weekend', 'weekday')
WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')
CONDITION_KEYS = ('min_amount', 'max_amount', 'days_of_week', 'time_ranges', 'merchant_blacklist')

MAX_REGEX_LENGTH = 500

AMOUNT_RANGE_FORMAT = re.compile(r'^(-?\d+(?:\.\d{1,2})?)-(-?\d+(?:\.\d{1,2})?)$')
TIME_RANGE_FORMAT = re.compile(r'^(\d{1,2}):(\d{2})-(\d{1,2}):(\d{2})$')
CLOCK_FORMAT = re.compile(r'^(\d{1,2}):(\d{2})$')

# Nested quantifiers that lead to catastrophic backtracking
DANGEROUS_REGEX_PATTERNS = [
    re.compile(r'\([^)]*[+*}]\)[+*{]'),     # (a+)+ or (a*)* or (a{2,})+
    re.compile(r'\[[^\]]*[+*]\][+*]'),      # [a+]+ or [a*]*
    re.compile(r'\w[+*][+*]'),              # a++ or a** stacked quantifiers
    re.compile(r'\(.+[+*].+\)[+*{]'),       # complex nested quantifiers
    re.compile(r'\([^)]*\|[^)]*\)[+*{]'),   # (a|aa)+ quantified alternation
]


def parse_amount_range(value: str) -> Optional[Tuple[Decimal, Decimal]]:
    """Split "min-max" (negatives allowed) into Decimal bounds"""
    if not isinstance(value, str):
        return None
    match = AMOUNT_RANGE_FORMAT.match(value.strip())
    if not match:
        return None
    return Decimal(match.group(1)), Decimal(match.group(2))


def parse_clock(value: str) -> Optional[int]:
    """Parse "HH:MM" into minutes since midnight"""
    if not isinstance(value, str):
        return None
    match = CLOCK_FORMAT.match(value.strip())
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return hours * 60 + minutes


def parse_time_range(value: str) -> Optional[Tuple[int, int]]:
    """Parse "HH:MM-HH:MM" into (start, end) minutes since midnight"""
    if not isinstance(value, str) or '-' not in value:
        return None
    if not TIME_RANGE_FORMAT.match(value.strip()):
        return None
    start_str, end_str = value.strip().split('-')
    start, end = parse_clock(start_str), parse_clock(end_str)
    if start is None or end is None:
        return None
    return start, end


def is_dangerous_regex(pattern: str) -> bool:
    return any(check.search(pattern) for check in DANGEROUS_REGEX_PATTERNS)


def regex_errors(pattern: str) -> List[str]:
    if len(pattern) > MAX_REGEX_LENGTH:
        return [f"must be at most {MAX_REGEX_LENGTH} characters"]
    if is_dangerous_regex(pattern):
        return ["contains potentially dangerous regex pattern (ReDoS vulnerability)"]
    try:
        re.compile(pattern, re.IGNORECASE)
    except re.error:
        return ["must be a valid regular expression"]
    return []


def pattern_value_errors(pattern_type: str, pattern_value: str) -> List[str]:
    """Format errors for a pattern value of the given type"""
    if pattern_type == 'amount_range':
        bounds = parse_amount_range(pattern_value)
        if bounds is None:
            return ["must be in format 'min-max' (e.g., '10.00-50.00' or '-100--50')"]
        if bounds[0] >= bounds[1]:
            return ["minimum must be less than maximum"]
    elif pattern_type == 'regex':
        return regex_errors(pattern_value)
    elif pattern_type == 'time':
        if pattern_value not in TIME_KEYWORDS and parse_time_range(pattern_value) is None:
            return ["must be a valid time pattern"]
    return []


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _weight_errors(weight, config: EngineConfig) -> List[str]:
    try:
        value = float(weight)
    except (TypeError, ValueError):
        return ["must be a number"]
    if not math.isfinite(value) or not (
            config.min_confidence_weight <= value <= config.max_confidence_weight):
        return [
            f"must be between {config.min_confidence_weight} and {config.max_confidence_weight}"
        ]
    return []


def _stats_errors(stats, errors: Dict[str, List[str]]):
    if stats.usage_count < 0:
        errors['usage_count'].append("must be greater than or equal to 0")
    if stats.success_count < 0:
        errors['success_count'].append("must be greater than or equal to 0")
    if stats.success_count > stats.usage_count:
        errors['success_count'].append("cannot be greater than usage count")


def validate_rule(rule, config: Optional[EngineConfig] = None):
    """
    Validate an atomic rule

    Raises:
        ValidationError: listing every invalid field
    """
    config = config or DEFAULT_CONFIG
    errors: Dict[str, List[str]] = defaultdict(list)

    if _blank(rule.category):
        errors['category'].append("can't be blank")
    if rule.pattern_type not in PATTERN_TYPES:
        errors['pattern_type'].append("is not included in the list")
    if _blank(rule.pattern_value):
        errors['pattern_value'].append("can't be blank")
    elif not isinstance(rule.pattern_value, str):
        errors['pattern_value'].append("must be a string")
    elif rule.pattern_type in PATTERN_TYPES:
        errors['pattern_value'].extend(pattern_value_errors(rule.pattern_type, rule.pattern_value))

    errors['confidence_weight'].extend(_weight_errors(rule.confidence_weight, config))
    _stats_errors(rule.stats, errors)

    if not isinstance(rule.metadata, dict):
        errors['metadata'].append("must be a mapping")

    _raise_if_any("Invalid rule", errors)


def _is_positive_number(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return False
    return math.isfinite(float(value)) and value > 0


def conditions_errors(conditions) -> List[str]:
    """Format errors for a composite rule's side conditions"""
    if not conditions:
        return []
    if not isinstance(conditions, dict):
        return ["must be a mapping"]

    problems = []
    invalid_keys = sorted(set(conditions) - set(CONDITION_KEYS))
    if invalid_keys:
        problems.append(f"contains invalid keys: {', '.join(invalid_keys)}")

    min_amount = conditions.get('min_amount')
    max_amount = conditions.get('max_amount')
    if min_amount is not None and not _is_positive_number(min_amount):
        problems.append("min_amount must be a positive number")
    if max_amount is not None and not _is_positive_number(max_amount):
        problems.append("max_amount must be a positive number")
    if (_is_positive_number(min_amount) and _is_positive_number(max_amount)
            and Decimal(str(min_amount)) >= Decimal(str(max_amount))):
        problems.append("min_amount must be less than max_amount")

    days = conditions.get('days_of_week')
    if days is not None:
        if not isinstance(days, list) or not days or not all(
                isinstance(day, str) and day.lower() in WEEKDAYS for day in days):
            problems.append("days_of_week must be an array of valid day names")

    ranges = conditions.get('time_ranges')
    if ranges is not None:
        if not isinstance(ranges, list):
            problems.append("time_ranges must be an array")
        else:
            for time_range in ranges:
                if not isinstance(time_range, dict) or not time_range.get('start') or not time_range.get('end'):
                    problems.append("each time_range must have 'start' and 'end' times")
                elif parse_clock(time_range['start']) is None or parse_clock(time_range['end']) is None:
                    problems.append("time_ranges must be in HH:MM format")

    blacklist = conditions.get('merchant_blacklist')
    if blacklist is not None:
        if not isinstance(blacklist, list) or not all(isinstance(name, str) for name in blacklist):
            problems.append("merchant_blacklist must be an array of merchant names")

    return problems


def validate_composite(composite, rules, config: Optional[EngineConfig] = None):
    """
    Validate a composite rule against the current rule store

    Args:
        composite: CompositeRule to check
        rules: Lookup exposing get_rules(ids) used to verify members

    Raises:
        ValidationError: listing every invalid field
    """
    config = config or DEFAULT_CONFIG
    errors: Dict[str, List[str]] = defaultdict(list)

    if _blank(composite.category):
        errors['category'].append("can't be blank")
    if composite.operator not in OPERATORS:
        errors['operator'].append("is not included in the list")

    rule_ids = list(composite.rule_ids or [])
    if not rule_ids:
        errors['rule_ids'].append("can't be blank")
    elif len(set(rule_ids)) != len(rule_ids):
        errors['rule_ids'].append("must not contain duplicates")
    else:
        members = rules.get_rules(rule_ids)
        found = {member.id for member in members}
        missing = [rule_id for rule_id in rule_ids if rule_id not in found]
        if missing:
            errors['rule_ids'].append(
                f"contains non-existent rule IDs: {', '.join(str(i) for i in missing)}"
            )
        foreign = [member.id for member in members if member.category != composite.category]
        if foreign and not _blank(composite.category):
            errors['rule_ids'].append(
                f"contains rules from different categories: {', '.join(str(i) for i in foreign)}"
            )

    errors['confidence_weight'].extend(_weight_errors(composite.confidence_weight, config))
    _stats_errors(composite.stats, errors)
    errors['conditions'].extend(conditions_errors(composite.conditions))

    _raise_if_any("Invalid composite rule", errors)


def _raise_if_any(message: str, errors: Dict[str, List[str]]):
    found = {field: msgs for field, msgs in errors.items() if msgs}
    if found:
        raise ValidationError(message, found)
