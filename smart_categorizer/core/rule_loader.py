"""
Rule files

Seeds a rule store from a JSON document:

    {
      "rules": [
        {"key": "uber", "category": "Transport", "pattern_type": "merchant",
         "pattern_value": "uber", "confidence_weight": 1.2}
      ],
      "composites": [
        {"name": "Rideshare", "category": "Transport", "operator": "OR",
         "members": ["uber", "lyft"], "conditions": {"max_amount": 100}}
      ]
    }

Composite members refer to rules by "key" (or by stored id).
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple

from ..errors import ValidationError
from .composite_rule import DEFAULT_COMPOSITE_CONFIDENCE_WEIGHT, CompositeRule
from .confidence import UsageStats
from .rule_matcher import DEFAULT_CONFIDENCE_WEIGHT, Rule

logger = logging.getLogger(__name__)


def load_rule_file(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Read and shape-check a JSON rule file"""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, list):
        data = {'rules': data}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object or list of rules")
    return {
        'rules': list(data.get('rules') or []),
        'composites': list(data.get('composites') or []),
    }


def rule_from_dict(entry: Dict[str, Any]) -> Rule:
    return Rule(
        category=entry.get('category'),
        pattern_type=entry.get('pattern_type'),
        pattern_value=entry.get('pattern_value'),
        confidence_weight=entry.get('confidence_weight', DEFAULT_CONFIDENCE_WEIGHT),
        stats=UsageStats(entry.get('usage_count', 0), entry.get('success_count', 0)),
        active=entry.get('active', True),
        user_created=entry.get('user_created', False),
        metadata=dict(entry.get('metadata') or {}),
    )


def seed_rules(service, data: Dict[str, List[Dict[str, Any]]]) -> Tuple[List[Rule], List[CompositeRule]]:
    """
    Create the rules and composites described by a rule file

    Rules that already exist for the same (category, type, value) are
    reused rather than duplicated.

    Args:
        service: RuleService used for validated creation
        data: Output of load_rule_file

    Returns:
        (rules created, composites created)

    Raises:
        ValidationError: an entry is invalid or references an unknown key
    """
    keys: Dict[str, int] = {}
    created_rules = []
    for entry in data.get('rules', []):
        rule = rule_from_dict(entry)
        existing = service.store.find_rule(rule.category, rule.pattern_type, rule.pattern_value)
        if existing:
            stored = existing
        else:
            stored = service.create_rule(rule)
            created_rules.append(stored)
        if entry.get('key'):
            keys[str(entry['key'])] = stored.id

    created_composites = []
    for entry in data.get('composites', []):
        member_ids = []
        for member in entry.get('members', entry.get('rule_ids', [])):
            if isinstance(member, int):
                member_ids.append(member)
            elif str(member) in keys:
                member_ids.append(keys[str(member)])
            else:
                raise ValidationError("Invalid composite rule", {
                    'rule_ids': [f"references unknown rule key {member!r}"]
                })
        composite = CompositeRule(
            category=entry.get('category'),
            operator=entry.get('operator'),
            rule_ids=member_ids,
            name=entry.get('name', ''),
            conditions=dict(entry.get('conditions') or {}),
            confidence_weight=entry.get('confidence_weight', DEFAULT_COMPOSITE_CONFIDENCE_WEIGHT),
            active=entry.get('active', True),
            user_created=entry.get('user_created', False),
        )
        created_composites.append(service.create_composite(composite))

    logger.info("Seeded %d rules and %d composite rules", len(created_rules), len(created_composites))
    return created_rules, created_composites
