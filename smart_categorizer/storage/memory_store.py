"""
In-memory store

Thread-safe implementation of every storage interface, used by tests and by
the CLI when rules come from a JSON file. Records are copied in and out so
callers never share state with the store.
"""
import dataclasses
import itertools
import logging
import threading
from typing import Dict, List, Optional

from rapidfuzz import fuzz

from ..core.composite_rule import CompositeRule
from ..core.confidence import UsageStats
from ..core.merchant_normalizer import CanonicalMerchant, MerchantAlias
from ..core.rule_matcher import Rule
from ..errors import NotFoundError, ValidationError
from .base import CorrectionStore, MerchantStore, RuleStore

logger = logging.getLogger(__name__)


def _rule_key(category, pattern_type: str, pattern_value: str):
    return (category, pattern_type, (pattern_value or '').strip().lower())


def _copy_merchant(merchant: CanonicalMerchant) -> CanonicalMerchant:
    return dataclasses.replace(merchant, aliases=set(merchant.aliases), metadata=dict(merchant.metadata))


class InMemoryStore(RuleStore, MerchantStore, CorrectionStore):
    """Dictionary-backed rule, merchant and correction store"""

    def __init__(self):
        self._lock = threading.RLock()
        self._ids = itertools.count(1)
        self._rules: Dict[int, Rule] = {}
        self._composites: Dict[int, CompositeRule] = {}
        self._merchants: Dict[int, CanonicalMerchant] = {}
        self._aliases: Dict[str, MerchantAlias] = {}
        self._corrections: list = []

    # Rules

    def create_rule(self, rule: Rule) -> Rule:
        with self._lock:
            key = _rule_key(rule.category, rule.pattern_type, rule.pattern_value)
            if any(_rule_key(r.category, r.pattern_type, r.pattern_value) == key
                   for r in self._rules.values()):
                raise ValidationError("Invalid rule", {'pattern_value': ["has already been taken"]})
            stored = rule.copy(id=next(self._ids))
            self._rules[stored.id] = stored
            return stored.copy()

    def get_rule(self, rule_id: int) -> Optional[Rule]:
        with self._lock:
            rule = self._rules.get(rule_id)
            return rule.copy() if rule else None

    def get_rules(self, rule_ids: List[int]) -> List[Rule]:
        with self._lock:
            return [self._rules[i].copy() for i in rule_ids if i in self._rules]

    def update_rule(self, rule: Rule) -> Rule:
        with self._lock:
            current = self._rules.get(rule.id)
            if current is None:
                raise NotFoundError('Rule', rule.id)
            stored = rule.copy(stats=current.stats)
            self._rules[rule.id] = stored
            return stored.copy()

    def delete_rule(self, rule_id: int) -> bool:
        with self._lock:
            return self._rules.pop(rule_id, None) is not None

    def find_rule(self, category, pattern_type: str, pattern_value: str) -> Optional[Rule]:
        key = _rule_key(category, pattern_type, pattern_value)
        with self._lock:
            for rule in self._rules.values():
                if _rule_key(rule.category, rule.pattern_type, rule.pattern_value) == key:
                    return rule.copy()
        return None

    def active_rules(self) -> List[Rule]:
        with self._lock:
            return [rule.copy() for rule in self._rules.values() if rule.active]

    def all_rules(self) -> List[Rule]:
        with self._lock:
            return [rule.copy() for rule in self._rules.values()]

    def increment_rule_usage(self, rule_id: int, successful: bool) -> UsageStats:
        with self._lock:
            rule = self._rules.get(rule_id)
            if rule is None:
                raise NotFoundError('Rule', rule_id)
            rule.stats = rule.stats.recorded(successful)
            return rule.stats

    # Composite rules

    def create_composite(self, composite: CompositeRule) -> CompositeRule:
        with self._lock:
            stored = composite.copy(id=next(self._ids))
            self._composites[stored.id] = stored
            return stored.copy()

    def get_composite(self, composite_id: int) -> Optional[CompositeRule]:
        with self._lock:
            composite = self._composites.get(composite_id)
            return composite.copy() if composite else None

    def update_composite(self, composite: CompositeRule) -> CompositeRule:
        with self._lock:
            current = self._composites.get(composite.id)
            if current is None:
                raise NotFoundError('CompositeRule', composite.id)
            stored = composite.copy(stats=current.stats)
            self._composites[composite.id] = stored
            return stored.copy()

    def delete_composite(self, composite_id: int) -> bool:
        with self._lock:
            return self._composites.pop(composite_id, None) is not None

    def active_composites(self) -> List[CompositeRule]:
        with self._lock:
            return [c.copy() for c in self._composites.values() if c.active]

    def all_composites(self) -> List[CompositeRule]:
        with self._lock:
            return [c.copy() for c in self._composites.values()]

    def increment_composite_usage(self, composite_id: int, successful: bool) -> UsageStats:
        with self._lock:
            composite = self._composites.get(composite_id)
            if composite is None:
                raise NotFoundError('CompositeRule', composite_id)
            composite.stats = composite.stats.recorded(successful)
            return composite.stats

    # Merchants

    @property
    def supports_similarity(self) -> bool:
        return True

    def similarity(self, first: str, second: str) -> float:
        return fuzz.ratio(first.lower(), second.lower()) / 100.0

    def get_merchant(self, merchant_id: int) -> Optional[CanonicalMerchant]:
        with self._lock:
            merchant = self._merchants.get(merchant_id)
            return _copy_merchant(merchant) if merchant else None

    def _by_name(self, name: str) -> Optional[CanonicalMerchant]:
        key = name.strip().lower()
        for merchant in self._merchants.values():
            if merchant.name.lower() == key:
                return merchant
        return None

    def find_merchant_by_name(self, name: str) -> Optional[CanonicalMerchant]:
        with self._lock:
            merchant = self._by_name(name)
            return _copy_merchant(merchant) if merchant else None

    def find_similar_merchant(self, name: str, threshold: float) -> Optional[CanonicalMerchant]:
        best, best_score = None, threshold
        with self._lock:
            # Ascending id order so ties resolve to the oldest merchant
            for merchant_id in sorted(self._merchants):
                merchant = self._merchants[merchant_id]
                score = self.similarity(name, merchant.name)
                if score > best_score:
                    best, best_score = merchant, score
            return _copy_merchant(best) if best else None

    def find_merchant_by_alias(self, raw_name: str) -> Optional[CanonicalMerchant]:
        with self._lock:
            alias = self._aliases.get(raw_name)
            return self.get_merchant(alias.merchant_id) if alias else None

    def find_merchant_by_normalized_alias(self, normalized_name: str) -> Optional[CanonicalMerchant]:
        with self._lock:
            for alias in self._aliases.values():
                if alias.normalized_name == normalized_name:
                    return self.get_merchant(alias.merchant_id)
        return None

    def get_or_create_merchant(self, name: str, display_name: str) -> CanonicalMerchant:
        with self._lock:
            merchant = self._by_name(name)
            if merchant is None:
                merchant = CanonicalMerchant(name=name, display_name=display_name, id=next(self._ids))
                self._merchants[merchant.id] = merchant
            return _copy_merchant(merchant)

    def add_merchant_alias(self, alias: MerchantAlias) -> CanonicalMerchant:
        with self._lock:
            merchant = self._merchants.get(alias.merchant_id)
            if merchant is None:
                raise NotFoundError('CanonicalMerchant', alias.merchant_id)
            if alias.raw_name not in self._aliases:
                self._aliases[alias.raw_name] = alias
                merchant.aliases.add(alias.raw_name)
            return _copy_merchant(self._merchants[self._aliases[alias.raw_name].merchant_id])

    def increment_merchant_usage(self, merchant_id: int) -> CanonicalMerchant:
        with self._lock:
            merchant = self._merchants.get(merchant_id)
            if merchant is None:
                raise NotFoundError('CanonicalMerchant', merchant_id)
            merchant.usage_count += 1
            return _copy_merchant(merchant)

    def merge_merchants(self, target_id: int, other_id: int) -> CanonicalMerchant:
        with self._lock:
            target = self._merchants.get(target_id)
            other = self._merchants.get(other_id)
            if target is None:
                raise NotFoundError('CanonicalMerchant', target_id)
            if other is None:
                raise NotFoundError('CanonicalMerchant', other_id)
            if target_id == other_id:
                return _copy_merchant(target)

            for raw_name, alias in list(self._aliases.items()):
                if alias.merchant_id == other_id:
                    self._aliases[raw_name] = dataclasses.replace(alias, merchant_id=target_id)
            target.aliases |= other.aliases
            target.usage_count += other.usage_count
            target.metadata = {**target.metadata, **other.metadata}
            if not (target.display_name or '').strip():
                target.display_name = other.display_name
            if not (target.category_hint or '').strip():
                target.category_hint = other.category_hint
            del self._merchants[other_id]
            return _copy_merchant(target)

    def all_merchants(self) -> List[CanonicalMerchant]:
        with self._lock:
            return [_copy_merchant(m) for m in self._merchants.values()]

    # Corrections

    def save_correction(self, correction):
        with self._lock:
            stored = dataclasses.replace(correction, id=next(self._ids))
            self._corrections.append(stored)
            return stored

    def list_corrections(self, rule_id: Optional[int] = None) -> list:
        with self._lock:
            if rule_id is None:
                return list(self._corrections)
            return [c for c in self._corrections if c.rule_id == rule_id]
