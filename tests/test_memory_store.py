"""
Tests for the in-memory store
"""
import threading

import pytest

from smart_categorizer.core.composite_rule import CompositeRule
from smart_categorizer.core.confidence import UsageStats
from smart_categorizer.core.feedback_loop import ACCEPTED, REJECTED, Correction
from smart_categorizer.core.merchant_normalizer import MerchantAlias
from smart_categorizer.core.rule_matcher import Rule
from smart_categorizer.errors import NotFoundError, ValidationError


class TestRules:

    def test_records_are_copied(self, store):
        rule = store.create_rule(Rule('Dining', 'merchant', 'starbucks', metadata={'source': 'seed'}))
        rule.category = 'Changed'
        rule.metadata['source'] = 'changed'

        stored = store.get_rule(rule.id)
        assert stored.category == 'Dining'
        assert stored.metadata == {'source': 'seed'}

    def test_duplicate_key_is_rejected(self, store):
        store.create_rule(Rule('Dining', 'merchant', 'Starbucks'))
        with pytest.raises(ValidationError):
            store.create_rule(Rule('Dining', 'merchant', ' starbucks '))

    def test_find_rule_is_case_insensitive(self, store):
        rule = store.create_rule(Rule('Dining', 'merchant', 'Starbucks'))
        assert store.find_rule('Dining', 'merchant', 'STARBUCKS ').id == rule.id
        assert store.find_rule('Coffee', 'merchant', 'starbucks') is None

    def test_get_rules_skips_missing_ids(self, store):
        first = store.create_rule(Rule('Dining', 'merchant', 'a'))
        second = store.create_rule(Rule('Dining', 'merchant', 'b'))
        assert [r.id for r in store.get_rules([second.id, 999, first.id])] == [second.id, first.id]

    def test_update_keeps_counters(self, store):
        rule = store.create_rule(Rule('Dining', 'merchant', 'a'))
        store.increment_rule_usage(rule.id, True)
        store.update_rule(rule.copy(stats=UsageStats(100, 0), active=False))

        stored = store.get_rule(rule.id)
        assert stored.stats == UsageStats(1, 1)
        assert not stored.active
        assert store.active_rules() == []

    def test_unknown_ids(self, store):
        with pytest.raises(NotFoundError):
            store.increment_rule_usage(404, True)
        with pytest.raises(NotFoundError):
            store.update_rule(Rule('Dining', 'merchant', 'a', id=404))
        with pytest.raises(NotFoundError):
            store.increment_composite_usage(404, False)

    def test_concurrent_increments(self, store):
        rule = store.create_rule(Rule('Dining', 'merchant', 'a'))

        def worker():
            for _ in range(100):
                store.increment_rule_usage(rule.id, True)

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert store.get_rule(rule.id).stats == UsageStats(600, 600)


def test_composites_are_copied(store):
    composite = store.create_composite(CompositeRule('Transport', 'OR', [1, 2]))
    composite.rule_ids.append(3)

    assert store.get_composite(composite.id).rule_ids == [1, 2]
    assert store.increment_composite_usage(composite.id, True) == UsageStats(1, 1)


class TestMerchants:

    def test_get_or_create(self, store):
        first = store.get_or_create_merchant('uber', 'Uber')
        again = store.get_or_create_merchant('UBER', 'Uber Again')

        assert first.id == again.id
        assert again.display_name == 'Uber'

    def test_similar_merchant_ties_go_to_oldest(self, store):
        oldest = store.get_or_create_merchant('abcd', 'Abcd')
        store.get_or_create_merchant('abce', 'Abce')

        assert store.find_similar_merchant('abcx', 0.6).id == oldest.id
        # Threshold is strict
        assert store.find_similar_merchant('abcx', 0.75) is None

    def test_aliases(self, store):
        uber = store.get_or_create_merchant('uber', 'Uber')
        store.add_merchant_alias(MerchantAlias('UBER *TRIP', 'uber trip', uber.id, 0.8))
        # First mapping wins
        lyft = store.get_or_create_merchant('lyft', 'Lyft')
        result = store.add_merchant_alias(MerchantAlias('UBER *TRIP', 'uber trip', lyft.id, 0.8))

        assert result.id == uber.id
        assert store.find_merchant_by_alias('UBER *TRIP').id == uber.id
        assert store.find_merchant_by_normalized_alias('uber trip').id == uber.id
        assert store.get_merchant(uber.id).aliases == {'UBER *TRIP'}

    def test_alias_for_unknown_merchant(self, store):
        with pytest.raises(NotFoundError):
            store.add_merchant_alias(MerchantAlias('X', 'x', 404))

    def test_merge(self, store):
        target = store.get_or_create_merchant('blue bottle', '')
        other = store.get_or_create_merchant('blue bottle coffee', 'Blue Bottle Coffee')
        store.add_merchant_alias(MerchantAlias('BLUE BOTTLE', 'blue bottle', target.id))
        store.add_merchant_alias(MerchantAlias('BLUE BOTTLE COFFEE #1', 'blue bottle coffee', other.id))
        store.increment_merchant_usage(target.id)
        store.increment_merchant_usage(other.id)
        store.increment_merchant_usage(other.id)

        merged = store.merge_merchants(target.id, other.id)

        assert merged.usage_count == 3
        assert merged.aliases == {'BLUE BOTTLE', 'BLUE BOTTLE COFFEE #1'}
        assert merged.display_name == 'Blue Bottle Coffee'
        assert store.get_merchant(other.id) is None
        assert store.find_merchant_by_alias('BLUE BOTTLE COFFEE #1').id == target.id

    def test_merge_with_itself(self, store):
        uber = store.get_or_create_merchant('uber', 'Uber')
        assert store.merge_merchants(uber.id, uber.id).id == uber.id
        assert store.get_merchant(uber.id) is not None


def test_corrections(store):
    first = store.save_correction(Correction('Dining', ACCEPTED, was_correct=True, rule_id=1))
    store.save_correction(Correction('Coffee', REJECTED, rule_id=2))

    assert first.id is not None
    assert len(store.list_corrections()) == 2
    assert [c.category for c in store.list_corrections(rule_id=1)] == ['Dining']
