"""
Tests for the rule cache and event-driven invalidation
"""
from smart_categorizer.core.cache import CacheInvalidator, CachedRuleLookup, InMemoryRuleCache
from smart_categorizer.core.composite_rule import CompositeRule
from smart_categorizer.core.confidence import UsageStats
from smart_categorizer.core.events import COMPOSITE, MERCHANT, RULE, MutationEvent
from smart_categorizer.core.rule_matcher import Rule


def test_cache_basics():
    cache = InMemoryRuleCache()
    assert cache.get('rule:1') is None
    cache.set('rule:1', 'x')

    assert 'rule:1' in cache
    assert cache.get('rule:1') == 'x'
    cache.invalidate('rule:1')
    assert 'rule:1' not in cache
    assert cache.stats == {'hits': 1, 'misses': 1, 'invalidations': 1, 'stale_sets': 0}


def test_set_skips_keys_invalidated_since_generation():
    cache = InMemoryRuleCache()
    before = cache.generation('rule:1')
    cache.invalidate('rule:1')

    assert not cache.set('rule:1', 'stale', before)
    assert 'rule:1' not in cache
    assert cache.set('rule:1', 'fresh', cache.generation('rule:1'))

    before = cache.generation('rule:1')
    cache.clear()
    assert not cache.set('rule:1', 'stale', before)
    assert cache.stats['stale_sets'] == 2


def test_event_cache_keys():
    rule_event = MutationEvent(RULE, 'updated', 7, 'Dining', 'merchant', ' Starbucks ')
    assert rule_event.cache_keys == [
        'rule:7', 'rules:active', 'rules:category:Dining', 'rules:pattern:merchant:starbucks',
    ]
    assert MutationEvent(COMPOSITE, 'deleted', 3).cache_keys == ['composite:3', 'composites:active']
    assert MutationEvent(MERCHANT, 'updated', 9).cache_keys == ['merchant:9']


class TestCachedLookup:

    def wire(self, store, dispatcher):
        cache = InMemoryRuleCache()
        dispatcher.subscribe(CacheInvalidator(cache))
        return cache, CachedRuleLookup(store, cache)

    def test_reads_are_cached(self, store, dispatcher, make_rule):
        cache, lookup = self.wire(store, dispatcher)
        rule = make_rule()

        assert lookup.get_rule(rule.id).id == rule.id
        assert lookup.get_rule(rule.id).id == rule.id
        assert cache.stats['hits'] == 1
        assert lookup.get_rule(404) is None
        assert 'rule:404' not in cache

    def test_writes_through_service_invalidate(self, service, store, dispatcher, make_rule):
        cache, lookup = self.wire(store, dispatcher)
        rule = make_rule()
        assert [r.pattern_value for r in lookup.active_rules()] == ['starbucks']
        lookup.get_rule(rule.id)

        service.update_rule(rule.copy(pattern_value='peets'))

        assert lookup.get_rule(rule.id).pattern_value == 'peets'
        assert [r.pattern_value for r in lookup.active_rules()] == ['peets']

        service.delete_rule(rule.id)
        assert lookup.get_rule(rule.id) is None
        assert lookup.active_rules() == []

    def test_rule_changes_invalidate_composites(self, service, store, dispatcher, make_rule):
        cache, lookup = self.wire(store, dispatcher)
        uber = make_rule('Transport', 'merchant', 'uber')
        service.create_composite(CompositeRule('Transport', 'OR', [uber.id]))
        assert len(lookup.active_composites()) == 1

        service.update_rule(uber.copy(pattern_value='uber trip'))
        assert 'composites:active' not in cache

    def test_cached_lists_are_not_shared(self, store, dispatcher, make_rule):
        _, lookup = self.wire(store, dispatcher)
        make_rule()

        lookup.active_rules().clear()
        assert len(lookup.active_rules()) == 1

    def test_load_racing_a_write_is_not_cached(self, service, store, dispatcher, make_rule):
        cache, _ = self.wire(store, dispatcher)
        rule = make_rule()

        class RacingStore:
            """Store whose read returns a row that a concurrent write replaces"""

            def get_rule(self, rule_id):
                stale = store.get_rule(rule_id)
                service.update_rule(stale.copy(pattern_value='peets'))
                return stale

        racing = CachedRuleLookup(RacingStore(), cache)
        assert racing.get_rule(rule.id).pattern_value == 'starbucks'
        assert f"rule:{rule.id}" not in cache

        lookup = CachedRuleLookup(store, cache)
        assert lookup.get_rule(rule.id).pattern_value == 'peets'

    def test_returned_rules_are_copies(self, store, dispatcher, make_rule):
        cache, lookup = self.wire(store, dispatcher)
        rule = make_rule()
        lookup.get_rule(rule.id).stats = UsageStats(9, 9)
        lookup.active_rules()[0].pattern_value = 'changed'

        mine = lookup.get_rule(rule.id)
        mine.pattern_value = 'changed'
        lookup.active_rules()[0].active = False

        assert f"rule:{rule.id}" in cache
        assert lookup.get_rule(rule.id).stats == UsageStats()
        assert lookup.get_rule(rule.id).pattern_value == 'starbucks'
        assert lookup.active_rules()[0].pattern_value == 'starbucks'
        assert lookup.active_rules()[0].active

    def test_writes_outside_the_service_are_not_seen(self, store, dispatcher, make_rule):
        _, lookup = self.wire(store, dispatcher)
        rule = make_rule()
        lookup.get_rule(rule.id)

        store.update_rule(rule.copy(pattern_value='peets'))
        assert lookup.get_rule(rule.id).pattern_value == 'starbucks'


def test_failing_invalidation_does_not_fail_the_write(service, dispatcher, store, caplog):
    class BrokenCache(InMemoryRuleCache):
        def invalidate(self, key):
            raise ConnectionError('cache unavailable')

    dispatcher.subscribe(CacheInvalidator(BrokenCache()))

    rule = service.create_rule(Rule('Dining', 'merchant', 'starbucks'))

    assert store.get_rule(rule.id) is not None
    assert 'cache unavailable' in caplog.text
