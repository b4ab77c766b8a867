"""
Tests for feedback recording and learning from corrections
"""
import logging

import pytest

from smart_categorizer.core.confidence import UsageStats
from smart_categorizer.core.feedback_loop import (
    ACCEPTED,
    CORRECTION,
    REJECTED,
    Correction,
    FeedbackLoop,
    resolve_kind,
)
from smart_categorizer.core.merchant_normalizer import MerchantNormalizer
from smart_categorizer.errors import ValidationError


@pytest.fixture
def feedback(service, store):
    return FeedbackLoop(service, store)


class TestLearning:

    def test_correction_learns_one_merchant_rule(self, feedback, store, make_transaction):
        txn = make_transaction(merchant_name='Coffee Bar', id=42)
        feedback.record_feedback(txn, 'Coffee', kind=CORRECTION)

        rules = store.all_rules()
        assert len(rules) == 1
        learned = rules[0]
        assert (learned.category, learned.pattern_type, learned.pattern_value) == ('Coffee', 'merchant', 'Coffee Bar')
        assert learned.user_created
        assert learned.confidence_weight == 1.2
        assert learned.metadata['created_from_feedback'] is True
        assert learned.metadata['transaction_id'] == 42
        assert learned.metadata['feedback_id'] == store.list_corrections()[0].id

    def test_repeated_correction_creates_no_duplicate(self, feedback, store, make_transaction):
        feedback.record_feedback(make_transaction(merchant_name='Coffee Bar'), 'Coffee', kind=CORRECTION)
        feedback.record_feedback(make_transaction(merchant_name='Coffee Bar'), 'Coffee', kind=CORRECTION)
        feedback.record_feedback(make_transaction(merchant_name='  coffee bar '), 'Coffee', kind=CORRECTION)

        assert len(store.all_rules()) == 1
        assert len(store.list_corrections()) == 3

    def test_same_merchant_other_category_is_learned(self, feedback, store, make_transaction):
        feedback.record_feedback(make_transaction(merchant_name='Coffee Bar'), 'Coffee', kind=CORRECTION)
        feedback.record_feedback(make_transaction(merchant_name='Coffee Bar'), 'Dining', kind=CORRECTION)

        assert sorted(rule.category for rule in store.all_rules()) == ['Coffee', 'Dining']

    def test_description_fallback(self, feedback, store, make_transaction):
        feedback.record_feedback(make_transaction(merchant_name='  ', description='Gym membership'),
                                 'Fitness', kind=CORRECTION)

        [learned] = store.all_rules()
        assert (learned.pattern_type, learned.pattern_value) == ('description', 'Gym membership')

    def test_nothing_to_learn(self, feedback, store, make_transaction):
        correction = feedback.record_feedback(make_transaction(merchant_name=None, description=None),
                                              'Fitness', kind=CORRECTION)

        assert store.all_rules() == []
        assert correction.id is not None

    def test_mapping_transactions(self, feedback, store):
        feedback.record_feedback({'id': 'abc', 'merchant': 'Coffee Bar'}, 'Coffee', kind=CORRECTION)

        [learned] = store.all_rules()
        assert learned.metadata['transaction_id'] == 'abc'

    def test_normalizer_links_canonical_merchant(self, service, store, make_transaction):
        normalizer = MerchantNormalizer(store)
        loop = FeedbackLoop(service, store, normalizer=normalizer)

        loop.record_feedback(make_transaction(merchant_name='Coffee Bar'), 'Coffee', kind=CORRECTION)

        [learned] = store.all_rules()
        merchant = store.find_merchant_by_name('coffee bar')
        assert learned.metadata['canonical_merchant_id'] == merchant.id

    def test_blank_category_is_rejected(self, feedback, store, make_transaction):
        with pytest.raises(ValidationError):
            feedback.record_feedback(make_transaction(merchant_name='Coffee Bar'), '  ', kind=CORRECTION)
        assert store.all_rules() == []


class TestUsage:

    def test_accepted_feedback_counts_success(self, feedback, store, make_rule, make_transaction):
        rule = make_rule()
        feedback.record_feedback(make_transaction(), 'Dining', rule=rule, was_correct=True, confidence=0.7)

        assert store.get_rule(rule.id).stats == UsageStats(1, 1)
        [correction] = store.list_corrections(rule_id=rule.id)
        assert correction.kind == ACCEPTED
        assert correction.confidence == 0.7

    def test_rejected_feedback_counts_failure(self, feedback, store, make_rule, make_transaction):
        rule = make_rule()
        feedback.record_feedback(make_transaction(), 'Coffee', rule=rule)

        assert store.get_rule(rule.id).stats == UsageStats(1, 0)
        assert store.list_corrections()[0].kind == REJECTED

    def test_accepted_without_was_correct_is_not_a_success(self, feedback, store, make_rule, make_transaction):
        rule = make_rule()
        feedback.record_feedback(make_transaction(), 'Dining', rule=rule, kind=ACCEPTED)

        assert store.get_rule(rule.id).stats == UsageStats(1, 0)

    def test_correction_with_rule_counts_failure_and_learns(self, feedback, store, make_rule, make_transaction):
        rule = make_rule('Dining', 'merchant', 'coffee')
        feedback.record_feedback(make_transaction(merchant_name='Coffee Bar'), 'Coffee', rule=rule, kind=CORRECTION)

        assert store.get_rule(rule.id).stats == UsageStats(1, 0)
        assert store.find_rule('Coffee', 'merchant', 'coffee bar') is not None

    def test_repeated_failures_deactivate_rule(self, feedback, store, make_rule, make_transaction):
        rule = make_rule()
        for _ in range(20):
            feedback.record_feedback(make_transaction(), 'Coffee', rule=rule, kind='corrected')

        assert not store.get_rule(rule.id).active


class TestKinds:

    def test_defaults(self):
        assert resolve_kind(None, True) == ACCEPTED
        assert resolve_kind(None, False) == REJECTED
        assert resolve_kind(CORRECTION, False) == CORRECTION

    def test_unknown_kind_is_recorded_as_accepted(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert resolve_kind('thumbs_up', False) == ACCEPTED
        assert 'thumbs_up' in caplog.text


class TestImprovementSuggestion:

    def test_correction_suggests_new_pattern(self, make_transaction, make_rule):
        rule = make_rule('Dining', 'keyword', 'coffee')
        suggestion = Correction('Coffee', CORRECTION).improvement_suggestion(
            make_transaction(merchant_name='Coffee Bar'), rule)

        assert suggestion['suggested_action'] == 'create_new_pattern'
        assert suggestion['pattern_type'] == 'merchant'
        assert suggestion['pattern_value'] == 'Coffee Bar'
        assert suggestion['confidence_adjustment'] == 0.2
        assert suggestion['context']['original_pattern_value'] == 'coffee'
        assert suggestion['context']['transaction_merchant'] == 'Coffee Bar'

    def test_rejection_suggests_adjustment(self, make_transaction):
        suggestion = Correction('Coffee', REJECTED, rule_id=7).improvement_suggestion(make_transaction())
        assert suggestion == {'suggested_action': 'adjust_pattern', 'rule_id': 7, 'confidence_adjustment': -0.1}

    def test_accepted_has_no_suggestion(self, make_transaction):
        assert Correction('Coffee', ACCEPTED, was_correct=True).improvement_suggestion(make_transaction()) is None


def test_saved_feedback_publishes_event(feedback, store, dispatcher, make_rule, make_transaction):
    rule = make_rule()
    received = []
    dispatcher.subscribe(received.append)

    correction = feedback.record_feedback(make_transaction(), 'Dining', rule=rule, was_correct=True)

    assert (received[0].entity, received[0].action, received[0].entity_id) == ('correction', 'created', correction.id)
    assert received[0].category == 'Dining'
    assert received[0].cache_keys == []
