"""
Feedback Loop

Learns from user feedback on categorizations:
- accepted: the suggested category was right
- rejected: the suggestion was wrong
- corrected: the suggestion was wrong and the user picked another category
- correction: the user categorized a transaction no rule handled well;
  a new user-created rule is learned from it
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from ..config import DEFAULT_CONFIG, EngineConfig
from . import events
from .match_input import FieldsInput, to_match_input
from .rule_matcher import Rule

logger = logging.getLogger(__name__)

ACCEPTED = 'accepted'
REJECTED = 'rejected'
CORRECTED = 'corrected'
CORRECTION = 'correction'
FEEDBACK_KINDS = (ACCEPTED, REJECTED, CORRECTED, CORRECTION)

NEW_PATTERN_ADJUSTMENT = 0.2
ADJUST_PATTERN_ADJUSTMENT = -0.1


@dataclass
class Correction:
    """One piece of user feedback about a transaction's category"""
    category: Any
    kind: str
    was_correct: bool = False
    transaction_id: Optional[Any] = None
    rule_id: Optional[int] = None
    confidence: Optional[float] = None
    created_at: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    @property
    def successful(self) -> bool:
        return self.kind == ACCEPTED and bool(self.was_correct)

    def improvement_suggestion(self, transaction: Any, rule: Optional[Rule] = None) -> Optional[Dict[str, Any]]:
        """
        Suggest how the rule bank should change because of this feedback

        Args:
            transaction: The transaction the feedback is about
            rule: The rule that produced the original categorization, if any

        Returns:
            Suggestion dict, or None for accepted feedback
        """
        if self.kind == CORRECTION:
            fields = _fields(transaction)
            pattern_type, pattern_value = suggested_pattern(fields)
            return {
                'suggested_action': 'create_new_pattern',
                'category': self.category,
                'pattern_type': pattern_type,
                'pattern_value': pattern_value,
                'confidence_adjustment': NEW_PATTERN_ADJUSTMENT,
                'context': {
                    'transaction_merchant': fields.merchant,
                    'transaction_description': fields.description,
                    'transaction_amount': fields.amount,
                    'transaction_date': fields.timestamp,
                    'original_pattern_type': rule.pattern_type if rule else None,
                    'original_pattern_value': rule.pattern_value if rule else None,
                },
            }
        if self.kind in (REJECTED, CORRECTED):
            return {
                'suggested_action': 'adjust_pattern',
                'rule_id': self.rule_id,
                'confidence_adjustment': ADJUST_PATTERN_ADJUSTMENT,
            }
        return None


def _fields(transaction: Any) -> FieldsInput:
    match_input = to_match_input(transaction)
    if isinstance(match_input, FieldsInput):
        return match_input
    return FieldsInput()


def _transaction_id(transaction: Any):
    if isinstance(transaction, Mapping):
        return transaction.get('id')
    return getattr(transaction, 'id', None)


def _present(text: Optional[str]) -> bool:
    return bool(text and text.strip())


def suggested_pattern(fields: FieldsInput):
    """Pick the pattern a correction should teach: merchant, then description"""
    if _present(fields.merchant):
        return 'merchant', fields.merchant.strip()
    if _present(fields.description):
        return 'description', fields.description.strip()
    return 'keyword', None


def resolve_kind(kind: Optional[str], was_correct: bool) -> str:
    if kind is None:
        return ACCEPTED if was_correct else REJECTED
    if kind not in FEEDBACK_KINDS:
        logger.warning("Unknown feedback kind %r, recording as %s", kind, ACCEPTED)
        return ACCEPTED
    return kind


class FeedbackLoop:
    """
    Records feedback, updates rule accuracy and learns new rules from
    corrections
    """

    def __init__(self, rule_service, corrections, normalizer=None, config: Optional[EngineConfig] = None):
        """
        Args:
            rule_service: RuleService used for usage recording and rule creation
            corrections: Correction store
            normalizer: Optional MerchantNormalizer; learned merchant rules
                        remember the canonical merchant id
            config: Engine configuration
        """
        self.rule_service = rule_service
        self.corrections = corrections
        self.normalizer = normalizer
        self.config = config or DEFAULT_CONFIG

    def record_feedback(self,
                        transaction: Any,
                        correct_category: Any,
                        rule: Optional[Rule] = None,
                        was_correct: bool = False,
                        confidence: Optional[float] = None,
                        kind: Optional[str] = None) -> Correction:
        """
        Record feedback about a categorized transaction

        Args:
            transaction: Transaction-like record or mapping
            correct_category: The category the transaction belongs to
            rule: Rule that produced the categorization, if any
            was_correct: Whether the produced category was right
            confidence: Confidence reported with the categorization
            kind: accepted, rejected, corrected or correction

        Returns:
            The persisted Correction
        """
        kind = resolve_kind(kind, was_correct)
        correction = self.corrections.save_correction(Correction(
            category=correct_category,
            kind=kind,
            was_correct=bool(was_correct),
            transaction_id=_transaction_id(transaction),
            rule_id=rule.id if rule else None,
            confidence=confidence,
        ))
        self.rule_service.dispatcher.publish(
            events.MutationEvent(events.CORRECTION, 'created', correction.id, category=correction.category)
        )

        if rule is not None and rule.id is not None:
            self.rule_service.record_usage(rule, correction.successful)

        if kind == CORRECTION:
            self.learn_from_correction(correction, transaction)

        return correction

    def learn_from_correction(self, correction: Correction, transaction: Any) -> Optional[Rule]:
        """
        Create a user rule from a correction unless an equivalent rule exists

        Returns:
            The created rule, or None if nothing was created
        """
        fields = _fields(transaction)
        pattern_type, pattern_value = suggested_pattern(fields)
        if not _present(pattern_value):
            logger.debug("Correction %s has nothing to learn from", correction.id)
            return None

        existing = self.rule_service.store.find_rule(correction.category, pattern_type, pattern_value)
        if existing:
            logger.debug("Rule %s already covers correction %s", existing.id, correction.id)
            return None

        metadata = {
            'created_from_feedback': True,
            'feedback_id': correction.id,
            'transaction_id': correction.transaction_id,
        }
        if self.normalizer is not None and pattern_type == 'merchant':
            merchant = self.normalizer.resolve(pattern_value)
            if merchant is not None:
                metadata['canonical_merchant_id'] = merchant.id

        rule = self.rule_service.create_rule(Rule(
            category=correction.category,
            pattern_type=pattern_type,
            pattern_value=pattern_value,
            confidence_weight=self.config.feedback_confidence_weight,
            user_created=True,
            metadata=metadata,
        ))
        logger.info("Learned %s rule %r for %s from correction %s",
                    pattern_type, pattern_value, correction.category, correction.id)
        return rule
