"""
Categorization engine core: rules, composite rules, confidence scoring,
merchant canonicalization and the feedback loop.
"""
from .match_input import Transaction
from .confidence import ConfidenceScorer, UsageStats
from .merchant_normalizer import CanonicalMerchant, MerchantNormalizer, normalize_merchant
from .rule_matcher import Rule
from .composite_rule import CompositeRule
from .events import EventDispatcher, MutationEvent
from .cache import CachedRuleLookup, CacheInvalidator, InMemoryRuleCache, RuleCache
from .rule_service import RuleService
from .feedback_loop import Correction, FeedbackLoop
from .categorization_orchestrator import CategorizationOrchestrator, CategorizationResult

__all__ = [
    'Transaction',
    'ConfidenceScorer',
    'UsageStats',
    'CanonicalMerchant',
    'MerchantNormalizer',
    'normalize_merchant',
    'Rule',
    'CompositeRule',
    'EventDispatcher',
    'MutationEvent',
    'CachedRuleLookup',
    'CacheInvalidator',
    'InMemoryRuleCache',
    'RuleCache',
    'RuleService',
    'Correction',
    'FeedbackLoop',
    'CategorizationOrchestrator',
    'CategorizationResult',
]
