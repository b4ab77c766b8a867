"""
Smart Categorizer

A rule engine that categorizes financial transactions from declarative
matching rules, tracks how accurate each rule is and learns new rules from
user corrections.
"""

__version__ = "1.0.0"

# Expose main classes for easy imports
from .config import EngineConfig
from .core.merchant_normalizer import MerchantNormalizer, normalize_merchant
from .core.rule_matcher import Rule
from .core.composite_rule import CompositeRule
from .core.rule_service import RuleService
from .core.feedback_loop import FeedbackLoop
from .core.categorization_orchestrator import CategorizationOrchestrator
from .errors import CategorizerError, NotFoundError, ValidationError

__all__ = [
    'EngineConfig',
    'MerchantNormalizer',
    'normalize_merchant',
    'Rule',
    'CompositeRule',
    'RuleService',
    'FeedbackLoop',
    'CategorizationOrchestrator',
    'CategorizerError',
    'NotFoundError',
    'ValidationError',
]
