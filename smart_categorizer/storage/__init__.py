"""
Rule, merchant and correction stores
"""
from .base import CorrectionStore, MerchantStore, RuleStore
from .memory_store import InMemoryStore

__all__ = [
    'CorrectionStore',
    'MerchantStore',
    'RuleStore',
    'InMemoryStore',
]
