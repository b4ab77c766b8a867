"""
Storage interfaces

The engine only talks to these interfaces. Usage counters are owned by the
increment_* methods, which must be atomic and return the post-increment
counters; update_* never touches them.
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from ..core.composite_rule import CompositeRule
from ..core.confidence import UsageStats
from ..core.merchant_normalizer import CanonicalMerchant, MerchantAlias
from ..core.rule_matcher import Rule


class RuleStore(ABC):
    """Persistence for atomic and composite rules"""

    # Rules

    @abstractmethod
    def create_rule(self, rule: Rule) -> Rule:
        """Persist a new rule and return it with its id assigned"""

    @abstractmethod
    def get_rule(self, rule_id: int) -> Optional[Rule]:
        ...

    @abstractmethod
    def get_rules(self, rule_ids: List[int]) -> List[Rule]:
        """Rules for the given ids; unknown ids are skipped"""

    @abstractmethod
    def update_rule(self, rule: Rule) -> Rule:
        """Persist everything except usage counters; NotFoundError if missing"""

    @abstractmethod
    def delete_rule(self, rule_id: int) -> bool:
        ...

    @abstractmethod
    def find_rule(self, category, pattern_type: str, pattern_value: str) -> Optional[Rule]:
        """Rule with this category and type whose trimmed value matches case-insensitively"""

    @abstractmethod
    def active_rules(self) -> List[Rule]:
        ...

    @abstractmethod
    def all_rules(self) -> List[Rule]:
        ...

    @abstractmethod
    def increment_rule_usage(self, rule_id: int, successful: bool) -> UsageStats:
        """Atomically count one evaluated outcome and return the new counters"""

    # Composite rules

    @abstractmethod
    def create_composite(self, composite: CompositeRule) -> CompositeRule:
        ...

    @abstractmethod
    def get_composite(self, composite_id: int) -> Optional[CompositeRule]:
        ...

    @abstractmethod
    def update_composite(self, composite: CompositeRule) -> CompositeRule:
        ...

    @abstractmethod
    def delete_composite(self, composite_id: int) -> bool:
        ...

    @abstractmethod
    def active_composites(self) -> List[CompositeRule]:
        ...

    @abstractmethod
    def all_composites(self) -> List[CompositeRule]:
        ...

    @abstractmethod
    def increment_composite_usage(self, composite_id: int, successful: bool) -> UsageStats:
        ...


class MerchantStore(ABC):
    """Persistence for canonical merchants and their aliases"""

    @property
    @abstractmethod
    def supports_similarity(self) -> bool:
        """True when find_similar_merchant and similarity are available"""

    @abstractmethod
    def get_merchant(self, merchant_id: int) -> Optional[CanonicalMerchant]:
        ...

    @abstractmethod
    def find_merchant_by_name(self, name: str) -> Optional[CanonicalMerchant]:
        """Exact case-insensitive lookup by normalized name"""

    @abstractmethod
    def find_similar_merchant(self, name: str, threshold: float) -> Optional[CanonicalMerchant]:
        """Most similar merchant with similarity strictly above threshold"""

    @abstractmethod
    def similarity(self, first: str, second: str) -> float:
        ...

    @abstractmethod
    def find_merchant_by_alias(self, raw_name: str) -> Optional[CanonicalMerchant]:
        ...

    @abstractmethod
    def find_merchant_by_normalized_alias(self, normalized_name: str) -> Optional[CanonicalMerchant]:
        ...

    @abstractmethod
    def get_or_create_merchant(self, name: str, display_name: str) -> CanonicalMerchant:
        """Atomic: at most one merchant is ever created per normalized name"""

    @abstractmethod
    def add_merchant_alias(self, alias: MerchantAlias) -> CanonicalMerchant:
        """Record an alias (no-op if the raw name is known) and return its merchant"""

    @abstractmethod
    def increment_merchant_usage(self, merchant_id: int) -> CanonicalMerchant:
        ...

    @abstractmethod
    def merge_merchants(self, target_id: int, other_id: int) -> CanonicalMerchant:
        """Fold other into target and delete other"""

    @abstractmethod
    def all_merchants(self) -> List[CanonicalMerchant]:
        ...


class CorrectionStore(ABC):
    """Persistence for user feedback"""

    @abstractmethod
    def save_correction(self, correction):
        """Persist a Correction and return it with its id assigned"""

    @abstractmethod
    def list_corrections(self, rule_id: Optional[int] = None) -> list:
        ...
