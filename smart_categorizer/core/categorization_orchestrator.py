"""
Categorization Orchestrator

The main engine that categorizes transactions using:
1. Merchant canonicalization (when a normalizer is attached)
2. Atomic rule matching
3. Composite rule matching
4. Manual review flag (for low confidence)
"""
import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import DEFAULT_CONFIG, EngineConfig
from .confidence import ConfidenceScorer
from .match_input import FieldsInput, to_match_input

logger = logging.getLogger(__name__)

UNCATEGORIZED = 'Uncategorized'


@dataclass
class CategorizationResult:
    """Result of categorization attempt"""
    category: Any
    confidence: float  # 0.0 to 1.0
    method: str  # 'rule', 'composite', 'no_match'
    needs_review: bool
    rule_ids: List[int] = field(default_factory=list)
    composite_ids: List[int] = field(default_factory=list)
    patterns: List[str] = field(default_factory=list)
    alternatives: List[Dict[str, Any]] = field(default_factory=list)
    merchant_id: Optional[int] = None
    rationale: Optional[str] = None


@dataclass
class _Match:
    category: Any
    score: float
    method: str
    pattern: str
    rule_id: Optional[int] = None
    composite_id: Optional[int] = None


def combined_score(scores: List[float], clamp: bool = True) -> float:
    """
    Weighted average with diminishing weights 1/(i+1) over scores, highest first

    Args:
        scores: Effective confidences of the matches for one category
        clamp: Clip the result to [0, 1] (reported confidence); ranking
               uses the unclipped value
    """
    if not scores:
        return 0.0
    ordered = sorted(scores, reverse=True)
    weights = [1.0 / (i + 1) for i in range(len(ordered))]
    total = sum(score * weight for score, weight in zip(ordered, weights)) / sum(weights)
    if not clamp:
        return total
    return _reported(total)


def _reported(score: float) -> float:
    return max(0.0, min(1.0, score))


class CategorizationOrchestrator:
    """
    Orchestrates transaction categorization over the active rule bank
    """

    def __init__(self,
                 rules,
                 normalizer=None,
                 config: Optional[EngineConfig] = None,
                 review_threshold: Optional[float] = None):
        """
        Args:
            rules: Rule lookup exposing active_rules(), active_composites()
                   and get_rules(ids) (a RuleStore or CachedRuleLookup)
            normalizer: Optional MerchantNormalizer for canonical merchants
            config: Engine configuration
            review_threshold: Confidence below which results need review
        """
        self.rules = rules
        self.normalizer = normalizer
        self.config = config or DEFAULT_CONFIG
        self.scorer = ConfidenceScorer(self.config)
        self.review_threshold = (review_threshold if review_threshold is not None
                                 else self.config.review_threshold)

        # Stats
        self.stats = {
            'total': 0,
            'rule_match': 0,
            'composite_match': 0,
            'needs_review': 0,
            'high_confidence': 0,
            'no_match': 0,
        }

    def _rule_matches(self, fields: FieldsInput, canonical: Optional[FieldsInput]) -> List[_Match]:
        matches = []
        for rule in self.rules.active_rules():
            if rule.matches(fields) or (canonical is not None and rule.matches(canonical)):
                matches.append(_Match(
                    category=rule.category,
                    score=rule.effective_confidence(self.scorer),
                    method='rule',
                    pattern=rule.type_value,
                    rule_id=rule.id,
                ))
        return matches

    def _composite_matches(self, fields: FieldsInput) -> List[_Match]:
        matches = []
        for composite in self.rules.active_composites():
            if composite.matches(fields, self.rules):
                matches.append(_Match(
                    category=composite.category,
                    score=composite.effective_confidence(self.rules, self.scorer),
                    method='composite',
                    pattern=f"composite:{composite.name or composite.id}",
                    composite_id=composite.id,
                ))
        return matches

    def categorize(self, transaction: Any) -> CategorizationResult:
        """
        Categorize a single transaction

        Args:
            transaction: Transaction, mapping or transaction-like record

        Returns:
            CategorizationResult (Uncategorized when nothing matched)
        """
        self.stats['total'] += 1

        fields = to_match_input(transaction)
        if not isinstance(fields, FieldsInput):
            return self._no_match(None, 'Not a transaction')

        merchant = None
        canonical = None
        if self.normalizer is not None and fields.merchant:
            merchant = self.normalizer.resolve(fields.merchant)
            if merchant is not None and merchant.name != (fields.merchant or '').strip().lower():
                canonical = dataclasses.replace(fields, merchant=merchant.name)

        matches = self._rule_matches(fields, canonical) + self._composite_matches(fields)
        merchant_id = merchant.id if merchant else None
        if not matches:
            return self._no_match(merchant_id, 'No matching rule')

        # Group by category in first-seen order
        grouped: Dict[Any, List[_Match]] = {}
        for match in matches:
            grouped.setdefault(match.category, []).append(match)

        ranked = []
        for order, (category, group) in enumerate(grouped.items()):
            raw = combined_score([m.score for m in group], clamp=False)
            ranked.append((raw, len(group), -order, category, group))
        ranked.sort(key=lambda item: item[:3], reverse=True)

        raw, _, _, category, group = ranked[0]
        score = _reported(raw)
        needs_review = score < self.review_threshold
        method = group[0].method

        self.stats['rule_match' if method == 'rule' else 'composite_match'] += 1
        self.stats['needs_review' if needs_review else 'high_confidence'] += 1

        patterns = [m.pattern for m in group]
        return CategorizationResult(
            category=category,
            confidence=score,
            method=method,
            needs_review=needs_review,
            rule_ids=[m.rule_id for m in group if m.rule_id is not None],
            composite_ids=[m.composite_id for m in group if m.composite_id is not None],
            patterns=patterns,
            alternatives=[{'category': item[3], 'confidence': _reported(item[0])} for item in ranked[1:3]],
            merchant_id=merchant_id,
            rationale=f"Matched {', '.join(patterns)}",
        )

    def _no_match(self, merchant_id: Optional[int], rationale: str) -> CategorizationResult:
        self.stats['no_match'] += 1
        self.stats['needs_review'] += 1
        return CategorizationResult(
            category=UNCATEGORIZED,
            confidence=0.0,
            method='no_match',
            needs_review=True,
            merchant_id=merchant_id,
            rationale=rationale,
        )

    def categorize_batch(self, transactions: List[Any]) -> List[CategorizationResult]:
        """
        Categorize multiple transactions

        Args:
            transactions: Transactions, mappings or transaction-like records

        Returns:
            One CategorizationResult per transaction, in order
        """
        results = [self.categorize(txn) for txn in transactions]
        logger.debug("Categorized batch of %d transactions", len(results))
        return results

    def print_stats(self):
        """Print categorization statistics"""
        if self.stats['total'] == 0:
            print("No transactions categorized yet")
            return

        total = self.stats['total']

        print("\n" + "=" * 80)
        print("📊 CATEGORIZATION STATISTICS")
        print("=" * 80)
        print(f"Total transactions: {total}")
        print(f"\n✅ Categorization Results:")
        print(f"  • Rule match: {self.stats['rule_match']} ({self.stats['rule_match']/total*100:.1f}%)")
        print(f"  • Composite match: {self.stats['composite_match']} ({self.stats['composite_match']/total*100:.1f}%)")
        print(f"  • No match: {self.stats['no_match']} ({self.stats['no_match']/total*100:.1f}%)")

        print(f"\n📋 Review Status:")
        print(f"  • High confidence (≥{self.review_threshold*100:.0f}%): {self.stats['high_confidence']} ({self.stats['high_confidence']/total*100:.1f}%)")
        print(f"  • Needs review: {self.stats['needs_review']} ({self.stats['needs_review']/total*100:.1f}%)")

        print("=" * 80)
