"""
Confidence Scoring

Usage bookkeeping shared by rules and composite rules, and the formula
family that turns a configured weight plus observed accuracy into a
trust value in [0.3, 5.0].
"""
import math
from dataclasses import dataclass
from typing import Optional, Sequence

from ..config import DEFAULT_CONFIG, EngineConfig


@dataclass(frozen=True)
class UsageStats:
    """Immutable usage counters; success_rate is always derived"""
    usage_count: int = 0
    success_count: int = 0

    @property
    def success_rate(self) -> float:
        if self.usage_count <= 0:
            return 0.0
        return self.success_count / self.usage_count

    def recorded(self, successful: bool) -> 'UsageStats':
        """Return the stats after one more evaluated outcome"""
        return UsageStats(
            usage_count=self.usage_count + 1,
            success_count=self.success_count + (1 if successful else 0),
        )

    def merged(self, other: 'UsageStats') -> 'UsageStats':
        return UsageStats(
            usage_count=self.usage_count + other.usage_count,
            success_count=self.success_count + other.success_count,
        )

    def is_consistent(self) -> bool:
        return 0 <= self.success_count <= self.usage_count


class ConfidenceScorer:
    """
    Computes effective confidence for rules and composite rules

    Confidence degrades under sparse data, improves with success rate and
    never leaves [min_confidence, max_confidence]. Non-finite or
    out-of-range weights are scored as the worst case.
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or DEFAULT_CONFIG

    def sanitize_weight(self, weight) -> float:
        """Map NaN, infinities and out-of-range weights to the minimum weight"""
        try:
            value = float(weight)
        except (TypeError, ValueError):
            return self.config.min_confidence_weight
        if not math.isfinite(value):
            return self.config.min_confidence_weight
        if value < self.config.min_confidence_weight or value > self.config.max_confidence_weight:
            return self.config.min_confidence_weight
        return value

    def clamp(self, value: float) -> float:
        if not math.isfinite(value):
            return self.config.min_confidence
        return max(self.config.min_confidence, min(self.config.max_confidence, value))

    def success_factor(self, stats: UsageStats) -> float:
        midpoint = self.config.success_midpoint
        return midpoint + stats.success_rate * (1.0 - midpoint)

    def rule_confidence(self, weight, stats: UsageStats) -> float:
        """
        Effective confidence of an atomic rule

        Args:
            weight: Configured confidence_weight
            stats: Current usage counters

        Returns:
            Confidence in [min_confidence, max_confidence]
        """
        base = self.sanitize_weight(weight)
        if stats.usage_count < self.config.min_sample_size:
            return self.clamp(base * self.config.rule_sparse_factor)
        return self.clamp(base * self.success_factor(stats))

    def composite_confidence(self, weight, stats: UsageStats,
                             member_confidences: Sequence[float]) -> float:
        """
        Effective confidence of a composite rule

        Returns 0.0 when none of the members resolve.
        """
        if not member_confidences:
            return 0.0
        base = self.sanitize_weight(weight)
        average = sum(member_confidences) / len(member_confidences)
        adjusted = base * (average + average * self.config.composite_member_boost)
        if stats.usage_count < self.config.min_sample_size:
            adjusted *= self.config.composite_sparse_factor
        else:
            adjusted *= self.success_factor(stats)
        return self.clamp(adjusted)

    def should_deactivate(self, stats: UsageStats, user_created: bool) -> bool:
        """Poorly performing, sufficiently sampled, system-created rules are retired"""
        if user_created:
            return False
        if stats.usage_count < self.config.deactivation_min_usage:
            return False
        return stats.success_rate < self.config.deactivation_success_floor


DEFAULT_SCORER = ConfidenceScorer()
