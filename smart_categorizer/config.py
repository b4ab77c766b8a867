"""
Engine configuration

Tuned constants for confidence scoring, deactivation and merchant matching.
Defaults can be overridden with CATEGORIZER_* environment variables
(a .env file is loaded if present).
"""
import os
from dataclasses import dataclass, fields
from typing import Optional

from dotenv import load_dotenv


# Load environment variables
load_dotenv()

ENV_PREFIX = 'CATEGORIZER_'


@dataclass(frozen=True)
class EngineConfig:
    """Heuristic constants used across the engine"""

    # Confidence bounds
    min_confidence: float = 0.3
    max_confidence: float = 5.0

    # Allowed confidence_weight range for rules
    min_confidence_weight: float = 0.1
    max_confidence_weight: float = 5.0

    # Below this many uses a rule is considered under-sampled
    min_sample_size: int = 5
    rule_sparse_factor: float = 0.7
    composite_sparse_factor: float = 0.8
    success_midpoint: float = 0.5
    composite_member_boost: float = 0.3

    # Auto-deactivation
    deactivation_min_usage: int = 20
    deactivation_success_floor: float = 0.3

    # Merchant fuzzy matching
    similarity_threshold: float = 0.6

    # Rules created from corrections start slightly above the default weight
    feedback_confidence_weight: float = 1.2

    # Categorization results below this score are flagged for review
    review_threshold: float = 0.80

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX) -> 'EngineConfig':
        """
        Build a config from environment variables

        Args:
            prefix: Variable prefix (e.g. CATEGORIZER_MIN_SAMPLE_SIZE)

        Returns:
            EngineConfig with any overridden values
        """
        overrides = {}
        for field in fields(cls):
            raw: Optional[str] = os.getenv(prefix + field.name.upper())
            if raw is None or raw.strip() == '':
                continue
            caster = int if field.type in (int, 'int') else float
            try:
                overrides[field.name] = caster(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {prefix + field.name.upper()}: {raw!r}")
        return cls(**overrides)


DEFAULT_CONFIG = EngineConfig()
