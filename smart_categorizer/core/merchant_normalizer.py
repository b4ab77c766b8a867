"""
Merchant Normalization Module

Converts raw merchant text into clean, normalized merchant names and
deduplicates them into canonical merchants so that "SQ *BLUE BOTTLE 0042",
"Blue Bottle" and "BLUE BOTTLE COFFEE INC" can be grouped together.
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Set

from ..config import DEFAULT_CONFIG, EngineConfig
from .events import MERCHANT, EventDispatcher, MutationEvent

logger = logging.getLogger(__name__)

# Payment processor prefixes to strip
PROCESSOR_PREFIX = re.compile(r'^(paypal\s*\*|sq\s*\*|square\s*\*|tst\s*\*|pos\s+|ccd\s+)')

# Noise patterns, applied in order
NOISE_PATTERNS = [
    (re.compile(r'[*_]+'), ' '),                          # Asterisks / underscores
    (re.compile(r'\s+(store|location)\s*#?\s*\d+'), ''),  # Store numbers like "STORE #123"
    (re.compile(r'\s+#\s*\d+$'), ''),                     # Trailing "#1234"
    (re.compile(r'\s+\d{4,}$'), ''),                      # Trailing transaction IDs
    (re.compile(r'\.(com|net|org)\b'), ''),               # Web domains like "AMAZON.COM"
    (re.compile(r'\s+(inc|llc|ltd|corp|co|company)\.?$'), ''),  # Company suffixes
    (re.compile(r"[^\w\s&'-]"), ' '),                    # Punctuation except & ' -
    (re.compile(r'\s+'), ' '),                            # Squeeze whitespace
]

# Known merchant casing (normalized name, apostrophes dropped -> display name)
KNOWN_MERCHANTS = {
    'uber': 'Uber',
    'lyft': 'Lyft',
    'amazon': 'Amazon',
    'walmart': 'Walmart',
    'target': 'Target',
    'starbucks': 'Starbucks',
    'mcdonalds': "McDonald's",
    'netflix': 'Netflix',
    'spotify': 'Spotify',
}


@dataclass
class CanonicalMerchant:
    """Deduplicated identity for many raw merchant spellings"""
    name: str
    display_name: str = ''
    usage_count: int = 0
    aliases: Set[str] = field(default_factory=set)
    category_hint: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None


@dataclass(frozen=True)
class MerchantAlias:
    """A raw merchant spelling mapped to a canonical merchant"""
    raw_name: str
    normalized_name: str
    merchant_id: int
    confidence: float = 1.0


def _normalize_once(text: str) -> str:
    text = text.lower().strip()
    text = PROCESSOR_PREFIX.sub('', text).strip()
    for pattern, replacement in NOISE_PATTERNS:
        text = pattern.sub(replacement, text)
    return text.strip()


def normalize_merchant(raw: Optional[str]) -> str:
    """
    Normalize raw merchant text into a lowercase canonical name

    Args:
        raw: Raw merchant name as it appears on a statement

    Returns:
        Normalized name, or "" for blank input
    """
    if not raw or not raw.strip():
        return ''

    text = _normalize_once(raw)
    # Repeat until stable so normalize(normalize(x)) == normalize(x)
    while True:
        again = _normalize_once(text)
        if again == text:
            return text
        text = again


def beautify_merchant_name(name: Optional[str]) -> str:
    """
    Display form of a normalized merchant name

    Known merchants get their brand casing, everything else is title-cased.
    """
    if not name or not name.strip():
        return ''

    key = name.strip().lower().replace("'", '')
    if key in KNOWN_MERCHANTS:
        return KNOWN_MERCHANTS[key]
    return ' '.join(word.capitalize() for word in name.split())


def character_overlap(first: str, second: str) -> float:
    """Character-multiset overlap ratio |A & B| / max(|a|, |b|)"""
    if not first or not second:
        return 0.0
    first, second = first.lower(), second.lower()
    common = sum((Counter(first) & Counter(second)).values())
    return common / max(len(first), len(second))


class MerchantNormalizer:
    """
    Resolves raw merchant names to canonical merchants stored in a
    merchant store

    Resolution order (first hit wins, cheap lookups before fuzzy search):
    1. Alias for the exact raw name
    2. Alias for the normalized name
    3. Similar canonical merchant (fuzzy), recorded as a new alias
    4. New canonical merchant
    """

    def __init__(self, store, config: Optional[EngineConfig] = None,
                 dispatcher: Optional[EventDispatcher] = None):
        """
        Args:
            store: Merchant store (see storage.base.MerchantStore)
            config: Engine configuration (similarity threshold)
            dispatcher: Receives a MutationEvent after each merchant write
        """
        self.store = store
        self.config = config or DEFAULT_CONFIG
        self.dispatcher = dispatcher or EventDispatcher()

    def _publish(self, action: str, merchant_id):
        self.dispatcher.publish(MutationEvent(MERCHANT, action, merchant_id))

    def normalize(self, raw: Optional[str]) -> str:
        return normalize_merchant(raw)

    def beautify(self, name: Optional[str]) -> str:
        return beautify_merchant_name(name)

    def find_similar(self, normalized: str) -> Optional[CanonicalMerchant]:
        """
        Find the canonical merchant closest to a normalized name

        Uses the store's fuzzy index when it has one, exact
        case-insensitive lookup otherwise.
        """
        if not normalized or not normalized.strip():
            return None
        if self.store.supports_similarity:
            return self.store.find_similar_merchant(normalized, self.config.similarity_threshold)
        return self.store.find_merchant_by_name(normalized)

    def similarity_confidence(self, first: str, second: str) -> float:
        """Similarity of two names in [0, 1]"""
        if not first or not second or not first.strip() or not second.strip():
            return 0.0
        if self.store.supports_similarity:
            score = self.store.similarity(first.lower(), second.lower())
            return max(0.0, min(1.0, float(score)))
        return character_overlap(first, second)

    def resolve(self, raw: Optional[str]) -> Optional[CanonicalMerchant]:
        """
        Resolve raw merchant text to its canonical merchant, creating one
        if it has never been seen

        Args:
            raw: Raw merchant name

        Returns:
            CanonicalMerchant, or None for blank input
        """
        if not raw or not raw.strip():
            return None

        merchant = self.store.find_merchant_by_alias(raw)
        if merchant:
            return merchant

        normalized = normalize_merchant(raw)
        if not normalized:
            logger.debug("Merchant %r normalizes to nothing, skipping", raw)
            return None

        merchant = self.store.find_merchant_by_normalized_alias(normalized)
        if merchant:
            return merchant

        merchant = self.find_similar(normalized)
        if merchant:
            confidence = self.similarity_confidence(normalized, merchant.name)
            merchant = self.store.add_merchant_alias(
                MerchantAlias(raw, normalized, merchant.id, confidence)
            )
            self._publish('updated', merchant.id)
            return merchant

        merchant = self.store.get_or_create_merchant(normalized, beautify_merchant_name(normalized))
        logger.info("Created canonical merchant %r for %r", merchant.name, raw)
        merchant = self.store.add_merchant_alias(MerchantAlias(raw, normalized, merchant.id, 1.0))
        self._publish('created', merchant.id)
        return merchant

    def record_usage(self, merchant: CanonicalMerchant) -> CanonicalMerchant:
        """Atomically count one more transaction for this merchant"""
        updated = self.store.increment_merchant_usage(merchant.id)
        self._publish('usage', merchant.id)
        return updated

    def merge(self, target: CanonicalMerchant, other: CanonicalMerchant) -> CanonicalMerchant:
        """
        Merge another canonical merchant into target

        Aliases move to target, usage counts are summed and target keeps its
        display name and category hint unless they are blank.
        """
        if other.id == target.id:
            return target
        merged = self.store.merge_merchants(target.id, other.id)
        logger.info("Merged canonical merchant %r into %r", other.name, target.name)
        self._publish('updated', target.id)
        self._publish('deleted', other.id)
        return merged
