"""
Tests for merchant normalization and canonical merchant resolution
"""
import threading

import pytest

from smart_categorizer.core.merchant_normalizer import (
    MerchantNormalizer,
    beautify_merchant_name,
    character_overlap,
    normalize_merchant,
)
from smart_categorizer.storage.memory_store import InMemoryStore


class ExactMatchStore(InMemoryStore):
    """Store without a fuzzy index"""

    @property
    def supports_similarity(self) -> bool:
        return False


@pytest.fixture
def normalizer(store):
    return MerchantNormalizer(store)


@pytest.mark.parametrize('raw, expected', [
    ('PAYPAL *AMAZON.COM STORE #1234', 'amazon'),
    ('SQ *BLUE BOTTLE 0042', 'blue bottle'),
    ('Blue Bottle Coffee Inc', 'blue bottle coffee'),
    ('TST* Long Island Bagel Co', 'long island bagel'),
    ("Trader Joe's #552", "trader joe's"),
    ('AT&T*BILL PAYMENT', 'at&t bill payment'),
    ('POS WALMART SUPERCENTER', 'walmart supercenter'),
    ('  Uber   Trip  ', 'uber trip'),
])
def test_normalize(raw, expected):
    assert normalize_merchant(raw) == expected


@pytest.mark.parametrize('raw', [None, '', '   '])
def test_normalize_blank(raw):
    assert normalize_merchant(raw) == ''


@pytest.mark.parametrize('raw', [
    'PAYPAL *AMAZON.COM STORE #1234',
    'SQ *SQ *COFFEE SHOP',
    'ACME WIDGETS CO LLC',
    'shop.com.net',
    'Store 12 Location 9',
    "McDonald's #33 0001234",
    '***',
])
def test_normalize_is_idempotent(raw):
    once = normalize_merchant(raw)
    assert normalize_merchant(once) == once


def test_beautify():
    assert beautify_merchant_name('amazon') == 'Amazon'
    assert beautify_merchant_name('mcdonalds') == "McDonald's"
    assert beautify_merchant_name('blue bottle') == 'Blue Bottle'
    assert beautify_merchant_name('') == ''
    assert beautify_merchant_name(None) == ''


def test_beautify_normalized_brand_with_apostrophe():
    normalized = normalize_merchant("McDONALD'S #4412")
    assert normalized == "mcdonald's"
    assert beautify_merchant_name(normalized) == "McDonald's"


def test_character_overlap():
    assert character_overlap('abc', 'abd') == pytest.approx(2 / 3)
    assert character_overlap('aab', 'ab') == pytest.approx(2 / 3)
    assert character_overlap('ABC', 'abc') == 1.0
    assert character_overlap('', 'abc') == 0.0


def test_resolve_creates_canonical_merchant(normalizer, store):
    merchant = normalizer.resolve('SQ *BLUE BOTTLE 0042')

    assert merchant.name == 'blue bottle'
    assert merchant.display_name == 'Blue Bottle'
    assert 'SQ *BLUE BOTTLE 0042' in merchant.aliases
    assert len(store.all_merchants()) == 1


def test_resolve_reuses_alias_and_normalized_name(normalizer, store):
    first = normalizer.resolve('SQ *BLUE BOTTLE 0042')

    assert normalizer.resolve('SQ *BLUE BOTTLE 0042').id == first.id
    assert normalizer.resolve('Blue Bottle').id == first.id
    assert len(store.all_merchants()) == 1


def test_resolve_attaches_similar_merchant(normalizer, store):
    first = normalizer.resolve('SQ *BLUE BOTTLE 0042')
    similar = normalizer.resolve('BLUE BOTTLE COFFEE INC')

    assert similar.id == first.id
    assert 'BLUE BOTTLE COFFEE INC' in similar.aliases
    assert len(store.all_merchants()) == 1


def test_resolve_keeps_distinct_merchants_apart(normalizer, store):
    first = normalizer.resolve('BLUE BOTTLE')
    second = normalizer.resolve('SHELL OIL')

    assert first.id != second.id
    assert len(store.all_merchants()) == 2


@pytest.mark.parametrize('raw', [None, '', '   ', '***'])
def test_resolve_blank_returns_none(normalizer, store, raw):
    assert normalizer.resolve(raw) is None
    assert store.all_merchants() == []


def test_resolve_is_deterministic(normalizer):
    ids = {normalizer.resolve('PAYPAL *AMAZON.COM STORE #1234').id for _ in range(5)}
    assert len(ids) == 1


def test_concurrent_resolve_creates_one_merchant(normalizer, store):
    raws = [f'SQ *BLUE BOTTLE {n:04d}' for n in range(1000, 1016)]
    results = []

    def worker(raw):
        results.append(normalizer.resolve(raw).id)

    threads = [threading.Thread(target=worker, args=(raw,)) for raw in raws]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(set(results)) == 1
    assert len(store.all_merchants()) == 1


def test_similarity_confidence_uses_fuzzy_index(normalizer):
    assert normalizer.similarity_confidence('blue bottle', 'blue bottle') == 1.0
    assert 0.6 < normalizer.similarity_confidence('blue bottle coffee', 'blue bottle') < 1.0
    assert normalizer.similarity_confidence('', 'blue bottle') == 0.0
    assert normalizer.similarity_confidence('  ', 'blue bottle') == 0.0


def test_without_fuzzy_index_falls_back_to_exact_and_overlap():
    store = ExactMatchStore()
    normalizer = MerchantNormalizer(store)
    first = normalizer.resolve('BLUE BOTTLE')

    assert normalizer.find_similar('blue bottle').id == first.id
    assert normalizer.find_similar('blue bottle coffee') is None
    assert normalizer.similarity_confidence('abc', 'abd') == pytest.approx(2 / 3)


def test_record_usage(normalizer):
    merchant = normalizer.resolve('STARBUCKS')
    normalizer.record_usage(merchant)
    assert normalizer.record_usage(merchant).usage_count == 2


def test_merge(normalizer, store):
    target = normalizer.resolve('STARBUCKS')
    other = normalizer.resolve('SHELL OIL')
    normalizer.record_usage(target)
    normalizer.record_usage(other)
    normalizer.record_usage(other)

    merged = normalizer.merge(target, other)

    assert merged.id == target.id
    assert merged.usage_count == 3
    assert {'STARBUCKS', 'SHELL OIL'} <= merged.aliases
    assert store.get_merchant(other.id) is None
    assert normalizer.resolve('SHELL OIL').id == target.id


def test_merge_fills_blank_display_name_and_hint(store):
    normalizer = MerchantNormalizer(store)
    target = store.get_or_create_merchant('sb', '')
    other = store.get_or_create_merchant('starbucks', 'Starbucks')
    store._merchants[other.id].category_hint = 'Coffee'
    store._merchants[other.id].metadata = {'source': 'import'}

    merged = normalizer.merge(target, other)

    assert merged.display_name == 'Starbucks'
    assert merged.category_hint == 'Coffee'
    assert merged.metadata == {'source': 'import'}


def test_merge_with_itself_is_noop(normalizer, store):
    merchant = normalizer.resolve('STARBUCKS')
    assert normalizer.merge(merchant, merchant).id == merchant.id
    assert len(store.all_merchants()) == 1


def test_merchant_writes_publish_events(store, dispatcher):
    events = []
    dispatcher.subscribe(events.append)
    normalizer = MerchantNormalizer(store, dispatcher=dispatcher)

    first = normalizer.resolve('SQ *BLUE BOTTLE 0042')
    normalizer.resolve('Blue Bottle')
    normalizer.resolve('BLUE BOTTLE COFFEE INC')
    normalizer.record_usage(first)
    other = normalizer.resolve('SHELL OIL')
    normalizer.merge(first, other)

    assert [(e.entity, e.action, e.entity_id) for e in events] == [
        ('merchant', 'created', first.id),
        ('merchant', 'updated', first.id),
        ('merchant', 'usage', first.id),
        ('merchant', 'created', other.id),
        ('merchant', 'updated', first.id),
        ('merchant', 'deleted', other.id),
    ]
    assert events[-1].cache_keys == [f"merchant:{other.id}"]
