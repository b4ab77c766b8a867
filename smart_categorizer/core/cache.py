"""
Rule Cache

Read-through cache for rule-store lookups used during matching (member
resolution, active rule lists). Entries are invalidated explicitly on
every write through the CacheInvalidator subscriber; nothing relies on
time-based expiry.

Each key carries a generation that every invalidation bumps. A reader
takes the generation before loading from the store and the cache
refuses the value if the key was invalidated in between, so a load that
raced with a write can never repopulate a stale entry.
"""
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .events import MutationEvent

logger = logging.getLogger(__name__)

_MISSING = object()


class RuleCache(ABC):
    """Cache interface used by the engine"""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        ...

    @abstractmethod
    def generation(self, key: str) -> Any:
        """Opaque token that changes whenever key is invalidated"""
        ...

    @abstractmethod
    def set(self, key: str, value: Any, generation: Any = None) -> bool:
        """Store value; skipped (returns False) if generation is stale"""
        ...

    @abstractmethod
    def invalidate(self, key: str):
        ...

    @abstractmethod
    def clear(self):
        ...


class InMemoryRuleCache(RuleCache):
    """Process-local dictionary cache"""

    def __init__(self):
        self._entries: Dict[str, Any] = {}
        self._generations: Dict[str, int] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self.stats = {'hits': 0, 'misses': 0, 'invalidations': 0, 'stale_sets': 0}

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key in self._entries:
                self.stats['hits'] += 1
                return self._entries[key]
            self.stats['misses'] += 1
            return default

    def generation(self, key: str):
        with self._lock:
            return self._epoch, self._generations.get(key, 0)

    def set(self, key: str, value: Any, generation: Any = None) -> bool:
        with self._lock:
            if generation is not None and generation != (self._epoch, self._generations.get(key, 0)):
                self.stats['stale_sets'] += 1
                logger.debug("Skipped caching %s, invalidated during load", key)
                return False
            self._entries[key] = value
            return True

    def invalidate(self, key: str):
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1
            self.stats['invalidations'] += 1

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._generations.clear()
            self._epoch += 1

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._entries


class CacheInvalidator:
    """Event subscriber that drops the cache keys touched by a mutation"""

    def __init__(self, cache: RuleCache):
        self.cache = cache

    def __call__(self, event: MutationEvent):
        for key in event.cache_keys:
            self.cache.invalidate(key)
        # A rule change can alter any composite built on it
        if event.entity == 'rule':
            self.cache.invalidate('composites:active')


class CachedRuleLookup:
    """
    Wraps a rule store so matching reads go through a RuleCache

    Only reads are cached; writes must still go through the store (and the
    service publishing mutation events). Callers always get their own
    copies, so mutating a returned rule never changes the cached one.
    """

    def __init__(self, store, cache: RuleCache):
        self.store = store
        self.cache = cache

    def get_rule(self, rule_id: int):
        key = f"rule:{rule_id}"
        cached = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return cached.copy()
        generation = self.cache.generation(key)
        rule = self.store.get_rule(rule_id)
        if rule is None:
            return None
        self.cache.set(key, rule.copy(), generation)
        return rule

    def get_rules(self, rule_ids: List[int]) -> List[Any]:
        rules = []
        for rule_id in rule_ids:
            rule = self.get_rule(rule_id)
            if rule is not None:
                rules.append(rule)
        return rules

    def active_rules(self) -> List[Any]:
        return self._cached_list('rules:active', self.store.active_rules)

    def active_composites(self) -> List[Any]:
        return self._cached_list('composites:active', self.store.active_composites)

    def _cached_list(self, key: str, loader) -> List[Any]:
        cached: Optional[List[Any]] = self.cache.get(key, _MISSING)
        if cached is not _MISSING:
            return [value.copy() for value in cached]
        generation = self.cache.generation(key)
        values = list(loader())
        self.cache.set(key, [value.copy() for value in values], generation)
        return values
