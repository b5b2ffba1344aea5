
import asyncio
from difflib import SequenceMatcher
from typing import Iterable, List, Optional, Tuple

import structlog

from criteria_compiler.values.cache import ResolverCache
from criteria_compiler.values.rules import apply_rules, normalize_text
from criteria_compiler.values.store import InMemoryMappingStore, ValueMapping, ValueMappingStore

logger = structlog.get_logger(__name__)

def similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a, b).ratio()

class ValueResolver:
    """Turns free-text values into standard ones.

    Order: exact mapping, a known standard value, fuzzy mapping
    (score >= threshold), category rules, then the normalized input itself.
    Results are memoized per (category, normalized input) in the injected
    cache. A failing store is logged and skipped, and that result is not
    memoized.
    """

    def __init__(self, store: Optional[ValueMappingStore] = None, cache: Optional[ResolverCache] = None,
                 similarity_threshold: float = 0.8):
        self.store = store if store is not None else InMemoryMappingStore()
        self.cache = cache if cache is not None else ResolverCache()
        self.similarity_threshold = similarity_threshold

    def resolve(self, category: str, raw_value) -> str:
        normalized = normalize_text("" if raw_value is None else raw_value)
        key = (category, normalized)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            value = self._from_store(category, normalized)
        except Exception:
            logger.warning("value_store_unavailable", category=category, value=normalized, exc_info=True)
            return apply_rules(category, normalized)
        return self._remember(key, category, normalized, value)

    async def resolve_async(self, category: str, raw_value, timeout: Optional[float] = None) -> str:
        """Same as ``resolve`` but runs store I/O off-loop under ``timeout``.

        Cancellation of the calling task propagates.
        """
        normalized = normalize_text("" if raw_value is None else raw_value)
        key = (category, normalized)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        try:
            value = await asyncio.wait_for(asyncio.to_thread(self._from_store, category, normalized), timeout)
        except asyncio.TimeoutError:
            logger.warning("value_store_timeout", category=category, value=normalized, timeout=timeout)
            return apply_rules(category, normalized)
        except Exception:
            logger.warning("value_store_unavailable", category=category, value=normalized, exc_info=True)
            return apply_rules(category, normalized)
        return self._remember(key, category, normalized, value)

    def _remember(self, key, category: str, normalized: str, value: Optional[str]) -> str:
        if value is None:
            value = apply_rules(category, normalized)
        self.cache.set(key, value)
        return value

    def _from_store(self, category: str, normalized: str) -> Optional[str]:
        exact = self.store.find_exact(category, normalized)
        if exact is not None:
            return exact
        mappings = self.store.list_mappings(category)
        # already standard values resolve to themselves
        for m in mappings:
            if normalize_text(m.standard_value) == normalized:
                return m.standard_value
        return self._best_match(normalized, mappings)

    def _best_match(self, normalized: str, mappings: List[ValueMapping]) -> Optional[str]:
        best, best_score = None, -1.0
        for m in mappings:
            score = similarity(normalized, m.input_value)
            # strict > keeps the earliest mapping on ties
            if score > best_score:
                best, best_score = m, score
        if best is not None and best_score >= self.similarity_threshold:
            logger.debug("value_fuzzy_match", value=normalized, matched=best.input_value, score=round(best_score, 3))
            return best.standard_value
        return None

class CacheOnlyResolver:
    """Resolver view that never reaches the store.

    Answers from the shared cache, then from ``(category, raw, resolved)``
    results already obtained in this request (keyed by both spellings), then
    from the rules. Misses are not memoized.
    """

    def __init__(self, resolver: ValueResolver, known: Iterable[Tuple[str, str, str]] = ()):
        self.resolver = resolver
        self.known = {}
        for category, raw, resolved in known:
            self.known[(category, normalize_text(resolved))] = resolved
            self.known.setdefault((category, normalize_text(raw)), resolved)

    def resolve(self, category: str, raw_value) -> str:
        normalized = normalize_text("" if raw_value is None else raw_value)
        key = (category, normalized)
        cached = self.resolver.cache.get(key)
        if cached is not None:
            return cached
        if key in self.known:
            return self.known[key]
        return apply_rules(category, normalized)
