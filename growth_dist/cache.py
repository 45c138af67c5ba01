"""
Memoization cache for exact growth distributions.

Keys are GrowthQuery values (structural equality). A miss first looks for
a cached result of the same start/growths at a smaller level count and
extends it; only if none exists is the distribution computed from level 0.

Concurrent requests for a key already being computed attach to the
in-flight Future instead of computing it again. Failures are propagated
to every waiter and never cached, except cancellation: it belongs to the
caller whose token was set, so waiters retry instead.
"""

import threading
from collections import OrderedDict
from concurrent.futures import Future, TimeoutError as FutureTimeoutError
from typing import Dict, Optional, Set, Tuple
import logging

from .types import Distribution, EngineConfig, GrowthQuery, Growths, StatVector
from .errors import Cancelled, check_cancelled, validate_query
from .exact.engine import compute_exact, iterate_levels

logger = logging.getLogger(__name__)

# How often a waiter checks its own cancel token
WAIT_POLL_SECONDS = 0.05


class _OwnerCancelled(Exception):
    """The computation a waiter attached to was cancelled by its owner."""


class DistributionCache:
    """
    Thread-safe cache from GrowthQuery to exact Distribution.

    Eviction (LRU when config.cache_capacity is set, unbounded otherwise)
    only ever costs recomputation; it is never visible in results.

    Attributes:
        hits: Lookups answered from a stored entry or an in-flight computation
        misses: Lookups that started a computation
        extensions: Computations that resumed from a smaller cached level count
        computations: Engine runs (one per miss)
    """

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config if config is not None else EngineConfig()
        self._lock = threading.Lock()
        self._entries: 'OrderedDict[GrowthQuery, Distribution]' = OrderedDict()
        self._levels: Dict[Tuple[StatVector, Growths], Set[int]] = {}
        self._in_flight: Dict[GrowthQuery, Future] = {}
        self.hits = 0
        self.misses = 0
        self.extensions = 0
        self.computations = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, query: GrowthQuery) -> bool:
        with self._lock:
            return query in self._entries

    def get_or_compute(
        self,
        query: GrowthQuery,
        cancel: Optional[object] = None
    ) -> Distribution:
        """
        Return the exact distribution for query, computing it at most once.

        Args:
            query: Growth query (cache key)
            cancel: Event-like token. Passed to the engine if this call ends
                up computing; polled while waiting on another caller's
                computation

        Raises:
            InvalidQuery, Intractable: From the engine, shared with waiters
            Cancelled: When this caller's own token is set. A waiter whose
                owner was cancelled retries and may become the new owner
        """
        validate_query(query)

        while True:
            with self._lock:
                cached = self._entries.get(query)
                if cached is not None:
                    self._entries.move_to_end(query)
                    self.hits += 1
                    return cached

                future = self._in_flight.get(query)
                owner = future is None
                if owner:
                    future = Future()
                    self._in_flight[query] = future
                    self.misses += 1
                    self.computations += 1
                    resume = self._best_prefix(query)
                    if resume is not None:
                        self.extensions += 1
                else:
                    self.hits += 1

            if owner:
                return self._compute_owned(query, future, resume, cancel)

            logger.debug("Waiting on in-flight computation for %d levels", query.levels)
            try:
                return self._wait(future, cancel)
            except _OwnerCancelled:
                # The owner's token is not ours; compute (or wait) again
                logger.debug("In-flight computation was cancelled; retrying")

    def _compute_owned(
        self,
        query: GrowthQuery,
        future: Future,
        resume: Optional[Tuple[int, Distribution]],
        cancel: Optional[object]
    ) -> Distribution:
        try:
            dist = self._compute(query, resume, cancel)
        except BaseException as exc:
            with self._lock:
                del self._in_flight[query]
            future.set_exception(exc)
            raise

        with self._lock:
            self._store(query, dist)
            del self._in_flight[query]
        future.set_result(dist)
        return dist

    @staticmethod
    def _wait(future: Future, cancel: Optional[object]) -> Distribution:
        while True:
            check_cancelled(cancel, "while waiting on an in-flight computation")
            try:
                return future.result(timeout=WAIT_POLL_SECONDS)
            except FutureTimeoutError:
                continue
            except Cancelled as exc:
                raise _OwnerCancelled() from exc

    def get(self, query: GrowthQuery) -> Optional[Distribution]:
        """Stored entry for query, without computing."""
        with self._lock:
            return self._entries.get(query)

    def clear(self) -> None:
        """Drop all stored entries (in-flight computations still finish)."""
        with self._lock:
            self._entries.clear()
            self._levels.clear()

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                'entries': len(self._entries),
                'hits': self.hits,
                'misses': self.misses,
                'extensions': self.extensions,
                'computations': self.computations,
            }

    def _compute(
        self,
        query: GrowthQuery,
        resume: Optional[Tuple[int, Distribution]],
        cancel: Optional[object]
    ) -> Distribution:
        if resume is not None:
            logger.info(
                "Extending cached %d-level distribution to %d levels",
                resume[0], query.levels
            )

        if not self.config.cache_intermediate:
            return compute_exact(query, self.config, cancel, resume_from=resume)

        dist = resume[1] if resume is not None else None
        for level, dist in iterate_levels(query, self.config, cancel, resume_from=resume):
            if level < query.levels:
                with self._lock:
                    self._store(query.with_levels(level), dist)
        return dist

    def _best_prefix(self, query: GrowthQuery) -> Optional[Tuple[int, Distribution]]:
        """Largest cached level count below query.levels for the same lineage."""
        levels = self._levels.get(query.lineage)
        if not levels:
            return None
        smaller = [lv for lv in levels if lv < query.levels]
        if not smaller:
            return None
        best = max(smaller)
        key = query.with_levels(best)
        self._entries.move_to_end(key)
        return best, self._entries[key]

    def _store(self, query: GrowthQuery, dist: Distribution) -> None:
        # Caller holds the lock. Same key always maps to an equal value.
        self._entries[query] = dist
        self._entries.move_to_end(query)
        self._levels.setdefault(query.lineage, set()).add(query.levels)

        capacity = self.config.cache_capacity
        while capacity is not None and len(self._entries) > capacity:
            evicted, _ = self._entries.popitem(last=False)
            lineage_levels = self._levels.get(evicted.lineage)
            if lineage_levels is not None:
                lineage_levels.discard(evicted.levels)
                if not lineage_levels:
                    del self._levels[evicted.lineage]


_default_cache: Optional[DistributionCache] = None
_default_lock = threading.Lock()


def get_default_cache() -> DistributionCache:
    """Process-wide cache with the default engine config."""
    global _default_cache
    with _default_lock:
        if _default_cache is None:
            _default_cache = DistributionCache()
        return _default_cache


def cached_distribution(query: GrowthQuery, cancel: Optional[object] = None) -> Distribution:
    """get_or_compute on the process-wide default cache."""
    return get_default_cache().get_or_compute(query, cancel)
