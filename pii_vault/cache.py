"""
Process-wide key material cache.

This module provides:
- KeyCache: TTL-scoped key_id -> key material cache with single-flight fetch
- CacheStats: Counters for operability

Policy:
- Expiry is lazy: an entry is checked on access and replaced, never read,
  once ``now >= expires_at``. There is no background sweep.
- The mapping is unbounded; entries are only ever replaced, never evicted,
  except through invalidate().
- Concurrent misses for the same (key_id, mode) collapse into one backend
  call; every waiter gets that call's material or its exception. Reads
  also join an in-flight create for the same key id.
- Every store and every invalidate() bumps a per-key_id generation. A
  fetch that finishes after its key id moved on never overwrites the
  newer state.
- The cache lock is never held across a backend call, so a slow fetch for
  one key id does not block any other key id.

Security Note:
    Never log key material. Only key ids (hex) and outcomes.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional, Tuple, Union

from .backend import KeyBackend
from .errors import BackendError, KeyNotFoundError

logger = logging.getLogger("pii_vault.cache")

DEFAULT_TTL_SECONDS: float = 300.0

# Attempts before a leader hands out stale material without caching it
_STALE_REFETCH_LIMIT: int = 3

BytesLike = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class _CacheEntry:
    """Immutable entry; replaced as a whole so readers never see a torn write."""

    material: Optional[bytes]  # None marks a shredded key
    expires_at: float


@dataclass
class CacheStats:
    """Cache counters."""

    hits: int = 0
    misses: int = 0
    coalesced: int = 0
    fetch_errors: int = 0
    shredded: int = 0

    def __str__(self) -> str:
        return (
            f"hits={self.hits} misses={self.misses} coalesced={self.coalesced} "
            f"fetch_errors={self.fetch_errors} shredded={self.shredded}"
        )


class KeyCache:
    """
    TTL cache in front of a KeyBackend.

    Two fetch modes share the entries:
    - create=True calls backend.ensure_key() (used when sealing)
    - create=False calls backend.fetch_key() (used when opening); a
      KeyNotFoundError is cached as a shredded entry for one TTL window
    """

    def __init__(
        self,
        backend: KeyBackend,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        wait_timeout: Optional[float] = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            backend: Source of truth for key material
            ttl_seconds: Lifetime of an entry; 0 disables reuse
            clock: Monotonic time source in seconds
            wait_timeout: Max seconds a waiter blocks on an in-flight fetch
                (None waits for the fetch however long it takes)
        """
        if ttl_seconds < 0:
            raise ValueError("ttl_seconds cannot be negative")
        self._backend = backend
        self._ttl = float(ttl_seconds)
        self._clock = clock
        self._wait_timeout = wait_timeout
        self._lock = threading.Lock()
        self._entries: Dict[bytes, _CacheEntry] = {}
        self._inflight: Dict[Tuple[bytes, bool], Future] = {}
        self._generations: Dict[bytes, int] = {}
        self._stats = CacheStats()

    @property
    def backend(self) -> KeyBackend:
        return self._backend

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def get_or_fetch(self, key_id: BytesLike, create: bool = True) -> bytes:
        """
        Return key material for key_id, fetching it on miss or expiry.

        A create=False request joins an in-flight create=True fetch for the
        same key id, since ensured material also serves a read.

        Args:
            key_id: Logical key identifier
            create: Create the key at the backend if absent

        Returns:
            32-byte key material

        Raises:
            KeyNotFoundError: If create is False and the key is gone
            BackendError: If the backend call failed or the wait timed out
        """
        key_id = bytes(key_id)
        flight = (key_id, create)

        with self._lock:
            entry = self._entries.get(key_id)
            if entry is not None and self._clock() < entry.expires_at:
                if entry.material is not None:
                    self._stats.hits += 1
                    return entry.material
                if not create:
                    self._stats.hits += 1
                    raise KeyNotFoundError(f"Key {key_id.hex()} is shredded")

            future = self._inflight.get(flight)
            if future is None and not create:
                future = self._inflight.get((key_id, True))
            leader = future is None
            if leader:
                future = Future()
                self._inflight[flight] = future
                self._stats.misses += 1
                generation = self._generations.get(key_id, 0)
            else:
                self._stats.coalesced += 1

        if not leader:
            return self._wait(future, key_id)
        return self._fetch(flight, future, generation)

    def invalidate(self, key_id: BytesLike) -> bool:
        """
        Drop the entry for key_id so the next access hits the backend.

        Fetches already in flight for key_id are marked stale: their result
        is never stored, and a stale material result is fetched again.

        Returns:
            True if an entry was removed
        """
        key_id = bytes(key_id)
        with self._lock:
            removed = self._entries.pop(key_id, None) is not None
            self._bump(key_id)
        if removed:
            logger.debug("Invalidated cache entry for %s", key_id.hex())
        return removed

    def clear(self) -> None:
        """Drop every entry and mark in-flight fetches stale."""
        with self._lock:
            for key_id in set(self._entries) | {key_id for key_id, _ in self._inflight}:
                self._bump(key_id)
            self._entries.clear()

    def stats(self) -> CacheStats:
        """Snapshot of the counters."""
        with self._lock:
            return replace(self._stats)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _fetch(self, flight: Tuple[bytes, bool], future: Future, generation: int) -> bytes:
        """Leader path: call the backend, publish the outcome, wake waiters."""
        key_id, create = flight
        attempt = 0
        while True:
            attempt += 1
            logger.debug("Cache miss for %s (create=%s)", key_id.hex(), create)
            try:
                if create:
                    material = self._backend.ensure_key(key_id)
                else:
                    material = self._backend.fetch_key(key_id)
            except KeyNotFoundError as e:
                logger.info("Key %s not found at backend, treating as shredded", key_id.hex())
                self._publish(flight, future, generation, _CacheEntry(None, self._expiry()), error=e)
                raise
            except Exception as e:
                with self._lock:
                    self._stats.fetch_errors += 1
                self._publish(flight, future, generation, None, error=e)
                raise
            except BaseException:
                # Never leave waiters hanging on an interrupted leader
                self._publish(flight, future, generation, None, error=BackendError("Key fetch aborted"))
                raise

            material = bytes(material)
            newer = self._publish(
                flight,
                future,
                generation,
                _CacheEntry(material, self._expiry()),
                final=attempt >= _STALE_REFETCH_LIMIT,
            )
            if newer is None:
                return material
            logger.debug("Fetch for %s went stale, fetching again", key_id.hex())
            generation = newer

    def _publish(
        self,
        flight: Tuple[bytes, bool],
        future: Future,
        generation: int,
        entry: Optional[_CacheEntry],
        error: Optional[BaseException] = None,
        final: bool = True,
    ) -> Optional[int]:
        """
        Store the outcome if it is still current and resolve the flight.

        A flight is current while no invalidate() or other store has happened
        for its key id since it started. Stale outcomes are never stored.

        Returns:
            None once the future is resolved, or the current generation when
            a stale material result should be fetched again
        """
        key_id = flight[0]
        with self._lock:
            current = self._generations.get(key_id, 0)
            if current == generation:
                if entry is not None:
                    self._entries[key_id] = entry
                    self._bump(key_id)
                    if entry.material is None:
                        self._stats.shredded += 1
            elif entry is not None and entry.material is not None and not final:
                return current
            if self._inflight.get(flight) is future:
                del self._inflight[flight]
        # Resolve after the entry is visible, so late arrivals hit the cache
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(entry.material)
        return None

    def _bump(self, key_id: bytes) -> None:
        # Caller holds self._lock
        self._generations[key_id] = self._generations.get(key_id, 0) + 1

    def _wait(self, future: Future, key_id: bytes) -> bytes:
        """Waiter path: block until the leader publishes."""
        try:
            return future.result(timeout=self._wait_timeout)
        except FutureTimeoutError:
            raise BackendError(
                f"Timed out waiting for in-flight fetch of {key_id.hex()}"
            ) from None

    def _expiry(self) -> float:
        return self._clock() + self._ttl
