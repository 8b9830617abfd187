"""Read-through caches for hierarchy snapshots and memberships.

Lifecycle of an entry:
- populated on first use,
- served while younger than the TTL,
- refreshed from the backing store on expiry, the call bounded by a timeout,
- dropped synchronously by ``invalidate`` (a later read always refetches).

If a refresh fails, the previous value is served only while it is younger
than the staleness ceiling. Past the ceiling the cache raises
``BackendUnavailableError`` and the caller denies.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Callable, Generic, Hashable, Optional, TypeVar

from .config import CacheConfig
from .exceptions import BackendUnavailableError, NotFoundError
from .interfaces import HierarchyStore, MembershipStore
from .permissions.hierarchy import HierarchySnapshot
from .permissions.models import Membership

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass(frozen=True)
class _Entry(Generic[V]):
    value: V
    fetched_at: float


class ReadThroughCache(Generic[K, V]):
    """TTL cache with a bounded loader call and a staleness ceiling.

    Args:
        loader: Fetches the value for a key from the backing store.
        name: Label for log messages.
        config: TTL, refresh timeout and staleness ceiling.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        loader: Callable[[K], V],
        *,
        name: str = "cache",
        config: CacheConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_workers: int = 4,
    ) -> None:
        self._loader = loader
        self._name = name
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}
        # Bumped on invalidate; a fetch started under an older generation is not stored
        self._generations: dict[K, int] = {}
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix=f"authz-{name}")

    @property
    def config(self) -> CacheConfig:
        return self._config

    def get(self, key: K) -> V:
        """Return the cached value, refreshing it when expired.

        Raises:
            NotFoundError: the backing store reports the key does not exist.
            BackendUnavailableError: refresh failed and no value within the
                staleness ceiling is available.
        """
        with self._lock:
            entry = self._entries.get(key)
            generation = self._generations.get(key, 0)

        now = self._clock()
        if entry is not None and now - entry.fetched_at < self._config.ttl_seconds:
            return entry.value

        try:
            value = self._fetch(key)
        except NotFoundError:
            self.invalidate(key)
            raise
        except Exception as e:
            return self._serve_stale(key, entry, now, e)

        with self._lock:
            if self._generations.get(key, 0) == generation:
                self._entries[key] = _Entry(value=value, fetched_at=self._clock())
        return value

    def _fetch(self, key: K) -> V:
        future = self._executor.submit(self._loader, key)
        try:
            return future.result(timeout=self._config.refresh_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            raise BackendUnavailableError(
                f"{self._name} refresh timed out after {self._config.refresh_timeout_ms}ms"
            ) from None

    def _serve_stale(self, key: K, entry: Optional[_Entry[V]], now: float, error: Exception) -> V:
        if entry is not None and now - entry.fetched_at <= self._config.staleness_ceiling_seconds:
            logger.warning(
                "%s refresh failed for %s, serving snapshot aged %.1fs: %s",
                self._name,
                key,
                now - entry.fetched_at,
                error,
            )
            return entry.value

        logger.error(
            "%s refresh failed for %s and no usable snapshot remains: %s",
            self._name,
            key,
            error,
            extra={"alert": True},
        )
        if isinstance(error, BackendUnavailableError):
            raise error
        raise BackendUnavailableError(f"{self._name} unavailable") from error

    def invalidate(self, key: K) -> None:
        """Drop ``key`` so the next read refetches it."""
        with self._lock:
            self._entries.pop(key, None)
            self._generations[key] = self._generations.get(key, 0) + 1
        logger.debug("%s invalidated %s", self._name, key)

    def clear(self) -> None:
        with self._lock:
            for key in self._entries:
                self._generations[key] = self._generations.get(key, 0) + 1
            self._entries.clear()

    def age_of(self, key: K) -> Optional[float]:
        """Seconds since ``key`` was fetched, or None if not cached."""
        with self._lock:
            entry = self._entries.get(key)
        return None if entry is None else self._clock() - entry.fetched_at

    def close(self) -> None:
        self._executor.shutdown(wait=False)


class HierarchyCache(ReadThroughCache[str, HierarchySnapshot]):
    """Per-organization hierarchy snapshots."""

    def __init__(
        self,
        store: HierarchyStore,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(store.load_snapshot, name="hierarchy", config=config, clock=clock)

    def snapshot(self, organization_id: str) -> HierarchySnapshot:
        return self.get(organization_id)


class MembershipCache(ReadThroughCache[str, tuple[Membership, ...]]):
    """Per-user membership lists, refreshed at the hierarchy cadence."""

    def __init__(
        self,
        store: MembershipStore,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(
            lambda user_id: tuple(store.memberships_for(user_id)),
            name="memberships",
            config=config,
            clock=clock,
        )

    def memberships(self, user_id: str) -> tuple[Membership, ...]:
        return self.get(user_id)


__all__ = ["HierarchyCache", "MembershipCache", "ReadThroughCache"]
