"""In-memory key stores with single-flight refresh.

A key store holds a reference to the current CachedKeySet and resolves key
ids against it. The reference is only ever replaced, never mutated, so a
lookup that read it once sees one complete set.

Resolution Strategy
-------------------
For each requested ``kid``:

1) Cache hit
    - The set is fresh (``now < valid_until``) and has the kid → return it.

2) Unknown kid on a fresh set
    - Google may have rotated in a new key → refresh, if the RefreshGate
      allows. Throttled → UnknownKeyId without a network call.

3) Stale or empty cache
    - Refresh unconditionally.

4) After a refresh
    - Retry the lookup once against the new set; still missing →
      UnknownKeyId. A failed refresh → KeyFetchError. The stale set is kept
      but never served for lookups that needed the refresh.

Single-flight
-------------
At most one fetch is in flight per store. Callers that need a refresh while
one is running wait for it and share its result or its failure. The pending
handle is cleared whatever the outcome. A waiter that gives up on a hung
fetch also clears it, so the next caller starts a fresh one.

Two variants:
- KeyStore: threads; the lock only guards the pending handle and is never
  held across the network call, so cache hits are never blocked.
- AsyncKeyStore: asyncio; the fetch runs in one task awaited by every caller.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import TYPE_CHECKING, Final

from .errors import KeyFetchError, UnknownKeyId
from .keys import CachedKeySet, FetchedKeys, SigningKey
from .refresh_gate import RefreshGate

if TYPE_CHECKING:
    from .protocols import AsyncKeyFetcher, Clock, KeyFetcher

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_TIMEOUT: Final[float] = 30.0
"""Upper bound in seconds on one refresh, as seen by waiting callers."""


class _BaseKeyStore:
    def __init__(
        self,
        *,
        clock: Clock | None,
        refresh_gate: RefreshGate | None,
        refresh_timeout: float,
    ) -> None:
        if refresh_timeout <= 0:
            raise ValueError(f"refresh_timeout must be positive, got {refresh_timeout}")

        self._clock: Clock = clock or time.time
        self._gate = refresh_gate or RefreshGate(clock=clock)
        self._refresh_timeout = refresh_timeout
        self._current: CachedKeySet | None = None

    @property
    def current(self) -> CachedKeySet | None:
        """The key set lookups currently resolve against, if any."""
        return self._current

    def _lookup(self) -> tuple[CachedKeySet | None, bool]:
        current = self._current
        return current, current is not None and current.is_fresh(self._clock())

    def _newer_fresh_set(self, seen: CachedKeySet | None) -> CachedKeySet | None:
        # Another caller already replaced the set this caller found lacking.
        latest = self._current
        if latest is not None and latest is not seen and latest.is_fresh(self._clock()):
            return latest
        return None

    def _install(self, fetched: FetchedKeys, fetched_at: float) -> CachedKeySet:
        key_set = CachedKeySet.from_fetch(fetched, fetched_at=fetched_at)
        self._current = key_set
        logger.debug(
            "Installed key set with %d keys, valid until %s", len(key_set), key_set.valid_until
        )
        return key_set

    @staticmethod
    def _resolve(key_set: CachedKeySet | None, key_id: str) -> SigningKey:
        if key_set is None:
            raise UnknownKeyId(f"Unknown key id {key_id!r} (forced refresh throttled)")
        key = key_set.get(key_id)
        if key is None:
            raise UnknownKeyId(f"Key id {key_id!r} is not published by the key endpoint")
        return key


class _PendingRefresh:
    """One in-flight blocking refresh, shared by every caller that needs it."""

    __slots__ = ("done", "key_set", "error")

    def __init__(self) -> None:
        self.done = threading.Event()
        self.key_set: CachedKeySet | None = None
        self.error: KeyFetchError | None = None


class KeyStore(_BaseKeyStore):
    """Thread-safe key store for blocking clients.

    The thread that starts a refresh performs the fetch inline; other
    threads block on the shared result for at most ``refresh_timeout``
    seconds. A waiter that times out drops the stuck refresh, and the next
    caller fetches again.

    Args:
        fetcher: Blocking key fetcher bound to a certs endpoint.
        clock: Wall-clock source; ``time.time`` when omitted.
        refresh_gate: Throttle for unknown-kid refreshes.
        refresh_timeout: Longest a waiting thread blocks on another
            thread's refresh before failing with KeyFetchError.

    Example:
        ```python
        store = KeyStore(HttpKeyFetcher(GOOGLE_SIGNIN_CERTS_URL))
        key = store.get(header.key_id)
        ```
    """

    def __init__(
        self,
        fetcher: KeyFetcher,
        *,
        clock: Clock | None = None,
        refresh_gate: RefreshGate | None = None,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
    ) -> None:
        super().__init__(clock=clock, refresh_gate=refresh_gate, refresh_timeout=refresh_timeout)
        self._fetcher = fetcher
        self._lock = threading.Lock()
        self._pending: _PendingRefresh | None = None

    def get(self, key_id: str) -> SigningKey:
        """Resolve ``key_id``, refreshing the cache when needed.

        Raises:
            UnknownKeyId: Not published, or forced refresh throttled.
            KeyFetchError: The refresh this lookup needed failed.
        """
        current, fresh = self._lookup()
        if fresh:
            key = current.get(key_id)
            if key is not None:
                return key
            return self._resolve(self._refresh(current, forced=True), key_id)

        return self._resolve(self._refresh(current, forced=False), key_id)

    def refresh(self) -> CachedKeySet:
        """Fetch the key set now, or join a refresh already in flight.

        Useful to warm the cache at startup.

        Raises:
            KeyFetchError: The fetch failed.
        """
        key_set = self._refresh(self._current, forced=False)
        assert key_set is not None  # unforced refreshes are never throttled
        return key_set

    def _refresh(self, seen: CachedKeySet | None, *, forced: bool) -> CachedKeySet | None:
        with self._lock:
            newer = self._newer_fresh_set(seen)
            if newer is not None:
                return newer

            pending = self._pending
            leader = pending is None
            if leader:
                if forced and not self._gate.allow():
                    return None
                pending = self._pending = _PendingRefresh()

        if leader:
            return self._run(pending)
        return self._wait(pending)

    def _run(self, pending: _PendingRefresh) -> CachedKeySet:
        started = self._clock()
        try:
            fetched = self._fetcher.fetch()
        except KeyFetchError as e:
            logger.warning("Key refresh failed: %s", e)
            pending.error = e
            raise
        except Exception as e:
            logger.exception("Unexpected error during key refresh")
            pending.error = KeyFetchError(f"Key refresh failed: {e}")
            raise pending.error from e
        else:
            pending.key_set = self._install(fetched, started)
            return pending.key_set
        finally:
            self._release(pending)
            pending.done.set()

    def _release(self, pending: _PendingRefresh) -> None:
        # A timed-out waiter may already have handed the slot to a new leader.
        with self._lock:
            if self._pending is pending:
                self._pending = None

    def _wait(self, pending: _PendingRefresh) -> CachedKeySet:
        if not pending.done.wait(self._refresh_timeout):
            self._release(pending)
            logger.warning("Key refresh still running after %ss", self._refresh_timeout)
            raise KeyFetchError(
                f"Timed out after {self._refresh_timeout}s waiting for key refresh"
            )
        if pending.error is not None:
            raise KeyFetchError(str(pending.error)) from pending.error
        if pending.key_set is None:
            raise KeyFetchError("Key refresh was interrupted")
        return pending.key_set


class AsyncKeyStore(_BaseKeyStore):
    """Key store for asyncio clients.

    A refresh runs as one task; every caller that needs it awaits the task
    through ``asyncio.shield``, so cancelling one caller never cancels the
    fetch the others are waiting on. The fetch itself is bounded by
    ``refresh_timeout``.

    Cache hits never suspend.

    Args:
        fetcher: Async key fetcher bound to a certs endpoint.
        clock: Wall-clock source; ``time.time`` when omitted.
        refresh_gate: Throttle for unknown-kid refreshes.
        refresh_timeout: Upper bound on one fetch, in seconds.
    """

    def __init__(
        self,
        fetcher: AsyncKeyFetcher,
        *,
        clock: Clock | None = None,
        refresh_gate: RefreshGate | None = None,
        refresh_timeout: float = DEFAULT_REFRESH_TIMEOUT,
    ) -> None:
        super().__init__(clock=clock, refresh_gate=refresh_gate, refresh_timeout=refresh_timeout)
        self._fetcher = fetcher
        self._pending: asyncio.Task[CachedKeySet] | None = None

    async def get(self, key_id: str) -> SigningKey:
        """Resolve ``key_id``, awaiting a refresh when needed.

        Raises:
            UnknownKeyId: Not published, or forced refresh throttled.
            KeyFetchError: The refresh this lookup needed failed or timed out.
        """
        current, fresh = self._lookup()
        if fresh:
            key = current.get(key_id)
            if key is not None:
                return key
            return self._resolve(await self._refresh(current, forced=True), key_id)

        return self._resolve(await self._refresh(current, forced=False), key_id)

    async def refresh(self) -> CachedKeySet:
        """Fetch the key set now, or join a refresh already in flight."""
        key_set = await self._refresh(self._current, forced=False)
        assert key_set is not None  # unforced refreshes are never throttled
        return key_set

    async def _refresh(self, seen: CachedKeySet | None, *, forced: bool) -> CachedKeySet | None:
        # No await between the checks and scheduling the task, so no other
        # coroutine can start a second one.
        newer = self._newer_fresh_set(seen)
        if newer is not None:
            return newer

        pending = self._pending
        if pending is None:
            if forced and not self._gate.allow():
                return None
            pending = asyncio.get_running_loop().create_task(self._run())
            pending.add_done_callback(_mark_retrieved)
            self._pending = pending

        return await asyncio.shield(pending)

    async def _run(self) -> CachedKeySet:
        started = self._clock()
        try:
            fetched = await asyncio.wait_for(self._fetcher.fetch(), self._refresh_timeout)
        except TimeoutError as e:
            logger.warning("Key refresh timed out after %ss", self._refresh_timeout)
            raise KeyFetchError(
                f"Key refresh timed out after {self._refresh_timeout}s"
            ) from e
        except KeyFetchError as e:
            logger.warning("Key refresh failed: %s", e)
            raise
        except Exception as e:
            logger.exception("Unexpected error during key refresh")
            raise KeyFetchError(f"Key refresh failed: {e}") from e
        else:
            return self._install(fetched, started)
        finally:
            self._pending = None


def _mark_retrieved(task: asyncio.Task[CachedKeySet]) -> None:
    # Every waiter may have been cancelled; read the outcome so asyncio does
    # not report it as never retrieved.
    if not task.cancelled():
        task.exception()
