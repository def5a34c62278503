"""Expiring key-value store for desired-state rule entries.

Each entry maps a key (a host address or an interface name) to a value
(the jump target). Entries carry an expiry deadline when the store has a
TTL; a background sweep removes lapsed entries and notifies listeners so
the owner can re-render whatever was derived from them.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from .config import check_period_for
from .exceptions import StoreFault

logger = logging.getLogger(__name__)

ExpiredListener = Callable[[Hashable], Any]
ErrorListener = Callable[[StoreFault], Any]


@dataclass
class StoreEntry:
    """A stored value and its expiry deadline."""

    value: Any
    expiry: float | None  # clock reading, None = never expires

    def is_expired(self, now: float) -> bool:
        """Check if this entry has expired."""
        return self.expiry is not None and now >= self.expiry


class ExpiringStore:
    """Insertion-ordered mapping with a per-store time-to-live.

    Expiry is decided at read time against the clock, so an entry whose
    deadline has passed is invisible to ``has``/``get``/``list`` even
    before the sweep gets to it. The sweep only does the cleanup and
    fires ``expired`` notifications.

    Listeners are called outside the internal lock and may call back
    into the store.

    Example:
        store = ExpiringStore(ttl=300)
        store.on_expired(lambda key: print(f"{key} lapsed"))

        async with store:
            store.set("8.8.8.8", "DROP")
            store.has("8.8.8.8")  # True until 300s pass
    """

    def __init__(
        self,
        ttl: float | None = 0,
        check_period: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ttl: Seconds an entry lives after its last ``set``. 0 or None
                means entries never expire and no sweep runs.
            check_period: Seconds between sweeps. Defaults to a tenth of
                the TTL, at least one second.
            clock: Monotonic time source, injectable for tests.
        """
        self._ttl = ttl or 0
        if self._ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl!r}")
        self._check_period = (
            check_period if check_period is not None else check_period_for(self._ttl)
        )
        self._clock = clock
        self._entries: dict[Hashable, StoreEntry] = {}
        self._lock = threading.Lock()
        self._expired_listeners: list[ExpiredListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._task: asyncio.Task | None = None

    @property
    def ttl(self) -> float:
        return self._ttl

    @property
    def check_period(self) -> float:
        return self._check_period

    @property
    def expires(self) -> bool:
        """Whether entries in this store ever expire."""
        return self._ttl > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def on_expired(self, listener: ExpiredListener) -> ExpiredListener:
        """Register a callback receiving each key removed by the sweep.

        Coroutine functions are awaited by the sweep.
        """
        self._expired_listeners.append(listener)
        return listener

    def on_error(self, listener: ErrorListener) -> ErrorListener:
        """Register a callback receiving sweep faults as ``StoreFault``."""
        self._error_listeners.append(listener)
        return listener

    def remove_listener(self, listener: Callable) -> None:
        """Unregister a callback from both notification kinds."""
        for listeners in (self._expired_listeners, self._error_listeners):
            while listener in listeners:
                listeners.remove(listener)

    # -------------------------------------------------------------------------
    # Mapping operations
    # -------------------------------------------------------------------------

    def set(self, key: Hashable, value: Any) -> bool:
        """Insert or overwrite a key, restarting its expiry clock.

        An overwritten key keeps its original position in ``list()``.
        """
        expiry = self._clock() + self._ttl if self.expires else None

        with self._lock:
            self._entries[key] = StoreEntry(value=value, expiry=expiry)

        return True

    def has(self, key: Hashable) -> bool:
        """True if the key is present and has not expired."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.is_expired(now)

    includes = has

    def lapsed(self, key: Hashable) -> bool:
        """True if the key is still stored but its lease has run out."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and entry.is_expired(now)

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the value for a live key, or ``default``."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(now):
                return default
            return entry.value

    def delete(self, key: Hashable) -> bool:
        """Remove a key. Missing keys are ignored.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            return self._entries.pop(key, None) is not None

    def list(self) -> list[tuple[Hashable, Any]]:
        """Snapshot of live (key, value) pairs in insertion order."""
        now = self._clock()
        with self._lock:
            return [
                (key, entry.value)
                for key, entry in self._entries.items()
                if not entry.is_expired(now)
            ]

    def keys(self) -> list[Hashable]:
        return [key for key, _ in self.list()]

    def clear(self) -> None:
        """Remove all entries. Nothing that was pending will expire."""
        with self._lock:
            self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return self.has(key)

    def __len__(self) -> int:
        """Return the number of entries in the store (including expired)."""
        with self._lock:
            return len(self._entries)

    def stats(self) -> dict:
        """Return store statistics.

        Returns:
            Dict with 'total', 'valid', 'expired' counts
        """
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            expired = sum(1 for e in self._entries.values() if e.is_expired(now))
            return {
                "total": total,
                "valid": total - expired,
                "expired": expired,
            }

    # -------------------------------------------------------------------------
    # Expiry
    # -------------------------------------------------------------------------

    async def sweep(self) -> list[Hashable]:
        """Remove expired entries and notify ``expired`` listeners.

        Returns:
            Keys removed by this sweep, in insertion order
        """
        if not self.expires:
            return []

        now = self._clock()
        with self._lock:
            expired = [
                key for key, entry in self._entries.items() if entry.is_expired(now)
            ]
            for key in expired:
                del self._entries[key]

        for key in expired:
            logger.debug(f"Entry expired: {key}")
            await self._notify_expired(key)

        return expired

    async def _notify_expired(self, key: Hashable) -> None:
        for listener in list(self._expired_listeners):
            try:
                result = listener(key)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                fault = StoreFault(f"expired listener failed for {key!r}: {e}")
                fault.__cause__ = e
                await self._notify_error(fault)

    async def _notify_error(self, fault: StoreFault) -> None:
        if not self._error_listeners:
            logger.error(f"Unhandled store fault: {fault}", exc_info=fault)
            return

        for listener in list(self._error_listeners):
            try:
                result = listener(fault)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error listener failed")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._check_period)
            try:
                await self.sweep()
            except Exception as e:
                fault = StoreFault(f"sweep failed: {e}")
                fault.__cause__ = e
                await self._notify_error(fault)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start the background sweep on the running event loop.

        Does nothing for stores that never expire, or if already started.
        """
        if not self.expires or self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def close(self) -> None:
        """Stop the background sweep."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        if task is asyncio.current_task():
            # closed from one of our own listeners
            return
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def __aenter__(self) -> "ExpiringStore":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
