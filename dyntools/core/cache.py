"""Bounded, time-expiring resource cache with release-on-eviction.

Every removal path (LRU overflow, TTL expiry found by ``get``, the background
sweep, ``delete``/``clear`` and ``stop(clear_all=True)``) goes through
``_evict_locked`` so the cleanup hook fires exactly once per removed entry.

Expiry is measured from the last ``set`` of a key, not from the last read:
``get`` refreshes LRU recency only.
"""
from __future__ import annotations
import asyncio
import inspect
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Generic, Iterator, List, Optional, Set, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .logging import get_logger, sanitize_for_log

logger = get_logger("dyntools.core.cache")

V = TypeVar("V")

EvictHook = Callable[[str, Any], Any]


class CacheConfig(BaseModel):
    """Cache sizing. ``max_size``/``ttl_ms`` of None or 0 disable the bound."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_size: Optional[int] = Field(default=1000, ge=0)
    ttl_ms: Optional[int] = Field(default=60 * 60 * 1000, ge=0)
    prune_interval_ms: Optional[int] = Field(default=10 * 60 * 1000, ge=0)
    on_evict: Optional[EvictHook] = None


@dataclass
class CacheEntry(Generic[V]):
    key: str
    value: V
    inserted_at: float
    last_access_at: float
    expires_at: Optional[float] = None

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class ResourceCache(Generic[V]):
    def __init__(
        self,
        max_size: Optional[int] = None,
        ttl_ms: Optional[int] = None,
        prune_interval_ms: Optional[int] = None,
        on_evict: Optional[EvictHook] = None,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        for label, value in (("max_size", max_size), ("ttl_ms", ttl_ms), ("prune_interval_ms", prune_interval_ms)):
            if value is not None and value < 0:
                raise ValueError(f"{label} must be >= 0, got {value}")
        self._max_size = max_size or 0
        self._ttl_s = (ttl_ms / 1000.0) if ttl_ms else None
        self._on_evict = on_evict
        self._loop = loop
        self._clock = clock
        self._lock = threading.RLock()
        # insertion order doubles as LRU order: oldest access first
        self._entries: "OrderedDict[str, CacheEntry[V]]" = OrderedDict()
        self._stop_event = threading.Event()
        self._pruner: Optional[threading.Thread] = None
        self._stopped = False
        self._pending: Set["asyncio.Task[Any]"] = set()
        if prune_interval_ms:
            self._pruner = threading.Thread(
                target=self._prune_loop,
                args=(prune_interval_ms / 1000.0,),
                name="dyntools-cache-prune",
                daemon=True,
            )
            self._pruner.start()

    @classmethod
    def from_config(cls, config: CacheConfig, **kwargs) -> "ResourceCache[V]":
        return cls(
            max_size=config.max_size,
            ttl_ms=config.ttl_ms,
            prune_interval_ms=config.prune_interval_ms,
            on_evict=config.on_evict,
            **kwargs,
        )

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]):
        """Event loop that coroutine eviction hooks from other threads run on."""
        self._loop = loop

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def ttl_ms(self) -> Optional[int]:
        return int(self._ttl_s * 1000) if self._ttl_s is not None else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            entry = self._entries.get(key)  # type: ignore[arg-type]
            return entry is not None and not entry.is_expired(self._clock())

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries.keys())

    def entry(self, key: str) -> Optional[CacheEntry[V]]:
        """Return the raw entry without touching recency (introspection only)."""
        with self._lock:
            return self._entries.get(key)

    # ------------------------------------------------------------------
    def get(self, key: str) -> Optional[V]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.is_expired(now):
                self._evict_locked(key, reason="expired")
                return None
            entry.last_access_at = now
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: V) -> None:
        with self._lock:
            now = self._clock()
            expires_at = now + self._ttl_s if self._ttl_s is not None else None
            existing = self._entries.get(key)
            if existing is not None:
                replaced = existing.value
                existing.value = value
                existing.inserted_at = now
                existing.last_access_at = now
                existing.expires_at = expires_at
                self._entries.move_to_end(key)
                if replaced is not value:
                    self._fire_hook(key, replaced)
                return
            if self._max_size and len(self._entries) >= self._max_size:
                lru_key = next(iter(self._entries))
                self._evict_locked(lru_key, reason="lru")
            self._entries[key] = CacheEntry(
                key=key, value=value, inserted_at=now, last_access_at=now, expires_at=expires_at
            )

    def delete(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._evict_locked(key, reason="delete")
            return True

    def clear(self) -> None:
        with self._lock:
            for key in list(self._entries.keys()):
                self._evict_locked(key, reason="clear")

    def prune_expired(self) -> int:
        """Remove every expired entry now. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                self._evict_locked(key, reason="expired")
        if expired:
            logger.debug("pruned %d expired cache entries", len(expired))
        return len(expired)

    def stop(self, clear_all: bool = False) -> None:
        with self._lock:
            if not self._stopped:
                self._stopped = True
                self._stop_event.set()
            if clear_all:
                self.clear()
        pruner = self._pruner
        if pruner is not None and pruner is not threading.current_thread():
            pruner.join(timeout=1.0)
        self._pruner = None

    async def drain(self) -> None:
        """Wait for coroutine eviction hooks scheduled on the running loop."""
        pending = [t for t in list(self._pending) if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    # ------------------------------------------------------------------
    def _prune_loop(self, interval_s: float):
        while not self._stop_event.wait(interval_s):
            try:
                self.prune_expired()
            except Exception:  # noqa: BLE001
                logger.exception("cache prune sweep failed")

    def _evict_locked(self, key: str, reason: str):
        """Remove ``key`` and release its value. Caller must hold self._lock."""
        entry = self._entries.pop(key)
        logger.debug("evict key=%s reason=%s", sanitize_for_log(key), reason)
        self._fire_hook(key, entry.value)

    def _fire_hook(self, key: str, value: V):
        if self._on_evict is None:
            return
        try:
            result = self._on_evict(key, value)
        except Exception as e:  # noqa: BLE001
            logger.warning("eviction hook failed key=%s: %s", sanitize_for_log(key), e)
            return
        if inspect.isawaitable(result):
            self._schedule_hook(key, result)

    def _schedule_hook(self, key: str, awaitable: Any):
        def _report(fut):
            if fut.cancelled():
                return
            exc = fut.exception()
            if exc is not None:
                logger.warning("eviction hook failed key=%s: %s", sanitize_for_log(key), exc)

        loop = self._loop
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if loop is not None and loop is not running and loop.is_running():
            fut = asyncio.run_coroutine_threadsafe(_as_coroutine(awaitable), loop)
            fut.add_done_callback(_report)
        elif running is not None:
            task = running.create_task(_as_coroutine(awaitable))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            task.add_done_callback(_report)
        else:
            try:
                asyncio.run(_as_coroutine(awaitable))
            except Exception as e:  # noqa: BLE001
                logger.warning("eviction hook failed key=%s: %s", sanitize_for_log(key), e)


async def _as_coroutine(awaitable: Any) -> Any:
    return await awaitable


__all__ = ["ResourceCache", "CacheConfig", "CacheEntry"]
