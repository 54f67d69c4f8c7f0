"""Request deduplication: stable request keys and a single-flight result table."""

import asyncio
import io
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import aiohttp

log = logging.getLogger(__name__)

DEFAULT_TTL = 2.0


def _dump(value) -> str:
    return json.dumps(
        value if value is not None else {},
        sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str,
    )


def request_key(method: str, path: str, params=None, body=None) -> str:
    """Deterministic key for a logical request. Dict ordering does not matter."""
    return f"{method.upper()}:{path}:{_dump(params)}:{_dump(body)}"


def is_multipart(body) -> bool:
    """Uploads are neither keyed nor deduplicated."""
    return isinstance(body, (aiohttp.FormData, bytes, bytearray, io.IOBase))


@dataclass
class CacheEntry:
    key: str
    task: asyncio.Future
    inserted_at: float


class SingleFlightCache:
    """At most one call per key within ``ttl`` seconds of its insertion.

    Callers arriving while an entry is fresh share its outcome, success or
    error alike. Removal is scheduled ``ttl`` after the call settles, so bursts
    that straddle a few loop iterations still collapse to one call.
    """

    def __init__(self, ttl: float = DEFAULT_TTL, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_stale(entry)

    def _is_stale(self, entry: CacheEntry) -> bool:
        return self._clock() - entry.inserted_at >= self._ttl

    async def dedupe(self, key: str, factory: Callable[[], Awaitable[Any]]):
        entry = self._entries.get(key)
        if entry is not None and not self._is_stale(entry):
            log.debug("Using in-flight request %s", key)
            return await asyncio.shield(entry.task)

        # Stored before the first await so same-tick callers hit it too
        entry = CacheEntry(key, asyncio.ensure_future(factory()), self._clock())
        self._entries[key] = entry
        entry.task.add_done_callback(lambda _: self._settled(entry))
        return await asyncio.shield(entry.task)

    def clear(self):
        self._entries.clear()

    def _settled(self, entry: CacheEntry):
        if not entry.task.cancelled():
            # mark retrieved; waiters may all have gone away
            entry.task.exception()
        asyncio.get_running_loop().call_later(self._ttl, self._evict, entry)

    def _evict(self, entry: CacheEntry):
        # A newer insertion for the same key stays
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
