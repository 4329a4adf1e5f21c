"""
Keyed Locks

Per-key asyncio locks used to serialize writes that touch the same meeting
(or the same voter on the same motion). Operations on different keys never
contend. Entries are dropped once no coroutine holds or waits on them.

Usage:
    locks = KeyedLocks("meeting")

    async with locks.hold(meeting_id):
        ...  # critical section for this meeting only
"""

import asyncio
import time
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

from agvote.core.metrics import metrics


@dataclass
class _Entry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyedLocks:
    """Registry of asyncio locks addressed by key."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._entries: dict[Hashable, _Entry] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block."""
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry()
        entry.users += 1

        started = time.perf_counter()
        try:
            async with entry.lock:
                metrics.record_lock_wait(self.name, time.perf_counter() - started)
                yield
        finally:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(key) is entry:
                del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)

    def is_locked(self, key: Hashable) -> bool:
        """Whether some coroutine currently holds ``key``."""
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()
