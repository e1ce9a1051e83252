# services/key_state.py
"""
In-memory key state table.
- InProgress: a running computation shared by every caller of that key
- Completed: a finished value with its absolute expiration date
- Absent: no entry at all
All reads and writes go through one asyncio.Lock held by the coordinator.

Each key also carries a generation number. Forgetting a key (delete, sweep,
prefix invalidation) moves it to a new generation; store reads and writes
started under an older generation must not take effect.
"""

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union


@dataclass(eq=False)
class InProgress:
    task: asyncio.Task


@dataclass
class Completed:
    value: Any
    expiration_date: datetime

    def is_fresh(self, now: datetime) -> bool:
        return self.expiration_date > now


KeyState = Union[InProgress, Completed]


class KeyStateTable:
    def __init__(self):
        self._states: Dict[str, KeyState] = {}
        self._generations: Dict[str, int] = {}
        # numbers are never reused, so a pruned key never matches an old generation
        self._counter = itertools.count(1)
        self.lock = asyncio.Lock()

    def get(self, key: str) -> Optional[KeyState]:
        return self._states.get(key)

    def set(self, key: str, state: KeyState) -> None:
        self._states[key] = state

    def pop(self, key: str) -> Optional[KeyState]:
        return self._states.pop(key, None)

    def generation(self, key: str) -> int:
        gen = self._generations.get(key)
        if gen is None:
            gen = self._generations[key] = next(self._counter)
        return gen

    def forget(self, key: str) -> Optional[KeyState]:
        """Drop the entry and move the key to a new generation."""
        self._generations[key] = next(self._counter)
        return self._states.pop(key, None)

    def prune_generations(self) -> int:
        # a load still pending for a pruned key turns into a miss
        stale = [k for k in self._generations if k not in self._states]
        for k in stale:
            del self._generations[k]
        return len(stale)

    def expired_keys(self, now: datetime) -> List[str]:
        return [
            key for key, state in self._states.items()
            if isinstance(state, Completed) and not state.is_fresh(now)
        ]

    def keys_with_prefix(self, prefix: str) -> List[str]:
        return [k for k in self._states.keys() if k.startswith(prefix)]

    def tracked_with_prefix(self, prefix: str) -> List[str]:
        # includes keys whose store I/O may still be pending without table state
        return [k for k in self._generations.keys() if k.startswith(prefix)]

    def counts(self) -> Tuple[int, int]:
        in_progress = sum(1 for s in self._states.values() if isinstance(s, InProgress))
        return len(self._states) - in_progress, in_progress


class KeyLocks:
    """
    Per-key locks serializing persistent store I/O for a single key.
    A lock exists only while someone holds or waits on it.
    """

    def __init__(self):
        self._locks: Dict[str, Tuple[asyncio.Lock, int]] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock, users = self._locks.get(key, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users <= 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def __len__(self) -> int:
        return len(self._locks)
