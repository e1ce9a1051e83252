# services/cache_service.py
"""
Single-flight TTL cache coordinator.

Every lookup resolves to one of:
- a live Completed value from the key state table (hit)
- a Completed value warmed from the persistent store (persistent hit)
- the InProgress computation another caller already started (join)
- a new computation registered as InProgress (miss)

The table lock is only held for synchronous check/update sections; computations
and store I/O always run outside it. Store I/O is serialized per key and checked
against the key's generation, so nothing read or written before a delete can
resurrect the deleted value.
"""

import asyncio
import logging
import math
import types
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Union, get_args, get_origin

from caker.errors import ComputationFailed, InvalidType, StorageError
from caker.services.cache_keys import DEFAULT_PREFIX, cache_key, logical_key, validate_key
from caker.services.cache_stats import (
    CacheStats, EVICTION, FAILURE, HIT, JOIN, MISS, PERSISTENT_HIT,
)
from caker.services.codec import Codec, JsonCodec
from caker.services.key_state import Completed, InProgress, KeyLocks, KeyStateTable
from caker.services.storage import PersistentStore
from caker.tasks.scheduler import DEFAULT_SWEEP_INTERVAL, ExpirationSweeper

logger = logging.getLogger(__name__)

TTL = Union[int, float, timedelta]
Compute = Callable[[], Awaitable[Any]]


class CacheProtocol(Protocol):
    async def get(self, key: str, ttl: TTL, compute: Compute, value_type: Optional[Any] = None) -> Any: ...

    async def delete(self, key: str) -> None: ...


def ttl_seconds(ttl: TTL) -> float:
    if isinstance(ttl, timedelta):
        seconds = ttl.total_seconds()
    elif isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
        raise ValueError(f"Invalid ttl: {ttl!r}")
    else:
        seconds = float(ttl)
    if math.isnan(seconds) or seconds < 0:
        raise ValueError(f"ttl must be >= 0, got {ttl!r}")
    return seconds


def _matches(value: Any, value_type: Any) -> bool:
    if value_type is Any:
        return True
    origin = get_origin(value_type) or value_type
    if origin is Union or origin is types.UnionType:
        return any(_matches(value, arg) for arg in get_args(value_type))
    try:
        return isinstance(value, origin)
    except TypeError:
        # Literal, TypeVar and friends cannot be checked at runtime
        return True


class Caker:
    def __init__(
        self,
        store: Optional[PersistentStore] = None,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        key_prefix: str = DEFAULT_PREFIX,
        codec: Optional[Codec] = None,
    ):
        self.store = store
        self.codec = codec or JsonCodec()
        self.key_prefix = key_prefix
        self._table = KeyStateTable()
        self._key_locks = KeyLocks()
        self._stats = CacheStats()
        self._sweeper = ExpirationSweeper(self.sweep, interval=sweep_interval)
        self._closed = False

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet: the sweeper starts on first async use
            pass
        else:
            self._sweeper.start()

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    def _ensure_started(self) -> None:
        if not self._closed and not self._sweeper.running:
            self._sweeper.start()

    def _typed(self, cache_key: str, value: Any, value_type: Optional[Any]) -> Any:
        if value_type is None or _matches(value, value_type):
            return value
        raise InvalidType(logical_key(cache_key, self.key_prefix), value_type, value)

    # ---------------------------
    # Lookup
    # ---------------------------
    async def get(self, key: str, ttl: TTL, compute: Compute, value_type: Optional[Any] = None) -> Any:
        """
        Return the cached value for ``key`` or compute it.

        ``compute`` runs at most once per key while its result is fresh, and
        concurrent callers of the same key share a single run. Failures are
        raised as ComputationFailed to every joined caller and never cached.
        """
        validate_key(key)
        seconds = ttl_seconds(ttl)
        self._ensure_started()
        ckey = cache_key(key, self.key_prefix)

        async with self._table.lock:
            state = self._table.get(ckey)
            if isinstance(state, Completed) and state.is_fresh(self._now()):
                self._stats.record(HIT)
                logger.debug(f"Cache hit: {ckey}")
                return self._typed(ckey, state.value, value_type)
            task = state.task if isinstance(state, InProgress) else None
            generation = self._table.generation(ckey)

        if task is not None:
            return await self._join(ckey, task, value_type)

        loaded = None
        if state is None and self.store is not None:
            loaded = await self._load_persisted(ckey, value_type)

        async with self._table.lock:
            state = self._table.get(ckey)
            if state is None and loaded is not None:
                if self._table.generation(ckey) == generation:
                    self._table.set(ckey, loaded)
                    self._stats.record(PERSISTENT_HIT)
                    logger.debug(f"Cache warmed from persistent store: {ckey}")
                    return self._typed(ckey, loaded.value, value_type)
                logger.debug(f"{ckey} was forgotten while loading; stored entry ignored")
            if isinstance(state, Completed) and state.is_fresh(self._now()):
                self._stats.record(HIT)
                return self._typed(ckey, state.value, value_type)
            joined = isinstance(state, InProgress)
            if joined:
                task = state.task
            else:
                # check and register happen in one critical section
                task = asyncio.ensure_future(self._refresh(ckey, seconds, compute))
                self._table.set(ckey, InProgress(task))
                self._stats.record(MISS)
                logger.debug(f"Cache miss: {ckey}")

        if joined:
            return await self._join(ckey, task, value_type)
        return await self._await_shared(ckey, task, value_type)

    async def _join(self, cache_key: str, task: asyncio.Task, value_type: Optional[Any]) -> Any:
        self._stats.record(JOIN)
        logger.debug(f"Joining in-flight computation: {cache_key}")
        return await self._await_shared(cache_key, task, value_type)

    async def _await_shared(self, cache_key: str, task: asyncio.Task, value_type: Optional[Any]) -> Any:
        # shield: one cancelled waiter must not cancel the computation for the others
        value = await asyncio.shield(task)
        return self._typed(cache_key, value, value_type)

    async def _refresh(self, cache_key: str, seconds: float, compute: Compute) -> Any:
        me = asyncio.current_task()
        try:
            value = await compute()
        except Exception as e:
            async with self._table.lock:
                self._forget(cache_key, me)
            self._stats.record(FAILURE)
            logger.warning(f"Computation for {cache_key} failed: {e!r}")
            raise ComputationFailed(logical_key(cache_key, self.key_prefix), e) from e
        except BaseException:
            async with self._table.lock:
                self._forget(cache_key, me)
            raise

        expiration_date = self._now() + timedelta(seconds=seconds)
        async with self._table.lock:
            current = self._table.get(cache_key)
            recorded = isinstance(current, InProgress) and current.task is me
            if recorded:
                self._table.set(cache_key, Completed(value, expiration_date))
                generation = self._table.generation(cache_key)

        if recorded:
            await self._persist(cache_key, value, expiration_date, generation)
        else:
            logger.debug(f"{cache_key} was deleted while computing; result not recorded")
        return value

    def _forget(self, cache_key: str, task: Optional[asyncio.Task]) -> None:
        current = self._table.get(cache_key)
        if isinstance(current, InProgress) and current.task is task:
            self._table.pop(cache_key)

    # ---------------------------
    # Persistence (best effort)
    # ---------------------------
    # Store I/O for one key is serialized by its key lock, so a delete queued
    # behind a pending write always lands after it.
    async def _load_persisted(self, cache_key: str, value_type: Optional[Any]) -> Optional[Completed]:
        async with self._key_locks.hold(cache_key):
            try:
                data = await self.store.get_bytes(cache_key)
            except Exception as e:
                logger.error(f"Failed to read {cache_key} from persistent store: {e}")
                return None
            if data is None:
                return None

            try:
                entry = self.codec.decode(data, value_type)
            except StorageError as e:
                logger.warning(f"Discarding undecodable cache entry {cache_key}: {e}")
                await self._delete_bytes(cache_key)
                return None

        if not entry.is_fresh(self._now()):
            return None
        return Completed(entry.value, entry.expiration_date)

    async def _persist(self, cache_key: str, value: Any, expiration_date: datetime, generation: int) -> None:
        if self.store is None:
            return
        try:
            data = self.codec.encode(value, expiration_date)
        except StorageError as e:
            logger.error(f"Failed to encode {cache_key} for persistent store: {e}")
            return

        async with self._key_locks.hold(cache_key):
            async with self._table.lock:
                current = self._table.generation(cache_key) == generation
            if not current:
                logger.debug(f"{cache_key} was forgotten before it was persisted; write skipped")
                return
            try:
                await self.store.set_bytes(cache_key, data)
            except Exception as e:
                logger.error(f"Failed to write {cache_key} to persistent store: {e}")

    async def _delete_persisted(self, cache_key: str) -> None:
        if self.store is None:
            return
        async with self._key_locks.hold(cache_key):
            await self._delete_bytes(cache_key)

    async def _delete_bytes(self, cache_key: str) -> None:
        try:
            await self.store.delete_bytes(cache_key)
        except Exception as e:
            logger.error(f"Failed to delete {cache_key} from persistent store: {e}")

    # ---------------------------
    # Invalidation
    # ---------------------------
    async def delete(self, key: str) -> None:
        """Forget ``key`` in memory and in the persistent store; in-flight work keeps running."""
        validate_key(key)
        ckey = cache_key(key, self.key_prefix)
        async with self._table.lock:
            self._table.forget(ckey)
        await self._delete_persisted(ckey)
        logger.debug(f"Cache deleted: {ckey}")

    async def invalidate_prefix(self, prefix: str) -> int:
        full_prefix = cache_key(prefix, self.key_prefix)
        async with self._table.lock:
            keys = self._table.keys_with_prefix(full_prefix)
            tracked = sorted(set(keys) | set(self._table.tracked_with_prefix(full_prefix)))
            for k in tracked:
                self._table.forget(k)

        if self.store is not None:
            delete_prefix = getattr(self.store, "delete_prefix", None)
            if delete_prefix is not None:
                try:
                    await delete_prefix(full_prefix)
                except Exception as e:
                    logger.error(f"Failed to delete prefix {full_prefix} from persistent store: {e}")
            # keyed deletes wait out writes still in flight for these keys
            await asyncio.gather(*(self._delete_persisted(k) for k in tracked))

        logger.info(f"Cache cleared for prefix {full_prefix} ({len(keys)} in memory)")
        return len(keys)

    async def sweep(self) -> int:
        """Evict every expired Completed entry; InProgress entries are never touched."""
        now = self._now()
        async with self._table.lock:
            expired = self._table.expired_keys(now)
            for k in expired:
                self._table.forget(k)
            self._table.prune_generations()

        for k in expired:
            await self._delete_persisted(k)
        if expired:
            self._stats.record(EVICTION, len(expired))
        return len(expired)

    # ---------------------------
    # Introspection
    # ---------------------------
    def stats(self) -> Dict[str, Any]:
        completed, in_progress = self._table.counts()
        stats = self._stats.snapshot()
        stats.update({"entries": completed, "in_progress": in_progress})
        return stats

    async def health(self) -> Dict[str, Any]:
        completed, in_progress = self._table.counts()
        if self.store is None:
            store_status = "disabled"
        else:
            ping = getattr(self.store, "ping", None)
            healthy = await ping() if ping is not None else True
            store_status = "connected" if healthy else "disconnected"

        return {
            "status": "healthy" if store_status != "disconnected" else "degraded",
            "timestamp": self._now().isoformat(),
            "entries": completed,
            "in_progress": in_progress,
            "store": store_status,
            "sweeper": "running" if self._sweeper.running else "stopped",
        }

    # ---------------------------
    # Lifecycle
    # ---------------------------
    async def start(self) -> None:
        self._ensure_started()

    async def close(self) -> None:
        self._closed = True
        await self._sweeper.stop()

    async def __aenter__(self) -> "Caker":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
