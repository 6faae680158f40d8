"""Result store implementations — in-process memory and Redis.

Both stores serialise records with :func:`~filesentry.core.models.record_to_dict`
on the way in and rebuild them with
:func:`~filesentry.core.models.record_from_dict` on the way out, so two
``load`` calls for the same id always return equal, independent objects and
older stored records keep loading after upgrades.

Redis layout
------------
``{prefix}:record:{scan_id}``   JSON record, write-once (WATCH, then MULTI with the index)
``{prefix}:index``              sorted set of scan ids scored by scan timestamp
``{prefix}:history``            hash ``scan_id → JSON history item``
``{prefix}:status:{scan_id}``   JSON status, overwritten per stage, expires

Usage::

    from filesentry.services.result_store import build_result_store

    store = build_result_store(settings)
    await store.save(record)
    items = await store.list(limit=20)
    await store.close()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError, WatchError

from filesentry.core.models import (
    ScanHistoryItem,
    ScanRecord,
    ScanStatus,
    record_from_dict,
    record_to_dict,
)
from filesentry.core.result_store import (
    DuplicateScanError,
    ResultStore,
    ResultStoreError,
    ScanNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "filesentry:scans"
DEFAULT_STATUS_TTL_SECONDS = 86400


def _history_sort_key(item: ScanHistoryItem) -> tuple[float, str]:
    return (item.scan_date.timestamp(), item.id)


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class InMemoryResultStore(ResultStore):
    """Process-local store for tests and single-process deployments.

    Status entries never expire here; the store lives as long as the process.
    """

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}
        self._statuses: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def save(self, record: ScanRecord) -> None:
        payload = record_to_dict(record)
        async with self._lock:
            if record.scan_id in self._records:
                raise DuplicateScanError(record.scan_id)
            self._records[record.scan_id] = payload
        logger.debug("Scan record saved: scan_id=%s backend=memory", record.scan_id)

    async def load(self, scan_id: str) -> ScanRecord:
        async with self._lock:
            payload = self._records.get(scan_id)
        if payload is None:
            raise ScanNotFoundError(scan_id)
        return record_from_dict(payload)

    async def list(self, limit: int | None = None) -> list[ScanHistoryItem]:
        async with self._lock:
            payloads = list(self._records.values())
        items = [
            record.history_item()
            for record in map(record_from_dict, payloads)
            if record.completed
        ]
        items.sort(key=_history_sort_key, reverse=True)
        return items if limit is None else items[:limit]

    async def set_status(self, status: ScanStatus) -> None:
        async with self._lock:
            self._statuses[status.scan_id] = status.to_dict()

    async def get_status(self, scan_id: str) -> ScanStatus | None:
        async with self._lock:
            payload = self._statuses.get(scan_id)
        return ScanStatus.from_dict(payload) if payload is not None else None


# ---------------------------------------------------------------------------
# Redis store
# ---------------------------------------------------------------------------


class RedisResultStore(ResultStore):
    """Redis-backed store shared by the API process and Celery workers.

    Args:
        redis: A ``redis.asyncio.Redis`` client created with
            ``decode_responses=True``.
        key_prefix: Namespace for every key this store touches.
        status_ttl_seconds: Expiry applied to status entries.
        owns_client: Close *redis* in :meth:`close`.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        status_ttl_seconds: int = DEFAULT_STATUS_TTL_SECONDS,
        owns_client: bool = False,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._status_ttl = status_ttl_seconds
        self._owns_client = owns_client

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> RedisResultStore:
        client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
        return cls(client, owns_client=True, **kwargs)

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    def _record_key(self, scan_id: str) -> str:
        return f"{self._prefix}:record:{scan_id}"

    def _status_key(self, scan_id: str) -> str:
        return f"{self._prefix}:status:{scan_id}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:index"

    @property
    def _history_key(self) -> str:
        return f"{self._prefix}:history"

    # ------------------------------------------------------------------
    # ResultStore
    # ------------------------------------------------------------------

    async def save(self, record: ScanRecord) -> None:
        payload = json.dumps(record_to_dict(record))
        item = record.history_item()
        record_key = self._record_key(record.scan_id)
        try:
            # WATCH + MULTI: the existence check and all three writes commit
            # together or not at all, so a record is never stored unindexed.
            async with self._redis.pipeline(transaction=True) as pipe:
                await pipe.watch(record_key)
                if await pipe.exists(record_key):
                    raise DuplicateScanError(record.scan_id)
                pipe.multi()
                pipe.set(record_key, payload)
                pipe.zadd(self._index_key, {record.scan_id: item.scan_date.timestamp()})
                pipe.hset(self._history_key, record.scan_id, json.dumps(item.to_dict()))
                await pipe.execute()
        except WatchError as exc:
            # Another writer created the key between WATCH and EXEC.
            raise DuplicateScanError(record.scan_id) from exc
        except RedisError as exc:
            raise ResultStoreError(
                f"Failed to persist scan {record.scan_id} to Redis: {exc}"
            ) from exc
        logger.debug("Scan record saved: scan_id=%s backend=redis", record.scan_id)

    async def load(self, scan_id: str) -> ScanRecord:
        try:
            payload = await self._redis.get(self._record_key(scan_id))
        except RedisError as exc:
            raise ResultStoreError(f"Failed to load scan {scan_id} from Redis: {exc}") from exc
        if payload is None:
            raise ScanNotFoundError(scan_id)
        return record_from_dict(json.loads(payload))

    async def list(self, limit: int | None = None) -> list[ScanHistoryItem]:
        if limit is not None and limit <= 0:
            return []
        stop = -1 if limit is None else limit - 1
        try:
            scan_ids = await self._redis.zrevrange(self._index_key, 0, stop)
            if not scan_ids:
                return []
            raw_items = await self._redis.hmget(self._history_key, scan_ids)
        except RedisError as exc:
            raise ResultStoreError(f"Failed to list scans from Redis: {exc}") from exc

        items: list[ScanHistoryItem] = []
        for scan_id, raw in zip(scan_ids, raw_items):
            if raw is None:
                logger.warning("History entry missing for indexed scan: scan_id=%s", scan_id)
                continue
            items.append(ScanHistoryItem.from_dict(json.loads(raw)))
        return items

    async def set_status(self, status: ScanStatus) -> None:
        try:
            await self._redis.set(
                self._status_key(status.scan_id),
                json.dumps(status.to_dict()),
                ex=self._status_ttl,
            )
        except RedisError as exc:
            raise ResultStoreError(
                f"Failed to write status for scan {status.scan_id}: {exc}"
            ) from exc

    async def get_status(self, scan_id: str) -> ScanStatus | None:
        try:
            payload = await self._redis.get(self._status_key(scan_id))
        except RedisError as exc:
            raise ResultStoreError(f"Failed to read status for scan {scan_id}: {exc}") from exc
        return ScanStatus.from_dict(json.loads(payload)) if payload is not None else None

    async def close(self) -> None:
        if self._owns_client:
            await self._redis.aclose()
            logger.info("Result store Redis client closed")


def build_result_store(settings: Any) -> ResultStore:
    """Return the store selected by ``settings.result_store_backend``."""
    if settings.result_store_backend == "memory":
        logger.info("Using in-memory result store")
        return InMemoryResultStore()
    logger.info("Using Redis result store")
    return RedisResultStore.from_url(
        settings.redis_url,
        status_ttl_seconds=settings.status_ttl_seconds,
    )
