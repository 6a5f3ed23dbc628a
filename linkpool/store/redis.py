from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis
from redis.exceptions import WatchError

from linkpool.models.errors import StoreConflictError

from .base import DELETE, Mutator, Record, RecordStore

logger = logging.getLogger(__name__)


def _decode(raw: Any) -> Record | None:
    if raw is None:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    value = json.loads(raw)
    return value if isinstance(value, dict) else None


class RedisRecordStore(RecordStore):
    """Redis-backed records using WATCH/MULTI optimistic concurrency."""

    def __init__(self, redis_client: Redis, prefix: str = "linkpool", max_retries: int = 5) -> None:
        self.redis = redis_client
        self.prefix = prefix
        self.max_retries = max(1, int(max_retries))

    def _record_key(self, collection: str, key: str) -> str:
        return f"{self.prefix}:{collection}:{key}"

    def _index_key(self, collection: str) -> str:
        return f"{self.prefix}:{collection}:__index__"

    async def get(self, collection: str, key: str) -> Record | None:
        return _decode(await self.redis.get(self._record_key(collection, key)))

    async def list(self, collection: str) -> list[Record]:
        members = await self.redis.smembers(self._index_key(collection))
        keys = sorted(m.decode("utf-8") if isinstance(m, bytes) else str(m) for m in members or [])
        if not keys:
            return []
        values = await self.redis.mget([self._record_key(collection, key) for key in keys])
        records: list[Record] = []
        for raw in values:
            record = _decode(raw)
            if record is not None:
                records.append(record)
        return records

    async def put(self, collection: str, key: str, value: Record) -> None:
        pipe = self.redis.pipeline(transaction=True)
        pipe.set(self._record_key(collection, key), json.dumps(value, separators=(",", ":")))
        pipe.sadd(self._index_key(collection), key)
        await pipe.execute()

    async def transact(self, collection: str, key: str, mutator: Mutator) -> Any:
        record_key = self._record_key(collection, key)
        index_key = self._index_key(collection)

        for attempt in range(1, self.max_retries + 1):
            async with self.redis.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(record_key)
                    current = _decode(await pipe.get(record_key))
                    value, result = mutator(current)
                    if value is None:
                        return result

                    pipe.multi()
                    if value is DELETE:
                        pipe.delete(record_key)
                        pipe.srem(index_key, key)
                    else:
                        pipe.set(record_key, json.dumps(value, separators=(",", ":")))
                        pipe.sadd(index_key, key)
                    await pipe.execute()
                    return result
                except WatchError:
                    logger.warning(
                        "store conflict on %s (attempt %d/%d)",
                        record_key,
                        attempt,
                        self.max_retries,
                    )

        raise StoreConflictError(
            message=f"Concurrent update conflict on {collection}/{key}",
            param=collection,
            code="store_conflict",
        )

    async def ping(self) -> bool:
        try:
            return bool(await self.redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self.redis.close()
