from __future__ import annotations

import asyncio
from copy import deepcopy
from typing import Any

from .base import DELETE, Mutator, Record, RecordStore


class InMemoryRecordStore(RecordStore):
    def __init__(self) -> None:
        self._data: dict[str, dict[str, Record]] = {}
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _lock_for(self, collection: str, key: str) -> asyncio.Lock:
        lock = self._locks.get((collection, key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(collection, key)] = lock
        return lock

    async def get(self, collection: str, key: str) -> Record | None:
        record = self._data.get(collection, {}).get(key)
        return deepcopy(record) if record is not None else None

    async def list(self, collection: str) -> list[Record]:
        return [deepcopy(record) for record in self._data.get(collection, {}).values()]

    async def put(self, collection: str, key: str, value: Record) -> None:
        async with self._lock_for(collection, key):
            self._data.setdefault(collection, {})[key] = deepcopy(value)

    async def transact(self, collection: str, key: str, mutator: Mutator) -> Any:
        async with self._lock_for(collection, key):
            current = await self.get(collection, key)
            value, result = mutator(current)
            if value is DELETE:
                self._data.get(collection, {}).pop(key, None)
            elif value is not None:
                self._data.setdefault(collection, {})[key] = deepcopy(value)
            return result
