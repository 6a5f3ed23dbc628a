from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from linkpool.models.errors import StoreCorruptedError

from .base import DELETE, Mutator, Record, RecordStore

logger = logging.getLogger(__name__)


class JsonFileRecordStore(RecordStore):
    """One JSON document per collection, replaced atomically on every write.

    Writes within one collection are serialized by a per-collection lock, which is
    coarser than per-key but adequate for admin-scale write volume.
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)
        self._locks: dict[str, asyncio.Lock] = {}

    def _path(self, collection: str) -> Path:
        return self.data_dir / f"{collection}.json"

    def _lock_for(self, collection: str) -> asyncio.Lock:
        lock = self._locks.get(collection)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[collection] = lock
        return lock

    def _read(self, collection: str) -> dict[str, Record]:
        path = self._path(collection)
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8") or "{}")
        except json.JSONDecodeError as exc:
            logger.error("store file %s is not valid json: %s", path, exc)
            raise StoreCorruptedError(
                message=f"Store file for '{collection}' is unreadable; repair {path.name} before writing",
                param=collection,
                code="store_corrupted",
            ) from exc
        records = data.get("records", {}) if isinstance(data, dict) else None
        if not isinstance(records, dict):
            logger.error("store file %s has no records mapping", path)
            raise StoreCorruptedError(
                message=f"Store file for '{collection}' has an invalid layout",
                param=collection,
                code="store_corrupted",
            )
        return records

    def _write(self, collection: str, records: dict[str, Record]) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self._path(collection)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{collection}.", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump({"records": records}, handle, ensure_ascii=False, indent=2)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def get(self, collection: str, key: str) -> Record | None:
        records = await asyncio.to_thread(self._read, collection)
        return records.get(key)

    async def list(self, collection: str) -> list[Record]:
        records = await asyncio.to_thread(self._read, collection)
        return list(records.values())

    async def put(self, collection: str, key: str, value: Record) -> None:
        async with self._lock_for(collection):
            records = await asyncio.to_thread(self._read, collection)
            records[key] = value
            await asyncio.to_thread(self._write, collection, records)

    async def transact(self, collection: str, key: str, mutator: Mutator) -> Any:
        async with self._lock_for(collection):
            records = await asyncio.to_thread(self._read, collection)
            value, result = mutator(records.get(key))
            if value is DELETE:
                if key in records:
                    records.pop(key)
                    await asyncio.to_thread(self._write, collection, records)
            elif value is not None:
                records[key] = value
                await asyncio.to_thread(self._write, collection, records)
            return result

    async def ping(self) -> bool:
        return self.data_dir.exists() or self.data_dir.parent.exists()
