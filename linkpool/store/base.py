from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

DOMAINS = "domains"
POOL = "pool"
CONSUMERS = "consumers"
BINDINGS = "bindings"

POOL_KEY = "main"


class _Delete:
    def __repr__(self) -> str:
        return "DELETE"


# Returned by a mutator to remove the record.
DELETE: Any = _Delete()

Record = dict[str, Any]
Mutator = Callable[[Record | None], tuple[Any, Any]]


class RecordStore(ABC):
    """Keyed JSON records grouped in named collections.

    `transact` is the only read-modify-write entry point. The mutator receives the
    current record (or None) and returns `(new_value, result)`; `new_value` is the
    replacement record, None to skip the write, or `DELETE`. Mutators may run more
    than once under contention, so they must not have side effects.
    """

    @abstractmethod
    async def get(self, collection: str, key: str) -> Record | None:
        raise NotImplementedError

    @abstractmethod
    async def list(self, collection: str) -> list[Record]:
        raise NotImplementedError

    @abstractmethod
    async def put(self, collection: str, key: str, value: Record) -> None:
        raise NotImplementedError

    @abstractmethod
    async def transact(self, collection: str, key: str, mutator: Mutator) -> Any:
        raise NotImplementedError

    async def delete(self, collection: str, key: str) -> bool:
        def _remove(current: Record | None) -> tuple[Any, bool]:
            if current is None:
                return None, False
            return DELETE, True

        return await self.transact(collection, key, _remove)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None
