"""
Хранилища в памяти процесса.

Используются для разработки, тестов и однопроцессного развертывания.
Все операции записи выполняются под asyncio.Lock.
"""

import asyncio
import logging

from helphub.models.request import utc_now
from helphub.storage.base import M, Repository, RequestRepository, VolunteerRepository

logger = logging.getLogger(__name__)


class _InMemoryRepository(Repository[M]):
    def __init__(self) -> None:
        self._items: dict[str, M] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> M | None:
        item = self._items.get(key)
        return item.model_copy(deep=True) if item is not None else None

    async def add(self, item: M) -> None:
        key = self.key_of(item)
        async with self._lock:
            if key in self._items:
                raise ValueError(f"{self.entity_name} {key} already exists")
            self._items[key] = item.model_copy(deep=True)
        logger.debug(f"{self.entity_name} {key} stored in memory.")

    async def list_all(self) -> list[M]:
        return [item.model_copy(deep=True) for item in self._items.values()]

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._items.pop(key, None) is not None

    async def compare_and_swap(self, item: M) -> bool:
        key = self.key_of(item)
        async with self._lock:
            stored = self._items.get(key)
            if stored is None or stored.version != item.version:
                return False
            item.version += 1
            item.updated_at = utc_now()
            self._items[key] = item.model_copy(deep=True)
            return True


class InMemoryRequestRepository(_InMemoryRepository, RequestRepository):
    pass


class InMemoryVolunteerRepository(_InMemoryRepository, VolunteerRepository):
    pass
