"""
Сервисный модуль для управления волонтерами.

Реализует регистрацию и удаление волонтеров, а также кэширование
поиска по Telegram ID для проверки доступа в обработчиках.
"""

import logging
import time
from typing import Optional

from helphub.models.volunteer import Volunteer
from helphub.storage.base import VolunteerRepository

logger = logging.getLogger(__name__)


class VolunteerService:
    """
    Сервис для работы с реестром волонтеров.
    """

    def __init__(self, volunteers: VolunteerRepository, cache_ttl_seconds: int = 60):
        self.volunteers = volunteers
        self._cache_ttl = cache_ttl_seconds
        self._volunteer_cache: dict[int, Volunteer] | None = None
        self._cache_timestamp: float = 0.0

    async def list_all(self) -> list[Volunteer]:
        volunteers = await self.volunteers.list_all()
        volunteers.sort(key=lambda v: (v.first_name, v.last_name, v.volunteer_id))
        return volunteers

    async def _telegram_index(self) -> dict[int, Volunteer]:
        current_time = time.time()
        if (
            self._volunteer_cache is not None
            and (current_time - self._cache_timestamp) < self._cache_ttl
        ):
            logger.debug("Returning volunteers from cache.")
            return self._volunteer_cache

        logger.info("Cache is expired or empty. Loading volunteers from storage...")
        try:
            records = await self.volunteers.list_all()
        except Exception as e:
            logger.error(f"Failed to load volunteers: {e}", exc_info=True)
            if self._volunteer_cache is not None:
                logger.warning("Returning stale volunteer cache due to load failure.")
                return self._volunteer_cache
            raise

        self._volunteer_cache = {
            v.telegram_id: v for v in records if v.telegram_id is not None
        }
        self._cache_timestamp = current_time
        logger.info(
            f"Successfully loaded and cached {len(self._volunteer_cache)} volunteers."
        )
        return self._volunteer_cache

    async def get_by_telegram_id(self, telegram_id: int) -> Optional[Volunteer]:
        index = await self._telegram_index()
        return index.get(telegram_id)

    def _invalidate(self) -> None:
        self._volunteer_cache = None
        self._cache_timestamp = 0

    async def register(self, volunteer: Volunteer) -> Volunteer:
        if volunteer.telegram_id is not None:
            existing = await self.volunteers.find_by_telegram_id(volunteer.telegram_id)
            if existing is not None:
                raise ValueError(
                    f"Volunteer with Telegram ID {volunteer.telegram_id} already exists"
                )
        await self.volunteers.add(volunteer)
        self._invalidate()
        logger.info(
            f"Volunteer cache cleared after registering {volunteer.volunteer_id}."
        )
        return volunteer

    async def remove(self, volunteer_id: str) -> bool:
        deleted = await self.volunteers.delete(volunteer_id)
        if deleted:
            self._invalidate()
            logger.info(f"Volunteer cache cleared after removing {volunteer_id}.")
        return deleted
