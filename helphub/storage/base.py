"""
Интерфейсы хранилищ заявок и волонтеров.

Хранилище разделяется множеством одновременно работающих обработчиков,
поэтому вместо "прочитал-изменил-записал" изменения выполняются через
условную запись `compare_and_swap`, защищенную номером версии сущности.
"""

import logging
from abc import ABC, abstractmethod
from typing import Callable, Generic, TypeVar

from helphub.models.request import ServiceRequest
from helphub.models.results import Failure, FailureReason
from helphub.models.volunteer import Volunteer

logger = logging.getLogger(__name__)

M = TypeVar("M", ServiceRequest, Volunteer)

# Мутация проверяет условие и меняет сущность; возвращает Failure, если условие не выполнено
Mutation = Callable[[M], Failure | None]

DEFAULT_CAS_RETRIES = 5


class ConcurrentUpdateError(RuntimeError):
    """Условная запись не удалась за отведенное число попыток."""


class Repository(ABC, Generic[M]):
    entity_name: str = "entity"

    @staticmethod
    @abstractmethod
    def key_of(item: M) -> str: ...

    @abstractmethod
    async def get(self, key: str) -> M | None:
        """Возвращает независимую копию сущности или None."""

    @abstractmethod
    async def add(self, item: M) -> None: ...

    @abstractmethod
    async def list_all(self) -> list[M]: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def compare_and_swap(self, item: M) -> bool:
        """
        Сохраняет `item`, только если версия в хранилище равна `item.version`.

        При успехе версия увеличивается на единицу (и в хранилище, и в `item`).

        Returns:
            True, если запись выполнена; False при конфликте версий или если
            сущность была удалена.
        """


class RequestRepository(Repository[ServiceRequest]):
    entity_name = "Request"

    @staticmethod
    def key_of(item: ServiceRequest) -> str:
        return item.request_id

    async def list_by_status(self, *statuses: str) -> list[ServiceRequest]:
        return [r for r in await self.list_all() if r.status in statuses]

    async def list_for_volunteer(
        self, volunteer_id: str, status: str | None = None
    ) -> list[ServiceRequest]:
        return [
            r
            for r in await self.list_all()
            if r.assigned_volunteer_id == volunteer_id
            and (status is None or r.status == status)
        ]


class VolunteerRepository(Repository[Volunteer]):
    entity_name = "Volunteer"

    @staticmethod
    def key_of(item: Volunteer) -> str:
        return item.volunteer_id

    async def find_by_telegram_id(self, telegram_id: int) -> Volunteer | None:
        for volunteer in await self.list_all():
            if volunteer.telegram_id == telegram_id:
                return volunteer
        return None


def not_found(entity_name: str, key: str) -> Failure:
    return Failure(
        reason=FailureReason.NOT_FOUND, message=f"{entity_name} {key} not found"
    )


async def guarded_update(
    repo: Repository[M],
    key: str,
    mutate: Mutation,
    *,
    max_retries: int = DEFAULT_CAS_RETRIES,
) -> M | Failure:
    """
    Читает сущность, применяет мутацию и записывает ее условно.

    При конфликте версий сущность перечитывается и условие проверяется заново,
    поэтому проигравший гонку получает Failure от своей мутации.

    Raises:
        ConcurrentUpdateError: Если конфликт версий повторился `max_retries` раз.
    """
    for attempt in range(1, max_retries + 1):
        current = await repo.get(key)
        if current is None:
            return not_found(repo.entity_name, key)

        failure = mutate(current)
        if failure is not None:
            return failure

        if await repo.compare_and_swap(current):
            return current

        logger.warning(
            f"Version conflict while updating {repo.entity_name} {key} "
            f"(attempt {attempt}/{max_retries})."
        )

    raise ConcurrentUpdateError(
        f"Could not update {repo.entity_name} {key} after {max_retries} attempts"
    )
