"""
Общие фикстуры для тестов.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

# Настройки создаются при импорте helphub.core.config, поэтому токен нужен заранее
os.environ.setdefault("BOT_TOKEN", "123456:TEST-TOKEN")
os.environ.setdefault("ADMIN_IDS", "100")

from helphub.models.request import (  # noqa: E402
    CustomerInfo,
    Location,
    ServiceDetails,
    ServiceRequest,
)
from helphub.models.volunteer import Volunteer  # noqa: E402
from helphub.services.lifecycle import RequestLifecycle  # noqa: E402
from helphub.services.notification_service import NotificationDispatcher  # noqa: E402
from helphub.services.otp import OtpGenerator  # noqa: E402
from helphub.storage.memory import (  # noqa: E402
    InMemoryRequestRepository,
    InMemoryVolunteerRepository,
)

AUSTIN = Location(address="100 Congress Ave", city="Austin", state="TX", zip_code="78701")


class _YieldingRepository:
    """
    Хранилище, уступающее управление на каждом обращении, как сетевое.

    Без этого asyncio.gather выполняет конкурентные операции по очереди.
    """

    async def get(self, key):
        await asyncio.sleep(0)
        return await super().get(key)

    async def list_all(self):
        await asyncio.sleep(0)
        return await super().list_all()

    async def compare_and_swap(self, item):
        await asyncio.sleep(0)
        return await super().compare_and_swap(item)


class YieldingRequestRepository(_YieldingRepository, InMemoryRequestRepository):
    pass


class YieldingVolunteerRepository(_YieldingRepository, InMemoryVolunteerRepository):
    pass


class FakeClock:
    """Управляемые часы для проверки сроков действия кодов."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def otp(clock) -> OtpGenerator:
    return OtpGenerator(clock=clock)


@pytest.fixture
def requests_repo() -> InMemoryRequestRepository:
    return InMemoryRequestRepository()


@pytest.fixture
def volunteers_repo() -> InMemoryVolunteerRepository:
    return InMemoryVolunteerRepository()


@pytest.fixture
def dispatcher(mocker):
    """Мок доставки уведомлений: ядро только вызывает его методы."""
    return mocker.AsyncMock(spec=NotificationDispatcher)


@pytest.fixture
def lifecycle(requests_repo, volunteers_repo, dispatcher, otp) -> RequestLifecycle:
    return RequestLifecycle(requests_repo, volunteers_repo, dispatcher, otp=otp)


@pytest.fixture
def make_volunteer():
    """Фабрика волонтеров: по умолчанию доступный уборщик из Остина."""

    def factory(**overrides) -> Volunteer:
        data = {
            "telegram_id": 500,
            "first_name": "Anna",
            "last_name": "Smith",
            "phone": "+15550100",
            "profession": "Cleaning",
            "location": AUSTIN,
        }
        data.update(overrides)
        return Volunteer(**data)

    return factory


@pytest.fixture
def make_request():
    """Фабрика заявок: по умолчанию уборка в Остине."""

    def factory(**overrides) -> ServiceRequest:
        data = {
            "customer": CustomerInfo(
                first_name="John", last_name="Doe", phone="+15550199", telegram_id=900
            ),
            "service": ServiceDetails(
                category="Cleaning", description="Deep clean of a 2BR flat"
            ),
            "location": AUSTIN,
            "scheduled_date": datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
        }
        data.update(overrides)
        return ServiceRequest(**data)

    return factory


@pytest.fixture
def yielding_requests_repo() -> YieldingRequestRepository:
    return YieldingRequestRepository()


@pytest.fixture
def yielding_volunteers_repo() -> YieldingVolunteerRepository:
    return YieldingVolunteerRepository()


@pytest.fixture
def yielding_lifecycle(
    yielding_requests_repo, yielding_volunteers_repo, dispatcher, otp
) -> RequestLifecycle:
    """Сервис на хранилищах, где конкурентные операции действительно чередуются."""
    return RequestLifecycle(
        yielding_requests_repo, yielding_volunteers_repo, dispatcher, otp=otp
    )
