"""
Модели данных, связанные с заявкой на услугу.
"""

import uuid
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

# Определяем возможные статусы заявки для строгой типизации
RequestStatus = Literal["pending", "assigned", "in_progress", "completed", "cancelled"]
Urgency = Literal["low", "medium", "high", "urgent"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]

# Статусы, в которых у заявки обязательно есть исполнитель
ASSIGNED_STATUSES: frozenset[str] = frozenset({"assigned", "in_progress", "completed"})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CustomerInfo(BaseModel):
    """
    Контактные данные заказчика. Не меняются после создания заявки.
    """

    model_config = ConfigDict(frozen=True)

    first_name: str
    last_name: str = ""
    email: str | None = None
    phone: str
    # Чат заказчика в Telegram, если заявка создана через бота
    telegram_id: int | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ServiceDetails(BaseModel):
    category: str = Field(..., min_length=1)
    description: str
    urgency: Urgency = "medium"
    estimated_duration: str = ""


class Location(BaseModel):
    address: str = ""
    city: str
    state: str
    zip_code: str = ""

    def same_locality(self, other: "Location") -> bool:
        """Точное (с учетом регистра) совпадение города и штата."""
        return self.city == other.city and self.state == other.state


class Payment(BaseModel):
    """
    Платежные данные. Оплата отключена, статус ядром не меняется.
    """

    amount: float = Field(0, ge=0)
    currency: str = "INR"
    provider: Literal["none"] = "none"
    status: PaymentStatus = "pending"


class OtpState(BaseModel):
    code: str | None = None
    generated_at: datetime | None = None
    verified_at: datetime | None = None
    attempts: int = Field(0, ge=0)


class RequestSummary(BaseModel):
    """Краткое описание заявки, которое рассылается кандидатам."""

    request_id: str
    category: str
    description: str
    urgency: Urgency
    location: Location
    scheduled_date: datetime
    amount: float
    currency: str


class ServiceRequest(BaseModel):
    """
    Модель заявки на услугу.
    """

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    # Счетчик версий для условной записи (compare-and-swap)
    version: int = 0

    customer: CustomerInfo
    service: ServiceDetails
    location: Location
    payment: Payment = Field(default_factory=Payment)

    status: RequestStatus = "pending"
    assigned_volunteer_id: str | None = None
    otp: OtpState = Field(default_factory=OtpState)

    scheduled_date: datetime
    completed_at: datetime | None = None
    customer_rating: int | None = Field(None, ge=1, le=5)
    customer_feedback: str | None = None

    def summary(self) -> RequestSummary:
        return RequestSummary(
            request_id=self.request_id,
            category=self.service.category,
            description=self.service.description,
            urgency=self.service.urgency,
            location=self.location,
            scheduled_date=self.scheduled_date,
            amount=self.payment.amount,
            currency=self.payment.currency,
        )

    @property
    def short_id(self) -> str:
        return self.request_id[:8]
