"""
Типизированные результаты операций жизненного цикла заявки и доменные события.

Каждая операция возвращает либо вариант успеха, либо `Failure`
с причиной из закрытого перечня `FailureReason`.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from helphub.models.request import ServiceRequest, utc_now
from helphub.models.volunteer import VolunteerSummary

EventName = Literal[
    "request_assigned", "service_completed", "request_cancelled"
]


class FailureReason(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    VOLUNTEER_UNAVAILABLE = "volunteer_unavailable"
    NO_OTP_GENERATED = "no_otp_generated"
    OTP_EXPIRED = "otp_expired"
    OTP_ATTEMPTS_EXCEEDED = "otp_attempts_exceeded"
    OTP_MISMATCH = "otp_mismatch"
    OTP_THROTTLED = "otp_throttled"
    VALIDATION_ERROR = "validation_error"


class Failure(BaseModel):
    """
    Неуспешный результат операции.

    Атрибуты:
        reason (FailureReason): Причина отказа.
        message (str): Человекочитаемое описание.
        attempts (int | None): Число использованных попыток ввода кода (после инкремента).
        wait_seconds (int | None): Сколько секунд ждать до повторной отправки кода.
    """

    reason: FailureReason
    message: str
    attempts: int | None = None
    wait_seconds: int | None = None

    ok: Literal[False] = False


class DomainEvent(BaseModel):
    """Событие, которое внешний слой уведомлений доставляет подписчикам."""

    name: EventName
    request_id: str
    occurred_at: datetime = Field(default_factory=utc_now)
    payload: dict[str, Any] = Field(default_factory=dict)


class RequestCreated(BaseModel):
    request: ServiceRequest
    candidates: list[VolunteerSummary]

    ok: Literal[True] = True


class Assigned(BaseModel):
    request: ServiceRequest
    volunteer: VolunteerSummary
    otp_code: str
    event: DomainEvent

    ok: Literal[True] = True


class OtpIssued(BaseModel):
    request_id: str
    code: str
    generated_at: datetime
    valid_until: datetime

    ok: Literal[True] = True


class OtpStatus(BaseModel):
    request_id: str
    generated: bool
    generated_at: datetime | None = None
    verified: bool
    verified_at: datetime | None = None
    attempts: int
    expired: bool
    valid_until: datetime | None = None

    ok: Literal[True] = True


class Verified(BaseModel):
    request_id: str
    completed_at: datetime
    attempts: int
    event: DomainEvent

    ok: Literal[True] = True
