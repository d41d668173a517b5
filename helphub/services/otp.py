"""
Генерация и проверка одноразовых кодов подтверждения выполнения заявки.

Код хранится в самой заявке (`ServiceRequest.otp`). Генератор только меняет
переданную модель; сохранение выполняет вызывающий сервис.
"""

import hmac
import logging
import math
import secrets
from datetime import datetime, timedelta
from typing import Callable

from pydantic import BaseModel

from helphub.models.request import ServiceRequest, utc_now
from helphub.models.results import Failure, FailureReason, OtpStatus

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class OtpPolicy(BaseModel):
    """
    Параметры одноразовых кодов.

    Атрибуты:
        ttl (timedelta): Срок действия кода.
        max_attempts (int): Сколько раз можно сравнить введенный код.
        resend_cooldown (timedelta): Минимальный интервал между отправками кода.
        code_length (int): Количество цифр в коде.
    """

    ttl: timedelta = timedelta(minutes=15)
    max_attempts: int = 3
    resend_cooldown: timedelta = timedelta(minutes=2)
    code_length: int = 6

    @classmethod
    def from_settings(cls, settings) -> "OtpPolicy":
        return cls(
            ttl=timedelta(minutes=settings.otp_ttl_minutes),
            max_attempts=settings.otp_max_attempts,
            resend_cooldown=timedelta(seconds=settings.otp_resend_cooldown_seconds),
        )


class OtpGenerator:
    def __init__(self, policy: OtpPolicy | None = None, clock: Clock = utc_now):
        self.policy = policy or OtpPolicy()
        self.clock = clock

    def new_code(self) -> str:
        """Равномерно выбирает число из диапазона 100000-999999 (для 6 цифр)."""
        lowest = 10 ** (self.policy.code_length - 1)
        return str(lowest + secrets.randbelow(9 * lowest))

    def generate(self, request: ServiceRequest) -> str:
        code = self.new_code()
        request.otp.code = code
        request.otp.generated_at = self.clock()
        request.otp.verified_at = None
        request.otp.attempts = 0
        logger.info(f"OTP generated for request {request.request_id}.")
        return code

    def resend_wait_seconds(self, request: ServiceRequest) -> int:
        """Сколько секунд осталось до разрешенной повторной отправки (0, если можно)."""
        generated_at = request.otp.generated_at
        if generated_at is None:
            return 0
        remaining = self.policy.resend_cooldown - (self.clock() - generated_at)
        if remaining <= timedelta(0):
            return 0
        return math.ceil(remaining.total_seconds())

    def resend(self, request: ServiceRequest) -> str | Failure:
        wait_seconds = self.resend_wait_seconds(request)
        if wait_seconds > 0:
            logger.warning(
                f"OTP resend for request {request.request_id} throttled for {wait_seconds}s."
            )
            return Failure(
                reason=FailureReason.OTP_THROTTLED,
                message="Please wait before requesting another OTP",
                wait_seconds=wait_seconds,
            )
        return self.generate(request)

    def valid_until(self, request: ServiceRequest) -> datetime | None:
        if request.otp.generated_at is None:
            return None
        return request.otp.generated_at + self.policy.ttl

    def is_expired(self, request: ServiceRequest) -> bool:
        generated_at = request.otp.generated_at
        if generated_at is None:
            return False
        return self.clock() - generated_at > self.policy.ttl

    def attempts_exhausted(self, request: ServiceRequest) -> bool:
        return request.otp.attempts >= self.policy.max_attempts

    @staticmethod
    def matches(request: ServiceRequest, code: str) -> bool:
        stored = request.otp.code
        if stored is None:
            return False
        return hmac.compare_digest(stored.encode(), code.strip().encode())

    def status(self, request: ServiceRequest) -> OtpStatus:
        otp = request.otp
        return OtpStatus(
            request_id=request.request_id,
            generated=otp.code is not None,
            generated_at=otp.generated_at,
            verified=otp.verified_at is not None,
            verified_at=otp.verified_at,
            attempts=otp.attempts,
            expired=self.is_expired(request),
            valid_until=self.valid_until(request),
        )
