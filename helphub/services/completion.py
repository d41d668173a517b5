"""
Подтверждение выполнения заявки одноразовым кодом.

Проверки выполняются строго по порядку, каждая завершает попытку
со своей причиной:

1. код не выдавался;
2. заявка уже не в работе (завершена или отменена);
3. срок действия кода истек (попытка не засчитывается);
4. попытки исчерпаны (попытка не засчитывается);
5. счетчик попыток увеличивается и код сравнивается.
"""

import logging

from helphub.models.request import ServiceRequest
from helphub.models.results import DomainEvent, Failure, FailureReason, Verified
from helphub.models.volunteer import Volunteer
from helphub.services.otp import OtpGenerator
from helphub.storage.base import RequestRepository, VolunteerRepository, guarded_update
from helphub.storage.locks import KeyedLocks

logger = logging.getLogger(__name__)

VERIFIABLE_STATUSES = ("assigned", "in_progress")


class CompletionVerifier:
    def __init__(
        self,
        requests: RequestRepository,
        volunteers: VolunteerRepository,
        otp: OtpGenerator,
        locks: KeyedLocks | None = None,
    ):
        self.requests = requests
        self.volunteers = volunteers
        self.otp = otp
        # Проверки одной заявки выполняются строго по очереди
        self.locks = locks or KeyedLocks()

    async def verify(self, request_id: str, code: str) -> Verified | Failure:
        async with self.locks.hold(request_id):
            return await self._verify(request_id, code)

    async def _verify(self, request_id: str, code: str) -> Verified | Failure:
        outcome: dict = {}

        def attempt(req: ServiceRequest) -> Failure | None:
            outcome.clear()
            outcome["previous"] = req.model_copy(deep=True)
            attempts = req.otp.attempts

            if req.otp.code is None:
                return Failure(
                    reason=FailureReason.NO_OTP_GENERATED,
                    message="No OTP generated",
                    attempts=attempts,
                )
            if req.status not in VERIFIABLE_STATUSES:
                return Failure(
                    reason=FailureReason.INVALID_STATE,
                    message=f"Request cannot be completed (status '{req.status}')",
                    attempts=attempts,
                )
            if self.otp.is_expired(req):
                return Failure(
                    reason=FailureReason.OTP_EXPIRED,
                    message="OTP expired",
                    attempts=attempts,
                )
            if self.otp.attempts_exhausted(req):
                return Failure(
                    reason=FailureReason.OTP_ATTEMPTS_EXCEEDED,
                    message="Too many attempts",
                    attempts=attempts,
                )

            req.otp.attempts += 1
            outcome["matched"] = self.otp.matches(req, code)
            if outcome["matched"]:
                now = self.otp.clock()
                req.otp.verified_at = now
                req.completed_at = now
                req.status = "completed"
            return None

        updated = await guarded_update(self.requests, request_id, attempt)
        if isinstance(updated, Failure):
            logger.warning(
                f"OTP verification for request {request_id} rejected: "
                f"{updated.reason.value}."
            )
            return updated

        if not outcome["matched"]:
            logger.warning(
                f"Invalid OTP for request {request_id} "
                f"(attempt {updated.otp.attempts}/{self.otp.policy.max_attempts})."
            )
            return Failure(
                reason=FailureReason.OTP_MISMATCH,
                message="Invalid OTP",
                attempts=updated.otp.attempts,
            )

        try:
            await self._credit_volunteer(updated)
        except Exception as e:
            logger.error(
                f"Failed to update volunteer for completed request {request_id}, "
                f"reverting completion: {e}",
                exc_info=True,
            )
            await self._revert_completion(request_id, outcome["previous"])
            raise

        logger.info(f"Request {request_id} completed.")
        event = DomainEvent(
            name="service_completed",
            request_id=request_id,
            occurred_at=updated.completed_at,
            payload={
                "completed_at": updated.completed_at.isoformat(),
                "customer_telegram_id": updated.customer.telegram_id,
                "volunteer_id": updated.assigned_volunteer_id,
            },
        )
        return Verified(
            request_id=request_id,
            completed_at=updated.completed_at,
            attempts=updated.otp.attempts,
            event=event,
        )

    async def _credit_volunteer(self, request: ServiceRequest) -> None:
        volunteer_id = request.assigned_volunteer_id

        def credit(volunteer: Volunteer) -> Failure | None:
            volunteer.completed_jobs += 1
            volunteer.availability = "available"
            return None

        credited = await guarded_update(self.volunteers, volunteer_id, credit)
        if isinstance(credited, Failure):
            logger.warning(
                f"Volunteer {volunteer_id} of request {request.request_id} "
                "no longer exists, counters not updated."
            )

    async def _revert_completion(
        self, request_id: str, previous: ServiceRequest
    ) -> None:
        def revert(req: ServiceRequest) -> Failure | None:
            if req.status != "completed":
                return Failure(
                    reason=FailureReason.INVALID_STATE,
                    message=f"Request is in status '{req.status}'",
                )
            # Попытка уже была, счетчик не откатываем
            req.status = previous.status
            req.completed_at = previous.completed_at
            req.otp.verified_at = previous.otp.verified_at
            return None

        await guarded_update(self.requests, request_id, revert)
