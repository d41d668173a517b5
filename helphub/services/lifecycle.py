"""
Жизненный цикл заявки: единая точка входа для обработчиков бота и панелей.

Собирает подбор, назначение, выдачу кодов и подтверждение выполнения
в один сервис. Уведомления отправляются в фоне и не блокируют вызывающего.
"""

import asyncio
import logging
from datetime import datetime
from typing import Coroutine

from helphub.models.request import (
    CustomerInfo,
    Location,
    Payment,
    ServiceDetails,
    ServiceRequest,
)
from helphub.models.results import (
    Assigned,
    DomainEvent,
    Failure,
    FailureReason,
    OtpIssued,
    OtpStatus,
    RequestCreated,
    Verified,
)
from helphub.models.volunteer import (
    Availability,
    Volunteer,
    VolunteerStats,
    VolunteerSummary,
)
from helphub.services.assignment import AssignmentCoordinator
from helphub.services.completion import CompletionVerifier
from helphub.services.matching import DEFAULT_FEED_LIMIT, MatchingEngine
from helphub.services.notification_service import NotificationDispatcher
from helphub.services.otp import OtpGenerator
from helphub.storage.base import (
    RequestRepository,
    VolunteerRepository,
    guarded_update,
    not_found,
)
from helphub.storage.locks import KeyedLocks

logger = logging.getLogger(__name__)

ACTIVE_JOB_STATUSES = ("assigned", "in_progress")
CANCELLABLE_STATUSES = ("pending", "assigned")


def _not_assigned(request: ServiceRequest) -> Failure:
    return Failure(
        reason=FailureReason.INVALID_STATE,
        message=f"Request is not assigned to a volunteer (status '{request.status}')",
    )


class RequestLifecycle:
    def __init__(
        self,
        requests: RequestRepository,
        volunteers: VolunteerRepository,
        dispatcher: NotificationDispatcher,
        otp: OtpGenerator | None = None,
        candidate_notify_limit: int | None = None,
    ):
        self.requests = requests
        self.volunteers = volunteers
        self.dispatcher = dispatcher
        self.otp = otp or OtpGenerator()
        self.candidate_notify_limit = candidate_notify_limit

        # Общие блокировки: выдача кода и его проверка для одной заявки не пересекаются
        self.locks = KeyedLocks()
        self.matching = MatchingEngine(volunteers)
        self.assignment = AssignmentCoordinator(requests, volunteers, self.otp)
        self.completion = CompletionVerifier(
            requests, volunteers, self.otp, locks=self.locks
        )
        self._background: set[asyncio.Task] = set()

    # --- Фоновые уведомления ---

    def _in_background(self, coro: Coroutine, description: str) -> None:
        task = asyncio.create_task(coro, name=description)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Background task '{task.get_name()}' failed: {error}",
                exc_info=error,
            )

    async def drain(self) -> None:
        """Дожидается завершения всех фоновых уведомлений."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def _publish(self, event: DomainEvent) -> None:
        self._in_background(
            self.dispatcher.publish(event), f"{event.name}:{event.request_id}"
        )

    # --- Создание и чтение заявок ---

    async def create_request(
        self,
        customer: CustomerInfo,
        service: ServiceDetails,
        location: Location,
        payment: Payment,
        scheduled_date: datetime,
    ) -> RequestCreated:
        request = ServiceRequest(
            customer=customer,
            service=service,
            location=location,
            # Оплата отключена: провайдер всегда "none", статус "pending"
            payment=Payment(amount=payment.amount, currency=payment.currency),
            scheduled_date=scheduled_date,
        )
        await self.requests.add(request)
        logger.info(
            f"Request {request.request_id} created: '{service.category}' in "
            f"{location.city}, {location.state}."
        )

        candidates = await self.matching.find_candidates(location, service.category)
        to_notify = candidates
        if self.candidate_notify_limit is not None:
            to_notify = candidates[: self.candidate_notify_limit]
        if to_notify:
            self._in_background(
                self.dispatcher.notify_candidates(to_notify, request.summary()),
                f"new_request:{request.request_id}",
            )
        return RequestCreated(request=request, candidates=candidates)

    async def get_request(self, request_id: str) -> ServiceRequest | Failure:
        request = await self.requests.get(request_id)
        if request is None:
            return not_found("Request", request_id)
        return request

    async def list_candidates(
        self, location: Location, category: str, limit: int | None = None
    ) -> list[VolunteerSummary]:
        return await self.matching.find_candidates(location, category, limit=limit)

    # --- Назначение ---

    async def assign_volunteer(
        self, request_id: str, volunteer_id: str
    ) -> Assigned | Failure:
        result = await self.assignment.assign(request_id, volunteer_id)
        if result.ok:
            self._publish(result.event)
        return result

    # --- Одноразовые коды ---

    async def generate_otp(self, request_id: str) -> OtpIssued | Failure:
        def issue(request: ServiceRequest) -> Failure | None:
            if request.status != "assigned":
                return _not_assigned(request)
            self.otp.generate(request)
            return None

        return await self._issue_otp(request_id, issue)

    async def resend_otp(self, request_id: str) -> OtpIssued | Failure:
        def reissue(request: ServiceRequest) -> Failure | None:
            if request.status != "assigned":
                return _not_assigned(request)
            code = self.otp.resend(request)
            return code if isinstance(code, Failure) else None

        return await self._issue_otp(request_id, reissue)

    async def _issue_otp(self, request_id: str, mutate) -> OtpIssued | Failure:
        async with self.locks.hold(request_id):
            updated = await guarded_update(self.requests, request_id, mutate)
        if isinstance(updated, Failure):
            return updated
        return OtpIssued(
            request_id=request_id,
            code=updated.otp.code,
            generated_at=updated.otp.generated_at,
            valid_until=self.otp.valid_until(updated),
        )

    async def verify_otp(self, request_id: str, code: str) -> Verified | Failure:
        result = await self.completion.verify(request_id, code)
        if result.ok:
            self._publish(result.event)
        return result

    async def get_otp_status(self, request_id: str) -> OtpStatus | Failure:
        request = await self.requests.get(request_id)
        if request is None:
            return not_found("Request", request_id)
        return self.otp.status(request)

    # --- Отмена и оценка ---

    async def cancel_request(self, request_id: str) -> ServiceRequest | Failure:
        released: dict[str, str | None] = {}

        def cancel(request: ServiceRequest) -> Failure | None:
            if request.status not in CANCELLABLE_STATUSES:
                return Failure(
                    reason=FailureReason.INVALID_STATE,
                    message=f"Request cannot be cancelled (status '{request.status}')",
                )
            released["volunteer_id"] = request.assigned_volunteer_id
            request.status = "cancelled"
            request.assigned_volunteer_id = None
            return None

        async with self.locks.hold(request_id):
            cancelled = await guarded_update(self.requests, request_id, cancel)
        if isinstance(cancelled, Failure):
            return cancelled
        logger.info(f"Request {request_id} cancelled.")

        volunteer_id = released.get("volunteer_id")
        if volunteer_id is not None:
            await self.assignment.release(volunteer_id)
            volunteer = await self.volunteers.get(volunteer_id)
            self._publish(
                DomainEvent(
                    name="request_cancelled",
                    request_id=request_id,
                    payload={
                        "volunteer_id": volunteer_id,
                        "volunteer_telegram_id": volunteer.telegram_id
                        if volunteer
                        else None,
                    },
                )
            )
        return cancelled

    async def rate_service(
        self, request_id: str, rating: int, feedback: str | None = None
    ) -> ServiceRequest | Failure:
        if not 1 <= rating <= 5:
            return Failure(
                reason=FailureReason.VALIDATION_ERROR,
                message="Rating must be between 1 and 5",
            )

        def rate(request: ServiceRequest) -> Failure | None:
            if request.status != "completed":
                return Failure(
                    reason=FailureReason.INVALID_STATE,
                    message="Only completed requests can be rated",
                )
            if request.customer_rating is not None:
                return Failure(
                    reason=FailureReason.INVALID_STATE,
                    message="Request has already been rated",
                )
            request.customer_rating = rating
            request.customer_feedback = feedback
            return None

        rated = await guarded_update(self.requests, request_id, rate)
        if isinstance(rated, Failure):
            return rated

        def update_average(volunteer: Volunteer) -> Failure | None:
            volunteer.add_rating(rating)
            return None

        await guarded_update(self.volunteers, rated.assigned_volunteer_id, update_average)
        logger.info(f"Request {request_id} rated {rating}.")
        return rated

    # --- Панель волонтера ---

    async def list_open_requests(
        self, volunteer_id: str, limit: int = DEFAULT_FEED_LIMIT
    ) -> list[ServiceRequest] | Failure:
        volunteer = await self.volunteers.get(volunteer_id)
        if volunteer is None:
            return not_found("Volunteer", volunteer_id)
        pending = await self.requests.list_by_status("pending")
        return self.matching.find_open_requests(volunteer, pending, limit=limit)

    async def list_jobs(
        self, volunteer_id: str, status: str | None = None, limit: int = 10
    ) -> list[ServiceRequest]:
        jobs = await self.requests.list_for_volunteer(volunteer_id, status=status)
        jobs.sort(key=lambda r: r.created_at, reverse=True)
        return jobs[:limit]

    async def volunteer_stats(self, volunteer_id: str) -> VolunteerStats | Failure:
        volunteer = await self.volunteers.get(volunteer_id)
        if volunteer is None:
            return not_found("Volunteer", volunteer_id)

        jobs = await self.requests.list_for_volunteer(volunteer_id)
        assigned_jobs = sum(1 for r in jobs if r.status in ACTIVE_JOB_STATUSES)
        ratings = [r.customer_rating for r in jobs if r.customer_rating is not None]
        average = round(sum(ratings) / len(ratings), 1) if ratings else 0
        completion_rate = (
            round(volunteer.completed_jobs / volunteer.total_jobs * 100)
            if volunteer.total_jobs > 0
            else 0
        )
        return VolunteerStats(
            total_jobs=volunteer.total_jobs,
            completed_jobs=volunteer.completed_jobs,
            assigned_jobs=assigned_jobs,
            rating=volunteer.rating,
            average_rating=average,
            completion_rate=completion_rate,
        )

    async def set_availability(
        self, volunteer_id: str, availability: Availability
    ) -> Volunteer | Failure:
        """
        Меняет доступность свободного волонтера.

        Занятость снимают только завершение, отмена или откат назначения:
        резерв ставится раньше записи заявки, поэтому по списку заявок
        нельзя понять, свободен ли занятый волонтер.
        """
        if availability == "busy":
            return Failure(
                reason=FailureReason.VALIDATION_ERROR,
                message="Volunteers cannot mark themselves busy",
            )

        def change(volunteer: Volunteer) -> Failure | None:
            if volunteer.availability == "busy":
                return Failure(
                    reason=FailureReason.INVALID_STATE,
                    message="Volunteer has an active assignment",
                )
            volunteer.availability = availability
            return None

        updated = await guarded_update(self.volunteers, volunteer_id, change)
        if not isinstance(updated, Failure):
            logger.info(f"Volunteer {volunteer_id} availability -> {availability}.")
        return updated
