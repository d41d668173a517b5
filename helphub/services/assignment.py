"""
Эксклюзивное назначение волонтера на заявку.

Заявка и волонтер хранятся независимо, поэтому назначение выполняется как
сага из двух условных записей:

1. резервируем волонтера (available -> busy);
2. назначаем заявку (pending -> assigned) и генерируем код;
3. если второй шаг не удался, снимаем резерв с волонтера.
"""

import logging

from helphub.models.request import ServiceRequest
from helphub.models.results import Assigned, DomainEvent, Failure, FailureReason
from helphub.models.volunteer import Volunteer, VolunteerSummary
from helphub.services.otp import OtpGenerator
from helphub.storage.base import (
    RequestRepository,
    VolunteerRepository,
    guarded_update,
    not_found,
)

logger = logging.getLogger(__name__)


def request_not_pending(request: ServiceRequest) -> Failure:
    return Failure(
        reason=FailureReason.INVALID_STATE,
        message=f"Request is no longer available (status '{request.status}')",
    )


def volunteer_unavailable(volunteer: Volunteer) -> Failure:
    return Failure(
        reason=FailureReason.VOLUNTEER_UNAVAILABLE,
        message=f"Volunteer is not available (availability '{volunteer.availability}')",
    )


def is_free(volunteer: Volunteer) -> bool:
    return volunteer.is_active and volunteer.availability == "available"


class AssignmentCoordinator:
    def __init__(
        self,
        requests: RequestRepository,
        volunteers: VolunteerRepository,
        otp: OtpGenerator,
    ):
        self.requests = requests
        self.volunteers = volunteers
        self.otp = otp

    async def assign(self, request_id: str, volunteer_id: str) -> Assigned | Failure:
        logger.info(f"Assigning request {request_id} to volunteer {volunteer_id}.")

        request = await self.requests.get(request_id)
        if request is None:
            return not_found("Request", request_id)
        if request.status != "pending":
            logger.warning(
                f"Volunteer {volunteer_id} tried to take request {request_id}, "
                f"but it already has status '{request.status}'."
            )
            return request_not_pending(request)

        volunteer = await self.volunteers.get(volunteer_id)
        if volunteer is None:
            return not_found("Volunteer", volunteer_id)
        if not is_free(volunteer):
            return volunteer_unavailable(volunteer)

        # Шаг 1: резерв волонтера
        reserved = await guarded_update(self.volunteers, volunteer_id, self._reserve)
        if isinstance(reserved, Failure):
            logger.warning(
                f"Volunteer {volunteer_id} was taken before request {request_id} "
                f"could be assigned: {reserved.reason.value}."
            )
            return reserved

        # Шаг 2: назначение заявки
        issued: dict[str, str] = {}

        def assign_request(req: ServiceRequest) -> Failure | None:
            if req.status != "pending":
                return request_not_pending(req)
            req.status = "assigned"
            req.assigned_volunteer_id = volunteer_id
            issued["code"] = self.otp.generate(req)
            return None

        try:
            assigned = await guarded_update(self.requests, request_id, assign_request)
        except Exception as e:
            logger.error(
                f"Failed to assign request {request_id}, releasing volunteer "
                f"{volunteer_id}: {e}",
                exc_info=True,
            )
            await self.release(volunteer_id)
            raise

        if isinstance(assigned, Failure):
            # Шаг 3 (откат): другой волонтер успел раньше
            logger.warning(
                f"Request {request_id} lost the race for volunteer {volunteer_id}, "
                "rolling back the reservation."
            )
            await self.release(volunteer_id)
            return assigned

        summary = VolunteerSummary.from_volunteer(reserved)
        event = DomainEvent(
            name="request_assigned",
            request_id=request_id,
            payload={
                "customer_telegram_id": assigned.customer.telegram_id,
                "volunteer": {
                    "id": summary.volunteer_id,
                    "first_name": summary.first_name,
                    "last_name": summary.last_name,
                    "phone": summary.phone,
                    "profession": summary.profession,
                },
                "otp": issued["code"],
            },
        )
        logger.info(f"Request {request_id} assigned to volunteer {volunteer_id}.")
        return Assigned(
            request=assigned, volunteer=summary, otp_code=issued["code"], event=event
        )

    async def release(self, volunteer_id: str) -> Volunteer | Failure:
        """Снимает резерв: busy -> available, счетчик взятых заявок уменьшается."""

        def unreserve(volunteer: Volunteer) -> Failure | None:
            if volunteer.availability != "busy":
                return volunteer_unavailable(volunteer)
            volunteer.availability = "available"
            volunteer.total_jobs = max(volunteer.total_jobs - 1, 0)
            return None

        released = await guarded_update(self.volunteers, volunteer_id, unreserve)
        if isinstance(released, Failure):
            logger.warning(
                f"Volunteer {volunteer_id} was not released: {released.message}."
            )
        else:
            logger.info(f"Volunteer {volunteer_id} released.")
        return released

    @staticmethod
    def _reserve(volunteer: Volunteer) -> Failure | None:
        if not is_free(volunteer):
            return volunteer_unavailable(volunteer)
        volunteer.availability = "busy"
        volunteer.total_jobs += 1
        return None
