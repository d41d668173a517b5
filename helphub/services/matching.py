"""
Подбор волонтеров для заявки и заявок для волонтера.
"""

import logging

from helphub.models.request import Location, ServiceRequest
from helphub.models.volunteer import Volunteer, VolunteerSummary
from helphub.storage.base import VolunteerRepository

logger = logging.getLogger(__name__)

DEFAULT_FEED_LIMIT = 20


def is_eligible(volunteer: Volunteer, location: Location, category: str) -> bool:
    return (
        volunteer.is_active
        and volunteer.availability == "available"
        and volunteer.location.same_locality(location)
        and volunteer.matches_category(category)
    )


def candidate_order(volunteer: Volunteer) -> tuple:
    """Рейтинг по убыванию, затем выполненные заявки по убыванию, затем id."""
    return (-volunteer.rating, -volunteer.completed_jobs, volunteer.volunteer_id)


class MatchingEngine:
    """
    Чистое чтение: ничего не меняет в хранилище.
    """

    def __init__(self, volunteers: VolunteerRepository):
        self.volunteers = volunteers

    async def find_candidates(
        self, location: Location, category: str, limit: int | None = None
    ) -> list[VolunteerSummary]:
        matched = [
            v
            for v in await self.volunteers.list_all()
            if is_eligible(v, location, category)
        ]
        matched.sort(key=candidate_order)
        if limit is not None:
            matched = matched[:limit]
        logger.debug(
            f"Found {len(matched)} candidates for '{category}' in "
            f"{location.city}, {location.state}."
        )
        return [VolunteerSummary.from_volunteer(v) for v in matched]

    @staticmethod
    def find_open_requests(
        volunteer: Volunteer,
        requests: list[ServiceRequest],
        limit: int = DEFAULT_FEED_LIMIT,
    ) -> list[ServiceRequest]:
        """
        Лента волонтера: ожидающие заявки в его городе, подходящие по категории.

        Используется тот же предикат совпадения категории, что и при подборе
        кандидатов. Сначала новые.
        """
        feed = [
            r
            for r in requests
            if r.status == "pending"
            and volunteer.location.same_locality(r.location)
            and volunteer.matches_category(r.service.category)
        ]
        feed.sort(key=lambda r: r.request_id)
        feed.sort(key=lambda r: r.created_at, reverse=True)
        return feed[:limit]
