"""
Модели данных, связанные с волонтером.
"""

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator

from helphub.models.request import Location, utc_now

Availability = Literal["available", "busy", "unavailable"]


class Volunteer(BaseModel):
    """
    Модель волонтера (исполнителя).

    Атрибуты:
        volunteer_id (str): Уникальный идентификатор волонтера.
        telegram_id (int | None): ID в Telegram, через который волонтер работает с ботом.
        profession (str): Основная категория услуг.
        skills (list[str]): Дополнительные навыки, участвуют в подборе.
        availability (str): Текущая доступность для новых заявок.
        rating (float): Средняя оценка заказчиков (0-5), округлена до сотых.
        rating_sum (float): Точная сумма всех оценок, из нее считается среднее.
    """

    volunteer_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    telegram_id: int | None = Field(None, description="Telegram User ID")
    first_name: str
    last_name: str = ""
    email: str | None = None
    phone: str | None = None
    profession: str = Field(..., min_length=1)
    skills: list[str] = Field(default_factory=list)
    location: Location

    availability: Availability = "available"
    rating: float = Field(0, ge=0, le=5)
    rating_count: int = Field(0, ge=0)
    rating_sum: float = Field(0, ge=0)
    total_jobs: int = Field(0, ge=0)
    completed_jobs: int = Field(0, ge=0)

    is_active: bool = True
    is_verified: bool = False
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = 0

    @model_validator(mode="after")
    def _restore_rating_sum(self) -> "Volunteer":
        # Записи без суммы: восстанавливаем ее из сохраненного среднего
        if self.rating_count and not self.rating_sum:
            self.rating_sum = self.rating * self.rating_count
        return self

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def matches_category(self, category: str) -> bool:
        """Категория входит (без учета регистра) в профессию или в один из навыков."""
        needle = category.strip().lower()
        if not needle:
            return False
        if needle in self.profession.lower():
            return True
        return any(needle in skill.lower() for skill in self.skills)

    def add_rating(self, rating: int) -> None:
        self.rating_sum += rating
        self.rating_count += 1
        self.rating = round(self.rating_sum / self.rating_count, 2)


class VolunteerSummary(BaseModel):
    """Публичная проекция волонтера для выдачи подбора."""

    volunteer_id: str
    telegram_id: int | None = None
    first_name: str
    last_name: str
    phone: str | None = None
    profession: str
    skills: list[str]
    rating: float
    total_jobs: int
    completed_jobs: int
    location: Location

    @classmethod
    def from_volunteer(cls, volunteer: Volunteer) -> "VolunteerSummary":
        return cls(
            volunteer_id=volunteer.volunteer_id,
            telegram_id=volunteer.telegram_id,
            first_name=volunteer.first_name,
            last_name=volunteer.last_name,
            phone=volunteer.phone,
            profession=volunteer.profession,
            skills=list(volunteer.skills),
            rating=volunteer.rating,
            total_jobs=volunteer.total_jobs,
            completed_jobs=volunteer.completed_jobs,
            location=volunteer.location,
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class VolunteerStats(BaseModel):
    total_jobs: int
    completed_jobs: int
    assigned_jobs: int
    rating: float
    average_rating: float
    completion_rate: int
