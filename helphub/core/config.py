"""
Модуль конфигурации проекта.

Загружает настройки из переменных окружения с помощью Pydantic Settings.
Обеспечивает централизованный и безопасный доступ к конфигурационным данным.
"""

from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Основные настройки приложения.

    Атрибуты:
        bot_token (str): Секретный токен для доступа к Telegram Bot API.
        admin_ids_str (str): Список Telegram ID администраторов в виде строки.
        admin_ids (list[int]): Сгенерированный список ID администраторов.
        storage_backend (str): Где хранить заявки и волонтеров: "memory" или "sheets".
        google_sheet_id (str | None): ID Google-таблицы (для хранилища "sheets").
        otp_ttl_minutes (int): Срок действия кода подтверждения.
        otp_max_attempts (int): Число попыток ввода кода.
        otp_resend_cooldown_seconds (int): Пауза между повторными отправками кода.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # --- Telegram Bot Settings ---
    bot_token: str = Field(..., description="Telegram Bot API Token")
    # Читаем переменную ADMIN_IDS из .env как простую строку
    admin_ids_str: str = Field(
        default="",
        alias="ADMIN_IDS",
        description="List of admin Telegram IDs, comma-separated",
    )

    @computed_field
    @property
    def admin_ids(self) -> list[int]:
        """Преобразует строку admin_ids_str в список целых чисел."""
        if not self.admin_ids_str:
            return []
        return [int(item.strip()) for item in self.admin_ids_str.split(",")]

    # --- Storage Settings ---
    storage_backend: Literal["memory", "sheets"] = Field(
        default="memory", description="Storage backend for requests and volunteers"
    )
    google_sheet_id: str | None = Field(
        default=None, description="Google Sheet ID for requests and volunteers"
    )

    # --- Business Logic Settings ---
    service_categories_str: str = Field(
        default="Cleaning,Plumbing,Electrical,Tutoring,Delivery,Other",
        alias="SERVICE_CATEGORIES",
        description="Comma-separated list of service categories",
    )
    default_currency: str = Field(default="INR")
    candidate_notify_limit: int | None = Field(
        default=10, description="How many candidates are notified about a new request"
    )

    log_level: str = Field(default="INFO", description="Root logging level")

    display_timezone: str = Field(
        default="Asia/Kolkata",
        description="Timezone for displaying dates and times to users",
    )

    # --- OTP Settings ---
    otp_ttl_minutes: int = Field(default=15, gt=0)
    otp_max_attempts: int = Field(default=3, gt=0)
    otp_resend_cooldown_seconds: int = Field(default=120, ge=0)

    @computed_field
    @property
    def service_categories(self) -> list[str]:
        """Преобразует строку service_categories_str в список строк."""
        if not self.service_categories_str:
            return []
        return [item.strip() for item in self.service_categories_str.split(",")]


# Создаем единственный экземпляр настроек, который будет использоваться во всем приложении
settings = Settings()
