"""
Сервис для отправки уведомлений волонтерам и заказчикам.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime

import pytz
from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode

from helphub.models.request import RequestSummary
from helphub.models.results import DomainEvent
from helphub.models.volunteer import VolunteerSummary

logger = logging.getLogger(__name__)

URGENCY_LABELS = {
    "low": "🟢 низкая",
    "medium": "🟡 средняя",
    "high": "🟠 высокая",
    "urgent": "🔴 срочно",
}


def format_datetime(dt: datetime | None, timezone_name: str = "UTC") -> str:
    """
    Форматирует datetime объект в строку с учетом часового пояса.
    """
    if not dt:
        return "не указано"

    # Убеждаемся, что время в UTC, если оно "наивное"
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.utc)

    local_dt = dt.astimezone(pytz.timezone(timezone_name))
    return local_dt.strftime("%d.%m.%Y в %H:%M")


class NotificationDispatcher(ABC):
    """
    Доставка уведомлений. Ядро только формирует данные и вызывает эти методы.
    """

    @abstractmethod
    async def notify_candidates(
        self, candidates: list[VolunteerSummary], summary: RequestSummary
    ) -> None: ...

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None: ...


class TelegramNotificationDispatcher(NotificationDispatcher):
    def __init__(self, bot: Bot, display_timezone: str = "UTC"):
        self.bot = bot
        self.display_timezone = display_timezone

    async def notify_candidates(
        self, candidates: list[VolunteerSummary], summary: RequestSummary
    ) -> None:
        """
        Рассылает новую заявку подходящим волонтерам с кнопкой "Взять".
        """
        text = (
            f"🚨 <b>Новая заявка: #{summary.request_id[:8]}</b> 🚨\n\n"
            f"🔧 <b>Категория:</b> {summary.category}\n"
            f"📝 <b>Описание:</b> {summary.description}\n"
            f"⏱ <b>Срочность:</b> {URGENCY_LABELS[summary.urgency]}\n"
            f"📍 <b>Адрес:</b> {summary.location.address}, {summary.location.city}, "
            f"{summary.location.state}\n"
            f"🕓 <b>Когда:</b> "
            f"{format_datetime(summary.scheduled_date, self.display_timezone)}\n"
            f"💰 <b>Сумма:</b> {summary.amount:g} {summary.currency}"
        )
        reply_markup = InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton(
                        "✅ Взять заявку",
                        callback_data=f"accept_req:{summary.request_id}",
                    )
                ]
            ]
        )

        for candidate in candidates:
            if candidate.telegram_id is None:
                continue
            try:
                await self.bot.send_message(
                    chat_id=candidate.telegram_id,
                    text=text,
                    parse_mode=ParseMode.HTML,
                    reply_markup=reply_markup,
                )
                logger.info(
                    f"Sent new request notification for {summary.request_id} "
                    f"to volunteer {candidate.volunteer_id}."
                )
            except Exception as e:
                logger.error(
                    f"Failed to notify volunteer {candidate.volunteer_id} about "
                    f"{summary.request_id}: {e}",
                    exc_info=True,
                )

    async def publish(self, event: DomainEvent) -> None:
        if event.name == "request_assigned":
            await self._send_request_assigned(event)
        elif event.name == "service_completed":
            await self._send_service_completed(event)
        elif event.name == "request_cancelled":
            await self._send_request_cancelled(event)
        else:
            logger.debug(f"No Telegram delivery for event '{event.name}'.")

    async def _send_request_assigned(self, event: DomainEvent) -> None:
        chat_id = event.payload.get("customer_telegram_id")
        if chat_id is None:
            return
        volunteer = event.payload["volunteer"]
        text = (
            f"👷 <b>Заявка #{event.request_id[:8]} принята</b>\n\n"
            f"Исполнитель: {volunteer['first_name']} {volunteer['last_name']}\n"
            f"Профессия: {volunteer['profession']}\n"
            f"Телефон: {volunteer['phone'] or 'не указан'}\n\n"
            f"🔐 Код подтверждения: <code>{event.payload['otp']}</code>\n"
            "Сообщите код исполнителю только после выполнения работы."
        )
        reply_markup = InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton(
                        "🔁 Новый код", callback_data=f"resend_otp:{event.request_id}"
                    )
                ]
            ]
        )
        await self._send(chat_id, text, event, reply_markup)

    async def _send_service_completed(self, event: DomainEvent) -> None:
        chat_id = event.payload.get("customer_telegram_id")
        if chat_id is None:
            return
        text = (
            f"✅ <b>Заявка #{event.request_id[:8]} выполнена</b> "
            f"({format_datetime(event.occurred_at, self.display_timezone)}).\n\n"
            f"Оцените работу: <code>/rate {event.request_id} 5</code>"
        )
        await self._send(chat_id, text, event)

    async def _send_request_cancelled(self, event: DomainEvent) -> None:
        chat_id = event.payload.get("volunteer_telegram_id")
        if chat_id is None:
            return
        text = f"❌ Заявка #{event.request_id[:8]} отменена заказчиком."
        await self._send(chat_id, text, event)

    async def _send(
        self,
        chat_id: int,
        text: str,
        event: DomainEvent,
        reply_markup: InlineKeyboardMarkup | None = None,
    ) -> None:
        try:
            await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=ParseMode.HTML,
                reply_markup=reply_markup,
            )
            logger.info(f"Delivered '{event.name}' for {event.request_id} to {chat_id}.")
        except Exception as e:
            logger.error(
                f"Failed to deliver '{event.name}' for {event.request_id} "
                f"to chat {chat_id}: {e}",
                exc_info=True,
            )
