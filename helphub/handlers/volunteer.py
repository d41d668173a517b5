"""
Обработчики панели волонтера.
"""

import logging

from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from helphub.core.config import settings
from helphub.core.decorators import require_role
from helphub.handlers.common import STATUS_LABELS, describe_failure
from helphub.models.results import Failure
from helphub.services.lifecycle import RequestLifecycle
from helphub.services.notification_service import URGENCY_LABELS, format_datetime

logger = logging.getLogger(__name__)

JOB_STATUSES = ("assigned", "in_progress", "completed", "cancelled")
SETTABLE_AVAILABILITY = ("available", "unavailable")


def _lifecycle(context: ContextTypes.DEFAULT_TYPE) -> RequestLifecycle:
    return context.application.bot_data["lifecycle"]


@require_role("volunteer")
async def done_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Подтверждает выполнение заявки кодом, полученным от заказчика.
    Использование: /done <id заявки> <код>
    """
    message = update.effective_message
    if len(context.args) != 2:
        await message.reply_text("Использование: /done <id заявки> <код>")
        return

    request_id, code = context.args
    volunteer = context.user_data["volunteer"]
    lifecycle = _lifecycle(context)

    # Завершить может только тот, кому назначена заявка
    request = await lifecycle.get_request(request_id)
    if isinstance(request, Failure) or request.assigned_volunteer_id != volunteer.volunteer_id:
        logger.warning(
            f"Volunteer {volunteer.volunteer_id} tried to complete request {request_id} "
            "that is not assigned to them."
        )
        await message.reply_text("⚠️ Эта заявка не назначена вам.")
        return

    result = await lifecycle.verify_otp(request_id, code)
    if isinstance(result, Failure):
        await message.reply_text(
            describe_failure(result, lifecycle.otp.policy.max_attempts)
        )
        return

    await message.reply_text(
        f"✅ Заявка #{request.short_id} выполнена "
        f"({format_datetime(result.completed_at, settings.display_timezone)}). Спасибо!"
    )


@require_role("volunteer")
async def feed_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Показывает ожидающие заявки, подходящие волонтеру."""
    message = update.effective_message
    volunteer = context.user_data["volunteer"]

    requests = await _lifecycle(context).list_open_requests(volunteer.volunteer_id)
    if isinstance(requests, Failure) or not requests:
        await message.reply_text("📭 Подходящих заявок пока нет.")
        return

    await message.reply_text(text=f"--- 📋 Подходящие заявки: {len(requests)} ---")
    for request in requests:
        reply_markup = InlineKeyboardMarkup(
            [
                [
                    InlineKeyboardButton(
                        "✅ Взять заявку",
                        callback_data=f"accept_req:{request.request_id}",
                    )
                ]
            ]
        )
        card = (
            f"🔧 <b>{request.service.category}</b> "
            f"({URGENCY_LABELS[request.service.urgency]})\n"
            f"   {request.service.description}\n"
            f"   📍 {request.location.city}, {request.location.state}\n"
            f"   🕓 {format_datetime(request.scheduled_date, settings.display_timezone)}"
        )
        await message.reply_text(
            text=card, parse_mode=ParseMode.HTML, reply_markup=reply_markup
        )


@require_role("volunteer")
async def my_jobs_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Список заявок волонтера.
    Использование: /myjobs [assigned|completed|cancelled]
    """
    message = update.effective_message
    volunteer = context.user_data["volunteer"]

    status = context.args[0].lower() if context.args else None
    if status is not None and status not in JOB_STATUSES:
        await message.reply_text(f"Допустимые статусы: {', '.join(JOB_STATUSES)}.")
        return

    jobs = await _lifecycle(context).list_jobs(volunteer.volunteer_id, status=status)
    if not jobs:
        await message.reply_text("📭 Заявок нет.")
        return

    lines = ["--- 🧰 Мои заявки ---"]
    for job in jobs:
        line = (
            f"#{job.short_id} {job.service.category}: {STATUS_LABELS[job.status]}"
        )
        if job.customer_rating is not None:
            line += f" ⭐️{job.customer_rating}"
        lines.append(line)
    await message.reply_text("\n".join(lines))


@require_role("volunteer")
async def stats_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Статистика волонтера."""
    message = update.effective_message
    volunteer = context.user_data["volunteer"]

    stats = await _lifecycle(context).volunteer_stats(volunteer.volunteer_id)
    if isinstance(stats, Failure):
        await message.reply_text(describe_failure(stats))
        return

    await message.reply_text(
        f"📊 <b>Статистика</b>\n\n"
        f"Всего заявок: {stats.total_jobs}\n"
        f"Выполнено: {stats.completed_jobs}\n"
        f"В работе: {stats.assigned_jobs}\n"
        f"Рейтинг: {stats.rating:.1f} (средняя оценка {stats.average_rating})\n"
        f"Доля выполненных: {stats.completion_rate}%",
        parse_mode=ParseMode.HTML,
    )


@require_role("volunteer")
async def availability_command(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Меняет доступность волонтера для новых заявок.
    Использование: /availability <available|unavailable>
    """
    message = update.effective_message
    volunteer = context.user_data["volunteer"]

    if len(context.args) != 1 or context.args[0].lower() not in SETTABLE_AVAILABILITY:
        await message.reply_text(
            "Использование: /availability <available|unavailable>"
        )
        return

    availability = context.args[0].lower()
    result = await _lifecycle(context).set_availability(
        volunteer.volunteer_id, availability
    )
    if isinstance(result, Failure):
        await message.reply_text(
            "⚠️ Нельзя изменить доступность, пока у вас есть заявка в работе."
        )
        return

    await message.reply_text(f"✅ Доступность: <b>{availability}</b>.", parse_mode="HTML")
