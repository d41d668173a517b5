"""
Обработчики общих команд, доступных всем пользователям.
"""

import json
import logging

from telegram import Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from helphub.core.decorators import resolve_roles
from helphub.models.results import Failure, FailureReason

logger = logging.getLogger(__name__)

FAILURE_MESSAGES = {
    FailureReason.NOT_FOUND: "⚠️ Заявка или волонтер не найдены.",
    FailureReason.INVALID_STATE: "⚠️ Действие недоступно в текущем статусе заявки.",
    FailureReason.VOLUNTEER_UNAVAILABLE: "⚠️ Волонтер сейчас недоступен для новых заявок.",
    FailureReason.NO_OTP_GENERATED: "⚠️ Код подтверждения для этой заявки еще не выдавался.",
    FailureReason.OTP_EXPIRED: "⌛️ Срок действия кода истек. Попросите заказчика запросить новый код.",
    FailureReason.OTP_ATTEMPTS_EXCEEDED: "⛔️ Превышено число попыток ввода кода. Нужен новый код.",
    FailureReason.OTP_MISMATCH: "❌ Неверный код.",
    FailureReason.OTP_THROTTLED: "⏳ Новый код можно запросить позже.",
    FailureReason.VALIDATION_ERROR: "⚠️ Неверные данные.",
}

STATUS_LABELS = {
    "pending": "🆕 Ожидает исполнителя",
    "assigned": "🛠 Назначена",
    "in_progress": "🛠 В работе",
    "completed": "✅ Выполнена",
    "cancelled": "❌ Отменена",
}


def describe_failure(failure: Failure, max_attempts: int = 3) -> str:
    """Формирует текст ответа пользователю по результату операции."""
    text = FAILURE_MESSAGES[failure.reason]
    if failure.reason == FailureReason.OTP_MISMATCH and failure.attempts is not None:
        left = max(max_attempts - failure.attempts, 0)
        text += f" Использовано попыток: {failure.attempts} из {max_attempts}, осталось: {left}."
    if failure.wait_seconds:
        text += f" Подождите {failure.wait_seconds} сек."
    return text


async def start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Обработчик команды /start.

    Приветствует пользователя и показывает команды, доступные его ролям.
    """
    user = update.effective_user
    roles = await resolve_roles(user.id, context)
    name = user.first_name or user.username

    lines = [
        f"Привет, {name}! 👋",
        "",
        "Заказчику:",
        "/new - создать заявку на услугу",
        "/status &lt;id&gt; - статус заявки и кода подтверждения",
        "/cancelrequest &lt;id&gt; - отменить заявку",
        "/rate &lt;id&gt; &lt;1-5&gt; [отзыв] - оценить выполненную работу",
    ]
    if "volunteer" in roles:
        lines += [
            "",
            "Волонтеру:",
            "/feed - подходящие заявки",
            "/myjobs [статус] - мои заявки",
            "/done &lt;id&gt; &lt;код&gt; - подтвердить выполнение",
            "/stats - моя статистика",
            "/availability &lt;available|unavailable&gt; - доступность",
        ]
    if "admin" in roles:
        lines += [
            "",
            "Администратору:",
            "/listvolunteers, /addvolunteer, /delvolunteer",
        ]

    logger.info(f"User {user.id} started the bot with roles {sorted(roles)}.")
    await update.message.reply_html("\n".join(lines))


async def show_my_id(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Отправляет пользователю его собственный Telegram ID."""
    user = update.effective_user
    if not user:
        return

    logger.info(f"User {user.id} requested their ID.")
    await update.message.reply_text(
        f"Ваш Telegram ID: <code>{user.id}</code>\n\n"
        f"Чтобы стать волонтером, отправьте этот ID администратору.",
        parse_mode="HTML",
    )


async def error_handler(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Логирует ошибки и отправляет уведомление администраторам.
    """

    logger.error("Exception while handling an update:", exc_info=context.error)

    # Собираем информацию для отладочного сообщения
    if isinstance(update, Update):
        update_str = json.dumps(update.to_dict(), indent=2, ensure_ascii=False)
    else:
        update_str = str(update)

    message = (
        f"‼️ <b>Произошла ошибка в боте</b> ‼️\n\n"
        f"<pre>update = {update_str}</pre>\n\n"
        f"<pre>context.user_data = {str(context.user_data)}</pre>\n\n"
        f"<pre>{context.error}</pre>"
    )

    for admin_id in context.bot_data["settings"].admin_ids:
        try:
            # Разделяем сообщение, если оно слишком длинное
            for x in range(0, len(message), 4096):
                await context.bot.send_message(
                    chat_id=admin_id,
                    text=message[x : x + 4096],
                    parse_mode=ParseMode.HTML,
                )
        except Exception as e:
            logger.error(f"Failed to send error message to admin {admin_id}: {e}")

    if isinstance(update, Update) and update.effective_message:
        await update.effective_message.reply_text(
            "❌ Произошла ошибка. Пожалуйста, попробуйте позже."
        )
