"""
Обработчики для создания заявок и действий заказчика.
"""

import logging
from datetime import datetime

import pytz
from pydantic import ValidationError
from telegram import (
    InlineKeyboardButton,
    InlineKeyboardMarkup,
    ReplyKeyboardMarkup,
    ReplyKeyboardRemove,
    Update,
)
from telegram.ext import (
    ContextTypes,
    ConversationHandler,
)

from helphub.core.config import settings
from helphub.core.decorators import require_role
from helphub.handlers.common import STATUS_LABELS, describe_failure
from helphub.models.request import CustomerInfo, Location, Payment, ServiceDetails
from helphub.models.results import Failure
from helphub.services.lifecycle import RequestLifecycle
from helphub.services.notification_service import URGENCY_LABELS, format_datetime

logger = logging.getLogger(__name__)

# --- Константы для сообщений ---
SCHEDULE_FORMAT = "%d.%m.%Y %H:%M"

# Определяем состояния диалога
(CATEGORY, DESCRIPTION, URGENCY, LOCATION, SCHEDULE, CONTACT) = range(6)

URGENCY_BY_LABEL = {label: key for key, label in URGENCY_LABELS.items()}


def _lifecycle(context: ContextTypes.DEFAULT_TYPE) -> RequestLifecycle:
    return context.application.bot_data["lifecycle"]


def parse_location(text: str) -> Location | None:
    """
    Разбирает строку "Город, Штат[, Адрес[, Индекс]]".
    """
    parts = [part.strip() for part in text.split(",")]
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return None
    return Location(
        city=parts[0],
        state=parts[1],
        address=parts[2] if len(parts) > 2 else "",
        zip_code=parts[3] if len(parts) > 3 else "",
    )


def parse_schedule(text: str, timezone_name: str, now: datetime) -> datetime | None:
    """Разбирает дату "ДД.ММ.ГГГГ ЧЧ:ММ" в часовом поясе отображения; только будущее время."""
    try:
        naive = datetime.strptime(text.strip(), SCHEDULE_FORMAT)
    except ValueError:
        return None
    scheduled = pytz.timezone(timezone_name).localize(naive)
    if scheduled <= now:
        return None
    return scheduled


async def new_request_start(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Начинает диалог создания новой заявки."""
    message = update.effective_message
    context.user_data["request_draft"] = {}

    keyboard = [[category] for category in settings.service_categories]
    reply_markup = ReplyKeyboardMarkup(
        keyboard, one_time_keyboard=True, resize_keyboard=True
    )
    await message.reply_text(
        "Начинаем создание новой заявки.\n\n"
        "<b>Шаг 1/6:</b> Выберите категорию услуги с помощью кнопок ниже.",
        reply_markup=reply_markup,
        parse_mode="HTML",
    )
    return CATEGORY


async def get_category(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает категорию и запрашивает описание."""
    message = update.effective_message
    category = message.text.strip()

    # Проверяем, что пользователь выбрал один из предложенных вариантов
    if category not in settings.service_categories:
        await message.reply_text(
            "Пожалуйста, выберите категорию, используя предложенные кнопки."
        )
        return CATEGORY  # Остаемся на том же шаге

    context.user_data["request_draft"]["category"] = category
    await message.reply_text(
        f"Категория: <b>{category}</b>\n\n"
        "<b>Шаг 2/6:</b> Опишите, что нужно сделать.",
        reply_markup=ReplyKeyboardRemove(),
        parse_mode="HTML",
    )
    return DESCRIPTION


async def get_description(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает описание и запрашивает срочность."""
    message = update.effective_message
    context.user_data["request_draft"]["description"] = message.text.strip()

    keyboard = [[label] for label in URGENCY_LABELS.values()]
    await message.reply_text(
        "<b>Шаг 3/6:</b> Насколько это срочно?",
        reply_markup=ReplyKeyboardMarkup(
            keyboard, one_time_keyboard=True, resize_keyboard=True
        ),
        parse_mode="HTML",
    )
    return URGENCY


async def get_urgency(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает срочность и запрашивает адрес."""
    message = update.effective_message
    urgency = URGENCY_BY_LABEL.get(message.text.strip())
    if urgency is None:
        await message.reply_text(
            "Пожалуйста, выберите срочность, используя предложенные кнопки."
        )
        return URGENCY

    context.user_data["request_draft"]["urgency"] = urgency
    await message.reply_text(
        "<b>Шаг 4/6:</b> Укажите адрес в формате:\n"
        "<code>Город, Штат, Улица и дом, Индекс</code>",
        reply_markup=ReplyKeyboardRemove(),
        parse_mode="HTML",
    )
    return LOCATION


async def get_location(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает адрес и запрашивает дату."""
    message = update.effective_message
    location = parse_location(message.text)
    if location is None:
        await message.reply_text(
            "Не удалось разобрать адрес. Укажите хотя бы город и штат через запятую."
        )
        return LOCATION

    context.user_data["request_draft"]["location"] = location
    await message.reply_text(
        f"Адрес: <b>{location.city}, {location.state}</b>\n\n"
        "<b>Шаг 5/6:</b> Когда нужна помощь? Формат: <code>ДД.ММ.ГГГГ ЧЧ:ММ</code>",
        parse_mode="HTML",
    )
    return SCHEDULE


async def get_schedule(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает дату и запрашивает телефон."""
    message = update.effective_message
    now = datetime.now(pytz.utc)
    scheduled = parse_schedule(message.text, settings.display_timezone, now)
    if scheduled is None:
        await message.reply_text(
            "Укажите дату в будущем в формате ДД.ММ.ГГГГ ЧЧ:ММ, например 25.12.2026 10:00."
        )
        return SCHEDULE

    context.user_data["request_draft"]["scheduled_date"] = scheduled
    await message.reply_text(
        "<b>Шаг 6/6:</b> Оставьте номер телефона для связи с исполнителем.",
        parse_mode="HTML",
    )
    return CONTACT


async def get_contact(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Получает телефон, сохраняет заявку и завершает диалог."""
    message = update.effective_message
    user = update.effective_user
    draft = context.user_data.pop("request_draft", {})

    await message.reply_text("Сохраняю заявку...")

    try:
        customer = CustomerInfo(
            first_name=user.first_name or user.username or "Customer",
            last_name=user.last_name or "",
            phone=message.text.strip(),
            telegram_id=user.id,
        )
        service = ServiceDetails(
            category=draft["category"],
            description=draft["description"],
            urgency=draft["urgency"],
        )
    except (KeyError, ValidationError) as e:
        logger.warning(f"Invalid request draft from user {user.id}: {e}")
        await message.reply_text(
            "⚠️ Не удалось собрать заявку. Начните заново командой /new."
        )
        return ConversationHandler.END

    try:
        created = await _lifecycle(context).create_request(
            customer=customer,
            service=service,
            location=draft["location"],
            payment=Payment(currency=settings.default_currency),
            scheduled_date=draft["scheduled_date"],
        )
    except Exception as e:
        logger.error(f"Request creation failed for user {user.id}: {e}", exc_info=True)
        await message.reply_text(
            "❌ Произошла ошибка при сохранении вашей заявки. Пожалуйста, попробуйте позже."
        )
        return ConversationHandler.END

    request = created.request
    await message.reply_text(
        f"✅ Заявка <code>{request.request_id}</code> создана.\n"
        f"Подходящих волонтеров рядом: <b>{len(created.candidates)}</b>.\n\n"
        f"Статус: <code>/status {request.request_id}</code>\n"
        f"Отмена: <code>/cancelrequest {request.request_id}</code>",
        parse_mode="HTML",
    )
    logger.info(f"New request {request.request_id} created by user {user.id}.")
    return ConversationHandler.END


async def cancel(update: Update, context: ContextTypes.DEFAULT_TYPE) -> int:
    """Отменяет текущий диалог."""
    context.user_data.pop("request_draft", None)

    await update.effective_message.reply_text(
        "Создание заявки отменено.", reply_markup=ReplyKeyboardRemove()
    )
    return ConversationHandler.END


@require_role("volunteer")
async def request_callback_handler(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Обрабатывает нажатие "Взять заявку" под уведомлением о новой заявке.
    """
    query = update.callback_query
    _, request_id = query.data.split(":", 1)
    volunteer = context.user_data["volunteer"]

    result = await _lifecycle(context).assign_volunteer(
        request_id, volunteer.volunteer_id
    )
    if isinstance(result, Failure):
        await query.answer(describe_failure(result), show_alert=True)
        return

    await query.answer()
    request = result.request
    text = (
        f"🛠 <b>Заявка #{request.short_id} назначена вам</b>\n\n"
        f"🔧 {request.service.category}: {request.service.description}\n"
        f"👤 {request.customer.full_name}, {request.customer.phone}\n"
        f"📍 {request.location.address}, {request.location.city}, "
        f"{request.location.state} {request.location.zip_code}\n"
        f"🕓 {format_datetime(request.scheduled_date, settings.display_timezone)}\n\n"
        f"После выполнения получите код у заказчика и отправьте:\n"
        f"<code>/done {request.request_id} КОД</code>"
    )
    await query.edit_message_text(text=text, parse_mode="HTML", reply_markup=None)


async def resend_otp_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """Заказчик запрашивает новый код подтверждения."""
    query = update.callback_query
    _, request_id = query.data.split(":", 1)
    lifecycle = _lifecycle(context)

    request = await lifecycle.get_request(request_id)
    if isinstance(request, Failure) or request.customer.telegram_id != query.from_user.id:
        await query.answer("⛔️ Это не ваша заявка.", show_alert=True)
        return

    result = await lifecycle.resend_otp(request_id)
    if isinstance(result, Failure):
        await query.answer(describe_failure(result), show_alert=True)
        return

    await query.answer()
    await query.message.reply_text(
        f"🔐 Новый код для заявки #{request.short_id}: <code>{result.code}</code>\n"
        f"Действует до {format_datetime(result.valid_until, settings.display_timezone)}. "
        "Предыдущий код больше не действует.",
        parse_mode="HTML",
    )


async def status_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Показывает статус заявки и кода подтверждения.
    Использование: /status <id заявки>
    """
    message = update.effective_message
    if len(context.args) != 1:
        await message.reply_text("Использование: /status <id заявки>")
        return

    lifecycle = _lifecycle(context)
    request = await lifecycle.get_request(context.args[0])
    if isinstance(request, Failure) or request.customer.telegram_id != update.effective_user.id:
        await message.reply_text("⚠️ Заявка не найдена.")
        return

    otp_status = await lifecycle.get_otp_status(request.request_id)
    lines = [
        f"📄 Заявка #{request.short_id}: {STATUS_LABELS[request.status]}",
        f"🔧 {request.service.category}",
    ]
    if otp_status.generated:
        if otp_status.verified:
            lines.append("🔐 Код подтвержден.")
        elif otp_status.expired:
            lines.append("🔐 Код истек, запросите новый.")
        else:
            lines.append(
                f"🔐 Код действует до "
                f"{format_datetime(otp_status.valid_until, settings.display_timezone)}, "
                f"попыток использовано: {otp_status.attempts}."
            )

    reply_markup = None
    if request.status == "assigned" and not otp_status.verified:
        reply_markup = InlineKeyboardMarkup(
            [[InlineKeyboardButton("🔁 Новый код", callback_data=f"resend_otp:{request.request_id}")]]
        )
    await message.reply_text("\n".join(lines), reply_markup=reply_markup)


async def cancel_request_command(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Отменяет заявку заказчика.
    Использование: /cancelrequest <id заявки>
    """
    message = update.effective_message
    if len(context.args) != 1:
        await message.reply_text("Использование: /cancelrequest <id заявки>")
        return

    lifecycle = _lifecycle(context)
    request = await lifecycle.get_request(context.args[0])
    if isinstance(request, Failure) or request.customer.telegram_id != update.effective_user.id:
        await message.reply_text("⚠️ Заявка не найдена.")
        return

    result = await lifecycle.cancel_request(request.request_id)
    if isinstance(result, Failure):
        await message.reply_text(describe_failure(result))
        return
    await message.reply_text(f"❌ Заявка #{request.short_id} отменена.")


async def rate_command(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Оценка выполненной заявки.
    Использование: /rate <id заявки> <1-5> [отзыв]
    """
    message = update.effective_message
    if len(context.args) < 2:
        await message.reply_text("Использование: /rate <id заявки> <1-5> [отзыв]")
        return

    try:
        rating = int(context.args[1])
    except ValueError:
        await message.reply_text("⚠️ Оценка должна быть числом от 1 до 5.")
        return
    feedback = " ".join(context.args[2:]) or None

    lifecycle = _lifecycle(context)
    request = await lifecycle.get_request(context.args[0])
    if isinstance(request, Failure) or request.customer.telegram_id != update.effective_user.id:
        await message.reply_text("⚠️ Заявка не найдена.")
        return

    result = await lifecycle.rate_service(request.request_id, rating, feedback)
    if isinstance(result, Failure):
        await message.reply_text(describe_failure(result) + f" {result.message}.")
        return
    await message.reply_text("⭐️ Спасибо за оценку!")
