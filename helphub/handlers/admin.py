"""
Обработчики административных команд: реестр волонтеров.
"""

import logging

from pydantic import ValidationError
from telegram import InlineKeyboardButton, InlineKeyboardMarkup, Update
from telegram.constants import ParseMode
from telegram.ext import ContextTypes

from helphub.core.decorators import require_role
from helphub.models.request import Location
from helphub.models.volunteer import Volunteer
from helphub.services.volunteer_service import VolunteerService

logger = logging.getLogger(__name__)

ADD_VOLUNTEER_USAGE = (
    "⚠️ <b>Неверный формат.</b>\n\n"
    "Чтобы добавить волонтера, отправьте команду в формате:\n"
    "<code>/addvolunteer ID | Имя Фамилия | Телефон | Профессия | Город | Штат | навык1, навык2</code>\n\n"
    "Пример:\n"
    "<code>/addvolunteer 123456789 | Anna Smith | +15550100 | Cleaning | Austin | TX | laundry, ironing</code>\n\n"
    "(Навыки можно не указывать)"
)


def parse_volunteer_args(text: str) -> Volunteer | None:
    """
    Разбирает аргументы /addvolunteer, разделенные символом "|".
    """
    parts = [part.strip() for part in text.split("|")]
    if len(parts) not in (6, 7):
        return None

    telegram_id_str, full_name, phone, profession, city, state = parts[:6]
    skills = [s.strip() for s in parts[6].split(",") if s.strip()] if len(parts) == 7 else []
    first_name, _, last_name = full_name.partition(" ")
    try:
        return Volunteer(
            telegram_id=int(telegram_id_str),
            first_name=first_name,
            last_name=last_name,
            phone=phone or None,
            profession=profession,
            skills=skills,
            location=Location(city=city, state=state),
        )
    except (ValueError, ValidationError):
        return None


@require_role("admin")
async def list_volunteers(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Выводит список волонтеров в виде интерактивных карточек с кнопками.
    Доступно только для администраторов.
    """
    message = update.effective_message
    volunteer_service: VolunteerService = context.application.bot_data[
        "volunteer_service"
    ]
    all_volunteers = await volunteer_service.list_all()

    if not all_volunteers:
        await message.reply_text("👥 Список волонтеров пуст.")
        return

    await message.reply_text(text="--- 👥 Список волонтеров ---")
    for volunteer in all_volunteers:
        # Для каждого волонтера создаем свою клавиатуру
        keyboard = [
            [
                InlineKeyboardButton(
                    "🗑️ Удалить",
                    callback_data=f"delete_volunteer:{volunteer.volunteer_id}",
                )
            ]
        ]
        volunteer_info = (
            f"👤 <b>{volunteer.full_name}</b>\n"
            f"   Telegram ID: <code>{volunteer.telegram_id}</code>\n"
            f"   Профессия: <i>{volunteer.profession}</i>\n"
            f"   Город: {volunteer.location.city}, {volunteer.location.state}\n"
            f"   Статус: {volunteer.availability}, ⭐️ {volunteer.rating:.1f}"
        )
        await message.reply_text(
            text=volunteer_info,
            parse_mode=ParseMode.HTML,
            reply_markup=InlineKeyboardMarkup(keyboard),
        )


@require_role("admin")
async def add_volunteer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Регистрирует нового волонтера.
    Использование: /addvolunteer <telegram_id> | <имя> | <телефон> | <профессия> | <город> | <штат> [| навыки]
    """
    message = update.effective_message

    new_volunteer = parse_volunteer_args(" ".join(context.args))
    if new_volunteer is None:
        await message.reply_text(ADD_VOLUNTEER_USAGE, parse_mode=ParseMode.HTML)
        return

    volunteer_service: VolunteerService = context.application.bot_data[
        "volunteer_service"
    ]
    if await volunteer_service.get_by_telegram_id(new_volunteer.telegram_id):
        await message.reply_text(
            f"Волонтер с Telegram ID <code>{new_volunteer.telegram_id}</code> уже существует.",
            parse_mode=ParseMode.HTML,
        )
        return

    try:
        await volunteer_service.register(new_volunteer)
        await message.reply_text(
            f"✅ Волонтер <b>{new_volunteer.full_name}</b> "
            f"(<code>{new_volunteer.telegram_id}</code>) успешно добавлен.",
            parse_mode=ParseMode.HTML,
        )
        logger.info(
            f"Admin {update.effective_user.id} added volunteer "
            f"{new_volunteer.volunteer_id} ({new_volunteer.telegram_id})."
        )
    except Exception as e:
        await message.reply_text("❌ Произошла ошибка при добавлении волонтера.")
        logger.error(f"Failed to add volunteer: {e}", exc_info=True)


@require_role("admin")
async def delete_volunteer(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """
    Удаляет волонтера по его Telegram ID.
    Использование: /delvolunteer <telegram_id>
    """
    message = update.effective_message

    if not context.args:
        await message.reply_text(
            "⚠️ <b>Неверный формат.</b>\n\n"
            "Чтобы удалить волонтера, отправьте команду в формате:\n"
            "<code>/delvolunteer ID</code>",
            parse_mode=ParseMode.HTML,
        )
        return

    try:
        telegram_id = int(context.args[0])
    except ValueError:
        await message.reply_text("⚠️ Ошибка: Telegram ID должен быть числом.")
        return

    volunteer_service: VolunteerService = context.application.bot_data[
        "volunteer_service"
    ]
    volunteer = await volunteer_service.get_by_telegram_id(telegram_id)

    if volunteer and await volunteer_service.remove(volunteer.volunteer_id):
        await message.reply_text(
            f"✅ Волонтер <code>{telegram_id}</code> успешно удален.",
            parse_mode=ParseMode.HTML,
        )
        logger.info(f"Admin {update.effective_user.id} deleted volunteer {telegram_id}.")
    else:
        await message.reply_text(
            f"⚠️ Волонтер <code>{telegram_id}</code> не найден в системе.",
            parse_mode=ParseMode.HTML,
        )


@require_role("admin")
async def admin_volunteer_callback(
    update: Update, context: ContextTypes.DEFAULT_TYPE
) -> None:
    """
    Обрабатывает нажатия на inline-кнопки в карточках волонтеров.
    """
    query = update.callback_query
    await query.answer()  # Обязательно, чтобы убрать "часики" на кнопке

    # Парсим callback_data. Формат: "действие:id_волонтера"
    action, volunteer_id = query.data.split(":", 1)
    volunteer_service: VolunteerService = context.application.bot_data[
        "volunteer_service"
    ]

    if action == "delete_volunteer":
        logger.info(
            f"Admin {query.from_user.id} initiated deletion of volunteer {volunteer_id}."
        )
        if await volunteer_service.remove(volunteer_id):
            await query.edit_message_text(
                text=f"✅ Волонтер <code>{volunteer_id}</code> удален.",
                parse_mode=ParseMode.HTML,
            )
        else:
            await query.edit_message_text(
                text=f"⚠️ Не удалось удалить. Волонтер <code>{volunteer_id}</code> не найден.",
                parse_mode=ParseMode.HTML,
            )
