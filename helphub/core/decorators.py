"""
Декораторы для проверки авторизации и прав доступа.
"""

import logging
from functools import wraps
from typing import Any, Callable, Coroutine

from telegram import Update
from telegram.ext import ContextTypes

from helphub.services.volunteer_service import VolunteerService

logger = logging.getLogger(__name__)


async def resolve_roles(
    telegram_id: int, context: ContextTypes.DEFAULT_TYPE
) -> set[str]:
    """
    Определяет роли пользователя: "admin" по списку из настроек,
    "volunteer" по реестру волонтеров. Найденный волонтер сохраняется в user_data.
    """
    roles: set[str] = set()
    settings = context.application.bot_data["settings"]
    if telegram_id in settings.admin_ids:
        roles.add("admin")

    volunteer_service: VolunteerService = context.application.bot_data[
        "volunteer_service"
    ]
    volunteer = await volunteer_service.get_by_telegram_id(telegram_id)
    if volunteer and volunteer.is_active:
        roles.add("volunteer")
        context.user_data["volunteer"] = volunteer
    return roles


def require_role(*roles: str) -> Callable:
    """
    Декоратор для проверки, что пользователь имеет одну из указанных ролей.

    Args:
        *roles: Список строк с названиями ролей ("admin", "volunteer").

    Returns:
        Декоратор, который можно применить к обработчику python-telegram-bot.
    """

    def decorator(
        func: Callable[[Update, ContextTypes.DEFAULT_TYPE], Coroutine[Any, Any, Any]],
    ):
        @wraps(func)
        async def wrapper(update: Update, context: ContextTypes.DEFAULT_TYPE) -> Any:
            user = update.effective_user
            if not user:
                return None  # Не должно происходить в обычных чатах

            user_roles = await resolve_roles(user.id, context)
            if user_roles & set(roles):
                return await func(update, context)

            logger.warning(
                f"Unauthorized access attempt by user {user.id} ({user.username}). "
                f"User roles: {sorted(user_roles) or 'none'}. Required roles: {roles}"
            )
            # Отвечаем на callback_query, если он есть, иначе в чат
            if update.callback_query:
                await update.callback_query.answer(
                    "⛔️ У вас нет доступа для этого действия.", show_alert=True
                )
            elif update.effective_message:
                await update.effective_message.reply_text(
                    "⛔️ У вас нет доступа для выполнения этой команды."
                )
            return None

        return wrapper

    return decorator
