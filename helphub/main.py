"""
Основная точка входа в приложение.

Этот файл отвечает за сборку сервисов и запуск Telegram-бота.
"""

import logging

from telegram.ext import (
    Application,
    CallbackQueryHandler,
    CommandHandler,
    ConversationHandler,
    MessageHandler,
    filters,
)

from helphub.core.config import Settings, settings
from helphub.core.logging_config import setup_logging
from helphub.handlers import admin, common, volunteer
from helphub.handlers import request as request_handler
from helphub.services.lifecycle import RequestLifecycle
from helphub.services.notification_service import TelegramNotificationDispatcher
from helphub.services.otp import OtpGenerator, OtpPolicy
from helphub.services.volunteer_service import VolunteerService
from helphub.storage.base import RequestRepository, VolunteerRepository
from helphub.storage.memory import InMemoryRequestRepository, InMemoryVolunteerRepository
from helphub.storage.sheets import (
    GoogleSheetsClient,
    SheetsRequestRepository,
    SheetsVolunteerRepository,
)

logger = logging.getLogger(__name__)


def build_repositories(
    config: Settings,
) -> tuple[RequestRepository, VolunteerRepository]:
    """Создает хранилища заявок и волонтеров по настройке storage_backend."""
    if config.storage_backend == "sheets":
        if not config.google_sheet_id:
            raise ValueError("GOOGLE_SHEET_ID is required for the 'sheets' backend")
        client = GoogleSheetsClient(sheet_id=config.google_sheet_id)
        return SheetsRequestRepository(client), SheetsVolunteerRepository(client)
    logger.warning("Using in-memory storage: data will be lost on restart.")
    return InMemoryRequestRepository(), InMemoryVolunteerRepository()


def build_conversation_handler() -> ConversationHandler:
    text_only = filters.TEXT & ~filters.COMMAND
    return ConversationHandler(
        entry_points=[CommandHandler("new", request_handler.new_request_start)],
        states={
            request_handler.CATEGORY: [
                MessageHandler(text_only, request_handler.get_category)
            ],
            request_handler.DESCRIPTION: [
                MessageHandler(text_only, request_handler.get_description)
            ],
            request_handler.URGENCY: [
                MessageHandler(text_only, request_handler.get_urgency)
            ],
            request_handler.LOCATION: [
                MessageHandler(text_only, request_handler.get_location)
            ],
            request_handler.SCHEDULE: [
                MessageHandler(text_only, request_handler.get_schedule)
            ],
            request_handler.CONTACT: [
                MessageHandler(text_only, request_handler.get_contact)
            ],
        },
        fallbacks=[CommandHandler("cancel", request_handler.cancel)],
    )


def main() -> None:
    """Основная функция для запуска бота."""
    setup_logging(settings.log_level)

    logger.info(f"Initializing services (storage: {settings.storage_backend})...")
    requests, volunteers = build_repositories(settings)

    logger.info("Starting bot...")
    application = Application.builder().token(settings.bot_token).build()

    dispatcher = TelegramNotificationDispatcher(
        application.bot, display_timezone=settings.display_timezone
    )
    lifecycle = RequestLifecycle(
        requests,
        volunteers,
        dispatcher,
        otp=OtpGenerator(OtpPolicy.from_settings(settings)),
        candidate_notify_limit=settings.candidate_notify_limit,
    )

    # Сохраняем экземпляры сервисов в bot_data для доступа из обработчиков
    application.bot_data["lifecycle"] = lifecycle
    application.bot_data["volunteer_service"] = VolunteerService(volunteers)
    application.bot_data["settings"] = settings

    application.add_handler(build_conversation_handler())

    application.add_handler(CommandHandler("start", common.start))
    application.add_handler(CommandHandler("myid", common.show_my_id))

    # --- Заказчик ---
    application.add_handler(CommandHandler("status", request_handler.status_command))
    application.add_handler(
        CommandHandler("cancelrequest", request_handler.cancel_request_command)
    )
    application.add_handler(CommandHandler("rate", request_handler.rate_command))
    application.add_handler(
        CallbackQueryHandler(
            request_handler.resend_otp_callback, pattern=r"^resend_otp:"
        )
    )

    # --- Волонтер ---
    application.add_handler(
        CallbackQueryHandler(
            request_handler.request_callback_handler, pattern=r"^accept_req:"
        )
    )
    application.add_handler(CommandHandler("done", volunteer.done_command))
    application.add_handler(CommandHandler("feed", volunteer.feed_command))
    application.add_handler(CommandHandler("myjobs", volunteer.my_jobs_command))
    application.add_handler(CommandHandler("stats", volunteer.stats_command))
    application.add_handler(
        CommandHandler("availability", volunteer.availability_command)
    )

    # --- Администратор ---
    application.add_handler(
        CallbackQueryHandler(
            admin.admin_volunteer_callback, pattern=r"^delete_volunteer:"
        )
    )
    application.add_handler(CommandHandler("listvolunteers", admin.list_volunteers))
    application.add_handler(CommandHandler("addvolunteer", admin.add_volunteer))
    application.add_handler(CommandHandler("delvolunteer", admin.delete_volunteer))

    # --- Регистрируем обработчик ошибок ---
    application.add_error_handler(common.error_handler)

    logger.info("Bot is running in polling mode.")
    application.run_polling()


if __name__ == "__main__":
    main()
