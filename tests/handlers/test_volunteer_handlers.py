"""
Тесты для обработчиков панели волонтера и действий заказчика.
"""

from datetime import datetime, timezone

import pytest

from helphub.handlers.request import (
    parse_location,
    parse_schedule,
    request_callback_handler,
    resend_otp_callback,
)
from helphub.handlers.volunteer import availability_command, done_command
from helphub.models.results import Failure, FailureReason

# --- Фикстуры ---


@pytest.fixture
def volunteer_context(mocker, make_volunteer, make_request):
    """
    Моки Update и Context для волонтера с назначенной заявкой.
    """
    volunteer = make_volunteer(volunteer_id="vol-1", telegram_id=200)
    request = make_request(status="assigned", assigned_volunteer_id="vol-1")

    mock_update = mocker.MagicMock()
    mock_context = mocker.MagicMock()
    mock_update.effective_user.id = 200
    mock_update.callback_query = None
    mock_update.effective_message.reply_text = mocker.AsyncMock()

    volunteer_service = mocker.MagicMock()
    volunteer_service.get_by_telegram_id = mocker.AsyncMock(return_value=volunteer)

    lifecycle = mocker.MagicMock()
    lifecycle.otp.policy.max_attempts = 3
    lifecycle.get_request = mocker.AsyncMock(return_value=request)
    lifecycle.verify_otp = mocker.AsyncMock()
    lifecycle.assign_volunteer = mocker.AsyncMock()
    lifecycle.resend_otp = mocker.AsyncMock()
    lifecycle.set_availability = mocker.AsyncMock(return_value=volunteer)

    mock_context.application.bot_data = {
        "volunteer_service": volunteer_service,
        "lifecycle": lifecycle,
        "settings": mocker.MagicMock(admin_ids=[]),
    }
    mock_context.user_data = {}
    return mock_update, mock_context, request


# --- /done ---


@pytest.mark.asyncio
async def test_done_reports_remaining_attempts(volunteer_context):
    """Тест: При неверном коде волонтер видит число оставшихся попыток."""
    # Arrange
    mock_update, mock_context, request = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    lifecycle.verify_otp.return_value = Failure(
        reason=FailureReason.OTP_MISMATCH, message="Invalid OTP", attempts=1
    )
    mock_context.args = [request.request_id, "000000"]

    # Act
    await done_command(mock_update, mock_context)

    # Assert
    lifecycle.verify_otp.assert_awaited_once_with(request.request_id, "000000")
    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "❌ Неверный код. Использовано попыток: 1 из 3, осталось: 2."
    )


@pytest.mark.asyncio
async def test_done_rejects_foreign_request(volunteer_context):
    """Тест: Нельзя подтвердить заявку, назначенную другому волонтеру."""
    mock_update, mock_context, request = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    lifecycle.get_request.return_value = request.model_copy(
        update={"assigned_volunteer_id": "someone-else"}
    )
    mock_context.args = [request.request_id, "123456"]

    await done_command(mock_update, mock_context)

    lifecycle.verify_otp.assert_not_awaited()
    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⚠️ Эта заявка не назначена вам."
    )


@pytest.mark.asyncio
async def test_done_usage(volunteer_context):
    mock_update, mock_context, _ = volunteer_context
    mock_context.args = []

    await done_command(mock_update, mock_context)

    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "Использование: /done <id заявки> <код>"
    )


# --- /availability ---


@pytest.mark.asyncio
async def test_availability_busy_rejected(volunteer_context):
    mock_update, mock_context, _ = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    lifecycle.set_availability.return_value = Failure(
        reason=FailureReason.INVALID_STATE, message="Volunteer has an active assignment"
    )
    mock_context.args = ["unavailable"]

    await availability_command(mock_update, mock_context)

    lifecycle.set_availability.assert_awaited_once_with("vol-1", "unavailable")
    reply = mock_update.effective_message.reply_text.await_args.args[0]
    assert "заявка в работе" in reply


@pytest.mark.asyncio
async def test_availability_cannot_set_busy(volunteer_context):
    mock_update, mock_context, _ = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    mock_context.args = ["busy"]

    await availability_command(mock_update, mock_context)

    lifecycle.set_availability.assert_not_awaited()


# --- Кнопки ---


@pytest.mark.asyncio
async def test_accept_callback_answers_once_on_failure(volunteer_context, mocker):
    """Тест: Если заявку уже забрали, волонтер получает одно всплывающее сообщение."""
    mock_update, mock_context, request = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    lifecycle.assign_volunteer.return_value = Failure(
        reason=FailureReason.INVALID_STATE, message="Request is no longer available"
    )
    query = mocker.MagicMock()
    query.data = f"accept_req:{request.request_id}"
    query.answer = mocker.AsyncMock()
    query.edit_message_text = mocker.AsyncMock()
    mock_update.callback_query = query

    await request_callback_handler(mock_update, mock_context)

    lifecycle.assign_volunteer.assert_awaited_once_with(request.request_id, "vol-1")
    query.answer.assert_awaited_once_with(
        "⚠️ Действие недоступно в текущем статусе заявки.", show_alert=True
    )
    query.edit_message_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_resend_otp_only_for_owner(volunteer_context, mocker):
    mock_update, mock_context, request = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    query = mocker.MagicMock()
    query.data = f"resend_otp:{request.request_id}"
    query.from_user.id = 12345
    query.answer = mocker.AsyncMock()
    mock_update.callback_query = query

    await resend_otp_callback(mock_update, mock_context)

    lifecycle.resend_otp.assert_not_awaited()
    query.answer.assert_awaited_once_with("⛔️ Это не ваша заявка.", show_alert=True)


@pytest.mark.asyncio
async def test_resend_otp_throttled(volunteer_context, mocker):
    mock_update, mock_context, request = volunteer_context
    lifecycle = mock_context.application.bot_data["lifecycle"]
    lifecycle.resend_otp.return_value = Failure(
        reason=FailureReason.OTP_THROTTLED, message="wait", wait_seconds=42
    )
    query = mocker.MagicMock()
    query.data = f"resend_otp:{request.request_id}"
    query.from_user.id = request.customer.telegram_id
    query.answer = mocker.AsyncMock()
    mock_update.callback_query = query

    await resend_otp_callback(mock_update, mock_context)

    query.answer.assert_awaited_once_with(
        "⏳ Новый код можно запросить позже. Подождите 42 сек.", show_alert=True
    )


# --- Разбор ввода ---


def test_parse_location():
    location = parse_location("Austin, TX, 100 Congress Ave, 78701")
    assert (location.city, location.state, location.zip_code) == ("Austin", "TX", "78701")
    assert parse_location("Austin") is None
    assert parse_location(", TX") is None


def test_parse_schedule():
    now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    scheduled = parse_schedule("02.03.2026 10:00", "Asia/Kolkata", now)
    assert scheduled.astimezone(timezone.utc) == datetime(
        2026, 3, 2, 4, 30, tzinfo=timezone.utc
    )
    assert parse_schedule("01.03.2026 10:00", "Asia/Kolkata", now) is None
    assert parse_schedule("tomorrow", "Asia/Kolkata", now) is None
