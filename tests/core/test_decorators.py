"""
Тесты для декоратора @require_role и определения ролей.
"""

import pytest

from helphub.core.decorators import require_role, resolve_roles
from helphub.models.request import Location
from helphub.models.volunteer import Volunteer

VOLUNTEER = Volunteer(
    telegram_id=200,
    first_name="Tech",
    profession="Plumbing",
    location=Location(city="Austin", state="TX"),
)

# --- Фикстуры для подготовки тестового окружения ---


@pytest.fixture
def mock_update_context(mocker):
    """Фикстура для создания моков Update и Context."""
    mock_update = mocker.MagicMock()
    mock_context = mocker.MagicMock()

    # --- Настраиваем моки для асинхронных вызовов ---
    mock_update.effective_message.reply_text = mocker.AsyncMock()
    mock_update.callback_query = None

    # Симулируем наличие volunteer_service и настроек в bot_data
    volunteer_service = mocker.MagicMock()
    volunteer_service.get_by_telegram_id = mocker.AsyncMock(return_value=None)
    mock_context.application.bot_data = {
        "volunteer_service": volunteer_service,
        "settings": mocker.MagicMock(admin_ids=[100]),
    }
    # Симулируем наличие user_data
    mock_context.user_data = {}

    return mock_update, mock_context


# --- Тесты ---


@pytest.mark.asyncio
async def test_require_role_admin_success(mock_update_context, mocker):
    """
    Тест: Пользователь из списка администраторов, доступ разрешен.
    """
    # Arrange (Подготовка)
    mock_update, mock_context = mock_update_context
    mock_update.effective_user.id = 100

    # Создаем "шпиона" - асинхронную функцию, за которой будем следить
    dummy_handler = mocker.AsyncMock()

    # Act (Действие)
    decorated_handler = require_role("admin")(dummy_handler)
    await decorated_handler(mock_update, mock_context)

    # Assert (Проверка)
    dummy_handler.assert_awaited_once()


@pytest.mark.asyncio
async def test_require_role_volunteer_success(mock_update_context, mocker):
    """
    Тест: Активный волонтер проходит проверку и сохраняется в context.
    """
    # Arrange
    mock_update, mock_context = mock_update_context
    volunteer_service = mock_context.application.bot_data["volunteer_service"]
    mock_update.effective_user.id = 200
    volunteer_service.get_by_telegram_id.return_value = VOLUNTEER
    dummy_handler = mocker.AsyncMock()

    # Act
    await require_role("volunteer")(dummy_handler)(mock_update, mock_context)

    # Assert
    dummy_handler.assert_awaited_once()
    assert mock_context.user_data["volunteer"] == VOLUNTEER


@pytest.mark.asyncio
async def test_require_role_wrong_role(mock_update_context, mocker):
    """
    Тест: Волонтер вызывает команду администратора, доступ запрещен.
    """
    # Arrange
    mock_update, mock_context = mock_update_context
    volunteer_service = mock_context.application.bot_data["volunteer_service"]
    mock_update.effective_user.id = 200
    volunteer_service.get_by_telegram_id.return_value = VOLUNTEER
    dummy_handler = mocker.AsyncMock()

    # Act
    decorated_handler = require_role("admin")(dummy_handler)  # Требуется роль admin
    await decorated_handler(mock_update, mock_context)

    # Assert
    # Проверяем, что оригинальный обработчик НЕ был вызван
    dummy_handler.assert_not_awaited()
    # Проверяем, что бот попытался ответить сообщением об ошибке
    mock_update.effective_message.reply_text.assert_awaited_once_with(
        "⛔️ У вас нет доступа для выполнения этой команды."
    )


@pytest.mark.asyncio
async def test_require_role_inactive_volunteer(mock_update_context, mocker):
    """
    Тест: Деактивированный волонтер не получает роль.
    """
    mock_update, mock_context = mock_update_context
    volunteer_service = mock_context.application.bot_data["volunteer_service"]
    mock_update.effective_user.id = 200
    volunteer_service.get_by_telegram_id.return_value = VOLUNTEER.model_copy(
        update={"is_active": False}
    )
    dummy_handler = mocker.AsyncMock()

    await require_role("volunteer")(dummy_handler)(mock_update, mock_context)

    dummy_handler.assert_not_awaited()
    assert "volunteer" not in mock_context.user_data


@pytest.mark.asyncio
async def test_require_role_callback_alert(mock_update_context, mocker):
    """
    Тест: Для нажатия кнопки отказ приходит всплывающим уведомлением.
    """
    mock_update, mock_context = mock_update_context
    mock_update.effective_user.id = 999
    mock_update.callback_query = mocker.MagicMock()
    mock_update.callback_query.answer = mocker.AsyncMock()
    dummy_handler = mocker.AsyncMock()

    await require_role("volunteer")(dummy_handler)(mock_update, mock_context)

    dummy_handler.assert_not_awaited()
    mock_update.callback_query.answer.assert_awaited_once_with(
        "⛔️ У вас нет доступа для этого действия.", show_alert=True
    )
    mock_update.effective_message.reply_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_resolve_roles_admin_and_volunteer(mock_update_context):
    _, mock_context = mock_update_context
    volunteer_service = mock_context.application.bot_data["volunteer_service"]
    volunteer_service.get_by_telegram_id.return_value = VOLUNTEER.model_copy(
        update={"telegram_id": 100}
    )

    assert await resolve_roles(100, mock_context) == {"admin", "volunteer"}
    volunteer_service.get_by_telegram_id.return_value = None
    assert await resolve_roles(999, mock_context) == set()
