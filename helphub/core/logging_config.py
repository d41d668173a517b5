"""
Модуль для конфигурации логирования.

Определяет единый формат и настройки для всех логгеров в приложении.
"""

import logging
import sys

# "Шумные" библиотеки, из которых нужны только предупреждения и ошибки
NOISY_LOGGERS = ("httpx", "urllib3", "google.auth", "telegram.ext.Updater")


def setup_logging(level: int | str = logging.INFO) -> None:
    """
    Настраивает базовую конфигурацию логирования для вывода в stdout.

    Args:
        level: Уровень логирования (INFO, DEBUG и т.д.) числом или названием.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    log_format = "%(asctime)s - [%(levelname)s] - %(name)s - (%(filename)s).%(funcName)s(%(lineno)d) - %(message)s"

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setFormatter(logging.Formatter(log_format))

    # Настраиваем корневой логгер; force=True позволяет перенастроить его повторно
    logging.basicConfig(level=level, handlers=[stdout_handler], force=True)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
