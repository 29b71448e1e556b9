# src/common/logger.py
"""
Структурированное логирование диспетчера.
Консоль в JSON или цветном формате, опционально файлы с ротацией по размеру.
"""

from __future__ import annotations

import inspect
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from src.common.constants import TypeMsg


DEFAULT_LOGGER_NAME = "dispatch"

# Файловые хендлеры общие для всех логгеров процесса
_FILE_HANDLERS: list[logging.Handler] = []

_LOGGING_INITIALIZED: bool = False

_LEVELS = {
    TypeMsg.DEBUG: logging.DEBUG,
    TypeMsg.INFO: logging.INFO,
    TypeMsg.WARNING: logging.WARNING,
    TypeMsg.ERROR: logging.ERROR,
    TypeMsg.CRITICAL: logging.CRITICAL,
}


# =============================================================================
# ФОРМАТТЕРЫ
# =============================================================================

class JsonFormatter(logging.Formatter):
    """Одна запись - одна строка JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if getattr(record, "extra_data", None):
            payload["extra"] = record.extra_data
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Цветной вывод для консоли."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        extra = getattr(record, "extra_data", None) or {}

        location = ""
        if extra.get("caller_function"):
            location = (
                f" {self.GRAY}[{extra.get('caller_module')}.{extra['caller_function']}() "
                f"{extra.get('caller_file')}:{extra.get('caller_line')}]{self.RESET}"
            )

        message = (
            f"{datetime.now():%Y-%m-%d %H:%M:%S} {color}[{record.levelname}]{self.RESET}"
            f"{location} {record.getMessage()}"
        )
        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)
        return message


# =============================================================================
# НАСТРОЙКА
# =============================================================================

@dataclass
class _Options:
    level: str = "DEBUG"
    format: str = "colored"
    to_file: bool = False
    file_path: str = "logs/dispatch.log"
    max_bytes: int = 10485760
    backup_count: int = 5


def _load_options() -> _Options:
    """Параметры логирования из настроек (по умолчанию, если настройки недоступны)."""
    options = _Options()
    try:
        from src.config import settings
        section = settings.logging
    except Exception:
        return options

    # В тестах settings может быть MagicMock: берём только значения нужного типа
    for field, attr, kind in (
        ("level", "LOG_LEVEL", str),
        ("format", "LOG_FORMAT", str),
        ("file_path", "LOG_FILE_PATH", str),
        ("max_bytes", "LOG_MAX_BYTES", int),
        ("backup_count", "LOG_BACKUP_COUNT", int),
    ):
        value = getattr(section, attr, None)
        if isinstance(value, kind):
            setattr(options, field, value)
    options.to_file = getattr(section, "LOG_TO_FILE", False) is True
    return options


def _make_formatter(log_format: str) -> logging.Formatter:
    return JsonFormatter() if log_format == "json" else ColoredFormatter()


def _file_handlers(options: _Options) -> list[logging.Handler]:
    """Основной файл и error.log рядом с ним, создаются один раз."""
    if not _FILE_HANDLERS:
        path = Path(options.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        for filename, level in ((path.name, logging.NOTSET), ("error.log", logging.ERROR)):
            handler = RotatingFileHandler(
                path.parent / filename,
                maxBytes=options.max_bytes,
                backupCount=options.backup_count,
                encoding="utf-8",
            )
            handler.setLevel(level)
            handler.setFormatter(_make_formatter(options.format))
            _FILE_HANDLERS.append(handler)

    return _FILE_HANDLERS


_loggers: dict[str, logging.Logger] = {}


def setup_logging() -> None:
    """Инициализирует логирование. Повторные вызовы ничего не делают."""
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED:
        return
    _LOGGING_INITIALIZED = True

    get_logger(DEFAULT_LOGGER_NAME)

    for noisy in ("asyncpg", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Возвращает настроенный логгер (кэшируется по имени).

    Args:
        name: Имя логгера
    """
    if name in _loggers:
        return _loggers[name]

    options = _load_options()
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, options.level.upper(), logging.DEBUG))
    logger.propagate = False

    if not logger.handlers:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(_make_formatter(options.format))
        logger.addHandler(console)

        if options.to_file:
            for handler in _file_handlers(options):
                logger.addHandler(handler)

    _loggers[name] = logger
    return logger


# =============================================================================
# АСИНХРОННЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _get_caller_info() -> dict[str, Any]:
    """
    Откуда вызвали log_*: функция, модуль, файл и строка.
    Пропускает свой кадр и кадр log_*.
    """
    frame = inspect.currentframe()
    try:
        caller = frame.f_back.f_back if frame and frame.f_back else None
        if caller is None:
            return {}

        module = inspect.getmodule(caller)
        return {
            "caller_function": caller.f_code.co_name,
            "caller_module": module.__name__ if module else "unknown",
            "caller_file": Path(caller.f_code.co_filename).name,
            "caller_line": caller.f_lineno,
        }
    finally:
        del frame


def _emit(
    level: int,
    message: str,
    logger_name: str,
    extra: dict[str, Any] | None,
    caller: dict[str, Any],
    exc_info: bool = False,
) -> None:
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**caller, **(extra or {})}}

    if level >= logging.ERROR:
        method = logger.critical if level >= logging.CRITICAL else logger.error
        method(message, extra=record_extra, exc_info=exc_info)
    elif level == logging.WARNING:
        logger.warning(message, extra=record_extra)
    elif level == logging.DEBUG:
        logger.debug(message, extra=record_extra)
    else:
        logger.info(message, extra=record_extra)


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Пишет сообщение с уровнем type_msg.

    Args:
        message: Текст
        type_msg: Уровень сообщения
        logger_name: Имя логгера
        extra: Поля записи (kind, trip_id, driver_id и т.п.)
    """
    _emit(_LEVELS.get(type_msg, logging.INFO), message, logger_name, extra, _get_caller_info())


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.DEBUG, message, logger_name, extra, _get_caller_info())


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
) -> None:
    _emit(logging.WARNING, message, logger_name, extra, _get_caller_info())


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER_NAME,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """Пишет ошибку; exc_info=True добавляет трейсбек."""
    _emit(logging.ERROR, message, logger_name, extra, _get_caller_info(), exc_info=exc_info)
