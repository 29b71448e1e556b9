# src/common/exceptions.py
"""
Исключения домена диспетчеризации.
"""

from __future__ import annotations


class DispatchError(Exception):
    """Базовое исключение диспетчеризации."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class OracleUnavailable(DispatchError):
    """Внешний сервис (геофенсинг, маршрутизация) недоступен или вернул мусор."""


class StorageError(DispatchError):
    """Хранилище недоступно или нарушено ограничение."""


class AssignmentConflict(StorageError):
    """Поездка уже назначена или водитель уже занят."""

    def __init__(self, trip_id: int, driver_id: int, reason: str = "") -> None:
        message = f"Не удалось назначить водителя {driver_id} на поездку {trip_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.trip_id = trip_id
        self.driver_id = driver_id


class InvalidInput(DispatchError):
    """Некорректные входные данные (например, координаты)."""


class DoubleStartError(DispatchError):
    """Повторный запуск уже работающего планировщика."""
