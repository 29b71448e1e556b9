# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TripStatus(str, Enum):
    """Статусы поездки. Переходы только NEW -> ASSIGNED -> COMPLETED."""
    NEW = "new"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class IngestStatus(str, Enum):
    """Результат обработки геолокации водителя."""
    UPDATED = "updated"
    BUSY = "busy"
    FAILED = "failed"


class WorkerState(str, Enum):
    """Состояния планировщика."""
    STOPPED = "stopped"
    RUNNING = "running"


# Слои административных границ HERE Platform Data Extension
ADMIN_LAYER_IDS = ["ADMIN_POLY_0", "ADMIN_POLY_1", "ADMIN_POLY_2", "ADMIN_POLY_8", "ADMIN_POLY_9"]
ADMIN_KEY_ATTRIBUTE = "ADMIN_PLACE_ID"
