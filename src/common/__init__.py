# src/common/__init__.py
"""
Общие утилиты, константы, исключения и логгер.
"""

from src.common.logger import get_logger, log_info, log_error, log_warning, log_debug
from src.common.constants import TypeMsg, TripStatus
from src.common.exceptions import (
    DispatchError,
    OracleUnavailable,
    StorageError,
    AssignmentConflict,
    InvalidInput,
    DoubleStartError,
)

__all__ = [
    "get_logger",
    "log_info",
    "log_error",
    "log_warning",
    "log_debug",
    "TypeMsg",
    "TripStatus",
    "DispatchError",
    "OracleUnavailable",
    "StorageError",
    "AssignmentConflict",
    "InvalidInput",
    "DoubleStartError",
]
