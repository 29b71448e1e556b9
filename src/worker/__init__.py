# src/worker/__init__.py
"""
Фоновые воркеры на периодических таймерах.
"""

from src.worker.base import BaseWorker
from src.worker.dispatch import DispatchWorker

__all__ = ["BaseWorker", "DispatchWorker"]
