# src/core/dispatch/__init__.py
"""
Домен диспетчеризации.
Модели, хранилище, выбор кандидата и сервис назначения поездок.
"""

from src.core.dispatch.models import (
    Area,
    Driver,
    DriverEta,
    IngestResult,
    Location,
    MatrixEntry,
    RegionDescriptor,
    TickReport,
    Trip,
)
from src.core.dispatch.repository import DispatchRepository
from src.core.dispatch.selection import select_closest_candidate
from src.core.dispatch.service import DispatchService

__all__ = [
    "Area",
    "Driver",
    "DriverEta",
    "IngestResult",
    "Location",
    "MatrixEntry",
    "RegionDescriptor",
    "TickReport",
    "Trip",
    "DispatchRepository",
    "select_closest_candidate",
    "DispatchService",
]
