# src/core/dispatch/models.py
"""
Модели данных диспетчеризации.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from src.common.constants import IngestStatus, TripStatus
from src.common.exceptions import InvalidInput


@dataclass(frozen=True)
class Location:
    """Геолокация (WGS84)."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for name, value, limit in (
            ("latitude", self.latitude, 90.0),
            ("longitude", self.longitude, 180.0),
        ):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidInput(f"Координата {name} должна быть числом: {value!r}")
            if not math.isfinite(value) or abs(value) > limit:
                raise InvalidInput(f"Координата {name} вне диапазона: {value!r}")

    @property
    def as_lat_lon(self) -> str:
        """Формат "lat,lon" для HERE API."""
        return f"{self.latitude},{self.longitude}"

    @property
    def as_geo_waypoint(self) -> str:
        """Формат "geo!lat,lon" для маршрутизации."""
        return f"geo!{self.latitude},{self.longitude}"


class Area(BaseModel):
    """Административная область обслуживания."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="ID области")
    name: str = Field(..., description="Название")
    admin_layer: int = Field(..., description="Уровень административного слоя")
    admin_place_id: int = Field(..., description="ID места в слое")

    @property
    def admin_key(self) -> str:
        """Составной внешний ключ области."""
        return f"{self.admin_layer}#{self.admin_place_id}"


class Driver(BaseModel):
    """Водитель."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="ID водителя")
    name: str = Field(..., description="Отображаемое имя")
    latitude: float = Field(..., description="Текущая широта")
    longitude: float = Field(..., description="Текущая долгота")
    area_id: Optional[int] = Field(None, description="ID области")

    @property
    def location(self) -> Location:
        return Location(self.latitude, self.longitude)


class Trip(BaseModel):
    """Поездка."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., description="ID поездки")
    pickup_latitude: float
    pickup_longitude: float
    dropoff_latitude: float
    dropoff_longitude: float
    shape: str = Field(..., description="Зона досягаемости (WKT)")
    status: TripStatus = Field(TripStatus.NEW, description="Статус поездки")
    driver_id: Optional[int] = Field(None, description="Закреплённый водитель")
    created_at: Optional[datetime] = None
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def pickup(self) -> Location:
        return Location(self.pickup_latitude, self.pickup_longitude)

    @property
    def dropoff(self) -> Location:
        return Location(self.dropoff_latitude, self.dropoff_longitude)

    @property
    def is_unassigned(self) -> bool:
        return self.status == TripStatus.NEW


@dataclass(frozen=True)
class RegionDescriptor:
    """Административный регион, содержащий точку."""
    name: str
    admin_layer: int
    admin_place_id: int

    @property
    def admin_key(self) -> str:
        return f"{self.admin_layer}#{self.admin_place_id}"


@dataclass(frozen=True)
class MatrixEntry:
    """Элемент матрицы времени в пути."""
    start_index: int
    destination_index: int
    eta_seconds: Optional[float] = None


@dataclass(frozen=True)
class DriverEta:
    """Водитель и его время в пути до точки подачи."""
    driver: Driver
    eta_seconds: float


@dataclass
class IngestResult:
    """Результат обработки геолокации водителя."""
    driver_id: int
    status: IngestStatus
    trip_ids: list[int] = field(default_factory=list)
    error: Optional[BaseException] = None


@dataclass
class TickReport:
    """Итог одного такта диспетчеризации."""
    assigned: dict[int, int] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, BaseException] = field(default_factory=dict)
    published: bool = False

    def as_log_extra(self) -> dict[str, Any]:
        return {
            "assigned": self.assigned,
            "skipped": self.skipped,
            "failed": {trip_id: type(e).__name__ for trip_id, e in self.failed.items()},
            "published": self.published,
        }
