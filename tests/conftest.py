# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("HERE_APP_ID", "test_app_id")
os.environ.setdefault("HERE_APP_CODE", "test_app_code")

from src.common.constants import TripStatus
from src.common.exceptions import AssignmentConflict, StorageError
from src.config.loader import DispatchSettings, HereApiSettings
from src.core.dispatch.models import Area, Driver, Location, RegionDescriptor, Trip

SQUARE_WKT = "MULTIPOLYGON (((-122.3 37.8, -122.2 37.8, -122.2 37.9, -122.3 37.8)))"


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture
def here_config() -> HereApiSettings:
    """Настройки HERE с тестовыми учётными данными."""
    return HereApiSettings(HERE_APP_ID="test_app", HERE_APP_CODE="test_code", HTTP_TIMEOUT=1.0)


@pytest.fixture
def dispatch_config() -> DispatchSettings:
    """Настройки диспетчеризации с короткими интервалами."""
    return DispatchSettings(
        DISPATCH_TICK_INTERVAL=0.05,
        DRIVER_LOCATION_INTERVAL=0.03,
        CUSTOM_LAYER_ID="TEST_LAYER",
        LAYER_ID_ATTRIBUTE="ID",
        PICKUP_REACH_SECONDS=300,
        REFRESH_DRIVER_AREA=False,
    )


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_conn() -> MagicMock:
    """Мок соединения внутри транзакции."""
    conn = MagicMock()
    conn.fetchval = AsyncMock(return_value=None)
    conn.fetch = AsyncMock(return_value=[])
    conn.execute = AsyncMock(return_value="DELETE 0")
    return conn


@pytest.fixture
def mock_db(mock_conn: MagicMock) -> MagicMock:
    """Мок менеджера базы данных."""
    db = MagicMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)

    @asynccontextmanager
    async def _transaction():
        yield mock_conn

    db.transaction = MagicMock(side_effect=_transaction)
    return db


@pytest.fixture
def make_response() -> Callable[..., httpx.Response]:
    """Фабрика HTTP ответов для моков httpx клиента."""
    def _make(status_code: int = 200, json: Any = None, text: str | None = None, method: str = "GET") -> httpx.Response:
        request = httpx.Request(method, "https://here.test/endpoint")
        if text is not None:
            return httpx.Response(status_code, text=text, request=request)
        return httpx.Response(status_code, json=json if json is not None else {}, request=request)

    return _make


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def sample_driver_row() -> dict[str, Any]:
    """Пример строки водителя из БД."""
    return {
        "id": 1,
        "name": "John D.",
        "latitude": 37.780464,
        "longitude": -122.417280,
        "area_id": 1,
    }


@pytest.fixture
def sample_trip_row() -> dict[str, Any]:
    """Пример строки поездки из БД."""
    return {
        "id": 10,
        "pickup_latitude": 37.870242,
        "pickup_longitude": -122.268234,
        "dropoff_latitude": 37.787526,
        "dropoff_longitude": -122.407603,
        "shape": SQUARE_WKT,
        "status": "new",
        "driver_id": None,
        "created_at": datetime.now(timezone.utc),
        "assigned_at": None,
        "completed_at": None,
    }


# =============================================================================
# IN-MEMORY ХРАНИЛИЩЕ
# =============================================================================

class FakeDispatchStore:
    """
    Хранилище диспетчера в памяти с теми же контрактами, что и DispatchRepository.
    failures позволяет подложить исключение в любой метод.
    """

    def __init__(self) -> None:
        self.areas: dict[int, Area] = {}
        self.drivers: dict[int, Driver] = {}
        self.trips: dict[int, Trip] = {}
        self.candidates: list[tuple[int, int]] = []
        self.assign_calls: list[tuple[int, int]] = []
        self.failures: dict[str, BaseException] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _maybe_fail(self, method: str) -> None:
        error = self.failures.get(method)
        if error is not None:
            raise error

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    # --- заполнение ---

    def add_driver(self, name: str, latitude: float, longitude: float, area_id: Optional[int] = None) -> Driver:
        driver = Driver(id=len(self.drivers) + 1, name=name, latitude=latitude, longitude=longitude, area_id=area_id)
        self.drivers[driver.id] = driver
        return driver

    def add_trip(self, shape: str = SQUARE_WKT, pickup: tuple[float, float] = (37.870242, -122.268234)) -> Trip:
        trip = Trip(
            id=len(self.trips) + 1,
            pickup_latitude=pickup[0],
            pickup_longitude=pickup[1],
            dropoff_latitude=37.787526,
            dropoff_longitude=-122.407603,
            shape=shape,
            status=TripStatus.NEW,
            created_at=self._now(),
        )
        self.trips[trip.id] = trip
        return trip

    def is_busy(self, driver_id: int) -> bool:
        return any(t.driver_id == driver_id and t.status == TripStatus.ASSIGNED for t in self.trips.values())

    # --- контракт хранилища ---

    async def insert_area(self, name: str, admin_layer: int, admin_place_id: int) -> int:
        self._maybe_fail("insert_area")
        if any(a.admin_layer == admin_layer and a.admin_place_id == admin_place_id for a in self.areas.values()):
            raise StorageError("duplicate area")
        area = Area(id=len(self.areas) + 1, name=name, admin_layer=admin_layer, admin_place_id=admin_place_id)
        self.areas[area.id] = area
        return area.id

    async def get_stored_areas(self) -> list[Area]:
        return list(self.areas.values())

    async def get_matching_area(self, regions: Iterable[RegionDescriptor]) -> Optional[int]:
        self._maybe_fail("get_matching_area")
        keys = {region.admin_key for region in regions}
        for area in sorted(self.areas.values(), key=lambda a: a.id):
            if area.admin_key in keys:
                return area.id
        return None

    async def insert_driver(self, name: str, location: Location, area_id: Optional[int]) -> int:
        return self.add_driver(name, location.latitude, location.longitude, area_id).id

    async def get_driver(self, driver_id: int) -> Optional[Driver]:
        return self.drivers.get(driver_id)

    async def get_all_drivers(self) -> list[Driver]:
        self._maybe_fail("get_all_drivers")
        return [self.drivers[key] for key in sorted(self.drivers)]

    async def get_drivers_in_area(self, area_id: int) -> list[Driver]:
        return [d for d in await self.get_all_drivers() if d.area_id == area_id]

    async def update_driver_location(self, driver_id: int, location: Location) -> None:
        self._maybe_fail("update_driver_location")
        if driver_id not in self.drivers:
            raise StorageError(f"Водитель {driver_id} не найден")
        self.drivers[driver_id] = self.drivers[driver_id].model_copy(
            update={"latitude": location.latitude, "longitude": location.longitude}
        )

    async def set_driver_area(self, driver_id: int, area_id: Optional[int]) -> None:
        self._maybe_fail("set_driver_area")
        self.drivers[driver_id] = self.drivers[driver_id].model_copy(update={"area_id": area_id})

    async def driver_has_active_assignment(self, driver_id: int) -> bool:
        self._maybe_fail("driver_has_active_assignment")
        return self.is_busy(driver_id)

    async def create_trip(self, pickup: Location, dropoff: Location, shape: str) -> int:
        self._maybe_fail("create_trip")
        return self.add_trip(shape, (pickup.latitude, pickup.longitude)).id

    async def get_trip(self, trip_id: int) -> Optional[Trip]:
        return self.trips.get(trip_id)

    async def get_unassigned_trips(self) -> list[Trip]:
        self._maybe_fail("get_unassigned_trips")
        trips = [t for t in self.trips.values() if t.status == TripStatus.NEW]
        return sorted(trips, key=lambda t: (t.created_at, t.id))

    async def get_unassigned_trip_shapes(self) -> dict[int, str]:
        self._maybe_fail("get_unassigned_trip_shapes")
        return {t.id: t.shape for t in sorted(self.trips.values(), key=lambda t: t.id) if t.status == TripStatus.NEW}

    async def get_candidate_drivers(self, trip_id: int) -> list[Driver]:
        self._maybe_fail("get_candidate_drivers")
        return [
            self.drivers[driver_id]
            for candidate_trip, driver_id in self.candidates
            if candidate_trip == trip_id and not self.is_busy(driver_id)
        ]

    async def add_candidate(self, driver_id: int, trip_ids: Iterable[int]) -> int:
        self._maybe_fail("add_candidate")
        if self.is_busy(driver_id):
            return 0
        added = 0
        for trip_id in sorted(set(trip_ids)):
            trip = self.trips.get(trip_id)
            if trip is None or trip.status != TripStatus.NEW or (trip_id, driver_id) in self.candidates:
                continue
            self.candidates.append((trip_id, driver_id))
            added += 1
        return added

    async def assign_driver_to_trip(self, trip_id: int, driver_id: int) -> None:
        self._maybe_fail("assign_driver_to_trip")
        self.assign_calls.append((trip_id, driver_id))
        trip = self.trips[trip_id]
        if trip.status != TripStatus.NEW:
            raise AssignmentConflict(trip_id, driver_id, "поездка не в статусе new")
        if self.is_busy(driver_id):
            raise AssignmentConflict(trip_id, driver_id, "водитель уже занят")
        self.trips[trip_id] = trip.model_copy(update={"status": TripStatus.ASSIGNED, "driver_id": driver_id})
        self.candidates = [(t, d) for t, d in self.candidates if t != trip_id and d != driver_id]

    async def complete_trip(self, trip_id: int) -> bool:
        trip = self.trips[trip_id]
        if trip.status != TripStatus.ASSIGNED:
            return False
        self.trips[trip_id] = trip.model_copy(update={"status": TripStatus.COMPLETED})
        return True

    async def clear_all_trips(self) -> None:
        self.trips.clear()
        self.candidates.clear()


@pytest.fixture
def fake_store() -> FakeDispatchStore:
    """Хранилище в памяти."""
    return FakeDispatchStore()
