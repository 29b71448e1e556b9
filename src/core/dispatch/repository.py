# src/core/dispatch/repository.py
"""
Хранилище диспетчера: области, водители, поездки и кандидаты.

Все методы асинхронные. Ошибки драйвера БД и сети пробрасываются
как StorageError без повторов.
"""

from __future__ import annotations

from functools import wraps
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import asyncpg
from asyncpg import Record

from src.common.constants import TripStatus
from src.common.exceptions import AssignmentConflict, DispatchError, StorageError
from src.common.logger import log_error
from src.core.dispatch.models import Area, Driver, Location, RegionDescriptor, Trip
from src.infra.database import DatabaseManager

T = TypeVar("T")

STORAGE_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)

_DRIVER_COLUMNS = "d.id, d.name, d.latitude, d.longitude, d.area_id"
_TRIP_COLUMNS = """
    id, pickup_latitude, pickup_longitude, dropoff_latitude, dropoff_longitude,
    shape, status, driver_id, created_at, assigned_at, completed_at
"""


def storage_operation(
    description: str,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Декоратор: переводит ошибки БД в StorageError.

    Args:
        description: Описание операции для лога
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            try:
                return await func(*args, **kwargs)
            except DispatchError:
                raise
            except STORAGE_ERRORS as e:
                await log_error(
                    f"Ошибка хранилища ({description}): {e}",
                    extra={"operation": func.__name__, "cause": type(e).__name__},
                )
                raise StorageError(f"Ошибка хранилища ({description}): {e}", cause=e) from e

        return wrapper

    return decorator


def _rows_affected(status: str) -> int:
    """Количество строк из статуса команды ("INSERT 0 3" -> 3)."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (AttributeError, ValueError):
        return 0


class DispatchRepository:
    """Репозиторий диспетчера поездок."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Инициализация репозитория.

        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    # =========================================================================
    # ОБЛАСТИ
    # =========================================================================

    @storage_operation("создание области")
    async def insert_area(self, name: str, admin_layer: int, admin_place_id: int) -> int:
        """
        Создаёт область обслуживания.
        Повторный составной ключ (слой, место) нарушает ограничение уникальности.
        """
        return await self._db.fetchval(
            """
            INSERT INTO areas (name, admin_layer, admin_place_id)
            VALUES ($1, $2, $3)
            RETURNING id
            """,
            name,
            admin_layer,
            admin_place_id,
        )

    @storage_operation("чтение областей")
    async def get_stored_areas(self) -> list[Area]:
        rows = await self._db.fetch(
            "SELECT id, name, admin_layer, admin_place_id FROM areas ORDER BY id"
        )
        return [Area.model_validate(dict(row)) for row in rows]

    @storage_operation("поиск области")
    async def get_matching_area(self, regions: Iterable[RegionDescriptor]) -> Optional[int]:
        """
        Ищет сохранённую область среди регионов, найденных геофенсингом.

        Returns:
            ID первой подходящей области или None
        """
        keys = [region.admin_key for region in regions]
        if not keys:
            return None

        return await self._db.fetchval(
            """
            SELECT id FROM areas
            WHERE admin_layer || '#' || admin_place_id = ANY($1::text[])
            ORDER BY id
            LIMIT 1
            """,
            keys,
        )

    # =========================================================================
    # ВОДИТЕЛИ
    # =========================================================================

    @storage_operation("создание водителя")
    async def insert_driver(self, name: str, location: Location, area_id: Optional[int]) -> int:
        return await self._db.fetchval(
            """
            INSERT INTO drivers (name, latitude, longitude, area_id)
            VALUES ($1, $2, $3, $4)
            RETURNING id
            """,
            name,
            location.latitude,
            location.longitude,
            area_id,
        )

    @storage_operation("чтение водителя")
    async def get_driver(self, driver_id: int) -> Optional[Driver]:
        row = await self._db.fetchrow(
            f"SELECT {_DRIVER_COLUMNS} FROM drivers d WHERE d.id = $1",
            driver_id,
        )
        if row is None:
            return None
        return self._row_to_driver(row)

    @storage_operation("чтение водителей")
    async def get_all_drivers(self) -> list[Driver]:
        rows = await self._db.fetch(f"SELECT {_DRIVER_COLUMNS} FROM drivers d ORDER BY d.id")
        return [self._row_to_driver(row) for row in rows]

    @storage_operation("чтение водителей области")
    async def get_drivers_in_area(self, area_id: int) -> list[Driver]:
        rows = await self._db.fetch(
            f"SELECT {_DRIVER_COLUMNS} FROM drivers d WHERE d.area_id = $1 ORDER BY d.id",
            area_id,
        )
        return [self._row_to_driver(row) for row in rows]

    @storage_operation("обновление геолокации водителя")
    async def update_driver_location(self, driver_id: int, location: Location) -> None:
        """
        Перезаписывает координаты водителя.

        Raises:
            StorageError: Водитель не найден
        """
        status = await self._db.execute(
            """
            UPDATE drivers
            SET latitude = $2, longitude = $3, updated_at = NOW()
            WHERE id = $1
            """,
            driver_id,
            location.latitude,
            location.longitude,
        )
        if _rows_affected(status) == 0:
            raise StorageError(f"Водитель {driver_id} не найден")

    @storage_operation("обновление области водителя")
    async def set_driver_area(self, driver_id: int, area_id: Optional[int]) -> None:
        await self._db.execute(
            "UPDATE drivers SET area_id = $2 WHERE id = $1",
            driver_id,
            area_id,
        )

    @storage_operation("проверка занятости водителя")
    async def driver_has_active_assignment(self, driver_id: int) -> bool:
        """Закреплён ли водитель за незавершённой поездкой."""
        return bool(
            await self._db.fetchval(
                "SELECT EXISTS (SELECT 1 FROM trips WHERE driver_id = $1 AND status = $2)",
                driver_id,
                TripStatus.ASSIGNED.value,
            )
        )

    # =========================================================================
    # ПОЕЗДКИ
    # =========================================================================

    @storage_operation("создание поездки")
    async def create_trip(self, pickup: Location, dropoff: Location, shape: str) -> int:
        """
        Создаёт поездку в статусе NEW.

        Args:
            pickup: Точка подачи
            dropoff: Точка назначения
            shape: Зона досягаемости (WKT)

        Returns:
            ID поездки
        """
        return await self._db.fetchval(
            """
            INSERT INTO trips (
                pickup_latitude, pickup_longitude,
                dropoff_latitude, dropoff_longitude,
                shape, status
            )
            VALUES ($1, $2, $3, $4, $5, $6)
            RETURNING id
            """,
            pickup.latitude,
            pickup.longitude,
            dropoff.latitude,
            dropoff.longitude,
            shape,
            TripStatus.NEW.value,
        )

    @storage_operation("чтение поездки")
    async def get_trip(self, trip_id: int) -> Optional[Trip]:
        row = await self._db.fetchrow(f"SELECT {_TRIP_COLUMNS} FROM trips WHERE id = $1", trip_id)
        if row is None:
            return None
        return self._row_to_trip(row)

    @storage_operation("чтение неназначенных поездок")
    async def get_unassigned_trips(self) -> list[Trip]:
        """Поездки в статусе NEW, в порядке создания."""
        rows = await self._db.fetch(
            f"SELECT {_TRIP_COLUMNS} FROM trips WHERE status = $1 ORDER BY created_at, id",
            TripStatus.NEW.value,
        )
        return [self._row_to_trip(row) for row in rows]

    @storage_operation("чтение зон неназначенных поездок")
    async def get_unassigned_trip_shapes(self) -> dict[int, str]:
        rows = await self._db.fetch(
            "SELECT id, shape FROM trips WHERE status = $1 ORDER BY id",
            TripStatus.NEW.value,
        )
        return {row["id"]: row["shape"] for row in rows}

    @storage_operation("завершение поездки")
    async def complete_trip(self, trip_id: int) -> bool:
        """
        Переводит поездку ASSIGNED -> COMPLETED и освобождает водителя.

        Returns:
            True если статус изменён
        """
        updated = await self._db.fetchval(
            """
            UPDATE trips
            SET status = $2, completed_at = NOW()
            WHERE id = $1 AND status = $3
            RETURNING id
            """,
            trip_id,
            TripStatus.COMPLETED.value,
            TripStatus.ASSIGNED.value,
        )
        return updated is not None

    @storage_operation("очистка поездок")
    async def clear_all_trips(self) -> None:
        async with self._db.transaction() as conn:
            await conn.execute("DELETE FROM trip_candidates")
            await conn.execute("DELETE FROM trips")

    # =========================================================================
    # КАНДИДАТЫ
    # =========================================================================

    @storage_operation("чтение кандидатов")
    async def get_candidate_drivers(self, trip_id: int) -> list[Driver]:
        """
        Водители-кандидаты поездки в порядке появления.
        Занятые водители не возвращаются.
        """
        rows = await self._db.fetch(
            f"""
            SELECT {_DRIVER_COLUMNS}
            FROM trip_candidates c
            JOIN drivers d ON d.id = c.driver_id
            WHERE c.trip_id = $1
              AND NOT EXISTS (
                  SELECT 1 FROM trips t
                  WHERE t.driver_id = d.id AND t.status = $2
              )
            ORDER BY c.created_at, d.id
            """,
            trip_id,
            TripStatus.ASSIGNED.value,
        )
        return [self._row_to_driver(row) for row in rows]

    @storage_operation("добавление кандидата")
    async def add_candidate(self, driver_id: int, trip_ids: Iterable[int]) -> int:
        """
        Идемпотентно связывает водителя с поездками.
        Существующая пара пропускается, поездки не в статусе NEW
        и занятые водители игнорируются.

        Строка водителя берётся FOR SHARE, поездки FOR SHARE OF t:
        параллельное назначение (FOR UPDATE водителя, UPDATE поездки)
        либо ждёт коммита вставки и затем удаляет её пары, либо коммитится
        первым, и INSERT после ожидания перепроверяет статус поездки
        и занятость водителя. Порядок блокировок тот же, что в
        assign_driver_to_trip: водитель, затем поездка.

        Returns:
            Количество добавленных пар
        """
        ids = sorted(set(trip_ids))
        if not ids:
            return 0

        async with self._db.transaction() as conn:
            await conn.execute("SELECT 1 FROM drivers WHERE id = $1 FOR SHARE", driver_id)
            status = await conn.execute(
                """
                INSERT INTO trip_candidates (trip_id, driver_id)
                SELECT t.id, $1
                FROM trips t
                WHERE t.id = ANY($2::int[])
                  AND t.status = $3
                  AND NOT EXISTS (
                      SELECT 1 FROM trips busy
                      WHERE busy.driver_id = $1 AND busy.status = $4
                  )
                ORDER BY t.id
                FOR SHARE OF t
                ON CONFLICT (trip_id, driver_id) DO NOTHING
                """,
                driver_id,
                ids,
                TripStatus.NEW.value,
                TripStatus.ASSIGNED.value,
            )
        return _rows_affected(status)

    @storage_operation("назначение водителя")
    async def assign_driver_to_trip(self, trip_id: int, driver_id: int) -> None:
        """
        Атомарно закрепляет водителя за поездкой.
        Все связи-кандидаты поездки и водителя удаляются в той же транзакции.
        Строка водителя блокируется первой (FOR UPDATE), поэтому
        add_candidate для этого водителя не может вклиниться между
        назначением и удалением его пар.

        Raises:
            AssignmentConflict: Поездка уже назначена или водитель занят
        """
        try:
            async with self._db.transaction() as conn:
                await conn.execute("SELECT 1 FROM drivers WHERE id = $1 FOR UPDATE", driver_id)
                updated = await conn.fetchval(
                    """
                    UPDATE trips
                    SET status = $3, driver_id = $2, assigned_at = NOW()
                    WHERE id = $1 AND status = $4
                    RETURNING id
                    """,
                    trip_id,
                    driver_id,
                    TripStatus.ASSIGNED.value,
                    TripStatus.NEW.value,
                )
                if updated is None:
                    raise AssignmentConflict(trip_id, driver_id, "поездка не в статусе new")

                await conn.execute(
                    "DELETE FROM trip_candidates WHERE trip_id = $1 OR driver_id = $2",
                    trip_id,
                    driver_id,
                )
        except asyncpg.UniqueViolationError as e:
            raise AssignmentConflict(trip_id, driver_id, "водитель уже занят") from e

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ МЕТОДЫ
    # =========================================================================

    @staticmethod
    def _row_to_driver(row: Record) -> Driver:
        return Driver(
            id=row["id"],
            name=row["name"],
            latitude=row["latitude"],
            longitude=row["longitude"],
            area_id=row["area_id"],
        )

    @staticmethod
    def _row_to_trip(row: Record) -> Trip:
        return Trip(
            id=row["id"],
            pickup_latitude=row["pickup_latitude"],
            pickup_longitude=row["pickup_longitude"],
            dropoff_latitude=row["dropoff_latitude"],
            dropoff_longitude=row["dropoff_longitude"],
            shape=row["shape"],
            status=TripStatus(row["status"]),
            driver_id=row["driver_id"],
            created_at=row["created_at"],
            assigned_at=row["assigned_at"],
            completed_at=row["completed_at"],
        )
