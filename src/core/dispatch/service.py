# src/core/dispatch/service.py
"""
Сервис диспетчеризации поездок.

Приём геолокации водителей, такт назначения ближайшего кандидата
и публикация зон неназначенных поездок в геофенсинг.
"""

from __future__ import annotations

from typing import Any, Optional

from src.common.constants import IngestStatus, TypeMsg
from src.common.exceptions import AssignmentConflict, OracleUnavailable
from src.common.logger import log_error, log_info, log_warning
from src.config.loader import DispatchSettings
from src.core.dispatch.models import DriverEta, IngestResult, Location, TickReport, Trip
from src.core.dispatch.repository import DispatchRepository
from src.core.dispatch.selection import select_closest_candidate
from src.core.geofencing.service import GeofencingService
from src.core.routing.service import RoutingService


def _error_extra(error: BaseException, **ids: Any) -> dict[str, Any]:
    """Поля лога для пойманной ошибки: вид, идентификаторы, причина."""
    cause = getattr(error, "cause", None) or error.__cause__ or error
    return {
        "kind": type(error).__name__,
        **ids,
        "cause": f"{type(cause).__name__}: {cause}",
    }


class DispatchService:
    """
    Сервис диспетчеризации.

    ingest и tick вызываются из периодических таймеров, поэтому
    никогда не пробрасывают исключения: ошибка логируется
    и возвращается в результате вызова.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        geofencing: GeofencingService,
        routing: RoutingService,
        config: DispatchSettings | None = None,
    ) -> None:
        """
        Инициализация сервиса.

        Args:
            repository: Хранилище диспетчера
            geofencing: Клиент геофенсинга
            routing: Клиент маршрутизации
            config: Настройки диспетчеризации (из конфига если None)
        """
        if config is None:
            from src.config import settings
            config = settings.dispatch

        self._repo = repository
        self._geofencing = geofencing
        self._routing = routing
        self._config = config

    @property
    def repository(self) -> DispatchRepository:
        return self._repo

    async def close(self) -> None:
        """Закрывает HTTP клиенты геосервисов."""
        await self._geofencing.close()
        await self._routing.close()

    # =========================================================================
    # ГЕОЛОКАЦИЯ ВОДИТЕЛЯ
    # =========================================================================

    async def ingest(self, driver_id: int, location: Location) -> IngestResult:
        """
        Обрабатывает геолокацию водителя.

        Сохраняет координаты. Если водитель свободен, ищет неназначенные
        поездки, в зоне которых он находится, и добавляет его в кандидаты.

        Args:
            driver_id: ID водителя
            location: Текущая геолокация

        Returns:
            Результат обработки (ошибки не пробрасываются)
        """
        try:
            await self._repo.update_driver_location(driver_id, location)

            if self._config.REFRESH_DRIVER_AREA:
                await self._refresh_driver_area(driver_id, location)

            if await self._repo.driver_has_active_assignment(driver_id):
                await log_info(
                    f"Водитель {driver_id} занят, поиск поездок пропущен",
                    type_msg=TypeMsg.DEBUG,
                )
                return IngestResult(driver_id=driver_id, status=IngestStatus.BUSY)

            keys = await self._geofencing.search(
                location,
                [self._config.CUSTOM_LAYER_ID],
                [self._config.LAYER_ID_ATTRIBUTE],
            )
            trip_ids = await self._parse_trip_ids(keys, driver_id)

            if trip_ids:
                added = await self._repo.add_candidate(driver_id, trip_ids)
                await log_info(
                    f"Водитель {driver_id} рядом с поездками {trip_ids}, новых связей: {added}",
                    type_msg=TypeMsg.DEBUG,
                    extra={"driver_id": driver_id, "trip_ids": trip_ids},
                )

            return IngestResult(driver_id=driver_id, status=IngestStatus.UPDATED, trip_ids=trip_ids)
        except Exception as e:
            await log_error(
                f"Ошибка обработки геолокации водителя {driver_id}: {e}",
                extra=_error_extra(e, driver_id=driver_id),
            )
            return IngestResult(driver_id=driver_id, status=IngestStatus.FAILED, error=e)

    async def _refresh_driver_area(self, driver_id: int, location: Location) -> None:
        """Пересчитывает область водителя. Ошибка не прерывает обработку."""
        try:
            area_id = await self.find_area_id_for_location(location)
            await self._repo.set_driver_area(driver_id, area_id)
        except Exception as e:
            await log_warning(
                f"Не удалось обновить область водителя {driver_id}: {e}",
                extra=_error_extra(e, driver_id=driver_id),
            )

    async def _parse_trip_ids(self, keys: list[str], driver_id: int) -> list[int]:
        trip_ids = []
        for key in keys:
            try:
                trip_ids.append(int(key))
            except (TypeError, ValueError):
                await log_warning(
                    f"Некорректный ID поездки в слое геофенсинга: {key!r}",
                    extra={"driver_id": driver_id, "key": key},
                )
        return trip_ids

    # =========================================================================
    # ТАКТ ДИСПЕТЧЕРИЗАЦИИ
    # =========================================================================

    async def tick(self) -> TickReport:
        """
        Один такт диспетчеризации.

        Поездки обрабатываются последовательно: водитель, назначенный
        на поездку раньше в этом такте, уже не кандидат для следующих.
        После назначения слой неназначенных поездок публикуется целиком.

        Returns:
            Итог такта (ошибки не пробрасываются)
        """
        report = TickReport()

        try:
            trips = await self._repo.get_unassigned_trips()
        except Exception as e:
            await log_error(
                f"Не удалось получить неназначенные поездки: {e}",
                extra=_error_extra(e),
            )
            return report

        for trip in trips:
            try:
                winner = await self._dispatch_trip(trip)
            except AssignmentConflict as e:
                report.failed[trip.id] = e
                await log_warning(
                    f"Конфликт назначения поездки {trip.id}: {e}",
                    extra=_error_extra(e, trip_id=trip.id, driver_id=e.driver_id),
                )
                continue
            except Exception as e:
                report.failed[trip.id] = e
                await log_error(
                    f"Ошибка назначения поездки {trip.id}: {e}",
                    extra=_error_extra(e, trip_id=trip.id),
                )
                continue

            if winner is None:
                report.skipped.append(trip.id)
            else:
                report.assigned[trip.id] = winner.driver.id

        report.published = await self.publish_unassigned_layer()

        await log_info(
            f"Такт диспетчеризации: назначено {len(report.assigned)}, "
            f"пропущено {len(report.skipped)}, ошибок {len(report.failed)}",
            type_msg=TypeMsg.DEBUG if not report.assigned else TypeMsg.INFO,
            extra=report.as_log_extra(),
        )
        return report

    async def _dispatch_trip(self, trip: Trip) -> Optional[DriverEta]:
        """
        Назначает ближайшего кандидата на поездку.

        Returns:
            Победитель или None, если кандидатов нет или никто не достижим
        """
        candidates = await self._repo.get_candidate_drivers(trip.id)
        if not candidates:
            return None

        matrix = await self._routing.eta_matrix(
            [driver.location for driver in candidates],
            [trip.pickup],
        )
        winner = select_closest_candidate(candidates, matrix)
        if winner is None:
            await log_info(
                f"Ни один из {len(candidates)} кандидатов не может доехать до поездки {trip.id}",
                type_msg=TypeMsg.WARNING,
                extra={"trip_id": trip.id},
            )
            return None

        await self._repo.assign_driver_to_trip(trip.id, winner.driver.id)
        await log_info(
            f"Водитель {winner.driver.name} ({winner.driver.id}) назначен на поездку {trip.id}, "
            f"ETA {winner.eta_seconds:.0f} с",
            type_msg=TypeMsg.INFO,
            extra={"trip_id": trip.id, "driver_id": winner.driver.id, "eta_seconds": winner.eta_seconds},
        )
        return winner

    async def publish_unassigned_layer(self) -> bool:
        """
        Перезаписывает слой геофенсинга зонами поездок в статусе NEW.

        Returns:
            True при успешной публикации
        """
        try:
            shapes = await self._repo.get_unassigned_trip_shapes()
            await self._geofencing.upload(self._config.CUSTOM_LAYER_ID, shapes)
            return True
        except Exception as e:
            await log_error(
                f"Не удалось опубликовать слой {self._config.CUSTOM_LAYER_ID}: {e}",
                extra=_error_extra(e, layer_id=self._config.CUSTOM_LAYER_ID),
            )
            return False

    # =========================================================================
    # СЦЕНАРИИ
    # =========================================================================

    async def request_ride(self, pickup: Location, dropoff: Location) -> int:
        """
        Создаёт поездку с зоной досягаемости вокруг точки подачи.

        Raises:
            OracleUnavailable: Изохрону построить не удалось
            StorageError: Поездку сохранить не удалось
        """
        shape = await self._routing.reverse_isochrone(pickup, self._config.PICKUP_REACH_SECONDS)
        if not shape:
            raise OracleUnavailable(f"Пустая изохрона для точки {pickup.as_lat_lon}")

        trip_id = await self._repo.create_trip(pickup, dropoff, shape)
        await log_info(
            f"Создана поездка {trip_id}: {pickup.as_lat_lon} -> {dropoff.as_lat_lon}",
            type_msg=TypeMsg.INFO,
            extra={"trip_id": trip_id},
        )
        return trip_id

    async def find_area_id_for_location(self, location: Location) -> Optional[int]:
        """ID обслуживаемой области, содержащей точку."""
        regions = await self._geofencing.find(location)
        return await self._repo.get_matching_area(regions)

    async def find_closest_driver_in_area(self, pickup: Location) -> Optional[DriverEta]:
        """
        Ищет ближайшего водителя в области точки подачи (без назначения).

        Returns:
            Водитель с ETA или None
        """
        area_id = await self.find_area_id_for_location(pickup)
        if area_id is None:
            await log_info(
                f"Точка {pickup.as_lat_lon} вне обслуживаемых областей",
                type_msg=TypeMsg.WARNING,
            )
            return None

        drivers = await self._repo.get_drivers_in_area(area_id)
        if not drivers:
            return None

        matrix = await self._routing.eta_matrix([driver.location for driver in drivers], [pickup])
        closest = select_closest_candidate(drivers, matrix)
        if closest is not None:
            await log_info(
                f"Ближайший водитель {closest.driver.name}: {closest.eta_seconds:.0f} с",
                type_msg=TypeMsg.INFO,
                extra={"area_id": area_id, "driver_id": closest.driver.id},
            )
        return closest

    async def register_area(self, name: str, admin_layer: int, admin_place_id: int) -> int:
        area_id = await self._repo.insert_area(name, admin_layer, admin_place_id)
        await log_info(f"Добавлена область {name} ({admin_layer}#{admin_place_id})", type_msg=TypeMsg.INFO)
        return area_id

    async def register_driver(self, name: str, location: Location) -> int:
        """Добавляет водителя; область определяется геофенсингом."""
        area_id = await self.find_area_id_for_location(location)
        driver_id = await self._repo.insert_driver(name, location, area_id)
        await log_info(
            f"Добавлен водитель {name} (область {area_id})",
            type_msg=TypeMsg.INFO,
            extra={"driver_id": driver_id, "area_id": area_id},
        )
        return driver_id
