# src/worker/dispatch.py
"""
Воркер диспетчеризации.
Имитирует геолокацию водителей и периодически назначает поездки.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.config.loader import DispatchSettings
from src.core.dispatch import DispatchRepository, DispatchService, Driver, Location
from src.core.geofencing import GeofencingService
from src.core.routing import RoutingService
from src.infra.database import DatabaseManager, get_db
from src.worker.base import BaseWorker

LocationProvider = Callable[[Driver], Awaitable[Location]]


async def last_known_location(driver: Driver) -> Location:
    """Геолокация водителя на момент запуска воркера."""
    return driver.location


def create_dispatch_service(db: Optional[DatabaseManager] = None) -> DispatchService:
    """Собирает сервис диспетчеризации с клиентами HERE из конфига."""
    return DispatchService(
        repository=DispatchRepository(db or get_db()),
        geofencing=GeofencingService(),
        routing=RoutingService(),
    )


class DispatchWorker(BaseWorker):
    """
    Воркер диспетчеризации.

    Таймеры:
    - по одному на водителя: приём геолокации (DRIVER_LOCATION_INTERVAL)
    - такт назначения поездок (DISPATCH_TICK_INTERVAL)
    """

    def __init__(
        self,
        service: Optional[DispatchService] = None,
        location_provider: Optional[LocationProvider] = None,
        config: Optional[DispatchSettings] = None,
    ) -> None:
        """
        Args:
            service: Сервис диспетчеризации (создаётся из конфига если None)
            location_provider: Источник геолокации водителя
            config: Настройки диспетчеризации
        """
        super().__init__()
        if config is None:
            from src.config import settings
            config = settings.dispatch

        self._owns_service = service is None
        self._service = service or create_dispatch_service()
        self._location_provider = location_provider or last_known_location
        self._config = config

    @property
    def name(self) -> str:
        return "DispatchWorker"

    @property
    def service(self) -> DispatchService:
        return self._service

    async def setup_timers(self) -> None:
        drivers = await self._service.repository.get_all_drivers()
        for driver in drivers:
            self.every(
                self._config.DRIVER_LOCATION_INTERVAL,
                self._ingest_driver,
                driver,
                name=f"driver-{driver.id}",
            )

        self.every(self._config.DISPATCH_TICK_INTERVAL, self._service.tick, name="dispatch-tick")

        await log_info(
            f"Имитация геолокации для {len(drivers)} водителей",
            type_msg=TypeMsg.DEBUG,
        )

    async def _ingest_driver(self, driver: Driver) -> None:
        location = await self._location_provider(driver)
        await self._service.ingest(driver.id, location)

    async def close(self) -> None:
        """Закрывает HTTP клиенты собственного сервиса."""
        if self._owns_service:
            await self._service.close()
