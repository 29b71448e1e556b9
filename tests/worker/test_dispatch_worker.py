# tests/worker/test_dispatch_worker.py
"""
Тесты для воркера диспетчеризации.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.common.constants import IngestStatus
from src.config.loader import DispatchSettings
from src.core.dispatch.models import Driver, IngestResult, Location, TickReport
from src.worker.dispatch import DispatchWorker, create_dispatch_service, last_known_location


def _driver(driver_id: int) -> Driver:
    return Driver(id=driver_id, name=f"Driver {driver_id}", latitude=37.78, longitude=-122.41)


@pytest.fixture
def mock_service() -> MagicMock:
    service = MagicMock()
    service.repository.get_all_drivers = AsyncMock(return_value=[_driver(1), _driver(2)])
    service.ingest = AsyncMock(side_effect=lambda driver_id, location: IngestResult(driver_id, IngestStatus.UPDATED))
    service.tick = AsyncMock(return_value=TickReport())
    service.close = AsyncMock()
    return service


@pytest.fixture
def worker(mock_service: MagicMock, dispatch_config: DispatchSettings) -> DispatchWorker:
    return DispatchWorker(service=mock_service, config=dispatch_config)


class TestDispatchWorker:
    """Тесты для DispatchWorker."""

    def test_name(self, worker: DispatchWorker) -> None:
        assert worker.name == "DispatchWorker"

    @pytest.mark.asyncio
    async def test_timer_per_driver_and_tick(self, worker: DispatchWorker) -> None:
        await worker.start()
        try:
            assert worker.timer_count == 3
        finally:
            await worker.stop()

    @pytest.mark.asyncio
    async def test_timers_drive_ingest_and_tick(self, worker: DispatchWorker, mock_service: MagicMock) -> None:
        await worker.start()
        await asyncio.sleep(0.12)
        await worker.stop()

        ingested = {call.args[0] for call in mock_service.ingest.await_args_list}
        assert ingested == {1, 2}
        assert mock_service.tick.await_count >= 1

    @pytest.mark.asyncio
    async def test_custom_location_provider(self, mock_service: MagicMock, dispatch_config: DispatchSettings) -> None:
        target = Location(37.870242, -122.268234)
        provider = AsyncMock(return_value=target)
        worker = DispatchWorker(service=mock_service, location_provider=provider, config=dispatch_config)

        await worker.start()
        await asyncio.sleep(0.05)
        await worker.stop()

        assert mock_service.ingest.await_args_list[0].args[1] == target

    @pytest.mark.asyncio
    async def test_no_drivers_still_ticks(self, mock_service: MagicMock, dispatch_config: DispatchSettings) -> None:
        mock_service.repository.get_all_drivers.return_value = []
        worker = DispatchWorker(service=mock_service, config=dispatch_config)

        await worker.start()
        await asyncio.sleep(0.08)
        await worker.stop()

        assert worker.timer_count == 0
        mock_service.ingest.assert_not_awaited()
        assert mock_service.tick.await_count >= 1

    @pytest.mark.asyncio
    async def test_storage_failure_on_start(self, mock_service: MagicMock, worker: DispatchWorker) -> None:
        mock_service.repository.get_all_drivers.side_effect = ConnectionRefusedError("db down")

        with pytest.raises(ConnectionRefusedError):
            await worker.start()

        assert worker.is_running is False

    @pytest.mark.asyncio
    async def test_close_does_not_close_injected_service(self, worker: DispatchWorker, mock_service: MagicMock) -> None:
        await worker.close()

        mock_service.close.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_close_owned_service(self, dispatch_config: DispatchSettings) -> None:
        owned = MagicMock()
        owned.close = AsyncMock()

        with patch("src.worker.dispatch.create_dispatch_service", return_value=owned):
            worker = DispatchWorker(config=dispatch_config)
            await worker.close()

        owned.close.assert_awaited_once()


class TestHelpers:
    @pytest.mark.asyncio
    async def test_last_known_location(self) -> None:
        assert await last_known_location(_driver(1)) == Location(37.78, -122.41)

    def test_create_dispatch_service(self, mock_db: MagicMock) -> None:
        with patch("src.worker.dispatch.GeofencingService") as geofencing, \
             patch("src.worker.dispatch.RoutingService") as routing:
            service = create_dispatch_service(mock_db)

        assert service.repository._db is mock_db
        geofencing.assert_called_once_with()
        routing.assert_called_once_with()
