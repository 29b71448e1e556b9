#!/usr/bin/env python3
# main.py
"""
Главная точка входа диспетчера поездок.
Запускает воркер диспетчеризации или демонстрационный сценарий.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error, log_warning
from src.common.constants import TypeMsg
from src.common.exceptions import DispatchError
from src.infra.database import init_db, close_db

VALID_MODES = ("dispatcher", "demo")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def run_dispatcher() -> None:
    """Запускает DispatchWorker до сигнала остановки."""
    from src.worker.runner import run_workers

    # БД уже подключена в main()
    task = asyncio.create_task(run_workers(init_infra=False))
    _running_tasks.append(task)
    await asyncio.gather(task, return_exceptions=True)


async def seed_demo_data(service) -> None:
    """Заполняет области и водителей демонстрационными данными (если их нет)."""
    from src.core.dispatch import Location

    repo = service.repository

    stored = {area.admin_key for area in await repo.get_stored_areas()}
    for area in settings.demo.AREAS:
        if f"{area.admin_layer}#{area.admin_place_id}" not in stored:
            await service.register_area(area.name, area.admin_layer, area.admin_place_id)

    if await repo.get_all_drivers():
        await log_info("Водители уже загружены", type_msg=TypeMsg.DEBUG)
        return

    for driver in settings.demo.DRIVERS:
        await service.register_driver(driver.name, Location(driver.latitude, driver.longitude))


async def run_demo() -> None:
    """
    Демонстрационный сценарий:
    1. Поиск ближайшего водителя в области точки подачи
    2. Запрос поездки и работа цикла диспетчеризации DEMO_DURATION секунд
    """
    from src.core.dispatch import Location
    from src.worker.dispatch import DispatchWorker, create_dispatch_service

    service = create_dispatch_service()
    worker = DispatchWorker(service=service)
    pickup = Location(settings.demo.PICKUP.latitude, settings.demo.PICKUP.longitude)
    dropoff = Location(settings.demo.DROPOFF.latitude, settings.demo.DROPOFF.longitude)

    try:
        await seed_demo_data(service)

        await log_info("=== Сценарий: поиск ближайшего водителя ===", type_msg=TypeMsg.INFO)
        closest = await service.find_closest_driver_in_area(pickup)
        if closest is None:
            await log_warning("Свободных водителей в области точки подачи нет")

        await log_info("=== Сценарий: запрос поездки ===", type_msg=TypeMsg.INFO)
        await service.repository.clear_all_trips()
        await worker.start()
        trip_id = await service.request_ride(pickup, dropoff)

        await log_info(
            f"Демонстрация работает {settings.dispatch.DEMO_DURATION:.0f} секунд",
            type_msg=TypeMsg.INFO,
        )
        if _shutdown_event is not None:
            try:
                await asyncio.wait_for(_shutdown_event.wait(), timeout=settings.dispatch.DEMO_DURATION)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(settings.dispatch.DEMO_DURATION)

        trip = await service.repository.get_trip(trip_id)
        if trip is not None and trip.driver_id is not None:
            await log_info(f"Поездка {trip_id} назначена водителю {trip.driver_id}", type_msg=TypeMsg.INFO)
        else:
            await log_info(f"Поездка {trip_id} осталась без водителя", type_msg=TypeMsg.WARNING)
    except DispatchError as e:
        await log_error(f"Демонстрация прервана: {e}", extra={"kind": type(e).__name__})
    finally:
        await worker.stop()
        await service.close()


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (dispatcher, demo).
              Если None, берётся COMPONENT_MODE из настроек.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = settings.system.COMPONENT_MODE
        if mode not in VALID_MODES:
            await log_error(f"Неизвестный COMPONENT_MODE '{mode}'")
            return

    await log_info(
        f"{settings.system.PROJECT_NAME} v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        await init_db()

        if mode == "dispatcher":
            await run_dispatcher()
        elif mode == "demo":
            await run_demo()

    except KeyboardInterrupt:
        await log_info("Получен сигнал остановки (Ctrl+C)", type_msg=TypeMsg.INFO)
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
        raise
    finally:
        if _running_tasks:
            for task in _running_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*_running_tasks, return_exceptions=True)
            _running_tasks.clear()

        await log_info("Завершение работы, закрытие подключений...", type_msg=TypeMsg.INFO)
        try:
            await close_db()
        except Exception as e:
            await log_error(f"Ошибка при закрытии подключений: {e}")
        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Диспетчер поездок

Использование:
    python main.py [mode]

Режимы:
    dispatcher   - цикл диспетчеризации до сигнала остановки
    demo         - демонстрация: поиск водителя, запрос поездки, назначение

Без аргумента режим берётся из COMPONENT_MODE (config/config.json или окружение).
    """)


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
