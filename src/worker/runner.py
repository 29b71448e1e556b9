# src/worker/runner.py
"""
Запускалка воркера диспетчеризации.
"""

from __future__ import annotations

import asyncio

from src.worker.dispatch import DispatchWorker
from src.infra.database import init_db, close_db
from src.common.logger import log_info, log_error
from src.common.constants import TypeMsg


async def run_workers(init_infra: bool = True) -> None:
    """
    Запускает DispatchWorker и ждёт отмены.

    Args:
        init_infra: Если True, подключает БД и применяет схему.
                    main.py передаёт False, если БД уже подключена.
    """
    await log_info("Запуск DispatchWorker...", type_msg=TypeMsg.INFO)

    if init_infra:
        await log_info("Инициализация инфраструктуры для воркера...", type_msg=TypeMsg.DEBUG)
        await init_db()

    worker = DispatchWorker()

    try:
        await worker.start()

        # Ждём завершения (Ctrl+C)
        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
    finally:
        await worker.stop()
        await worker.close()

        if init_infra:
            await close_db()

        await log_info("Воркер остановлен", type_msg=TypeMsg.INFO)


def main() -> None:
    """Точка входа."""
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
