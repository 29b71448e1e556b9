# src/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, List, Set

from src.common.constants import TypeMsg, WorkerState
from src.common.exceptions import DoubleStartError
from src.common.logger import log_error, log_info


class BaseWorker(ABC):
    """
    Базовый класс для всех воркеров.
    Владеет набором периодических таймеров и их жизненным циклом.

    Каждое срабатывание таймера выполняется отдельной задачей:
    долгий вызов не задерживает ни свой, ни чужие таймеры.
    """

    def __init__(self) -> None:
        self._state = WorkerState.STOPPED
        self._timers: List[asyncio.Task] = []
        self._inflight: Set[asyncio.Task] = set()

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""
        pass

    @abstractmethod
    async def setup_timers(self) -> None:
        """Заводит таймеры через every()."""
        pass

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == WorkerState.RUNNING

    @property
    def timer_count(self) -> int:
        return len(self._timers)

    async def start(self) -> None:
        """
        Запускает воркер.

        Raises:
            DoubleStartError: Воркер уже запущен
        """
        if self.is_running:
            raise DoubleStartError(f"Воркер {self.name} уже запущен")

        self._state = WorkerState.RUNNING
        await log_info(f"Воркер {self.name} запускается...", type_msg=TypeMsg.INFO)

        try:
            await self.setup_timers()
        except Exception:
            await self._cancel_timers()
            self._state = WorkerState.STOPPED
            raise

        await log_info(
            f"Воркер {self.name} запущен, таймеров: {len(self._timers)}",
            type_msg=TypeMsg.INFO,
        )

    async def stop(self) -> None:
        """
        Останавливает воркер.
        Новые срабатывания запрещаются, начатые завершаются сами.
        """
        if not self.is_running:
            return

        self._state = WorkerState.STOPPED
        await self._cancel_timers()

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    def every(
        self,
        interval: float,
        callback: Callable[..., Awaitable[Any]],
        *args: Any,
        name: str = "",
    ) -> asyncio.Task:
        """
        Заводит периодический таймер. Первое срабатывание через interval.

        Args:
            interval: Период (секунды)
            callback: Корутинная функция
            name: Имя таймера для логов
        """
        if interval <= 0:
            raise ValueError(f"Период таймера должен быть положительным: {interval}")

        timer_name = name or getattr(callback, "__name__", "timer")
        task = asyncio.create_task(
            self._timer_loop(interval, callback, args, timer_name),
            name=f"{self.name}:{timer_name}",
        )
        self._timers.append(task)
        return task

    async def _timer_loop(
        self,
        interval: float,
        callback: Callable[..., Awaitable[Any]],
        args: tuple,
        timer_name: str,
    ) -> None:
        while self.is_running:
            await asyncio.sleep(interval)
            if not self.is_running:
                break

            firing = asyncio.create_task(self._fire(callback, args, timer_name))
            self._inflight.add(firing)
            firing.add_done_callback(self._inflight.discard)

    async def _fire(
        self,
        callback: Callable[..., Awaitable[Any]],
        args: tuple,
        timer_name: str,
    ) -> None:
        """Одно срабатывание таймера. Ошибка не останавливает таймер."""
        try:
            await callback(*args)
        except Exception as e:
            await log_error(
                f"Ошибка в воркере {self.name}: {e}",
                extra={"timer": timer_name, "kind": type(e).__name__},
            )

    async def _cancel_timers(self) -> None:
        # Список отсоединяется до ожидания: таймеры нового start() не теряются
        timers, self._timers = self._timers, []
        for task in timers:
            task.cancel()

        if timers:
            await asyncio.gather(*timers, return_exceptions=True)
