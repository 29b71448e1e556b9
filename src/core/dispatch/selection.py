# src/core/dispatch/selection.py
"""
Выбор ближайшего кандидата по времени в пути.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional, Sequence

from src.core.dispatch.models import Driver, DriverEta, MatrixEntry


def select_closest_candidate(
    drivers: Sequence[Driver],
    matrix: Iterable[MatrixEntry],
) -> Optional[DriverEta]:
    """
    Выбирает водителя с минимальным временем в пути.

    Элементы матрицы сопоставляются водителям по start_index.
    Элементы без оценки (недостижимые) и с индексом вне списка
    не участвуют. При равенстве побеждает водитель, стоящий раньше в списке.

    Args:
        drivers: Кандидаты в порядке появления
        matrix: Ответ матрицы маршрутизации (одна точка назначения)

    Returns:
        Победитель или None, если никто не достижим
    """
    etas: dict[int, float] = {}
    for entry in matrix:
        if entry.eta_seconds is None or not 0 <= entry.start_index < len(drivers):
            continue
        eta = float(entry.eta_seconds)
        if math.isnan(eta):
            continue
        # несколько назначений в ответе: берём лучшее
        if entry.start_index not in etas or eta < etas[entry.start_index]:
            etas[entry.start_index] = eta

    best: Optional[DriverEta] = None
    for index, driver in enumerate(drivers):
        eta = etas.get(index)
        if eta is None:
            continue
        if best is None or eta < best.eta_seconds:
            best = DriverEta(driver=driver, eta_seconds=eta)

    return best
