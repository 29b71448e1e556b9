# src/core/routing/service.py
"""
Сервис маршрутизации (HERE Matrix Routing / Isoline Routing).
Матрица времени в пути и обратные изохроны.
"""

from __future__ import annotations

from typing import Any, Sequence

from src.common.constants import TypeMsg
from src.common.exceptions import InvalidInput
from src.common.logger import log_info
from src.core.dispatch.models import Location, MatrixEntry
from src.infra.here_client import HereApiClient


def isolines_to_wkt(isolines: Sequence[dict[str, Any]]) -> str:
    """
    Преобразует изолинии HERE в WKT MULTIPOLYGON.
    Точки приходят как "lat,lon", WKT ожидает "lon lat".
    """
    polygons = []
    for isoline in isolines:
        for component in isoline["component"]:
            points = []
            for point in component["shape"]:
                latitude, longitude = point.split(",")[:2]
                points.append(f"{longitude.strip()} {latitude.strip()}")
            polygons.append(f"(({', '.join(points)}))")
    return f"MULTIPOLYGON ({', '.join(polygons)})"


class RoutingService(HereApiClient):
    """Клиент маршрутизации."""

    service_name = "HERE Routing"

    async def eta_matrix(
        self,
        starts: Sequence[Location],
        destinations: Sequence[Location],
        profile: str | None = None,
    ) -> list[MatrixEntry]:
        """
        Рассчитывает матрицу времени в пути.

        Args:
            starts: Точки отправления
            destinations: Точки назначения
            profile: Режим маршрутизации (из конфига если None)

        Returns:
            Элементы матрицы; для недостижимых пар eta_seconds = None
        """
        if not starts or not destinations:
            raise InvalidInput("Матрица требует хотя бы одну точку отправления и назначения")

        params: dict[str, Any] = {
            "mode": profile or self._config.ROUTING_MODE,
            "summaryAttributes": "traveltime",
        }
        for index, location in enumerate(starts):
            params[f"start{index}"] = location.as_geo_waypoint
        for index, location in enumerate(destinations):
            params[f"destination{index}"] = location.as_geo_waypoint

        data = await self._request_json("GET", self._config.MATRIX_ROUTING_URL, params=params)

        entries = []
        try:
            for element in (data.get("response") or {}).get("matrixEntry") or []:
                travel_time = (element.get("summary") or {}).get("travelTime")
                entries.append(MatrixEntry(
                    start_index=int(element["startIndex"]),
                    destination_index=int(element["destinationIndex"]),
                    eta_seconds=float(travel_time) if travel_time is not None else None,
                ))
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise await self._malformed("matrixEntry", e) from e

        await log_info(
            f"Матрица {len(starts)}x{len(destinations)}: получено {len(entries)} оценок",
            type_msg=TypeMsg.DEBUG,
        )
        return entries

    async def reverse_isochrone(
        self,
        location: Location,
        range_seconds: int,
        profile: str | None = None,
    ) -> str:
        """
        Строит обратную изохрону: область, из которой точка достижима за range_seconds.

        Returns:
            WKT MULTIPOLYGON (пустая строка, если изолиний нет)
        """
        if range_seconds <= 0:
            raise InvalidInput(f"Диапазон изохроны должен быть положительным: {range_seconds}")

        data = await self._request_json(
            "GET",
            self._config.ISOLINE_ROUTING_URL,
            params={
                "rangeType": "time",
                "range": range_seconds,
                "mode": profile or self._config.ROUTING_MODE,
                "destination": location.as_geo_waypoint,
            },
        )

        isolines = (data.get("response") or {}).get("isoline")
        if not isolines:
            return ""

        try:
            return isolines_to_wkt(isolines)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise await self._malformed("isoline", e) from e
