# src/core/geofencing/service.py
"""
Сервис геофенсинга (HERE Geofencing Extension / Custom Location Extension).
Определяет, в какие регионы и пользовательские зоны попадает точка,
и публикует пользовательский слой зон.
"""

from __future__ import annotations

import io
import zipfile
from typing import Any, Mapping, Sequence

from src.common.constants import ADMIN_KEY_ATTRIBUTE, TypeMsg
from src.common.exceptions import InvalidInput
from src.common.logger import log_info
from src.config.loader import HereApiSettings
from src.core.dispatch.models import Location, RegionDescriptor
from src.infra.here_client import HereApiClient

WKT_FILENAME = "wktUpload.wkt"
WKT_ID_COLUMN = "ID"


def build_wkt_layer(shapes_by_id: Mapping[Any, str], id_column: str = WKT_ID_COLUMN) -> str:
    """
    Формирует WKT файл слоя: заголовок и строки "id<TAB>shape".

    Args:
        shapes_by_id: Зоны, ключ - идентификатор записи
        id_column: Имя колонки идентификатора
    """
    lines = [f"{id_column}\tWKT"]
    lines.extend(f"{key}\t{shape}" for key, shape in shapes_by_id.items())
    return "\n".join(lines) + "\n"


def zip_wkt_layer(wkt: str) -> bytes:
    """Упаковывает WKT в zip (обязательно для загрузки слоя)."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        archive.writestr(WKT_FILENAME, wkt)
    return buffer.getvalue()


class GeofencingService(HereApiClient):
    """
    Клиент геофенсинга.

    Реализует:
    - Поиск административных регионов, содержащих точку
    - Поиск записей пользовательских слоёв, содержащих точку
    - Полную перезапись пользовательского слоя
    """

    service_name = "HERE Geofencing"

    def __init__(
        self,
        config: HereApiSettings | None = None,
        admin_layer_ids: Sequence[str] | None = None,
        id_column: str | None = None,
    ) -> None:
        super().__init__(config)
        if admin_layer_ids is None or id_column is None:
            from src.config import settings
            admin_layer_ids = admin_layer_ids or settings.dispatch.ADMIN_LAYER_IDS
            id_column = id_column or settings.dispatch.LAYER_ID_ATTRIBUTE
        self._admin_layer_ids = list(admin_layer_ids)
        self._id_column = id_column

    async def find(self, location: Location) -> list[RegionDescriptor]:
        """
        Ищет административные регионы, содержащие точку.

        Args:
            location: Точка

        Returns:
            Регионы (пустой список, если точка вне всех слоёв)
        """
        data = await self._request_json(
            "GET",
            self._config.GEOFENCING_URL,
            params={
                "layer_ids": ",".join(self._admin_layer_ids),
                "key_attributes": ",".join([ADMIN_KEY_ATTRIBUTE] * len(self._admin_layer_ids)),
                "proximity": location.as_lat_lon,
            },
        )

        regions = []
        try:
            for geometry in self._inside(data):
                attributes = geometry["attributes"]
                regions.append(RegionDescriptor(
                    name=attributes.get("NAME", ""),
                    admin_layer=int(attributes["ADMIN_ORDER"]),
                    admin_place_id=int(attributes["ADMIN_PLACE_ID"]),
                ))
        except (KeyError, TypeError, ValueError) as e:
            raise await self._malformed("geometries", e) from e

        await log_info(
            f"Найдено {len(regions)} регионов для точки {location.as_lat_lon}",
            type_msg=TypeMsg.DEBUG,
        )
        return regions

    async def search(
        self,
        location: Location,
        layer_ids: Sequence[str],
        key_attributes: Sequence[str],
    ) -> list[str]:
        """
        Ищет записи пользовательских слоёв, содержащие точку.

        Args:
            location: Точка
            layer_ids: ID слоёв
            key_attributes: Ключевой атрибут для каждого слоя

        Returns:
            Значения ключевых атрибутов найденных записей
        """
        if not layer_ids or len(layer_ids) != len(key_attributes):
            raise InvalidInput("Для каждого слоя нужен ровно один ключевой атрибут")

        data = await self._request_json(
            "GET",
            self._config.CUSTOM_LAYER_SEARCH_URL,
            params={
                "layer_ids": ",".join(layer_ids),
                "key_attributes": ",".join(key_attributes),
                "proximity": location.as_lat_lon,
            },
        )

        keys = []
        try:
            for geometry in self._inside(data):
                # layerId отсутствует, если в запросе был один слой
                layer_id = geometry.get("layerId")
                if layer_id in layer_ids:
                    key_attribute = key_attributes[list(layer_ids).index(layer_id)]
                else:
                    key_attribute = key_attributes[0]
                value = geometry["attributes"].get(key_attribute)
                if value is not None:
                    keys.append(str(value))
        except (KeyError, TypeError, AttributeError) as e:
            raise await self._malformed("geometries", e) from e

        return keys

    async def upload(self, layer_id: str, shapes_by_id: Mapping[Any, str]) -> None:
        """
        Полностью перезаписывает пользовательский слой.
        Пустой набор зон очищает слой.

        Args:
            layer_id: ID слоя
            shapes_by_id: Зоны (WKT), ключ - идентификатор записи
        """
        wkt = build_wkt_layer(shapes_by_id, self._id_column)
        await self._request_json(
            "POST",
            self._config.CUSTOM_LAYER_UPLOAD_URL,
            params={"layer_id": layer_id},
            files={"zipfile": (f"{WKT_FILENAME}.zip", zip_wkt_layer(wkt), "application/zip")},
        )

        await log_info(
            f"Слой {layer_id} перезаписан: {len(shapes_by_id)} зон",
            type_msg=TypeMsg.DEBUG,
            extra={"layer_id": layer_id, "shapes": len(shapes_by_id)},
        )

    @staticmethod
    def _inside(data: dict[str, Any]) -> list[dict[str, Any]]:
        """Геометрии, внутри которых находится точка (distance <= 0)."""
        geometries = data.get("geometries") or []
        return [geometry for geometry in geometries if geometry["distance"] <= 0]
