# tests/core/test_geofencing_service.py
"""
Тесты для сервиса геофенсинга.
"""

from __future__ import annotations

import io
import zipfile
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.common.exceptions import InvalidInput, OracleUnavailable
from src.config.loader import HereApiSettings
from src.core.dispatch.models import Location, RegionDescriptor
from src.core.geofencing import GeofencingService, build_wkt_layer, zip_wkt_layer

BERKELEY = Location(37.870242, -122.268234)


@pytest.fixture
def geofencing(here_config: HereApiSettings) -> GeofencingService:
    return GeofencingService(
        config=here_config,
        admin_layer_ids=["ADMIN_POLY_1", "ADMIN_POLY_9"],
        id_column="ID",
    )


def _admin_geometry(distance: float, order: int, place_id: int, name: str) -> dict:
    return {
        "distance": distance,
        "layerId": f"ADMIN_POLY_{order}",
        "attributes": {"NAME": name, "ADMIN_ORDER": str(order), "ADMIN_PLACE_ID": str(place_id)},
    }


class TestWktLayer:
    """Формирование файла слоя."""

    def test_build_wkt_layer(self) -> None:
        wkt = build_wkt_layer({1: "MULTIPOLYGON (((0 0, 1 0, 0 0)))", 2: "MULTIPOLYGON (((1 1, 2 1, 1 1)))"})

        assert wkt == (
            "ID\tWKT\n"
            "1\tMULTIPOLYGON (((0 0, 1 0, 0 0)))\n"
            "2\tMULTIPOLYGON (((1 1, 2 1, 1 1)))\n"
        )

    def test_empty_layer_has_only_header(self) -> None:
        assert build_wkt_layer({}, id_column="TRIP") == "TRIP\tWKT\n"

    def test_zip_contains_single_wkt_file(self) -> None:
        with zipfile.ZipFile(io.BytesIO(zip_wkt_layer("ID\tWKT\n"))) as archive:
            assert archive.namelist() == ["wktUpload.wkt"]
            assert archive.read("wktUpload.wkt").decode() == "ID\tWKT\n"


class TestFind:
    """Поиск административных регионов."""

    @pytest.mark.asyncio
    async def test_returns_regions_containing_point(self, geofencing: GeofencingService, make_response) -> None:
        body = {
            "geometries": [
                _admin_geometry(-1, 1, 21009408, "California"),
                _admin_geometry(-12.5, 9, 21010233, "Berkeley"),
                _admin_geometry(250.0, 8, 21010232, "San Francisco"),
            ]
        }

        with patch.object(geofencing._client, "get", AsyncMock(return_value=make_response(json=body))) as mock_get:
            regions = await geofencing.find(BERKELEY)

        assert regions == [
            RegionDescriptor("California", 1, 21009408),
            RegionDescriptor("Berkeley", 9, 21010233),
        ]
        params = mock_get.call_args.kwargs["params"]
        assert params["layer_ids"] == "ADMIN_POLY_1,ADMIN_POLY_9"
        assert params["key_attributes"] == "ADMIN_PLACE_ID,ADMIN_PLACE_ID"
        assert params["proximity"] == "37.870242,-122.268234"

    @pytest.mark.asyncio
    async def test_point_outside_all_layers(self, geofencing: GeofencingService, make_response) -> None:
        with patch.object(geofencing._client, "get", AsyncMock(return_value=make_response(json={"geometries": []}))):
            assert await geofencing.find(BERKELEY) == []

    @pytest.mark.asyncio
    async def test_malformed_attributes(self, geofencing: GeofencingService, make_response) -> None:
        body = {"geometries": [{"distance": -1, "attributes": {"NAME": "X"}}]}

        with patch.object(geofencing._client, "get", AsyncMock(return_value=make_response(json=body))):
            with pytest.raises(OracleUnavailable, match="geometries"):
                await geofencing.find(BERKELEY)


class TestSearch:
    """Поиск в пользовательских слоях."""

    @pytest.mark.asyncio
    async def test_returns_trip_keys(self, geofencing: GeofencingService, make_response) -> None:
        body = {
            "geometries": [
                {"distance": -5, "attributes": {"ID": 3}},
                {"distance": -1, "attributes": {"ID": "7"}},
                {"distance": 40, "attributes": {"ID": "9"}},
            ]
        }

        with patch.object(geofencing._client, "get", AsyncMock(return_value=make_response(json=body))) as mock_get:
            keys = await geofencing.search(BERKELEY, ["TRIPS"], ["ID"])

        assert keys == ["3", "7"]
        assert mock_get.call_args.args[0] == geofencing._config.CUSTOM_LAYER_SEARCH_URL
        assert mock_get.call_args.kwargs["params"]["layer_ids"] == "TRIPS"

    @pytest.mark.asyncio
    async def test_key_attribute_per_layer(self, geofencing: GeofencingService, make_response) -> None:
        body = {
            "geometries": [
                {"distance": -1, "layerId": "B", "attributes": {"ID": "wrong", "CODE": "b1"}},
                {"distance": -1, "layerId": "A", "attributes": {"ID": "a1"}},
            ]
        }

        with patch.object(geofencing._client, "get", AsyncMock(return_value=make_response(json=body))):
            keys = await geofencing.search(BERKELEY, ["A", "B"], ["ID", "CODE"])

        assert keys == ["b1", "a1"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("layer_ids, key_attributes", [([], []), (["A", "B"], ["ID"])])
    async def test_invalid_layer_arguments(
        self, geofencing: GeofencingService, layer_ids: list, key_attributes: list
    ) -> None:
        with patch.object(geofencing._client, "get", AsyncMock()) as mock_get:
            with pytest.raises(InvalidInput):
                await geofencing.search(BERKELEY, layer_ids, key_attributes)

        mock_get.assert_not_called()

    @pytest.mark.asyncio
    async def test_service_unavailable(self, geofencing: GeofencingService) -> None:
        with patch.object(geofencing._client, "get", AsyncMock(side_effect=httpx.ConnectError("refused"))):
            with pytest.raises(OracleUnavailable):
                await geofencing.search(BERKELEY, ["TRIPS"], ["ID"])


class TestUpload:
    """Перезапись пользовательского слоя."""

    @pytest.mark.asyncio
    async def test_uploads_zipped_layer(self, geofencing: GeofencingService, make_response) -> None:
        response = make_response(json={"storedTilesCount": 2}, method="POST")

        with patch.object(geofencing._client, "post", AsyncMock(return_value=response)) as mock_post:
            await geofencing.upload("TRIPS", {4: "MULTIPOLYGON (((0 0, 1 0, 0 0)))"})

        kwargs = mock_post.call_args.kwargs
        assert mock_post.call_args.args[0] == geofencing._config.CUSTOM_LAYER_UPLOAD_URL
        assert kwargs["params"]["layer_id"] == "TRIPS"

        filename, payload, content_type = kwargs["files"]["zipfile"]
        assert filename == "wktUpload.wkt.zip"
        assert content_type == "application/zip"
        with zipfile.ZipFile(io.BytesIO(payload)) as archive:
            assert archive.read("wktUpload.wkt").decode() == "ID\tWKT\n4\tMULTIPOLYGON (((0 0, 1 0, 0 0)))\n"

    @pytest.mark.asyncio
    async def test_upload_failure(self, geofencing: GeofencingService, make_response) -> None:
        response = make_response(status_code=500, json={}, method="POST")

        with patch.object(geofencing._client, "post", AsyncMock(return_value=response)):
            with pytest.raises(OracleUnavailable):
                await geofencing.upload("TRIPS", {})
