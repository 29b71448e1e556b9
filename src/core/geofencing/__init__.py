# src/core/geofencing/__init__.py
"""Модуль геофенсинга."""

from src.core.geofencing.service import GeofencingService, build_wkt_layer, zip_wkt_layer

__all__ = ["GeofencingService", "build_wkt_layer", "zip_wkt_layer"]
