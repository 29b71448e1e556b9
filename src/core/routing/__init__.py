# src/core/routing/__init__.py
"""Модуль маршрутизации."""

from src.core.routing.service import RoutingService, isolines_to_wkt

__all__ = ["RoutingService", "isolines_to_wkt"]
