# src/core/__init__.py
"""
Доменный слой (Core Domain).
Диспетчеризация поездок и клиенты геосервисов.
"""

from src.core.dispatch import DispatchRepository, DispatchService, Location
from src.core.geofencing import GeofencingService
from src.core.routing import RoutingService

__all__ = [
    "DispatchRepository",
    "DispatchService",
    "Location",
    "GeofencingService",
    "RoutingService",
]
