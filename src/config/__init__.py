# src/config/__init__.py
"""
Конфигурация диспетчера.
Экспортирует настройки приложения и секции, используемые сервисами.
"""

from src.config.loader import (
    DatabaseSettings,
    DispatchSettings,
    HereApiSettings,
    Settings,
    get_settings,
    settings,
)

__all__ = [
    "DatabaseSettings",
    "DispatchSettings",
    "HereApiSettings",
    "Settings",
    "get_settings",
    "settings",
]
