# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины - config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.common.constants import ADMIN_LAYER_IDS


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "dispatch_demo"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "dispatcher"


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/dispatch.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760
    LOG_BACKUP_COUNT: int = 5


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "dispatch_demo"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 60

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class HereApiSettings(BaseModel):
    """Настройки HERE Location Services (геофенсинг, матрица, изолинии)."""
    HERE_APP_ID: str = ""
    HERE_APP_CODE: str = ""
    GEOFENCING_URL: str = "https://maps.gfe.cit.api.here.com/1/search/proximity.json"
    CUSTOM_LAYER_SEARCH_URL: str = "https://cle.cit.api.here.com/2/search/proximity.json"
    CUSTOM_LAYER_UPLOAD_URL: str = "https://cle.cit.api.here.com/2/layers/upload.json"
    MATRIX_ROUTING_URL: str = "https://matrix.route.cit.api.here.com/routing/7.2/calculatematrix.json"
    ISOLINE_ROUTING_URL: str = "https://isoline.route.cit.api.here.com/routing/7.2/calculateisoline.json"
    HTTP_TIMEOUT: float = 10.0
    ROUTING_MODE: str = "fastest;car;traffic:enabled"

    @field_validator("HERE_APP_ID", "HERE_APP_CODE", mode="before")
    @classmethod
    def get_from_env(cls, v: str, info) -> str:
        """Получает учётные данные из переменных окружения, если не заданы."""
        if not v:
            return os.getenv(info.field_name, "")
        return v

    @property
    def credentials(self) -> dict[str, str]:
        """Параметры авторизации, добавляемые к каждому запросу."""
        return {"app_id": self.HERE_APP_ID, "app_code": self.HERE_APP_CODE}


class DispatchSettings(BaseModel):
    """Настройки цикла диспетчеризации."""
    DISPATCH_TICK_INTERVAL: float = 10.0
    DRIVER_LOCATION_INTERVAL: float = 6.0
    CUSTOM_LAYER_ID: str = "ON_DEMAND_DEMO_LAYER"
    LAYER_ID_ATTRIBUTE: str = "ID"
    ADMIN_LAYER_IDS: list[str] = Field(default_factory=lambda: list(ADMIN_LAYER_IDS))
    PICKUP_REACH_SECONDS: int = 300
    REFRESH_DRIVER_AREA: bool = False
    DEMO_DURATION: float = 35.0


class DemoArea(BaseModel):
    """Область обслуживания для начального заполнения."""
    name: str
    admin_layer: int
    admin_place_id: int


class DemoDriver(BaseModel):
    """Водитель для начального заполнения."""
    name: str
    latitude: float
    longitude: float


class DemoPoint(BaseModel):
    """Точка на карте."""
    latitude: float
    longitude: float


class DemoSettings(BaseModel):
    """Данные для демонстрационного сценария."""
    AREAS: list[DemoArea] = Field(default_factory=list)
    DRIVERS: list[DemoDriver] = Field(default_factory=list)
    PICKUP: DemoPoint = Field(default_factory=lambda: DemoPoint(latitude=37.870242, longitude=-122.268234))
    DROPOFF: DemoPoint = Field(default_factory=lambda: DemoPoint(latitude=37.787526, longitude=-122.407603))


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    here: HereApiSettings = Field(default_factory=HereApiSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    demo: DemoSettings = Field(default_factory=DemoSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты переопределяются из переменных окружения.
        """
        config_data = load_config_json()

        # Фильтруем комментарии (ключи, начинающиеся с _comment_)
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "dispatch_demo"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=data.get("ENVIRONMENT", "development"),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "dispatcher")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=data.get("LOG_LEVEL", "DEBUG"),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/dispatch.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
                LOG_BACKUP_COUNT=data.get("LOG_BACKUP_COUNT", 5),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "dispatch_demo")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 2),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 10),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
            ),
            here=HereApiSettings(
                HERE_APP_ID=os.getenv("HERE_APP_ID", data.get("HERE_APP_ID", "")),
                HERE_APP_CODE=os.getenv("HERE_APP_CODE", data.get("HERE_APP_CODE", "")),
                GEOFENCING_URL=data.get("GEOFENCING_URL", HereApiSettings.model_fields["GEOFENCING_URL"].default),
                CUSTOM_LAYER_SEARCH_URL=data.get(
                    "CUSTOM_LAYER_SEARCH_URL", HereApiSettings.model_fields["CUSTOM_LAYER_SEARCH_URL"].default
                ),
                CUSTOM_LAYER_UPLOAD_URL=data.get(
                    "CUSTOM_LAYER_UPLOAD_URL", HereApiSettings.model_fields["CUSTOM_LAYER_UPLOAD_URL"].default
                ),
                MATRIX_ROUTING_URL=data.get(
                    "MATRIX_ROUTING_URL", HereApiSettings.model_fields["MATRIX_ROUTING_URL"].default
                ),
                ISOLINE_ROUTING_URL=data.get(
                    "ISOLINE_ROUTING_URL", HereApiSettings.model_fields["ISOLINE_ROUTING_URL"].default
                ),
                HTTP_TIMEOUT=data.get("HTTP_TIMEOUT", 10.0),
                ROUTING_MODE=data.get("ROUTING_MODE", "fastest;car;traffic:enabled"),
            ),
            dispatch=DispatchSettings(
                DISPATCH_TICK_INTERVAL=data.get("DISPATCH_TICK_INTERVAL", 10.0),
                DRIVER_LOCATION_INTERVAL=data.get("DRIVER_LOCATION_INTERVAL", 6.0),
                CUSTOM_LAYER_ID=data.get("CUSTOM_LAYER_ID", "ON_DEMAND_DEMO_LAYER"),
                LAYER_ID_ATTRIBUTE=data.get("LAYER_ID_ATTRIBUTE", "ID"),
                ADMIN_LAYER_IDS=data.get("ADMIN_LAYER_IDS", list(ADMIN_LAYER_IDS)),
                PICKUP_REACH_SECONDS=data.get("PICKUP_REACH_SECONDS", 300),
                REFRESH_DRIVER_AREA=data.get("REFRESH_DRIVER_AREA", False),
                DEMO_DURATION=data.get("DEMO_DURATION", 35.0),
            ),
            demo=DemoSettings(
                AREAS=data.get("DEMO_AREAS", []),
                DRIVERS=data.get("DEMO_DRIVERS", []),
                PICKUP=data.get("DEMO_PICKUP", {"latitude": 37.870242, "longitude": -122.268234}),
                DROPOFF=data.get("DEMO_DROPOFF", {"latitude": 37.787526, "longitude": -122.407603}),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
