# src/infra/here_client.py
"""
Базовый HTTP клиент HERE Location Services.
"""

from __future__ import annotations

from typing import Any

import httpx

from src.common.constants import TypeMsg
from src.common.exceptions import OracleUnavailable
from src.common.logger import log_error, log_info
from src.config.loader import HereApiSettings


class HereApiClient:
    """
    Общая часть клиентов HERE: учётные данные, таймаут, обработка ошибок.

    Любая сетевая ошибка, HTTP статус 4xx/5xx или невалидный JSON
    логируются и пробрасываются как OracleUnavailable.
    """

    service_name = "HERE API"

    def __init__(self, config: HereApiSettings | None = None) -> None:
        """
        Инициализация клиента.

        Args:
            config: Настройки HERE (берутся из конфига если None)
        """
        if config is None:
            from src.config import settings
            config = settings.here

        self._config = config
        self._client = httpx.AsyncClient(timeout=config.HTTP_TIMEOUT)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def _request_json(
        self,
        method: str,
        url: str,
        params: dict[str, Any],
        files: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Выполняет запрос с учётными данными и возвращает тело ответа.

        Raises:
            OracleUnavailable: Сервис недоступен или ответил ошибкой
        """
        query = {**params, **self._config.credentials}
        try:
            if method == "POST":
                response = await self._client.post(url, params=query, files=files)
            else:
                response = await self._client.get(url, params=query)
            response.raise_for_status()
            if not response.content:
                return {}
            data = response.json()
        except httpx.HTTPStatusError as e:
            await log_error(
                f"{self.service_name} вернул ошибку {e.response.status_code}",
                extra={"url": url, "status": e.response.status_code, "body": e.response.text[:500]},
            )
            raise OracleUnavailable(f"{self.service_name}: HTTP {e.response.status_code}", cause=e) from e
        except httpx.HTTPError as e:
            await log_error(
                f"Ошибка запроса к {self.service_name}: {e}",
                extra={"url": url, "cause": type(e).__name__},
            )
            raise OracleUnavailable(f"{self.service_name} недоступен: {e}", cause=e) from e
        except ValueError as e:
            await log_error(f"{self.service_name} вернул невалидный JSON: {e}", extra={"url": url})
            raise OracleUnavailable(f"{self.service_name}: невалидный ответ", cause=e) from e

        if not isinstance(data, dict):
            await log_error(f"{self.service_name} вернул неожиданный ответ", extra={"url": url})
            raise OracleUnavailable(f"{self.service_name}: неожиданный формат ответа")

        await log_info(
            f"{self.service_name}: {method} {url}",
            type_msg=TypeMsg.DEBUG,
        )
        return data

    async def _malformed(self, what: str, cause: BaseException | None = None) -> OracleUnavailable:
        """Логирует и создаёт ошибку разбора ответа."""
        await log_error(
            f"{self.service_name}: некорректная структура ответа ({what})",
            extra={"cause": type(cause).__name__ if cause else None},
        )
        return OracleUnavailable(f"{self.service_name}: некорректная структура ответа ({what})", cause=cause)
