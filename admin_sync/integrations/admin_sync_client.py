from typing import Any

from .base_client import BaseApiClient
from admin_sync.core.config import settings

SECRET_HEADER = "x-admin-sync-secret"


class AdminSyncError(Exception):
    """Административная система ответила не-2xx."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Admin sync failed ({status_code}): {body}")


class AdminSyncConfigError(Exception):
    def __init__(self, message: str = "Admin sync config missing"):
        super().__init__(message)


class AdminSyncClient(BaseApiClient):
    """POSTs outbox payloads to the administrative system's ingestion API."""

    def __init__(self, base_url: str | None = None, secret: str | None = None, timeout: float | None = None):
        base_url = base_url if base_url is not None else settings.ADMIN_SYNC_URL
        self.secret = secret if secret is not None else settings.ADMIN_SYNC_SECRET
        self.configured = bool(base_url and self.secret)
        # Базовый URL всегда со слэшем на конце, чтобы путь не затирал префикс
        if base_url and not base_url.endswith("/"):
            base_url = f"{base_url}/"
        super().__init__(base_url=base_url or "",
                         timeout=timeout if timeout is not None else settings.ADMIN_SYNC_TIMEOUT_SECONDS)

    async def send(self, path: str, payload: Any) -> None:
        """
        Доставляет одно событие. Любой ответ вне 2xx -> AdminSyncError
        со статусом и телом ответа; повторов здесь нет.
        """
        if not self.configured:
            raise AdminSyncConfigError()

        url = path[1:] if path.startswith("/") else path
        response = await self._request(
            "POST",
            url,
            json=payload if payload is not None else {},
            headers={"content-type": "application/json", SECRET_HEADER: self.secret},
        )
        if not response.is_success:
            raise AdminSyncError(response.status_code, response.text or "")
