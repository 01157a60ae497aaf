from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

import httpx

logger = logging.getLogger("civic_auth.notifier")


class HttpAccountNotifier:
    """Hands account emails to an HTTP mail relay.

    Delivery is reported as a boolean; relay outages never fail the calling flow.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 5.0,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = http_client is None
        self.client = http_client or httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def send_password_reset(self, email: str, first_name: str | None, token: str, expires_at: datetime) -> bool:
        return await self._send(
            "/messages/password-reset",
            {"to": email, "first_name": first_name, "token": token, "expires_at": expires_at.isoformat()},
        )

    async def send_email_verification(
        self, email: str, first_name: str | None, token: str, expires_at: datetime
    ) -> bool:
        return await self._send(
            "/messages/email-verification",
            {"to": email, "first_name": first_name, "token": token, "expires_at": expires_at.isoformat()},
        )

    async def _send(self, path: str, payload: Mapping[str, Any]) -> bool:
        try:
            response = await self.client.post(path, json=dict(payload))
        except httpx.HTTPError as exc:
            logger.warning("mail relay unreachable", extra={"path": path, "error": str(exc)})
            return False
        if response.status_code >= 400:
            logger.warning("mail relay rejected message", extra={"path": path, "status_code": response.status_code})
            return False
        return True
