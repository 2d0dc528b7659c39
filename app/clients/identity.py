from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from app.services.exceptions import DownstreamServiceError

logger = logging.getLogger(__name__)

# Statuses the token endpoint uses to say the credential is not valid.
INVALID_TOKEN_STATUSES = (401, 403)


class IdentityServiceClient:
    """Async HTTP client for the hosted identity provider (Supabase-style API)."""

    def __init__(
        self,
        base_url: str | None,
        *,
        api_key: str | None = None,
        service_key: str | None = None,
        timeout: float = 10.0,
        use_mock_data: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = str(base_url).rstrip("/") if base_url else None
        self._api_key = api_key
        self._service_key = service_key or api_key
        self._timeout = timeout
        self._transport = transport
        self.use_mock_data = use_mock_data or not self._base_url
        self._client: Optional[httpx.AsyncClient] = None

    def _build_client(self) -> httpx.AsyncClient:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["apikey"] = self._api_key
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self.use_mock_data or not self._base_url:
            raise RuntimeError("HTTP client requested while running in mock mode")
        if self._client is None:
            self._client = self._build_client()
        return self._client

    async def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        """Resolve a bearer token to the provider's user record, or None if invalid."""

        client = await self._ensure_client()
        try:
            response = await client.get(
                "/auth/v1/user", headers={"Authorization": f"Bearer {token}"}
            )
            if response.status_code in INVALID_TOKEN_STATUSES:
                logger.warning("Identity provider rejected token (%s)", response.status_code)
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.exception("Identity provider returned error %s", exc.response.status_code)
            raise DownstreamServiceError(
                "Identity provider returned an error response",
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach identity provider: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach identity provider", status_code=None, cause=exc
            ) from exc

    async def get_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Fetch the application profile (role, company, active flag) for a user."""

        client = await self._ensure_client()
        headers = {}
        if self._service_key:
            headers = {"apikey": self._service_key, "Authorization": f"Bearer {self._service_key}"}
        try:
            response = await client.get(
                "/rest/v1/user",
                params={"id": f"eq.{user_id}", "select": "*"},
                headers=headers,
            )
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as exc:
            logger.exception("Identity provider returned error %s", exc.response.status_code)
            raise DownstreamServiceError(
                "Identity provider returned an error response",
                status_code=exc.response.status_code,
                cause=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.exception("Unable to reach identity provider: %s", exc)
            raise DownstreamServiceError(
                "Unable to reach identity provider", status_code=None, cause=exc
            ) from exc

        if isinstance(rows, list):
            return rows[0] if rows else None
        return rows
