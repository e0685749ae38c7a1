"""HTTP client for the push notification gateway."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from dailyq.shared.config import Settings, get_settings

logger = logging.getLogger(__name__)


class PushGatewayError(Exception):
    """Raised when a batch could not be delivered to the push gateway."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PushGatewayClient:
    """Sends message batches to the gateway with a bounded number of attempts.

    Transport errors and 5xx responses are retried immediately up to
    ``max_attempts`` in total. A 4xx response is never retried.

    Use as an async context manager, or pass an existing ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.url = self.settings.push_gateway_url
        self.max_attempts = max(1, self.settings.push_max_attempts)
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "PushGatewayClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.settings.push_timeout_seconds),
                headers={"Accept": "application/json", "Content-Type": "application/json"},
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def send_batch(self, messages: List[Dict[str, Any]]) -> Dict[str, Any]:
        """POST one batch and return the decoded gateway response."""
        if self._client is None:
            raise RuntimeError("PushGatewayClient used outside of its context")

        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                response = await self._client.post(
                    self.url,
                    json=messages,
                    timeout=self.settings.push_timeout_seconds,
                )
            except httpx.TransportError as e:
                last_error = e
                logger.warning(
                    f"Push gateway transport error (attempt {attempt}/{self.max_attempts}): {e}"
                )
                continue
            except httpx.HTTPError as e:
                raise PushGatewayError(f"Push gateway request failed: {e}") from e

            if response.status_code >= 500:
                last_error = PushGatewayError(
                    f"Push gateway returned {response.status_code}",
                    status_code=response.status_code,
                )
                logger.warning(
                    f"Push gateway returned {response.status_code} "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                continue

            if response.status_code >= 400:
                raise PushGatewayError(
                    f"Push gateway rejected batch with {response.status_code}: {response.text[:200]}",
                    status_code=response.status_code,
                )

            try:
                return response.json()
            except ValueError:
                return {}

        raise PushGatewayError(
            f"Push gateway failed after {self.max_attempts} attempts: {last_error}",
            status_code=getattr(last_error, "status_code", None),
        )
