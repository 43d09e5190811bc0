"""Shared HTTP plumbing for provider clients."""

from typing import Any

import httpx
import structlog

from app.services.engine.errors import ExternalProviderError

logger = structlog.get_logger(__name__)


class ProviderHTTPClient:
    """
    Base class for JSON-over-HTTP providers.

    Supports:
    - Async context manager lifecycle
    - An injected httpx.AsyncClient (tests pass one with a MockTransport)
    - Classification of transport and status errors into ExternalProviderError
    """

    provider_name = "provider"

    def __init__(
        self,
        base_url: str,
        timeout: float = 6.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self):
        await self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._http_client

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET ``base_url + path`` and decode JSON.

        Raises:
            ExternalProviderError: Retryable for timeouts, 429 and 5xx;
                not retryable for other 4xx or undecodable bodies
        """
        url = f"{self.base_url}/{path.lstrip('/')}"
        client = await self._get_client()
        try:
            response = await client.get(url, params=params, headers=self._headers())
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ExternalProviderError(
                f"{self.provider_name} timed out: {url}"
            ) from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            retryable = status == 429 or status >= 500
            logger.warning(
                "provider_http_error",
                provider=self.provider_name,
                status_code=status,
                url=url,
                response_text=e.response.text[:200] if e.response.text else "",
            )
            raise ExternalProviderError(
                f"{self.provider_name} returned {status} for {url}",
                retryable=retryable,
                status_code=status,
            ) from e
        except httpx.HTTPError as e:
            raise ExternalProviderError(f"{self.provider_name} request failed: {e}") from e

        try:
            return response.json()
        except ValueError as e:
            raise ExternalProviderError(
                f"{self.provider_name} returned a non-JSON body for {url}",
                retryable=False,
            ) from e
