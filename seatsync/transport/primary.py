"""
Primary backend transport: JSON request/response over HTTP.

Operations are exposed as RPC endpoints:
    POST {base_url}/rpc/{operation}   body: {"params": [...]}

Cancelling the calling task aborts the request.
"""

import json
from typing import Any

import httpx
from loguru import logger

from seatsync.services.errors import (
    AuthError,
    ErrorType,
    RateLimitError,
    RequestTimeoutError,
    TransportError,
    ValidationError,
    error_type_for_status,
)
from seatsync.services.results import ApiResult, coerce_result
from seatsync.transport.base import Transport


class HttpPrimaryTransport(Transport):
    """
    httpx transport for the primary database service.

    Usage:
        primary = HttpPrimaryTransport("https://db.example.com/rest/v1", api_key="...")
        result = await primary.invoke("getSeatData", ["G1", "1", "A", False], timeout=20)
    """

    NAME = "primary"

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        http_client: httpx.AsyncClient | None = None,
        name: str | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._name = name or self.NAME
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return bool(self.base_url)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
        return self._http_client

    async def invoke(
        self, operation: str, params: list[Any], timeout: float
    ) -> ApiResult:
        client = await self._get_http_client()
        url = f"{self.base_url}/rpc/{operation}"

        try:
            response = await client.post(
                url,
                json={"params": params},
                headers=self._headers(),
                timeout=timeout,
            )
            response.raise_for_status()

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(self.name, timeout) from e

        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response) from e

        except httpx.NetworkError as e:
            raise TransportError(
                f"Network error calling '{operation}': {e}",
                backend=self.name,
                error_type=ErrorType.NETWORK_ERROR,
            ) from e

        except httpx.RequestError as e:
            raise TransportError(
                f"Request '{operation}' failed: {e}",
                backend=self.name,
                error_type=ErrorType.FETCH_ERROR,
            ) from e

        return self._parse(operation, response)

    def _status_error(self, response: httpx.Response) -> Exception:
        status = response.status_code
        message = f"HTTP {status}: {response.text[:200]}"

        if status == 429:
            retry_after = response.headers.get("Retry-After")
            try:
                seconds = float(retry_after) if retry_after else None
            except ValueError:
                seconds = None
            return RateLimitError(self.name, seconds)

        error_type = error_type_for_status(status)
        if error_type == ErrorType.AUTH:
            return AuthError(message, backend=self.name)
        if error_type == ErrorType.VALIDATION:
            return ValidationError(message, backend=self.name)
        return TransportError(
            message, backend=self.name, error_type=error_type, status_code=status
        )

    def _parse(self, operation: str, response: httpx.Response) -> ApiResult:
        """Decode a 2xx response into an ApiResult."""
        if response.status_code in (204, 205) or not response.content.strip():
            return ApiResult.ok(None, source=self.name)

        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            return ApiResult.ok(response.text, source=self.name)

        try:
            payload = response.json()
        except json.JSONDecodeError:
            logger.warning(f"Primary returned malformed JSON for '{operation}'")
            return ApiResult.ok(response.text, source=self.name)

        return coerce_result(payload, source=self.name)

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
