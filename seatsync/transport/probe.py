"""
Lightweight connectivity probe.
"""

from typing import Awaitable, Callable

import httpx
from loguru import logger

Probe = Callable[[], Awaitable[bool]]


def http_probe(
    url: str,
    timeout: float = 5.0,
    http_client: httpx.AsyncClient | None = None,
) -> Probe:
    """
    Build a probe that sends HEAD to url.

    Any 2xx answer, or a 404, proves the network is reachable.
    """

    async def probe() -> bool:
        client = http_client or httpx.AsyncClient()
        try:
            response = await client.head(
                url, timeout=timeout, headers={"Cache-Control": "no-cache"}
            )
            return response.is_success or response.status_code == 404
        except httpx.HTTPError as e:
            logger.debug(f"Connectivity probe to {url} failed: {e}")
            return False
        finally:
            if http_client is None:
                await client.aclose()

    return probe
