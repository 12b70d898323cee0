"""
Secondary backend transport: callback-padded responses.

The legacy service has no cross-origin request support. Each call names a
globally unique callback; the service answers with `<callback>(<json>)` and
the body is routed to the slot waiting under that name.

Calls cannot be cancelled once sent. A call that exceeds its timeout
resolves with a timeout sentinel; its slot becomes a tombstone so a late
answer is recognised and dropped, and the tombstone is purged after a
grace period.
"""

import asyncio
import json
import random
import re
import uuid
from typing import Any

import httpx
from loguru import logger

from seatsync.services.clock import Clock, SystemClock
from seatsync.services.errors import ErrorType
from seatsync.services.results import ApiResult, coerce_result
from seatsync.transport.base import Transport


class CallbackRegistry:
    """Callback slots keyed by globally unique callback names."""

    def __init__(self, clock: Clock | None = None, grace: float = 60.0):
        self._clock = clock or SystemClock()
        self._grace = grace
        self._slots: dict[str, asyncio.Future] = {}
        self._tombstones: dict[str, float] = {}
        self.late_responses = 0

    @staticmethod
    def new_name(operation: str) -> str:
        safe = re.sub(r"\W", "_", operation)
        return f"jsonpCallback_{safe}_{uuid.uuid4().hex}"

    def register(self, name: str) -> asyncio.Future:
        if name in self._slots or name in self._tombstones:
            raise ValueError(f"Callback '{name}' is already registered")
        future = asyncio.get_running_loop().create_future()
        self._slots[name] = future
        return future

    def deliver(self, name: str, payload: Any) -> bool:
        """Route a payload to its slot. Returns False if nobody is waiting."""
        future = self._slots.pop(name, None)
        if future is not None:
            if not future.done():
                future.set_result(payload)
            return True

        if name in self._tombstones:
            self.late_responses += 1
            logger.debug(f"[CallbackRegistry] Ignoring late response for {name}")
        else:
            logger.warning(f"[CallbackRegistry] Response for unknown callback {name}")
        return False

    def expire(self, name: str) -> None:
        """Stop waiting on a slot, keeping a tombstone for late answers."""
        future = self._slots.pop(name, None)
        if future is not None and not future.done():
            future.cancel()
        self._tombstones[name] = self._clock.now() + self._grace

    def purge_expired(self) -> int:
        """Drop tombstones whose grace period has passed."""
        now = self._clock.now()
        expired = [name for name, until in self._tombstones.items() if until <= now]
        for name in expired:
            del self._tombstones[name]
        return len(expired)

    @property
    def pending_count(self) -> int:
        return len(self._slots)

    @property
    def tombstone_count(self) -> int:
        return len(self._tombstones)


class UrlRotator:
    """Rotates through deployment URLs of the secondary service."""

    def __init__(
        self,
        urls: list[str],
        rotation_interval: float = 300.0,
        clock: Clock | None = None,
        rng: random.Random | None = None,
    ):
        if not urls:
            raise ValueError("At least one secondary URL is required")
        self._urls = list(urls)
        self._rotation_interval = rotation_interval
        self._clock = clock or SystemClock()
        self._rng = rng or random.Random()
        self._index = self._rng.randrange(len(self._urls))
        self._last_rotation = self._clock.now()

    def current(self) -> str:
        self.check_and_rotate()
        return self._urls[self._index]

    def check_and_rotate(self) -> bool:
        now = self._clock.now()
        if len(self._urls) > 1 and now - self._last_rotation >= self._rotation_interval:
            self.rotate()
            return True
        return False

    def rotate(self) -> None:
        self._index = (self._index + 1) % len(self._urls)
        self._last_rotation = self._clock.now()

    def failover_order(self) -> list[str]:
        """Current URL first, the rest in random order."""
        current = self.current()
        others = [u for u in self._urls if u != current]
        self._rng.shuffle(others)
        return [current, *others]

    def get_info(self) -> dict[str, Any]:
        return {
            "index": self._index + 1,
            "total": len(self._urls),
            "url": self._urls[self._index],
        }


class CallbackTransport(Transport):
    """
    Transport for the legacy callback service.

    Usage:
        secondary = CallbackTransport(["https://script.example.com/exec"])
        result = await secondary.invoke("reserveSeats", [...], timeout=20)
    """

    NAME = "secondary"

    def __init__(
        self,
        urls: list[str],
        http_client: httpx.AsyncClient | None = None,
        clock: Clock | None = None,
        grace: float = 60.0,
        rotation_interval: float = 300.0,
        name: str | None = None,
        rng: random.Random | None = None,
    ):
        self._clock = clock or SystemClock()
        self._grace = grace
        self._name = name or self.NAME
        self.urls = UrlRotator(urls, rotation_interval, clock=self._clock, rng=rng)
        self.callbacks = CallbackRegistry(clock=self._clock, grace=grace)
        self._http_client = http_client
        self._owns_client = http_client is None
        self._requests: set[asyncio.Task] = set()

    @property
    def name(self) -> str:
        return self._name

    def is_configured(self) -> bool:
        return True

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(follow_redirects=True)
        return self._http_client

    async def invoke(
        self, operation: str, params: list[Any], timeout: float
    ) -> ApiResult:
        self.callbacks.purge_expired()

        callback = self.callbacks.new_name(operation)
        future = self.callbacks.register(callback)

        request = asyncio.create_task(
            self._send(callback, operation, params, timeout + self._grace)
        )
        self._requests.add(request)
        request.add_done_callback(self._requests.discard)

        try:
            payload = await asyncio.wait_for(asyncio.shield(future), timeout)
        except asyncio.TimeoutError:
            self.callbacks.expire(callback)
            logger.error(f"Secondary call timeout: {operation} ({timeout}s)")
            return ApiResult.timed_out(operation, timeout, source=self.name)
        except asyncio.CancelledError:
            self.callbacks.expire(callback)
            raise

        return self._to_result(operation, payload)

    async def _send(
        self, callback: str, operation: str, params: list[Any], timeout: float
    ) -> None:
        """Issue the request, failing over across URLs, and deliver the answer."""
        client = await self._get_http_client()
        query = {
            "callback": callback,
            "func": operation,
            "params": json.dumps(params, ensure_ascii=False, default=str),
        }

        last_error: Exception | None = None
        for url in self.urls.failover_order():
            try:
                response = await client.get(
                    url,
                    params={**query, "_": str(int(self._clock.timestamp() * 1000))},
                    timeout=timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(f"Secondary request failed on {url}, failing over: {e}")
                continue

            try:
                payload = parse_padded(response.text, callback)
            except ValueError as e:
                logger.warning(f"Invalid secondary response for {operation}: {e}")
                payload = ApiResult.fail(
                    "Invalid API response",
                    ErrorType.INVALID_RESPONSE,
                    source=self.name,
                    data=response.text[:200],
                )
            self.callbacks.deliver(callback, payload)
            return

        error_type = (
            ErrorType.TIMEOUT
            if isinstance(last_error, httpx.TimeoutException)
            else ErrorType.NETWORK_ERROR
        )
        self.callbacks.deliver(
            callback,
            ApiResult.fail(
                f"Secondary request failed: {operation} ({last_error})",
                error_type,
                source=self.name,
            ),
        )

    def _to_result(self, operation: str, payload: Any) -> ApiResult:
        if isinstance(payload, ApiResult):
            return payload
        if isinstance(payload, dict):
            return coerce_result(payload, source=self.name)
        logger.warning(f"Invalid API response for {operation}: {payload!r}")
        return ApiResult.fail(
            "Invalid API response",
            ErrorType.INVALID_RESPONSE,
            source=self.name,
            data=payload,
        )

    def maintenance(self) -> int:
        """Rotate the active URL when due and purge stale tombstones."""
        self.urls.check_and_rotate()
        return self.callbacks.purge_expired()

    async def close(self) -> None:
        for task in list(self._requests):
            task.cancel()
        if self._requests:
            await asyncio.gather(*self._requests, return_exceptions=True)
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None


def parse_padded(body: str, callback: str) -> Any:
    """Extract the JSON argument of `callback(...)`; plain JSON is accepted too."""
    pattern = re.compile(
        r"^\s*(?:/\*\*/\s*)?" + re.escape(callback) + r"\s*\((.*)\)\s*;?\s*$",
        re.DOTALL,
    )
    match = pattern.match(body)
    raw = match.group(1) if match else body
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"not a padded JSON response: {e}") from e
