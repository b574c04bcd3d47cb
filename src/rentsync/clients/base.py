"""Shared request layer for both remote systems.

BaseApiClient owns the behaviour both clients must agree on:
- Bearer auth headers and per-operation timeouts (TIMEOUT_MUTATE / TIMEOUT_READ)
- 429 handling (tenacity): sleep base * 2^(attempt-1) seconds (capped at
  max_delay) and resend, up to max_attempts; past the cap a RateLimitError
  is raised
- 404 on a lookup returns None instead of raising
- Other non-success statuses raise the matching ApiError subclass
- Transport timeouts raise ApiTimeoutError
- Reads retry transient connection errors (tenacity, 3 attempts, 1-10s);
  writes are never resent except after a 429, which the server rejected
  before doing anything

Every call is reported to an optional api_call_recorder (ApiCallLog rows)
and counted in Prometheus.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from src.rentsync.core.exceptions import ApiTimeoutError, RateLimitError, status_error
from src.rentsync.observability.metrics import remote_api_calls_total

logger = structlog.get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
ApiCallRecorder = Callable[..., Awaitable[Any]]

# Connection-level failures on idempotent reads only
_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.RemoteProtocolError)),
    reraise=True,
)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff schedule for 429 responses."""

    max_attempts: int = 5
    base_delay: float = 5.0
    max_delay: float = 80.0

    def wait(self) -> wait_exponential:
        """base * 2^(attempt-1) seconds after each rate-limited attempt, capped."""
        return wait_exponential(multiplier=self.base_delay, exp_base=2, max=self.max_delay)


class BaseApiClient:
    """Async HTTP client with rate-limit backoff and not-found handling.

    Args:
        token: Bearer token for the remote system.
        base_url: Root URL; request paths are relative to it.
        backoff: 429 retry schedule.
        sleep: Awaitable used between 429 retries (injectable for tests).
        transport: Optional httpx transport (MockTransport in tests).
        api_call_recorder: Optional coroutine receiving one call trace per request.
    """

    SYSTEM = "remote"

    # Timeouts per operation type
    TIMEOUT_MUTATE = 30.0  # create/update/delete operations
    TIMEOUT_READ = 15.0    # get/list operations

    def __init__(
        self,
        token: str,
        base_url: str,
        backoff: BackoffPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
        transport: httpx.AsyncBaseTransport | None = None,
        api_call_recorder: ApiCallRecorder | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        self._backoff = backoff or BackoffPolicy()
        self._sleep = sleep
        self._transport = transport
        self._recorder = api_call_recorder

    @property
    def backoff(self) -> BackoffPolicy:
        return self._backoff

    def set_api_call_recorder(self, recorder: ApiCallRecorder | None) -> None:
        self._recorder = recorder

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=timeout,
            transport=self._transport,
        )

    async def _send(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send one logical request, resending only after 429 responses."""
        timeout = self.TIMEOUT_READ if method == "GET" else self.TIMEOUT_MUTATE

        def log_backoff(retry_state: RetryCallState) -> None:
            logger.warning(
                f"{self.SYSTEM}_client.rate_limited",
                method=method,
                endpoint=path,
                attempt=retry_state.attempt_number,
                delay_seconds=retry_state.next_action.sleep,
            )

        def give_up(retry_state: RetryCallState) -> httpx.Response:
            logger.warning(
                f"{self.SYSTEM}_client.rate_limit_exhausted",
                method=method,
                endpoint=path,
                attempts=retry_state.attempt_number,
            )
            raise RateLimitError(self.SYSTEM, path, retry_state.attempt_number, method)

        retrying = AsyncRetrying(
            sleep=self._sleep,
            retry=retry_if_result(lambda response: response.status_code == 429),
            wait=self._backoff.wait(),
            stop=stop_after_attempt(self._backoff.max_attempts),
            before_sleep=log_backoff,
            retry_error_callback=give_up,
        )
        return await retrying(self._send_once, method, path, json, params, timeout)

    async def _send_once(
        self,
        method: str,
        path: str,
        json: Any,
        params: dict[str, Any] | None,
        timeout: float,
    ) -> httpx.Response:
        start = time.monotonic()
        try:
            async with self._client(timeout) as client:
                response = await client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            await self._record(method, path, json, None, None, start)
            raise ApiTimeoutError(self.SYSTEM, path, method) from exc

        await self._record(method, path, json, response.status_code, response.text, start)
        return response

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
        not_found_ok: bool = False,
    ) -> Any:
        """Send a request and decode the JSON body.

        Returns:
            Decoded JSON, or None for 204/empty bodies and for 404 when
            ``not_found_ok`` is set.
        """
        response = await self._send(method, path, json=json, params=params)

        if response.status_code == 404 and not_found_ok:
            logger.info(f"{self.SYSTEM}_client.not_found", method=method, endpoint=path)
            return None

        if not response.is_success:
            raise self._error_for(response, method, path)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @_read_retry
    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """GET that treats 404 as None and retries connection errors."""
        return await self._request("GET", path, params=params, not_found_ok=True)

    def _error_for(self, response: httpx.Response, method: str, path: str) -> Exception:
        """Map a failed response to an exception. Subclasses add 409 handling."""
        logger.error(
            f"{self.SYSTEM}_client.request_failed",
            method=method,
            endpoint=path,
            status_code=response.status_code,
        )
        return status_error(self.SYSTEM, response.status_code, response.text, method, path)

    async def _record(
        self,
        method: str,
        path: str,
        request_body: Any,
        status: int | None,
        response_text: str | None,
        start: float,
    ) -> None:
        duration_ms = int((time.monotonic() - start) * 1000)
        remote_api_calls_total.labels(
            system=self.SYSTEM,
            method=method,
            status=str(status) if status is not None else "timeout",
        ).inc()
        if self._recorder is None:
            return
        try:
            await self._recorder(
                target_system=self.SYSTEM,
                method=method,
                endpoint=path,
                request_body=request_body,
                response_status=status,
                response_body=response_text[:4000] if response_text else None,
                duration_ms=duration_ms,
            )
        except Exception:
            # Call tracing is diagnostics only; the request itself already completed
            logger.warning(f"{self.SYSTEM}_client.record_failed", endpoint=path, exc_info=True)
