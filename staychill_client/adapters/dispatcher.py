"""
Request dispatcher for the StayChill REST API.
"""

import asyncio
import time
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from shared.logging import get_logger, set_request_id
from shared.errors import NetworkError, RequestError, RequestTimeoutError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, retry_async
from .identity import IdentityProvider


RETRYABLE_ERRORS = (RequestError, NetworkError, RequestTimeoutError)


async def get_csrf_token() -> Optional[str]:
    """CSRF token for mutating requests.

    The API does not enforce CSRF yet, so this returns None and the header is
    left off. Swap in a real provider once the server issues tokens.
    """
    return None


class RequestDispatcher:
    """Issues API calls with auth headers, retry/backoff and a per-attempt deadline."""

    def __init__(
        self,
        base_url: str,
        identity: Optional[IdentityProvider] = None,
        *,
        timeout: float = 10.0,
        retry_config: Optional[RetryConfig] = None,
        slow_request_threshold_ms: int = 500,
        development: bool = False,
        csrf_provider: Callable[[], Awaitable[Optional[str]]] = get_csrf_token,
        metrics: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self.identity = identity
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig.from_retries(3)
        self.slow_request_threshold_ms = slow_request_threshold_ms
        self.development = development
        self.csrf_provider = csrf_provider
        self.metrics = metrics
        self._transport = transport
        self._sleep = sleep
        self._clock = clock
        self.logger = get_logger("client.dispatcher")

    async def dispatch(
        self,
        method: str,
        url: str,
        body: Any = None,
        *,
        params: Optional[Dict[str, Any]] = None,
        retries: Optional[int] = None,
        retry_on_unauthorized: bool = True,
        retry_on_not_found: bool = True,
    ) -> httpx.Response:
        """Send a request, retrying failures with exponential backoff.

        Raises the last ``RequestError``/``NetworkError``/``RequestTimeoutError``
        once attempts are exhausted.
        """
        method = method.upper()
        request_id = set_request_id(uuid.uuid4().hex[:12])
        endpoint = httpx.URL(url).path

        if retries is None:
            config = self.retry_config
        else:
            config = RetryConfig.from_retries(
                retries,
                base_delay=self.retry_config.base_delay,
                max_delay=self.retry_config.max_delay,
            )

        attempts = 0

        async def attempt() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts > 1 and self.metrics:
                self.metrics.increment_counter("http_retries_total", method=method, endpoint=endpoint)
            return await self._send_once(method, url, body, params, request_id)

        def should_retry(exc: BaseException) -> bool:
            status_code = getattr(exc, "status_code", None)
            if not retry_on_unauthorized and status_code == 401:
                return False
            if not retry_on_not_found and status_code == 404:
                return False
            return True

        try:
            return await retry_async(
                attempt,
                config,
                exceptions=RETRYABLE_ERRORS,
                should_retry=should_retry,
                sleep=self._sleep,
                name="dispatch",
            )
        except RETRYABLE_ERRORS as e:
            self.logger.error(
                "Request failed",
                method=method,
                url=url,
                attempts=attempts,
                error=str(e)
            )
            raise

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        response = await self.dispatch("GET", url, **kwargs)
        return response.json()

    async def _send_once(
        self,
        method: str,
        url: str,
        body: Any,
        params: Optional[Dict[str, Any]],
        request_id: str,
    ) -> httpx.Response:
        headers = await self._build_headers(method, request_id)

        request_params = dict(params or {})
        if method == "GET":
            # defeat intermediate HTTP caches; freshness is managed client-side
            request_params["cache"] = str(round(self._clock() * 1000))

        start = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await asyncio.wait_for(
                    client.request(
                        method,
                        url,
                        params=request_params or None,
                        json=body,
                        headers=headers,
                    ),
                    timeout=self.timeout,
                )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(details={"url": url, "timeout": self.timeout}) from e
        except httpx.TransportError as e:
            raise NetworkError(f"Failed to fetch: {e}", details={"url": url}) from e

        duration_ms = (time.perf_counter() - start) * 1000
        if self.development and duration_ms > self.slow_request_threshold_ms:
            self.logger.warning("Slow request", method=method, url=url, duration_ms=round(duration_ms))

        if self.metrics:
            self.metrics.record_http_request(method, httpx.URL(url).path, response.status_code, duration_ms / 1000)

        if not response.is_success:
            raise self._error_from_response(response)

        return response

    async def _build_headers(self, method: str, request_id: str) -> Dict[str, str]:
        headers = {
            "X-Requested-With": "XMLHttpRequest",
            "X-Request-ID": request_id,
        }

        token = await self._get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if method != "GET":
            csrf_token = await self.csrf_provider()
            if csrf_token:
                headers["X-CSRF-Token"] = csrf_token

        return headers

    async def _get_token(self) -> Optional[str]:
        if self.identity is None:
            return None
        try:
            return await self.identity.get_token()
        except Exception as e:
            self.logger.warning("Could not obtain ID token", error=str(e))
            return None

    def _error_from_response(self, response: httpx.Response) -> RequestError:
        """Build a single ``"<status>: <message>"`` error from a failed response."""
        message = None
        try:
            data = response.json()
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
        except ValueError:
            pass

        if not message:
            message = response.text or response.reason_phrase or "Request failed"

        return RequestError(
            response.status_code,
            str(message),
            details={"url": str(response.url), "method": response.request.method},
        )
