from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from teia_status.config import StatusConfig
from teia_status.errors import MalformedResponse, Unreachable


logger = structlog.get_logger(__name__)

_IDEMPOTENT_METHODS = {"GET", "HEAD", "OPTIONS", "PUT", "DELETE"}


def _safe_url(url: str) -> str:
    """
    Keep querystrings and credentials out of logs.
    """
    s = (url or "").strip()
    if not s:
        return s
    try:
        parts = urlsplit(s)
        return urlunsplit((parts.scheme, parts.hostname or parts.netloc, parts.path, "", ""))
    except Exception:
        return s[:500]


def _is_retryable_status(method: str, status_code: int) -> bool:
    if status_code == 429:
        return True
    return status_code >= 500 and method.upper() in _IDEMPOTENT_METHODS


def build_async_client(config: StatusConfig) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        headers={"User-Agent": config.user_agent},
        timeout=config.timeouts.fetch_seconds,
    )


class StatusHttpClient:
    """
    Outbound transport shared by every probe.

    Connection failures (not timeouts), 5xx answers to idempotent requests and
    429 answers are retried with a linear backoff of ``attempt * delay``.
    Everything else that is not a 2xx answer raises ``Unreachable``.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        retries: int = 5,
        retry_delay_seconds: float = 5.0,
        default_timeout: float = 120.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self.retries = max(0, int(retries))
        self.retry_delay_seconds = float(retry_delay_seconds)
        self.default_timeout = float(default_timeout)
        self._sleep = sleep

    @classmethod
    def from_config(cls, client: httpx.AsyncClient, config: StatusConfig) -> "StatusHttpClient":
        return cls(
            client,
            retries=config.retry.retries,
            retry_delay_seconds=config.retry.delay_seconds,
            default_timeout=config.timeouts.fetch_seconds,
        )

    async def _backoff(self, attempt: int, method: str, url: str, reason: str) -> None:
        delay = attempt * self.retry_delay_seconds
        logger.info("Retrying request", method=method, url=_safe_url(url), attempt=attempt, delay_seconds=delay, reason=reason)
        await self._sleep(delay)

    async def request(
        self,
        method: str,
        url: str,
        *,
        timeout: float | None = None,
        headers: dict[str, str] | None = None,
        json: Any = None,
        retries: int | None = None,
    ) -> httpx.Response:
        method = method.upper()
        max_retries = self.retries if retries is None else max(0, int(retries))
        attempt = 0
        while True:
            try:
                resp = await self._client.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    timeout=timeout if timeout is not None else self.default_timeout,
                    follow_redirects=True,
                )
            except httpx.TimeoutException as exc:
                logger.warning("Request timed out", method=method, url=_safe_url(url), error=type(exc).__name__)
                raise Unreachable(url, f"timeout: {type(exc).__name__}") from exc
            except httpx.TransportError as exc:
                if attempt < max_retries:
                    attempt += 1
                    await self._backoff(attempt, method, url, type(exc).__name__)
                    continue
                logger.warning("Request failed", method=method, url=_safe_url(url), error=f"{type(exc).__name__}: {exc}")
                raise Unreachable(url, f"{type(exc).__name__}: {exc}") from exc

            if resp.is_success:
                return resp

            if attempt < max_retries and _is_retryable_status(method, resp.status_code):
                attempt += 1
                await self._backoff(attempt, method, url, f"HTTP {resp.status_code}")
                continue

            logger.warning(
                "Unexpected response status",
                method=method,
                url=_safe_url(url),
                status_code=resp.status_code,
                reason=resp.reason_phrase,
            )
            raise Unreachable(url, resp.reason_phrase or "", status_code=resp.status_code)

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def head(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.request("HEAD", url, **kwargs)

    async def get_text(self, url: str, **kwargs: Any) -> str:
        resp = await self.get(url, **kwargs)
        return resp.text or ""

    async def get_bytes(self, url: str, **kwargs: Any) -> bytes:
        resp = await self.get(url, **kwargs)
        return resp.content or b""

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        resp = await self.get(url, **kwargs)
        try:
            return resp.json()
        except ValueError as exc:
            raise MalformedResponse(_safe_url(url), f"json_parse_error: {exc}") from exc

    async def graphql(
        self,
        endpoint: str,
        query: str,
        *,
        operation_name: str | None = None,
        variables: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """POST a GraphQL document and return its ``data`` mapping."""
        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables
        if operation_name is not None:
            payload["operationName"] = operation_name

        resp = await self.request("POST", endpoint, json=payload, timeout=timeout)
        try:
            body = resp.json()
        except ValueError as exc:
            raise MalformedResponse(_safe_url(endpoint), f"json_parse_error: {exc}") from exc
        if not isinstance(body, dict):
            raise MalformedResponse(_safe_url(endpoint), "graphql response is not an object")
        if body.get("errors"):
            logger.warning("GraphQL errors", url=_safe_url(endpoint), operation=operation_name, errors=str(body["errors"])[:500])
            raise MalformedResponse(_safe_url(endpoint), "graphql errors")
        data = body.get("data")
        if not isinstance(data, dict):
            raise MalformedResponse(_safe_url(endpoint), "graphql response has no data")
        return data
