from __future__ import annotations

import inspect
from datetime import datetime
from typing import Any, Callable

import httpx
import pytest

from teia_status.config import RetryConfig, StatusConfig, load_config
from teia_status.drift import DriftEvaluator
from teia_status.guards import ProbeGuards
from teia_status.http_client import StatusHttpClient
from teia_status.models import ReferenceHeight, utc_now
from teia_status.probes.base import ProbeContext
from teia_status.reference import ReferenceClock


_ENV_VARS = (
    "TEIA_STATUS_CONFIG",
    "LOG_LEVEL",
    "CHECK_INTERVAL_SECONDS",
    "NFT_STORAGE_KEY",
    "GITHUB_TOKEN",
    "DAO_VOTES_ENABLED",
)


class Router:
    """
    Routes requests of an httpx.MockTransport by method, URL and (optionally)
    a substring of the request body, so several GraphQL queries can share one
    endpoint. Unmatched requests get a 404.
    """

    def __init__(self) -> None:
        self.routes: list[tuple[str, httpx.URL, str | None, Any]] = []
        self.calls: list[httpx.Request] = []

    def add(self, url: str, responder: Any, *, method: str = "GET", contains: str | None = None) -> None:
        self.routes.append((method.upper(), httpx.URL(url), contains, responder))

    def json(self, url: str, payload: Any, *, status: int = 200, method: str = "GET") -> None:
        self.add(url, httpx.Response(status, json=payload), method=method)

    def text(self, url: str, body: str, *, status: int = 200, method: str = "GET", headers: dict[str, str] | None = None) -> None:
        self.add(url, httpx.Response(status, text=body, headers=headers or {}), method=method)

    def graphql(self, url: str, data: Any, *, contains: str | None = None, errors: Any = None) -> None:
        payload: dict[str, Any] = {"data": data}
        if errors is not None:
            payload = {"errors": errors}
        self.add(url, httpx.Response(200, json=payload), method="POST", contains=contains)

    def fail(self, url: str, exc_type: type[Exception] = httpx.ConnectError, *, method: str = "GET", contains: str | None = None) -> None:
        def _raise(request: httpx.Request) -> httpx.Response:
            raise exc_type("simulated failure", request=request)

        self.add(url, _raise, method=method, contains=contains)

    def count(self, url: str) -> int:
        target = httpx.URL(url)
        return sum(1 for r in self.calls if r.url == target)

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        body = request.content.decode("utf-8") if request.content else ""
        for method, url, contains, responder in self.routes:
            if request.method != method or request.url != url:
                continue
            if contains is not None and contains not in body:
                continue
            if callable(responder):
                result = responder(request)
                if inspect.isawaitable(result):
                    result = await result
                return result
            return responder
        return httpx.Response(404, text="no route")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch) -> StatusConfig:
    for var in _ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    cfg = load_config()
    return cfg.model_copy(update={"retry": RetryConfig(retries=0, delay_seconds=0.0)})


@pytest.fixture
def router() -> Router:
    return Router()


@pytest.fixture
def make_ctx(config: StatusConfig, router: Router) -> Callable[..., ProbeContext]:
    def _make(
        *,
        reference_level: int | None = None,
        known_level: int | None = None,
        now: datetime | None = None,
        cfg: StatusConfig | None = None,
    ) -> ProbeContext:
        cfg = cfg or config
        clock_now = now or utc_now()
        reference = ReferenceClock.from_config(cfg)
        if reference_level is not None:
            reference.current = ReferenceHeight(
                level=reference_level,
                known_level=known_level if known_level is not None else reference_level,
                observed_at=clock_now,
            )
        return ProbeContext(
            http=StatusHttpClient.from_config(router.client(), cfg),
            config=cfg,
            reference=reference,
            drift=DriftEvaluator(),
            guards=ProbeGuards(),
            clock=lambda: clock_now,
        )

    return _make
