"""Shared fixtures: a manual clock and an in-process licensing server."""
from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import httpx
import pytest

from nlweb_licensing.app.storage import InMemoryOptionStore
from nlweb_licensing.config import LicensingConfig
from nlweb_licensing.wiring import LicensingServices, build_licensing_services

BASE_LICENSE_KEY = "NLWEB-PRO-0123456789abcdef0123456789abcdef"

Handler = Callable[[httpx.Request], httpx.Response]


class ManualClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeLicenseServer:
    """Routes requests by path and records everything it receives."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self.offline = False
        self._routes: Dict[str, List[Handler]] = {}

    def on(self, path: str, handler: Handler) -> None:
        self._routes[path] = [handler]

    def reply(self, path: str, body: Optional[Dict[str, Any]] = None, status_code: int = 200) -> None:
        self.reply_sequence(path, [(status_code, body)])

    def reply_sequence(self, path: str, replies: List[Tuple[int, Optional[Dict[str, Any]]]]) -> None:
        self._routes[path] = [self._static(status_code, body) for status_code, body in replies]

    def calls(self, path: str) -> List[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def payloads(self, path: str) -> List[Dict[str, Any]]:
        return [json.loads(request.content) for request in self.calls(path)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.offline:
            raise httpx.ConnectError("Connection refused", request=request)
        queue = self._routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"detail": "Not found"})
        # The last handler in a sequence keeps answering.
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        return responder(request)

    @staticmethod
    def _static(status_code: int, body: Optional[Dict[str, Any]]) -> Handler:
        def respond(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, json=body if body is not None else {})

        return respond


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config() -> LicensingConfig:
    return LicensingConfig(
        server_url="https://licensing.example.com",
        site_url="https://www.example.com",
        encryption_secret="test-encryption-secret-0123456789",
        host_version="6.4",
        runtime_version="3.12.1",
    )


@pytest.fixture
def server() -> FakeLicenseServer:
    return FakeLicenseServer()


@pytest.fixture
def http_client(server: FakeLicenseServer) -> Iterator[httpx.Client]:
    client = httpx.Client(transport=httpx.MockTransport(server.handler))
    yield client
    client.close()


@pytest.fixture
def store() -> InMemoryOptionStore:
    return InMemoryOptionStore()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_services(
    config: LicensingConfig,
    store: InMemoryOptionStore,
    http_client: httpx.Client,
    sleeps: List[float],
    clock: ManualClock,
) -> Callable[..., LicensingServices]:
    def factory(**overrides: Any) -> LicensingServices:
        observers = overrides.pop("observers", ())
        addon_event_logger = overrides.pop("addon_event_logger", None)
        return build_licensing_services(
            replace(config, **overrides),
            store=store,
            http_client=http_client,
            observers=observers,
            addon_event_logger=addon_event_logger,
            sleep=sleeps.append,
            clock=clock,
        )

    return factory


@pytest.fixture
def services(make_services: Callable[..., LicensingServices]) -> LicensingServices:
    return make_services()


@pytest.fixture
def license_key() -> str:
    return BASE_LICENSE_KEY


@pytest.fixture
def licensed_services(make_services: Callable[..., LicensingServices], license_key: str) -> LicensingServices:
    return make_services(license_key=license_key)
