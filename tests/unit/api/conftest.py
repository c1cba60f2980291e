"""API test harness: the real app wired to fakes."""

from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest
from fastapi.testclient import TestClient

from deskgate.config import Settings
from deskgate.main import create_app
from deskgate.router.tunnel import WebSocketRelay
from tests.fakes import FakeDriver, FakeSupervisor
from tests.harness import ApiHarness


@pytest.fixture
def api(test_settings: Settings) -> Iterator[ApiHarness]:
    driver = FakeDriver()
    supervisor = FakeSupervisor()
    holder: dict[str, ApiHarness] = {}

    def route(request: httpx.Request) -> httpx.Response:
        return holder["api"].backend(request)

    async def connect(uri: str, **kwargs):
        harness = holder["api"]
        harness.connect_calls.append({"uri": uri, **kwargs})
        if harness.ws_connector is None:
            raise OSError("connection refused")
        return await harness.ws_connector(uri, **kwargs)

    app = create_app(
        test_settings,
        driver=driver,
        supervisor=supervisor,
        relay=WebSocketRelay(open_timeout=1.0, connector=connect),
        transport=httpx.MockTransport(route),
    )
    with TestClient(app) as client:
        harness = ApiHarness(app=app, client=client, driver=driver, supervisor=supervisor)
        holder["api"] = harness
        yield harness
