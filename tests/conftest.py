from __future__ import annotations

from collections.abc import Generator

import fakeredis
import pytest
from fastapi.testclient import TestClient

from turnq.config import Settings


@pytest.fixture()
def server() -> fakeredis.FakeServer:
    """One fake Redis server per test; share it to simulate several clients."""

    return fakeredis.FakeServer()


@pytest.fixture()
def r(server: fakeredis.FakeServer) -> fakeredis.FakeRedis:
    return fakeredis.FakeRedis(server=server, decode_responses=True)


@pytest.fixture()
def client_and_redis(r: fakeredis.FakeRedis) -> Generator[tuple[TestClient, fakeredis.FakeRedis], None, None]:
    """FastAPI TestClient wired to fakeredis and default (pin-less) settings."""

    from turnq.api.deps import get_redis, get_settings
    from turnq.main import app

    def _override() -> Generator[fakeredis.FakeRedis, None, None]:
        yield r

    app.dependency_overrides[get_redis] = _override
    app.dependency_overrides[get_settings] = lambda: Settings()
    with TestClient(app) as c:
        yield c, r
    app.dependency_overrides.clear()
