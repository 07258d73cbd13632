from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from chatrelay.core.limiter import CooldownRateLimiter
from chatrelay.main import create_app
from chatrelay.services.database_service import DatabaseService
from tests.utils import FakeClock, FakeEmbedder, FakeGenerator, build_coordinator


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> DatabaseService:
    return DatabaseService(engine=engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limiter(clock) -> CooldownRateLimiter:
    return CooldownRateLimiter(cooldown_seconds=3.0, sweep_interval_seconds=60.0, clock=clock)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def coordinator(store, rate_limiter, generator):
    return build_coordinator(store, rate_limiter, generator)


@pytest.fixture
def app(store, rate_limiter, generator, embedder):
    return create_app(
        store=store,
        generator=generator,
        embedder=embedder,
        rate_limiter=rate_limiter,
        context_strategy="semantic",
    )


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
