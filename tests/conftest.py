"""Shared fixtures for the test suite."""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from questkernel.config import Settings
from questkernel.engine.coordinator import Coordinator
from questkernel.engine.router import get_coordinator
from questkernel.main import app

# Mid-morning on a Monday, UTC
T0 = datetime(2026, 2, 16, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Deterministic collaborators
# ---------------------------------------------------------------------------


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FixedRandom(random.Random):
    """random.Random whose random() always returns `value`."""

    def __init__(self, value: float):
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


class RecordingSink:
    def __init__(self):
        self.batches: list[dict[str, str]] = []

    def __call__(self, documents: dict[str, str]) -> None:
        self.batches.append(documents)


# ---------------------------------------------------------------------------
# Fake DB session (no real Postgres needed)
# ---------------------------------------------------------------------------


class FakeSession:
    """Minimal stand-in for AsyncSession used in store/persistence tests."""

    def __init__(self, rows: list[dict[str, Any]] | None = None):
        self._rows = rows or []
        self.executed: list[tuple[str, dict[str, Any] | None]] = []
        self.commits = 0

    async def execute(self, stmt, params=None):
        self.executed.append((str(stmt), params))
        return FakeResult(self._rows)

    async def commit(self):
        self.commits += 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class SlowSession(FakeSession):
    """FakeSession whose statements take `delay` seconds each."""

    def __init__(self, delay: float, rows: list[dict[str, Any]] | None = None):
        super().__init__(rows)
        self.delay = delay

    async def execute(self, stmt, params=None):
        await asyncio.sleep(self.delay)
        return await super().execute(stmt, params)


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = rows
        self._keys = list(rows[0].keys()) if rows else []

    def keys(self):
        return self._keys

    def fetchall(self):
        return [tuple(r[k] for k in self._keys) for r in self._rows]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def test_settings():
    return Settings(_env_file=None, default_tz="UTC", kernel_api_key=None)


@pytest.fixture()
def clock():
    return FixedClock()


@pytest.fixture()
def sink():
    return RecordingSink()


@pytest.fixture()
def coordinator(test_settings, clock, sink):
    """Coordinator whose criticals never fire."""
    return Coordinator(settings=test_settings, clock=clock, rng=FixedRandom(0.99), on_commit=sink)


@pytest.fixture()
def fake_session():
    return FakeSession()


@pytest.fixture()
def override_coordinator(coordinator):
    """Override the FastAPI dependency so no lifespan/DB is needed."""
    app.dependency_overrides[get_coordinator] = lambda: coordinator
    yield coordinator
    app.dependency_overrides.clear()


@pytest.fixture()
async def client(override_coordinator):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
