"""
Pytest configuration and shared fixtures.

Environment variables are set before any geonotes import so the cached
settings (and the module-level app in geonotes.main) see the test values.
"""

import math
import os
from datetime import datetime, timedelta, timezone

import jwt
import pytest

TEST_AUTH_SECRET = "geonotes-test-secret-with-32-plus-bytes"

os.environ.setdefault("AUTH_TOKEN_SECRET", TEST_AUTH_SECRET)
os.environ.setdefault("DATABASE_URL", "sqlite:///./geonotes-test.db")
os.environ.setdefault("PURGE_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

# Clear settings cache before any app imports to ensure test env vars are used
from geonotes.config import Settings, get_settings  # noqa: E402
get_settings.cache_clear()

from fastapi.testclient import TestClient  # noqa: E402

from geonotes.backends import IndexedBackend, ScanBackend  # noqa: E402
from geonotes.geo import METERS_PER_DEGREE, GeoPoint  # noqa: E402
from geonotes.storage import Database  # noqa: E402


class FakeClock:
    """A controllable clock; every store in a test shares one instance."""

    def __init__(self, start: datetime = datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


def offset(point: GeoPoint, north_m: float = 0.0, east_m: float = 0.0) -> GeoPoint:
    """Move `point` by roughly the given meters (fine for sub-kilometer offsets)."""
    dlat = north_m / METERS_PER_DEGREE
    dlon = east_m / (METERS_PER_DEGREE * math.cos(math.radians(point.lat)))
    return GeoPoint(lat=point.lat + dlat, lon=point.lon + dlon)


BACKENDS = ["scan", "scan-unbucketed", "indexed"]


def build_store(kind: str, database: Database, clock: FakeClock, retention_seconds: int = 24 * 60 * 60):
    if kind == "scan":
        store = ScanBackend(database, clock=clock, retention_seconds=retention_seconds, bucket_size_m=500.0)
    elif kind == "scan-unbucketed":
        store = ScanBackend(database, clock=clock, retention_seconds=retention_seconds, bucket_size_m=0)
    elif kind == "indexed":
        store = IndexedBackend(database, clock=clock)
    else:
        raise ValueError(kind)
    store.init_schema()
    return store


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    """A fresh file-backed SQLite database per test."""
    db = Database(f"sqlite:///{tmp_path / 'geonotes.db'}")
    yield db
    db.dispose()


@pytest.fixture(params=BACKENDS)
def store(request, database, clock):
    """Every backend, so contract tests double as equivalence tests."""
    return build_store(request.param, database, clock)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        AUTH_TOKEN_SECRET=TEST_AUTH_SECRET,
        DATABASE_URL=f"sqlite:///{tmp_path / 'geonotes.db'}",
        PURGE_INTERVAL_SECONDS=0,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def client(store, settings):
    """Test client wired to the parametrized store."""
    from geonotes.main import create_app

    app = create_app(settings=settings, store=store)
    with TestClient(app) as test_client:
        yield test_client


def make_token(user_id: str, username: str, secret: str = TEST_AUTH_SECRET, exp: float = None) -> str:
    """Sign a bearer token the way the account service does."""
    claims = {"sub": user_id, "username": username}
    if exp is not None:
        claims["exp"] = exp
    return jwt.encode(claims, secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Return a helper building Authorization headers for a user."""
    def _headers(user_id: str = "u1", username: str = "alice", **kwargs) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, username, **kwargs)}"}
    return _headers


@pytest.fixture
def token_factory():
    return make_token
