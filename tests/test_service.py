"""
Tests for ProximityService.

Tests cover:
- Presence validation (zero coordinates are valid)
- Fixed radius and age window
- Ownership mapping on delete
- Storage errors propagating instead of empty results
"""

import asyncio
from contextlib import suppress

import pytest
from sqlalchemy import text

from geonotes.auth import Caller
from geonotes.errors import NotFound, StorageError, Unauthorized, ValidationError
from geonotes.geo import GeoPoint
from geonotes.main import purge_periodically
from geonotes.service import ProximityService

from conftest import offset

ALICE = Caller(user_id="u-alice", display_name="alice")
BOB = Caller(user_id="u-bob", display_name="bob")
CENTER = GeoPoint(lat=40.7128, lon=-74.0060)


@pytest.fixture
def service(store):
    return ProximityService(store, radius_meters=100, max_age_seconds=3600)


class TestCreateMessage:
    """Test ProximityService.create_message."""

    def test_author_comes_from_caller(self, service):
        record = service.create_message(ALICE, "hi", CENTER.lat, CENTER.lon)

        assert record.author_id == "u-alice"
        assert record.author_display_name == "alice"

    @pytest.mark.parametrize(
        "content,lat,lon",
        [(None, 1.0, 1.0), ("  ", 1.0, 1.0), ("hi", None, 1.0), ("hi", 1.0, None)],
    )
    def test_missing_fields(self, service, content, lat, lon):
        with pytest.raises(ValidationError, match="required fields"):
            service.create_message(ALICE, content, lat, lon)

    def test_zero_coordinates_are_valid(self, service):
        record = service.create_message(ALICE, "null island", 0.0, 0.0)
        assert record.location == GeoPoint(lat=0.0, lon=0.0)

    def test_out_of_range(self, service):
        with pytest.raises(ValidationError):
            service.create_message(ALICE, "hi", 123.0, 0.0)


class TestNearby:
    """Test ProximityService.nearby."""

    def test_fixed_radius(self, service):
        near = service.create_message(ALICE, "near", *_coords(offset(CENTER, north_m=80)))
        service.create_message(ALICE, "far", *_coords(offset(CENTER, north_m=120)))

        assert [r.id for r in service.nearby(CENTER.lat, CENTER.lon)] == [near.id]

    def test_fixed_age_window(self, service, clock):
        service.create_message(ALICE, "old", CENTER.lat, CENTER.lon)
        clock.advance(3601)
        fresh = service.create_message(BOB, "fresh", CENTER.lat, CENTER.lon)

        assert [r.id for r in service.nearby(CENTER.lat, CENTER.lon)] == [fresh.id]

    @pytest.mark.parametrize("lat,lon", [(None, 1.0), (1.0, None), (None, None)])
    def test_missing_coordinates(self, service, lat, lon):
        with pytest.raises(ValidationError):
            service.nearby(lat, lon)

    def test_storage_failure_is_not_an_empty_result(self, service, database):
        with database.engine.begin() as conn:
            conn.execute(text("DROP TABLE messages"))

        with pytest.raises(StorageError):
            service.nearby(CENTER.lat, CENTER.lon)


class TestGetAndDelete:
    """Test ProximityService.get_message and delete_message."""

    def test_get_missing(self, service):
        with pytest.raises(NotFound):
            service.get_message("nope")

    def test_delete_flow(self, service):
        record = service.create_message(ALICE, "mine", CENTER.lat, CENTER.lon)

        with pytest.raises(Unauthorized):
            service.delete_message(BOB, record.id)
        assert service.get_message(record.id) == record

        service.delete_message(ALICE, record.id)
        with pytest.raises(NotFound):
            service.delete_message(ALICE, record.id)

    def test_messages_by_caller(self, service):
        mine = service.create_message(ALICE, "mine", CENTER.lat, CENTER.lon)
        service.create_message(BOB, "theirs", CENTER.lat, CENTER.lon)

        assert [r.id for r in service.messages_by(ALICE)] == [mine.id]


class TestPurgeLoop:
    """Test the background retention purge."""

    def test_survives_storage_errors(self):
        calls = []

        class FlakyStore:
            def purge_expired(self):
                calls.append(1)
                if len(calls) == 1:
                    raise StorageError("database is locked")
                return 2

        async def run():
            task = asyncio.create_task(purge_periodically(FlakyStore(), 0.01))
            while len(calls) < 2:
                await asyncio.sleep(0.01)
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        asyncio.run(asyncio.wait_for(run(), timeout=5))
        assert len(calls) >= 2

    def test_survives_unexpected_errors(self):
        calls = []

        class BrokenStore:
            def purge_expired(self):
                calls.append(1)
                if len(calls) == 1:
                    raise RuntimeError("unexpected")
                return 0

        async def run():
            task = asyncio.create_task(purge_periodically(BrokenStore(), 0.01))
            while len(calls) < 2:
                await asyncio.sleep(0.01)
            assert not task.done()
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

        asyncio.run(asyncio.wait_for(run(), timeout=5))
        assert len(calls) >= 2


def _coords(point: GeoPoint):
    return point.lat, point.lon
