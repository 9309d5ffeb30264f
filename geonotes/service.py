"""
ProximityService: the operations exposed at the HTTP boundary.

The service holds no state beyond its store and the fixed query shape, so a
single instance is shared by every request. It does not know which backend
it is talking to.
"""

import logging
from typing import Optional

from geonotes import metrics
from geonotes.auth import Caller
from geonotes.backends import MessageStore
from geonotes.errors import NotFound, ProximityError, ValidationError
from geonotes.geo import GeoPoint
from geonotes.records import MessageRecord

logger = logging.getLogger(__name__)

DEFAULT_RADIUS_METERS = 100.0
DEFAULT_MAX_AGE_SECONDS = 24 * 60 * 60


class ProximityService:
    def __init__(
        self,
        store: MessageStore,
        radius_meters: float = DEFAULT_RADIUS_METERS,
        max_age_seconds: float = DEFAULT_MAX_AGE_SECONDS,
    ):
        self.store = store
        self.radius_meters = radius_meters
        self.max_age_seconds = max_age_seconds

    def create_message(
        self,
        caller: Caller,
        content: Optional[str],
        latitude: Optional[float],
        longitude: Optional[float],
    ) -> MessageRecord:
        # Zero is a valid coordinate, so presence means "not None".
        if content is None or not str(content).strip() or latitude is None or longitude is None:
            metrics.record_message_operation("create", "validation_error")
            raise ValidationError("Please provide all required fields")
        try:
            record = self.store.create(
                content=content,
                location=GeoPoint(lat=latitude, lon=longitude),
                author_id=caller.user_id,
                author_display_name=caller.display_name,
            )
        except ProximityError as e:
            metrics.record_message_operation("create", _result_label(e))
            raise
        metrics.record_message_operation("create", "created")
        return record

    def nearby(self, latitude: Optional[float], longitude: Optional[float]) -> list[MessageRecord]:
        """Messages within the system-wide radius and age window, newest first."""
        if latitude is None or longitude is None:
            metrics.record_message_operation("nearby", "validation_error")
            raise ValidationError("Please provide latitude and longitude")
        try:
            center = GeoPoint(lat=latitude, lon=longitude)
            records = self.store.query_nearby(
                center,
                radius_meters=self.radius_meters,
                max_age_seconds=self.max_age_seconds,
            )
        except ProximityError as e:
            metrics.record_message_operation("nearby", _result_label(e))
            raise
        metrics.record_message_operation("nearby", "ok")
        metrics.record_nearby_results(len(records))
        return records

    def get_message(self, message_id: str) -> MessageRecord:
        record = self.store.get_by_id(message_id)
        if record is None:
            raise NotFound("Message not found")
        return record

    def messages_by(self, caller: Caller, limit: int = 50) -> list[MessageRecord]:
        return self.store.list_by_author(caller.user_id, limit=limit)

    def delete_message(self, caller: Caller, message_id: str) -> None:
        try:
            self.store.delete_by_id(message_id, requester_id=caller.user_id)
        except ProximityError as e:
            metrics.record_message_operation("delete", _result_label(e))
            raise
        metrics.record_message_operation("delete", "deleted")


def _result_label(error: ProximityError) -> str:
    return {
        400: "validation_error",
        401: "unauthorized",
        404: "not_found",
    }.get(error.status_code, "error")
