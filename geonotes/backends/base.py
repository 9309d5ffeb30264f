"""
The MessageStore contract and the plumbing both SQL-backed stores share.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import timedelta
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from geonotes.errors import NotFound, StorageError, Unauthorized, ValidationError
from geonotes.geo import GeoPoint, haversine_m
from geonotes.models import Message
from geonotes.records import (
    Clock,
    MessageRecord,
    format_ts,
    new_message_id,
    normalize_content,
    sort_most_recent_first,
    utc_now,
)
from geonotes.storage import Database

logger = logging.getLogger(__name__)


class MessageStore(ABC):
    """
    Persists geotagged messages and answers proximity queries.

    Implementations differ only in how they narrow the candidate set for
    `query_nearby`; the haversine check in `_within` is always the final
    filter, so every backend returns the same records for the same data.
    """

    name = "base"
    # Seconds a record is kept before purge_expired drops it; None keeps it forever.
    retention_seconds: Optional[float] = None

    def __init__(self, database: Database, clock: Clock = utc_now):
        self._db = database
        self._clock = clock

    # -- contract -------------------------------------------------------------

    def create(self, content: str, location: GeoPoint, author_id: str, author_display_name: str) -> MessageRecord:
        """Validate, stamp and persist a new message."""
        if not isinstance(location, GeoPoint):
            raise ValidationError("location must be a GeoPoint")
        record = MessageRecord(
            id=new_message_id(),
            author_id=author_id,
            author_display_name=author_display_name,
            content=normalize_content(content),
            location=location,
            created_at=self._clock(),
        )
        with self._session("create") as db:
            self._insert(db, record)
            db.commit()
        logger.info(f"Message created: id={record.id}, author={author_id}, backend={self.name}")
        return record

    def get_by_id(self, message_id: str) -> Optional[MessageRecord]:
        with self._session("get") as db:
            row = self._find(db, message_id)
            return row.to_record() if row is not None else None

    def delete_by_id(self, message_id: str, requester_id: str) -> None:
        """
        Delete a message on behalf of `requester_id`.

        Ownership is checked before any mutation. The delete itself is
        conditional on the author, so a record removed between the check and
        the delete surfaces as NotFound rather than a silent success.
        """
        with self._session("delete") as db:
            row = self._find(db, message_id)
            if row is None:
                raise NotFound("Message not found")
            if row.author_id != requester_id:
                logger.warning(f"Delete rejected: message={message_id}, requester={requester_id}")
                raise Unauthorized("User not authorized")
            if not self._delete_owned(db, row, requester_id):
                db.rollback()
                raise NotFound("Message not found")
            db.commit()
        logger.info(f"Message deleted: id={message_id}, backend={self.name}")

    def query_nearby(self, center: GeoPoint, radius_meters: float, max_age_seconds: float) -> list[MessageRecord]:
        """Records within `radius_meters` of `center` and younger than `max_age_seconds`, newest first."""
        if radius_meters is None or radius_meters < 0:
            raise ValidationError("radius must be >= 0")
        if max_age_seconds is None or max_age_seconds < 0:
            raise ValidationError("max age must be >= 0")

        cutoff = self._clock() - timedelta(seconds=max_age_seconds)
        with self._session("nearby") as db:
            rows = self._candidates(db, center, radius_meters, cutoff)
            records = [row.to_record() for row in rows]

        hits = [r for r in records if r.created_at >= cutoff and self._within(center, r, radius_meters)]
        logger.debug(f"Nearby query: backend={self.name}, candidates={len(records)}, hits={len(hits)}")
        return sort_most_recent_first(hits)

    def list_by_author(self, author_id: str, limit: int = 50) -> list[MessageRecord]:
        with self._session("by_author") as db:
            rows = (
                db.query(Message)
                .filter(Message.author_id == author_id)
                .order_by(Message.created_at.desc(), Message.id.desc())
                .limit(limit)
                .all()
            )
            return [row.to_record() for row in rows]

    @property
    def has_retention(self) -> bool:
        return self.retention_seconds is not None

    def purge_expired(self) -> int:
        """Drop records outside the retention window. No-op without one."""
        return 0

    def init_schema(self) -> None:
        self._db.init_schema()

    def check_ready(self) -> bool:
        return self._db.check_health()

    # -- backend hooks --------------------------------------------------------

    @abstractmethod
    def _insert(self, db: Session, record: MessageRecord) -> None:
        ...

    @abstractmethod
    def _candidates(self, db: Session, center: GeoPoint, radius_meters: float, cutoff) -> list[Message]:
        """Rows that may be in range. May over-include; must never under-include."""

    def _delete_owned(self, db: Session, row: Message, requester_id: str) -> bool:
        deleted = (
            db.query(Message)
            .filter(Message.id == row.id, Message.author_id == requester_id)
            .delete(synchronize_session=False)
        )
        return deleted == 1

    # -- helpers --------------------------------------------------------------

    @staticmethod
    def _within(center: GeoPoint, record: MessageRecord, radius_meters: float) -> bool:
        return haversine_m(center, record.location) <= radius_meters

    @staticmethod
    def _find(db: Session, message_id: str) -> Optional[Message]:
        return db.query(Message).filter(Message.id == message_id).first()

    def _cutoff_ts(self, seconds: float) -> str:
        return format_ts(self._clock() - timedelta(seconds=seconds))

    @contextmanager
    def _session(self, operation: str) -> Iterator[Session]:
        """Open a session; roll back and wrap any SQLAlchemy failure as StorageError."""
        with self._db.session() as db:
            try:
                yield db
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Storage failure during {operation} ({self.name}): {e}")
                raise StorageError(f"storage failure during {operation}") from e
