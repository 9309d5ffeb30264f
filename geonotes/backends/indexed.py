"""
Indexed backend: SQLite R*Tree spatial index over message locations.

The R*Tree answers "which points fall in these boxes", which is a superset of
the search circle; the exact haversine check in MessageStore still decides.
R*Tree coordinates are stored as 32-bit floats rounded outward, so the box
test stays conservative.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, or_, select, text
from sqlalchemy.orm import Session

from geonotes.backends.base import MessageStore
from geonotes.geo import GeoPoint, bounding_boxes
from geonotes.models import MESSAGE_LOCATIONS_DDL, Message, message_locations
from geonotes.records import Clock, MessageRecord, format_ts, utc_now
from geonotes.storage import Database

logger = logging.getLogger(__name__)


class IndexedBackend(MessageStore):
    name = "indexed"

    def __init__(self, database: Database, clock: Clock = utc_now, retention_seconds: Optional[int] = None):
        super().__init__(database, clock)
        if not database.url.startswith("sqlite"):
            raise ValueError("IndexedBackend requires an SQLite database with the R*Tree module")
        if retention_seconds is not None and retention_seconds <= 0:
            raise ValueError("retention_seconds must be > 0")
        self.retention_seconds = retention_seconds

    def init_schema(self) -> None:
        super().init_schema()
        with self._session("init_schema") as db:
            db.execute(text(MESSAGE_LOCATIONS_DDL))
            db.commit()
        logger.info("R*Tree index message_locations ready")

    def check_ready(self) -> bool:
        if not super().check_ready():
            return False
        if not self._db.has_table("message_locations"):
            logger.error("Spatial index not applied: 'message_locations' table not found")
            return False
        return True

    def _insert(self, db: Session, record: MessageRecord) -> None:
        row = Message.from_record(record)
        db.add(row)
        db.flush()  # assigns row.seq
        db.execute(
            message_locations.insert().values(
                id=row.seq,
                min_lat=record.location.lat,
                max_lat=record.location.lat,
                min_lon=record.location.lon,
                max_lon=record.location.lon,
            )
        )

    def _candidates(self, db: Session, center: GeoPoint, radius_meters: float, cutoff: datetime) -> list[Message]:
        loc = message_locations
        boxes = [
            and_(
                loc.c.max_lat >= box.south,
                loc.c.min_lat <= box.north,
                loc.c.max_lon >= box.west,
                loc.c.min_lon <= box.east,
            )
            for box in bounding_boxes(center, radius_meters)
        ]
        return (
            db.query(Message)
            .join(loc, loc.c.id == Message.seq)
            .filter(or_(*boxes))
            .filter(Message.created_at >= format_ts(cutoff))
            .all()
        )

    def _delete_owned(self, db: Session, row: Message, requester_id: str) -> bool:
        seq = row.seq
        if not super()._delete_owned(db, row, requester_id):
            return False
        db.execute(message_locations.delete().where(message_locations.c.id == seq))
        return True

    def purge_expired(self) -> int:
        if self.retention_seconds is None:
            return 0
        cutoff = self._cutoff_ts(self.retention_seconds)
        with self._session("purge") as db:
            expired = select(Message.seq).where(Message.created_at < cutoff)
            db.execute(message_locations.delete().where(message_locations.c.id.in_(expired)))
            purged = (
                db.query(Message)
                .filter(Message.created_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        if purged:
            logger.info(f"Purged {purged} expired messages older than {cutoff}")
        return purged
