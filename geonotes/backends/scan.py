"""
Scan backend: no spatial index, only a time window and optional grid buckets.

Every query reads the rows created inside the retention window (further
narrowed to the grid cells that cover the search circle when bucketing is on)
and leaves the final decision to the haversine filter. Rows bucketed with a
different cell size, or not bucketed at all, are always read.

The window is what keeps the scan bounded, so expired rows must be purged.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from geonotes.backends.base import MessageStore
from geonotes.geo import GeoPoint, cell_key, cells_covering
from geonotes.models import Message
from geonotes.records import Clock, MessageRecord, format_ts, utc_now
from geonotes.storage import Database

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_SECONDS = 24 * 60 * 60

# Beyond this many cells an IN (...) lookup stops paying for itself.
MAX_QUERY_CELLS = 256


class ScanBackend(MessageStore):
    name = "scan"

    def __init__(
        self,
        database: Database,
        clock: Clock = utc_now,
        retention_seconds: int = DEFAULT_RETENTION_SECONDS,
        bucket_size_m: float = 500.0,
    ):
        super().__init__(database, clock)
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be > 0")
        if bucket_size_m < 0:
            raise ValueError("bucket_size_m must be >= 0")
        self.retention_seconds = retention_seconds
        self.bucket_size_m = bucket_size_m

    def _insert(self, db: Session, record: MessageRecord) -> None:
        if self.bucket_size_m:
            row = Message.from_record(
                record,
                cell=cell_key(record.location, self.bucket_size_m),
                cell_size_m=self.bucket_size_m,
            )
        else:
            row = Message.from_record(record)
        db.add(row)

    def _candidates(self, db: Session, center: GeoPoint, radius_meters: float, cutoff: datetime) -> list[Message]:
        # Never look past the retention window, whatever age the caller asked for.
        window_start = self._clock() - timedelta(seconds=self.retention_seconds)
        query = db.query(Message).filter(Message.created_at >= format_ts(max(cutoff, window_start)))

        if self.bucket_size_m:
            cells = cells_covering(center, radius_meters, self.bucket_size_m, max_cells=MAX_QUERY_CELLS)
            if cells is None:
                logger.debug(f"Radius {radius_meters}m needs more than {MAX_QUERY_CELLS} cells, scanning whole window")
            else:
                # Keys written under another cell size say nothing about this grid.
                query = query.filter(
                    or_(
                        Message.cell.in_(cells),
                        Message.cell_size_m.is_distinct_from(self.bucket_size_m),
                    )
                )

        return query.all()

    def purge_expired(self) -> int:
        cutoff = self._cutoff_ts(self.retention_seconds)
        with self._session("purge") as db:
            purged = (
                db.query(Message)
                .filter(Message.created_at < cutoff)
                .delete(synchronize_session=False)
            )
            db.commit()
        if purged:
            logger.info(f"Purged {purged} expired messages older than {cutoff}")
        return purged
