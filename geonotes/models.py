"""
SQLAlchemy ORM models for database tables.

This module contains database table definitions using SQLAlchemy.
For Pydantic request/response schemas, see schemas.py.
"""

from sqlalchemy import Column, Float, Index, Integer, MetaData, String, Table, Text

from geonotes.geo import GeoPoint
from geonotes.records import MessageRecord, format_ts, parse_ts
from geonotes.storage import Base


class Message(Base):
    """
    SQLAlchemy model for storing geotagged messages.

    Table: messages
    Primary Key: seq (integer surrogate, also the R*Tree key)
    Lookup key: id (uuid string exposed to clients)
    """
    __tablename__ = "messages"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, nullable=False, index=True)
    author_id = Column(String, nullable=False, index=True)
    author_display_name = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    created_at = Column(String(27), nullable=False, index=True)  # ISO-8601 UTC string
    cell = Column(String, nullable=True)  # Grid bucket key (scan backend)
    cell_size_m = Column(Float, nullable=True)  # Bucket size the key was computed with

    __table_args__ = (
        Index("ix_messages_cell_created_at", "cell", "created_at"),
    )

    @classmethod
    def from_record(cls, record: MessageRecord, cell: str = None, cell_size_m: float = None) -> "Message":
        return cls(
            id=record.id,
            author_id=record.author_id,
            author_display_name=record.author_display_name,
            content=record.content,
            latitude=record.location.lat,
            longitude=record.location.lon,
            created_at=format_ts(record.created_at),
            cell=cell,
            cell_size_m=cell_size_m,
        )

    def to_record(self) -> MessageRecord:
        return MessageRecord(
            id=self.id,
            author_id=self.author_id,
            author_display_name=self.author_display_name,
            content=self.content,
            location=GeoPoint(lat=self.latitude, lon=self.longitude),
            created_at=parse_ts(self.created_at),
        )


# The R*Tree virtual table is created with raw DDL by the indexed backend, so it
# lives on its own MetaData and is never touched by Base.metadata.create_all().
rtree_metadata = MetaData()

message_locations = Table(
    "message_locations",
    rtree_metadata,
    Column("id", Integer, primary_key=True),  # messages.seq
    Column("min_lat", Float),
    Column("max_lat", Float),
    Column("min_lon", Float),
    Column("max_lon", Float),
)

MESSAGE_LOCATIONS_DDL = (
    "CREATE VIRTUAL TABLE IF NOT EXISTS message_locations "
    "USING rtree(id, min_lat, max_lat, min_lon, max_lon)"
)
