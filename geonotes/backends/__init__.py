"""
Message store backends, selected once at startup by `STORE_BACKEND`.
"""

from geonotes.backends.base import MessageStore
from geonotes.backends.indexed import IndexedBackend
from geonotes.backends.scan import ScanBackend
from geonotes.config import Settings
from geonotes.records import Clock, utc_now
from geonotes.storage import Database

__all__ = ["MessageStore", "ScanBackend", "IndexedBackend", "create_store"]


def create_store(settings: Settings, database: Database, clock: Clock = utc_now) -> MessageStore:
    """Build the configured backend around an already-constructed database handle."""
    if settings.STORE_BACKEND == "scan":
        return ScanBackend(
            database,
            clock=clock,
            retention_seconds=settings.RETENTION_WINDOW_SECONDS,
            bucket_size_m=settings.SCAN_BUCKET_SIZE_METERS,
        )
    if settings.STORE_BACKEND == "indexed":
        return IndexedBackend(
            database,
            clock=clock,
            retention_seconds=settings.INDEXED_RETENTION_SECONDS,
        )
    raise ValueError(f"Unknown store backend: {settings.STORE_BACKEND}")
