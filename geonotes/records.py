"""
The MessageRecord entity and the helpers every store uses to build one.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from geonotes.errors import ValidationError
from geonotes.geo import GeoPoint

MAX_CONTENT_LENGTH = 500

# Fixed-width so that string order equals time order in the database.
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_ts(value: datetime) -> str:
    """Render an aware datetime as a sortable ISO-8601 UTC string."""
    if value.tzinfo is None:
        raise ValueError("timestamps must be timezone-aware")
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_ts(value: str) -> datetime:
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def new_message_id() -> str:
    return str(uuid.uuid4())


def normalize_content(content: str) -> str:
    """Trim surrounding whitespace and enforce the 1..500 character bound."""
    if not isinstance(content, str):
        raise ValidationError("content must be a string")
    text = content.strip()
    if not text:
        raise ValidationError("Message content is required")
    if len(text) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Message content must be at most {MAX_CONTENT_LENGTH} characters")
    return text


@dataclass(frozen=True)
class MessageRecord:
    """
    A geotagged note.

    `author_display_name` is copied from the author's username when the note
    is created and is not updated afterwards.
    """

    id: str
    author_id: str
    author_display_name: str
    content: str
    location: GeoPoint
    created_at: datetime


def recency_key(record: MessageRecord) -> tuple:
    """Sort key for most-recent-first ordering, with the id as tie-breaker."""
    return (record.created_at, record.id)


def sort_most_recent_first(records) -> list[MessageRecord]:
    return sorted(records, key=recency_key, reverse=True)
