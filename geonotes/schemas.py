"""
Pydantic schemas for request/response validation.

This module contains:
- Request models for incoming data validation
- Response models for API responses
"""

from typing import Optional

from pydantic import BaseModel, Field

from geonotes.records import MAX_CONTENT_LENGTH, MessageRecord, format_ts


# =============================================================================
# Pydantic Request Models
# =============================================================================

class CreateMessageRequest(BaseModel):
    """
    Body of POST /messages.

    Every field is optional here so that a missing field is reported by the
    service as a 400 with a single, stable message.
    """
    content: Optional[str] = Field(
        None,
        description=f"Message text, 1-{MAX_CONTENT_LENGTH} characters after trimming"
    )
    latitude: Optional[float] = Field(None, description="Latitude in decimal degrees")
    longitude: Optional[float] = Field(None, description="Longitude in decimal degrees")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"content": "Great coffee here", "latitude": 52.52, "longitude": 13.405}
            ]
        }
    }


# =============================================================================
# Pydantic Response Models
# =============================================================================

class ErrorResponse(BaseModel):
    """Response model for error responses."""
    detail: str = Field(..., description="Error description")


class MessageResponse(BaseModel):
    """A single message as returned to clients."""
    id: str = Field(..., description="Server-assigned message id")
    content: str = Field(..., description="Message text")
    latitude: float
    longitude: float
    author_id: str = Field(..., description="Id of the user who posted the message")
    username: str = Field(..., description="Author's username at posting time")
    created_at: str = Field(..., description="Creation time, ISO-8601 UTC")

    @classmethod
    def from_record(cls, record: MessageRecord) -> "MessageResponse":
        return cls(
            id=record.id,
            content=record.content,
            latitude=record.location.lat,
            longitude=record.location.lon,
            author_id=record.author_id,
            username=record.author_display_name,
            created_at=format_ts(record.created_at),
        )


class DeleteResponse(BaseModel):
    message: str = Field(default="Message removed")


class StatusResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
    backend: Optional[str] = Field(None, description="Configured store backend")
