"""
Event batch request/response models.

- Body: base64 encoded Avro binary
- Headers: schema literal, or schema hash plus backing file path
- Batch size: 1-1000 events
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Base64Bytes, Field

from ..core.event import InboundEvent

MAX_BATCH_EVENTS = 1000


class EventPayload(BaseModel):
    """
    Single event as delivered by the ingestion pipeline.
    """

    headers: Dict[str, str] = Field(
        default_factory=dict,
        description="Pipeline headers (flume.avro.schema.literal | flume.avro.schema.hash + file)"
    )
    body: Base64Bytes = Field(
        description="Base64 encoded Avro binary record"
    )

    def to_event(self) -> InboundEvent:
        return InboundEvent(body=self.body, headers=dict(self.headers))


class ProjectRequest(BaseModel):
    """
    Batch of events for projection.
    """

    events: List[EventPayload] = Field(
        min_length=1,
        max_length=MAX_BATCH_EVENTS,
        description="Events to project (1-1000)"
    )


class ProjectResponse(BaseModel):
    """
    Documents produced for a batch.
    """

    documents: List[Dict[str, Any]] = Field(description="Logstash formatted documents")
    events_received: int = Field(description="Events in the request")
    events_filtered: int = Field(description="Events removed by the private address filter")
    events_dropped: int = Field(description="Events without a usable schema or body")
    request_id: str = Field(description="Unique request identifier")
    timestamp: datetime = Field(description="Processing timestamp")


class ErrorResponse(BaseModel):
    """
    Standard error response model.
    """

    error: str = Field(description="Error code")
    message: str = Field(description="Human-readable error message")
    details: Optional[Dict[str, Any]] = Field(
        default=None,
        description="Additional error details"
    )
