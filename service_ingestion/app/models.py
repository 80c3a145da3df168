"""
Record data models for the Ingestion Service.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, field_validator

from shared.errors import ValidationError

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def to_version(moment: datetime) -> int:
    """Integer microseconds since the epoch for an aware datetime."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    delta = moment - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_version(version: int) -> datetime:
    """Inverse of :func:`to_version`."""
    seconds, micros = divmod(version, 1_000_000)
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(microsecond=micros)


class RecordPayload(BaseModel):
    """Structured content accepted by the write path."""

    model_config = ConfigDict(extra="forbid")

    source: str = Field(..., min_length=1, description="Producer of the record")
    data: Dict[str, Any] = Field(..., description="Record body")
    tags: List[str] = Field(default_factory=list, description="Free-form labels")

    @field_validator("source")
    @classmethod
    def _source_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("source must not be blank")
        return value

    @field_validator("data")
    @classmethod
    def _data_not_empty(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        if not value:
            raise ValueError("data must contain at least one field")
        return value

    @field_validator("tags")
    @classmethod
    def _tags_not_blank(cls, value: List[str]) -> List[str]:
        if any(not tag.strip() for tag in value):
            raise ValueError("tags must not be blank")
        return value


def validate_payload(raw: Any) -> Dict[str, Any]:
    """Validate a client payload and return its canonical JSON form.

    Raises:
        ValidationError: payload is not an object or does not conform.
    """
    if not isinstance(raw, dict):
        raise ValidationError("Payload must be a JSON object")
    try:
        payload = RecordPayload.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(
            "Payload failed validation",
            details={"errors": [
                {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
                for err in e.errors()
            ]}
        ) from e
    return payload.model_dump(mode="json", exclude_unset=True)


class Record(BaseModel):
    """Unit of data held by the durable store."""

    id: str
    payload: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    @property
    def version(self) -> int:
        """Write ordering key: ``updated_at`` in epoch microseconds."""
        return to_version(self.updated_at)


class CacheEntry(BaseModel):
    """Serialized record snapshot held by the cache."""

    version: int
    record: Record
    cached_at: datetime = Field(default_factory=utcnow)

    @classmethod
    def for_record(cls, record: Record) -> "CacheEntry":
        return cls(version=record.version, record=record)


class WriteEvent(BaseModel):
    """Message emitted once per successful durable write."""

    id: str
    payload: Dict[str, Any]
    timestamp: int
    created_at: Optional[datetime] = None

    @classmethod
    def for_record(cls, record: Record) -> "WriteEvent":
        return cls(
            id=record.id,
            payload=record.payload,
            timestamp=record.version,
            created_at=record.created_at,
        )

    def to_record(self) -> Record:
        """Rebuild the record snapshot this event describes."""
        updated_at = from_version(self.timestamp)
        return Record(
            id=self.id,
            payload=self.payload,
            created_at=self.created_at or updated_at,
            updated_at=updated_at,
        )


class SubmitResponse(BaseModel):
    """Response body for accepted writes."""
    id: str


class DeadLetterResponse(BaseModel):
    """Dead-lettered write event as reported by the admin endpoint."""
    event: WriteEvent
    error: str
    attempts: int
    dead_lettered_at: datetime
