"""
Pydantic models used across the tracker.

Two families live here:
- input shapes (`EventIn`, `StepIn`) read at the transport boundary;
- the stored shape (`TrackedDocument`, `StepTiming`) whose field names are
  the ones written to the backing index.

Guidelines:
- Every timestamp is normalized to an aware UTC datetime on the way in,
  so step times coming from different producers compare as instants.
- Stored documents tolerate legacy rows: missing `data`, `steps` or
  `step_logs` come back as empty containers.
"""

from pydantic import BaseModel, Field, ValidationError, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class StepIn(BaseModel):
    """A step reached by a tracker: its name and when it happened."""

    name: str
    date: datetime

    @field_validator("date")
    @classmethod
    def normalize_date(cls, v: datetime) -> datetime:
        return as_utc(v)


class EventIn(BaseModel):
    """Input shape for one step event read from the queue.

    Only `application` and `tracker_id` are strict; both were checked by
    the admission gate already. The other fields never reject an event:
    a `flow` or `data` of the wrong type is ignored, and `step` is kept
    exactly as it arrived so the step log records what the producer sent.

    Fields:
    - `application`: namespace of the tracker, also picks the index.
    - `tracker_id`: 32-char id shared by every event of one journey.
    - `flow`: journey type, only used when the document is created.
    - `data`: free-form payload shallow-merged into the document.
    - `step`: the raw step mapping (`name`, `date`), if any.
    """

    application: str
    tracker_id: str
    flow: Optional[str] = None
    data: Optional[Dict[str, Any]] = None
    step: Optional[Dict[str, Any]] = None

    @field_validator("flow", mode="before")
    @classmethod
    def ignore_bad_flow(cls, v):
        return v if isinstance(v, str) else None

    @field_validator("data", "step", mode="before")
    @classmethod
    def ignore_bad_mapping(cls, v):
        return v if isinstance(v, dict) else None

    def timed_step(self) -> Optional[StepIn]:
        """The step with a parsed date, or None if absent or unparseable."""
        if self.step is None:
            return None
        try:
            return StepIn.model_validate(self.step)
        except ValidationError:
            return None


class StepTiming(BaseModel):
    """Timing of one step. Durations are milliseconds."""

    time: datetime
    from_start: int = 0
    from_prev: int = 0

    @field_validator("time")
    @classmethod
    def normalize_time(cls, v: datetime) -> datetime:
        return as_utc(v)


class TrackedDocument(BaseModel):
    """Cumulative journey of one tracker, as stored in the index."""

    application: str = "undefined"
    flow: str = "undefined"
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    # Written false on every merge and never set true; kept for the stored shape.
    synced: bool = False
    data: Dict[str, Any] = Field(default_factory=dict)
    steps: Dict[str, StepTiming] = Field(default_factory=dict)
    step_logs: List[Optional[Dict[str, Any]]] = Field(default_factory=list)

    @field_validator("data", "steps", mode="before")
    @classmethod
    def empty_mapping(cls, v):
        return {} if v is None else v

    @field_validator("step_logs", mode="before")
    @classmethod
    def empty_list(cls, v):
        return [] if v is None else v

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_ts(cls, v: datetime) -> datetime:
        return as_utc(v)

    def to_source(self) -> Dict[str, Any]:
        """JSON-ready dict with the wire field names."""
        return self.model_dump(mode="json")
