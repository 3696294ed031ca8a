from __future__ import annotations

import mimetypes
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from syllabus_sync.errors import ErrorCategory


def new_event_id() -> str:
    return str(uuid.uuid4())


class EventType(str, Enum):
    ASSIGNMENT = "ASSIGNMENT"
    QUIZ = "QUIZ"
    MIDTERM = "MIDTERM"
    FINAL = "FINAL"
    LAB = "LAB"
    LECTURE = "LECTURE"
    OTHER = "OTHER"


class EventItem(BaseModel):
    """Canonical calendar event.

    Frozen so that `id` can never change after creation; edits go through
    `model_copy(update=...)`. Accepts camelCase keys (wire format) and
    snake_case keys (Python callers).
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    id: str = Field(default_factory=new_event_id, min_length=1)
    course_code: str = ""
    type: EventType = EventType.OTHER
    title: str = Field(..., min_length=1, max_length=200)
    start: datetime
    end: Optional[datetime] = None
    all_day: bool = False
    location: Optional[str] = None
    notes: Optional[str] = None
    recurrence_rule: Optional[str] = None
    reminder_minutes: Optional[int] = Field(None, ge=0, le=43200)
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("title must not be blank")
        return v2

    @field_validator("type", mode="before")
    @classmethod
    def coerce_type(cls, v):
        if isinstance(v, EventType):
            return v
        if isinstance(v, str):
            try:
                return EventType(v.strip().upper())
            except ValueError:
                return EventType.OTHER
        return v

    @field_validator("course_code", mode="before")
    @classmethod
    def course_code_default(cls, v):
        if v is None:
            return ""
        return v.strip() if isinstance(v, str) else v

    @field_validator("all_day", mode="before")
    @classmethod
    def all_day_default(cls, v):
        return False if v is None else v

    @field_validator("location", "notes", "recurrence_rule", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @model_validator(mode="after")
    def end_not_before_start(self) -> "EventItem":
        if self.end is None:
            return self
        if (self.end.tzinfo is None) != (self.start.tzinfo is None):
            raise ValueError("start and end must both carry a time zone, or neither")
        if self.end < self.start:
            raise ValueError("end must not be before start")
        return self

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class DocumentReference(BaseModel):
    """A document the user asked to import. Reused as-is on retry."""

    model_config = ConfigDict(frozen=True)

    path: Path
    document_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    content_type: str = "application/octet-stream"
    size_bytes: int = Field(0, ge=0)

    @classmethod
    def from_path(cls, path: str | Path) -> "DocumentReference":
        p = Path(path)
        guessed, _ = mimetypes.guess_type(p.name)
        size = p.stat().st_size if p.exists() else 0
        return cls(
            path=p,
            content_type=guessed or "application/octet-stream",
            size_bytes=size,
        )


class ImportStage(str, Enum):
    IDLE = "idle"
    EXTRACTING = "extracting"
    PREPROCESSING = "preprocessing"
    PARSING = "parsing"
    RECONCILING = "reconciling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {ImportStage.COMPLETED, ImportStage.CANCELLED, ImportStage.FAILED}


class ImportErrorState(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: ErrorCategory
    message: str
    request_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    stage: Optional[ImportStage] = None

    # every failure offers both: re-run the same import, or drop it and keep the store as is
    actions: List[str] = Field(default_factory=lambda: ["retry", "dismiss"])


class ProgressEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: ImportStage
    progress: float = Field(..., ge=0.0, le=1.0)
    message: str


class ParseDiagnostics(BaseModel):
    source: str = "openai"
    confidence: Optional[float] = None
    processing_time_ms: Optional[int] = None
    text_length: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)
    total_events: Optional[int] = None
    valid_events: Optional[int] = None
    invalid_events: Optional[int] = None
    model_name: Optional[str] = None
    denied_reason: Optional[str] = None

    def describe(self) -> str:
        """One-line summary, e.g. 'OpenAI • Confidence 87% • gpt-4o-mini'."""
        parts = ["OpenAI" if self.source == "openai" else self.source]
        if self.confidence is not None:
            parts.append(f"Confidence {round(self.confidence * 100)}%")
        if self.model_name:
            parts.append(self.model_name)
        if self.denied_reason:
            parts.append(f"Denied: {self.denied_reason}")
        return " • ".join(parts)


class ParseResult(BaseModel):
    drafts: List[EventItem] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    diagnostics: Optional[ParseDiagnostics] = None
    raw_response: Optional[str] = None
    preprocessed_text: Optional[str] = None
