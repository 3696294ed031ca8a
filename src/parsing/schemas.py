from __future__ import annotations
from typing import Any, Optional, List
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Wire(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ParseRequest(_Wire):
    text: str = Field(..., min_length=1)
    timezone: str = "UTC"


class ValidationStats(_Wire):
    total_events: Optional[int] = None
    valid_events: Optional[int] = None
    invalid_events: Optional[int] = None
    clamped_events: Optional[int] = None
    defaults_applied: Optional[int] = None


class OpenAIInfo(_Wire):
    processing_time_ms: Optional[int] = None
    used_model: Optional[str] = None
    denied: Optional[str] = None


class DiagnosticsEnvelope(_Wire):
    processing_time_ms: Optional[int] = None
    text_length: Optional[int] = None
    warnings: List[str] = Field(default_factory=list)
    validation: Optional[ValidationStats] = None
    openai: Optional[OpenAIInfo] = None


class ParseResponse(_Wire):
    # drafts stay raw here; each one is validated on its own so one bad draft does not sink the batch
    events: List[Any]
    source: str = "openai"
    confidence: Optional[float] = Field(None, ge=0.0, le=1.0)
    preprocessed_text: Optional[str] = None
    diagnostics: Optional[DiagnosticsEnvelope] = None


class ServerErrorBody(_Wire):
    error: Optional[str] = None
    message: Optional[str] = None
