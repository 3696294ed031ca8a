from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from syllabus_sync.errors import EXIT_CODES, ErrorCategory
from syllabus_sync.models import (
    DocumentReference,
    EventItem,
    EventType,
    ImportErrorState,
    ImportStage,
    ParseDiagnostics,
)

START = datetime(2025, 9, 2, 10, 30, tzinfo=timezone.utc)


def test_event_accepts_camel_case_wire_format():
    e = EventItem.model_validate({
        "title": "Assignment 1",
        "courseCode": "CS101",
        "type": "ASSIGNMENT",
        "start": "2025-09-02T10:30:00Z",
        "allDay": True,
        "recurrenceRule": "FREQ=WEEKLY",
        "reminderMinutes": 60,
        "confidence": 0.9,
    })
    assert e.course_code == "CS101"
    assert e.all_day is True
    assert e.recurrence_rule == "FREQ=WEEKLY"
    assert e.reminder_minutes == 60

    wire = e.to_wire()
    assert wire["courseCode"] == "CS101"
    assert wire["allDay"] is True
    assert "course_code" not in wire


def test_event_gets_an_id_by_default():
    a = EventItem(title="A", start=START)
    b = EventItem(title="B", start=START)
    assert a.id and b.id and a.id != b.id


def test_unknown_type_maps_to_other_and_matching_ignores_case():
    assert EventItem(title="x", start=START, type="seminar").type == EventType.OTHER
    assert EventItem(title="x", start=START, type="quiz").type == EventType.QUIZ


def test_title_is_trimmed_and_blank_rejected():
    assert EventItem(title="  Lab 2  ", start=START).title == "Lab 2"
    with pytest.raises(ValidationError):
        EventItem(title="   ", start=START)


def test_end_before_start_rejected():
    with pytest.raises(ValidationError):
        EventItem(title="x", start=START, end=START.replace(hour=9))


def test_confidence_and_reminder_bounds():
    with pytest.raises(ValidationError):
        EventItem(title="x", start=START, confidence=1.2)
    with pytest.raises(ValidationError):
        EventItem(title="x", start=START, reminder_minutes=-5)


def test_event_is_immutable():
    e = EventItem(title="x", start=START)
    with pytest.raises(ValidationError):
        e.id = "other"
    edited = e.model_copy(update={"title": "y"})
    assert edited.id == e.id and edited.title == "y"


def test_blank_optional_strings_become_none():
    e = EventItem(title="x", start=START, location="  ", notes="", course_code=None)
    assert e.location is None
    assert e.notes is None
    assert e.course_code == ""


def test_document_reference_from_path(tmp_path):
    p = tmp_path / "syllabus.pdf"
    p.write_bytes(b"%PDF-1.4 fake")
    ref = DocumentReference.from_path(p)
    assert ref.content_type == "application/pdf"
    assert ref.size_bytes == len(b"%PDF-1.4 fake")
    assert ref.document_id


def test_diagnostics_describe():
    d = ParseDiagnostics(confidence=0.87, model_name="gpt-4o-mini", denied_reason="quota")
    assert d.describe() == "OpenAI • Confidence 87% • gpt-4o-mini • Denied: quota"
    assert ParseDiagnostics(source="heuristic").describe() == "heuristic"


def test_error_state_defaults_offer_retry_and_dismiss():
    state = ImportErrorState(
        category=ErrorCategory.NETWORK,
        message="timeout",
        request_id="r1",
        stage=ImportStage.PARSING,
    )
    assert state.actions == ["retry", "dismiss"]
    assert state.timestamp.tzinfo is not None


def test_every_category_has_an_exit_code():
    assert set(EXIT_CODES) == set(ErrorCategory)
    assert EXIT_CODES[ErrorCategory.VALIDATION] == 2
