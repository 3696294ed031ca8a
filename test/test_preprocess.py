from extraction.preprocess import (
    detect_course_code,
    normalize_text,
    preprocess_text_for_ai,
    strip_repeated_lines,
)


def test_normalize_collapses_whitespace_and_blank_runs():
    raw = "Week 1:\t  Intro\x07\r\n\r\n\r\n\r\nWeek 2:   Labs  \n"
    assert normalize_text(raw) == "Week 1: Intro\n\nWeek 2: Labs"


def test_normalize_joins_hyphenated_line_breaks():
    assert normalize_text("Submit the assign-\nment online") == "Submit the assignment online"


def test_normalize_empty():
    assert normalize_text("") == ""
    assert normalize_text(" \n\n \t ") == ""


def test_markers_are_added_once_per_line():
    out = preprocess_text_for_ai("Midterm exam on Oct 10\nFinal Exam Dec 12\nOffice hours Monday")
    lines = out.splitlines()
    assert lines[0] == "[EVENT:MIDTERM] Midterm exam on Oct 10"
    assert lines[1] == "[EVENT:FINAL] Final Exam Dec 12"
    assert lines[2] == "Office hours Monday"


def test_weight_hint_follows_percent_sign():
    out = preprocess_text_for_ai("Assignment 1 worth 10% of grade")
    assert out == "[EVENT:ASSIGNMENT] Assignment 1 worth 10% — WEIGHT of grade"


def test_existing_weight_hint_is_not_duplicated():
    line = "Participation 5% — WEIGHT"
    assert preprocess_text_for_ai(line) == line


def test_detect_course_code_picks_earliest():
    text = "Welcome to CIS*2500. Prerequisite: MATH 1200."
    assert detect_course_code(text) == "CIS*2500"


def test_detect_course_code_sanitizes_separators():
    assert detect_course_code("Course: ENGG - 3990 Design") == "ENGG-3990"


def test_detect_course_code_none():
    assert detect_course_code("no codes in here") is None
    assert detect_course_code("") is None


def test_strip_repeated_lines_drops_running_headers():
    pages = [
        ["CS 101 Syllabus", "Week 1 intro", "Page 1"],
        ["CS 101 Syllabus", "Week 2 labs", "Page 2"],
    ]
    assert strip_repeated_lines(pages) == [
        ["Week 1 intro", "Page 1"],
        ["Week 2 labs", "Page 2"],
    ]


def test_strip_repeated_lines_keeps_body_duplicates_away_from_edges():
    pages = [
        ["Header A", "intro", "Office hours Tuesday", "schedule", "more", "Footer"],
        ["Header B", "week two", "Office hours Tuesday", "notes", "again", "Footer 2"],
    ]
    result = strip_repeated_lines(pages)
    assert "Office hours Tuesday" in result[0]
    assert "Office hours Tuesday" in result[1]
