"""
Text clean-up applied between extraction and parsing.

normalize_text() makes extracted text stable (unicode, whitespace, hyphenation).
preprocess_text_for_ai() annotates lines with event markers and weight hints
so the parser can spot graded items.
detect_course_code() finds the first course code mentioned in a document.
"""

from __future__ import annotations

import re
import unicodedata
from collections import Counter
from typing import List, Optional

WEIGHT_SUFFIX = " — WEIGHT"

# order matters: first match wins
MARKER_PATTERNS = [
    ("IMPORTANT", re.compile(r"\bimportant\s+dates\b", re.IGNORECASE)),
    ("FINAL", re.compile(r"\bfinal\s+exam\b", re.IGNORECASE)),
    ("FINAL", re.compile(r"\bfinals?\b", re.IGNORECASE)),
    ("MIDTERM", re.compile(r"\bmidterm\b", re.IGNORECASE)),
    ("PROJECT", re.compile(r"\bmini[-\s]?project\b", re.IGNORECASE)),
    ("PROJECT", re.compile(r"\bproject\b", re.IGNORECASE)),
    ("ASSIGNMENT", re.compile(r"\bassignment\b", re.IGNORECASE)),
    ("LECTURE", re.compile(r"\blectures?\b", re.IGNORECASE)),
    ("LECTURE", re.compile(r"\bclass(?:es)?\s+meet(?:ings)?\b", re.IGNORECASE)),
    ("LECTURE", re.compile(r"\bmeeting\s+times?\b", re.IGNORECASE)),
    ("EXAM", re.compile(r"\bexam\b", re.IGNORECASE)),
]

COURSE_CODE_PATTERNS = [
    re.compile(r"\b([A-Z]{2,4}\s?[\*\-]?\s?\d{3,4}[A-Z]?)\b"),  # CS101, ENGG*3990, MATH-151
    re.compile(r"\b([A-Z]{2,4}\s?\d{2}[A-Z]?\s?\d{2})\b"),  # ENGG 33 90
    re.compile(r"\b([A-Z]{2,4}\s?[A-Z]\s?\d{3})\b"),  # PSY C 101
    re.compile(r"\b([A-Z]{6,12}\s+\d{1,2}[A-Z]{1,2}\d{1,2})\b"),  # COMMERCE 4BB3
]

_PAGE_NUMBER = re.compile(r"\bpage\s+\d+", re.IGNORECASE)
_HORIZONTAL_WS = re.compile(r"[ \t\f\v\u00a0]+")
_BLANK_RUNS = re.compile(r"\n{3,}")


def _clean_line(line: str) -> str:
    line = unicodedata.normalize("NFC", line)
    line = "".join(
        ch for ch in line if unicodedata.category(ch) not in {"Cc", "Cf"} or ch == "\t"
    )
    return _HORIZONTAL_WS.sub(" ", line).strip()


def normalize_text(text: str) -> str:
    """Normalise unicode and whitespace, join hyphenated line breaks, collapse blank-line runs."""
    if not text:
        return ""
    lines = [_clean_line(line) for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n")]
    joined = "\n".join(lines)
    joined = re.sub(r"(\w)-\n(\w)", r"\1\2", joined)
    joined = _BLANK_RUNS.sub("\n\n", joined)
    return joined.strip()


def strip_repeated_lines(pages: List[List[str]], edge_lines: int = 2) -> List[List[str]]:
    """Drop running headers and footers.

    A line is dropped when it occurs on more than one page and sits within the
    first or last `edge_lines` lines of a page, or looks like a page number.
    Consecutive duplicates are dropped as well.
    """
    counts: Counter = Counter()
    for page in pages:
        for key in {line.strip().lower() for line in page if line.strip()}:
            counts[key] += 1

    result: List[List[str]] = []
    previous_key: Optional[str] = None
    for page in pages:
        kept: List[str] = []
        seen = set()
        n = len(page)
        for idx, line in enumerate(page):
            key = line.strip().lower()
            if not key or key == previous_key or key in seen:
                continue
            repeated = counts[key] > 1
            near_edge = idx < edge_lines or idx >= n - edge_lines
            if repeated and (near_edge or _PAGE_NUMBER.search(key)):
                continue
            kept.append(line)
            seen.add(key)
            previous_key = key
        result.append(kept)
    return result


def _marker_for(line: str) -> Optional[str]:
    for marker_type, pattern in MARKER_PATTERNS:
        if pattern.search(line):
            return f"[EVENT:{marker_type}]"
    return None


def _annotate_line(line: str) -> str:
    if not line:
        return line
    marker = _marker_for(line)
    result = f"{marker} {line}" if marker else line

    idx = result.find("%")
    if idx != -1:
        after = result[idx + 1: idx + 1 + len(WEIGHT_SUFFIX)]
        if after != WEIGHT_SUFFIX:
            result = result[: idx + 1] + WEIGHT_SUFFIX + result[idx + 1:]
    return result


def preprocess_text_for_ai(text: str) -> str:
    return "\n".join(_annotate_line(line) for line in text.splitlines())


def _sanitize_code(match: str) -> str:
    value = re.sub(r"\s+", " ", match)
    value = re.sub(r"\s*([\*\-])\s*", r"\1", value)
    return value.upper().strip()


def detect_course_code(text: str) -> Optional[str]:
    """Earliest course code in the text, or None."""
    if not text:
        return None

    first_seen = {}
    for pattern in COURSE_CODE_PATTERNS:
        for m in pattern.finditer(text):
            value = _sanitize_code(m.group(1))
            if len(value) < 2:
                continue
            pos = m.start(1)
            if value not in first_seen or pos < first_seen[value]:
                first_seen[value] = pos

    if not first_seen:
        return None
    return min(first_seen.items(), key=lambda item: item[1])[0]
