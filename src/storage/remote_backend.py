"""
Remote persistence for events.

RemoteEventBackend is the narrow interface the EventStore syncs against. All
rows are scoped by user id. PostgresEventBackend stores them through the
asyncpg pool in storage.db; InMemoryEventBackend keeps them in a dict for
demos and tests.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Dict, List

import asyncpg

from storage import db
from syllabus_sync.errors import ErrorCategory, RemoteBackendError
from syllabus_sync.metrics import REMOTE_FAILURES_TOTAL
from syllabus_sync.models import EventItem

logger = logging.getLogger(__name__)


class RemoteEventBackend(ABC):
    @abstractmethod
    async def fetch_all(self, user_id: str) -> List[EventItem]:
        raise NotImplementedError

    @abstractmethod
    async def upsert(self, user_id: str, events: List[EventItem]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self, user_id: str, event_id: str) -> None:
        """Deleting an id that does not exist is not an error."""
        raise NotImplementedError

    @abstractmethod
    async def delete_all(self, user_id: str) -> None:
        raise NotImplementedError


class InMemoryEventBackend(RemoteEventBackend):
    def __init__(self):
        self._rows: Dict[str, Dict[str, EventItem]] = {}

    async def fetch_all(self, user_id: str) -> List[EventItem]:
        return list(self._rows.get(user_id, {}).values())

    async def upsert(self, user_id: str, events: List[EventItem]) -> None:
        table = self._rows.setdefault(user_id, {})
        for event in events:
            table[event.id] = event

    async def delete(self, user_id: str, event_id: str) -> None:
        self._rows.get(user_id, {}).pop(event_id, None)

    async def delete_all(self, user_id: str) -> None:
        self._rows.pop(user_id, None)

    def rows_for(self, user_id: str) -> List[EventItem]:
        return list(self._rows.get(user_id, {}).values())


FETCH_SQL = """
    SELECT id, course_code, type, title, start_date, end_date, all_day,
           location, notes, recurrence_rule, reminder_minutes, confidence
    FROM events
    WHERE user_id = $1
    ORDER BY start_date, created_at
"""

UPSERT_SQL = """
    INSERT INTO events (
        id, user_id, course_code, type, title, start_date, end_date, all_day,
        location, notes, recurrence_rule, reminder_minutes, confidence
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
    ON CONFLICT (user_id, id) DO UPDATE SET
        course_code = EXCLUDED.course_code,
        type = EXCLUDED.type,
        title = EXCLUDED.title,
        start_date = EXCLUDED.start_date,
        end_date = EXCLUDED.end_date,
        all_day = EXCLUDED.all_day,
        location = EXCLUDED.location,
        notes = EXCLUDED.notes,
        recurrence_rule = EXCLUDED.recurrence_rule,
        reminder_minutes = EXCLUDED.reminder_minutes,
        confidence = EXCLUDED.confidence,
        updated_at = NOW()
"""

DELETE_SQL = "DELETE FROM events WHERE user_id = $1 AND id = $2"

DELETE_ALL_SQL = "DELETE FROM events WHERE user_id = $1"


def event_from_record(record) -> EventItem:
    return EventItem(
        id=record["id"],
        course_code=record["course_code"],
        type=record["type"],
        title=record["title"],
        start=record["start_date"],
        end=record["end_date"],
        all_day=record["all_day"],
        location=record["location"],
        notes=record["notes"],
        recurrence_rule=record["recurrence_rule"],
        reminder_minutes=record["reminder_minutes"],
        confidence=record["confidence"],
    )


def event_to_args(user_id: str, event: EventItem) -> tuple:
    return (
        event.id,
        user_id,
        event.course_code,
        event.type.value,
        event.title,
        event.start,
        event.end,
        event.all_day,
        event.location,
        event.notes,
        event.recurrence_rule,
        event.reminder_minutes,
        event.confidence,
    )


@asynccontextmanager
async def _translate_errors(operation: str):
    try:
        yield
    except asyncpg.PostgresError as e:
        REMOTE_FAILURES_TOTAL.labels(operation=operation).inc()
        logger.error(f"Postgres {operation} failed: {e}")
        raise RemoteBackendError(f"Database rejected {operation}: {e}", ErrorCategory.SERVER) from e
    except (OSError, asyncio.TimeoutError, db.PoolNotInitialized) as e:
        REMOTE_FAILURES_TOTAL.labels(operation=operation).inc()
        logger.error(f"Postgres {operation} unreachable: {e}")
        raise RemoteBackendError(f"Database unreachable during {operation}", ErrorCategory.NETWORK) from e


class PostgresEventBackend(RemoteEventBackend):
    async def fetch_all(self, user_id: str) -> List[EventItem]:
        async with _translate_errors("fetch"):
            rows = await db.fetch(FETCH_SQL, user_id)
        return [event_from_record(r) for r in rows]

    async def upsert(self, user_id: str, events: List[EventItem]) -> None:
        if not events:
            return
        async with _translate_errors("upsert"):
            await db.executemany(UPSERT_SQL, [event_to_args(user_id, e) for e in events])

    async def delete(self, user_id: str, event_id: str) -> None:
        async with _translate_errors("delete"):
            await db.execute(DELETE_SQL, user_id, event_id)

    async def delete_all(self, user_id: str) -> None:
        async with _translate_errors("delete_all"):
            await db.execute(DELETE_ALL_SQL, user_id)
