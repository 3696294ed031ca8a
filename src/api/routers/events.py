import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError

from api.dependencies import get_event_store
from storage.event_store import EventStore
from syllabus_sync.metrics import REQUESTS_TOTAL
from syllabus_sync.models import EventItem

router = APIRouter(prefix="/events")
logger = logging.getLogger(__name__)


class AutoApproveIn(BaseModel):
    events: List[EventItem]


def _serialize(store: EventStore, event: EventItem) -> dict:
    meta = store.sync_meta(event.id)
    data = event.to_wire()
    data["dirty"] = bool(meta and meta.dirty)
    data["sourceDocumentId"] = meta.source_document_id if meta else None
    return data


@router.get("")
async def list_events(
    course: Optional[str] = None,
    store: EventStore = Depends(get_event_store),
) -> dict:
    events = store.events_for_course(course) if course is not None else store.events
    return {
        "state": store.state.value,
        "last_fetched_at": store.last_fetched_at.isoformat() if store.last_fetched_at else None,
        "events": [_serialize(store, e) for e in events],
    }


@router.get("/upcoming")
async def upcoming_events(
    limit: Optional[int] = None,
    now: Optional[datetime] = None,
    store: EventStore = Depends(get_event_store),
) -> dict:
    events = store.upcoming(now)
    if limit is not None:
        events = events[: max(0, limit)]
    return {"events": [_serialize(store, e) for e in events]}


@router.post("/refresh")
async def refresh_events(store: EventStore = Depends(get_event_store)) -> dict:
    await store.refresh()
    REQUESTS_TOTAL.labels(endpoint="/events/refresh", status="ok").inc()
    return {
        "events": len(store.events),
        "last_fetched_at": store.last_fetched_at.isoformat() if store.last_fetched_at else None,
    }


@router.put("/{event_id}")
async def update_event(
    event_id: str,
    payload: Dict[str, Any],
    store: EventStore = Depends(get_event_store),
) -> dict:
    try:
        event = EventItem.model_validate({**payload, "id": event_id})
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False))

    synced = await store.update(event)
    REQUESTS_TOTAL.labels(endpoint="/events/{id}", status="synced" if synced else "dirty").inc()
    return {"event": _serialize(store, event), "synced": synced}


@router.delete("/{event_id}")
async def delete_event(event_id: str, store: EventStore = Depends(get_event_store)) -> dict:
    deleted = await store.delete_event(event_id)
    return {"deleted": deleted}


@router.delete("")
async def delete_all_events(store: EventStore = Depends(get_event_store)) -> dict:
    synced = await store.delete_all_events()
    REQUESTS_TOTAL.labels(endpoint="/events", status="synced" if synced else "dirty").inc()
    return {"deleted": True, "synced": synced, "pending_deletes": store.pending_deletes}


@router.post("/auto-approve")
async def auto_approve(payload: AutoApproveIn, store: EventStore = Depends(get_event_store)) -> dict:
    dirty = await store.auto_approve(payload.events)
    logger.info(f"Auto-approved {len(payload.events)} event(s), {len(dirty)} pending sync")
    return {"added": len(payload.events), "dirty": dirty}
