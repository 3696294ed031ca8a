import os
import logging
from fastapi import APIRouter, Depends, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from api import state
from api.dependencies import get_event_store
from storage import db
from storage.event_store import EventStore
from syllabus_sync.metrics import DIRTY_EVENTS, EVENTS_IN_STORE

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check(store: EventStore = Depends(get_event_store)) -> dict:
    """Liveness plus a summary of the event store and, when used, the database."""
    health = {
        "status": "healthy",
        "profile": os.getenv("DEPLOYMENT_PROFILE", "unknown"),
        "backend": "postgres" if state.uses_database else "memory",
        "store_state": store.state.value,
        "events": len(store.events),
        "dirty": len(store.dirty_ids),
        "signed_in": state.current_user_id is not None,
    }

    if state.uses_database:
        db_health = await db.health_check()
        health["database"] = db_health
        if db_health["status"] != "healthy":
            health["status"] = "degraded"

    return health


@router.get("/metrics")
async def metrics(store: EventStore = Depends(get_event_store)) -> Response:
    EVENTS_IN_STORE.set(len(store.events))
    DIRTY_EVENTS.set(len(store.dirty_ids))

    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
