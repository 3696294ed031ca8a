from fastapi import HTTPException

from api import state
from pipeline.coordinator import ImportCoordinator
from storage.event_store import EventStore


def get_event_store() -> EventStore:
    if state.event_store is None:
        raise HTTPException(status_code=503, detail="Event store not initialized")
    return state.event_store


def get_coordinator() -> ImportCoordinator:
    if state.coordinator is None:
        raise HTTPException(status_code=503, detail="Import pipeline not initialized")
    return state.coordinator
