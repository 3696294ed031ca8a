import logging
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api import state
from api.dependencies import get_coordinator, get_event_store
from pipeline.coordinator import ImportCoordinator
from storage.event_store import EventStore

router = APIRouter(prefix="/session")
logger = logging.getLogger(__name__)


class SignInIn(BaseModel):
    user_id: str = Field(..., min_length=1)


async def _end_session(coordinator: ImportCoordinator, store: EventStore) -> None:
    await coordinator.dismiss()
    await store.clear_events()


@router.post("/sign-in")
async def sign_in(
    payload: SignInIn,
    coordinator: ImportCoordinator = Depends(get_coordinator),
    store: EventStore = Depends(get_event_store),
) -> dict:
    user_id = payload.user_id.strip()
    if state.current_user_id == user_id:
        # same user: unsynced local edits must be pushed before the pull replaces them
        logger.info(f"Already signed in as {user_id}, refreshing")
        await store.refresh()
        return {"user_id": user_id, "events": len(store.events)}

    await _end_session(coordinator, store)
    state.current_user_id = user_id
    logger.info(f"Signed in as {user_id}")

    await store.fetch()
    return {"user_id": user_id, "events": len(store.events)}


@router.post("/sign-out")
async def sign_out(
    coordinator: ImportCoordinator = Depends(get_coordinator),
    store: EventStore = Depends(get_event_store),
) -> dict:
    await _end_session(coordinator, store)
    previous = state.current_user_id
    state.current_user_id = None
    logger.info(f"Signed out {previous}")
    return {"signed_out": previous}
