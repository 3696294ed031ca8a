import logging
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from api.dependencies import get_coordinator
from pipeline.coordinator import ImportCoordinator
from syllabus_sync.metrics import REQUESTS_TOTAL
from syllabus_sync.models import DocumentReference

router = APIRouter(prefix="/imports")
logger = logging.getLogger(__name__)


class ImportIn(BaseModel):
    path: str
    wait: bool = False


@router.post("", status_code=202)
async def start_import(
    payload: ImportIn,
    coordinator: ImportCoordinator = Depends(get_coordinator),
) -> dict:
    document = DocumentReference.from_path(payload.path)
    logger.info(f"Import requested for {document.path} (wait={payload.wait})")

    if payload.wait:
        session = await coordinator.import_document(document)
    else:
        session = await coordinator.begin(document)

    REQUESTS_TOTAL.labels(endpoint="/imports", status=session.stage.value).inc()
    return session.status()


@router.get("/current")
async def current_import(coordinator: ImportCoordinator = Depends(get_coordinator)) -> dict:
    if coordinator.current is None:
        raise HTTPException(status_code=404, detail="No import in progress")
    return coordinator.current.status()


@router.post("/cancel")
async def cancel_import(coordinator: ImportCoordinator = Depends(get_coordinator)) -> dict:
    cancelled = coordinator.cancel()
    REQUESTS_TOTAL.labels(endpoint="/imports/cancel", status=str(cancelled).lower()).inc()
    return {"cancelled": cancelled}


@router.post("/retry")
async def retry_import(coordinator: ImportCoordinator = Depends(get_coordinator)) -> dict:
    if coordinator.last_document is None:
        raise HTTPException(status_code=409, detail="No previous import to retry")
    session = await coordinator.retry_last_import()
    REQUESTS_TOTAL.labels(endpoint="/imports/retry", status=session.stage.value).inc()
    return session.status()


@router.post("/dismiss")
async def dismiss_import(coordinator: ImportCoordinator = Depends(get_coordinator)) -> dict:
    await coordinator.dismiss()
    return {"status": "dismissed"}
