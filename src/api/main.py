import logging
import os

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api import state
from api.routers import events, imports, ops, session
from extraction.document_extractor import MultiFormatExtractor
from parsing.parser_client import ParserClient
from pipeline.coordinator import ImportCoordinator
from storage import db
from storage.event_store import EventStore
from storage.local_cache import LocalEventCache
from storage.remote_backend import InMemoryEventBackend, PostgresEventBackend, RemoteEventBackend
from syllabus_sync.config import load_import_config, load_store_config
from syllabus_sync.errors import (
    ErrorCategory,
    NotAuthenticatedError,
    SyllabusSyncError,
    SyncError,
)

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

INIT_DB_SCHEMA = os.getenv("INIT_DB_SCHEMA", "true").lower() in {"1", "true", "yes"}

HTTP_STATUS = {
    ErrorCategory.VALIDATION: 400,
    ErrorCategory.NETWORK: 503,
    ErrorCategory.SERVER: 502,
    ErrorCategory.INVALID_RESPONSE: 502,
    ErrorCategory.UNKNOWN: 500,
}

app = FastAPI(title="Syllabus Sync")
app.include_router(ops.router)
app.include_router(imports.router)
app.include_router(events.router)
app.include_router(session.router)


@app.exception_handler(SyllabusSyncError)
async def domain_error_handler(request: Request, exc: SyllabusSyncError) -> JSONResponse:
    if isinstance(exc, NotAuthenticatedError):
        status = 401
    elif isinstance(exc, SyncError):
        status = 409
    else:
        status = HTTP_STATUS[exc.category]
    body = {"detail": exc.message, "category": exc.category.value}
    if isinstance(exc, SyncError):
        body["failed_ids"] = exc.failed_ids
    logger.warning(f"{request.method} {request.url.path} -> {status}: {exc.message}")
    return JSONResponse(status_code=status, content=body)


async def _build_backend(kind: str) -> RemoteEventBackend:
    if kind == "postgres":
        await db.init_db_pool()
        if INIT_DB_SCHEMA:
            await db.init_schema()
        state.uses_database = True
        return PostgresEventBackend()
    return InMemoryEventBackend()


@app.on_event("startup")
async def startup() -> None:
    if state.event_store is not None:
        # already wired (tests or an embedding application)
        return

    store_config = load_store_config()
    backend = await _build_backend(store_config.backend)
    store = EventStore(
        backend,
        cache=LocalEventCache(path=store_config.cache_path),
        current_user=state.get_current_user,
        config=store_config,
    )
    restored = await store.restore()
    logger.info(f"Restored {restored} cached event(s) ({store_config.backend} backend)")

    state.parser_client = ParserClient()
    state.event_store = store
    state.coordinator = ImportCoordinator(
        MultiFormatExtractor(),
        state.parser_client,
        store,
        load_import_config(),
    )


@app.on_event("shutdown")
async def shutdown() -> None:
    if state.coordinator is not None:
        await state.coordinator.dismiss()
    if state.parser_client is not None:
        await state.parser_client.aclose()
    if state.uses_database:
        await db.close_db_pool()
        state.uses_database = False
