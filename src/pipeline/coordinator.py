from __future__ import annotations

import asyncio
import logging
from typing import Optional

from extraction.document_extractor import DocumentExtractor
from parsing.parser_client import ParserClient
from pipeline.import_session import ImportSession, ProgressListener
from storage.event_store import EventStore
from syllabus_sync.config import ImportConfig, load_import_config
from syllabus_sync.models import DocumentReference, ImportErrorState

logger = logging.getLogger(__name__)


class ImportCoordinator:
    """Keeps at most one running ImportSession per EventStore.

    A new import cancels the one in flight and waits for it to wind down
    before starting (last request wins).
    """

    def __init__(
        self,
        extractor: DocumentExtractor,
        parser: ParserClient,
        store: EventStore,
        config: Optional[ImportConfig] = None,
    ):
        self.extractor = extractor
        self.parser = parser
        self.store = store
        self.config = config or load_import_config()

        self.current: Optional[ImportSession] = None
        self.last_document: Optional[DocumentReference] = None
        self._task: Optional[asyncio.Task] = None
        self._last_error: Optional[ImportErrorState] = None

    @property
    def active(self) -> Optional[ImportSession]:
        if self.current is not None and not self.current.stage.is_terminal:
            return self.current
        return None

    @property
    def last_error(self) -> Optional[ImportErrorState]:
        return self._last_error

    def _on_done(self, session: ImportSession) -> None:
        if session is self.current and session.error is not None:
            self._last_error = session.error

    async def _stop_active(self) -> None:
        task = self._task
        if self.current is not None and task is not None and not task.done():
            logger.info(f"Cancelling in-flight import {self.current.request_id}")
            self.current.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def begin(
        self,
        document: DocumentReference,
        listener: Optional[ProgressListener] = None,
    ) -> ImportSession:
        """Start an import in the background and return its session."""
        await self._stop_active()

        session = ImportSession(self.extractor, self.parser, self.store, self.config)
        if listener is not None:
            session.add_listener(listener)
        self.current = session
        self.last_document = document
        self._last_error = None

        task = asyncio.create_task(session.start(document))
        task.add_done_callback(lambda _t: self._on_done(session))
        self._task = task
        return session

    async def import_document(
        self,
        document: DocumentReference,
        listener: Optional[ProgressListener] = None,
    ) -> ImportSession:
        """Run an import to its terminal stage."""
        session = await self.begin(document, listener)
        task = self._task
        await task
        self._on_done(session)
        return session

    def cancel(self) -> bool:
        session = self.active
        if session is None:
            return False
        session.cancel()
        return True

    async def retry_last_import(self) -> ImportSession:
        if self.last_document is None:
            raise RuntimeError("No previous import to retry")
        logger.info(f"Retrying import of {self.last_document.path}")
        self._last_error = None
        return await self.import_document(self.last_document)

    async def dismiss(self) -> None:
        """Continue without events: drop the session and its error, store untouched."""
        await self._stop_active()
        self.current = None
        self._task = None
        self._last_error = None
