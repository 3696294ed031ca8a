"""
ImportSession: one run of the import pipeline for one document.

    idle -> extracting -> preprocessing -> parsing -> reconciling -> completed
                         (cancelled / failed reachable from any non-terminal stage)

A session is single-use. start() drives every stage, reports progress to
listeners and always returns the terminal stage; pipeline failures end up in
`error` as an ImportErrorState instead of being raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from extraction.document_extractor import DocumentExtractor
from extraction.preprocess import detect_course_code, normalize_text, preprocess_text_for_ai
from parsing.parser_client import ParserClient
from storage.event_store import EventStore, ReconcileResult
from syllabus_sync.config import ImportConfig, load_import_config
from syllabus_sync.errors import (
    ErrorCategory,
    ParserError,
    ReconcileCancelled,
    SyllabusSyncError,
)
from syllabus_sync.metrics import IMPORT_DURATION_SECONDS, IMPORT_FAILURES_TOTAL, IMPORTS_TOTAL
from syllabus_sync.models import (
    DocumentReference,
    EventItem,
    ImportErrorState,
    ImportStage,
    ParseResult,
    ProgressEvent,
    new_event_id,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
ProgressListener = Callable[[ProgressEvent], None]

EXTRACT_CEILING = 0.3
PREPROCESS_CEILING = 0.6
PARSE_CEILING = 0.9

# crawl stops this far below a stage ceiling
CRAWL_MARGIN = 0.004
CRAWL_STEP = 0.1


class _SessionCancelled(Exception):
    pass


def _consume_result(task: "asyncio.Future[Any]") -> None:
    if not task.cancelled():
        task.exception()


class ImportSession:
    def __init__(
        self,
        extractor: DocumentExtractor,
        parser: ParserClient,
        store: EventStore,
        config: Optional[ImportConfig] = None,
        request_id: Optional[str] = None,
    ):
        self.extractor = extractor
        self.parser = parser
        self.store = store
        self.config = config or load_import_config()
        self.request_id = request_id or str(uuid.uuid4())

        self.stage = ImportStage.IDLE
        self.progress = 0.0
        self.message = ""
        self.error: Optional[ImportErrorState] = None
        self.document: Optional[DocumentReference] = None

        self.extracted_text: Optional[str] = None
        self.preprocessed_text: Optional[str] = None
        self.parse_result: Optional[ParseResult] = None
        self.reconcile_result: Optional[ReconcileResult] = None

        self._cancel = asyncio.Event()
        self._listeners: List[ProgressListener] = []

    @property
    def is_cancel_requested(self) -> bool:
        return self._cancel.is_set()

    @property
    def diagnostics_summary(self) -> Optional[str]:
        if self.parse_result is None or self.parse_result.diagnostics is None:
            return None
        return self.parse_result.diagnostics.describe()

    @property
    def raw_response(self) -> Optional[str]:
        return self.parse_result.raw_response if self.parse_result else None

    @property
    def drafts(self) -> List[EventItem]:
        return list(self.parse_result.drafts) if self.parse_result else []

    def add_listener(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def cancel(self) -> None:
        """Request cancellation. The stage in flight is abandoned immediately."""
        if not self.stage.is_terminal:
            logger.info(f"[{self.request_id}] Cancellation requested during {self.stage.value}")
            self._cancel.set()

    def status(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "stage": self.stage.value,
            "progress": round(self.progress, 4),
            "message": self.message,
            "document_id": self.document.document_id if self.document else None,
            "error": self.error.model_dump(mode="json") if self.error else None,
            "drafts": len(self.drafts),
            "skipped": list(self.parse_result.skipped) if self.parse_result else [],
            "diagnostics": self.diagnostics_summary,
        }

    def _emit(self, stage: ImportStage, progress: float, message: str) -> None:
        self.stage = stage
        self.progress = max(self.progress, min(progress, 1.0))
        self.message = message
        event = ProgressEvent(stage=stage, progress=self.progress, message=message)
        for listener in list(self._listeners):
            listener(event)

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise _SessionCancelled()

    async def _crawl(self, ceiling: float, message: str) -> None:
        while True:
            await asyncio.sleep(self.config.progress_tick_s)
            gap = ceiling - self.progress
            if gap > CRAWL_MARGIN + 0.001:
                target = min(self.progress + gap * CRAWL_STEP, ceiling - CRAWL_MARGIN)
                self._emit(self.stage, target, message)

    async def _guard(
        self,
        call: Awaitable[T],
        ceiling: Optional[float] = None,
        message: str = "",
        timeout: Optional[float] = None,
    ) -> T:
        """Await `call`, racing it against cancellation (and an optional timeout).

        While it runs, progress crawls toward `ceiling` without reaching it.
        """
        work = asyncio.ensure_future(call)
        cancel_wait = asyncio.ensure_future(self._cancel.wait())
        crawl = None
        if ceiling is not None and self.config.progress_tick_s > 0:
            crawl = asyncio.ensure_future(self._crawl(ceiling, message))
        try:
            done, _ = await asyncio.wait(
                {work, cancel_wait},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for fut in (work, cancel_wait, crawl):
                if fut is not None and not fut.done():
                    fut.cancel()
            work.add_done_callback(_consume_result)

        if work in done:
            return work.result()
        if self._cancel.is_set():
            raise _SessionCancelled()
        raise asyncio.TimeoutError()

    def _validate(self, document: DocumentReference) -> None:
        if document.content_type not in self.config.allowed_content_types:
            raise SyllabusSyncError(
                f"Unsupported document type: {document.content_type}",
                ErrorCategory.VALIDATION,
            )
        if document.size_bytes > self.config.max_document_bytes:
            raise SyllabusSyncError(
                f"Document is too large ({document.size_bytes} bytes, "
                f"limit {self.config.max_document_bytes})",
                ErrorCategory.VALIDATION,
            )

    def _fail(self, category: ErrorCategory, message: str) -> None:
        failed_at = datetime.now(timezone.utc)
        self.error = ImportErrorState(
            category=category,
            message=message,
            request_id=self.request_id,
            timestamp=failed_at,
            stage=self.stage,
        )
        logger.error(
            f"[ImportError][{self.request_id}] [{failed_at.isoformat()}] "
            f"type={category.value} stage={self.stage.value} message={message}"
        )
        IMPORT_FAILURES_TOTAL.labels(category=category.value).inc()
        self._emit(ImportStage.FAILED, self.progress, message)

    def _mark_cancelled(self) -> None:
        logger.info(f"[{self.request_id}] Import cancelled during {self.stage.value}")
        self._emit(ImportStage.CANCELLED, self.progress, "Import cancelled")

    def _prepare_drafts(self, drafts: List[EventItem], course_code: Optional[str]) -> List[EventItem]:
        prepared = []
        for draft in drafts:
            update: Dict[str, Any] = {"id": new_event_id()}
            if not draft.course_code and course_code:
                update["course_code"] = course_code
            prepared.append(draft.model_copy(update=update))
        return prepared

    async def _run(self, document: DocumentReference) -> None:
        self._check_cancel()
        self._validate(document)

        self._emit(ImportStage.EXTRACTING, 0.02, "Reading document...")
        text = await self._guard(
            self.extractor.extract(document), EXTRACT_CEILING, "Reading document..."
        )
        self.extracted_text = text
        self._check_cancel()

        self._emit(ImportStage.PREPROCESSING, EXTRACT_CEILING, "Preparing text...")
        normalized = normalize_text(text or "")
        if not normalized:
            raise SyllabusSyncError(
                "The extracted document text was empty.", ErrorCategory.VALIDATION
            )
        course_code = detect_course_code(normalized)
        prepared = preprocess_text_for_ai(normalized) if self.config.annotate_markers else normalized
        self.preprocessed_text = prepared
        self._emit(ImportStage.PREPROCESSING, 0.45, "Uploading document...")
        self._check_cancel()

        self._emit(ImportStage.PARSING, PREPROCESS_CEILING, "Analyzing content...")
        try:
            result = await self._guard(
                self.parser.parse(prepared, request_id=self.request_id),
                PARSE_CEILING,
                "Analyzing content...",
                timeout=self.config.parse_timeout_s,
            )
        except asyncio.TimeoutError as e:
            raise ParserError(
                "The parser took too long to respond. Please try again.",
                ErrorCategory.NETWORK,
            ) from e
        self.parse_result = result
        self._check_cancel()

        drafts = self._prepare_drafts(result.drafts, course_code)
        self._emit(ImportStage.RECONCILING, PARSE_CEILING, "Saving events...")
        self.reconcile_result = await self._guard(
            self.store.reconcile(drafts, document.document_id, cancel_event=self._cancel)
        )
        self._emit(ImportStage.COMPLETED, 1.0, "Import complete!")

    async def start(self, document: DocumentReference) -> ImportStage:
        if self.stage != ImportStage.IDLE:
            raise RuntimeError(f"Session {self.request_id} already {self.stage.value}")

        self.document = document
        started = time.perf_counter()
        logger.info(f"[{self.request_id}] Import started for {document.path} ({document.content_type})")
        try:
            await self._run(document)
        except (_SessionCancelled, ReconcileCancelled):
            self._mark_cancelled()
        except asyncio.CancelledError:
            self._mark_cancelled()
            raise
        except SyllabusSyncError as e:
            self._fail(e.category, e.message)
        except Exception as e:
            logger.exception(f"[{self.request_id}] Unexpected import failure")
            self._fail(ErrorCategory.UNKNOWN, str(e) or e.__class__.__name__)
        finally:
            IMPORTS_TOTAL.labels(outcome=self.stage.value).inc()
            IMPORT_DURATION_SECONDS.observe(time.perf_counter() - started)

        if self.stage == ImportStage.COMPLETED:
            logger.info(
                f"[{self.request_id}] Import completed: {len(self.drafts)} draft(s), "
                f"{self.diagnostics_summary or 'no diagnostics'}"
            )
        return self.stage

    async def retry_last_import(self) -> "ImportSession":
        """Run a fresh session on the same document. Returns the new session."""
        if self.document is None:
            raise RuntimeError("Nothing to retry: this session was never started")
        self.error = None
        session = ImportSession(self.extractor, self.parser, self.store, self.config)
        await session.start(self.document)
        return session
