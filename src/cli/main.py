"""
Command line entry point.

    syllabus-sync import <path>   run the import pipeline on a document
    syllabus-sync list            show cached events (optionally upcoming only)
    syllabus-sync refresh         push local changes, then pull from the backend

Exit codes: 0 success, 1 unknown, 2 validation, 3 network, 4 server,
5 invalid response, 130 cancelled.
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import List, Optional

import asyncpg

from extraction.document_extractor import DocumentExtractor, MultiFormatExtractor
from parsing.parser_client import ParserClient
from pipeline.coordinator import ImportCoordinator
from recurrence.engine import effective_date, sort_by_next_occurrence, upcoming as upcoming_events
from storage import db
from storage.event_store import EventStore
from storage.local_cache import LocalEventCache
from storage.remote_backend import InMemoryEventBackend, PostgresEventBackend
from syllabus_sync.config import StoreConfig, load_import_config, load_store_config
from syllabus_sync.errors import (
    EXIT_CANCELLED,
    EXIT_CODES,
    ErrorCategory,
    RemoteBackendError,
    SyllabusSyncError,
)
from syllabus_sync.models import DocumentReference, ImportStage, ProgressEvent

logger = logging.getLogger(__name__)


def _print_progress(event: ProgressEvent) -> None:
    print(f"[{event.progress * 100:5.1f}%] {event.stage.value:<13} {event.message}", flush=True)


async def _open_store(config: StoreConfig, user_id: str) -> EventStore:
    if config.backend == "postgres":
        try:
            await db.init_db_pool()
            await db.init_schema()
        except (OSError, asyncio.TimeoutError) as e:
            raise RemoteBackendError(f"Database unreachable: {e}", ErrorCategory.NETWORK) from e
        except asyncpg.PostgresError as e:
            raise RemoteBackendError(f"Database rejected the connection: {e}", ErrorCategory.SERVER) from e
        backend = PostgresEventBackend()
    else:
        backend = InMemoryEventBackend()

    store = EventStore(
        backend,
        cache=LocalEventCache(path=config.cache_path),
        current_user=lambda: user_id,
        config=config,
    )
    await store.restore()
    return store


async def _close(config: StoreConfig) -> None:
    if config.backend == "postgres":
        await db.close_db_pool()


async def run_import(
    store: EventStore,
    path: str,
    quiet: bool = False,
    parser: Optional[ParserClient] = None,
    extractor: Optional[DocumentExtractor] = None,
) -> int:
    document = DocumentReference.from_path(path)
    owns_parser = parser is None
    parser = parser or ParserClient()
    try:
        coordinator = ImportCoordinator(
            extractor or MultiFormatExtractor(), parser, store, load_import_config()
        )
        session = await coordinator.import_document(
            document, listener=None if quiet else _print_progress
        )
    finally:
        if owns_parser:
            await parser.aclose()

    if session.stage == ImportStage.COMPLETED:
        result = session.reconcile_result
        added = len(result.added) if result else 0
        print(f"Imported {added} event(s) from {document.path.name}")
        for note in session.parse_result.skipped if session.parse_result else []:
            print(f"  {note}")
        if session.diagnostics_summary:
            print(f"  {session.diagnostics_summary}")
        return 0

    if session.stage == ImportStage.CANCELLED:
        print("Import cancelled", file=sys.stderr)
        return EXIT_CANCELLED

    error = session.error
    print(
        f"Import failed ({error.category.value}): {error.message} [request {error.request_id}]",
        file=sys.stderr,
    )
    return EXIT_CODES[error.category]


def run_list(store: EventStore, upcoming: bool = False, course: Optional[str] = None) -> int:
    now = datetime.now(timezone.utc)
    events = store.events_for_course(course) if course else store.events
    events = upcoming_events(events, now) if upcoming else sort_by_next_occurrence(events, now)

    dirty = set(store.dirty_ids)
    for event in events:
        when = effective_date(event, now)
        flag = " *" if event.id in dirty else ""
        code = event.course_code or "-"
        print(f"{when:%Y-%m-%d %H:%M}  {code:<10} {event.type.value:<10} {event.title}{flag}")
    print(f"{len(events)} event(s)")
    return 0


async def run_refresh(store: EventStore, config: StoreConfig) -> int:
    if config.backend != "postgres":
        print("refresh needs a remote backend (set STORE_BACKEND=postgres)", file=sys.stderr)
        return EXIT_CODES[ErrorCategory.VALIDATION]
    await store.refresh()
    print(f"Refreshed: {len(store.events)} event(s)")
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="syllabus-sync", description="Import syllabus events")
    parser.add_argument("--user", default=None, help="User id (defaults to SYLLABUS_USER_ID)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p_import = sub.add_parser("import", help="Import a syllabus document")
    p_import.add_argument("path")
    p_import.add_argument("-q", "--quiet", action="store_true", help="Do not print progress")

    p_list = sub.add_parser("list", help="List cached events")
    p_list.add_argument("--upcoming", action="store_true")
    p_list.add_argument("--course", default=None)

    sub.add_parser("refresh", help="Sync with the remote backend")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    config = load_store_config()
    user_id = args.user or config.user_id
    try:
        store = await _open_store(config, user_id)
        if args.command == "import":
            return await run_import(store, args.path, quiet=args.quiet)
        if args.command == "list":
            return run_list(store, upcoming=args.upcoming, course=args.course)
        return await run_refresh(store, config)
    except SyllabusSyncError as e:
        print(f"Error ({e.category.value}): {e.message}", file=sys.stderr)
        return EXIT_CODES[e.category]
    finally:
        await _close(config)


def cli() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        code = EXIT_CANCELLED
    sys.exit(code)


if __name__ == "__main__":
    cli()
