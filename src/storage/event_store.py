"""
EventStore: the canonical, locally cached collection of events.

The store is the only writer of the collection. Import sessions propose drafts
through reconcile(); user edits go through update()/delete_event(). Every
mutation runs under one asyncio.Lock so operations apply in submission order.

Local state is written first and the remote backend second. A remote failure
never rolls back a local change: the item is flagged dirty and pushed again by
the next refresh().
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple, TypeVar, Union

from recurrence.engine import upcoming as upcoming_events
from storage.local_cache import CachedEvent, CacheSnapshot, LocalEventCache
from storage.remote_backend import RemoteEventBackend
from syllabus_sync.config import StoreConfig, load_store_config
from syllabus_sync.errors import (
    ErrorCategory,
    NotAuthenticatedError,
    ReconcileCancelled,
    RemoteBackendError,
    SyncError,
)
from syllabus_sync.metrics import DIRTY_EVENTS, EVENTS_IN_STORE
from syllabus_sync.models import EventItem

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[Tuple[EventItem, ...]], None]


class StoreState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"


@dataclass
class SyncMeta:
    dirty: bool = False
    last_synced_at: Optional[datetime] = None
    source_document_id: Optional[str] = None


@dataclass
class ReconcileResult:
    added: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    dirty: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.updated)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EventStore:
    def __init__(
        self,
        backend: RemoteEventBackend,
        cache: Optional[LocalEventCache] = None,
        current_user: Callable[[], Optional[str]] = lambda: None,
        config: Optional[StoreConfig] = None,
    ):
        self.backend = backend
        self.config = config or load_store_config()
        self.cache = cache or LocalEventCache(path=None)
        self.current_user = current_user

        self._events: Dict[str, EventItem] = {}
        self._meta: Dict[str, SyncMeta] = {}
        self._pending_deletes: Set[str] = set()
        self._drafts: List[EventItem] = []
        self._state = StoreState.UNINITIALIZED
        self._last_fetched_at: Optional[datetime] = None
        self._listeners: List[Listener] = []
        self._lock = asyncio.Lock()

    @property
    def events(self) -> List[EventItem]:
        return list(self._events.values())

    @property
    def state(self) -> StoreState:
        return self._state

    @property
    def last_fetched_at(self) -> Optional[datetime]:
        return self._last_fetched_at

    @property
    def dirty_ids(self) -> List[str]:
        return [eid for eid, meta in self._meta.items() if meta.dirty]

    @property
    def pending_deletes(self) -> List[str]:
        return sorted(self._pending_deletes)

    @property
    def pending_drafts(self) -> List[EventItem]:
        return list(self._drafts)

    def get(self, event_id: str) -> Optional[EventItem]:
        return self._events.get(event_id)

    def sync_meta(self, event_id: str) -> Optional[SyncMeta]:
        return self._meta.get(event_id)

    def events_for_course(self, course_code: str) -> List[EventItem]:
        code = course_code.strip().lower()
        return [e for e in self._events.values() if e.course_code.lower() == code]

    def upcoming(self, now: Optional[datetime] = None) -> List[EventItem]:
        return upcoming_events(self._events.values(), now or _now())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with a snapshot after every commit."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _require_user(self) -> str:
        user_id = self.current_user()
        if not user_id:
            raise NotAuthenticatedError()
        return user_id

    async def _remote(self, operation: str, call: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(call, timeout=self.config.remote_timeout_s)
        except asyncio.TimeoutError as e:
            raise RemoteBackendError(
                f"Remote {operation} timed out after {self.config.remote_timeout_s}s",
                ErrorCategory.NETWORK,
            ) from e

    def _mark_synced(self, event_id: str, when: datetime) -> None:
        meta = self._meta.setdefault(event_id, SyncMeta())
        meta.dirty = False
        meta.last_synced_at = when

    def _persist(self) -> None:
        snapshot = CacheSnapshot(
            user_id=self.current_user(),
            events=[
                CachedEvent(
                    event=event,
                    dirty=self._meta.get(eid, SyncMeta()).dirty,
                    last_synced_at=self._meta.get(eid, SyncMeta()).last_synced_at,
                    source_document_id=self._meta.get(eid, SyncMeta()).source_document_id,
                )
                for eid, event in self._events.items()
            ],
            pending_deletes=sorted(self._pending_deletes),
            last_fetched_at=self._last_fetched_at,
        )
        self.cache.save(snapshot)

    def _notify(self) -> None:
        EVENTS_IN_STORE.set(len(self._events))
        DIRTY_EVENTS.set(len(self.dirty_ids))
        snapshot = tuple(self._events.values())
        for listener in list(self._listeners):
            listener(snapshot)

    def _commit(self) -> None:
        self._persist()
        self._notify()

    async def _fetch_locked(self, user_id: str) -> None:
        remote = await self._remote("fetch", self.backend.fetch_all(user_id))
        fetched_at = _now()

        previous_meta = self._meta
        self._events = {}
        self._meta = {}
        for event in remote:
            self._events[event.id] = event
            old = previous_meta.get(event.id)
            self._meta[event.id] = SyncMeta(
                dirty=False,
                last_synced_at=fetched_at,
                source_document_id=old.source_document_id if old else None,
            )
        self._pending_deletes.clear()
        self._last_fetched_at = fetched_at
        self._state = StoreState.LOADED
        self._commit()
        logger.info(f"Fetched {len(remote)} event(s) for user {user_id}")

    async def fetch(self) -> None:
        """Replace the collection with the remote copy for the current user."""
        user_id = self._require_user()
        async with self._lock:
            await self._fetch_locked(user_id)

    async def _flush_locked(self, user_id: str) -> List[str]:
        failed: List[str] = []

        dirty = [self._events[eid] for eid in self.dirty_ids if eid in self._events]
        if dirty:
            try:
                await self._remote("upsert", self.backend.upsert(user_id, dirty))
                when = _now()
                for event in dirty:
                    self._mark_synced(event.id, when)
            except RemoteBackendError as e:
                logger.warning(f"Flush of {len(dirty)} dirty event(s) failed: {e}")
                failed.extend(ev.id for ev in dirty)

        for event_id in sorted(self._pending_deletes):
            try:
                await self._remote("delete", self.backend.delete(user_id, event_id))
                self._pending_deletes.discard(event_id)
            except RemoteBackendError as e:
                logger.warning(f"Pending delete of {event_id} failed: {e}")
                failed.append(event_id)

        self._persist()
        return failed

    async def refresh(self) -> None:
        """Push pending local changes, then fetch. Raises SyncError if the push fails."""
        user_id = self._require_user()
        async with self._lock:
            failed = await self._flush_locked(user_id)
            if failed:
                self._notify()
                raise SyncError(
                    f"{len(failed)} local change(s) could not be pushed; refresh aborted",
                    failed_ids=failed,
                )
            await self._fetch_locked(user_id)

    async def _compensate(
        self,
        user_id: str,
        added: List[str],
        previous: Dict[str, EventItem],
    ) -> None:
        """Undo a remote push whose local commit never happened."""
        for event_id in added:
            try:
                await self._remote("delete", self.backend.delete(user_id, event_id))
            except RemoteBackendError as e:
                logger.warning(f"Could not roll back pushed draft {event_id}: {e}")
                self._pending_deletes.add(event_id)
        if previous:
            try:
                await self._remote("upsert", self.backend.upsert(user_id, list(previous.values())))
            except RemoteBackendError as e:
                logger.warning(f"Could not restore {len(previous)} overwritten event(s): {e}")
                for event_id in previous:
                    self._meta.setdefault(event_id, SyncMeta()).dirty = True
        self._persist()

    async def reconcile(
        self,
        drafts: List[EventItem],
        source_document_id: Optional[str],
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ReconcileResult:
        """Merge drafts into the collection by exact id.

        Matching ids are replaced in place, everything else is appended. The
        drafts become visible together in one commit, after the remote push.
        If cancel_event is set before that commit, the push is undone and
        ReconcileCancelled is raised.
        """
        user_id = self._require_user()
        async with self._lock:
            unique: Dict[str, EventItem] = {}
            for draft in drafts:
                unique[draft.id] = draft
            batch = list(unique.values())
            self._drafts = batch

            result = ReconcileResult()
            previous: Dict[str, EventItem] = {}
            for draft in batch:
                if draft.id in self._events:
                    result.updated.append(draft.id)
                    previous[draft.id] = self._events[draft.id]
                else:
                    result.added.append(draft.id)

            pushed = False
            try:
                if batch:
                    await self._remote("upsert", self.backend.upsert(user_id, batch))
                pushed = True
            except RemoteBackendError as e:
                logger.warning(f"Push of {len(batch)} draft(s) failed, committing as dirty: {e}")
            except asyncio.CancelledError:
                logger.info("Reconcile cancelled during remote push, rolling back")
                self._drafts = []
                await self._compensate(user_id, result.added, previous)
                raise

            if cancel_event is not None and cancel_event.is_set():
                logger.info("Reconcile cancelled before commit, rolling back")
                self._drafts = []
                if pushed:
                    await self._compensate(user_id, result.added, previous)
                raise ReconcileCancelled()

            when = _now()
            for draft in batch:
                self._events[draft.id] = draft
                meta = SyncMeta(source_document_id=source_document_id)
                if pushed:
                    meta.last_synced_at = when
                else:
                    meta.dirty = True
                    result.dirty.append(draft.id)
                self._meta[draft.id] = meta

            self._drafts = []
            self._state = StoreState.LOADED
            self._commit()
            logger.info(
                f"Reconciled {len(batch)} draft(s) from {source_document_id}: "
                f"{len(result.added)} added, {len(result.updated)} updated, {len(result.dirty)} dirty"
            )
            return result

    async def update(self, event: EventItem) -> bool:
        """Upsert by id. Returns True when the remote copy was updated too."""
        async with self._lock:
            meta = self._meta.get(event.id) or SyncMeta()
            meta.dirty = True
            self._events[event.id] = event
            self._meta[event.id] = meta
            self._pending_deletes.discard(event.id)
            self._commit()

            user_id = self.current_user()
            if not user_id:
                return False
            try:
                await self._remote("upsert", self.backend.upsert(user_id, [event]))
            except RemoteBackendError as e:
                logger.warning(f"Remote update of {event.id} failed, kept locally as dirty: {e}")
                return False

            self._mark_synced(event.id, _now())
            self._commit()
            return True

    async def delete_event(self, event: Union[EventItem, str]) -> bool:
        """Remove by id. Returns False when the id was not present."""
        event_id = event.id if isinstance(event, EventItem) else event
        async with self._lock:
            if event_id not in self._events:
                return False

            del self._events[event_id]
            self._meta.pop(event_id, None)
            self._pending_deletes.add(event_id)
            self._commit()

            user_id = self.current_user()
            if not user_id:
                return True
            try:
                await self._remote("delete", self.backend.delete(user_id, event_id))
                self._pending_deletes.discard(event_id)
                self._persist()
            except RemoteBackendError as e:
                logger.warning(f"Remote delete of {event_id} failed, will retry on refresh: {e}")
            return True

    async def auto_approve(self, events: List[EventItem]) -> List[str]:
        """Insert events as accepted, without reconciliation. Returns dirty ids."""
        async with self._lock:
            for event in events:
                self._events[event.id] = event
                self._meta[event.id] = SyncMeta(dirty=True)
            self._commit()

            user_id = self.current_user()
            if not user_id or not events:
                return [e.id for e in events]
            try:
                await self._remote("upsert", self.backend.upsert(user_id, list(events)))
            except RemoteBackendError as e:
                logger.warning(f"Remote auto-approve of {len(events)} event(s) failed: {e}")
                return [e.id for e in events]

            when = _now()
            for event in events:
                self._mark_synced(event.id, when)
            self._commit()
            return []

    async def clear_events(self) -> None:
        """Wipe everything held locally. Remote state is left alone."""
        async with self._lock:
            self._events = {}
            self._meta = {}
            self._pending_deletes.clear()
            self._drafts = []
            self._last_fetched_at = None
            self._state = StoreState.UNINITIALIZED
            self.cache.clear()
            self._notify()
            logger.info("Event store cleared")

    async def delete_all_events(self) -> bool:
        """Delete every event of the current user, locally and remotely.

        Unlike clear_events() this reaches the backend. If the remote wipe
        fails, the removed ids stay queued as pending deletes for refresh().
        Returns True when the remote copy was wiped too.
        """
        user_id = self._require_user()
        async with self._lock:
            removed = set(self._events) | self._pending_deletes
            self._events = {}
            self._meta = {}
            self._drafts = []
            self._pending_deletes = removed
            self._state = StoreState.LOADED
            self._commit()

            try:
                await self._remote("delete_all", self.backend.delete_all(user_id))
            except RemoteBackendError as e:
                logger.warning(f"Remote delete of all events failed, {len(removed)} pending: {e}")
                return False

            self._pending_deletes.clear()
            self._persist()
            logger.info(f"Deleted all events for user {user_id}")
            return True

    async def restore(self) -> int:
        """Load the local cache into memory. Returns the number of events restored."""
        async with self._lock:
            snapshot = self.cache.load()
            user_id = self.current_user()
            if snapshot.user_id is not None and snapshot.user_id != user_id:
                logger.info("Local cache belongs to another user, not restoring it")
                return 0

            self._events = {}
            self._meta = {}
            for row in snapshot.events:
                self._events[row.event.id] = row.event
                self._meta[row.event.id] = SyncMeta(
                    dirty=row.dirty,
                    last_synced_at=row.last_synced_at,
                    source_document_id=row.source_document_id,
                )
            self._pending_deletes = set(snapshot.pending_deletes)
            self._last_fetched_at = snapshot.last_fetched_at
            self._notify()
            return len(self._events)
