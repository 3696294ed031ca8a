from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError

from syllabus_sync.models import EventItem

logger = logging.getLogger(__name__)


class CachedEvent(BaseModel):
    event: EventItem
    dirty: bool = False
    last_synced_at: Optional[datetime] = None
    source_document_id: Optional[str] = None


class CacheSnapshot(BaseModel):
    user_id: Optional[str] = None
    events: List[CachedEvent] = Field(default_factory=list)
    pending_deletes: List[str] = Field(default_factory=list)
    last_fetched_at: Optional[datetime] = None


class LocalEventCache:
    """JSON file holding the last known event table.

    `path=None` keeps the snapshot in memory only. A missing or corrupt file
    loads as an empty snapshot.
    """

    def __init__(self, path: Optional[str] = "data/events_cache.json"):
        self.path = Path(path) if path else None
        self._memory: Optional[CacheSnapshot] = None

    def load(self) -> CacheSnapshot:
        if self.path is None:
            return self._memory.model_copy(deep=True) if self._memory else CacheSnapshot()
        if not self.path.exists():
            return CacheSnapshot()
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return CacheSnapshot.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable event cache {self.path}: {e}")
            return CacheSnapshot()

    def save(self, snapshot: CacheSnapshot) -> None:
        if self.path is None:
            self._memory = snapshot.model_copy(deep=True)
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = snapshot.model_dump(mode="json", by_alias=True)

        # readers only ever see a complete file
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(
            json.dumps(data, ensure_ascii=False, indent=2),
            encoding="utf-8",
        )
        tmp.replace(self.path)

    def clear(self) -> None:
        self._memory = None
        if self.path is not None and self.path.exists():
            self.path.unlink()
