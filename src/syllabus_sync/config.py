"""
Runtime configuration.

Values come from environment variables so the same code runs in the API
container, the CLI and tests. Limits (document types, sizes, timeouts) live
here instead of in the pipeline.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def _env_list(name: str, default: str) -> Tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class ImportConfig:
    allowed_content_types: Tuple[str, ...] = ("application/pdf", "text/plain")
    max_document_bytes: int = 20 * 1024 * 1024
    parse_timeout_s: float = 90.0
    progress_tick_s: float = 0.25
    annotate_markers: bool = True


@dataclass(frozen=True)
class ParserConfig:
    base_url: str = "http://localhost:8787"
    parse_path: str = "/parse"
    timeout_s: float = 90.0
    connect_timeout_s: float = 5.0
    max_retries: int = 1
    retry_backoff_s: float = 0.8
    timezone: str = "UTC"
    client_id: Optional[str] = None


@dataclass(frozen=True)
class StoreConfig:
    remote_timeout_s: float = 15.0
    cache_path: Optional[str] = "data/events_cache.json"
    user_id: str = "default"
    backend: str = "memory"


def load_import_config() -> ImportConfig:
    return ImportConfig(
        allowed_content_types=_env_list(
            "IMPORT_ALLOWED_CONTENT_TYPES", "application/pdf,text/plain"
        ),
        max_document_bytes=int(os.getenv("IMPORT_MAX_DOCUMENT_BYTES", str(20 * 1024 * 1024))),
        parse_timeout_s=float(os.getenv("IMPORT_PARSE_TIMEOUT_S", "90")),
        progress_tick_s=float(os.getenv("IMPORT_PROGRESS_TICK_S", "0.25")),
        annotate_markers=_env_bool("IMPORT_ANNOTATE_MARKERS", "true"),
    )


def load_parser_config() -> ParserConfig:
    return ParserConfig(
        base_url=os.getenv("PARSER_BASE_URL", "http://localhost:8787").strip().rstrip("/"),
        parse_path=os.getenv("PARSER_PARSE_PATH", "/parse").strip(),
        timeout_s=float(os.getenv("PARSER_TIMEOUT_S", "90")),
        connect_timeout_s=float(os.getenv("PARSER_CONNECT_TIMEOUT_S", "5")),
        max_retries=max(0, int(os.getenv("PARSER_MAX_RETRIES", "1"))),
        retry_backoff_s=float(os.getenv("PARSER_RETRY_BACKOFF_S", "0.8")),
        timezone=os.getenv("PARSER_TIMEZONE", "UTC").strip(),
        client_id=os.getenv("PARSER_CLIENT_ID") or None,
    )


def load_store_config() -> StoreConfig:
    return StoreConfig(
        remote_timeout_s=float(os.getenv("STORE_REMOTE_TIMEOUT_S", "15")),
        cache_path=os.getenv("STORE_CACHE_PATH", "data/events_cache.json") or None,
        user_id=os.getenv("SYLLABUS_USER_ID", "default").strip(),
        backend=os.getenv("STORE_BACKEND", "memory").strip().lower(),
    )
