"""
HTTP client for the remote syllabus parser.

POSTs preprocessed text to `{base_url}/parse` and turns the JSON answer into
validated EventItem drafts. Every failure leaves here as a ParserError with a
category, so callers never have to inspect httpx exceptions.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from parsing.schemas import ParseRequest, ParseResponse, ServerErrorBody
from syllabus_sync.config import ParserConfig, load_parser_config
from syllabus_sync.errors import ErrorCategory, ParserError
from syllabus_sync.metrics import (
    DRAFTS_SKIPPED_TOTAL,
    PARSE_LATENCY_SECONDS,
    PARSE_REQUESTS_TOTAL,
)
from syllabus_sync.models import EventItem, ParseDiagnostics, ParseResult

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408} | set(range(500, 600))


def _retry_after(response: httpx.Response) -> Optional[int]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _server_message(response: httpx.Response) -> str:
    try:
        body = ServerErrorBody.model_validate(response.json())
        detail = body.message or body.error
    except (ValueError, ValidationError):
        detail = None
    return detail or f"The parser returned an error (status {response.status_code})."


def _status_error(response: httpx.Response) -> ParserError:
    status = response.status_code
    if status == 401:
        message = "The parser rejected the request (unauthorized)."
    elif status == 429:
        message = "The parser is rate limited. Please try again later."
    else:
        message = _server_message(response)
    return ParserError(
        message,
        ErrorCategory.SERVER,
        status_code=status,
        retry_after=_retry_after(response) if status != 401 else None,
    )


def validate_drafts(raw_events: List[Any]) -> Tuple[List[EventItem], List[str]]:
    """Validate drafts one by one; invalid ones are skipped and reported."""
    drafts: List[EventItem] = []
    skipped: List[str] = []
    for idx, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            skipped.append(f"Skipped event #{idx + 1}: not an object")
            continue
        try:
            drafts.append(EventItem.model_validate(raw))
        except ValidationError as e:
            title = raw.get("title")
            label = f"'{title}'" if title else f"#{idx + 1}"
            reasons = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'event'}: {err['msg']}"
                for err in e.errors()
            )
            skipped.append(f"Skipped event {label}: {reasons}")
    return drafts, skipped


def _diagnostics(response: ParseResponse) -> ParseDiagnostics:
    env = response.diagnostics
    validation = env.validation if env else None
    openai = env.openai if env else None
    return ParseDiagnostics(
        source=response.source,
        confidence=response.confidence,
        processing_time_ms=env.processing_time_ms if env else None,
        text_length=env.text_length if env else None,
        warnings=list(env.warnings) if env else [],
        total_events=validation.total_events if validation else None,
        valid_events=validation.valid_events if validation else None,
        invalid_events=validation.invalid_events if validation else None,
        model_name=openai.used_model if openai else None,
        denied_reason=openai.denied if openai else None,
    )


class ParserClient:
    def __init__(
        self,
        config: Optional[ParserConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or load_parser_config()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_s, connect=self.config.connect_timeout_s),
        )

    async def __aenter__(self) -> "ParserClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, payload: dict, headers: dict) -> httpx.Response:
        attempts = self.config.max_retries + 1
        last_error: Optional[ParserError] = None

        for attempt in range(attempts):
            final = attempt == attempts - 1
            try:
                response = await self._client.post(
                    self.config.parse_path, json=payload, headers=headers
                )
            except httpx.TimeoutException as e:
                PARSE_REQUESTS_TOTAL.labels(status="timeout").inc()
                last_error = ParserError(
                    "The parser took too long to respond. Please try again.",
                    ErrorCategory.NETWORK,
                )
                logger.warning(f"Parser timeout (attempt {attempt + 1}/{attempts}): {e}")
                if final:
                    raise last_error from e
                continue
            except httpx.TransportError as e:
                PARSE_REQUESTS_TOTAL.labels(status="transport_error").inc()
                last_error = ParserError(
                    "Unable to reach the parsing service. Please check your connection.",
                    ErrorCategory.NETWORK,
                )
                logger.warning(f"Parser transport error (attempt {attempt + 1}/{attempts}): {e}")
                if final:
                    raise last_error from e
                await asyncio.sleep(self.config.retry_backoff_s)
                continue

            PARSE_REQUESTS_TOTAL.labels(status=str(response.status_code)).inc()
            if response.is_success:
                return response

            last_error = _status_error(response)
            if response.status_code in RETRYABLE_STATUS and not final:
                logger.warning(
                    f"Parser returned {response.status_code} (attempt {attempt + 1}/{attempts}), retrying"
                )
                await asyncio.sleep(self.config.retry_backoff_s)
                continue
            raise last_error

        # only reachable with a negative retry count
        raise last_error or ParserError("Parser request was not attempted", ErrorCategory.UNKNOWN)

    async def parse(self, text: str, request_id: Optional[str] = None) -> ParseResult:
        trimmed = (text or "").strip()
        if not trimmed:
            raise ParserError("There is no text to parse.", ErrorCategory.VALIDATION)

        request_id = request_id or str(uuid.uuid4())
        payload = ParseRequest(text=trimmed, timezone=self.config.timezone).model_dump()
        headers = {"x-request-id": request_id}
        if self.config.client_id:
            headers["x-client-id"] = self.config.client_id

        started = time.perf_counter()
        response = await self._post(payload, headers)
        PARSE_LATENCY_SECONDS.observe(time.perf_counter() - started)

        raw_text = response.text
        try:
            body = response.json()
        except ValueError as e:
            raise ParserError(
                "The parser response could not be decoded.", ErrorCategory.INVALID_RESPONSE
            ) from e

        try:
            parsed = ParseResponse.model_validate(body)
        except ValidationError as e:
            raise ParserError(
                f"The parser response did not match the expected shape: {e.error_count()} error(s)",
                ErrorCategory.INVALID_RESPONSE,
            ) from e

        drafts, skipped = validate_drafts(parsed.events)
        if skipped:
            DRAFTS_SKIPPED_TOTAL.inc(len(skipped))
            for msg in skipped:
                logger.info(f"[{request_id}] {msg}")

        if parsed.events and not drafts:
            raise ParserError(
                f"None of the {len(parsed.events)} parsed event(s) were valid.",
                ErrorCategory.VALIDATION,
            )

        diagnostics = _diagnostics(parsed)
        logger.info(f"[{request_id}] Parsed {len(drafts)} draft(s): {diagnostics.describe()}")
        return ParseResult(
            drafts=drafts,
            skipped=skipped,
            diagnostics=diagnostics,
            raw_response=raw_text,
            preprocessed_text=parsed.preprocessed_text,
        )
