import asyncio
import json

import httpx
import pytest

from parsing.parser_client import ParserClient, validate_drafts
from syllabus_sync.config import ParserConfig
from syllabus_sync.errors import ErrorCategory, ParserError

CONFIG = ParserConfig(
    base_url="http://parser.test",
    retry_backoff_s=0,
    max_retries=1,
    timezone="America/Toronto",
    client_id="desktop-1",
)

GOOD_BODY = {
    "events": [
        {"title": "Assignment 1", "type": "ASSIGNMENT", "start": "2025-09-20T23:59:00Z", "confidence": 0.9},
        {"title": "Midterm", "type": "MIDTERM", "start": "2025-10-10T10:00:00Z", "confidence": 0.6},
    ],
    "source": "openai",
    "confidence": 0.82,
    "preprocessedText": "[EVENT:ASSIGNMENT] Assignment 1",
    "diagnostics": {
        "processingTimeMs": 812,
        "textLength": 1200,
        "warnings": ["low contrast page"],
        "validation": {"totalEvents": 2, "validEvents": 2, "invalidEvents": 0},
        "openai": {"usedModel": "gpt-4o-mini"},
    },
}


def _client(handler, config=CONFIG) -> ParserClient:
    http = httpx.AsyncClient(base_url=config.base_url, transport=httpx.MockTransport(handler))
    return ParserClient(config=config, client=http)


def _parse(client: ParserClient, text: str = "Assignment 1 due Sept 20", **kwargs):
    async def go():
        try:
            return await client.parse(text, **kwargs)
        finally:
            await client._client.aclose()
    return asyncio.run(go())


def test_parse_success_sends_text_and_headers():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json=GOOD_BODY)

    result = _parse(_client(handler), "  Assignment 1 due Sept 20  ", request_id="req-42")

    assert seen["path"] == "/parse"
    assert seen["body"] == {"text": "Assignment 1 due Sept 20", "timezone": "America/Toronto"}
    assert seen["headers"]["x-request-id"] == "req-42"
    assert seen["headers"]["x-client-id"] == "desktop-1"

    assert [d.title for d in result.drafts] == ["Assignment 1", "Midterm"]
    assert result.skipped == []
    assert result.preprocessed_text == "[EVENT:ASSIGNMENT] Assignment 1"
    assert result.diagnostics.confidence == 0.82
    assert result.diagnostics.model_name == "gpt-4o-mini"
    assert result.diagnostics.valid_events == 2
    assert result.diagnostics.warnings == ["low contrast page"]
    assert json.loads(result.raw_response)["source"] == "openai"


def test_invalid_drafts_are_skipped_not_fatal():
    body = {
        "events": [
            {"title": "Quiz 1", "start": "2025-09-25T09:00:00Z"},
            {"title": "", "start": "2025-09-25T09:00:00Z"},
            {"title": "Lab", "start": "not a date"},
        ]
    }
    result = _parse(_client(lambda r: httpx.Response(200, json=body)))
    assert [d.title for d in result.drafts] == ["Quiz 1"]
    assert len(result.skipped) == 2
    assert result.skipped[1].startswith("Skipped event 'Lab'")


def test_non_object_drafts_are_skipped_not_fatal():
    body = {"events": [{"title": "Quiz 1", "start": "2025-09-25T09:00:00Z"}, None, "Lab 2", 7]}
    result = _parse(_client(lambda r: httpx.Response(200, json=body)))
    assert [d.title for d in result.drafts] == ["Quiz 1"]
    assert result.skipped == [
        "Skipped event #2: not an object",
        "Skipped event #3: not an object",
        "Skipped event #4: not an object",
    ]


def test_events_that_are_not_a_list_are_an_invalid_response():
    with pytest.raises(ParserError) as exc:
        _parse(_client(lambda r: httpx.Response(200, json={"events": {"title": "Quiz"}})))
    assert exc.value.category == ErrorCategory.INVALID_RESPONSE


def test_all_invalid_drafts_is_a_validation_error():
    body = {"events": [{"title": "Lab", "start": "never"}]}
    with pytest.raises(ParserError) as exc:
        _parse(_client(lambda r: httpx.Response(200, json=body)))
    assert exc.value.category == ErrorCategory.VALIDATION


def test_empty_event_list_is_not_an_error():
    result = _parse(_client(lambda r: httpx.Response(200, json={"events": []})))
    assert result.drafts == []


def test_server_error_is_retried_once():
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(503, json={"error": "busy"})
        return httpx.Response(200, json=GOOD_BODY)

    result = _parse(_client(handler))
    assert len(calls) == 2
    assert len(result.drafts) == 2


def test_persistent_server_error_surfaces_message():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"error": "internal", "message": "OpenAI upstream failed"})

    with pytest.raises(ParserError) as exc:
        _parse(_client(handler))
    assert len(calls) == 2
    assert exc.value.category == ErrorCategory.SERVER
    assert exc.value.status_code == 500
    assert exc.value.message == "OpenAI upstream failed"


def test_rate_limit_is_not_retried_and_keeps_retry_after():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(429, headers={"Retry-After": "30"})

    with pytest.raises(ParserError) as exc:
        _parse(_client(handler))
    assert len(calls) == 1
    assert exc.value.category == ErrorCategory.SERVER
    assert exc.value.retry_after == 30


def test_unauthorized_is_a_server_error():
    with pytest.raises(ParserError) as exc:
        _parse(_client(lambda r: httpx.Response(401)))
    assert exc.value.category == ErrorCategory.SERVER
    assert exc.value.status_code == 401


def test_undecodable_body_is_an_invalid_response():
    with pytest.raises(ParserError) as exc:
        _parse(_client(lambda r: httpx.Response(200, text="<html>oops</html>")))
    assert exc.value.category == ErrorCategory.INVALID_RESPONSE


def test_missing_events_key_is_an_invalid_response():
    with pytest.raises(ParserError) as exc:
        _parse(_client(lambda r: httpx.Response(200, json={"source": "openai"})))
    assert exc.value.category == ErrorCategory.INVALID_RESPONSE


def test_connection_failure_is_a_network_error_after_retry():
    calls = []

    def handler(request):
        calls.append(request)
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ParserError) as exc:
        _parse(_client(handler))
    assert len(calls) == 2
    assert exc.value.category == ErrorCategory.NETWORK


def test_read_timeout_is_a_network_error():
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    with pytest.raises(ParserError) as exc:
        _parse(_client(handler))
    assert exc.value.category == ErrorCategory.NETWORK


def test_blank_text_is_rejected_without_a_request():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=GOOD_BODY)

    with pytest.raises(ParserError) as exc:
        _parse(_client(handler), "   \n ")
    assert exc.value.category == ErrorCategory.VALIDATION
    assert calls == []


def test_validate_drafts_labels_untitled_entries_by_position():
    drafts, skipped = validate_drafts([{"start": "2025-09-25T09:00:00Z"}])
    assert drafts == []
    assert skipped[0].startswith("Skipped event #1")
