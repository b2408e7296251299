"""
流解析单元测试

覆盖重点：
- JSON-array 跨 chunk 拼接（含字符串中的括号）
- SSE data 行跨 chunk 拼接
- 多字节 UTF-8 字符被拆在两个 chunk 之间
- ResponseStream 只能消费一次，结束标记
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from typing import Any

import pytest

from genai_chat.core.api_format.conversion.stream_parser import GeminiStreamParser, ResponseStream


def _event(text: str, finish_reason: str | None = None) -> dict[str, Any]:
    candidate: dict[str, Any] = {"content": {"role": "model", "parts": [{"text": text}]}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate]}


async def _chunks(*chunks: Any) -> AsyncIterator[Any]:
    for chunk in chunks:
        yield chunk


def test_json_array_split_across_chunks() -> None:
    body = json.dumps([_event("a {brace}"), _event('quote " and }', "STOP")])
    parser = GeminiStreamParser()

    events: list[dict[str, Any]] = []
    for i in range(0, len(body), 7):
        events.extend(parser.feed(body[i : i + 7].encode()))
    events.extend(parser.flush())

    assert events == [_event("a {brace}"), _event('quote " and }', "STOP")]


def test_sse_lines_split_across_chunks() -> None:
    first = "data: " + json.dumps(_event("x"))
    second = "data: " + json.dumps(_event("y", "STOP"))
    stream = f"{first}\r\n\r\nevent: ping\n{second}"
    parser = GeminiStreamParser()

    events = parser.feed(stream[:10]) + parser.feed(stream[10:]) + parser.flush()

    assert events == [_event("x"), _event("y", "STOP")]


def test_parse_line_ignores_non_data_lines() -> None:
    parser = GeminiStreamParser()
    assert parser.parse_line("") is None
    assert parser.parse_line(": keep-alive") is None
    assert parser.parse_line("data: [DONE]") is None
    assert parser.parse_line("data: not-json") is None
    assert parser.parse_line('{"candidates": []},') == {"candidates": []}


def test_is_done_event() -> None:
    parser = GeminiStreamParser()
    assert parser.is_done_event(_event("x", "STOP")) is True
    assert parser.is_done_event(_event("x", "FINISH_REASON_UNSPECIFIED")) is False
    assert parser.is_done_event(_event("x")) is False


@pytest.mark.asyncio
async def test_response_stream_parses_bytes_and_dicts() -> None:
    stream = ResponseStream(
        _chunks(b"[" + json.dumps(_event("a")).encode() + b",", _event("b", "STOP"), b"]")
    )

    events = [event async for event in stream]

    assert events == [_event("a"), _event("b", "STOP")]
    assert stream.finished is True


@pytest.mark.asyncio
async def test_response_stream_is_single_use() -> None:
    stream = ResponseStream(_chunks(_event("a")))
    assert [e async for e in stream] == [_event("a")]
    assert stream.consumed is True

    with pytest.raises(RuntimeError):
        async for _ in stream:
            pass


def test_multibyte_character_split_across_chunks() -> None:
    body = json.dumps([_event("你好")], ensure_ascii=False).encode()
    split = body.index("你".encode()) + 1
    parser = GeminiStreamParser()

    events = parser.feed(body[:split]) + parser.feed(body[split:]) + parser.flush()

    assert events == [_event("你好")]


def test_multibyte_character_split_in_sse_line() -> None:
    body = ("data: " + json.dumps(_event("émoji 🙂"), ensure_ascii=False) + "\n").encode()
    split = body.index("🙂".encode()) + 2
    parser = GeminiStreamParser()

    events = parser.feed(body[:split]) + parser.feed(body[split:]) + parser.flush()

    assert events == [_event("émoji 🙂")]


@pytest.mark.asyncio
async def test_response_stream_handles_split_multibyte_text() -> None:
    body = '[{"candidates":[{"content":{"parts":[{"text":"你好"}]}}]}]'.encode()
    split = body.index("你".encode()) + 1

    events = [event async for event in ResponseStream(_chunks(body[:split], body[split:]))]

    assert events == [{"candidates": [{"content": {"parts": [{"text": "你好"}]}}]}]
