"""
响应归一化单元测试

覆盖重点：
- dict / list / stream 三种形态的归一化
- 分块合并（只合并第一个 candidate，promptFeedback 以最后一块为准，不修改输入）
- 文本 / 内容块 / 工具调用提取
- ChatResult / Generation / AIMessage 投影
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from genai_chat.core.api_format.conversion.internal import (
    AIMessageChunk,
    ImageUrlContent,
    TextContent,
    ToolCall,
)
from genai_chat.core.api_format.conversion.response import (
    ProviderResponse,
    extract_content,
    extract_text,
    extract_tool_calls,
    normalize_response,
    response_to_chat_result,
    response_to_chunk,
    response_to_generation,
    response_to_message,
    response_to_string,
)
from genai_chat.core.api_format.conversion.stream_parser import ResponseStream
from genai_chat.core.exceptions import CannotNormalizeStream


def _payload(*parts: dict[str, Any], finish_reason: str | None = None) -> dict[str, Any]:
    candidate: dict[str, Any] = {"content": {"role": "model", "parts": list(parts)}}
    if finish_reason:
        candidate["finishReason"] = finish_reason
    return {"candidates": [candidate]}


async def _empty_source():  # type: ignore[no-untyped-def]
    if False:
        yield b""


def test_single_payload_is_already_canonical() -> None:
    payload = _payload({"text": "hi"})
    assert normalize_response(ProviderResponse(payload)) is payload


def test_array_payloads_merge_first_candidate_parts_in_order() -> None:
    data = [_payload({"text": "Hello, "}), _payload({"text": "world"})]
    original = copy.deepcopy(data)

    merged = normalize_response(ProviderResponse(data))

    assert merged["candidates"][0]["content"]["parts"] == [{"text": "Hello, "}, {"text": "world"}]
    assert data == original


def test_array_merge_prompt_feedback_last_writer_wins() -> None:
    first = _payload({"text": "a"})
    first["promptFeedback"] = {"safetyRatings": ["first"]}
    second = _payload({"text": "b"})
    second["promptFeedback"] = {"safetyRatings": ["second"]}

    merged = normalize_response(ProviderResponse([first, second]))

    assert merged["promptFeedback"] == {"safetyRatings": ["second"]}


def test_array_merge_ignores_additional_candidates() -> None:
    first = _payload({"text": "a"})
    first["candidates"].append({"content": {"parts": [{"text": "alt-1"}]}})
    second = _payload({"text": "b"})
    second["candidates"].append({"content": {"parts": [{"text": "alt-2"}]}})

    merged = normalize_response(ProviderResponse([first, second]))

    assert merged["candidates"][0]["content"]["parts"] == [{"text": "a"}, {"text": "b"}]
    assert merged["candidates"][1]["content"]["parts"] == [{"text": "alt-1"}]


def test_array_merge_tolerates_chunks_without_candidates() -> None:
    data = [{"usageMetadata": {"totalTokenCount": 1}}, _payload({"text": "late"})]
    merged = normalize_response(ProviderResponse(data))
    assert merged["candidates"][0]["content"]["parts"] == [{"text": "late"}]


def test_empty_array_normalizes_to_empty_payload() -> None:
    assert normalize_response(ProviderResponse([])) == {}
    assert extract_text(ProviderResponse([])) == ""


def test_stream_cannot_be_normalized() -> None:
    response = ProviderResponse(ResponseStream(_empty_source()))
    with pytest.raises(CannotNormalizeStream) as exc:
        normalize_response(response)
    assert str(exc.value) == "Cannot convert Stream to GenerateContentResponseData"


def test_extract_text_concatenates_without_separator() -> None:
    response = ProviderResponse(
        _payload({"text": "a"}, {"functionCall": {"name": "f", "args": {}}}, {"text": "b"})
    )
    assert extract_text(response) == "ab"
    assert response_to_string(response) == "ab"


def test_extract_content_and_tool_calls() -> None:
    response = ProviderResponse(
        _payload(
            {"text": "see"},
            {"inlineData": {"mimeType": "image/png", "data": "AA"}},
            {"functionCall": {"name": "f", "args": {"x": 1}}},
            {"functionCall": {"name": "g", "args": {}}},
        )
    )

    assert extract_content(response) == [
        TextContent("see"),
        ImageUrlContent("data:image/png;base64,AA"),
    ]
    assert extract_tool_calls(response) == [
        ToolCall(name="f", args={"x": 1}, id="call_0"),
        ToolCall(name="g", args={}, id="call_1"),
    ]


def test_response_to_message_uses_plain_text_when_possible() -> None:
    message = response_to_message(ProviderResponse(_payload({"text": "a"}, {"text": "b"})))
    assert message.content == "ab"
    assert message.tool_calls == ()


def test_response_to_message_keeps_multimodal_parts() -> None:
    message = response_to_message(
        ProviderResponse(_payload({"text": "a"}, {"fileData": {"fileUri": "gs://x"}}))
    )
    assert message.content == [TextContent("a"), ImageUrlContent("gs://x")]


def test_response_to_chat_result() -> None:
    payload = _payload({"text": "hi"}, finish_reason="STOP")
    payload["usageMetadata"] = {"totalTokenCount": 3}

    result = response_to_chat_result(ProviderResponse(payload))

    assert len(result.generations) == 1
    generation = result.generations[0]
    assert generation.text == "hi"
    assert generation.message.content == "hi"
    assert generation.generation_info == {
        "finishReason": "STOP",
        "usageMetadata": {"totalTokenCount": 3},
    }
    assert result.llm_output is payload


def test_response_to_chat_result_without_parts_has_no_generations() -> None:
    result = response_to_chat_result(ProviderResponse({"candidates": []}))
    assert result.generations == []


def test_response_to_generation_and_chunk() -> None:
    response = ProviderResponse(_payload({"text": "x"}, finish_reason="MAX_TOKENS"))

    generation = response_to_generation(response)
    assert generation.text == "x"
    assert generation.generation_info == {"finishReason": "MAX_TOKENS"}

    chunk = response_to_chunk(response)
    assert isinstance(chunk, AIMessageChunk)
    assert chunk.content == "x"
