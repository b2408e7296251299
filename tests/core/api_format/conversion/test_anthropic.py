"""
Anthropic (Claude on Vertex) 转换单元测试
"""

from __future__ import annotations

import pytest

from genai_chat.core.api_format.conversion.anthropic import (
    anthropic_event_to_chunk,
    anthropic_response_to_chat_result,
    anthropic_response_to_message,
    build_anthropic_request,
    messages_to_anthropic,
)
from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    HumanMessage,
    ImageUrlContent,
    MediaContent,
    SystemMessage,
    TextContent,
    ToolCall,
    ToolMessage,
)
from genai_chat.core.api_format.conversion.response import ProviderResponse
from genai_chat.core.api_format.conversion.validation import GenerationParams
from genai_chat.core.exceptions import InvalidMediaContent, UnsupportedSystemMessage


def test_request_without_system_message() -> None:
    request = build_anthropic_request([HumanMessage("Hi")])

    assert request == {
        "anthropic_version": "vertex-2023-10-16",
        "messages": [{"role": "user", "content": [{"type": "text", "text": "Hi"}]}],
        "max_tokens": 1024,
    }
    assert request["messages"][0]["content"][0]["text"] == "Hi"


def test_request_with_system_and_params() -> None:
    request = build_anthropic_request(
        [SystemMessage("Be brief"), HumanMessage("Hi"), AIMessage("Hello")],
        params=GenerationParams(
            max_output_tokens=50, temperature=0.3, top_p=0.8, top_k=5, stop_sequences=("END",)
        ),
    )

    assert request["system"] == "Be brief"
    assert [m["role"] for m in request["messages"]] == ["user", "assistant"]
    assert request["max_tokens"] == 50
    assert request["temperature"] == 0.3
    assert request["top_p"] == 0.8
    assert request["top_k"] == 5
    assert request["stop_sequences"] == ["END"]


def test_system_placement_is_validated() -> None:
    with pytest.raises(UnsupportedSystemMessage):
        messages_to_anthropic([HumanMessage("Hi"), SystemMessage("late")])


def test_image_and_media_blocks() -> None:
    _, messages = messages_to_anthropic(
        [
            HumanMessage(
                [
                    TextContent("look"),
                    ImageUrlContent("data:image/png;base64,AA"),
                    ImageUrlContent("https://example.com/a.png"),
                    MediaContent(
                        file_uri="gs://b/doc.pdf", mime_type="application/pdf", resolved=True
                    ),
                ]
            )
        ]
    )

    assert messages[0]["content"] == [
        {"type": "text", "text": "look"},
        {"type": "image", "source": {"type": "base64", "media_type": "image/png", "data": "AA"}},
        {"type": "image", "source": {"type": "url", "url": "https://example.com/a.png"}},
        {"type": "document", "source": {"type": "url", "url": "gs://b/doc.pdf"}},
    ]


def test_tool_use_and_results() -> None:
    _, messages = messages_to_anthropic(
        [
            HumanMessage("Weather?"),
            AIMessage("", tool_calls=(ToolCall(name="w", args={"city": "Paris"}, id="toolu_1"),)),
            ToolMessage("sunny", tool_call_id="toolu_1"),
        ]
    )

    assert messages[1] == {
        "role": "assistant",
        "content": [{"type": "tool_use", "id": "toolu_1", "name": "w", "input": {"city": "Paris"}}],
    }
    assert messages[2] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "toolu_1", "content": "sunny"}],
    }


def test_tools_and_forced_tool_choice() -> None:
    request = build_anthropic_request(
        [HumanMessage("Hi")], tools=[{"name": "w", "description": "d"}], forced_tool="w"
    )
    assert request["tools"][0]["name"] == "w"
    assert request["tool_choice"] == {"type": "tool", "name": "w"}


def test_response_projection() -> None:
    payload = {
        "content": [
            {"type": "text", "text": "Checking "},
            {"type": "text", "text": "now."},
            {"type": "tool_use", "id": "toolu_9", "name": "w", "input": {"city": "Rome"}},
        ],
        "stop_reason": "tool_use",
        "usage": {"input_tokens": 3, "output_tokens": 4},
    }

    message = anthropic_response_to_message(ProviderResponse(payload))
    assert message == AIMessage(
        content="Checking now.",
        tool_calls=(ToolCall(name="w", args={"city": "Rome"}, id="toolu_9"),),
    )

    result = anthropic_response_to_chat_result(ProviderResponse(payload))
    assert result.generations[0].text == "Checking now."
    assert result.generations[0].generation_info == {
        "stop_reason": "tool_use",
        "finishReason": "STOP",
        "usage": {"input_tokens": 3, "output_tokens": 4},
    }


def test_stream_events_to_chunks() -> None:
    delta = {"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": "Hi"}}
    start = {
        "type": "content_block_start",
        "index": 1,
        "content_block": {"type": "tool_use", "id": "toolu_2", "name": "w", "input": {}},
    }

    assert anthropic_event_to_chunk(ProviderResponse(delta)).content == "Hi"
    assert anthropic_event_to_chunk(ProviderResponse(start)).tool_calls == (
        ToolCall(name="w", args={}, id="toolu_2"),
    )
    assert anthropic_event_to_chunk(ProviderResponse({"type": "message_stop"})).content == ""


def test_unresolved_media_reference_is_rejected() -> None:
    part = MediaContent(file_uri="resolve://host/doc.pdf", mime_type="application/pdf")
    with pytest.raises(InvalidMediaContent):
        messages_to_anthropic([HumanMessage([part])])
