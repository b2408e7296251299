"""
对话组装单元测试

覆盖重点：
- system 折叠模式 / 独立槽位模式
- system 位置与数量校验
- 按模型版本自动选择模式（模型名大小写不敏感）
- AI 工具调用与 tool 结果的编码
- 不支持的消息类型走诊断回调
"""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from genai_chat.core.api_format.conversion.assembler import (
    messages_to_contents,
    model_supports_system_instruction,
    should_convert_system_message,
)
from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    HumanMessage,
    ImageUrlContent,
    SystemMessage,
    TextContent,
    ToolCall,
    ToolMessage,
    is_model_claude,
    is_model_gemini,
)
from genai_chat.core.exceptions import UnsupportedSystemMessage


def _conversation() -> list:
    return [
        SystemMessage("You are helpful"),
        HumanMessage("Hi"),
        AIMessage("Hello"),
        HumanMessage("How are you?"),
    ]


def test_fold_mode_splices_system_as_leading_exchange() -> None:
    assembled = messages_to_contents(_conversation(), convert_system_message_to_human=True)

    assert [c["role"] for c in assembled.contents] == ["user", "model", "user", "model", "user"]
    assert assembled.contents[0]["parts"] == [{"text": "You are helpful"}]
    assert assembled.contents[1]["parts"] == [{"text": "Ok"}]
    assert assembled.contents[4]["parts"] == [{"text": "How are you?"}]
    assert assembled.system_instruction is None
    assert "systemInstruction" not in assembled.to_request_dict()


def test_dedicated_mode_uses_system_instruction() -> None:
    assembled = messages_to_contents(_conversation(), convert_system_message_to_human=False)

    assert [c["role"] for c in assembled.contents] == ["user", "model", "user"]
    assert assembled.system_instruction == {"parts": [{"text": "You are helpful"}]}
    assert assembled.to_request_dict()["systemInstruction"] == assembled.system_instruction


def test_system_message_not_first_fails() -> None:
    with pytest.raises(UnsupportedSystemMessage):
        messages_to_contents([HumanMessage("Hi"), SystemMessage("late")])


def test_two_system_messages_fail() -> None:
    with pytest.raises(UnsupportedSystemMessage):
        messages_to_contents(
            [SystemMessage("one"), SystemMessage("two"), HumanMessage("Hi")],
            convert_system_message_to_human=False,
        )


@pytest.mark.parametrize(
    ("model", "supported"),
    [
        ("gemini-pro", False),
        ("gemini-pro-vision", False),
        ("gemini-1.0-pro", False),
        ("gemini-1.5-pro", True),
        ("gemini-2.0-flash", True),
        ("claude-3-5-sonnet", True),
        ("Gemini-1.0-pro", False),
        ("GEMINI-1.5-PRO", True),
    ],
)
def test_model_supports_system_instruction(model: str, supported: bool) -> None:
    assert model_supports_system_instruction(model, 1.5) is supported


def test_model_family_ignores_case() -> None:
    assert is_model_gemini("Gemini-1.5-Flash") is True
    assert is_model_claude("Claude-3-Opus") is True
    assert is_model_gemini("Claude-3-Opus") is False
    assert should_convert_system_message("Gemini-Pro") is True


def test_explicit_switch_overrides_model_version() -> None:
    assert should_convert_system_message("gemini-1.5-pro", True) is True
    assert should_convert_system_message("gemini-pro", False) is False


def test_mode_defaults_to_model_version() -> None:
    old = messages_to_contents(_conversation(), model="gemini-pro")
    new = messages_to_contents(_conversation(), model="gemini-1.5-flash")

    assert len(old.contents) == 5
    assert len(new.contents) == 3
    assert new.system_instruction is not None


def test_multimodal_human_content() -> None:
    assembled = messages_to_contents(
        [HumanMessage([TextContent("what is this?"), ImageUrlContent("data:image/png;base64,AA")])]
    )
    assert assembled.contents == [
        {
            "role": "user",
            "parts": [
                {"text": "what is this?"},
                {"inlineData": {"mimeType": "image/png", "data": "AA"}},
            ],
        }
    ]


def test_tool_calls_and_results_are_structured_parts() -> None:
    messages = [
        HumanMessage("Weather in Paris and Rome?"),
        AIMessage(
            "",
            tool_calls=(
                ToolCall(name="get_weather", args={"city": "Paris"}, id="call_0"),
                ToolCall(name="get_weather", args={"city": "Rome"}, id="call_1"),
            ),
        ),
        ToolMessage("sunny", tool_call_id="call_0"),
        ToolMessage('{"sky": "rain"}', tool_call_id="call_1", name="get_weather"),
        AIMessage("Paris is sunny, Rome is rainy."),
    ]

    contents = messages_to_contents(messages, model="gemini-1.5-pro").contents

    assert [c["role"] for c in contents] == ["user", "model", "user", "model"]
    assert contents[1]["parts"] == [
        {"functionCall": {"name": "get_weather", "args": {"city": "Paris"}}},
        {"functionCall": {"name": "get_weather", "args": {"city": "Rome"}}},
    ]
    assert contents[2]["parts"] == [
        {"functionResponse": {"name": "get_weather", "response": {"result": "sunny"}}},
        {"functionResponse": {"name": "get_weather", "response": {"sky": "rain"}}},
    ]


def test_ai_text_precedes_function_calls() -> None:
    contents = messages_to_contents(
        [AIMessage("Let me check.", tool_calls=(ToolCall(name="lookup", id="a"),))]
    ).contents
    assert contents[0]["parts"] == [
        {"text": "Let me check."},
        {"functionCall": {"name": "lookup", "args": {}}},
    ]


@dataclass(frozen=True)
class _ChatMessage:
    content: str
    role: str = "function"


def test_unsupported_message_type_goes_to_diagnostic_sink() -> None:
    diagnostics: list[str] = []

    assembled = messages_to_contents(
        [HumanMessage("Hi"), _ChatMessage("x"), AIMessage("Hello")],  # type: ignore[list-item]
        diagnostic_sink=diagnostics.append,
    )

    assert [c["role"] for c in assembled.contents] == ["user", "model"]
    assert diagnostics == ["Unsupported message type: _ChatMessage"]


def test_input_messages_are_not_mutated() -> None:
    messages = _conversation()
    snapshot = list(messages)
    messages_to_contents(messages, convert_system_message_to_human=True)
    assert messages == snapshot
