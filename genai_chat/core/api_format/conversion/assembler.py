"""
对话组装（generic messages -> Gemini contents）

单次从左到右遍历：
- system 最多一条，且只能位于首位；否则抛出 UnsupportedSystemMessage
- system 的落点由模式决定：
  - 折叠模式：user(system) + model("Ok") 作为开场的一轮对话
  - 独立槽位模式：写入 systemInstruction
- human -> user；ai -> model（工具调用编码为 functionCall part，排在文本之后）
- tool -> user 角色下的 functionResponse part（相邻的 tool 消息合并为同一条 content）
- 无法识别的消息类型交给诊断回调并产出 0 条 content（宽松降级，不中断整批转换）

媒体引用必须在调用本模块前完成解析（见 media.MediaManager）。
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from genai_chat.config.settings import config
from genai_chat.core.api_format.conversion.field_mappings import (
    ROLE_MAPPINGS,
    SYSTEM_ACKNOWLEDGEMENT,
)
from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    HumanMessage,
    Message,
    MessageType,
    SystemMessage,
    ToolMessage,
    is_model_gemini,
)
from genai_chat.core.api_format.conversion.parts import (
    to_provider_parts,
    tool_call_to_part,
    tool_result_to_part,
)
from genai_chat.core.exceptions import UnsupportedSystemMessage
from genai_chat.core.logger import logger

DiagnosticSink = Callable[[str], None]

_GEMINI_ROLES = ROLE_MAPPINGS["GEMINI"]
_GEMINI_VERSION_RE = re.compile(r"^gemini-(\d+(?:\.\d+)?)")


def log_diagnostic(message: str) -> None:
    """默认诊断回调：写入 logger"""
    logger.warning("[ConversationAssembler] {}", message)


@dataclass
class AssembledConversation:
    contents: list[dict[str, Any]] = field(default_factory=list)
    system_instruction: dict[str, Any] | None = None

    def to_request_dict(self) -> dict[str, Any]:
        request: dict[str, Any] = {"contents": self.contents}
        if self.system_instruction is not None:
            request["systemInstruction"] = self.system_instruction
        return request


def model_supports_system_instruction(model: str, min_version: float | None = None) -> bool:
    """Gemini 1.5 起支持 systemInstruction；未带版本号的旧模型（gemini-pro）不支持"""
    if not is_model_gemini(model):
        return True
    threshold = config.system_instruction_min_version if min_version is None else min_version
    match = _GEMINI_VERSION_RE.match(model.lower())
    if not match:
        return False
    return float(match.group(1)) >= threshold


def should_convert_system_message(
    model: str,
    convert_system_message_to_human: bool | None = None,
) -> bool:
    if convert_system_message_to_human is not None:
        return convert_system_message_to_human
    return not model_supports_system_instruction(model)


def validate_system_placement(messages: list[Message]) -> None:
    for index, message in enumerate(messages):
        if isinstance(message, SystemMessage) and index != 0:
            raise UnsupportedSystemMessage(
                "System message should be the first one"
                if not isinstance(messages[0], SystemMessage)
                else "Multiple system messages are not supported"
            )


def _ai_message_parts(message: AIMessage) -> list[dict[str, Any]]:
    parts = [p for p in to_provider_parts(message.content) if p != {"text": ""}]
    parts.extend(tool_call_to_part(tc) for tc in message.tool_calls)
    return parts or [{"text": ""}]


def messages_to_contents(
    messages: list[Message],
    *,
    model: str | None = None,
    convert_system_message_to_human: bool | None = None,
    diagnostic_sink: DiagnosticSink | None = None,
) -> AssembledConversation:
    """将通用消息序列组装为 Gemini contents

    Args:
        messages: 调用方构造的消息序列（只读）
        model: 当前模型名，用于自动判断 system 的落点
        convert_system_message_to_human: 显式指定折叠模式；None 表示按模型版本自动选择
        diagnostic_sink: 不支持的消息类型的诊断回调，默认写日志
    """
    model = model or config.default_model
    sink = diagnostic_sink or log_diagnostic
    fold_system = should_convert_system_message(model, convert_system_message_to_human)

    validate_system_placement(messages)

    result = AssembledConversation()
    contents = result.contents
    tool_names: dict[str, str] = {}

    for message in messages:
        if isinstance(message, SystemMessage):
            parts = to_provider_parts(message.content)
            if fold_system:
                contents.append({"role": _GEMINI_ROLES[MessageType.HUMAN], "parts": parts})
                contents.append(
                    {
                        "role": _GEMINI_ROLES[MessageType.AI],
                        "parts": [{"text": SYSTEM_ACKNOWLEDGEMENT}],
                    }
                )
            else:
                result.system_instruction = {"parts": parts}

        elif isinstance(message, HumanMessage):
            contents.append(
                {
                    "role": _GEMINI_ROLES[MessageType.HUMAN],
                    "parts": to_provider_parts(message.content),
                }
            )

        elif isinstance(message, AIMessage):
            for tc in message.tool_calls:
                if tc.id:
                    tool_names[tc.id] = tc.name
            contents.append(
                {"role": _GEMINI_ROLES[MessageType.AI], "parts": _ai_message_parts(message)}
            )

        elif isinstance(message, ToolMessage):
            name = message.name or tool_names.get(message.tool_call_id) or message.tool_call_id
            part = tool_result_to_part(name, message.content)
            role = _GEMINI_ROLES[MessageType.TOOL]
            last = contents[-1] if contents else None
            if (
                last is not None
                and last["role"] == role
                and last["parts"]
                and all("functionResponse" in p for p in last["parts"])
            ):
                last["parts"].append(part)
            else:
                contents.append({"role": role, "parts": [part]})

        else:
            sink(f"Unsupported message type: {type(message).__name__}")

    return result


__all__ = [
    "AssembledConversation",
    "DiagnosticSink",
    "log_diagnostic",
    "model_supports_system_instruction",
    "should_convert_system_message",
    "validate_system_placement",
    "messages_to_contents",
]
