"""
Anthropic (Claude on Vertex) 请求/响应转换

模型名以 "claude" 开头时使用该 schema：
- 请求：{anthropic_version, messages: [{role, content: [...]}], system?, max_tokens, ...}
- system 与 Gemini 路径相同：最多一条且只能位于首位，文本写入 system 字段
- 工具调用 -> tool_use；工具结果 -> tool_result（相邻的结果合并到同一条 user 消息）
- 响应：text 块拼接为文本，tool_use 块还原为 ToolCall
"""

from __future__ import annotations

import base64
import copy
import json
from collections.abc import Sequence
from typing import Any

from genai_chat.config.settings import config
from genai_chat.core.api_format.conversion.assembler import (
    DiagnosticSink,
    log_diagnostic,
    validate_system_placement,
)
from genai_chat.core.api_format.conversion.field_mappings import (
    CLAUDE_STOP_TO_FINISH_REASON,
    ROLE_MAPPINGS,
)
from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    AIMessageChunk,
    ChatGeneration,
    ChatResult,
    ContentPart,
    HumanMessage,
    ImageUrlContent,
    MediaContent,
    Message,
    MessageType,
    SystemMessage,
    TextContent,
    ToolCall,
    ToolMessage,
    content_to_parts,
    content_to_text,
)
from genai_chat.core.api_format.conversion.parts import parse_data_url
from genai_chat.core.api_format.conversion.response import ProviderResponse
from genai_chat.core.api_format.conversion.tools import ToolLike, tools_to_anthropic
from genai_chat.core.api_format.conversion.validation import GenerationParams
from genai_chat.core.exceptions import CannotNormalizeStream, InvalidMediaContent, MissingImageURL

_CLAUDE_ROLES = ROLE_MAPPINGS["CLAUDE"]


def _source_block(mime_type: str, *, data: str | None = None, url: str | None = None) -> dict[str, Any]:
    block_type = "image" if mime_type.startswith("image/") else "document"
    if data is not None:
        return {
            "type": block_type,
            "source": {"type": "base64", "media_type": mime_type, "data": data},
        }
    return {"type": block_type, "source": {"type": "url", "url": url}}


def content_part_to_block(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, TextContent):
        return {"type": "text", "text": part.text}

    if isinstance(part, ImageUrlContent):
        if not part.url:
            raise MissingImageURL()
        if part.url.startswith("data:"):
            mime_type, data = parse_data_url(part.url)
            return _source_block(mime_type, data=data)
        return {"type": "image", "source": {"type": "url", "url": part.url}}

    if isinstance(part, MediaContent):
        if not part.mime_type:
            raise InvalidMediaContent(
                f"Invalid media content: missing mime type for {part.file_uri or '<inline data>'}",
                part=part,
            )
        if part.data is not None:
            return _source_block(part.mime_type, data=base64.b64encode(part.data).decode("ascii"))
        if part.file_uri:
            if not part.resolved:
                raise InvalidMediaContent(
                    f"Invalid media content: unresolved media reference {part.file_uri}", part=part
                )
            return _source_block(part.mime_type, url=part.file_uri)
        raise InvalidMediaContent(
            "Invalid media content: neither data nor fileUri is present", part=part
        )

    raise TypeError(f"Unsupported content part: {type(part).__name__}")


def _content_blocks(content: Any) -> list[dict[str, Any]]:
    return [content_part_to_block(p) for p in content_to_parts(content)]


def messages_to_anthropic(
    messages: list[Message],
    *,
    diagnostic_sink: DiagnosticSink | None = None,
) -> tuple[str | None, list[dict[str, Any]]]:
    """返回 (system, messages)"""
    sink = diagnostic_sink or log_diagnostic
    validate_system_placement(messages)

    system: str | None = None
    out: list[dict[str, Any]] = []

    for message in messages:
        if isinstance(message, SystemMessage):
            system = content_to_text(message.content)

        elif isinstance(message, HumanMessage):
            out.append(
                {"role": _CLAUDE_ROLES[MessageType.HUMAN], "content": _content_blocks(message.content)}
            )

        elif isinstance(message, AIMessage):
            blocks = [
                b
                for b in _content_blocks(message.content)
                if not (b["type"] == "text" and not b["text"])
            ]
            for index, tc in enumerate(message.tool_calls):
                blocks.append(
                    {
                        "type": "tool_use",
                        "id": tc.id or f"call_{index}",
                        "name": tc.name,
                        "input": dict(tc.args),
                    }
                )
            out.append({"role": _CLAUDE_ROLES[MessageType.AI], "content": blocks})

        elif isinstance(message, ToolMessage):
            block = {
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": content_to_text(message.content),
            }
            last = out[-1] if out else None
            if (
                last is not None
                and last["role"] == _CLAUDE_ROLES[MessageType.TOOL]
                and last["content"]
                and all(b.get("type") == "tool_result" for b in last["content"])
            ):
                last["content"].append(block)
            else:
                out.append({"role": _CLAUDE_ROLES[MessageType.TOOL], "content": [block]})

        else:
            sink(f"Unsupported message type: {type(message).__name__}")

    return system, out


def build_anthropic_request(
    messages: list[Message],
    *,
    params: GenerationParams | None = None,
    tools: Sequence[ToolLike] | None = None,
    forced_tool: str | None = None,
    diagnostic_sink: DiagnosticSink | None = None,
) -> dict[str, Any]:
    params = params or GenerationParams()
    system, anthropic_messages = messages_to_anthropic(messages, diagnostic_sink=diagnostic_sink)

    request: dict[str, Any] = {
        "anthropic_version": config.anthropic_version,
        "messages": anthropic_messages,
        "max_tokens": params.max_output_tokens or config.default_max_output_tokens,
    }
    if system is not None:
        request["system"] = system
    if params.temperature is not None:
        request["temperature"] = params.temperature
    if params.top_p is not None:
        request["top_p"] = params.top_p
    if params.top_k is not None:
        request["top_k"] = params.top_k
    if params.stop_sequences:
        request["stop_sequences"] = list(params.stop_sequences)
    if tools:
        request["tools"] = tools_to_anthropic(tools)
        if forced_tool:
            request["tool_choice"] = {"type": "tool", "name": forced_tool}
    return request


# =========================
# 响应
# =========================


def normalize_anthropic_response(response: ProviderResponse) -> dict[str, Any]:
    """单个 payload 原样返回；分块 payload 合并 content，其余字段以最后一块为准"""
    if response.is_stream:
        raise CannotNormalizeStream()
    data = response.data
    if not isinstance(data, list):
        return data
    if not data:
        return {}
    merged = copy.deepcopy(data[0])
    merged.setdefault("content", [])
    for item in data[1:]:
        merged["content"].extend(copy.deepcopy(item.get("content") or []))
        for key, value in item.items():
            if key != "content":
                merged[key] = value
    return merged


def _tool_input(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value:
        try:
            parsed = json.loads(value)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def anthropic_response_to_message(response: ProviderResponse) -> AIMessage:
    payload = normalize_anthropic_response(response)
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for block in payload.get("content") or []:
        if not isinstance(block, dict):
            continue
        if block.get("type") == "text":
            text_parts.append(str(block.get("text") or ""))
        elif block.get("type") == "tool_use":
            tool_calls.append(
                ToolCall(
                    name=str(block.get("name") or ""),
                    args=_tool_input(block.get("input")),
                    id=str(block.get("id") or f"call_{len(tool_calls)}"),
                )
            )
    return AIMessage(content="".join(text_parts), tool_calls=tuple(tool_calls))


def anthropic_response_to_string(response: ProviderResponse) -> str:
    return content_to_text(anthropic_response_to_message(response).content)


def anthropic_event_to_chunk(response: ProviderResponse) -> AIMessageChunk:
    """流式事件 -> 增量消息

    content_block_start / content_block_delta 中的文本与 tool_use 块映射为 AIMessageChunk；
    input_json_delta（工具参数的增量 JSON）不做拼接。
    完整 message payload（非 SSE 代理）按非流式响应处理。
    """
    payload = normalize_anthropic_response(response)
    event_type = payload.get("type")

    if event_type == "content_block_delta":
        delta = payload.get("delta") or {}
        return AIMessageChunk(content=str(delta.get("text") or ""))

    if event_type == "content_block_start":
        block = payload.get("content_block") or {}
        if block.get("type") == "tool_use":
            tool_call = ToolCall(
                name=str(block.get("name") or ""),
                args=_tool_input(block.get("input")),
                id=str(block.get("id") or f"call_{payload.get('index', 0)}"),
            )
            return AIMessageChunk(tool_calls=(tool_call,))
        return AIMessageChunk(content=str(block.get("text") or ""))

    if "content" in payload:
        message = anthropic_response_to_message(response)
        return AIMessageChunk(content=message.content, tool_calls=message.tool_calls)

    return AIMessageChunk()


def anthropic_response_to_chat_result(response: ProviderResponse) -> ChatResult:
    payload = normalize_anthropic_response(response)
    message = anthropic_response_to_message(response)

    info: dict[str, Any] = {}
    stop_reason = payload.get("stop_reason")
    if stop_reason:
        info["stop_reason"] = stop_reason
        info["finishReason"] = CLAUDE_STOP_TO_FINISH_REASON.get(str(stop_reason), str(stop_reason))
    if "usage" in payload:
        info["usage"] = payload["usage"]

    generations: list[ChatGeneration] = []
    if payload.get("content"):
        generations.append(
            ChatGeneration(
                text=content_to_text(message.content),
                message=message,
                generation_info=info,
            )
        )
    return ChatResult(generations=generations, llm_output=payload)


__all__ = [
    "content_part_to_block",
    "messages_to_anthropic",
    "build_anthropic_request",
    "normalize_anthropic_response",
    "anthropic_response_to_message",
    "anthropic_response_to_string",
    "anthropic_event_to_chunk",
    "anthropic_response_to_chat_result",
]
