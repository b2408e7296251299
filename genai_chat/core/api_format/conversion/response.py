"""
响应归一化（provider response -> canonical payload -> generic result）

ProviderResponse.data 有三种形态：
- dict：单个 GenerateContentResponse，已是 canonical 形态
- list[dict]：分块响应，需要归并为一个 payload
- ResponseStream / AsyncIterator：流式游标，无法同步归并（抛出 CannotNormalizeStream）

归并规则（已知限制：只处理第一个 candidate）：
- 以第一个 payload 为累加器（深拷贝，不修改输入）
- 后续 payload 的 candidates[0].content.parts 依次追加到累加器
- promptFeedback 以最后一个 payload 为准
"""

from __future__ import annotations

import copy
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Union

from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    AIMessageChunk,
    ChatGeneration,
    ChatResult,
    ContentPart,
    Generation,
    ToolCall,
)
from genai_chat.core.api_format.conversion.parts import (
    from_provider_parts,
    part_to_text,
    part_to_tool_call,
)
from genai_chat.core.api_format.conversion.stream_parser import ResponseStream
from genai_chat.core.exceptions import CannotNormalizeStream

ResponseData = Union[dict[str, Any], list[dict[str, Any]], ResponseStream, AsyncIterator[Any]]


@dataclass
class ProviderResponse:
    """transport 返回的原始响应（data + 可选的响应头）"""

    data: ResponseData
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def is_stream(self) -> bool:
        return isinstance(self.data, (ResponseStream, AsyncIterator))


def normalize_response(response: ProviderResponse) -> dict[str, Any]:
    """将三种响应形态归并为单个 canonical payload"""
    data = response.data
    if response.is_stream:
        raise CannotNormalizeStream()

    if isinstance(data, list):
        if not data:
            return {}
        merged = copy.deepcopy(data[0])
        acc_parts = _first_candidate_parts(merged, create=True)
        for item in data[1:]:
            acc_parts.extend(copy.deepcopy(_first_candidate_parts(item)))
            merged["promptFeedback"] = item.get("promptFeedback")
        if merged.get("promptFeedback") is None:
            merged.pop("promptFeedback", None)
        return merged

    return data


def _first_candidate_parts(payload: dict[str, Any], *, create: bool = False) -> list[Any]:
    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        if not create:
            return []
        candidates = payload["candidates"] = [{}]

    candidate = candidates[0]
    content = candidate.get("content") if isinstance(candidate, dict) else None
    if not isinstance(content, dict):
        if not create:
            return []
        content = candidate["content"] = {"role": "model", "parts": []}

    parts = content.get("parts")
    if not isinstance(parts, list):
        if not create:
            return []
        parts = content["parts"] = []
    return parts


def first_candidate(payload: dict[str, Any]) -> dict[str, Any]:
    candidates = payload.get("candidates")
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


# =========================
# 提取（纯投影）
# =========================


def extract_parts(response: ProviderResponse) -> list[Any]:
    return list(_first_candidate_parts(normalize_response(response)))


def extract_text(response: ProviderResponse) -> str:
    return "".join(part_to_text(p) for p in extract_parts(response))


def extract_content(response: ProviderResponse) -> list[ContentPart]:
    return from_provider_parts(extract_parts(response))


def extract_tool_calls(response: ProviderResponse) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for part in extract_parts(response):
        tc = part_to_tool_call(part, index=len(calls))
        if tc is not None:
            calls.append(tc)
    return calls


def generation_info(payload: dict[str, Any]) -> dict[str, Any]:
    """candidate 级元信息（finishReason / safetyRatings / usageMetadata 等）"""
    candidate = first_candidate(payload)
    info: dict[str, Any] = {}
    for key in ("finishReason", "safetyRatings", "citationMetadata"):
        if key in candidate:
            info[key] = candidate[key]
    for key in ("usageMetadata", "promptFeedback", "modelVersion"):
        if key in payload:
            info[key] = payload[key]
    return info


# =========================
# 结果投影
# =========================


def response_to_string(response: ProviderResponse) -> str:
    return extract_text(response)


def response_to_generation(response: ProviderResponse) -> Generation:
    return Generation(
        text=extract_text(response),
        generation_info=generation_info(normalize_response(response)),
    )


def _content_or_text(response: ProviderResponse) -> str | list[ContentPart]:
    """纯文本响应还原为 str，含非文本内容时保留内容块列表"""
    content = extract_content(response)
    if all(p.type == "text" for p in content):
        return extract_text(response)
    return content


def response_to_message(response: ProviderResponse) -> AIMessage:
    return AIMessage(
        content=_content_or_text(response),
        tool_calls=tuple(extract_tool_calls(response)),
    )


def response_to_chunk(response: ProviderResponse) -> AIMessageChunk:
    return AIMessageChunk(
        content=_content_or_text(response),
        tool_calls=tuple(extract_tool_calls(response)),
    )


def response_to_chat_result(response: ProviderResponse) -> ChatResult:
    payload = normalize_response(response)
    generations: list[ChatGeneration] = []
    if extract_parts(response):
        generations.append(
            ChatGeneration(
                text=extract_text(response),
                message=response_to_message(response),
                generation_info=generation_info(payload),
            )
        )
    return ChatResult(generations=generations, llm_output=payload)


__all__ = [
    "ProviderResponse",
    "ResponseData",
    "normalize_response",
    "first_candidate",
    "extract_parts",
    "extract_text",
    "extract_content",
    "extract_tool_calls",
    "generation_info",
    "response_to_string",
    "response_to_generation",
    "response_to_message",
    "response_to_chunk",
    "response_to_chat_result",
]
