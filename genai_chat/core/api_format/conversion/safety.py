"""
安全拦截（Safety Gate）

SafetyHandler: ProviderResponse -> ProviderResponse
- 返回（可能被改写的）响应，或抛出 SafetyViolation（携带触发拦截的原始响应）

默认策略（GeminiSafetyHandler）对每个 payload 检查：
- promptFeedback.blockReason：整个请求被拒绝，没有任何生成内容
- candidates[0].finishReason ∈ {SAFETY, RECITATION, OTHER}：生成开始后被中止
- list 形态逐项检查；流式游标原样透传（需由调用方逐块处理）

safe_apply() 的两条路径使用同一个 projector：
- 成功：projector(handler(response))
- 拦截：projector(原始响应)，结果作为 reply 挂在新的 SafetyViolation 上再抛出
"""

from __future__ import annotations

import copy
import dataclasses
from collections.abc import Callable
from typing import Any, TypeVar

from genai_chat.core.api_format.conversion.field_mappings import BLOCKING_FINISH_REASONS
from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    ChatResult,
    Generation,
)
from genai_chat.core.api_format.conversion.response import (
    ProviderResponse,
    response_to_chat_result,
    response_to_generation,
    response_to_message,
    response_to_string,
)
from genai_chat.core.exceptions import SafetyViolation
from genai_chat.core.logger import logger
from genai_chat.core.metrics import safety_violation_total

T = TypeVar("T")

SafetyHandler = Callable[[ProviderResponse], ProviderResponse]


class GeminiSafetyHandler:
    """默认安全策略：命中即抛出 SafetyViolation"""

    def __call__(self, response: ProviderResponse) -> ProviderResponse:
        data = response.data
        if response.is_stream:
            return response

        if isinstance(data, list):
            new_data: Any = [self.handle_data(response, item) for item in data]
        else:
            new_data = self.handle_data(response, data)
        return dataclasses.replace(response, data=new_data)

    def handle_data(self, response: ProviderResponse, data: dict[str, Any]) -> dict[str, Any]:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            self._violation(response, "prompt_blocked", f"Prompt blocked: {block_reason}")

        candidates = data.get("candidates") or []
        first = candidates[0] if candidates and isinstance(candidates[0], dict) else {}
        finish_reason = first.get("finishReason")
        if finish_reason in BLOCKING_FINISH_REASONS:
            self._violation(response, str(finish_reason), f"Finish reason: {finish_reason}")

        return data

    def _violation(self, response: ProviderResponse, reason: str, message: str) -> None:
        safety_violation_total.labels(reason).inc()
        logger.warning("[SafetyGate] 响应被安全策略拦截: {}", message)
        raise SafetyViolation(response, message)


class MessageGeminiSafetyHandler(GeminiSafetyHandler):
    """命中安全策略时，用固定文本替换被拦截的 candidate，不抛出异常

    force_finish: 替换后的 candidate 是否把 finishReason 改写为 STOP
    """

    def __init__(self, msg: str, force_finish: bool = False) -> None:
        self.msg = msg
        self.force_finish = force_finish

    def handle_data(self, response: ProviderResponse, data: dict[str, Any]) -> dict[str, Any]:
        try:
            return super().handle_data(response, data)
        except SafetyViolation as violation:
            logger.info("[SafetyGate] 使用替换文本代替被拦截的响应: {}", violation)
            return self._substitute(data)

    def _substitute(self, data: dict[str, Any]) -> dict[str, Any]:
        new_data = copy.deepcopy(data)
        candidates = new_data.get("candidates") or [{}]
        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        candidate["content"] = {"role": "model", "parts": [{"text": self.msg}]}
        if self.force_finish:
            candidate["finishReason"] = "STOP"
        new_data["candidates"] = [candidate, *candidates[1:]]
        new_data.pop("promptFeedback", None)
        return new_data


default_safety_handler: SafetyHandler = GeminiSafetyHandler()


def safe_apply(
    response: ProviderResponse,
    handler: SafetyHandler,
    projector: Callable[[ProviderResponse], T],
) -> T:
    try:
        safe_response = handler(response)
    except SafetyViolation as violation:
        reply = projector(violation.response)
        raise violation.with_reply(reply) from violation
    return projector(safe_response)


def safe_response_to_string(
    response: ProviderResponse, handler: SafetyHandler = default_safety_handler
) -> str:
    return safe_apply(response, handler, response_to_string)


def safe_response_to_generation(
    response: ProviderResponse, handler: SafetyHandler = default_safety_handler
) -> Generation:
    return safe_apply(response, handler, response_to_generation)


def safe_response_to_message(
    response: ProviderResponse, handler: SafetyHandler = default_safety_handler
) -> AIMessage:
    return safe_apply(response, handler, response_to_message)


def safe_response_to_chat_result(
    response: ProviderResponse, handler: SafetyHandler = default_safety_handler
) -> ChatResult:
    return safe_apply(response, handler, response_to_chat_result)


__all__ = [
    "SafetyHandler",
    "GeminiSafetyHandler",
    "MessageGeminiSafetyHandler",
    "default_safety_handler",
    "safe_apply",
    "safe_response_to_string",
    "safe_response_to_generation",
    "safe_response_to_message",
    "safe_response_to_chat_result",
]
