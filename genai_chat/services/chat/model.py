"""
ChatGoogle：通用 chat model 接口的 Google GenAI 实现

请求路径：
    messages -> MediaManager（解析媒体引用） -> assembler/anthropic（按模型族组装） -> transport
响应路径：
    ProviderResponse -> SafetyHandler -> projector -> AIMessage / ChatResult

transport 只负责 "结构化请求 -> 结构化响应"（鉴权、HTTP、重试都不在本层）。
"""

from __future__ import annotations

import copy
import time
from collections.abc import AsyncIterator, Callable, Generator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol

from pydantic import BaseModel, ValidationError

from genai_chat.config.settings import config
from genai_chat.core.api_format.conversion.anthropic import (
    anthropic_event_to_chunk,
    anthropic_response_to_chat_result,
    build_anthropic_request,
)
from genai_chat.core.api_format.conversion.assembler import DiagnosticSink, messages_to_contents
from genai_chat.core.api_format.conversion.internal import (
    AIMessage,
    AIMessageChunk,
    ChatGeneration,
    ChatResult,
    Message,
    ModelFamily,
    content_to_text,
    model_family,
)
from genai_chat.core.api_format.conversion.media import MediaManager
from genai_chat.core.api_format.conversion.response import (
    ProviderResponse,
    response_to_chat_result,
    response_to_chunk,
)
from genai_chat.core.api_format.conversion.safety import (
    SafetyHandler,
    default_safety_handler,
    safe_apply,
)
from genai_chat.core.api_format.conversion.tools import (
    ToolLike,
    forced_tool_config,
    tool_name,
    tools_to_gemini,
)
from genai_chat.core.api_format.conversion.validation import (
    GenerationParams,
    validate_generation_params,
)
from genai_chat.core.exceptions import StructuredOutputError
from genai_chat.core.logger import logger
from genai_chat.core.metrics import conversion_duration_seconds, conversion_total


class ChatTransport(Protocol):
    """请求发送方（外部协作者）"""

    async def send(
        self,
        request: dict[str, Any],
        *,
        model: str,
        stream: bool,
    ) -> ProviderResponse:
        """发送请求；stream=True 时 data 应为 ResponseStream"""


@contextmanager
def _track_conversion_metrics(direction: str, family: ModelFamily) -> Generator[None]:
    start = time.perf_counter()
    try:
        yield
        conversion_total.labels(direction, family.value, "success").inc()
    except Exception:
        conversion_total.labels(direction, family.value, "error").inc()
        raise
    finally:
        conversion_duration_seconds.labels(direction, family.value).observe(
            time.perf_counter() - start
        )


class ChatGoogle:
    """Google GenAI chat model

    Args:
        transport: 请求发送方
        model: 模型名（gemini-* 使用 Gemini schema，claude-* 使用 Anthropic schema）
        max_output_tokens / temperature / top_p / top_k / stop_sequences: 生成参数（构造时校验）
        safety_handler: 安全策略，默认命中即抛出 SafetyViolation
        safety_settings: 原样下发的 Gemini safetySettings
        media_manager: 媒体引用解析器；不提供时 MediaContent 必须已是 inline，或带 MIME 且 resolved=True 的 URI
        convert_system_message_to_human: system 折叠模式开关（None 表示按模型版本自动判断）
        streaming: generate() 是否走流式接口
    """

    def __init__(
        self,
        *,
        transport: ChatTransport,
        model: str | None = None,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
        top_p: float | None = None,
        top_k: int | None = None,
        stop_sequences: Sequence[str] = (),
        safety_handler: SafetyHandler | None = None,
        safety_settings: list[dict[str, Any]] | None = None,
        media_manager: MediaManager | None = None,
        convert_system_message_to_human: bool | None = None,
        streaming: bool = False,
        tools: Sequence[ToolLike] | None = None,
        tool_config: dict[str, Any] | None = None,
        forced_tool: str | None = None,
        diagnostic_sink: DiagnosticSink | None = None,
    ) -> None:
        self.transport = transport
        self.model = model or config.default_model
        self.params = GenerationParams(
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            top_p=top_p,
            top_k=top_k,
            stop_sequences=tuple(stop_sequences),
        )
        validate_generation_params(self.params)

        self.safety_handler = safety_handler or default_safety_handler
        self.safety_settings = safety_settings
        self.media_manager = media_manager
        self.convert_system_message_to_human = (
            convert_system_message_to_human
            if convert_system_message_to_human is not None
            else config.convert_system_message_to_human
        )
        self.streaming = streaming
        self.tools = list(tools or [])
        self.tool_config = tool_config
        self.forced_tool = forced_tool
        self.diagnostic_sink = diagnostic_sink

    @property
    def model_family(self) -> ModelFamily:
        return model_family(self.model)

    # ------------------------------------------------------------------
    # 请求
    # ------------------------------------------------------------------

    async def build_request(self, messages: Sequence[Message]) -> dict[str, Any]:
        resolved = list(messages)
        if self.media_manager is not None:
            resolved = await self.media_manager.resolve_messages(resolved)

        family = self.model_family
        with _track_conversion_metrics("request", family):
            if family == ModelFamily.CLAUDE:
                return build_anthropic_request(
                    resolved,
                    params=self.params,
                    tools=self.tools,
                    forced_tool=self.forced_tool,
                    diagnostic_sink=self.diagnostic_sink,
                )
            return self._build_gemini_request(resolved)

    def _build_gemini_request(self, messages: list[Message]) -> dict[str, Any]:
        assembled = messages_to_contents(
            messages,
            model=self.model,
            convert_system_message_to_human=self.convert_system_message_to_human,
            diagnostic_sink=self.diagnostic_sink,
        )
        request = assembled.to_request_dict()

        generation_config = self.params.to_generation_config()
        if generation_config:
            request["generationConfig"] = generation_config
        if self.tools:
            request["tools"] = tools_to_gemini(self.tools)
            tool_config = self.tool_config
            if tool_config is None and self.forced_tool:
                tool_config = forced_tool_config(self.forced_tool)
            if tool_config is not None:
                request["toolConfig"] = tool_config
        if self.safety_settings:
            request["safetySettings"] = self.safety_settings
        return request

    # ------------------------------------------------------------------
    # 调用
    # ------------------------------------------------------------------

    def _result_projector(self) -> Callable[[ProviderResponse], ChatResult]:
        if self.model_family == ModelFamily.CLAUDE:
            return anthropic_response_to_chat_result
        return response_to_chat_result

    def _chunk_projector(self) -> Callable[[ProviderResponse], AIMessageChunk]:
        if self.model_family == ModelFamily.CLAUDE:
            return anthropic_event_to_chunk
        return response_to_chunk

    async def generate(self, messages: Sequence[Message]) -> ChatResult:
        if self.streaming:
            return await self._generate_from_stream(messages)

        request = await self.build_request(messages)
        response = await self.transport.send(request, model=self.model, stream=False)

        with _track_conversion_metrics("response", self.model_family):
            return safe_apply(response, self.safety_handler, self._result_projector())

    async def _generate_from_stream(self, messages: Sequence[Message]) -> ChatResult:
        merged: AIMessageChunk | None = None
        async for chunk in self.stream(messages):
            merged = chunk if merged is None else merged + chunk

        if merged is None:
            return ChatResult(generations=[])
        message = AIMessage(content=merged.content, tool_calls=merged.tool_calls)
        return ChatResult(
            generations=[ChatGeneration(text=content_to_text(message.content), message=message)]
        )

    async def invoke(self, messages: Sequence[Message]) -> AIMessage:
        result = await self.generate(messages)
        if not result.generations:
            return AIMessage(content="")
        return result.generations[0].message

    async def stream(self, messages: Sequence[Message]) -> AsyncIterator[AIMessageChunk]:
        """逐块产出增量消息；每个块都单独经过安全策略"""
        request = await self.build_request(messages)
        response = await self.transport.send(request, model=self.model, stream=True)
        projector = self._chunk_projector()

        if response.is_stream:
            async for payload in response.data:  # type: ignore[union-attr]
                chunk_response = ProviderResponse(data=payload, headers=response.headers)
                yield safe_apply(chunk_response, self.safety_handler, projector)
            return

        # transport 未返回游标时，按整块响应逐个产出
        logger.debug("[ChatGoogle] transport 返回了非流式响应，按整块处理")
        payloads = response.data if isinstance(response.data, list) else [response.data]
        for payload in payloads:
            chunk_response = ProviderResponse(data=payload, headers=response.headers)
            yield safe_apply(chunk_response, self.safety_handler, projector)

    # ------------------------------------------------------------------
    # 绑定
    # ------------------------------------------------------------------

    def bind_tools(
        self,
        tools: Sequence[ToolLike],
        *,
        tool_config: dict[str, Any] | None = None,
        forced_tool: str | None = None,
    ) -> ChatGoogle:
        """返回绑定了工具的新实例（原实例不变）"""
        bound = copy.copy(self)
        bound.tools = list(tools)
        bound.tool_config = tool_config
        bound.forced_tool = forced_tool
        return bound

    def with_structured_output(self, schema: ToolLike) -> StructuredOutputRunner:
        name = tool_name(schema)
        return StructuredOutputRunner(self.bind_tools([schema], forced_tool=name), schema)


class StructuredOutputRunner:
    """强制调用单个工具，并把工具参数解析为 schema（pydantic 模型或 dict）"""

    def __init__(self, model: ChatGoogle, schema: ToolLike) -> None:
        self.model = model
        self.schema = schema

    async def invoke(self, messages: Sequence[Message]) -> BaseModel | dict[str, Any]:
        message = await self.model.invoke(messages)
        if not message.tool_calls:
            raise StructuredOutputError("Model response does not contain a tool call")

        args = message.tool_calls[0].args
        if isinstance(self.schema, type) and issubclass(self.schema, BaseModel):
            try:
                return self.schema.model_validate(args)
            except ValidationError as e:
                raise StructuredOutputError(
                    f"Tool call arguments do not match {self.schema.__name__}: {e}"
                ) from e
        return args


__all__ = ["ChatTransport", "ChatGoogle", "StructuredOutputRunner"]
