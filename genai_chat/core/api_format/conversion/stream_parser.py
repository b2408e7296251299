"""
Gemini 流解析器（SSE + JSON-array 兼容）

Gemini streamGenerateContent 常见两种返回（与上游/代理实现有关）：
1) `?alt=sse`：SSE（`data: {GenerateContentResponse}`）
2) 默认：JSON-array / JSON-chunks（`[{...},{...},...]`，可能跨 chunk/跨行）

GeminiStreamParser 按首个非空白字符自动识别格式，feed() 可跨 chunk 拼接。
ResponseStream 把原始字节流包装为只能消费一次的、惰性的 payload 游标。

参考:
- https://ai.google.dev/gemini-api/docs/text-generation?lang=python#generate-a-text-stream
"""

from __future__ import annotations

import codecs
import json
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from genai_chat.core.logger import logger


class GeminiStreamParser:
    """
    Gemini 流解析器

    - 每个事件块本质上都是一个 GenerateContentResponse JSON 对象（包含 candidates、usageMetadata 等）
    - 结束判定以 `candidates[].finishReason` 为准（存在且不为 FINISH_REASON_UNSPECIFIED）
    """

    FINISH_REASON_UNSPECIFIED = "FINISH_REASON_UNSPECIFIED"

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """重置解析器状态"""
        self._mode: str | None = None  # "sse" / "json"
        self._buffer = ""
        self._depth = 0
        self._in_string = False
        self._escape = False
        # 多字节字符可能被拆在两个 chunk 之间
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, chunk: bytes | str) -> list[dict[str, Any]]:
        """
        解析流式数据块

        Args:
            chunk: 原始数据（bytes 或 str）

        Returns:
            本次数据块中完整的事件列表（不完整的部分留在缓冲区）
        """
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk

        if self._mode is None:
            stripped = (self._buffer + text).lstrip()
            if not stripped:
                self._buffer += text
                return []
            self._mode = "json" if stripped[0] in "[{" else "sse"
            text, self._buffer = self._buffer + text, ""

        if self._mode == "sse":
            return self._feed_sse(text)
        return self._feed_json(text)

    def flush(self) -> list[dict[str, Any]]:
        """流结束时处理缓冲区中剩余的数据"""
        events: list[dict[str, Any]] = []
        tail = self._decoder.decode(b"", final=True)
        if tail:
            events.extend(self.feed(tail))
        if self._mode == "sse" and self._buffer.strip():
            event = self.parse_line(self._buffer)
            if event is not None:
                events.append(event)
        elif self._mode == "json" and self._buffer.strip():
            logger.warning("[GeminiStreamParser] 流结束时存在不完整的 JSON 数据，已丢弃")
        self.reset()
        return events

    def _feed_sse(self, text: str) -> list[dict[str, Any]]:
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        events: list[dict[str, Any]] = []
        for line in lines:
            event = self.parse_line(line)
            if event is not None:
                events.append(event)
        return events

    def _feed_json(self, text: str) -> list[dict[str, Any]]:
        events: list[dict[str, Any]] = []
        for char in text:
            if self._depth == 0 and char != "{":
                # 数组边界 / 分隔符 / 空白
                continue

            self._buffer += char
            if self._in_string:
                if self._escape:
                    self._escape = False
                elif char == "\\":
                    self._escape = True
                elif char == '"':
                    self._in_string = False
                continue

            if char == '"':
                self._in_string = True
            elif char == "{":
                self._depth += 1
            elif char == "}":
                self._depth -= 1
                if self._depth == 0:
                    event = self._loads(self._buffer)
                    if event is not None:
                        events.append(event)
                    self._buffer = ""
        return events

    def parse_line(self, line: str) -> dict[str, Any] | None:
        """
        解析单行数据（SSE `data:` 行或裸 JSON 行）

        Returns:
            解析后的事件字典，如果无法解析返回 None
        """
        line = line.strip()
        if line.startswith("data:"):
            line = line[len("data:") :].strip()
        elif line.startswith(("event:", "id:", "retry:", ":")):
            return None
        if not line or line in ("[", "]", ",", "[DONE]"):
            return None
        return self._loads(line.rstrip(","))

    @staticmethod
    def _loads(payload: str) -> dict[str, Any] | None:
        try:
            result = json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("[GeminiStreamParser] 无法解析的流数据: {}", payload[:100])
            return None
        return result if isinstance(result, dict) else None

    def is_done_event(self, event: dict[str, Any]) -> bool:
        candidates = event.get("candidates") or []
        for candidate in candidates:
            finish_reason = candidate.get("finishReason") if isinstance(candidate, dict) else None
            if finish_reason and str(finish_reason) != self.FINISH_REASON_UNSPECIFIED:
                return True
        return False


class ResponseStream:
    """只能向前、只能消费一次的流式响应游标

    source 可以产出 bytes/str（交给 GeminiStreamParser 解析）或已解析的 dict。
    取消由调用方决定（停止迭代即可），本层不持有取消令牌。
    """

    def __init__(self, source: AsyncIterable[bytes | str | dict[str, Any]]) -> None:
        self._source = source
        self._parser = GeminiStreamParser()
        self._consumed = False
        self.finished = False

    @property
    def consumed(self) -> bool:
        return self._consumed

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        if self._consumed:
            raise RuntimeError("ResponseStream can only be consumed once")
        self._consumed = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[dict[str, Any]]:
        async for chunk in self._source:
            events = [chunk] if isinstance(chunk, dict) else self._parser.feed(chunk)
            for event in events:
                if self._parser.is_done_event(event):
                    self.finished = True
                yield event
        for event in self._parser.flush():
            if self._parser.is_done_event(event):
                self.finished = True
            yield event


__all__ = ["GeminiStreamParser", "ResponseStream"]
