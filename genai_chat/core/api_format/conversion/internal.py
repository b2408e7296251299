"""
通用对话内部表示（Generic Chat Format）

该模块定义与 provider 无关的消息/内容结构，由上层 chat model 框架构造，
经 assembler/parts 转换为 provider 请求，再由 response 模块把 provider 响应还原为本结构。

设计原则：
- 不可变：所有消息与内容块均为 frozen dataclass，转换过程只读不写
- 封闭变体：ContentPart / Message 是封闭 Union，新增变体时需同步修改所有分派点
- provider 结构（parts/contents/candidates）保持为 dict，字段名与 wire format 一致（camelCase）

字段修改须知：
- 本文件是 parts/assembler/response/anthropic 的共享契约
- 修改前请检查 tests/core/api_format/conversion/ 下的测试
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class MessageType(str, Enum):
    SYSTEM = "system"
    HUMAN = "human"
    AI = "ai"
    TOOL = "tool"


class ContentType(str, Enum):
    TEXT = "text"
    IMAGE_URL = "image_url"
    MEDIA = "media"


class ModelFamily(str, Enum):
    GEMINI = "gemini"
    CLAUDE = "claude"


def is_model_gemini(model: str) -> bool:
    return model.lower().startswith("gemini")


def is_model_claude(model: str) -> bool:
    return model.lower().startswith("claude")


def model_family(model: str) -> ModelFamily:
    """按模型名选择 wire schema；无法识别的模型按 Gemini 处理"""
    if is_model_claude(model):
        return ModelFamily.CLAUDE
    return ModelFamily.GEMINI


@dataclass(frozen=True)
class TextContent:
    """文本内容块

    Format mapping:
      Gemini: parts[].text
      Claude: content[].type="text"
    """

    text: str = ""

    @property
    def type(self) -> ContentType:
        return ContentType.TEXT


@dataclass(frozen=True)
class ImageUrlContent:
    """图片 URL 内容块

    Format mapping:
      Gemini: data:mime;base64,... -> parts[].inlineData; 其他 URL -> parts[].fileData
      Claude: content[].type="image" -> source.type="base64" | source.type="url"
    """

    url: str | None = None

    @property
    def type(self) -> ContentType:
        return ContentType.IMAGE_URL


@dataclass(frozen=True)
class MediaContent:
    """外部媒体引用内容块

    file_uri:  媒体引用（任意 scheme，由 MediaManager 解析为 canonical URI）
    mime_type: 声明的 MIME 类型（解析前可能缺失）
    data:      已内嵌的原始字节（存在时直接作为 inlineData 发送，不再解析）
    resolved:  file_uri 已是 provider 可直接访问的 canonical URI（由 MediaManager 设置）

    Format mapping:
      Gemini: data -> parts[].inlineData; file_uri -> parts[].fileData
      Claude: data -> content[].source.type="base64"; file_uri -> source.type="url"
    """

    file_uri: str | None = None
    mime_type: str | None = None
    data: bytes | None = None
    resolved: bool = False

    @property
    def type(self) -> ContentType:
        return ContentType.MEDIA

    @property
    def is_inline(self) -> bool:
        return self.data is not None


ContentPart = Union[TextContent, ImageUrlContent, MediaContent]

# 纯文本或有序内容块列表
MessageContent = Union[str, list[ContentPart], tuple[ContentPart, ...]]


@dataclass(frozen=True)
class ToolCall:
    """工具调用

    Format mapping:
      Gemini: parts[].functionCall -> name / args(dict); id 由本层合成
      Claude: content[].type="tool_use" -> id / name / input(dict)
    """

    name: str
    args: dict[str, Any] = field(default_factory=dict)
    id: str = ""

    def to_openai_dict(self) -> dict[str, Any]:
        """OpenAI 风格的 tool_calls 条目（arguments 为 JSON 字符串）"""
        return {
            "id": self.id,
            "type": "function",
            "function": {
                "name": self.name,
                "arguments": json.dumps(self.args, ensure_ascii=False),
            },
        }


@dataclass(frozen=True)
class SystemMessage:
    content: MessageContent

    @property
    def type(self) -> MessageType:
        return MessageType.SYSTEM


@dataclass(frozen=True)
class HumanMessage:
    content: MessageContent

    @property
    def type(self) -> MessageType:
        return MessageType.HUMAN


@dataclass(frozen=True)
class AIMessage:
    content: MessageContent = ""
    tool_calls: tuple[ToolCall, ...] = ()

    @property
    def type(self) -> MessageType:
        return MessageType.AI


@dataclass(frozen=True)
class AIMessageChunk(AIMessage):
    """流式输出的增量消息"""

    def __add__(self, other: AIMessageChunk) -> AIMessageChunk:
        content: MessageContent
        if isinstance(self.content, str) and isinstance(other.content, str):
            content = self.content + other.content
        else:
            # 空文本块不参与合并
            content = [
                p
                for p in content_to_parts(self.content) + content_to_parts(other.content)
                if not (isinstance(p, TextContent) and not p.text)
            ]
        return AIMessageChunk(content=content, tool_calls=self.tool_calls + other.tool_calls)


@dataclass(frozen=True)
class ToolMessage:
    """工具执行结果

    tool_call_id: 关联 AIMessage.tool_calls[].id
    name:         工具名（Gemini functionResponse.name 需要；缺失时按 tool_call_id 回查）
    """

    content: MessageContent
    tool_call_id: str
    name: str | None = None

    @property
    def type(self) -> MessageType:
        return MessageType.TOOL


Message = Union[SystemMessage, HumanMessage, AIMessage, ToolMessage]


@dataclass
class ChatGeneration:
    """单个候选生成结果"""

    text: str
    message: AIMessage
    generation_info: dict[str, Any] | None = None


@dataclass
class ChatResult:
    """一次调用的完整结果"""

    generations: list[ChatGeneration]
    llm_output: dict[str, Any] | None = None


@dataclass
class Generation:
    """纯文本补全结果"""

    text: str
    generation_info: dict[str, Any] | None = None


def content_to_parts(content: MessageContent) -> list[ContentPart]:
    """将 str 提升为单个 TextContent，统一为列表形式"""
    if isinstance(content, str):
        return [TextContent(text=content)]
    return list(content)


def content_to_text(content: MessageContent) -> str:
    """拼接内容中所有文本块（非文本块忽略）"""
    if isinstance(content, str):
        return content
    return "".join(p.text for p in content if isinstance(p, TextContent))


__all__ = [
    "MessageType",
    "ContentType",
    "ModelFamily",
    "is_model_gemini",
    "is_model_claude",
    "model_family",
    "TextContent",
    "ImageUrlContent",
    "MediaContent",
    "ContentPart",
    "MessageContent",
    "ToolCall",
    "SystemMessage",
    "HumanMessage",
    "AIMessage",
    "AIMessageChunk",
    "ToolMessage",
    "Message",
    "ChatGeneration",
    "ChatResult",
    "Generation",
    "content_to_parts",
    "content_to_text",
]
