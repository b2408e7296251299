"""
统一异常定义

除 SafetyViolation 外，其余异常均不携带部分结果；
所有异常都直接抛给调用方，核心层不做重试、不做静默恢复。
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from genai_chat.core.api_format.conversion.response import ProviderResponse


class GenAIChatError(Exception):
    """适配层异常基类"""


class InvalidParameter(GenAIChatError, ValueError):
    """生成参数越界（请求发出前的预检失败）"""

    def __init__(self, name: str, message: str):
        super().__init__(message)
        self.name = name


class ContentConversionError(GenAIChatError, ValueError):
    """消息内容无法转换为 provider part"""


class MissingImageURL(ContentConversionError):
    """image_url 内容块缺少 URL"""

    def __init__(self, message: str = "Missing Image URL"):
        super().__init__(message)


class InvalidMediaContent(ContentConversionError):
    """media 内容块未解析或字段不完整"""

    def __init__(self, message: str, *, part: Any = None):
        super().__init__(message)
        self.part = part


class MediaResolutionFailed(GenAIChatError):
    """媒体引用无法通过任何 resolver 解析，且未配置兜底策略"""

    def __init__(self, uri: str, message: str | None = None):
        super().__init__(message or f"Unable to resolve media reference: {uri}")
        self.uri = uri


class UnsupportedSystemMessage(GenAIChatError, ValueError):
    """system message 不在首位，或出现了多条 system message"""


class CannotNormalizeStream(GenAIChatError, TypeError):
    """流式游标无法同步归并为单个响应"""

    def __init__(self, message: str = "Cannot convert Stream to GenerateContentResponseData"):
        super().__init__(message)


class StructuredOutputError(GenAIChatError, ValueError):
    """模型未按绑定的 schema 返回工具调用，或参数无法通过校验"""


class SafetyViolation(GenAIChatError):
    """安全策略拦截

    response: 触发拦截的原始响应（未经 handler 修改）
    reply:    由 safe_apply 在重新抛出前计算出的"本应返回的结果"，构造后不再修改
    """

    def __init__(
        self,
        response: ProviderResponse,
        message: str = "",
        *,
        reply: Any = None,
    ):
        super().__init__(message)
        self.response = response
        self.reply = reply

    def with_reply(self, reply: Any) -> SafetyViolation:
        """返回携带 reply 的新异常实例（原实例保持不变）"""
        return type(self)(self.response, str(self), reply=reply)


__all__ = [
    "GenAIChatError",
    "InvalidParameter",
    "ContentConversionError",
    "MissingImageURL",
    "InvalidMediaContent",
    "MediaResolutionFailed",
    "UnsupportedSystemMessage",
    "CannotNormalizeStream",
    "StructuredOutputError",
    "SafetyViolation",
]
