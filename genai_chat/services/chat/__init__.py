"""
Chat model 服务模块
"""

from genai_chat.services.chat.model import ChatGoogle, ChatTransport, StructuredOutputRunner

__all__ = [
    "ChatGoogle",
    "ChatTransport",
    "StructuredOutputRunner",
]
