"""
字段映射配置（集中定义）

该文件用于承载：
- role / finishReason / 占位值等常量映射表
"""

from genai_chat.core.api_format.conversion.internal import MessageType

# 角色映射（generic message type -> provider role）；tool 的具体落点以 assembler 规则为准
ROLE_MAPPINGS: dict[str, dict[MessageType, str]] = {
    "GEMINI": {
        MessageType.HUMAN: "user",
        MessageType.AI: "model",
        MessageType.TOOL: "user",
    },
    "CLAUDE": {
        MessageType.HUMAN: "user",
        MessageType.AI: "assistant",
        MessageType.TOOL: "user",
    },
}

# 旧版 Gemini 不支持 systemInstruction 时，system 文本之后插入的模型确认回复
SYSTEM_ACKNOWLEDGEMENT = "Ok"

# 非 data: URL 无法可靠获得 MIME 类型，这里统一使用占位值
PLACEHOLDER_IMAGE_MIME_TYPE = "image/png"

# 空占位 blob 的 MIME 类型
EMPTY_BLOB_MIME_TYPE = "application/octet-stream"

# 视为"生成被拦截"的 finishReason（生成已开始，但因安全/版权等原因中止）
BLOCKING_FINISH_REASONS: frozenset[str] = frozenset({"SAFETY", "RECITATION", "OTHER"})

# Claude stop_reason -> Gemini finishReason（用于统一 generation_info）
CLAUDE_STOP_TO_FINISH_REASON: dict[str, str] = {
    "end_turn": "STOP",
    "stop_sequence": "STOP",
    "tool_use": "STOP",
    "max_tokens": "MAX_TOKENS",
    "refusal": "SAFETY",
}
