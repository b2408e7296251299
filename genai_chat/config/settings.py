"""
适配层配置
从环境变量或 .env 文件加载配置
"""

import os
from pathlib import Path

from dotenv import load_dotenv

env_file = Path(".env")
if env_file.exists():
    load_dotenv(env_file)


def _optional_bool(value: str | None) -> bool | None:
    if value is None or not value.strip():
        return None
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    def __init__(self) -> None:
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        # 默认模型（未显式指定 model 时使用）
        self.default_model = os.getenv("GENAI_DEFAULT_MODEL", "gemini-pro")

        # system message 处理策略
        # 未设置：按模型版本自动判断（低于阈值的 Gemini 模型折叠到对话体中）
        # true：总是折叠为 user + model("Ok") 的伪对话
        # false：总是使用 systemInstruction 独立字段
        self.convert_system_message_to_human = _optional_bool(
            os.getenv("GENAI_CONVERT_SYSTEM_MESSAGE")
        )
        # 支持 systemInstruction 的最低 Gemini 版本
        self.system_instruction_min_version = float(
            os.getenv("GENAI_SYSTEM_INSTRUCTION_MIN_VERSION", "1.5")
        )

        # 媒体解析配置
        # GENAI_MEDIA_MISSING_ACTION: 所有 resolver 都找不到时的处理方式（error / empty_blob）
        self.media_missing_action = os.getenv("GENAI_MEDIA_MISSING_ACTION", "error").lower()
        self.media_max_concurrency = int(os.getenv("GENAI_MEDIA_MAX_CONCURRENCY", "8"))
        self.media_download_timeout = float(os.getenv("GENAI_MEDIA_DOWNLOAD_TIMEOUT", "15"))
        self.media_max_size = int(os.getenv("GENAI_MEDIA_MAX_SIZE", str(20 * 1024 * 1024)))

        # Anthropic (Vertex) 请求配置
        self.anthropic_version = os.getenv("GENAI_ANTHROPIC_VERSION", "vertex-2023-10-16")
        # Anthropic Messages API 要求必须提供 max_tokens
        self.default_max_output_tokens = int(os.getenv("GENAI_DEFAULT_MAX_OUTPUT_TOKENS", "1024"))

    def __repr__(self) -> str:
        """配置信息字符串表示"""
        return f"""
Configuration:
  Log Level: {self.log_level}
  Default Model: {self.default_model}
  Convert System Message: {self.convert_system_message_to_human}
  Media Missing Action: {self.media_missing_action}
"""


# 创建全局配置实例
config = Config()
