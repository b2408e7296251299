"""
日志配置

统一使用 loguru，其他模块通过 `from genai_chat.core.logger import logger` 引用。
"""

import sys

from loguru import logger

from genai_chat.config.settings import config

_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

logger.remove()
logger.add(sys.stderr, level=config.log_level.upper(), format=_LOG_FORMAT)


__all__ = ["logger"]
