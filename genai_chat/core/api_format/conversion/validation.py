"""
生成参数预检

请求发出前同步校验；任一参数越界立即抛出 InvalidParameter（携带参数名），不发出请求。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from genai_chat.core.exceptions import InvalidParameter


@dataclass(frozen=True)
class GenerationParams:
    """生成参数（None 表示不下发，由 provider 使用默认值）"""

    max_output_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop_sequences: tuple[str, ...] = field(default_factory=tuple)

    def to_generation_config(self) -> dict[str, Any]:
        """Gemini generationConfig（camelCase，省略未设置的字段）"""
        out: dict[str, Any] = {}
        if self.max_output_tokens is not None:
            out["maxOutputTokens"] = self.max_output_tokens
        if self.temperature is not None:
            out["temperature"] = self.temperature
        if self.top_p is not None:
            out["topP"] = self.top_p
        if self.top_k is not None:
            out["topK"] = self.top_k
        if self.stop_sequences:
            out["stopSequences"] = list(self.stop_sequences)
        return out


def _in_unit_range(value: float) -> bool:
    return 0.0 <= value <= 1.0


def validate_generation_params(params: GenerationParams) -> None:
    if params.max_output_tokens is not None and (
        isinstance(params.max_output_tokens, bool)
        or not isinstance(params.max_output_tokens, int)
        or params.max_output_tokens <= 0
    ):
        raise InvalidParameter(
            "max_output_tokens", "`max_output_tokens` must be a positive integer"
        )

    if params.temperature is not None and not _in_unit_range(params.temperature):
        raise InvalidParameter("temperature", "`temperature` must be in the range of [0.0,1.0]")

    if params.top_p is not None and not _in_unit_range(params.top_p):
        raise InvalidParameter("top_p", "`top_p` must be in the range of [0.0,1.0]")

    if params.top_k is not None and params.top_k < 0:
        raise InvalidParameter("top_k", "`top_k` must be a non-negative integer")


__all__ = ["GenerationParams", "validate_generation_params"]
