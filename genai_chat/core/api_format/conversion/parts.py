"""
内容块编解码（generic content <-> Gemini parts）

负责：
- to_provider_parts(): str / TextContent / ImageUrlContent / 已解析的 MediaContent -> Gemini part
- from_provider_parts(): Gemini part -> TextContent / ImageUrlContent（无法识别的 part 直接跳过）
- 工具调用/工具结果的 part 构造与解析

说明：
- 输出统一使用 camelCase（inlineData/fileData/mimeType/fileUri）
- 输入同时兼容 camelCase 与 snake_case（部分代理/历史转换器会产出 snake_case）
- 非 data: 的图片 URL 无法得到真实 MIME 类型，统一使用占位值（已知不精确）
- MediaContent 必须在进入本模块前完成解析（见 media.MediaManager）
"""

from __future__ import annotations

import base64
import json
from typing import Any, assert_never
from urllib.parse import unquote_to_bytes

from genai_chat.core.api_format.conversion.field_mappings import PLACEHOLDER_IMAGE_MIME_TYPE
from genai_chat.core.api_format.conversion.internal import (
    ContentPart,
    ImageUrlContent,
    MediaContent,
    MessageContent,
    TextContent,
    ToolCall,
    content_to_parts,
    content_to_text,
)
from genai_chat.core.exceptions import InvalidMediaContent, MissingImageURL

_DATA_URL_PREFIX = "data:"


# =========================
# generic -> provider
# =========================


def to_provider_parts(content: MessageContent) -> list[dict[str, Any]]:
    """将消息内容转换为 Gemini parts（保持顺序）"""
    return [content_part_to_provider_part(part) for part in content_to_parts(content)]


def content_part_to_provider_part(part: ContentPart) -> dict[str, Any]:
    if isinstance(part, TextContent):
        return {"text": part.text}
    if isinstance(part, ImageUrlContent):
        return _image_url_to_part(part)
    if isinstance(part, MediaContent):
        return _media_to_part(part)
    assert_never(part)


def parse_data_url(url: str) -> tuple[str, str]:
    """解析 data: URL，返回 (mime_type, base64_data)

    非 base64 编码的 data URL（如 data:text/plain,hello）会先解码再转为 base64。
    """
    header, _, payload = url.partition(",")
    meta = header[len(_DATA_URL_PREFIX) :].split(";")
    mime_type = meta[0] or "text/plain"
    if "base64" in meta[1:]:
        return mime_type, payload
    return mime_type, base64.b64encode(unquote_to_bytes(payload)).decode("ascii")


def _image_url_to_part(part: ImageUrlContent) -> dict[str, Any]:
    url = part.url
    if not url:
        raise MissingImageURL()

    if url.startswith(_DATA_URL_PREFIX):
        mime_type, data = parse_data_url(url)
        return {"inlineData": {"mimeType": mime_type, "data": data}}

    # 外部 URL：无法可靠推断 MIME，使用占位值
    return {"fileData": {"mimeType": PLACEHOLDER_IMAGE_MIME_TYPE, "fileUri": url}}


def _media_to_part(part: MediaContent) -> dict[str, Any]:
    if not part.mime_type:
        raise InvalidMediaContent(
            f"Invalid media content: missing mime type for {part.file_uri or '<inline data>'}",
            part=part,
        )

    if part.data is not None:
        return {
            "inlineData": {
                "mimeType": part.mime_type,
                "data": base64.b64encode(part.data).decode("ascii"),
            }
        }

    if part.file_uri:
        if not part.resolved:
            raise InvalidMediaContent(
                f"Invalid media content: unresolved media reference {part.file_uri}", part=part
            )
        return {"fileData": {"mimeType": part.mime_type, "fileUri": part.file_uri}}

    raise InvalidMediaContent(
        "Invalid media content: neither data nor fileUri is present", part=part
    )


# =========================
# provider -> generic
# =========================


def from_provider_parts(parts: Any) -> list[ContentPart]:
    """将 Gemini parts 还原为通用内容块

    仅识别 text / inlineData / fileData 三种形态，其余（functionCall、thought、未来新增类型）跳过。
    fileData 还原后只保留 URI，原始 MIME 提示丢失。
    """
    if not isinstance(parts, list):
        return []

    out: list[ContentPart] = []
    for part in parts:
        content = provider_part_to_content_part(part)
        if content is not None:
            out.append(content)
    return out


def provider_part_to_content_part(part: Any) -> ContentPart | None:
    if not isinstance(part, dict):
        return None

    if "text" in part and isinstance(part.get("text"), str):
        return TextContent(text=part["text"])

    inline = _pick(part, "inlineData", "inline_data")
    if isinstance(inline, dict):
        mime_type = _pick(inline, "mimeType", "mime_type")
        data = inline.get("data")
        if mime_type and isinstance(data, str):
            return ImageUrlContent(url=f"data:{mime_type};base64,{data}")
        return None

    file_data = _pick(part, "fileData", "file_data")
    if isinstance(file_data, dict):
        file_uri = _pick(file_data, "fileUri", "file_uri")
        if file_uri:
            return ImageUrlContent(url=str(file_uri))
        return None

    # 扁平形态：{mimeType, data} / {mimeType, fileUri}
    if "mimeType" in part and "data" in part:
        return ImageUrlContent(url=f"data:{part['mimeType']};base64,{part['data']}")
    if "mimeType" in part and "fileUri" in part:
        return ImageUrlContent(url=str(part["fileUri"]))

    return None


def part_to_text(part: Any) -> str:
    if isinstance(part, dict) and isinstance(part.get("text"), str):
        return part["text"]
    return ""


# =========================
# 工具调用 / 工具结果
# =========================


def tool_call_to_part(tool_call: ToolCall) -> dict[str, Any]:
    return {"functionCall": {"name": tool_call.name, "args": dict(tool_call.args)}}


def tool_result_to_part(name: str, content: MessageContent) -> dict[str, Any]:
    """ToolMessage -> functionResponse part

    内容是 JSON object 时原样作为 response；否则包一层 {"result": ...}。
    """
    text = content_to_text(content)
    response: Any
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError):
        parsed = None
    if isinstance(parsed, dict):
        response = parsed
    else:
        response = {"result": parsed if parsed is not None else text}
    return {"functionResponse": {"name": name, "response": response}}


def part_to_tool_call(part: Any, index: int = 0) -> ToolCall | None:
    if not isinstance(part, dict):
        return None
    func_call = _pick(part, "functionCall", "function_call")
    if not isinstance(func_call, dict):
        return None
    name = str(func_call.get("name") or "")
    args = func_call.get("args")
    if not isinstance(args, dict):
        args = {}
    tool_id = str(func_call.get("id") or f"call_{index}")
    return ToolCall(name=name, args=args, id=tool_id)


def _pick(payload: dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in payload:
            return payload[k]
    return None


__all__ = [
    "to_provider_parts",
    "content_part_to_provider_part",
    "parse_data_url",
    "from_provider_parts",
    "provider_part_to_content_part",
    "part_to_text",
    "tool_call_to_part",
    "tool_result_to_part",
    "part_to_tool_call",
]
