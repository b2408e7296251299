"""
工具声明转换

支持的输入形态：
- Gemini tool dict：{"functionDeclarations": [...]}（也兼容 snake_case）
- OpenAI 风格：{"type": "function", "function": {name, description, parameters}}
- 扁平声明：{name, description, parameters}
- pydantic 模型类（schema 取自 model_json_schema()）
- FunctionDeclaration 实例

输出：
- Gemini：tools: [{"functionDeclarations": [...]}]
- Anthropic：[{name, description, input_schema}]

Gemini 不接受 JSON Schema 中的 additionalProperties 与 $ref，参数 schema 下发前统一清理。
"""

from __future__ import annotations

import copy
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel

_UNSUPPORTED_SCHEMA_KEYS = frozenset({"additionalProperties", "$defs", "definitions"})


@dataclass(frozen=True)
class FunctionDeclaration:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)

    def to_gemini(self) -> dict[str, Any]:
        decl: dict[str, Any] = {"name": self.name, "description": self.description}
        if self.parameters:
            decl["parameters"] = self.parameters
        return decl

    def to_anthropic(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameters or {"type": "object", "properties": {}},
        }


ToolLike = Union[dict[str, Any], type[BaseModel], FunctionDeclaration]


def remove_additional_properties(schema: dict[str, Any]) -> dict[str, Any]:
    """返回清理后的 schema 副本：移除 additionalProperties，并内联 $defs/$ref"""
    defs = schema.get("$defs") or schema.get("definitions") or {}
    return _clean_schema(schema, defs, ())


def _clean_schema(node: Any, defs: dict[str, Any], resolving: tuple[str, ...]) -> Any:
    if isinstance(node, list):
        return [_clean_schema(item, defs, resolving) for item in node]
    if not isinstance(node, dict):
        return node

    ref = node.get("$ref")
    if isinstance(ref, str):
        name = ref.rsplit("/", 1)[-1]
        if name in resolving:
            raise ValueError(f"Recursive schema reference is not supported: {ref}")
        if name not in defs:
            raise ValueError(f"Unresolvable schema reference: {ref}")
        target = _clean_schema(copy.deepcopy(defs[name]), defs, resolving + (name,))
        siblings = {k: v for k, v in node.items() if k != "$ref"}
        target.update(_clean_schema(siblings, defs, resolving))
        return target

    return {
        key: _clean_schema(value, defs, resolving)
        for key, value in node.items()
        if key not in _UNSUPPORTED_SCHEMA_KEYS
    }


def _pydantic_to_declaration(model: type[BaseModel]) -> FunctionDeclaration:
    schema = model.model_json_schema()
    description = schema.pop("description", None) or (model.__doc__ or "").strip()
    schema.pop("title", None)
    return FunctionDeclaration(
        name=model.__name__,
        description=description,
        parameters=remove_additional_properties(schema),
    )


def _dict_to_declaration(decl: dict[str, Any]) -> FunctionDeclaration:
    name = str(decl.get("name") or "")
    if not name:
        raise ValueError("Tool declaration is missing a name")
    parameters = decl.get("parameters")
    if parameters is None:
        parameters = decl.get("input_schema")
    return FunctionDeclaration(
        name=name,
        description=str(decl.get("description") or ""),
        parameters=remove_additional_properties(parameters) if isinstance(parameters, dict) else {},
    )


def convert_to_function_declarations(tools: Sequence[ToolLike]) -> list[FunctionDeclaration]:
    out: list[FunctionDeclaration] = []
    for tool in tools:
        if isinstance(tool, FunctionDeclaration):
            out.append(tool)
        elif isinstance(tool, type) and issubclass(tool, BaseModel):
            out.append(_pydantic_to_declaration(tool))
        elif isinstance(tool, dict):
            decls = tool.get("functionDeclarations")
            if decls is None:
                decls = tool.get("function_declarations")
            if isinstance(decls, list):
                out.extend(_dict_to_declaration(d) for d in decls if isinstance(d, dict))
            elif tool.get("type") == "function" and isinstance(tool.get("function"), dict):
                out.append(_dict_to_declaration(tool["function"]))
            else:
                out.append(_dict_to_declaration(tool))
        else:
            raise TypeError(f"Unsupported tool type: {type(tool).__name__}")
    return out


def tools_to_gemini(tools: Sequence[ToolLike]) -> list[dict[str, Any]]:
    decls = convert_to_function_declarations(tools)
    if not decls:
        return []
    return [{"functionDeclarations": [d.to_gemini() for d in decls]}]


def tools_to_anthropic(tools: Sequence[ToolLike]) -> list[dict[str, Any]]:
    return [d.to_anthropic() for d in convert_to_function_declarations(tools)]


def tool_name(tool: ToolLike) -> str:
    decls = convert_to_function_declarations([tool])
    if len(decls) != 1:
        raise ValueError("Structured output requires exactly one function declaration")
    return decls[0].name


def forced_tool_config(name: str) -> dict[str, Any]:
    """强制模型调用指定工具（structured output 使用）"""
    return {"functionCallingConfig": {"mode": "ANY", "allowedFunctionNames": [name]}}


__all__ = [
    "FunctionDeclaration",
    "ToolLike",
    "remove_additional_properties",
    "convert_to_function_declarations",
    "tools_to_gemini",
    "tools_to_anthropic",
    "tool_name",
    "forced_tool_config",
]
