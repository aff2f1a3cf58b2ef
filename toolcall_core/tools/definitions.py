"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的各个环节：
- ToolDefinition: 注册到 ToolRegistry、暴露给 LLM 的工具。
- ToolCallRequest / ToolCallResult: 模型某一轮发起的一次调用及其结果。
- ToolContext: 单次调用时附带的只读上下文，仅工具函数可见，不会发给模型。
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Type, Union

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from toolcall_core.domain.exceptions import ToolError, ValidationError
from .schema import ArgumentShape


ToolFunc = Callable[..., Any]
InputSchema = Union[Dict[str, Any], Type[BaseModel]]


@dataclass(frozen=True)
class ToolDefinition:
    """一个可供 LLM 调用的工具定义。

    - input_schema: JSON schema 字典，或 pydantic 模型类。
      前者调用时传入校验后的 dict，后者传入模型实例。
    - accepts_context: 为 True 时以 ``func(arguments, context)`` 调用，
      否则以 ``func(arguments)`` 调用。
    """

    name: str
    description: str
    input_schema: InputSchema
    func: ToolFunc
    accepts_context: bool = False
    shape: ArgumentShape = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError(code="INVALID_TOOL_NAME", message="Tool name must be a non-empty string")
        if not callable(self.func):
            raise ValidationError(code="INVALID_TOOL_FUNC", message=f"Tool '{self.name}' func is not callable")
        object.__setattr__(self, "shape", ArgumentShape.from_schema(self.name, self.input_schema))

    @property
    def parameters(self) -> Dict[str, Any]:
        """暴露给模型的参数 JSON schema。"""

        return self.shape.json_schema


@dataclass(frozen=True)
class ToolCallRequest:
    """模型发起的一次工具调用请求，arguments 保持原始 JSON 文本。"""

    call_id: str
    tool_name: str
    raw_arguments: str = "{}"


@dataclass(frozen=True)
class ToolCallResult:
    """工具执行结果。

    output 为 JSON 兼容的值（成功时）或错误结构（失败时）；
    content 为交还给对话层的 JSON 文本。
    """

    call_id: str
    tool_name: str
    output: Any
    is_error: bool = False
    elapsed_ms: float = 0.0

    @property
    def content(self) -> str:
        return json.dumps(self.output, ensure_ascii=False)

    @classmethod
    def failure(cls, request: ToolCallRequest, error: ToolError, elapsed_ms: float = 0.0) -> "ToolCallResult":
        return cls(
            call_id=request.call_id,
            tool_name=request.tool_name,
            output=to_jsonable_python(error.to_dict(), fallback=repr),
            is_error=True,
            elapsed_ms=elapsed_ms,
        )


class ToolContext(Mapping[str, Any]):
    """单次 invoke_all 共享的只读上下文。

    构造时复制一份输入，之后无法修改；需要追加字段时用 merged() 生成新对象。
    """

    __slots__ = ("_data",)

    def __init__(self, data: Optional[Mapping[str, Any]] = None, **values: Any):
        merged: Dict[str, Any] = dict(data or {})
        merged.update(values)
        for key in merged:
            if not isinstance(key, str):
                raise ValidationError(code="INVALID_CONTEXT_KEY", message=f"Context key must be str, got {key!r}")
        self._data = MappingProxyType(merged)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"ToolContext({dict(self._data)!r})"

    def merged(self, **values: Any) -> "ToolContext":
        return ToolContext(self._data, **values)
