"""工具注册表。

在配置阶段一次性注册工具，之后由 ToolInvoker 按名称解析调用。
三种注册方式：

- ``registry.register(ToolDefinition(...))``
- ``registry.add(name, description, input_schema, func, accepts_context=False)``
- ``@registry.tool()`` 装饰器：名称取函数名，描述取 docstring，
  input schema 取第一个参数上标注的 pydantic 模型，
  声明了第二个参数时视为接收 ToolContext。
"""

from __future__ import annotations

import inspect
import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from toolcall_core.domain.exceptions import DuplicateToolError, InvalidSchemaError, UnknownToolError
from toolcall_core.infrastructure.logging.logger import log_event
from .definitions import InputSchema, ToolDefinition, ToolFunc


class ToolRegistry:
    """按名称保存 ToolDefinition，名称在同一个注册表内唯一。"""

    def __init__(self, definitions: Optional[List[ToolDefinition]] = None):
        self._tools: Dict[str, ToolDefinition] = {}
        self._lock = threading.Lock()
        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: ToolDefinition) -> ToolDefinition:
        """注册一个工具。

        Raises:
            DuplicateToolError: 同名工具已存在，已有注册保持不变。
        """

        with self._lock:
            if definition.name in self._tools:
                raise DuplicateToolError(definition.name)
            self._tools[definition.name] = definition
        log_event(
            logging.INFO,
            "Registered tool",
            {"tool_name": definition.name},
            accepts_context=definition.accepts_context,
        )
        return definition

    def add(
        self,
        name: str,
        description: str,
        input_schema: InputSchema,
        func: ToolFunc,
        accepts_context: bool = False,
    ) -> ToolDefinition:
        return self.register(
            ToolDefinition(
                name=name,
                description=description,
                input_schema=input_schema,
                func=func,
                accepts_context=accepts_context,
            )
        )

    def tool(
        self,
        name: Optional[str] = None,
        description: Optional[str] = None,
        input_schema: Optional[InputSchema] = None,
        accepts_context: Optional[bool] = None,
    ) -> Callable[[ToolFunc], ToolFunc]:
        """装饰器形式的注册，返回原函数本身。"""

        def decorator(func: ToolFunc) -> ToolFunc:
            params = _positional_params(func)
            schema = input_schema if input_schema is not None else _annotated_model(func, params)
            self.add(
                name=name or func.__name__,
                description=description if description is not None else inspect.getdoc(func) or "",
                input_schema=schema,
                func=func,
                accepts_context=len(params) >= 2 if accepts_context is None else accepts_context,
            )
            return func

        return decorator

    def unregister(self, name: str) -> ToolDefinition:
        with self._lock:
            if name not in self._tools:
                raise UnknownToolError(name)
            return self._tools.pop(name)

    def resolve(self, name: str) -> ToolDefinition:
        """按名称获取工具定义。

        Raises:
            UnknownToolError: 未注册。
        """

        definition = self._tools.get(name)
        if definition is None:
            raise UnknownToolError(name)
        return definition

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def definitions(self) -> List[ToolDefinition]:
        return list(self._tools.values())

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _positional_params(func: ToolFunc) -> List[inspect.Parameter]:
    return [
        p
        for p in inspect.signature(func).parameters.values()
        if p.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)
    ]


def _annotated_model(func: ToolFunc, params: List[inspect.Parameter]) -> Any:
    name = getattr(func, "__name__", repr(func))
    if not params:
        raise InvalidSchemaError(
            f"Tool '{name}' takes no arguments parameter; pass input_schema explicitly",
            details={"tool_name": name},
        )
    try:
        hints = inspect.get_annotations(func, eval_str=True)
    except NameError as exc:
        raise InvalidSchemaError(
            f"Tool '{name}' annotations cannot be resolved: {exc}",
            details={"tool_name": name},
        )
    annotation = hints.get(params[0].name)
    if annotation is None:
        raise InvalidSchemaError(
            f"Tool '{name}' first parameter has no pydantic model annotation; pass input_schema explicitly",
            details={"tool_name": name},
        )
    return annotation
