"""toolcall_core 顶层包。

该包实现 chat-completion 接口“函数调用”的工具中枢：
工具注册、参数解码、（并行）调用、结果编码，以及 OpenAI 兼容格式的编解码。
"""

from toolcall_core.domain.exceptions import (
    ArgumentDecodeError,
    CallableExecutionError,
    DuplicateToolError,
    InvalidSchemaError,
    ResultEncodeError,
    ToolError,
    ToolTimeoutError,
    UnknownToolError,
)
from toolcall_core.tools.definitions import ToolCallRequest, ToolCallResult, ToolContext, ToolDefinition
from toolcall_core.tools.executor import ToolInvoker
from toolcall_core.tools.registry import ToolRegistry

__all__ = [
    "ArgumentDecodeError",
    "CallableExecutionError",
    "DuplicateToolError",
    "InvalidSchemaError",
    "ResultEncodeError",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolContext",
    "ToolDefinition",
    "ToolError",
    "ToolInvoker",
    "ToolRegistry",
    "ToolTimeoutError",
    "UnknownToolError",
]
