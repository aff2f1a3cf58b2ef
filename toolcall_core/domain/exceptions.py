"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于上层做统一捕获与提示。

工具调用相关的错误统一继承 ToolError：
- 注册阶段的错误（DuplicateToolError / InvalidSchemaError）直接抛给调用方；
- 调用阶段的错误（其余子类）由 ToolInvoker 捕获并转换为
  is_error=True 的 ToolCallResult，回填到对话中，不会中断整轮调用。
"""

from typing import Any, Dict, Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "UNKNOWN_TOOL"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 trace_id、tool_name 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class ToolError(BusinessError):
    """工具层统一异常类型。

    工具函数本身也可以抛出 ToolError（或其子类）来表达可预期的业务失败，
    此时 code 会原样保留在返回给模型的错误结构里。

    重要不变量：
    - message 为非空字符串；
    - details 始终为字典对象（无信息时为空字典）。
    """

    default_code = "TOOL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        http_status: int = 400,
        **extra,
    ):
        safe_message = message.strip() if isinstance(message, str) else ""
        if not safe_message:
            safe_message = "Unknown tool error"
        super().__init__(code or self.default_code, safe_message, http_status, **extra)
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """转换为可回填给模型的错误结构。"""

        return {
            "error": self.message,
            "code": self.code,
            "error_type": self.__class__.__name__,
            "details": self.details,
        }


class UnknownToolError(ToolError):
    """请求的工具名未注册。"""

    default_code = "UNKNOWN_TOOL"

    def __init__(self, tool_name: str, **kwargs):
        super().__init__(f"Tool '{tool_name}' is not registered", http_status=404, **kwargs)
        self.tool_name = tool_name


class DuplicateToolError(ToolError):
    """同名工具重复注册。"""

    default_code = "DUPLICATE_TOOL"

    def __init__(self, tool_name: str, **kwargs):
        super().__init__(f"Tool '{tool_name}' is already registered", http_status=409, **kwargs)
        self.tool_name = tool_name


class InvalidSchemaError(ToolError):
    """工具的 input schema 无法被解析。"""

    default_code = "INVALID_SCHEMA"


class ArgumentDecodeError(ToolError):
    """模型给出的 arguments 不符合工具声明的输入结构。"""

    default_code = "ARGUMENT_DECODE_ERROR"


class CallableExecutionError(ToolError):
    """工具函数执行时抛出异常。"""

    default_code = "CALLABLE_EXECUTION_ERROR"


class ToolTimeoutError(ToolError):
    """工具调用超过配置的超时时间。"""

    default_code = "TOOL_TIMEOUT"


class ResultEncodeError(ToolError):
    """工具返回值无法编码为 JSON。"""

    default_code = "RESULT_ENCODE_ERROR"
