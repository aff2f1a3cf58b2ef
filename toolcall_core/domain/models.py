"""对话消息模型。

ToolInvoker 本身不管理对话历史，但需要把工具结果交还给对话层。
这里定义交接时使用的最小消息结构：

- ChatMessage: 一条对话消息（assistant 发起工具调用 / tool 回填结果）。

Provider 适配层（如 providers.openai_tools）负责在厂商 JSON 和本结构之间转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    from toolcall_core.tools.definitions import ToolCallRequest


# LLM 消息角色类型（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]


@dataclass
class ChatMessage:
    """一条对话消息。

    - role: 消息角色。
    - content: 纯文本内容；tool 消息中为结果的 JSON 文本。
    - meta: 附加元数据（耗时、是否出错等），不直接发给 Provider。
    - tool_calls: role 为 "assistant" 且模型触发工具调用时的调用列表。
    - tool_call_id: role 为 "tool" 时，关联的那一次工具调用。
    """

    role: Role
    content: str
    meta: Dict[str, Any] = field(default_factory=dict)
    tool_calls: Optional[List["ToolCallRequest"]] = None
    tool_call_id: Optional[str] = None
