"""OpenAI 兼容 chat-completions 接口的工具调用编解码。

本模块负责“厂商 JSON ⇄ 项目内部模型”的转换：

1. ToolDefinition -> ``tools`` 字段中的 function 描述。
2. assistant 消息里的 ``tool_calls`` / 旧版 ``function_call`` -> ToolCallRequest 列表。
3. ToolCallResult -> role="tool" 的 ChatMessage / 消息 JSON。

HTTP 请求本身不在这里处理，由对话层的客户端负责。
"""

import json
from typing import Any, Dict, Iterable, List, Optional

from toolcall_core.domain.models import ChatMessage
from toolcall_core.tools.definitions import ToolCallRequest, ToolCallResult, ToolDefinition
from toolcall_core.tools.executor import ContextLike, ToolInvoker


class OpenAIToolCodec:
    """OpenAI / Moonshot / GLM 等兼容接口共用的工具调用格式。"""

    def serialize_tool(self, definition: ToolDefinition) -> Dict[str, Any]:
        """把 ToolDefinition 转成 function tool 描述。"""

        return {
            "type": "function",
            "function": {
                "name": definition.name,
                "description": definition.description,
                "parameters": definition.parameters,
            },
        }

    def serialize_tools(self, definitions: Iterable[ToolDefinition]) -> List[Dict[str, Any]]:
        return [self.serialize_tool(d) for d in definitions]

    def parse_tool_calls(self, payload: Dict[str, Any]) -> List[ToolCallRequest]:
        """解析一条 assistant 消息中的全部工具调用。

        缺少 id 的调用按位置补上 ``tool_call_<index>``；
        arguments 若已经是对象，则重新编码为 JSON 文本，保证下游统一按文本解码。
        """

        requests: List[ToolCallRequest] = []
        for idx, call in enumerate(payload.get("tool_calls") or []):
            func = call.get("function") or {}
            requests.append(
                ToolCallRequest(
                    call_id=call.get("id") or f"tool_call_{idx}",
                    tool_name=func.get("name") or call.get("name") or "",
                    raw_arguments=self._arguments_text(func.get("arguments")),
                )
            )

        # 部分模型仍会返回旧版 function_call 字段
        function_call = payload.get("function_call")
        if function_call:
            requests.append(
                ToolCallRequest(
                    call_id=function_call.get("id") or "function_call",
                    tool_name=function_call.get("name") or "",
                    raw_arguments=self._arguments_text(function_call.get("arguments")),
                )
            )
        return requests

    def build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """将单条厂商 message 转换为 ChatMessage。"""

        tool_calls = self.parse_tool_calls(payload)
        return ChatMessage(
            role=payload.get("role") or "assistant",
            content=payload.get("content") or "",
            tool_calls=tool_calls or None,
            tool_call_id=payload.get("tool_call_id"),
        )

    def result_to_message(self, result: ToolCallResult) -> ChatMessage:
        return ChatMessage(
            role="tool",
            content=result.content,
            tool_call_id=result.call_id,
            meta={
                "tool_name": result.tool_name,
                "is_error": result.is_error,
                "elapsed_ms": result.elapsed_ms,
            },
        )

    def message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        if message.content or message.role == "tool":
            payload["content"] = message.content
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.call_id,
                    "type": "function",
                    "function": {
                        "name": call.tool_name,
                        "arguments": call.raw_arguments,
                    },
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload

    def respond(
        self,
        invoker: ToolInvoker,
        payload: Dict[str, Any],
        context: ContextLike = None,
    ) -> List[Dict[str, Any]]:
        """执行 assistant 消息里的全部工具调用，返回要追加到对话中的 tool 消息。"""

        results = invoker.invoke_all(self.parse_tool_calls(payload), context)
        return [self.message_to_payload(self.result_to_message(r)) for r in results]

    async def arespond(
        self,
        invoker: ToolInvoker,
        payload: Dict[str, Any],
        context: ContextLike = None,
    ) -> List[Dict[str, Any]]:
        results = await invoker.ainvoke_all(self.parse_tool_calls(payload), context)
        return [self.message_to_payload(self.result_to_message(r)) for r in results]

    @staticmethod
    def _arguments_text(raw: Optional[Any]) -> str:
        if raw is None:
            return "{}"
        if isinstance(raw, str):
            return raw
        return json.dumps(raw, ensure_ascii=False)
