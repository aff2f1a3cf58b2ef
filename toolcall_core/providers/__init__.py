"""LLM Provider 集成层。

该包只负责工具调用相关的厂商 JSON 编解码，不发起 HTTP 请求：
- openai_tools: OpenAI 兼容 chat-completions 接口的 tool_calls 格式。
"""

from toolcall_core.providers.openai_tools import OpenAIToolCodec

__all__ = ["OpenAIToolCodec"]
