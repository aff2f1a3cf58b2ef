"""领域层模型与异常。

包含：
- models: 与对话层交接用的 ChatMessage 模型。
- exceptions: 业务异常与工具调用异常类型定义。
"""
