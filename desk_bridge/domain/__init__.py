"""领域层模型与异常。

包含：
- models: ChatMessage / PromptRequest / BackendReply 以及后端名称规范化。
- exceptions: 业务异常类型与 ErrorKind 归类。
"""
