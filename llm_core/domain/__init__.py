"""领域层模型与协议。

包含：
- models: 统一的 Model / NormalizedResponse / StreamEvent 模型。
- chat: 内存中的 ChatSession 与 Message。
- exceptions: 跨 Provider 的异常类型定义。
"""
