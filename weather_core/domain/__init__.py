"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- routing: RoutingDecision / ExecutionResult / OrchestratorResponse。
- events: 流式事件 StreamEvent 与 NDJSON 分帧。
- session: 会话模型及 SessionStore / ChatRecordSink 协议。
- exceptions: 业务异常类型定义。
"""
