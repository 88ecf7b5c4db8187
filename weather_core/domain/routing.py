"""路由与执行结果模型。

- RoutingDecision: 路由器给出的主模型、置信度、理由与回退模型。
- ExecutionResult: 单个模型跑完一次 Agent 循环的结果。
- OrchestratorResponse: 面向调用方的最终回答（同步接口与流式 done 事件共用）。
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from weather_core.domain.models import ChatMessage
from weather_core.tools.definitions import ToolCallRecord


@dataclass
class RoutingDecision:
    model: str
    confidence: float
    reasoning: str
    fallback_model: Optional[str] = None

    def __post_init__(self) -> None:
        confidence = float(self.confidence)
        # NaN 与任何值比较都为 False，clamp 拦不住
        if not math.isfinite(confidence):
            confidence = 0.5
        self.confidence = min(max(confidence, 0.0), 1.0)
        if self.fallback_model == self.model:
            self.fallback_model = None


@dataclass
class ExecutionResult:
    """Agent 循环一次执行的结果，供 FallbackCoordinator 判断是否需要回退。"""

    success: bool
    model: str
    response: Optional[str] = None
    error: Optional[str] = None
    fallback_used: bool = False
    fallback_model: Optional[str] = None
    tool_calls_made: List[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    max_iterations_reached: bool = False
    # 本次执行的完整工作消息列表（含 system/tool 消息），用于分析落库
    messages: List[ChatMessage] = field(default_factory=list)


@dataclass
class OrchestratorResponse:
    response: str
    model_used: str
    model_display_name: str
    routing_reasoning: str
    tool_calls_made: List[ToolCallRecord] = field(default_factory=list)
    fallback_used: bool = False
    routing_confidence: Optional[float] = None
    success: bool = True
    error: Optional[str] = None
    moderated: bool = False
    moderation_reason: Optional[str] = None
    # 实际回答所用模型的工作消息列表，不对外序列化
    transcript: List[ChatMessage] = field(default_factory=list, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "response": self.response,
            "toolCallsMade": [r.to_dict() for r in self.tool_calls_made],
            "modelUsed": self.model_used,
            "modelDisplayName": self.model_display_name,
            "fallbackUsed": self.fallback_used,
            "routingReasoning": self.routing_reasoning,
        }
        if self.routing_confidence is not None:
            payload["routingConfidence"] = self.routing_confidence
        if self.moderated:
            payload["moderated"] = True
            payload["reason"] = self.moderation_reason
        if not self.success:
            payload["success"] = False
        return payload
