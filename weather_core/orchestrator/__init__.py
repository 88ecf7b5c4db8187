"""对话编排核心：路由、Agent 循环、回退与流式事件。"""

from weather_core.orchestrator.agent_loop import AgentLoopExecutor, LoopOutcome
from weather_core.orchestrator.fallback import APOLOGY_RESPONSE, FallbackCoordinator
from weather_core.orchestrator.router import ModelRouter, display_name
from weather_core.orchestrator.service import ChatOrchestrator
from weather_core.orchestrator.streaming import StreamEventEmitter

__all__ = [
    "APOLOGY_RESPONSE",
    "AgentLoopExecutor",
    "ChatOrchestrator",
    "FallbackCoordinator",
    "LoopOutcome",
    "ModelRouter",
    "StreamEventEmitter",
    "display_name",
]
