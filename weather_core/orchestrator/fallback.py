"""主模型失败时切换到回退模型（最多重试一次）。"""

from typing import Optional, Sequence

from weather_core.domain.models import ChatMessage
from weather_core.domain.routing import ExecutionResult, OrchestratorResponse, RoutingDecision
from weather_core.infrastructure.logging.logger import logger
from weather_core.providers.registry import get_display_name
from .agent_loop import AgentLoopExecutor

APOLOGY_RESPONSE = "Sorry, I encountered an error processing your request."


class FallbackCoordinator:
    def __init__(self, executor: AgentLoopExecutor):
        self._executor = executor

    async def execute(
        self,
        messages: Sequence[ChatMessage],
        decision: RoutingDecision,
        max_iterations: Optional[int] = None,
        instructions: Optional[str] = None,
    ) -> OrchestratorResponse:
        # 回退时使用原始消息列表，主模型失败前产生的工具历史全部丢弃
        original = list(messages)
        result = await self._executor.run(
            original, decision.model, max_iterations=max_iterations, instructions=instructions
        )
        if result.success:
            return self._to_response(result, decision)

        primary_error = result.error
        if not decision.fallback_model:
            logger.error(
                "fallback.unavailable",
                extra={"extra": {"model": decision.model, "error": primary_error}},
            )
            return self._apology(decision, decision.model, fallback_used=False, error=primary_error)

        logger.warning(
            "fallback.triggered",
            extra={
                "extra": {
                    "primary": decision.model,
                    "fallback": decision.fallback_model,
                    "error": primary_error,
                }
            },
        )
        fallback = await self._executor.run(
            original, decision.fallback_model, max_iterations=max_iterations, instructions=instructions
        )
        fallback.fallback_used = True
        fallback.fallback_model = decision.fallback_model
        if fallback.success:
            response = self._to_response(fallback, decision)
            response.error = primary_error
            return response

        logger.error(
            "fallback.failed",
            extra={
                "extra": {
                    "primary": decision.model,
                    "fallback": decision.fallback_model,
                    "error": fallback.error,
                }
            },
        )
        return self._apology(
            decision,
            decision.fallback_model,
            fallback_used=True,
            error=f"{primary_error}; fallback: {fallback.error}",
        )

    @staticmethod
    def _to_response(result: ExecutionResult, decision: RoutingDecision) -> OrchestratorResponse:
        return OrchestratorResponse(
            response=result.response or "",
            model_used=result.model,
            model_display_name=get_display_name(result.model),
            routing_reasoning=decision.reasoning,
            tool_calls_made=result.tool_calls_made,
            fallback_used=result.fallback_used,
            routing_confidence=decision.confidence,
            transcript=result.messages,
        )

    @staticmethod
    def _apology(
        decision: RoutingDecision,
        model: str,
        fallback_used: bool,
        error: Optional[str],
    ) -> OrchestratorResponse:
        return OrchestratorResponse(
            response=APOLOGY_RESPONSE,
            model_used=model,
            model_display_name=get_display_name(model),
            routing_reasoning=decision.reasoning,
            fallback_used=fallback_used,
            routing_confidence=decision.confidence,
            success=False,
            error=error,
        )
