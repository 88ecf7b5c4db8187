"""流式事件发射器。

把“主模型执行 → 失败时回退”的完整流程表达为 StreamEvent 序列：

    routing → (progress | content | tool)* → [routing(fallbackUsed) → ...] → done

约定：
- 第一个事件永远是 routing；
- 每个工具调用在执行前发出一个 tool 事件，工具结果不外发；
- 最后一个 routing 事件之后的 content 文本拼接结果等于 done.response，
  因此占位回答（空回答、超出轮数、致歉）也会先作为 content 发出；
- 有且仅有一个 done 事件。

发射器本身是异步生成器：消费方关闭它时，当前挂起点上的模型/工具调用
会被取消，之后不会再发起新的调用。
"""

from contextlib import aclosing
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Sequence

from weather_core.domain.events import StreamEvent
from weather_core.domain.exceptions import ModelExecutionError
from weather_core.domain.models import ChatMessage
from weather_core.domain.routing import OrchestratorResponse, RoutingDecision
from weather_core.infrastructure.logging.logger import logger
from weather_core.providers.registry import get_display_name
from .agent_loop import AgentLoopExecutor, LoopOutcome
from .fallback import APOLOGY_RESPONSE

CompletionHook = Callable[[OrchestratorResponse], Awaitable[None]]


def routing_event(
    model: str,
    reasoning: str,
    confidence: float,
    fallback_used: bool = False,
) -> StreamEvent:
    data = {
        "model": model,
        "modelDisplayName": get_display_name(model),
        "reasoning": reasoning,
        "confidence": confidence,
    }
    if fallback_used:
        data["fallbackUsed"] = True
    return StreamEvent(type="routing", data=data)


class StreamEventEmitter:
    def __init__(self, executor: AgentLoopExecutor):
        self._executor = executor

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        decision: RoutingDecision,
        max_iterations: Optional[int] = None,
        instructions: Optional[str] = None,
        on_complete: Optional[CompletionHook] = None,
    ) -> AsyncIterator[StreamEvent]:
        """产出完整事件序列；on_complete 在 done 事件发出前以最终结果调用。"""

        original = list(messages)
        yield routing_event(decision.model, decision.reasoning, decision.confidence)

        attempts = [decision.model]
        if decision.fallback_model:
            attempts.append(decision.fallback_model)

        errors: List[str] = []
        emitted: List[str] = []
        for index, model in enumerate(attempts):
            fallback_used = index > 0
            if fallback_used:
                logger.warning(
                    "fallback.triggered",
                    extra={"extra": {"primary": decision.model, "fallback": model, "error": errors[-1], "stream": True}},
                )
                yield routing_event(
                    model,
                    f"Fallback from {decision.model} due to error",
                    1.0,
                    fallback_used=True,
                )

            emitted = []
            outcome: Optional[LoopOutcome] = None
            try:
                async with aclosing(
                    self._executor.run_stream(
                        original, model, max_iterations=max_iterations, instructions=instructions
                    )
                ) as events:
                    async for item in events:
                        if isinstance(item, LoopOutcome):
                            outcome = item
                            continue
                        if item.type == "content":
                            emitted.append(item.data["text"])
                        yield item
            except ModelExecutionError as exc:
                errors.append(exc.message)
                continue

            if outcome is None:
                # run_stream 正常结束却没有给出结果，按模型失败处理
                errors.append("stream ended without a result")
                continue

            response = OrchestratorResponse(
                response=outcome.response,
                model_used=model,
                model_display_name=get_display_name(model),
                routing_reasoning=decision.reasoning,
                tool_calls_made=outcome.tool_calls_made,
                fallback_used=fallback_used,
                routing_confidence=decision.confidence,
                error=errors[0] if errors else None,
                transcript=outcome.messages,
            )
            yield await self._done(response, on_complete)
            return

        logger.error(
            "fallback.failed",
            extra={"extra": {"primary": decision.model, "attempts": attempts, "errors": errors, "stream": True}},
        )
        prefix = " " if emitted else ""
        yield StreamEvent(type="content", data={"text": prefix + APOLOGY_RESPONSE, "synthetic": True})
        last = attempts[-1]
        response = OrchestratorResponse(
            response="".join(emitted) + prefix + APOLOGY_RESPONSE,
            model_used=last,
            model_display_name=get_display_name(last),
            routing_reasoning=decision.reasoning,
            fallback_used=len(attempts) > 1,
            routing_confidence=decision.confidence,
            success=False,
            error="; ".join(errors),
        )
        yield await self._done(response, on_complete)

    @staticmethod
    async def _done(
        response: OrchestratorResponse,
        on_complete: Optional[CompletionHook],
    ) -> StreamEvent:
        if on_complete is not None:
            await on_complete(response)
        return StreamEvent(type="done", data=response.to_dict())
