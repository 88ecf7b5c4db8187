"""ChatOrchestrator：把审核、会话、路由、执行与落库串成完整的一次对话。

非流式入口 process_chat 通过 LangGraph 图执行各步骤；
流式入口 process_chat_stream 复用同样的步骤方法，只是把执行阶段交给
StreamEventEmitter，以事件序列的形式返回。
"""

from contextlib import aclosing
from typing import AsyncIterator, List, Optional, Tuple

from weather_core.config.settings import settings
from weather_core.domain.events import StreamEvent
from weather_core.domain.models import ChatMessage, ModelAttribution
from weather_core.domain.routing import OrchestratorResponse, RoutingDecision
from weather_core.domain.session import ChatRecordSink, SessionStore
from weather_core.flows.graph import build_graph
from weather_core.infrastructure.logging.logger import logger
from weather_core.moderation.gate import ModerationGate, ModerationVerdict, tone_instructions
from .agent_loop import AgentLoopExecutor
from .fallback import APOLOGY_RESPONSE, FallbackCoordinator
from .router import ModelRouter
from .streaming import StreamEventEmitter

MODERATION_MODEL = "moderation"
MODERATION_REASONING = "Content moderation"


class ChatOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        sink: Optional[ChatRecordSink] = None,
        gate: Optional[ModerationGate] = None,
        router: Optional[ModelRouter] = None,
        executor: Optional[AgentLoopExecutor] = None,
        cfg=None,
    ):
        self._settings = cfg or settings
        self._store = store
        self._sink = sink
        self.gate = gate or ModerationGate(cfg=self._settings)
        self.router = router or ModelRouter(cfg=self._settings)
        self.executor = executor or AgentLoopExecutor(cfg=self._settings)
        self.coordinator = FallbackCoordinator(self.executor)
        self.emitter = StreamEventEmitter(self.executor)
        self._graph = build_graph(self)

    @property
    def store(self) -> SessionStore:
        return self._store

    # ---- 步骤 ----

    async def moderate(self, user_message: str) -> ModerationVerdict:
        return await self.gate.evaluate(user_message)

    @staticmethod
    def moderated_response(verdict: ModerationVerdict) -> OrchestratorResponse:
        return OrchestratorResponse(
            response=verdict.blocking_message or "",
            model_used=MODERATION_MODEL,
            model_display_name=MODERATION_MODEL,
            routing_reasoning=MODERATION_REASONING,
            moderated=True,
            moderation_reason=verdict.reason,
        )

    async def load_history(self, session_id: str, user_message: str) -> Tuple[List[ChatMessage], Optional[str]]:
        """读取历史并追加本轮用户消息，返回 (完整消息列表, 上一轮回答模型)。"""

        session = await self._store.get_session(session_id)
        user_msg = ChatMessage(role="user", content=user_message)
        await self._store.append(session_id, user_msg)
        return [*session.messages, user_msg], session.last_model

    async def route(
        self,
        user_message: str,
        messages: List[ChatMessage],
        last_model: Optional[str] = None,
    ) -> RoutingDecision:
        history = [m for m in messages if m.role in ("user", "assistant") and m.content]
        return await self.router.route(
            user_message,
            history[-self._settings.history_window:],
            self._settings.available_models,
            last_model=last_model,
        )

    async def persist(self, session_id: str, response: OrchestratorResponse) -> None:
        """追加带模型归属的 assistant 消息，并尽力写入分析记录。"""

        await self._store.append(
            session_id,
            ChatMessage(
                role="assistant",
                content=response.response,
                attribution=ModelAttribution(
                    model=response.model_used,
                    display_name=response.model_display_name,
                    used_fallback=response.fallback_used,
                ),
            ),
        )
        if self._sink is None or not response.success:
            return
        try:
            await self._sink.record(
                session_id,
                response.model_used,
                response.transcript,
                response.tool_calls_made,
                meta={
                    "fallbackUsed": response.fallback_used,
                    "routingReasoning": response.routing_reasoning,
                },
            )
        except Exception as exc:
            logger.warning(
                "analytics.record_failed",
                extra={"extra": {"session_id": session_id, "error": str(exc)}},
            )

    # ---- 入口 ----

    async def process_chat(
        self,
        user_message: str,
        session_id: str,
        max_iterations: Optional[int] = None,
    ) -> OrchestratorResponse:
        logger.info(
            "chat.start",
            extra={"extra": {"session_id": session_id, "content": user_message}},
        )
        state = await self._graph.ainvoke(
            {
                "user_message": user_message,
                "session_id": session_id,
                "max_iterations": max_iterations,
            }
        )
        response: OrchestratorResponse = state["response"]
        logger.info(
            "chat.end",
            extra={
                "extra": {
                    "session_id": session_id,
                    "model": response.model_used,
                    "moderated": response.moderated,
                    "success": response.success,
                }
            },
        )
        return response

    async def process_chat_stream(
        self,
        user_message: str,
        session_id: str,
        max_iterations: Optional[int] = None,
    ) -> AsyncIterator[StreamEvent]:
        """流式对话；保证以且仅以一个 done 或 error 事件结束。"""

        logger.info(
            "chat.stream_start",
            extra={"extra": {"session_id": session_id, "content": user_message}},
        )
        try:
            verdict = await self.moderate(user_message)
            if verdict.blocked:
                yield StreamEvent(type="done", data=self.moderated_response(verdict).to_dict())
                return

            messages, last_model = await self.load_history(session_id, user_message)
            decision = await self.route(user_message, messages, last_model)

            async def _on_complete(response: OrchestratorResponse) -> None:
                await self.persist(session_id, response)

            async with aclosing(
                self.emitter.stream(
                    messages,
                    decision,
                    max_iterations=max_iterations,
                    instructions=tone_instructions(verdict.tone) or None,
                    on_complete=_on_complete,
                )
            ) as events:
                async for event in events:
                    yield event
        except Exception as exc:
            logger.error(
                "chat.stream_error",
                extra={"extra": {"session_id": session_id, "error": str(exc)}},
                exc_info=True,
            )
            yield StreamEvent(type="error", data={"message": APOLOGY_RESPONSE, "error": str(exc)})
