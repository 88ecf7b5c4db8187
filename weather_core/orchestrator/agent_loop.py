"""Agent 循环执行器。

对单个模型执行有上限的“调用模型 → 按需调用工具 → 再调用模型”循环：

- 每轮模型返回的全部工具调用合并为一条 assistant 消息；
- 同一轮的工具调用并发执行，结果按调用顺序追加为 tool 消息；
- 达到 max_iterations 仍未得到最终回答时，返回固定回答而不是继续循环；
- 输入的消息列表从不被修改，所有追加都发生在工作副本上。

run() 是非流式接口，模型异常转换为 success=False 的 ExecutionResult；
run_stream() 是流式接口，模型异常包装为 ModelExecutionError 抛给调用方。
"""

import asyncio
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Dict, List, Optional, Sequence, Union

from weather_core.config.settings import settings
from weather_core.domain.events import StreamEvent
from weather_core.domain.exceptions import ModelExecutionError
from weather_core.domain.models import ChatMessage, ChatRequest
from weather_core.domain.routing import ExecutionResult
from weather_core.infrastructure.logging.logger import logger
from weather_core.prompts import load_system_prompt
from weather_core.providers import create_provider
from weather_core.providers.base import ProviderClient
from weather_core.providers.registry import DEFAULT_CHAT_MODEL
from weather_core.tools.definitions import ToolCallRecord, ToolDef
from weather_core.tools.executor import ToolExecutor
from weather_core.tools.weather import default_tool_defs, default_tools
from .strategies import NativeTokenStreaming, SyntheticWordStreaming

MAX_ITERATIONS_RESPONSE = "Max iterations reached"
EMPTY_RESPONSE = "No response generated"
MAX_ITERATIONS_CAP = 20


@dataclass
class LoopOutcome:
    """run_stream 的最后一项：本次执行的汇总结果。"""

    model: str
    response: str
    tool_calls_made: List[ToolCallRecord] = field(default_factory=list)
    iterations: int = 0
    max_iterations_reached: bool = False
    messages: List[ChatMessage] = field(default_factory=list)


def clamp_iterations(value: Optional[int], cfg=None) -> int:
    if value is None:
        value = (cfg or settings).max_iterations
    return max(1, min(int(value), MAX_ITERATIONS_CAP))


class AgentLoopExecutor:
    def __init__(
        self,
        providers: Optional[Dict[str, ProviderClient]] = None,
        tool_executor: Optional[ToolExecutor] = None,
        tool_defs: Optional[List[ToolDef]] = None,
        cfg=None,
        provider_factory: Callable[..., ProviderClient] = create_provider,
    ):
        self._settings = cfg or settings
        self._providers: Dict[str, ProviderClient] = dict(providers or {})
        self._provider_factory = provider_factory
        self._tools = tool_executor or ToolExecutor(
            default_tools(self._settings), timeout=self._settings.tool_timeout_seconds
        )
        self._tool_defs = tool_defs if tool_defs is not None else default_tool_defs()

    def provider_for(self, model: str) -> ProviderClient:
        provider = self._providers.get(model)
        if provider is None:
            provider = self._provider_factory(model, self._settings)
            self._providers[model] = provider
        return provider

    def build_messages(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        instructions: Optional[str] = None,
    ) -> List[ChatMessage]:
        working = list(messages)
        if not working or working[0].role != "system":
            prompt = load_system_prompt(model)
            if instructions:
                prompt = f"{prompt}\n\n{instructions}"
            working.insert(0, ChatMessage(role="system", content=prompt))
        return working

    def _request(self, model: str, working: List[ChatMessage], tool_defs: Optional[List[ToolDef]]) -> ChatRequest:
        return ChatRequest(
            provider=model,
            model=DEFAULT_CHAT_MODEL,
            messages=list(working),
            tools=tool_defs or None,
        )

    async def _run_tools(
        self,
        message: ChatMessage,
        working: List[ChatMessage],
        records: List[ToolCallRecord],
    ) -> None:
        calls = list(message.tool_calls or [])
        # 模型随工具调用一起给出的文字保留在同一条 assistant 消息里
        working.append(ChatMessage(role="assistant", content=message.content or None, tool_calls=calls))
        records.extend(ToolCallRecord.from_call(call) for call in calls)
        logger.info(
            "agent_loop.tool_calls",
            extra={"extra": {"tools": [c.name for c in calls], "count": len(calls)}},
        )
        results = await self._tools.execute_all(calls)
        for call, result in zip(calls, results):
            working.append(ChatMessage(role="tool", content=result.content, tool_call_id=call.id))

    # ---- 非流式 ----

    async def run(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        tool_defs: Optional[List[ToolDef]] = None,
        max_iterations: Optional[int] = None,
        instructions: Optional[str] = None,
    ) -> ExecutionResult:
        limit = clamp_iterations(max_iterations, self._settings)
        defs = tool_defs if tool_defs is not None else self._tool_defs
        working = self.build_messages(messages, model, instructions)
        records: List[ToolCallRecord] = []
        iterations = 0

        try:
            provider = self.provider_for(model)
            while iterations < limit:
                iterations += 1
                async with asyncio.timeout(self._settings.model_timeout_seconds):
                    result = await provider.chat(self._request(model, working, defs))
                message = result.message
                if not message.tool_calls:
                    return ExecutionResult(
                        success=True,
                        model=model,
                        response=message.content or EMPTY_RESPONSE,
                        tool_calls_made=records,
                        iterations=iterations,
                        messages=working,
                    )
                await self._run_tools(message, working, records)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            logger.warning(
                "agent_loop.model_error",
                extra={"extra": {"model": model, "iteration": iterations, "error": error}},
            )
            return ExecutionResult(
                success=False,
                model=model,
                error=error,
                tool_calls_made=records,
                iterations=iterations,
                messages=working,
            )

        logger.warning("agent_loop.max_iterations", extra={"extra": {"model": model, "limit": limit}})
        return ExecutionResult(
            success=True,
            model=model,
            response=MAX_ITERATIONS_RESPONSE,
            tool_calls_made=records,
            iterations=iterations,
            max_iterations_reached=True,
            messages=working,
        )

    # ---- 流式 ----

    def strategy_for(self, provider: ProviderClient):
        if getattr(provider, "supports_streaming", False):
            return NativeTokenStreaming(timeout=self._settings.model_timeout_seconds)
        return SyntheticWordStreaming(
            timeout=self._settings.model_timeout_seconds,
            delay=self._settings.stream_word_delay,
        )

    async def run_stream(
        self,
        messages: Sequence[ChatMessage],
        model: str,
        tool_defs: Optional[List[ToolDef]] = None,
        max_iterations: Optional[int] = None,
        instructions: Optional[str] = None,
    ) -> AsyncIterator[Union[StreamEvent, LoopOutcome]]:
        """流式执行，依次产出 progress/content/tool 事件，最后产出一个 LoopOutcome。

        content 事件的 data 为 {"text": ..., "synthetic": bool}；
        回答文本为本次执行中所有 content 文本的拼接。
        """

        limit = clamp_iterations(max_iterations, self._settings)
        defs = tool_defs if tool_defs is not None else self._tool_defs
        working = self.build_messages(messages, model, instructions)
        records: List[ToolCallRecord] = []
        emitted: List[str] = []

        try:
            provider = self.provider_for(model)
        except Exception as exc:
            raise ModelExecutionError(code="MODEL_UNAVAILABLE", message=str(exc), http_status=502, model=model)
        strategy = self.strategy_for(provider)

        for iteration in range(1, limit + 1):
            yield StreamEvent(type="progress", data={"iteration": iteration, "maxIterations": limit, "model": model})

            message: Optional[ChatMessage] = None
            try:
                async with aclosing(strategy.turn(provider, self._request(model, working, defs))) as turn:
                    async for item in turn:
                        if isinstance(item, ChatMessage):
                            message = item
                            continue
                        emitted.append(item)
                        yield StreamEvent(type="content", data={"text": item, "synthetic": strategy.synthetic})
            except Exception as exc:
                error = str(exc) or type(exc).__name__
                logger.warning(
                    "agent_loop.model_error",
                    extra={"extra": {"model": model, "iteration": iteration, "error": error, "stream": True}},
                )
                raise ModelExecutionError(
                    code="MODEL_EXECUTION_FAILED", message=error, http_status=502, model=model
                ) from exc

            if message is None or not message.tool_calls:
                response = "".join(emitted)
                if not response:
                    response = EMPTY_RESPONSE
                    yield StreamEvent(type="content", data={"text": response, "synthetic": True})
                yield LoopOutcome(
                    model=model,
                    response=response,
                    tool_calls_made=records,
                    iterations=iteration,
                    messages=working,
                )
                return

            for call in message.tool_calls:
                yield StreamEvent(type="tool", data={"id": call.id, "name": call.name, "arguments": call.arguments})
            await self._run_tools(message, working, records)

        logger.warning("agent_loop.max_iterations", extra={"extra": {"model": model, "limit": limit}})
        prefix = " " if emitted else ""
        yield StreamEvent(type="content", data={"text": prefix + MAX_ITERATIONS_RESPONSE, "synthetic": True})
        yield LoopOutcome(
            model=model,
            response="".join(emitted) + prefix + MAX_ITERATIONS_RESPONSE,
            tool_calls_made=records,
            iterations=limit,
            max_iterations_reached=True,
            messages=working,
        )
