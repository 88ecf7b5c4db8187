"""单轮模型调用的内容流式策略。

每个策略都是异步生成器：先逐块产出文本增量（str），
最后产出一条组装好的 assistant ChatMessage（可能带工具调用）。

- NativeTokenStreaming: Provider 原生流式，边收边发。
- SyntheticWordStreaming: Provider 只有非流式接口时，拿到完整回答后按词切块、
  以固定间隔逐块输出，让前端体验与原生流式一致。
"""

import asyncio
import re
from typing import AsyncIterator, List, Optional, Union

from weather_core.domain.models import ChatMessage, ChatRequest
from weather_core.providers.base import ProviderClient, ToolCallAccumulator

TurnItem = Union[str, ChatMessage]

_WORD_RE = re.compile(r"\s*\S+\s*")


def split_words(text: str) -> List[str]:
    """按词切块；各块顺序拼接后与原文完全一致。"""

    chunks = _WORD_RE.findall(text)
    if not chunks and text:
        return [text]
    return chunks


class NativeTokenStreaming:
    synthetic = False

    def __init__(self, timeout: Optional[float] = None):
        # 相邻两个增量之间的最长等待时间
        self.timeout = timeout

    async def turn(self, provider: ProviderClient, req: ChatRequest) -> AsyncIterator[TurnItem]:
        accumulator = ToolCallAccumulator()
        parts: List[str] = []
        stream = provider.chat_stream(req)
        try:
            while True:
                try:
                    async with asyncio.timeout(self.timeout):
                        chunk = await anext(stream)
                except StopAsyncIteration:
                    break
                for delta in chunk.tool_call_deltas:
                    accumulator.add(delta)
                for choice in chunk.choices:
                    text = choice.delta.content
                    if text:
                        parts.append(text)
                        yield text
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        yield ChatMessage(
            role="assistant",
            content="".join(parts) or None,
            tool_calls=accumulator.build() or None,
        )


class SyntheticWordStreaming:
    synthetic = True

    def __init__(self, timeout: Optional[float] = None, delay: float = 0.0):
        self.timeout = timeout
        self.delay = delay

    async def turn(self, provider: ProviderClient, req: ChatRequest) -> AsyncIterator[TurnItem]:
        async with asyncio.timeout(self.timeout):
            result = await provider.chat(req)
        message = result.message
        for i, word in enumerate(split_words(message.content or "")):
            if i and self.delay:
                await asyncio.sleep(self.delay)
            yield word
        yield ChatMessage(role="assistant", content=message.content, tool_calls=message.tool_calls)
