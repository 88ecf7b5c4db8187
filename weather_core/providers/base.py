"""Provider 抽象接口。

编排核心不直接依赖具体厂商的 HTTP 细节，而是依赖此协议：

- 每个模型家族实现一个 ProviderClient（如 OpenAIClient、DeepSeekClient）。
- 负责：将 ChatRequest 转成具体 API 请求，并把响应 JSON 解析为 ChatResult。

这样可以在不改编排代码的前提下接入更多厂商。
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Protocol

from weather_core.domain.models import ChatRequest, ChatResult, ChatStreamChunk
from weather_core.tools.definitions import ToolCall


class ProviderClient(Protocol):
    """LLM Provider 客户端协议。

    实现者需要提供：
    - name: Provider 名称，同时也是路由使用的模型 ID。
    - supports_streaming: 是否具备原生 token 流式能力。
    - chat(req): 执行一次非流式对话调用，返回统一的 ChatResult。
    - chat_stream(req): 执行一次流式对话调用，逐步产出增量。
    """

    name: str
    supports_streaming: bool

    async def chat(self, req: ChatRequest) -> ChatResult:
        ...

    def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        ...


@dataclass
class _PartialToolCall:
    id: str = ""
    name: str = ""
    arguments: str = ""


class ToolCallAccumulator:
    """按 index 拼接流式返回的工具调用片段。

    每个片段形如 {"index": 0, "id": "...", "name": "...", "arguments": "<partial json>"}，
    id / name 只在首个片段出现，arguments 需要逐块拼接后再解析。
    """

    def __init__(self) -> None:
        self._parts: Dict[int, _PartialToolCall] = {}

    def add(self, delta: Dict[str, Any]) -> None:
        index = int(delta.get("index") or 0)
        part = self._parts.setdefault(index, _PartialToolCall())
        if delta.get("id"):
            part.id = delta["id"]
        if delta.get("name"):
            part.name = delta["name"]
        if delta.get("arguments"):
            part.arguments += delta["arguments"]

    def __bool__(self) -> bool:
        return bool(self._parts)

    def build(self) -> List[ToolCall]:
        calls: List[ToolCall] = []
        for index in sorted(self._parts):
            part = self._parts[index]
            calls.append(
                ToolCall(
                    id=part.id or f"tool_call_{index}",
                    name=part.name,
                    arguments=parse_arguments(part.arguments),
                )
            )
        return calls


def parse_arguments(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"_raw": raw}
        return parsed if isinstance(parsed, dict) else {"_raw": raw}
    return {}
