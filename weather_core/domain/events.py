"""流式事件模型与传输分帧。

每个 StreamEvent 序列化为一行 JSON；整个序列以独立的结束标记行收尾，
该标记不是合法的 JSON 对象，因此不会与任何事件负载混淆。
"""

import json
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Literal

StreamEventType = Literal["routing", "content", "tool", "progress", "done", "error"]

END_OF_STREAM = "[DONE]"
TERMINAL_EVENT_TYPES = frozenset({"done", "error"})


@dataclass
class StreamEvent:
    type: StreamEventType
    data: Any = field(default=None)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "data": self.data}


def encode_event(event: StreamEvent) -> str:
    """把一个事件编码为以换行结尾的 JSON 行。"""

    return json.dumps(event.to_dict(), ensure_ascii=False, default=str) + "\n"


async def frame_events(events: AsyncIterator[StreamEvent]) -> AsyncIterator[str]:
    """把事件序列转换为 NDJSON 行，并在末尾追加结束标记。"""

    try:
        async for event in events:
            yield encode_event(event)
        yield END_OF_STREAM + "\n"
    finally:
        # 消费方提前断开时，立即关闭上游生成器，停止后续模型/工具调用
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
