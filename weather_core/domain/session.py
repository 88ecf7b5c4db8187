from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Protocol

from .models import ChatMessage
from weather_core.tools.definitions import ToolCallRecord


@dataclass
class Session:
    """一个会话：有序消息列表加元数据。

    last_model 显式记录最近一次回答所用的模型，路由器把它当作
    “追问时保持模型连续性”的提示，而不是从历史文本里猜。
    """

    session_id: str
    created_at: datetime
    last_active: datetime
    messages: List[ChatMessage] = field(default_factory=list)
    last_model: Optional[str] = None

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @classmethod
    def new(cls, session_id: str) -> "Session":
        now = datetime.now(timezone.utc)
        return cls(session_id=session_id, created_at=now, last_active=now)


class SessionStore(Protocol):
    """会话存储协议：核心只做追加，从不修改历史消息。"""

    async def load(self, session_id: str) -> List[ChatMessage]:
        ...

    async def append(self, session_id: str, message: ChatMessage) -> None:
        ...

    async def get_session(self, session_id: str) -> Session:
        ...


class ChatRecordSink(Protocol):
    """分析数据落库协议；对核心而言是 fire-and-forget。"""

    async def record(
        self,
        session_id: str,
        model: str,
        messages: List[ChatMessage],
        tool_calls_made: List[ToolCallRecord],
        meta: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...
