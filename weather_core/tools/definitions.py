"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给 LLM（ToolDef / ToolParam）。
- 在 Agent 循环中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
- 对外汇报本次请求调用过哪些工具（ToolCallRecord，即 toolCallsMade）。
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供 LLM 调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求，id 在同一轮 assistant 消息内唯一。"""

    id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class ToolResult:
    """工具执行结果的封装。

    - data: 结构化结果（失败时形如 {"error": "..."}）。
    - content: data 的 JSON 文本，作为 tool 消息内容回传给模型。
    """

    call_id: str
    data: Dict[str, Any]

    @property
    def content(self) -> str:
        return json.dumps(self.data, ensure_ascii=False, default=str)

    @property
    def is_error(self) -> bool:
        return "error" in self.data


@dataclass
class ToolCallRecord:
    """已执行工具调用的日志条目。"""

    id: str
    name: str
    arguments: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_call(cls, call: ToolCall) -> "ToolCallRecord":
        return cls(id=call.id, name=call.name, arguments=dict(call.arguments))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "arguments": self.arguments,
            "timestamp": self.timestamp.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
