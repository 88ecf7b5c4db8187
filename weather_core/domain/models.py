"""统一的对话与结果数据模型。

本模块定义了编排核心在不同 Provider 之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool）。
- ChatRequest: 发给底层 LLM Provider 的完整请求。
- ChatResult / ChatStreamChunk: 从 Provider 解析后的统一响应结果。

所有 Provider 适配器（如 OpenAIClient）都必须只依赖这些模型，
并负责在各自的 API JSON 和这些模型之间做转换。
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Literal, Optional, Any, Dict, List

from weather_core.tools.definitions import ToolCall, ToolDef


# LLM 消息角色类型（与 OpenAI / DeepSeek 的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class ModelAttribution:
    """记录某条 assistant 消息由哪个模型产生。"""

    model: str
    display_name: str
    used_fallback: bool = False


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可用于响应。

    - content: 纯文本内容；assistant 发起工具调用时可以为 None。
    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，
      这里保存本轮发起的全部工具调用（一轮只对应一条 assistant 消息）。
    - tool_call_id: 当 role 为 "tool" 时，用于关联某一次工具调用。
    - attribution: 最终回答的模型归属，仅落库与展示使用，不发给 Provider。
    """

    role: Role
    content: Optional[str]
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    attribution: Optional[ModelAttribution] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": _iso(self.timestamp),
        }
        if self.tool_calls:
            payload["toolCalls"] = [
                {"id": c.id, "name": c.name, "arguments": c.arguments} for c in self.tool_calls
            ]
        if self.tool_call_id:
            payload["toolCallId"] = self.tool_call_id
        if self.attribution:
            payload["modelAttribution"] = {
                "model": self.attribution.model,
                "displayName": self.attribution.display_name,
                "usedFallback": self.attribution.used_fallback,
            }
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChatMessage":
        tool_calls = None
        if data.get("toolCalls"):
            tool_calls = [
                ToolCall(id=c["id"], name=c["name"], arguments=c.get("arguments") or {})
                for c in data["toolCalls"]
            ]
        attribution = None
        raw_attr = data.get("modelAttribution")
        if raw_attr:
            attribution = ModelAttribution(
                model=raw_attr["model"],
                display_name=raw_attr.get("displayName") or raw_attr["model"],
                used_fallback=bool(raw_attr.get("usedFallback", False)),
            )
        ts_raw = data.get("timestamp")
        timestamp = (
            datetime.fromisoformat(str(ts_raw).replace("Z", "+00:00")) if ts_raw else _utcnow()
        )
        return cls(
            role=data["role"],
            content=data.get("content"),
            tool_calls=tool_calls,
            tool_call_id=data.get("toolCallId"),
            attribution=attribution,
            timestamp=timestamp,
        )


@dataclass
class ChatRequest:
    """一次完整的聊天请求。

    Provider 适配层负责把本结构转换成各家 API 的 JSON 请求体。
    """

    provider: str  # Provider 名，如 "openai"
    model: str  # 逻辑模型名，如 "weather-chat"（再由 registry 映射为真实模型名）
    messages: List[ChatMessage]
    temperature: float = 0.7
    top_p: float = 0.95
    max_tokens: Optional[int] = None
    # 工具定义列表：当模型支持工具调用时，会通过 Provider 转成对应 schema
    tools: Optional[List[ToolDef]] = None
    # 模型是否必须/禁止使用工具
    tool_choice: Literal["auto", "none", "required"] = "auto"
    # "json_object" 时要求模型只输出 JSON（路由器使用）
    response_format: Optional[Literal["text", "json_object"]] = None


@dataclass
class ChatUsage:
    """Provider 返回的 token 统计信息（统一格式）。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ChatChoice:
    """单个候选回答（目前通常只用 index=0 的一条）。"""

    index: int
    message: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatResult:
    """一次对话调用的最终结果。

    - provider: Provider 名（如 "openai"）。
    - model: 逻辑模型名（如 "weather-chat"）。
    - choices: 一个或多个候选回答。
    - usage: 可选的 token 使用统计。
    - raw: 原始响应 JSON，用于调试或日志记录。
    """

    provider: str
    model: str
    choices: List[ChatChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None

    @property
    def message(self) -> ChatMessage:
        return self.choices[0].message


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatMessage
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式对话的增量结果，结构与 ChatResult 类似。

    每次流式回调由若干 choice 组成，choice.delta 代表本次增量内容。
    工具调用增量以原始片段形式保存在 tool_call_deltas 中，
    由调用方按 index 拼接（名称与参数字符串可能分多块到达）。
    """

    provider: str
    model: str
    choices: List[ChatStreamChoice]
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None
    tool_call_deltas: List[Dict[str, Any]] = field(default_factory=list)
