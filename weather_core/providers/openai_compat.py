"""OpenAI 兼容协议的 Provider 基类。

OpenAI 与 DeepSeek 均使用 chat/completions 端点：
- URL: {base_url}/chat/completions
- 认证: Authorization: Bearer <api_key>

本类负责：
1. 接收统一的 ChatRequest，转换为 HTTP 请求体（含工具 schema）。
2. 调用 HTTP 接口并把网络/API 异常转换为 domain.exceptions 中的业务异常。
3. 将响应 JSON 解析为统一的 ChatResult / ChatStreamChunk 结构（含工具调用）。

子类只需声明 name、Provider 配置以及 settings 中 api_key / base_url 的字段名。
"""

import json
from typing import Any, AsyncIterator, ClassVar, Dict, List

import httpx

from weather_core.config.settings import settings
from weather_core.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from weather_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
)
from weather_core.providers.base import parse_arguments
from weather_core.providers.registry import ModelConfig, ProviderConfig
from weather_core.tools.definitions import ToolCall, ToolDef


class OpenAICompatibleClient:
    """OpenAI 兼容 chat/completions 客户端。"""

    name: ClassVar[str] = ""
    config: ClassVar[ProviderConfig]
    api_key_field: ClassVar[str] = ""
    base_url_field: ClassVar[str] = ""

    def __init__(self, cfg=settings):
        self._settings = cfg

    @property
    def supports_streaming(self) -> bool:
        return self.config.supports_streaming

    # ---- 非流式 ----

    async def chat(self, req: ChatRequest) -> ChatResult:
        payload = self._build_payload(req, self._model_config(req.model), stream=False)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(self._endpoint(), json=payload, headers=self._headers())
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)
        self._raise_for_status(resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError as e:
            raise ApiError(code="MALFORMED_RESPONSE", message=str(e), http_status=502, provider=self.name)
        return self._parse_response(data, req)

    # ---- 流式 ----

    async def chat_stream(self, req: ChatRequest) -> AsyncIterator[ChatStreamChunk]:
        payload = self._build_payload(req, self._model_config(req.model), stream=True)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                async with client.stream(
                    "POST",
                    self._endpoint(),
                    json=payload,
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        body = await resp.aread()
                        self._raise_for_status(resp.status_code, body.decode("utf-8", errors="replace"))
                    async for line in resp.aiter_lines():
                        if not line:
                            continue
                        data_str = line
                        if data_str.startswith("data:"):
                            data_str = data_str[5:].strip()
                        else:
                            data_str = data_str.strip()
                        if not data_str or data_str == "[DONE]":
                            continue
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError:
                            continue
                        yield self._parse_stream_chunk(payload_chunk, req)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider=self.name)

    # ---- 辅助方法 ----

    def _api_key(self) -> str:
        key = getattr(self._settings, self.api_key_field, None)
        if not key:
            raise ValidationError(
                code="MISSING_API_KEY",
                message=f"{self.api_key_field.upper()} not set",
                provider=self.name,
            )
        return key

    def _endpoint(self) -> str:
        base = getattr(self._settings, self.base_url_field, None) or self.config.base_url
        return f"{base.rstrip('/')}/chat/completions"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key()}",
            "Content-Type": "application/json",
        }

    def _model_config(self, logical_name: str) -> ModelConfig:
        try:
            return self.config.models[logical_name]
        except KeyError:
            raise ValidationError(
                code="UNKNOWN_MODEL",
                message=f"{self.name} has no model {logical_name!r}",
                provider=self.name,
            )

    def _raise_for_status(self, status_code: int, body: str) -> None:
        if status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message=f"{self.name} rate limit", http_status=429)
        if status_code >= 400:
            raise ApiError(code="API_ERROR", message=body, http_status=status_code, provider=self.name)

    def _build_payload(self, req: ChatRequest, model_cfg: ModelConfig, stream: bool) -> dict:
        msgs = [self._message_to_payload(m) for m in req.messages]
        payload: Dict[str, Any] = {
            "model": model_cfg.provider_model,
            "messages": msgs,
            "temperature": req.temperature if req.temperature is not None else model_cfg.default_temperature,
            "max_tokens": req.max_tokens or model_cfg.max_tokens,
            "top_p": req.top_p,
            "stream": stream,
        }
        if req.tools:
            payload["tools"] = [self._serialize_tool(tool) for tool in req.tools]
            payload["tool_choice"] = req.tool_choice
        if req.response_format:
            payload["response_format"] = {"type": req.response_format}
        return payload

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: List[ChatChoice] = []
        for i, ch in enumerate(data.get("choices", [])):
            msg = ch.get("message") or {}
            cm = self._build_chat_message(msg)
            choices.append(ChatChoice(index=ch.get("index", i), message=cm, finish_reason=ch.get("finish_reason")))
        if not choices:
            raise ApiError(code="MALFORMED_RESPONSE", message="response has no choices", http_status=502, provider=self.name)
        return ChatResult(provider=self.name, model=req.model, choices=choices, usage=self._parse_usage(data), raw=data)

    def _build_chat_message(self, payload: Dict[str, Any]) -> ChatMessage:
        """解析 message，兼容 tool_calls/function_call。"""

        role = payload.get("role") or "assistant"
        tool_calls: List[ToolCall] = []
        for idx, call in enumerate(payload.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCall(
                    id=call.get("id") or f"tool_call_{idx}",
                    name=func.get("name") or call.get("name") or "",
                    arguments=parse_arguments(func.get("arguments")),
                )
            )

        function_call = payload.get("function_call")
        if function_call:
            tool_calls.append(
                ToolCall(
                    id=function_call.get("id") or "function_call",
                    name=function_call.get("name") or "",
                    arguments=parse_arguments(function_call.get("arguments")),
                )
            )

        return ChatMessage(
            role=role,
            content=payload.get("content"),
            tool_calls=tool_calls or None,
            tool_call_id=payload.get("tool_call_id"),
        )

    def _parse_stream_chunk(self, data: dict, req: ChatRequest) -> ChatStreamChunk:
        choices: List[ChatStreamChoice] = []
        tool_call_deltas: List[Dict[str, Any]] = []
        for i, ch in enumerate(data.get("choices", [])):
            delta_payload = ch.get("delta") or {}
            for raw in delta_payload.get("tool_calls") or []:
                func = raw.get("function") or {}
                tool_call_deltas.append(
                    {
                        "index": raw.get("index", 0),
                        "id": raw.get("id"),
                        "name": func.get("name"),
                        "arguments": func.get("arguments"),
                    }
                )
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=ChatMessage(
                        role=delta_payload.get("role") or "assistant",
                        content=delta_payload.get("content"),
                    ),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        return ChatStreamChunk(
            provider=self.name,
            model=req.model,
            choices=choices,
            usage=self._parse_usage(data),
            raw=data,
            tool_call_deltas=tool_call_deltas,
        )

    @staticmethod
    def _parse_usage(data: dict) -> ChatUsage | None:
        usage_raw = data.get("usage") or {}
        if not usage_raw:
            return None
        return ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )

    def _message_to_payload(self, message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role, "content": message.content or ""}
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload

    def _serialize_tool(self, tool: ToolDef) -> Dict[str, Any]:
        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            schema = param.schema or {"type": "string"}
            if param.description:
                schema = {**schema, "description": param.description}
            properties[name] = schema
            if param.required:
                required.append(name)
        return {
            "type": "function",
            "function": {
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "object",
                    "properties": properties,
                    "required": required,
                },
            },
        }
