"""模型路由器。

用一次辅助模型调用（JSON 输出）决定由哪个模型回答当前请求，
并从回退表中为其挑选回退模型。路由失败永远不会向上抛异常，
而是退回到默认的对话模型。
"""

import json
import math
import re
from typing import List, Optional, Sequence

from weather_core.config.settings import settings
from weather_core.domain.models import ChatMessage, ChatRequest
from weather_core.domain.routing import RoutingDecision
from weather_core.infrastructure.logging.logger import logger
from weather_core.providers import create_provider
from weather_core.providers.base import ProviderClient
from weather_core.providers.registry import get_display_name, get_fallback_model, get_provider_config

DEFAULT_REASONING = "Default routing"
FAILED_REASONING = "Routing failed, using default model"
DEFAULT_CONFIDENCE = 0.5

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.S)


def display_name(model: str) -> str:
    return get_display_name(model)


class ModelRouter:
    def __init__(self, provider: Optional[ProviderClient] = None, cfg=None):
        self._settings = cfg or settings
        self._provider = provider

    def _client(self) -> ProviderClient:
        if self._provider is None:
            self._provider = create_provider(self._settings.router_provider, self._settings)
        return self._provider

    def display_name(self, model: str) -> str:
        return display_name(model)

    async def route(
        self,
        user_message: str,
        recent_history: Sequence[ChatMessage],
        available_models: Optional[Sequence[str]] = None,
        last_model: Optional[str] = None,
    ) -> RoutingDecision:
        available = [m.lower() for m in (available_models or self._settings.available_models)]
        try:
            prompt = self.build_prompt(user_message, recent_history, available, last_model)
            req = ChatRequest(
                provider=self._settings.router_provider,
                model=self._settings.router_model,
                messages=[
                    ChatMessage(role="system", content=prompt),
                    ChatMessage(role="user", content=user_message),
                ],
                temperature=0.3,
                response_format="json_object",
            )
            result = await self._client().chat(req)
            decision = self.parse_decision(result.message.content or "", available)
        except Exception as exc:
            logger.warning("router.failed", extra={"extra": {"error": str(exc)}})
            decision = self.default_decision(available)

        logger.info(
            "router.decision",
            extra={
                "extra": {
                    "model": decision.model,
                    "confidence": decision.confidence,
                    "fallback_model": decision.fallback_model,
                    "reasoning": decision.reasoning,
                }
            },
        )
        return decision

    def parse_decision(self, raw: str, available: Sequence[str]) -> RoutingDecision:
        """解析路由模型的 JSON 输出；不合法时抛出 ValueError。"""

        text = raw.strip()
        match = _FENCE_RE.match(text)
        if match:
            text = match.group(1)
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("router output is not a JSON object")

        model = str(data.get("model") or "").strip().lower()
        if model not in available:
            raise ValueError(f"router chose unavailable model {model!r}")

        try:
            confidence = float(data.get("confidence", DEFAULT_CONFIDENCE))
        except (TypeError, ValueError):
            confidence = DEFAULT_CONFIDENCE
        if not math.isfinite(confidence):
            confidence = DEFAULT_CONFIDENCE
        reasoning = str(data.get("reasoning") or "").strip() or DEFAULT_REASONING
        return RoutingDecision(
            model=model,
            confidence=confidence,
            reasoning=reasoning,
            fallback_model=self.fallback_for(model, available),
        )

    def default_decision(self, available: Sequence[str]) -> RoutingDecision:
        model = self._settings.default_model.lower()
        if model not in available:
            model = available[0]
        return RoutingDecision(
            model=model,
            confidence=DEFAULT_CONFIDENCE,
            reasoning=FAILED_REASONING,
            fallback_model=self.fallback_for(model, available),
        )

    def fallback_for(self, model: str, available: Sequence[str]) -> Optional[str]:
        return get_fallback_model(model, available, self._settings.fallback_map)

    def build_prompt(
        self,
        user_message: str,
        recent_history: Sequence[ChatMessage],
        available: Sequence[str],
        last_model: Optional[str] = None,
    ) -> str:
        lines: List[str] = [
            "You are a routing assistant that analyzes user messages and decides which AI "
            "model should handle the request.",
            "",
            "Available Models:",
        ]
        for i, name in enumerate(available, start=1):
            try:
                cfg = get_provider_config(name)
            except KeyError:
                lines.append(f'{i}. "{name}"')
                continue
            lines.append(f'{i}. "{name}" ({cfg.display_name}):')
            if cfg.strengths:
                lines.append(f"   - Best for: {cfg.strengths[0]}")
                for extra in cfg.strengths[1:]:
                    lines.append(f"   - Strengths: {extra}")
            if cfg.use_when:
                lines.append(f"   - Use when: {cfg.use_when}")
        lines.append("")

        default = self._settings.default_model.lower()
        data_model = next((m for m in available if m != default), default)
        lines.extend(
            [
                "Routing Rules:",
                "- If message contains weather-related keywords (weather, temperature, rain, "
                f'forecast, etc.) → use "{data_model}"',
                f'- If message is a greeting or casual conversation → use "{default}"',
                f'- If message asks for data analysis or calculations → use "{data_model}"',
                f'- If unsure, default to "{default}"',
                "- Consider conversation context: maintain consistency with previous model if "
                "follow-up question",
                "",
                f'User\'s Message: "{user_message}"',
            ]
        )

        window = list(recent_history)[-self._settings.history_window:]
        if window:
            lines.append("")
            lines.append("Recent Conversation:")
            lines.extend(f"{m.role}: {m.content or ''}" for m in window)
        if last_model:
            lines.append("")
            lines.append(f'Previous answer was given by "{last_model}".')

        choices = " or ".join(f'"{m}"' for m in available)
        lines.extend(
            [
                "",
                "Respond ONLY with valid JSON in this exact format:",
                "{",
                f'  "model": {choices},',
                '  "confidence": 0.0 to 1.0,',
                '  "reasoning": "Brief explanation of why this model was chosen"',
                "}",
            ]
        )
        return "\n".join(lines)
