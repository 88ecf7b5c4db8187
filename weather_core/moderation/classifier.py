"""内容分类器：对接 OpenAI Moderation 接口。

分类器只负责返回各类别分数，是否拦截由 ModerationGate 按自己的阈值判断。
"""

from dataclasses import dataclass, field
from typing import Dict, Protocol

import httpx

from weather_core.config.settings import settings
from weather_core.domain.exceptions import ApiError, NetworkError, ValidationError


@dataclass
class ClassifierResult:
    flagged: bool
    category_scores: Dict[str, float] = field(default_factory=dict)
    categories: Dict[str, bool] = field(default_factory=dict)


class ContentClassifier(Protocol):
    async def classify(self, text: str) -> ClassifierResult:
        ...


class OpenAIModerationClassifier:
    """调用 {openai_base_url}/moderations 获取类别分数。"""

    def __init__(self, cfg=None, model: str = "omni-moderation-latest"):
        self._settings = cfg or settings
        self._model = model

    async def classify(self, text: str) -> ClassifierResult:
        key = self._settings.openai_api_key
        if not key:
            raise ValidationError(code="MISSING_API_KEY", message="OPENAI_API_KEY not set", provider="openai")
        url = f"{self._settings.openai_base_url.rstrip('/')}/moderations"
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    url,
                    json={"model": self._model, "input": text},
                    headers={"Authorization": f"Bearer {key}", "Content-Type": "application/json"},
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), provider="openai")
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code, provider="openai")

        results = resp.json().get("results") or []
        if not results:
            raise ApiError(code="MALFORMED_RESPONSE", message="moderation response has no results", http_status=502)
        first = results[0]
        return ClassifierResult(
            flagged=bool(first.get("flagged", False)),
            category_scores={k: float(v) for k, v in (first.get("category_scores") or {}).items()},
            categories={k: bool(v) for k, v in (first.get("categories") or {}).items()},
        )
