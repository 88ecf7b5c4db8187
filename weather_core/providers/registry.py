"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "weather-chat"。
- provider_model：厂商实际提供的模型 ID，例如 "deepseek-chat"。

路由器面对的“模型 ID”就是 Provider 名（"openai" / "deepseek"），
每个 Provider 在这里登记展示名、擅长领域与回退顺序。
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str
    max_tokens: int
    default_temperature: float


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。

    supports_streaming 为 False 时，流式接口使用“词块模拟”策略输出。
    """

    name: str
    base_url: str
    display_name: str
    models: Dict[str, ModelConfig]
    strengths: List[str] = field(default_factory=list)
    use_when: str = ""
    supports_streaming: bool = True


DEFAULT_CHAT_MODEL = "weather-chat"

OPENAI_CONFIG = ProviderConfig(
    name="openai",
    base_url="https://api.openai.com/v1",
    display_name="GPT-3.5 Turbo",
    models={
        "weather-chat": ModelConfig(
            logical_name="weather-chat",
            provider_model="gpt-3.5-turbo",
            max_tokens=4096,
            default_temperature=0.7,
        ),
        "router": ModelConfig(
            logical_name="router",
            provider_model="gpt-4o-mini",
            max_tokens=512,
            default_temperature=0.3,
        ),
    },
    strengths=[
        "Friendly conversations, greetings, general questions, casual chat",
        "Natural conversation, empathy, general knowledge",
    ],
    use_when="User is chatting casually, asking opinions, making small talk",
    supports_streaming=False,
)

DEEPSEEK_CONFIG = ProviderConfig(
    name="deepseek",
    base_url="https://api.deepseek.com",
    display_name="DeepSeek V3",
    models={
        "weather-chat": ModelConfig(
            logical_name="weather-chat",
            provider_model="deepseek-chat",
            max_tokens=4096,
            default_temperature=0.7,
        )
    },
    strengths=[
        "Weather queries, data analysis, technical reasoning, calculations",
        "Data processing, weather analysis, technical accuracy",
    ],
    use_when="User asks about weather, needs data analysis, technical questions",
    supports_streaming=True,
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "openai": OPENAI_CONFIG,
    "deepseek": DEEPSEEK_CONFIG,
}

# 有向回退图：模型 ID -> 按优先级排列的回退候选
FALLBACK_GRAPH: Mapping[str, Sequence[str]] = {
    "openai": ("deepseek",),
    "deepseek": ("openai",),
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def get_display_name(model: str) -> str:
    try:
        return get_provider_config(model).display_name
    except KeyError:
        return model


def get_fallback_model(
    model: str,
    available: Optional[Sequence[str]] = None,
    overrides: Optional[Mapping[str, Sequence[str]]] = None,
) -> Optional[str]:
    """返回 model 的首个可用回退模型；没有可用候选时返回 None。

    overrides 中出现的键完全替换 FALLBACK_GRAPH 中的同名条目。
    """

    graph: Dict[str, Sequence[str]] = dict(FALLBACK_GRAPH)
    if overrides:
        graph.update({k.lower(): v for k, v in overrides.items()})
    for candidate in graph.get(model.lower(), ()):
        candidate = candidate.lower()
        if candidate == model.lower():
            continue
        if available is not None and candidate not in available:
            continue
        return candidate
    return None
