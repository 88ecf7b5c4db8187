"""LLM Provider 集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置、回退图 (registry)。
- 提供各厂商的具体实现 (openai_client、deepseek_client)。
"""

from typing import Optional

from weather_core.config.settings import settings
from weather_core.providers.base import ProviderClient
from weather_core.providers.openai_client import OpenAIClient
from weather_core.providers.deepseek_client import DeepSeekClient


def create_provider(name: Optional[str] = None, cfg=None) -> ProviderClient:
    """根据名称创建 Provider 实例，默认取配置中的 default_model。"""

    cfg = cfg or settings
    provider_name = (name or getattr(cfg, "default_model", "openai")).lower()
    if provider_name == "openai":
        return OpenAIClient(cfg)
    if provider_name == "deepseek":
        return DeepSeekClient(cfg)
    raise KeyError(f"Unknown provider: {provider_name!r}")

