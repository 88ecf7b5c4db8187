"""OpenAI Provider 适配器。

OpenAI 在本系统中承担两种角色：
- "weather-chat"：对话型模型（GPT-3.5 Turbo），不启用原生流式，流式接口走词块模拟。
- "router"：路由辅助调用（gpt-4o-mini），要求 JSON 输出。
"""

from weather_core.providers.openai_compat import OpenAICompatibleClient
from weather_core.providers.registry import OPENAI_CONFIG


class OpenAIClient(OpenAICompatibleClient):
    """OpenAI Provider 客户端实现。"""

    name = "openai"
    config = OPENAI_CONFIG
    api_key_field = "openai_api_key"
    base_url_field = "openai_base_url"
