"""DeepSeek Provider 适配器。

DeepSeek 使用 OpenAI 兼容接口，具体字段以官方文档为准；
本实现只依赖公共字段：model/messages/temperature/max_tokens/top_p/stream/tools。
该 Provider 支持原生 token 流式输出。
"""

from weather_core.providers.openai_compat import OpenAICompatibleClient
from weather_core.providers.registry import DEEPSEEK_CONFIG


class DeepSeekClient(OpenAICompatibleClient):
    """DeepSeek Provider 客户端实现。"""

    name = "deepseek"
    config = DEEPSEEK_CONFIG
    api_key_field = "deepseek_api_key"
    base_url_field = "deepseek_base_url"
