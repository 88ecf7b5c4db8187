"""Weather Core 顶层包。

该包提供天气对话编排核心的实现，
包括配置加载、领域模型、Provider 适配、工具系统、
内容审核、模型路由、Agent 循环、回退与流式事件，以及持久化存储等能力。
"""

from weather_core.api.service import get_session_messages, run_weather_chat, stream_weather_chat

__all__ = ["get_session_messages", "run_weather_chat", "stream_weather_chat"]
