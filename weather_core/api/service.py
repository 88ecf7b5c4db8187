"""对外 API 服务模块。

提供简化的函数接口供上层应用（HTTP 层、命令行、前端）调用。
"""

from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, List, Optional

from weather_core.config.settings import settings
from weather_core.domain.events import frame_events
from weather_core.domain.session import SessionStore
from weather_core.infrastructure.logging.logger import logger
from weather_core.infrastructure.storage.json_store import JsonChatRecordSink, JsonSessionStore
from weather_core.orchestrator.service import ChatOrchestrator


_store: Optional[SessionStore] = None
_orchestrator: Optional[ChatOrchestrator] = None


def get_default_orchestrator() -> ChatOrchestrator:
    """获取默认的 ChatOrchestrator 实例（单例）。"""
    global _store, _orchestrator
    if _store is None:
        _store = JsonSessionStore(root=settings.storage_root)
    if _orchestrator is None:
        _orchestrator = ChatOrchestrator(
            store=_store,
            sink=JsonChatRecordSink(root=settings.storage_root),
        )
    return _orchestrator


def set_default_orchestrator(orchestrator: Optional[ChatOrchestrator]) -> None:
    """替换默认实例（测试或自定义装配时使用）；传 None 则恢复懒加载。"""
    global _store, _orchestrator
    _orchestrator = orchestrator
    _store = orchestrator.store if orchestrator is not None else None


async def run_weather_chat(
    user_message: str,
    session_id: str,
    max_iterations: Optional[int] = None,
) -> Dict[str, Any]:
    """运行一次天气对话。

    Args:
        user_message: 用户输入内容
        session_id: 会话ID（不存在时自动创建）
        max_iterations: Agent 循环最大轮数（可选，默认取配置）

    Returns:
        camelCase 形式的回答字典（response、modelUsed、toolCallsMade 等）

    Raises:
        各种 domain.exceptions 中定义的异常（如非法的会话ID）
    """
    try:
        response = await get_default_orchestrator().process_chat(
            user_message, session_id, max_iterations=max_iterations
        )
        return response.to_dict()
    except Exception as e:
        logger.error(f"Chat failed: {e}", extra={"extra": {
            "session_id": session_id,
            "error": str(e),
        }})
        raise


async def stream_weather_chat(
    user_message: str,
    session_id: str,
    max_iterations: Optional[int] = None,
) -> AsyncIterator[str]:
    """流式天气对话，逐行产出 NDJSON 事件，最后一行为结束标记。"""

    events = get_default_orchestrator().process_chat_stream(
        user_message, session_id, max_iterations=max_iterations
    )
    async with aclosing(frame_events(events)) as lines:
        async for line in lines:
            yield line


async def get_session_messages(session_id: str) -> List[Dict[str, Any]]:
    """获取会话的所有消息。

    Args:
        session_id: 会话ID

    Returns:
        消息列表（camelCase 字典）
    """
    msgs = await get_default_orchestrator().store.load(session_id)
    return [m.to_dict() for m in msgs]
