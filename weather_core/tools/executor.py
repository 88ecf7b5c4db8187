import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from weather_core.config.settings import settings
from weather_core.infrastructure.logging.logger import logger
from .definitions import ToolCall, ToolResult


ToolFunc = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]


class ToolExecutor:
    """把工具调用分发到具体实现。

    execute 永远不抛异常：未知工具、参数错误、超时与实现内部异常
    都会被转换为 {"error": "..."} 形式的结果交还给模型。
    """

    def __init__(self, tools: Dict[str, ToolFunc], timeout: Optional[float] = None):
        self._tools = tools
        self._timeout = timeout if timeout is not None else settings.tool_timeout_seconds

    async def execute(self, call: ToolCall) -> ToolResult:
        func = self._tools.get(call.name)
        if func is None:
            return ToolResult(call_id=call.id, data={"error": f"Unknown tool: {call.name}"})
        try:
            async with asyncio.timeout(self._timeout):
                data = await func(dict(call.arguments or {}))
        except TimeoutError:
            logger.warning(
                "tool.timeout",
                extra={"extra": {"tool": call.name, "timeout": self._timeout}},
            )
            return ToolResult(call_id=call.id, data={"error": f"Tool {call.name} timed out"})
        except Exception as exc:
            logger.warning(
                "tool.error",
                extra={"extra": {"tool": call.name, "error": str(exc)}},
            )
            return ToolResult(call_id=call.id, data={"error": str(exc) or type(exc).__name__})
        if not isinstance(data, dict):
            data = {"result": data}
        return ToolResult(call_id=call.id, data=data)

    async def execute_all(self, calls: Sequence[ToolCall]) -> List[ToolResult]:
        """并发执行同一轮的全部工具调用，按调用顺序返回结果。"""

        return list(await asyncio.gather(*(self.execute(call) for call in calls)))
