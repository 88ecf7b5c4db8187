"""工具系统：定义、执行器与天气工具。"""

from weather_core.tools.definitions import ToolCall, ToolCallRecord, ToolDef, ToolParam, ToolResult
from weather_core.tools.executor import ToolExecutor
from weather_core.tools.weather import default_tool_defs, default_tools

__all__ = [
    "ToolCall",
    "ToolCallRecord",
    "ToolDef",
    "ToolExecutor",
    "ToolParam",
    "ToolResult",
    "default_tool_defs",
    "default_tools",
]
