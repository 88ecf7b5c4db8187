"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取天气助手的 system prompt 模板，
并填入模型身份信息，用于构造 ChatMessage(role="system")。
"""

from functools import lru_cache
from pathlib import Path

from weather_core.providers.registry import get_display_name


PROMPTS_DIR = Path(__file__).resolve().parent
ASSISTANT_NAME = "Weather Assistant"


@lru_cache(maxsize=8)
def _read_template(locale: str) -> str:
    fname = PROMPTS_DIR / locale / "weather_system.md"
    return fname.read_text(encoding="utf-8")


def load_system_prompt(model: str, locale: str = "en") -> str:
    """加载指定模型的天气助手系统提示词。

    模板中的 {intro_name} 为助手名，{identity_name} 为模型展示名
    （用户询问“你是哪个 AI”时的回答）。
    """

    return _read_template(locale).format(
        intro_name=ASSISTANT_NAME,
        identity_name=get_display_name(model),
    ).strip()
