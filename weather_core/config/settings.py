"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("WEATHER_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 模型 / 路由 ----
    default_model: str = Field(
        default="openai",
        description="路由失败时使用的默认（对话型）模型 ID",
    )
    available_models: List[str] = Field(
        default_factory=lambda: ["openai", "deepseek"],
        description="参与路由的模型 ID 列表",
    )
    router_provider: str = Field(default="openai", description="路由辅助调用使用的 Provider")
    router_model: str = Field(default="router", description="路由辅助调用使用的逻辑模型名")
    fallback_map: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="覆盖默认回退表：模型 ID -> 按优先级排列的回退模型列表",
    )
    history_window: int = Field(default=5, ge=1, le=50, description="传给路由器的最近消息条数")

    # ---- OpenAI ----
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API 密钥")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI API 基础URL",
    )
    # ---- DeepSeek ----
    deepseek_api_key: Optional[str] = Field(default=None, description="DeepSeek API 密钥")
    deepseek_base_url: str = Field(
        default="https://api.deepseek.com",
        description="DeepSeek API 基础URL",
    )
    # ---- OpenWeatherMap ----
    openweather_api_key: Optional[str] = Field(default=None, description="OpenWeatherMap API 密钥")
    openweather_base_url: str = Field(
        default="http://api.openweathermap.org/data/2.5",
        description="OpenWeatherMap API 基础URL",
    )

    # ---- 审核 ----
    moderation_enabled: bool = Field(default=True, description="是否调用外部内容审核接口")
    moderation_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="任一类别分数超过该阈值才视为违规",
    )

    # ---- Agent 循环 ----
    max_iterations: int = Field(
        default=5,
        ge=1,
        le=20,
        description="单次请求内模型调用的最大轮数（硬上限 20）",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")
    model_timeout_seconds: float = Field(default=60.0, gt=0, description="单次模型调用的截止时间（秒）")
    tool_timeout_seconds: float = Field(default=15.0, gt=0, description="单次工具调用的截止时间（秒）")
    stream_word_delay: float = Field(
        default=0.02,
        ge=0.0,
        description="模拟流式输出时每个词块之间的间隔（秒）",
    )

    # ---- 存储 / 日志 ----
    storage_root: str = Field(default=".storage", description="存储根目录")
    log_dir: str = Field(default="logs", description="日志目录")
    log_level: str = Field(default="INFO", description="日志级别")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=("settings_",),
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("openai_api_key", "deepseek_api_key", "openweather_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @field_validator("available_models")
    @classmethod
    def validate_models(cls, v: List[str]) -> List[str]:
        models = [m.strip().lower() for m in v if m and m.strip()]
        if not models:
            raise ValueError("available_models must not be empty")
        return models

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
