"""天气工具实现（OpenWeatherMap）。

两个工具都不会抛异常：请求失败时返回 {"location": ..., "error": ...}，
由模型决定如何向用户说明。
"""

from typing import Any, Dict, List, Optional

import httpx

from weather_core.config.settings import settings
from weather_core.infrastructure.logging.logger import logger
from .definitions import ToolDef, ToolParam
from .executor import ToolFunc

FORECAST_ENTRIES = 5


async def _get_json(path: str, params: Dict[str, Any], cfg) -> Dict[str, Any]:
    async with httpx.AsyncClient(timeout=cfg.http_timeout, trust_env=False) as client:
        resp = await client.get(f"{cfg.openweather_base_url.rstrip('/')}/{path}", params=params)
    resp.raise_for_status()
    return resp.json()


async def get_current_weather(location: str, unit: str = "celsius", cfg=None) -> Dict[str, Any]:
    cfg = cfg or settings
    unit = unit if unit in ("celsius", "fahrenheit") else "celsius"
    units = "metric" if unit == "celsius" else "imperial"
    try:
        data = await _get_json(
            "weather",
            {"q": location, "appid": cfg.openweather_api_key, "units": units},
            cfg,
        )
        return {
            "location": location,
            "temperature": data["main"]["temp"],
            "description": data["weather"][0]["description"],
            "humidity": data["main"]["humidity"],
            "unit": unit,
        }
    except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("weather.current.error", extra={"extra": {"location": location, "error": str(exc)}})
        return {"location": location, "error": "Could not fetch weather data"}


async def get_forecast(location: str, cfg=None) -> Dict[str, Any]:
    cfg = cfg or settings
    try:
        data = await _get_json(
            "forecast",
            {"q": location, "appid": cfg.openweather_api_key, "units": "metric"},
            cfg,
        )
        forecast = [
            {
                "time": item["dt_txt"],
                "temp": item["main"]["temp"],
                "description": item["weather"][0]["description"],
            }
            for item in data["list"][:FORECAST_ENTRIES]
        ]
        return {"location": location, "forecast": forecast}
    except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("weather.forecast.error", extra={"extra": {"location": location, "error": str(exc)}})
        return {"location": location, "error": "Could not fetch forecast data"}


def _require_location(args: Dict[str, Any]) -> Optional[str]:
    location = str(args.get("location") or "").strip()
    return location or None


def default_tools(cfg=None) -> Dict[str, ToolFunc]:
    cfg = cfg or settings

    async def _current(args: Dict[str, Any]) -> Dict[str, Any]:
        location = _require_location(args)
        if not location:
            return {"error": "location is required"}
        return await get_current_weather(location, str(args.get("unit") or "celsius"), cfg)

    async def _forecast(args: Dict[str, Any]) -> Dict[str, Any]:
        location = _require_location(args)
        if not location:
            return {"error": "location is required"}
        return await get_forecast(location, cfg)

    return {
        "get_current_weather": _current,
        "get_forecast": _forecast,
    }


def default_tool_defs() -> List[ToolDef]:
    return [
        ToolDef(
            name="get_current_weather",
            description="Get the current weather for a location",
            params={
                "location": ToolParam(
                    name="location",
                    description="City name, e.g. San Francisco",
                    required=True,
                    schema={"type": "string"},
                ),
                "unit": ToolParam(
                    name="unit",
                    description="Temperature unit",
                    required=False,
                    schema={"type": "string", "enum": ["celsius", "fahrenheit"]},
                ),
            },
        ),
        ToolDef(
            name="get_forecast",
            description=f"Get weather forecast for the next {FORECAST_ENTRIES} periods",
            params={
                "location": ToolParam(
                    name="location",
                    description="City name",
                    required=True,
                    schema={"type": "string"},
                )
            },
        ),
    ]
