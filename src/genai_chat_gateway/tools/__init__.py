"""Tool registry, tool-calling loop and built-in tools."""

from .dispatcher import ToolDispatcher, ToolInvocation
from .registry import ToolRegistry, ToolSpec
from .weather import WeatherService, build_weather_tools

__all__ = [
    "ToolDispatcher",
    "ToolInvocation",
    "ToolRegistry",
    "ToolSpec",
    "WeatherService",
    "build_weather_tools",
]
