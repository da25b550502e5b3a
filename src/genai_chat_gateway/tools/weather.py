"""Weather lookup tools backed by wttr.in."""

from __future__ import annotations

import logging
from typing import Any

import requests
from pydantic import BaseModel, ConfigDict, Field

from genai_chat_gateway.tools.registry import ToolSpec

LOGGER = logging.getLogger(__name__)

DEFAULT_REPORT_FORMAT = "현재 %l의 날씨는 %C 상태이며, 기온은 %t, 체감 기온은 %f, 풍속은 %W, 습도는 %h, 강수량은 %p입니다."


class LocationArgs(BaseModel):
    location: str = Field(description="Name of the city or region to look up")


class Astronomy(BaseModel):
    """Sun and moon data for one forecast day."""

    model_config = ConfigDict(extra="ignore")

    moon_illumination: int = Field(description="Moon illumination in percent")
    moon_phase: str = Field(description="Moon phase, e.g. Full Moon")
    moonrise: str
    moonset: str
    sunrise: str
    sunset: str


class WeatherForecast(BaseModel):
    """Daily forecast without the hourly breakdown."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    astronomy: list[Astronomy] = Field(default_factory=list)
    date: str = Field(description="Forecast date (yyyy-MM-dd)")
    avg_temp_c: int = Field(alias="avgtempC")
    avg_temp_f: int = Field(alias="avgtempF")
    max_temp_c: int = Field(alias="maxtempC")
    max_temp_f: int = Field(alias="maxtempF")
    min_temp_c: int = Field(alias="mintempC")
    min_temp_f: int = Field(alias="mintempF")
    sun_hour: float = Field(alias="sunHour", description="Hours of sunshine")
    total_snow_cm: float = Field(alias="totalSnow_cm")
    uv_index: float = Field(alias="uvIndex")


class WeatherResponse(BaseModel):
    """Three-day forecast as returned by ``format=j1``."""

    model_config = ConfigDict(extra="ignore")

    weather: list[WeatherForecast] = Field(default_factory=list)


class WeatherService:
    """Thin wttr.in client."""

    def __init__(
        self,
        base_url: str = "https://wttr.in",
        *,
        language: str = "ko",
        report_format: str = DEFAULT_REPORT_FORMAT,
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._language = language
        self._report_format = report_format
        self._timeout = timeout
        self._session = session or requests.Session()

    def current(self, location: str) -> str:
        response = self._get(location, self._report_format)
        return response.text.strip()

    def details(self, location: str) -> WeatherResponse:
        response = self._get(location, "j1")
        return WeatherResponse.model_validate(response.json())

    def _get(self, location: str, report_format: str) -> requests.Response:
        if not location.strip():
            message = "location must not be blank"
            raise ValueError(message)
        url = f"{self._base_url}/{location.strip().replace(' ', '+')}"
        params: dict[str, Any] = {"lang": self._language, "format": report_format}
        LOGGER.debug("Requesting weather for %s", location)
        response = self._session.get(url, params=params, timeout=self._timeout)
        response.raise_for_status()
        return response


def build_weather_tools(service: WeatherService, *, weather_return_direct: bool = False) -> list[ToolSpec]:
    """Tool specs for ``getWeather`` and ``getWeatherDetails``."""

    def get_weather(args: LocationArgs) -> str:
        return service.current(args.location)

    def get_weather_details(args: LocationArgs) -> WeatherResponse:
        return service.details(args.location)

    return [
        ToolSpec(
            name="getWeather",
            description="Look up the current weather for a location.",
            args_schema=LocationArgs,
            handler=get_weather,
            return_direct=weather_return_direct,
        ),
        ToolSpec(
            name="getWeatherDetails",
            description=(
                "Look up a three-day forecast for a location, including astronomy data "
                "(moon phase and illumination, sunrise, sunset, moonrise and moonset)."
            ),
            args_schema=LocationArgs,
            handler=get_weather_details,
        ),
    ]
