"""
modules/tool_usage/weather_tool.py
-------------------------------------
Current-weather fetcher backed by the OpenWeatherMap Current Weather API.

Endpoint:
    GET {OPENWEATHER_URL}?lat={lat}&lon={lon}&appid={key}&units=metric

No OAuth: plain API key in `appid` query param.

OWM condition code → internal condition string
──────────────────────────────────────────────
  2xx      Thunderstorm           → "thunderstorm"
  3xx      Drizzle                → "drizzle"
  5xx      Rain                   → "rainy"
  6xx      Snow / sleet           → "snow"
  771      Squall                 → "squall"
  781      Tornado                → "tornado"
  other 7xx Atmosphere (fog/haze) → "foggy"
  800      Clear sky              → "clear"
  801-804  Clouds                 → "cloudy"

Failure policy: fetch() raises WeatherUnavailable; fetch_or_fallback()
returns the last-known snapshot, else a benign clear reading at
WEATHER_DEFAULT_TEMP_C, both flagged low_confidence.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

import requests

import config
from modules.errors import WeatherUnavailable
from schemas.refresh import WeatherSnapshot

logger = logging.getLogger(__name__)

PRECIPITATION_CONDITIONS: frozenset[str] = frozenset({"rainy", "drizzle", "thunderstorm", "snow"})
EXTREME_CONDITIONS: frozenset[str] = frozenset({"thunderstorm", "tornado", "squall", "hurricane"})

_COLD_THRESHOLD_C: float = 15.0


# ─────────────────────────────────────────────────────────────────────────────
# OWM code → internal condition string
# ─────────────────────────────────────────────────────────────────────────────

def _owm_code_to_condition(code: int) -> str:
    """
    Map an OpenWeatherMap weather condition code to our internal condition string.
    Codes: https://openweathermap.org/weather-conditions
    """
    if 200 <= code < 300:
        return "thunderstorm"
    if 300 <= code < 400:
        return "drizzle"
    if 500 <= code < 600:
        return "rainy"
    if 600 <= code < 700:
        return "snow"
    if code == 771:
        return "squall"
    if code == 781:
        return "tornado"
    if 700 <= code < 800:
        return "foggy"
    if code == 800:
        return "clear"
    if 801 <= code <= 804:
        return "cloudy"
    return "default"


def retrieval_weather(condition: str, temperature: float) -> str:
    """Key into the retrieval weather→tag table; dry but cold days count as "cold"."""
    if condition in ("clear", "cloudy", "default") and temperature < _COLD_THRESHOLD_C:
        return "cold"
    if condition in ("squall", "tornado", "hurricane"):
        return "thunderstorm"
    if condition == "drizzle":
        return "rainy"
    return condition


# ─────────────────────────────────────────────────────────────────────────────
# Result dataclass
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class WeatherReading:
    """Parsed current-weather reading."""
    condition: str               # internal string, e.g. "thunderstorm"
    temperature: float           # °C
    description: str = ""
    condition_code: int = 0      # raw OWM weather code, 0 for fallbacks
    is_stub: bool = False
    low_confidence: bool = False # True when built from a fallback

    @property
    def is_extreme(self) -> bool:
        return self.condition in EXTREME_CONDITIONS

    @property
    def has_precipitation(self) -> bool:
        return self.condition in PRECIPITATION_CONDITIONS

    def to_metadata(self) -> dict:
        return {
            "condition":      self.condition,
            "temperature":    round(self.temperature, 1),
            "description":    self.description,
            "condition_code": self.condition_code,
            "is_stub":        self.is_stub,
            "low_confidence": self.low_confidence,
        }

    def to_snapshot(self) -> WeatherSnapshot:
        return WeatherSnapshot(
            condition      = self.condition,
            temperature    = self.temperature,
            description    = self.description,
            low_confidence = self.low_confidence,
        )


# ─────────────────────────────────────────────────────────────────────────────
# WeatherTool
# ─────────────────────────────────────────────────────────────────────────────

class WeatherTool:
    """
    Weather Provider collaborator.

    Stub mode (USE_STUB_WEATHER=true, the default) returns a fixed reading,
    overridable per instance for tests and demos.
    """

    def __init__(
        self,
        use_stub: bool = config.USE_STUB_WEATHER,
        timeout_s: float = config.WEATHER_TIMEOUT_S,
        session: Optional[requests.Session] = None,
        stub_condition: str = "clear",
        stub_temperature: float = 22.0,
    ) -> None:
        self._use_stub = use_stub
        self._timeout_s = timeout_s
        self._session = session or requests.Session()
        self._stub_condition = stub_condition
        self._stub_temperature = stub_temperature

    def fetch(self, lat: float, lon: float) -> WeatherReading:
        """Return the current reading at (lat, lon) or raise WeatherUnavailable."""
        if self._use_stub:
            return WeatherReading(
                condition   = self._stub_condition,
                temperature = self._stub_temperature,
                description = f"stub {self._stub_condition}",
                is_stub     = True,
            )
        if not config.OPENWEATHER_API_KEY:
            raise WeatherUnavailable("OPENWEATHER_API_KEY not configured")

        try:
            resp = self._session.get(
                config.OPENWEATHER_URL,
                params={
                    "lat":   lat,
                    "lon":   lon,
                    "appid": config.OPENWEATHER_API_KEY,
                    "units": "metric",
                },
                timeout=self._timeout_s,
            )
            resp.raise_for_status()
            data = resp.json()
            weather = data["weather"][0]
            code = int(weather["id"])
            return WeatherReading(
                condition      = _owm_code_to_condition(code),
                temperature    = float(data["main"]["temp"]),
                description    = weather.get("description", ""),
                condition_code = code,
            )
        except (requests.RequestException, KeyError, IndexError, TypeError, ValueError) as exc:
            raise WeatherUnavailable(f"weather provider error: {exc}") from exc

    def fetch_or_fallback(
        self,
        lat: float,
        lon: float,
        last_known: Optional[WeatherSnapshot] = None,
    ) -> WeatherReading:
        """fetch(), degrading to last-known or a benign default on WeatherUnavailable."""
        try:
            return self.fetch(lat, lon)
        except WeatherUnavailable as exc:
            logger.warning("Weather unavailable at (%.4f, %.4f): %s", lat, lon, exc)
            if last_known is not None:
                return WeatherReading(
                    condition      = last_known.condition,
                    temperature    = last_known.temperature,
                    description    = "last known",
                    low_confidence = True,
                )
            return WeatherReading(
                condition      = "clear",
                temperature    = config.WEATHER_DEFAULT_TEMP_C,
                description    = "default",
                low_confidence = True,
            )
