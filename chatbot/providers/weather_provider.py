"""Current-weather lookup against OpenWeatherMap, normalized for the chat UI."""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional

import requests

from chatbot.errors import NotFound, UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

OPENWEATHER_URL = "https://api.openweathermap.org/data/2.5/weather"


def normalize_weather(data: Dict[str, Any]) -> Dict[str, Any]:
    main = data.get("main") or {}
    conditions = (data.get("weather") or [{}])[0]
    return {
        "city": data.get("name"),
        "country": (data.get("sys") or {}).get("country"),
        "temperature": round(main.get("temp", 0)),
        "feels_like": round(main.get("feels_like", 0)),
        "description": conditions.get("description"),
        "icon": conditions.get("icon"),
        "humidity": main.get("humidity"),
        "wind_speed": (data.get("wind") or {}).get("speed"),
        "pressure": main.get("pressure"),
    }


def fetch_weather(city: Optional[str], *, api_key: Optional[str] = None, timeout: float = 10.0) -> Dict[str, Any]:
    city = (city or "").strip()
    if not city:
        raise ValidationError("City parameter is required")
    api_key = api_key if api_key is not None else (os.getenv("WEATHER_API_KEY") or "").strip()
    if not api_key:
        raise UpstreamFailure("Weather API key not configured", status_code=503)

    try:
        r = requests.get(
            OPENWEATHER_URL,
            params={"q": city, "appid": api_key, "units": "metric"},
            timeout=timeout,
        )
    except requests.RequestException as e:
        logger.error("Weather API error: %s", e)
        raise UpstreamFailure("Failed to fetch weather data") from None

    if r.status_code == 404:
        raise NotFound("City not found")
    if r.status_code >= 400:
        logger.error("Weather API returned status %d for %r", r.status_code, city)
        raise UpstreamFailure("Failed to fetch weather data")
    try:
        data = r.json()
    except ValueError:
        raise UpstreamFailure("Failed to fetch weather data") from None
    if not isinstance(data, dict):
        raise UpstreamFailure("Failed to fetch weather data")
    return normalize_weather(data)
