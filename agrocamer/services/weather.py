"""
Weather Service
Current conditions for a Cameroon region (or exact coordinates) from the
Open-Meteo public API, with a short agricultural advice line.
"""
import logging
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)

OPEN_METEO_URL = "https://api.open-meteo.com/v1/forecast"
TIMEZONE = "Africa/Douala"

# Weather stations are the region capitals; Bertoua uses the met-office point.
CAMEROON_CITIES: Dict[str, Dict[str, Any]] = {
    "adamaoua": {"lat": 7.3167, "lon": 13.5833, "name": "Ngaoundéré"},
    "centre": {"lat": 3.8667, "lon": 11.5167, "name": "Yaoundé"},
    "est": {"lat": 4.0333, "lon": 14.0333, "name": "Bertoua"},
    "extreme-nord": {"lat": 10.5917, "lon": 14.3167, "name": "Maroua"},
    "littoral": {"lat": 4.0503, "lon": 9.7000, "name": "Douala"},
    "nord": {"lat": 9.3000, "lon": 13.3833, "name": "Garoua"},
    "nord-ouest": {"lat": 5.9500, "lon": 10.1500, "name": "Bamenda"},
    "ouest": {"lat": 5.4833, "lon": 10.4167, "name": "Bafoussam"},
    "sud": {"lat": 2.9333, "lon": 11.1500, "name": "Ebolowa"},
    "sud-ouest": {"lat": 4.1500, "lon": 9.2333, "name": "Buéa"},
}

# WMO weather interpretation codes
WEATHER_CODES: Dict[int, Dict[str, str]] = {
    0: {"fr": "Ciel dégagé", "en": "Clear sky", "icon": "sun"},
    1: {"fr": "Principalement dégagé", "en": "Mainly clear", "icon": "sun"},
    2: {"fr": "Partiellement nuageux", "en": "Partly cloudy", "icon": "cloud-sun"},
    3: {"fr": "Couvert", "en": "Overcast", "icon": "cloud"},
    45: {"fr": "Brouillard", "en": "Fog", "icon": "cloud-fog"},
    48: {"fr": "Brouillard givrant", "en": "Depositing rime fog", "icon": "cloud-fog"},
    51: {"fr": "Bruine légère", "en": "Light drizzle", "icon": "cloud-drizzle"},
    53: {"fr": "Bruine modérée", "en": "Moderate drizzle", "icon": "cloud-drizzle"},
    55: {"fr": "Bruine dense", "en": "Dense drizzle", "icon": "cloud-drizzle"},
    61: {"fr": "Pluie légère", "en": "Light rain", "icon": "cloud-rain"},
    63: {"fr": "Pluie modérée", "en": "Moderate rain", "icon": "cloud-rain"},
    65: {"fr": "Forte pluie", "en": "Heavy rain", "icon": "cloud-rain"},
    80: {"fr": "Averses légères", "en": "Light showers", "icon": "cloud-rain"},
    81: {"fr": "Averses modérées", "en": "Moderate showers", "icon": "cloud-rain"},
    82: {"fr": "Fortes averses", "en": "Violent showers", "icon": "cloud-rain"},
    95: {"fr": "Orage", "en": "Thunderstorm", "icon": "cloud-lightning"},
    96: {"fr": "Orage avec grêle", "en": "Thunderstorm with hail", "icon": "cloud-lightning"},
    99: {"fr": "Orage violent", "en": "Severe thunderstorm", "icon": "cloud-lightning"},
}

_ADVICE = {
    "fr": {
        "rain": "🌧️ Forte probabilité de pluie. Reportez les traitements phytosanitaires.",
        "heat": "🌡️ Chaleur excessive. Arrosez tôt le matin ou en soirée.",
        "humid": "💧 Humidité élevée. Surveillez les maladies fongiques.",
        "ideal": "☀️ Conditions idéales pour le travail au champ.",
        "normal": "📋 Conditions normales pour les activités agricoles.",
    },
    "en": {
        "rain": "🌧️ High rain probability. Postpone pesticide treatments.",
        "heat": "🌡️ Excessive heat. Water early morning or evening.",
        "humid": "💧 High humidity. Watch for fungal diseases.",
        "ideal": "☀️ Ideal conditions for field work.",
        "normal": "📋 Normal conditions for agricultural activities.",
    },
}


def advice_key(temp: float, humidity: float, rain_probability: float) -> str:
    if rain_probability > 70:
        return "rain"
    if temp > 35:
        return "heat"
    if humidity > 85:
        return "humid"
    if 25 <= temp <= 32 and rain_probability < 30:
        return "ideal"
    return "normal"


def generate_advice(temp: float, humidity: float, rain_probability: float, language: str = "fr") -> str:
    texts = _ADVICE["en"] if language == "en" else _ADVICE["fr"]
    return texts[advice_key(temp, humidity, rain_probability)]


def describe_code(code: Optional[int], language: str = "fr") -> Dict[str, str]:
    info = WEATHER_CODES.get(int(code or 0), WEATHER_CODES[0])
    return {"description": info.get(language) or info["fr"], "icon": info["icon"]}


def _location_label(region: str, city_name: str) -> str:
    pretty = region[:1].upper() + region[1:].replace("-", " ", 1)
    return f"{city_name}, {pretty}"


def fetch_weather(region: str = "centre", language: str = "fr", latitude: Optional[float] = None,
                  longitude: Optional[float] = None, client: Optional[httpx.Client] = None) -> Dict[str, Any]:
    """Fetch current conditions; exact coordinates take precedence over the region capital.

    Raises ValueError when the upstream API fails.
    """
    if region not in CAMEROON_CITIES:
        region = "centre"
    city = CAMEROON_CITIES[region]
    lat = latitude if latitude is not None else city["lat"]
    lon = longitude if longitude is not None else city["lon"]
    params = {
        "latitude": lat,
        "longitude": lon,
        "current": "temperature_2m,relative_humidity_2m,apparent_temperature,weather_code,wind_speed_10m",
        "daily": "precipitation_probability_max",
        "timezone": TIMEZONE,
    }
    try:
        if client is not None:
            resp = client.get(OPEN_METEO_URL, params=params)
        else:
            with httpx.Client(timeout=20.0) as c:
                resp = c.get(OPEN_METEO_URL, params=params)
        resp.raise_for_status()
        raw = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.error("[Weather] Open-Meteo error for %s: %s", region, e)
        raise ValueError(f"Weather API error: {e}") from e

    current = raw.get("current") or {}
    daily = raw.get("daily") or {}
    rain_list = daily.get("precipitation_probability_max") or []
    rain_probability = rain_list[0] if rain_list and rain_list[0] is not None else 0

    temp = float(current.get("temperature_2m") or 0.0)
    humidity = float(current.get("relative_humidity_2m") or 0.0)
    described = describe_code(current.get("weather_code"), language)
    return {
        "temp": round(temp),
        "feels_like": round(float(current.get("apparent_temperature") or temp)),
        "humidity": current.get("relative_humidity_2m"),
        "wind_speed": round(float(current.get("wind_speed_10m") or 0.0)),
        "description": described["description"],
        "icon": described["icon"],
        "location": _location_label(region, city["name"]),
        "rain_probability": rain_probability,
        "agricultural_advice": generate_advice(temp, humidity, rain_probability, language),
    }
