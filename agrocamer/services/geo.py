"""Region and climate lookup for Cameroon (no external dependencies)."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from agrocamer.i18n import normalize_language
from agrocamer.models import HIGH_ACCURACY_THRESHOLD_M, LocationInfo, Position

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers between two lat/lon points.

    Args:
        lat1: Latitude 1 in degrees.
        lon1: Longitude 1 in degrees.
        lat2: Latitude 2 in degrees.
        lon2: Longitude 2 in degrees.

    Returns:
        Distance in kilometers.
    """

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2.0) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


@dataclass(frozen=True, slots=True)
class Region:
    id: str
    name: str
    city: str
    lat: float
    lon: float


# Approximate region centres (the regional capital). Order matters for ties.
CAMEROON_REGIONS: Tuple[Region, ...] = (
    Region("extreme-nord", "Extrême-Nord", "Maroua", 10.5917, 14.3167),
    Region("nord", "Nord", "Garoua", 9.3000, 13.3833),
    Region("adamaoua", "Adamaoua", "Ngaoundéré", 7.3167, 13.5833),
    Region("centre", "Centre", "Yaoundé", 3.8667, 11.5167),
    Region("est", "Est", "Bertoua", 4.5833, 13.6833),
    Region("littoral", "Littoral", "Douala", 4.0503, 9.7000),
    Region("nord-ouest", "Nord-Ouest", "Bamenda", 5.9500, 10.1500),
    Region("ouest", "Ouest", "Bafoussam", 5.4833, 10.4167),
    Region("sud", "Sud", "Ebolowa", 2.9333, 11.1500),
    Region("sud-ouest", "Sud-Ouest", "Buéa", 4.1500, 9.2333),
)

REGIONS_BY_ID = {r.id: r for r in CAMEROON_REGIONS}
DEFAULT_REGION = "centre"


@dataclass(frozen=True, slots=True)
class RegionMatch:
    region: str
    region_name: str
    nearest_city: str
    distance_km: float


def nearest_region(lat: float, lon: float) -> RegionMatch:
    """Return the region whose centre is closest to (lat, lon).

    Ties keep the earliest entry of CAMEROON_REGIONS.
    """

    best = CAMEROON_REGIONS[0]
    best_distance = math.inf
    for region in CAMEROON_REGIONS:
        distance = haversine_km(lat, lon, region.lat, region.lon)
        if distance < best_distance:
            best_distance = distance
            best = region

    logger.debug("[Geolocation] Detected region %s at %.0f km from %s", best.name, best_distance, best.city)
    return RegionMatch(
        region=best.id,
        region_name=best.name,
        nearest_city=best.city,
        distance_km=best_distance,
    )


@dataclass(frozen=True, slots=True)
class ClimateZone:
    key: str
    zone: str
    characteristics: Tuple[str, ...]


_CLIMATE_TEXT = {
    "sahelian": {
        "fr": ("Sahélienne", (
            "Saison sèche très longue (8-9 mois)",
            "Températures: 25-45°C",
            "Pluviométrie: 300-600mm/an",
            "Cultures: sorgho, mil, arachide, niébé",
        )),
        "en": ("Sahelian", (
            "Very long dry season (8-9 months)",
            "Temperatures: 25-45°C",
            "Rainfall: 300-600mm/year",
            "Crops: sorghum, millet, groundnut, cowpea",
        )),
    },
    "sudano_sahelian": {
        "fr": ("Soudano-sahélienne", (
            "Saison sèche longue (7-8 mois)",
            "Températures: 25-40°C",
            "Pluviométrie: 600-1000mm/an",
            "Cultures: coton, maïs, sorgho, arachide",
        )),
        "en": ("Sudano-Sahelian", (
            "Long dry season (7-8 months)",
            "Temperatures: 25-40°C",
            "Rainfall: 600-1000mm/year",
            "Crops: cotton, maize, sorghum, groundnut",
        )),
    },
    "adamaoua_plateau": {
        "fr": ("Altitude tropicale (Adamaoua)", (
            "Climat tempéré d'altitude",
            "Températures: 18-28°C",
            "Pluviométrie: 1400-1800mm/an",
            "Élevage bovin, maïs, patate douce",
        )),
        "en": ("Adamaoua plateau", (
            "Temperate highland climate",
            "Temperatures: 18-28°C",
            "Rainfall: 1400-1800mm/year",
            "Cattle farming, maize, sweet potato",
        )),
    },
    "western_highlands": {
        "fr": ("Hautes terres de l'Ouest", (
            "Climat frais et humide",
            "Températures: 15-25°C",
            "Pluviométrie: 1800-3000mm/an",
            "Café arabica, thé, légumes, maraîchage",
        )),
        "en": ("Western highlands", (
            "Cool and humid climate",
            "Temperatures: 15-25°C",
            "Rainfall: 1800-3000mm/year",
            "Arabica coffee, tea, vegetables, market gardening",
        )),
    },
    "equatorial_coastal": {
        "fr": ("Côtière équatoriale", (
            "Climat très humide toute l'année",
            "Températures: 24-32°C",
            "Pluviométrie: 3000-5000mm/an",
            "Palmier à huile, hévéa, banane plantain",
        )),
        "en": ("Equatorial coastal", (
            "Very humid all year round",
            "Temperatures: 24-32°C",
            "Rainfall: 3000-5000mm/year",
            "Oil palm, rubber, plantain",
        )),
    },
    "equatorial_forest": {
        "fr": ("Forestière équatoriale", (
            "Forêt tropicale humide",
            "Températures: 23-30°C",
            "Pluviométrie: 1500-2500mm/an",
            "Cacao, manioc, macabo, plantain",
        )),
        "en": ("Equatorial forest", (
            "Humid tropical forest",
            "Temperatures: 23-30°C",
            "Rainfall: 1500-2500mm/year",
            "Cocoa, cassava, cocoyam, plantain",
        )),
    },
    "guinea_savanna": {
        "fr": ("Soudano-guinéenne", (
            "Deux saisons (sèche et pluies)",
            "Températures: 22-32°C",
            "Pluviométrie: 1200-1600mm/an",
            "Maïs, manioc, igname, légumineuses",
        )),
        "en": ("Guinea savanna", (
            "Two seasons (dry and rainy)",
            "Temperatures: 22-32°C",
            "Rainfall: 1200-1600mm/year",
            "Maize, cassava, yam, legumes",
        )),
    },
}


def climate_zone_key(lat: float, lon: float, altitude: Optional[float]) -> str:
    """First matching rule wins; the predicates overlap, so order is load-bearing."""

    alt = altitude if altitude is not None else 0.0
    if lat > 10:
        return "sahelian"
    if lat > 8:
        return "sudano_sahelian"
    if lat > 6 and alt > 800:
        return "adamaoua_plateau"
    if alt > 1000:
        return "western_highlands"
    if lon < 10 and lat < 5:
        return "equatorial_coastal"
    if lat < 5:
        return "equatorial_forest"
    return "guinea_savanna"


def classify_climate(lat: float, lon: float, altitude: Optional[float], language: str = "en") -> ClimateZone:
    key = climate_zone_key(lat, lon, altitude)
    zone, characteristics = _CLIMATE_TEXT[key][normalize_language(language)]
    return ClimateZone(key=key, zone=zone, characteristics=characteristics)


@dataclass(frozen=True, slots=True)
class ManualLocation:
    id: str
    label: str
    lat: float
    lon: float
    altitude: float


# Cities a farmer can pick when GPS is unavailable or refused.
MANUAL_LOCATIONS: Tuple[ManualLocation, ...] = (
    ManualLocation("douala", "Douala (Littoral)", 4.0503, 9.7, 13),
    ManualLocation("yaounde", "Yaoundé (Centre)", 3.8667, 11.5167, 726),
    ManualLocation("bafoussam", "Bafoussam (Ouest)", 5.4833, 10.4167, 1450),
    ManualLocation("bamenda", "Bamenda (Nord-Ouest)", 5.95, 10.15, 1600),
    ManualLocation("buea", "Buéa (Sud-Ouest)", 4.15, 9.2333, 1000),
    ManualLocation("ebolowa", "Ebolowa (Sud)", 2.9333, 11.15, 613),
    ManualLocation("bertoua", "Bertoua (Est)", 4.5833, 13.6833, 672),
    ManualLocation("ngaoundere", "Ngaoundéré (Adamaoua)", 7.3167, 13.5833, 1102),
    ManualLocation("garoua", "Garoua (Nord)", 9.3, 13.3833, 244),
    ManualLocation("maroua", "Maroua (Extrême-Nord)", 10.5917, 14.3167, 405),
)


def find_manual_location(city_id: str) -> Optional[ManualLocation]:
    for loc in MANUAL_LOCATIONS:
        if loc.id == city_id:
            return loc
    return None


def match_manual_location(lat: float, lon: float, tolerance: float = 0.01) -> Optional[ManualLocation]:
    """Return the selectable city sitting at (lat, lon), if any."""

    for loc in MANUAL_LOCATIONS:
        if abs(loc.lat - lat) < tolerance and abs(loc.lon - lon) < tolerance:
            return loc
    return None


def location_info(position: Position, language: str = "en") -> LocationInfo:
    """Derive region and climate details from a position (pure function)."""

    region = nearest_region(position.latitude, position.longitude)
    climate = classify_climate(position.latitude, position.longitude, position.altitude, language)
    return LocationInfo(
        region=region.region,
        region_name=region.region_name,
        nearest_city=region.nearest_city,
        distance_to_city_km=int(round(region.distance_km)),
        climate_zone=climate.zone,
        climate_characteristics=list(climate.characteristics),
        altitude=position.altitude,
        accuracy=position.accuracy,
        is_high_accuracy=position.accuracy < HIGH_ACCURACY_THRESHOLD_M,
    )
