import pytest

from agrocamer.models import MANUAL_ACCURACY_M, Position
from agrocamer.services import geo
from agrocamer.services.geo import (
    CAMEROON_REGIONS,
    MANUAL_LOCATIONS,
    Region,
    classify_climate,
    climate_zone_key,
    find_manual_location,
    haversine_km,
    location_info,
    match_manual_location,
    nearest_region,
)


def test_haversine_zero_distance():
    assert haversine_km(3.8667, 11.5167, 3.8667, 11.5167) == 0.0


def test_haversine_douala_yaounde():
    d = haversine_km(4.0503, 9.7, 3.8667, 11.5167)
    assert 195 < d < 210


def test_ten_regions():
    assert len(CAMEROON_REGIONS) == 10
    assert len({r.id for r in CAMEROON_REGIONS}) == 10


@pytest.mark.parametrize("region", CAMEROON_REGIONS, ids=lambda r: r.id)
def test_region_centre_maps_to_itself(region):
    match = nearest_region(region.lat, region.lon)
    assert match.region == region.id
    assert match.nearest_city == region.city
    assert match.distance_km == pytest.approx(0.0, abs=1e-6)


GRID = [(lat / 2, lon / 2) for lat in range(3, 26, 3) for lon in range(17, 33, 3)]


@pytest.mark.parametrize("lat,lon", GRID)
def test_nearest_region_matches_brute_force(lat, lon):
    distances = [haversine_km(lat, lon, r.lat, r.lon) for r in CAMEROON_REGIONS]
    best = CAMEROON_REGIONS[distances.index(min(distances))]
    match = nearest_region(lat, lon)
    assert match.region == best.id
    assert match.distance_km == pytest.approx(min(distances))


def test_nearest_region_tie_keeps_first_entry(monkeypatch):
    twins = (
        Region("first", "First", "Alpha", 4.0, 10.0),
        Region("second", "Second", "Beta", 4.0, 10.0),
    )
    monkeypatch.setattr(geo, "CAMEROON_REGIONS", twins)
    assert nearest_region(5.0, 11.0).region == "first"
    assert nearest_region(4.0, 10.0).region == "first"


def test_limbe_is_south_west():
    match = nearest_region(4.0167, 9.2)
    assert match.region == "sud-ouest"
    assert match.region_name == "Sud-Ouest"


def test_sahelian_takes_precedence():
    assert climate_zone_key(11, 12, 500) == "sahelian"
    assert classify_climate(11, 12, 500).zone.startswith("Sahelian")


def test_sudano_sahelian_band():
    assert climate_zone_key(9.3, 13.38, 244) == "sudano_sahelian"


def test_adamaoua_plateau_needs_altitude():
    assert climate_zone_key(7.3, 13.5, 1102) == "adamaoua_plateau"


def test_western_highlands():
    assert climate_zone_key(5.48, 10.42, 1450) == "western_highlands"


def test_coastal_and_forest():
    assert climate_zone_key(4.05, 9.7, 13) == "equatorial_coastal"
    assert climate_zone_key(3.87, 11.52, 726) == "equatorial_forest"


def test_missing_altitude_counts_as_zero():
    assert climate_zone_key(5.48, 10.42, None) == climate_zone_key(5.48, 10.42, 0)


def test_climate_is_localized():
    fr = classify_climate(3.87, 11.52, 726, "fr")
    en = classify_climate(3.87, 11.52, 726, "en")
    assert fr.key == en.key
    assert fr.zone != en.zone
    assert en.characteristics


def test_yaounde_location_info():
    info = location_info(Position(latitude=3.8667, longitude=11.5167, altitude=726, accuracy=15.0), "en")
    assert info.region == "centre"
    assert info.nearest_city == "Yaoundé"
    assert info.distance_to_city_km == 0
    assert info.climate_zone == "Equatorial forest"
    assert info.is_high_accuracy is True


def test_manual_accuracy_is_not_high_accuracy():
    info = location_info(Position.manual(4.0503, 9.7, 13))
    assert info.accuracy == MANUAL_ACCURACY_M
    assert info.is_high_accuracy is False


def test_manual_city_lookup():
    assert len(MANUAL_LOCATIONS) == 10
    bamenda = find_manual_location("bamenda")
    assert bamenda is not None and bamenda.altitude == 1600
    assert find_manual_location("paris") is None
    assert match_manual_location(5.95, 10.15).id == "bamenda"
    assert match_manual_location(0.0, 0.0) is None
