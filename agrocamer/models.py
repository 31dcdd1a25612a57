"""Data models for positions and derived location information."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Final, List, Optional

# Accuracy (meters) given to manually picked cities: a low-confidence sentinel.
MANUAL_ACCURACY_M: Final[float] = 5000.0

# Fixes below this accuracy (meters) are reported as high accuracy.
HIGH_ACCURACY_THRESHOLD_M: Final[float] = 100.0


def now_ms() -> int:
    return int(time.time() * 1000)


class PositionSource(str, Enum):
    """Which mechanism produced the current coordinate."""

    GPS = "gps"
    CACHE = "cache"
    MANUAL = "manual"
    NONE = "none"


@dataclass(frozen=True, slots=True)
class Position:
    """A single resolved location.

    Attributes:
        latitude: Decimal degrees in [-90, 90].
        longitude: Decimal degrees in [-180, 180].
        altitude: Meters above sea level, when the device reports it.
        accuracy: Horizontal accuracy radius in meters (>= 0).
        altitude_accuracy: Vertical accuracy in meters.
        heading: Degrees clockwise from true north.
        speed: Meters/second.
        timestamp: Unix epoch milliseconds.
    """

    latitude: float
    longitude: float
    altitude: Optional[float] = None
    accuracy: float = 0.0
    altitude_accuracy: Optional[float] = None
    heading: Optional[float] = None
    speed: Optional[float] = None
    timestamp: int = 0

    def __post_init__(self) -> None:
        if not -90.0 <= self.latitude <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= self.longitude <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")
        if self.accuracy < 0:
            raise ValueError(f"accuracy must be >= 0: {self.accuracy}")

    @classmethod
    def manual(cls, latitude: float, longitude: float, altitude: Optional[float] = None,
               timestamp: Optional[int] = None) -> "Position":
        return cls(
            latitude=float(latitude),
            longitude=float(longitude),
            altitude=altitude,
            accuracy=MANUAL_ACCURACY_M,
            timestamp=timestamp if timestamp is not None else now_ms(),
        )

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Position":
        """Build from a location-provider success payload `{coords, timestamp}`."""

        coords = payload.get("coords") or {}
        return cls(
            latitude=float(coords["latitude"]),
            longitude=float(coords["longitude"]),
            altitude=coords.get("altitude"),
            accuracy=float(coords.get("accuracy") or 0.0),
            altitude_accuracy=coords.get("altitudeAccuracy"),
            heading=coords.get("heading"),
            speed=coords.get("speed"),
            timestamp=int(payload.get("timestamp") or now_ms()),
        )

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "Position":
        """Restore a persisted snapshot; motion fields are not trusted after a restart."""

        return cls(
            latitude=float(data["latitude"]),
            longitude=float(data["longitude"]),
            altitude=data.get("altitude"),
            accuracy=float(data.get("accuracy") or 0.0),
            timestamp=int(data.get("timestamp") or 0),
        )

    def snapshot(self) -> Dict[str, Any]:
        return {
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "accuracy": self.accuracy,
            "timestamp": self.timestamp,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class LocationInfo:
    """Region and climate details derived from a Position."""

    region: str
    region_name: str
    nearest_city: str
    distance_to_city_km: int
    climate_zone: str
    climate_characteristics: List[str] = field(default_factory=list)
    altitude: Optional[float] = None
    accuracy: float = 0.0
    is_high_accuracy: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
