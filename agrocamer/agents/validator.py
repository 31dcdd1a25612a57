"""
Result Validator
Checks analysis payloads returned by the remote functions and tags them as
a discriminated variant so callers never have to inspect optional fields.
"""
from dataclasses import dataclass
from typing import Any, Dict, List

from agrocamer.errors import UnexpectedResponseFormat

PLANT_KINDS = ("healthy", "diseased")
HARVEST_KINDS = ("good_quality", "needs_attention")

SEVERITY_LEVELS = ["healthy", "low", "medium", "high", "critical"]
HARVEST_GRADES = ["A", "B", "C"]
QUALITY_FIELDS = ["color", "size", "defects", "uniformity", "maturity"]


@dataclass(frozen=True)
class TaggedResult:
    kind: str
    payload: Dict[str, Any]
    warnings: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "result": self.payload, "warnings": list(self.warnings)}


def _confidence(payload: Dict[str, Any], warnings: List[str]) -> None:
    conf = payload.get("confidence")
    if conf is None:
        return
    try:
        value = float(conf)
    except (TypeError, ValueError):
        warnings.append(f"confidence is not numeric: {conf!r}")
        payload["confidence"] = 0.0
        return
    # Providers answer either 0-1 or 0-100; store 0-100
    if 0.0 <= value <= 1.0:
        value *= 100.0
    payload["confidence"] = max(0.0, min(100.0, value))


def tag_plant_result(payload: Any) -> TaggedResult:
    if not isinstance(payload, dict) or not payload:
        raise UnexpectedResponseFormat("Unexpected response format")
    result = dict(payload)
    warnings: List[str] = []
    _confidence(result, warnings)

    severity = result.get("severity")
    if severity is not None and severity not in SEVERITY_LEVELS:
        warnings.append(f"unknown severity: {severity}")

    healthy = bool(result.get("is_healthy")) or severity == "healthy"
    result["is_healthy"] = healthy
    if not healthy and not (result.get("disease_name") or result.get("description")):
        warnings.append("diseased result without disease name or description")
    return TaggedResult("healthy" if healthy else "diseased", result, warnings)


def quality_score(quality: Dict[str, Any]) -> int:
    """Single 0-100 score: mean of the positive criteria minus defects."""
    def _get(key: str) -> float:
        try:
            return float(quality.get(key) or 0)
        except (TypeError, ValueError):
            return 0.0

    return int(round((_get("color") + _get("size") + _get("uniformity") + _get("maturity") - _get("defects")) / 4))


def tag_harvest_result(payload: Any) -> TaggedResult:
    if not isinstance(payload, dict) or not payload:
        raise UnexpectedResponseFormat("Unexpected response format")
    result = dict(payload)
    warnings: List[str] = []

    grade = result.get("grade")
    if grade is not None and grade not in HARVEST_GRADES:
        warnings.append(f"unknown grade: {grade}")
    quality = result.get("quality")
    if isinstance(quality, dict):
        missing = [f for f in QUALITY_FIELDS if f not in quality]
        if missing:
            warnings.append("missing quality criteria: " + ", ".join(missing))
        result["quality_score"] = quality_score(quality)
    else:
        warnings.append("missing quality breakdown")

    good = bool(result.get("is_good_quality"))
    return TaggedResult("good_quality" if good else "needs_attention", result, warnings)
