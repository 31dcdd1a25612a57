"""
Photo Analysis Service
Plant-disease diagnosis and harvest grading for Cameroonian crops, answered
by the AI provider chain as structured JSON.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from agrocamer.services import providers as ai
from agrocamer.services.geo import classify_climate, nearest_region

logger = logging.getLogger(__name__)

CAMEROON_CROPS = (
    "cacao, café, maïs, manioc, banane plantain, tomate, gombo, arachide, "
    "haricot, igname, macabo, patate douce"
)

PLANT_SCHEMA = """{
  "is_healthy": "boolean",
  "detected_crop": "string",
  "detected_crop_local": "string (local name if known)",
  "disease_name": "string (scientific or common name, empty when healthy)",
  "local_name": "string (Cameroonian local name if known)",
  "confidence": "number 0-100",
  "severity": "healthy | low | medium | high | critical",
  "description": "string",
  "causes": ["string"],
  "symptoms": ["string"],
  "biological_treatments": ["string"],
  "chemical_treatments": ["string (local trade names and dosage)"],
  "prevention": ["string"],
  "maintenance_tips": ["string"],
  "yield_improvement_tips": ["string"]
}"""

HARVEST_SCHEMA = """{
  "is_good_quality": "boolean",
  "detected_crop": "string",
  "detected_crop_local": "string",
  "grade": "A | B | C",
  "quality": {"color": 0-100, "size": 0-100, "defects": 0-100, "uniformity": 0-100, "maturity": 0-100},
  "issues_detected": ["string"],
  "recommendedUse": ["string"],
  "estimatedPrice": {"min": number, "max": number, "currency": "FCFA", "unit": "string", "market": "string"},
  "yield_estimation": {"estimated_yield_per_hectare": "string", "yield_potential": "low | medium | high | excellent",
                       "yield_factors": ["string"], "optimization_tips": ["string"]},
  "feedback": "string",
  "improvement_tips": ["string"],
  "storage_tips": ["string"],
  "selling_strategy": {"best_time_to_sell": "string", "target_buyers": ["string"], "negotiation_tips": ["string"]}
}"""


class AnalysisUnavailable(Exception):
    """Raised when no provider is configured or every provider failed."""

    def __init__(self, reason: str, details: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.details = details


def _language_name(language: str) -> str:
    return "français" if language == "fr" else "anglais"


def location_context(latitude: Optional[float], longitude: Optional[float],
                     altitude: Optional[float] = None) -> str:
    """One-line location hint appended to prompts when coordinates are known."""
    if latitude is None or longitude is None:
        return ""
    region = nearest_region(latitude, longitude)
    climate = classify_climate(latitude, longitude, altitude, "fr")
    alt = f", altitude {round(altitude)} m" if altitude is not None else ""
    return (f"Localisation: région {region.region_name} (près de {region.nearest_city}{alt}), "
            f"zone climatique {climate.zone}.")


def _run(prompt_system: str, prompt_user: str, image: str, client=None) -> Dict[str, Any]:
    chain = ai.get_providers(vision=True)
    if not chain:
        raise AnalysisUnavailable("no_provider")
    logger.info("[Analysis] Available providers: %s", ", ".join(p.name for p in chain))
    messages: List[Dict[str, str]] = [{"role": "user", "content": prompt_user}]
    res = ai.run_chain(chain, lambda p: ai.call_provider(
        p, prompt_system, messages, ai.extract_json_object, image=image, client=client,
    ))
    if not res.success:
        raise AnalysisUnavailable("providers_failed", res.last_error)
    return {
        "analysis": res.value,
        "analyzed_at": datetime.now(timezone.utc).isoformat(),
        "provider": res.provider,
    }


def analyze_plant(image: str, language: str = "fr", crop_hint: Optional[str] = None,
                  latitude: Optional[float] = None, longitude: Optional[float] = None,
                  altitude: Optional[float] = None, client=None) -> Dict[str, Any]:
    system = (
        "Tu es un expert agronome spécialisé dans les cultures camerounaises et les maladies des plantes "
        "en Afrique centrale. Identifie la culture, la maladie, le ravageur ou la carence, la gravité, et "
        "propose uniquement des traitements disponibles au Cameroun, en priorisant les solutions biologiques. "
        f"Cultures courantes: {CAMEROON_CROPS}."
    )
    hint = f" (indice: {crop_hint})" if crop_hint else ""
    user = (
        f"Analyse cette image de plante{hint}. {location_context(latitude, longitude, altitude)}\n"
        f"Réponds en {_language_name(language)} UNIQUEMENT avec un objet JSON valide suivant ce schéma:\n"
        f"{PLANT_SCHEMA}"
    )
    return _run(system, user, image, client)


def analyze_harvest(image: str, language: str = "fr", latitude: Optional[float] = None,
                    longitude: Optional[float] = None, altitude: Optional[float] = None,
                    region_name: Optional[str] = None, climate_zone: Optional[str] = None,
                    client=None) -> Dict[str, Any]:
    system = (
        "Tu es un expert en qualité des récoltes et en marchés agricoles au Cameroun. Évalue la qualité "
        "visible de la récolte, attribue une note A/B/C, estime le prix sur les marchés locaux en FCFA "
        "et donne des conseils de stockage et de vente."
    )
    context = location_context(latitude, longitude, altitude)
    if not context and region_name:
        context = f"Région: {region_name}."
    if climate_zone:
        context += f" Zone climatique déclarée: {climate_zone}."
    user = (
        f"Analyse cette photo de récolte. {context}\n"
        f"Réponds en {_language_name(language)} UNIQUEMENT avec un objet JSON valide suivant ce schéma:\n"
        f"{HARVEST_SCHEMA}"
    )
    return _run(system, user, image, client)
