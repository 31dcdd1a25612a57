"""
Advisory Service
AI-generated seasonal tips, regional alerts and the farmer chat assistant.
Tips and alerts degrade to an empty list when no provider answers; the chat
assistant reports the failure so the client can retry.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from agrocamer.services import providers as ai
from agrocamer.services.analysis import CAMEROON_CROPS, AnalysisUnavailable

logger = logging.getLogger(__name__)

TIP_CATEGORIES = ("seasonal", "crops", "regional", "guides")
ALERT_TYPES = ("warning", "info", "danger")
ALERT_TTL = timedelta(hours=24)

MONTHS_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]


def _month_fr(now: datetime) -> str:
    return MONTHS_FR[now.month - 1]


def _language_name(language: str) -> str:
    return "français" if language == "fr" else "anglais"


def _category_prompt(category: str, region: str, month: str) -> str:
    prompts = {
        "seasonal": f"Génère 4 conseils agricoles saisonniers pour le mois de {month} au Cameroun, région {region}.",
        "crops": "Génère 4 conseils pratiques pour les cultures principales du Cameroun "
                 "(cacao, café, maïs, manioc, banane plantain).",
        "regional": f"Génère 4 conseils agricoles spécifiques à la région {region} du Cameroun.",
        "guides": "Génère 4 guides pratiques courts pour les agriculteurs camerounais "
                  "(préparation du sol, récolte, stockage, vente).",
    }
    return prompts.get(category, prompts["seasonal"])


def generate_tips(category: str = "seasonal", region: str = "centre", language: str = "fr",
                  now: Optional[datetime] = None, client=None) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    chain = ai.get_providers(gemini_limit=15, include_huggingface=True)
    if not chain:
        logger.warning("[Tips] No AI provider configured")
        return []
    prompt = (
        f"{_category_prompt(category, region, _month_fr(now))}\n\n"
        "Chaque conseil doit être pratique, adapté au contexte camerounais et court (50-100 mots).\n"
        "Réponds UNIQUEMENT avec un tableau JSON valide:\n"
        f'[{{"id": "unique_id", "title": "...", "content": "...", "category": "{category}", '
        '"readTime": "X min", "crop": "culture concernée si applicable"}]\n'
        f"Langue: {_language_name(language)}"
    )
    messages = [{"role": "user", "content": prompt}]
    res = ai.run_chain(chain, lambda p: _recoverable(ai.call_provider(
        p, "", messages, ai.extract_json_array, temperature=0.7, max_tokens=2048, client=client,
    )))
    if not res.success:
        logger.error("[Tips] All providers failed: %s", res.last_error)
        return []
    tips = []
    for i, tip in enumerate(res.value):
        if not isinstance(tip, dict) or not tip.get("title"):
            continue
        tip.setdefault("id", f"{category}-{i}")
        tip.setdefault("category", category)
        tips.append(tip)
    return tips


def generate_alerts(region: str = "centre", language: str = "fr", now: Optional[datetime] = None,
                    client=None) -> List[Dict[str, Any]]:
    now = now or datetime.now(timezone.utc)
    chain = ai.get_providers(gemini_limit=2)
    if not chain:
        logger.warning("[Alerts] No AI provider configured")
        return []
    prompt = (
        "Tu es un système d'alerte agricole pour le Cameroun.\n"
        f'Génère 1 à 2 alertes agricoles pertinentes pour la région "{region}" au mois de {_month_fr(now)}: '
        "ravageurs saisonniers, maladies des cultures, conditions météorologiques, calendrier agricole "
        "ou prix du marché.\n"
        "Réponds UNIQUEMENT avec un tableau JSON valide:\n"
        '[{"id": "unique_id", "type": "warning|info|danger", "title": "Titre court", '
        '"message": "Message détaillé (max 100 mots)"}]\n'
        f"Langue: {_language_name(language)}"
    )
    messages = [{"role": "user", "content": prompt}]
    res = ai.run_chain(chain, lambda p: _recoverable(ai.call_provider(
        p, "", messages, ai.extract_json_array, temperature=0.8, max_tokens=512, client=client,
    )))
    if not res.success:
        return []

    day = now.date().isoformat()
    expires = now + ALERT_TTL
    alerts = []
    for index, alert in enumerate(res.value):
        if not isinstance(alert, dict):
            continue
        kind = alert.get("type") if alert.get("type") in ALERT_TYPES else "info"
        alerts.append({
            "id": f"{day}-{region}-{index}",
            "type": kind,
            "title": str(alert.get("title", "")),
            "message": str(alert.get("message", "")),
            "region": region,
            "created_at": now.isoformat(),
            "expires_at": expires.isoformat(),
        })
    return alerts


def _recoverable(res: ai.ProviderResult) -> ai.ProviderResult:
    # Tips and alerts are best effort: any failure moves on to the next provider
    res.should_retry = True
    return res


def chat_system_prompt(region: str, language: str) -> str:
    lang = "Français" if language == "fr" else "English"
    answer_in = "français" if language == "fr" else "anglais"
    return (
        "Tu es AgroCamer Assistant, un conseiller agricole expert pour les agriculteurs camerounais.\n"
        f"Région de l'utilisateur: {region}. Langue: {lang}.\n"
        f"Compétences: cultures camerounaises ({CAMEROON_CROPS}), maladies des plantes, calendrier agricole, "
        "prix du marché, techniques durables, gestion des sols et irrigation.\n"
        f"Règles: réponds UNIQUEMENT en {answer_in}, vocabulaire simple, solutions locales et biologiques "
        "d'abord, 150 mots maximum; si tu ne sais pas, conseille un technicien agricole local."
    )


def chat_reply(messages: List[Dict[str, str]], language: str = "fr", region: str = "centre",
               client=None) -> str:
    chain = ai.get_providers()
    if not chain:
        raise AnalysisUnavailable("no_provider")
    history = [
        {"role": m.get("role", "user"), "content": str(m.get("content", ""))}
        for m in messages
        if m.get("role", "user") in ("user", "assistant")
    ]
    res = ai.run_chain(chain, lambda p: ai.call_provider(
        p, chat_system_prompt(region, language), history, lambda text: text.strip(),
        temperature=0.7, max_tokens=1024, client=client,
    ))
    if not res.success:
        raise AnalysisUnavailable("providers_failed", res.last_error)
    return res.value
