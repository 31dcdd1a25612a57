"""
Localized user-facing messages.

French is the default language of the service; English is the second
supported language. Unknown languages fall back to French.
"""
from typing import Dict

DEFAULT_LANGUAGE = "fr"

SUPPORTED_LANGUAGES = {
    "fr": "Français",
    "en": "English",
}

MESSAGES: Dict[str, Dict[str, str]] = {
    # Geolocation
    "geo.unsupported": {
        "fr": "Géolocalisation non supportée par votre appareil",
        "en": "Geolocation is not supported by your device",
    },
    "geo.permission_denied": {
        "fr": "La permission de géolocalisation a été refusée. Autorisez l'accès à votre position ou choisissez une ville.",
        "en": "Location permission was denied. Allow access to your position or pick a city.",
    },
    "geo.position_unavailable": {
        "fr": "Position non disponible. Vérifiez que le GPS est activé.",
        "en": "Position unavailable. Check that GPS is turned on.",
    },
    "geo.timeout": {
        "fr": "Délai de géolocalisation dépassé. Réessayez.",
        "en": "Location request timed out. Try again.",
    },
    "geo.unknown": {
        "fr": "Erreur de géolocalisation inconnue",
        "en": "Unknown geolocation error",
    },
    "geo.cached_suffix": {
        "fr": "(position en cache utilisée)",
        "en": "(cached position used)",
    },
    # Compression / upload
    "image.not_image": {
        "fr": "Sélectionnez une photo (pas une vidéo).",
        "en": "Select a photo (not a video).",
    },
    "image.too_large": {
        "fr": "Photo trop lourde (max 15MB).",
        "en": "Photo too large (max 15MB).",
    },
    "image.too_complex": {
        "fr": "Photo trop complexe. Reprenez plus près ou avec moins de détails.",
        "en": "Photo too complex. Retake closer or with less detail.",
    },
    "image.unreadable": {
        "fr": "Impossible de lire l'image.",
        "en": "Could not read the image.",
    },
    # Analysis
    "analysis.no_image": {
        "fr": "Aucune image à analyser.",
        "en": "No image to analyze.",
    },
    "analysis.offline": {
        "fr": "Pas de connexion Internet.",
        "en": "No internet connection.",
    },
    "analysis.retrying": {
        "fr": "Nouvelle tentative dans {seconds}s...",
        "en": "Retrying in {seconds}s...",
    },
    "analysis.failed": {
        "fr": "Échec de l'analyse. Vérifiez votre connexion et réessayez.",
        "en": "Analysis failed. Check your connection and try again.",
    },
    "harvest.failed": {
        "fr": "Erreur lors de l'analyse. Veuillez réessayer.",
        "en": "Analysis error. Please try again.",
    },
    # Serverless endpoints
    "api.image_required": {
        "fr": "Image requise pour l'analyse",
        "en": "An image is required for analysis",
    },
    "api.no_provider": {
        "fr": "Aucun fournisseur IA configuré",
        "en": "No AI provider configured",
    },
    "api.providers_unavailable": {
        "fr": "Tous les services IA sont temporairement indisponibles. Veuillez réessayer plus tard.",
        "en": "All AI services are temporarily unavailable. Please try again later.",
    },
    "api.messages_required": {
        "fr": "Messages requis",
        "en": "Messages are required",
    },
    "api.weather_failed": {
        "fr": "Impossible de récupérer la météo",
        "en": "Could not fetch the weather",
    },
    "api.tips_failed": {
        "fr": "Impossible de générer les conseils",
        "en": "Could not generate tips",
    },
    "api.alerts_failed": {
        "fr": "Impossible de générer les alertes",
        "en": "Could not generate alerts",
    },
    "api.unexpected": {
        "fr": "Une erreur est survenue lors de l'analyse",
        "en": "An error occurred during the analysis",
    },
}


def normalize_language(language: str) -> str:
    lang = (language or "").strip().lower()[:2]
    return lang if lang in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def translate(key: str, language: str = DEFAULT_LANGUAGE, **params) -> str:
    """Return the message for `key` in `language`, formatted with `params`.

    Missing keys return the key itself so a typo never crashes a request.
    """
    entry = MESSAGES.get(key)
    if entry is None:
        return key
    text = entry.get(normalize_language(language)) or entry[DEFAULT_LANGUAGE]
    return text.format(**params) if params else text
