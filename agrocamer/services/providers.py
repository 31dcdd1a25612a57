"""
AI Provider Chain
Calls an OpenAI-compatible AI gateway, then Google Gemini keys, then
(optionally) Hugging Face router keys, in that order, until one returns a
usable answer. Each key is a separate provider so quota exhaustion on one
key falls through to the next.
"""
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

GATEWAY_API_URL = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
GATEWAY_VISION_MODEL = "google/gemini-2.5-pro"
GATEWAY_TEXT_MODEL = "google/gemini-2.5-flash"
GEMINI_MODEL = "gemini-2.0-flash"
GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
HF_ROUTER_URL = "https://router.huggingface.co/v1/chat/completions"
HF_FALLBACK_MODEL = "meta-llama/Llama-3.1-8B-Instruct"

# Statuses worth trying the next provider for (quota, billing, overload).
RECOVERABLE_STATUSES = (402, 429, 500, 503, 529)

REQUEST_TIMEOUT = 60.0


@dataclass
class Provider:
    name: str
    kind: str  # "gateway" | "gemini" | "huggingface"
    endpoint: str
    api_key: str
    model: str


@dataclass
class ProviderResult:
    success: bool
    value: Any = None
    error: Optional[str] = None
    should_retry: bool = False
    provider: Optional[str] = None


@dataclass
class ChainResult:
    success: bool
    value: Any = None
    provider: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    @property
    def last_error(self) -> str:
        return self.errors[-1] if self.errors else "Unknown error"


def sanitize_api_key(key: Optional[str]) -> Optional[str]:
    """Strip quotes, `Bearer ` prefixes, `?key=` URLs and invisible characters from a pasted key."""
    if not key:
        return None
    k = key.strip()
    if len(k) >= 2 and k[0] == k[-1] and k[0] in ("'", '"'):
        k = k[1:-1].strip()
    m = re.search(r"(?:\?|&)key=([^&\s]+)", k, flags=re.IGNORECASE)
    if m:
        k = m.group(1)
    k = re.sub(r"^(authorization:\s*|bearer\s+|token\s+)", "", k, flags=re.IGNORECASE)
    k = re.sub(r"\s+", "", k)
    k = "".join(ch for ch in k if 0x20 < ord(ch) <= 0x7E)
    return k or None


def get_gemini_api_keys(limit: int = 15) -> List[str]:
    """Return Gemini keys: GEMINI_API_KEY_1..limit, then GEMINI_API_KEYS (comma/newline separated)."""
    keys: List[str] = []
    for i in range(1, limit + 1):
        k = sanitize_api_key(os.getenv(f"GEMINI_API_KEY_{i}"))
        if k and k not in keys:
            keys.append(k)
    raw = os.getenv("GEMINI_API_KEYS", "") or ""
    for chunk in raw.replace(",", "\n").splitlines():
        token = chunk.strip()
        if not token:
            continue
        k = sanitize_api_key(token.split()[0])
        if k and k not in keys:
            keys.append(k)
    return keys


def get_providers(gemini_limit: int = 5, include_huggingface: bool = False, vision: bool = False) -> List[Provider]:
    providers: List[Provider] = []

    gateway_key = sanitize_api_key(os.getenv("AI_GATEWAY_API_KEY"))
    if gateway_key:
        providers.append(Provider(
            name="AI Gateway",
            kind="gateway",
            endpoint=GATEWAY_API_URL,
            api_key=gateway_key,
            model=GATEWAY_VISION_MODEL if vision else GATEWAY_TEXT_MODEL,
        ))

    for i, key in enumerate(get_gemini_api_keys()[:gemini_limit], start=1):
        providers.append(Provider(
            name=f"Gemini API {i}",
            kind="gemini",
            endpoint=GEMINI_API_URL.format(model=GEMINI_MODEL),
            api_key=key,
            model=GEMINI_MODEL,
        ))

    if include_huggingface and not vision:
        for i in range(1, 6):
            key = sanitize_api_key(os.getenv(f"HUGGINGFACE_API_KEY_{i}"))
            if key:
                providers.append(Provider(
                    name=f"HuggingFace API {i}",
                    kind="huggingface",
                    endpoint=HF_ROUTER_URL,
                    api_key=key,
                    model=HF_FALLBACK_MODEL,
                ))
    return providers


def is_recoverable_status(status: int) -> bool:
    return status in RECOVERABLE_STATUSES


def _strip_fences(content: str) -> str:
    txt = (content or "").strip()
    if txt.startswith("```json"):
        txt = txt[7:]
    if txt.startswith("```"):
        txt = txt[3:]
    if txt.endswith("```"):
        txt = txt[:-3]
    return txt.strip()


def _extract_balanced(txt: str, open_ch: str, close_ch: str) -> Any:
    start = txt.find(open_ch)
    if start == -1:
        raise ValueError(f"No JSON '{open_ch}' found")
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(txt)):
        ch = txt[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return json.loads(txt[start:i + 1])
    raise ValueError("No complete JSON value found")


def extract_json_object(content: str) -> Dict[str, Any]:
    """Parse the first JSON object in a model answer (handles code fences and trailing prose)."""
    txt = _strip_fences(content)
    try:
        data = json.loads(txt)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass
    data = _extract_balanced(txt, "{", "}")
    if not isinstance(data, dict):
        raise ValueError("JSON value is not an object")
    return data


def extract_json_array(content: str) -> List[Any]:
    txt = _strip_fences(content)
    try:
        data = json.loads(txt)
        if isinstance(data, list):
            return data
    except ValueError:
        pass
    data = _extract_balanced(txt, "[", "]")
    if not isinstance(data, list):
        raise ValueError("JSON value is not an array")
    return data


def _image_data_url(image: str) -> str:
    return image if image.startswith("data:") else f"data:image/jpeg;base64,{image}"


def _image_base64(image: str) -> str:
    return image.split(",", 1)[1] if image.startswith("data:") else image


def build_request(provider: Provider, system_prompt: str, messages: List[Dict[str, str]],
                  image: Optional[str] = None, temperature: float = 0.4,
                  max_tokens: int = 4096) -> Tuple[Dict[str, str], Dict[str, Any], Dict[str, str]]:
    """Return (headers, json body, query params) for one provider call."""
    if provider.kind == "gemini":
        parts: List[Dict[str, Any]] = []
        if len(messages) == 1:
            turns = [messages[0].get("content", "")]
        else:
            turns = [f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages]
        parts.append({"text": "\n\n".join([system_prompt] + turns) if system_prompt else "\n\n".join(turns)})
        if image:
            parts.append({"inline_data": {"mime_type": "image/jpeg", "data": _image_base64(image)}})
        body = {
            "contents": [{"parts": parts}],
            "generationConfig": {"temperature": temperature, "maxOutputTokens": max_tokens},
        }
        return {"Content-Type": "application/json"}, body, {"key": provider.api_key}

    chat: List[Dict[str, Any]] = []
    if system_prompt:
        chat.append({"role": "system", "content": system_prompt})
    for i, m in enumerate(messages):
        if image and i == len(messages) - 1:
            chat.append({
                "role": m.get("role", "user"),
                "content": [
                    {"type": "text", "text": m.get("content", "")},
                    {"type": "image_url", "image_url": {"url": _image_data_url(image)}},
                ],
            })
        else:
            chat.append({"role": m.get("role", "user"), "content": m.get("content", "")})
    body = {"model": provider.model, "messages": chat, "temperature": temperature, "max_tokens": max_tokens}
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {provider.api_key}"}
    return headers, body, {}


def response_text(provider: Provider, data: Dict[str, Any]) -> Optional[str]:
    if provider.kind == "gemini":
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return None


def call_provider(
    provider: Provider,
    system_prompt: str,
    messages: List[Dict[str, str]],
    parse: Callable[[str], Any],
    image: Optional[str] = None,
    temperature: float = 0.4,
    max_tokens: int = 4096,
    client: Optional[httpx.Client] = None,
) -> ProviderResult:
    """Call one provider and parse its text answer with `parse`."""
    logger.info("[Providers] Trying provider: %s", provider.name)
    headers, body, params = build_request(provider, system_prompt, messages, image, temperature, max_tokens)
    try:
        if client is not None:
            resp = client.post(provider.endpoint, json=body, headers=headers, params=params)
        else:
            with httpx.Client(timeout=REQUEST_TIMEOUT) as c:
                resp = c.post(provider.endpoint, json=body, headers=headers, params=params)
    except httpx.HTTPError as e:
        logger.error("[Providers] %s exception: %s", provider.name, e)
        return ProviderResult(False, error=f"{provider.name}: {e}", should_retry=True, provider=provider.name)

    if resp.status_code >= 400:
        logger.error("[Providers] %s error: %s %s", provider.name, resp.status_code, resp.text[:300])
        return ProviderResult(
            False,
            error=f"{provider.name}: {resp.status_code}",
            should_retry=is_recoverable_status(resp.status_code),
            provider=provider.name,
        )

    try:
        text = response_text(provider, resp.json())
        if not text:
            raise ValueError("empty answer")
        value = parse(text)
    except ValueError as e:
        logger.error("[Providers] %s: parse error: %s", provider.name, e)
        return ProviderResult(False, error=f"{provider.name}: Parse error", should_retry=True, provider=provider.name)

    logger.info("[Providers] %s succeeded", provider.name)
    return ProviderResult(True, value=value, provider=provider.name)


def run_chain(providers: List[Provider], call: Callable[[Provider], ProviderResult]) -> ChainResult:
    """Try providers in order; stop on success or on a non-recoverable failure."""
    errors: List[str] = []
    for provider in providers:
        res = call(provider)
        if res.success:
            return ChainResult(True, res.value, provider.name, errors)
        errors.append(res.error or "Unknown error")
        if not res.should_retry:
            logger.warning("[Providers] %s: non-recoverable error, stopping fallback chain", provider.name)
            break
        logger.info("[Providers] %s failed, trying next provider...", provider.name)
    if errors:
        logger.error("[Providers] All AI providers failed. Last error: %s", errors[-1])
    return ChainResult(False, errors=errors)
