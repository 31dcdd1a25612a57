"""
Client for the serverless functions (`analyze-plant`, `analyze-harvest`,
`get-weather`, `get-tips`, `get-alerts`, `chat-assistant`) and the
activity log.

`invoke()` never raises for HTTP or transport failures: it returns an
`InvokeResponse` whose `error` carries the status code when there was one,
so callers can classify failures without parsing exception text.
"""
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import httpx

from agrocamer.errors import AnalysisError, NetworkError, TransientServerError

logger = logging.getLogger(__name__)

FUNCTION_NAMES = (
    "analyze-plant",
    "analyze-harvest",
    "get-weather",
    "get-tips",
    "get-alerts",
    "chat-assistant",
)

TRANSIENT_STATUSES = (429, 503)
NETWORK_MARKERS = ("fetch", "network", "Failed to send")
TRANSIENT_MARKERS = ("503", "429", "temporarily")


@dataclass
class InvokeError:
    message: str
    status: Optional[int] = None
    network: bool = False


@dataclass
class InvokeResponse:
    data: Optional[Dict[str, Any]] = None
    error: Optional[InvokeError] = None


def classify_error(error: Union[InvokeError, str, Exception]) -> AnalysisError:
    """Map a failed call onto the analysis error taxonomy.

    Structured information (transport failure, HTTP status) is used first;
    otherwise the message text decides, which keeps the retry boundary of
    the web client: network/fetch failures and 503/429/"temporarily" retry,
    anything else does not.
    """
    if isinstance(error, AnalysisError):
        return error
    status = None
    network = False
    if isinstance(error, InvokeError):
        message, status, network = error.message, error.status, error.network
    else:
        message = str(error)

    if network:
        return NetworkError(message)
    if status in TRANSIENT_STATUSES:
        return TransientServerError(message, status)
    if any(marker in message for marker in NETWORK_MARKERS):
        return NetworkError(message)
    if any(marker in message for marker in TRANSIENT_MARKERS):
        return TransientServerError(message, status)
    return AnalysisError(message)


class FunctionsClient:
    """Async HTTP client for `{base_url}/functions/v1/<name>`."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or os.getenv("AGROCAMER_API_URL", "http://localhost:8000")).rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("AGROCAMER_API_KEY", "")
        self.access_token = access_token
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
        token = self.access_token or self.api_key
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def invoke(self, name: str, body: Dict[str, Any]) -> InvokeResponse:
        if name not in FUNCTION_NAMES:
            raise ValueError(f"Unknown function: {name}")
        url = f"{self.base_url}/functions/v1/{name}"
        try:
            resp = await self._client.post(url, json=body, headers=self._headers())
        except httpx.TransportError as e:
            logger.warning("[Functions] %s transport failure: %s", name, e)
            return InvokeResponse(error=InvokeError(f"Failed to send a request to the function: {e}", network=True))

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.status_code >= 400:
            detail = data.get("error") if isinstance(data, dict) else None
            message = f"{name} returned {resp.status_code}: {detail or resp.text[:200]}"
            logger.warning("[Functions] %s", message)
            return InvokeResponse(data=data if isinstance(data, dict) else None,
                                  error=InvokeError(message, status=resp.status_code))
        if not isinstance(data, dict):
            return InvokeResponse(error=InvokeError(f"{name} returned a non-JSON body", status=resp.status_code))
        return InvokeResponse(data=data)

    async def log_activity(self, activity_type: str, metadata: Dict[str, Any]) -> bool:
        """Best-effort activity logging; needs a signed-in user."""
        if not self.access_token:
            return False
        try:
            resp = await self._client.post(
                f"{self.base_url}/api/activity",
                json={"activity_type": activity_type, "metadata": metadata},
                headers=self._headers(),
            )
            resp.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error("Failed to log activity: %s", e)
            return False

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
