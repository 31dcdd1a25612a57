"""
Analysis Orchestrators for AgroCamer

Drive one capture → compress → analyze → result flow per screen:
`DiagnosisOrchestrator` for plant-disease photos and `HarvestOrchestrator`
for harvest grading. Transient failures (network, 503/429) are retried with
exponential backoff; a new `analyze()` cancels the one in flight.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from agrocamer.agents.validator import TaggedResult, tag_harvest_result, tag_plant_result
from agrocamer.errors import (
    AnalysisError,
    AnalysisFailed,
    CompressionError,
    UnexpectedResponseFormat,
)
from agrocamer.i18n import DEFAULT_LANGUAGE, translate
from agrocamer.services.compression import (
    DIAGNOSIS_PRESET,
    HARVEST_PRESET,
    CompressionPolicy,
    CompressionStep,
    ImageCompressor,
    validate_upload,
)
from agrocamer.services.functions_client import FunctionsClient, classify_error
from agrocamer.services.geolocation import GeolocationResolver
from agrocamer.services.storage import HistoryStore

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.5  # seconds

Sleep = Callable[[float], Awaitable[Any]]


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


class AnalysisStep(str, Enum):
    CAPTURE = "capture"
    COMPRESSING = "compressing"
    ANALYZING = "analyzing"
    RESULT = "result"


class AnalysisOrchestrator:
    function_name = "analyze-plant"
    payload_key = "analysis"
    activity_type = "diagnosis"
    compression_policy: CompressionPolicy = DIAGNOSIS_PRESET
    failure_message_key = "analysis.failed"
    log_prefix = "[Diagnosis]"

    def __init__(
        self,
        client: FunctionsClient,
        resolver: Optional[GeolocationResolver] = None,
        compressor: Optional[ImageCompressor] = None,
        history: Optional[HistoryStore] = None,
        language: str = DEFAULT_LANGUAGE,
        max_retries: int = MAX_RETRIES,
        retry_base_delay: float = RETRY_BASE_DELAY,
        sleep: Sleep = asyncio.sleep,
        on_notice: Optional[Callable[[str], None]] = None,
    ):
        self.client = client
        self.resolver = resolver
        self.compressor = compressor or ImageCompressor()
        self.history = history
        self.language = language
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._notice = on_notice or (lambda message: None)
        self._task: Optional[asyncio.Task] = None

        self.is_online = True
        self.step = AnalysisStep.CAPTURE
        self.compression_step = CompressionStep.IDLE
        self.compression_progress = 0
        self.image_base64: Optional[str] = None
        self.result: Optional[TaggedResult] = None
        self.error: Optional[str] = None
        self.retry_count = 0

    # -- capture -----------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self.compression_step == CompressionStep.READY and self.image_base64 is not None

    def _on_progress(self, step: CompressionStep, progress: int) -> None:
        self.compression_step = step
        self.compression_progress = progress

    def load_image(self, data: bytes, content_type: Optional[str] = "image/jpeg") -> bool:
        """Validate and compress a captured photo; False when the user must retake it."""
        self.step = AnalysisStep.COMPRESSING
        self.compression_step = CompressionStep.IDLE
        self.compression_progress = 0
        self.image_base64 = None
        self.result = None
        self.error = None
        self.retry_count = 0
        try:
            validate_upload(data, content_type, self.language)
            compressed = self.compressor.compress(
                data, self.compression_policy, on_progress=self._on_progress, language=self.language
            )
        except CompressionError as e:
            logger.error("%s Compression error: %s", self.log_prefix, e)
            self.error = e.message
            self.step = AnalysisStep.CAPTURE
            self.compression_step = CompressionStep.ERROR
            return False
        self.image_base64 = compressed.base64
        self.step = AnalysisStep.CAPTURE
        return True

    def clear_image(self) -> None:
        self.image_base64 = None
        self.compression_step = CompressionStep.IDLE
        self.compression_progress = 0

    # -- analysis ----------------------------------------------------------------

    def build_body(self, crop_hint: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"image": self.image_base64, "language": self.language}
        if crop_hint:
            body["userSpecifiedCrop"] = crop_hint
        position = self.resolver.position if self.resolver is not None else None
        if position is not None:
            body.update({
                "latitude": position.latitude,
                "longitude": position.longitude,
                "altitude": position.altitude,
                "accuracy": position.accuracy,
            })
        return body

    def tag(self, payload: Any) -> TaggedResult:
        return tag_plant_result(payload)

    def activity_metadata(self, tagged: TaggedResult) -> Dict[str, Any]:
        result = tagged.payload
        info = self.resolver.location_info if self.resolver is not None else None
        return {
            "crop": result.get("detected_crop") or result.get("affected_crop"),
            "disease": result.get("disease_name"),
            "severity": result.get("severity"),
            "confidence": result.get("confidence"),
            "is_healthy": tagged.kind == "healthy",
            "region": info.region_name if info is not None else None,
        }

    async def analyze(self, crop_hint: Optional[str] = None) -> Optional[TaggedResult]:
        """Run the remote analysis; returns None when superseded by a newer call.

        Raises AnalysisFailed (localized) on terminal errors, after resetting
        the flow to the capture step with the image kept for a retry.
        """
        if not self.image_base64:
            raise AnalysisFailed(translate("analysis.no_image", self.language))
        if not self.is_online:
            raise AnalysisFailed(translate("analysis.offline", self.language))

        if self._task is not None and not self._task.done():
            logger.info("%s Cancelling previous analysis", self.log_prefix)
            self._task.cancel()

        task = asyncio.ensure_future(self._run(self.build_body(crop_hint)))
        self._task = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._task is not task:
                return None
            raise

    async def _invoke(self, body: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.client.invoke(self.function_name, body)
        if response.error is not None:
            raise classify_error(response.error)
        data = response.data or {}
        if data.get("error"):
            raise classify_error(str(data["error"]))
        if data.get("success") and data.get(self.payload_key):
            return data[self.payload_key]
        raise UnexpectedResponseFormat("Unexpected response format")

    async def _run(self, body: Dict[str, Any]) -> TaggedResult:
        attempt = 0
        while True:
            self.step = AnalysisStep.ANALYZING
            self.retry_count = attempt
            try:
                tagged = self.tag(await self._invoke(body))
                break
            except AnalysisError as e:
                if e.retryable and attempt < self.max_retries:
                    delay = self.retry_base_delay * (2 ** attempt)
                    logger.info("%s Retrying in %.1fs (attempt %d/%d): %s",
                                self.log_prefix, delay, attempt + 1, self.max_retries, e)
                    self._notice(translate("analysis.retrying", self.language, seconds=round(delay)))
                    await self._sleep(delay)
                    attempt += 1
                    continue
                logger.error("%s Analysis error: %s", self.log_prefix, e)
                self.step = AnalysisStep.CAPTURE
                self.retry_count = 0
                self.error = translate(self.failure_message_key, self.language)
                raise AnalysisFailed(self.error, e) from e

        self.result = tagged
        self.error = None
        self.step = AnalysisStep.RESULT
        self.retry_count = 0
        await self._record(tagged)
        return tagged

    async def _record(self, tagged: TaggedResult) -> None:
        # Recording never turns a finished analysis into a failure
        if self.history is not None:
            try:
                self.history.append(tagged.kind, tagged.payload, activity_type=self.activity_type)
            except (OSError, TypeError, ValueError) as e:
                logger.warning("%s Failed to save history entry: %s", self.log_prefix, e)
        try:
            metadata = self.activity_metadata(tagged)
        except (AttributeError, KeyError, TypeError) as e:
            logger.warning("%s Could not build activity metadata: %s", self.log_prefix, e)
            return
        await self.client.log_activity(self.activity_type, metadata)

    # -- teardown ----------------------------------------------------------------

    def reset(self) -> None:
        self.cancel()
        self.step = AnalysisStep.CAPTURE
        self.compression_step = CompressionStep.IDLE
        self.compression_progress = 0
        self.image_base64 = None
        self.result = None
        self.error = None
        self.retry_count = 0

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def close(self) -> None:
        task = self._task
        self.cancel()
        if task is not None:
            try:
                await task
            except (asyncio.CancelledError, AnalysisError):
                pass


class DiagnosisOrchestrator(AnalysisOrchestrator):
    pass


class HarvestOrchestrator(AnalysisOrchestrator):
    function_name = "analyze-harvest"
    activity_type = "harvest_analysis"
    compression_policy = HARVEST_PRESET
    failure_message_key = "harvest.failed"
    log_prefix = "[HarvestAnalysis]"

    def build_body(self, crop_hint: Optional[str] = None) -> Dict[str, Any]:
        body = super().build_body(crop_hint)
        info = self.resolver.location_info if self.resolver is not None else None
        body["regionName"] = info.region_name if info is not None else None
        body["climateZone"] = info.climate_zone if info is not None else None
        return body

    def tag(self, payload: Any) -> TaggedResult:
        return tag_harvest_result(payload)

    def activity_metadata(self, tagged: TaggedResult) -> Dict[str, Any]:
        result = tagged.payload
        price = _as_dict(result.get("estimatedPrice"))
        yield_info = _as_dict(result.get("yield_estimation"))
        info = self.resolver.location_info if self.resolver is not None else None
        return {
            "crop": result.get("detected_crop"),
            "grade": result.get("grade"),
            "quality_score": result.get("quality_score"),
            "price_min": price.get("min"),
            "price_max": price.get("max"),
            "market": price.get("market"),
            "yield_potential": yield_info.get("yield_potential"),
            "region": info.region_name if info is not None else None,
        }
