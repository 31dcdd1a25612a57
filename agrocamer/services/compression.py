"""
Image Compression Engine

Turns an arbitrary photo into a JPEG payload that fits an upload byte budget,
for farmers on slow mobile networks. Two policies are provided as named
presets:

- `diagnosis` (progressive): lowers JPEG quality first at each resolution
  tier, then shrinks the longer side and resets quality, until the payload
  fits the budget or both floors are reached. Fails when the best result is
  still above 1.5x the budget.
- `harvest` (scheduled): tries a fixed list of (scale, quality) passes and
  accepts the first that fits, else a fixed aggressive encode. Never fails
  on size.

The engine only talks to an `ImageCodec`; `PillowCodec` is the default.
"""
import base64
import logging
from dataclasses import dataclass, field
from enum import Enum
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, Union

from PIL import Image, ImageOps, UnidentifiedImageError

from agrocamer.errors import CompressionTooLarge, ImageTooLarge, InvalidImage
from agrocamer.i18n import DEFAULT_LANGUAGE, translate

logger = logging.getLogger(__name__)

TARGET_MAX_BYTES = 400 * 1024
MAX_UPLOAD_BYTES = 15 * 1024 * 1024


class CompressionStep(str, Enum):
    IDLE = "idle"
    READING = "reading"
    RESIZING = "resizing"
    COMPRESSING = "compressing"
    READY = "ready"
    ERROR = "error"


ProgressCallback = Callable[[CompressionStep, int], None]


class ImageCodec(Protocol):
    def decode(self, data: bytes) -> Any: ...

    def dimensions(self, raster: Any) -> Tuple[int, int]: ...

    def resize(self, raster: Any, width: int, height: int) -> Any: ...

    def encode_jpeg(self, raster: Any, quality: float) -> bytes: ...


class PillowCodec:
    """ImageCodec backed by Pillow."""

    def decode(self, data: bytes) -> Image.Image:
        try:
            img = Image.open(BytesIO(data))
            img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidImage(f"Could not decode image: {e}") from e
        # Phone cameras store rotation in EXIF; bake it in before resizing
        img = ImageOps.exif_transpose(img)
        if img.mode != "RGB":
            img = img.convert("RGB")
        return img

    def dimensions(self, raster: Image.Image) -> Tuple[int, int]:
        return raster.size

    def resize(self, raster: Image.Image, width: int, height: int) -> Image.Image:
        if raster.size == (width, height):
            return raster
        return raster.resize((width, height), Image.Resampling.LANCZOS)

    def encode_jpeg(self, raster: Image.Image, quality: float) -> bytes:
        buf = BytesIO()
        q = max(1, min(95, int(round(quality * 100))))
        raster.save(buf, format="JPEG", quality=q, optimize=True)
        return buf.getvalue()


@dataclass(frozen=True)
class ProgressivePolicy:
    name: str = "diagnosis"
    target_bytes: int = TARGET_MAX_BYTES
    initial_dimension: int = 768
    min_dimension: int = 384
    initial_quality: float = 0.75
    min_quality: float = 0.30
    quality_step: float = 0.08
    dimension_factor: float = 0.8
    max_attempts: int = 12
    ceiling_ratio: float = 1.5

    @property
    def ceiling_bytes(self) -> float:
        return self.target_bytes * self.ceiling_ratio


@dataclass(frozen=True)
class SchedulePolicy:
    name: str = "harvest"
    target_bytes: int = TARGET_MAX_BYTES
    max_dimension: int = 1024
    passes: Tuple[Tuple[float, float], ...] = (
        (1.0, 0.8),
        (0.85, 0.7),
        (0.7, 0.6),
        (0.5, 0.5),
        (0.4, 0.4),
    )
    fallback: Tuple[float, float] = (0.3, 0.3)
    passthrough_on_decode_error: bool = True


CompressionPolicy = Union[ProgressivePolicy, SchedulePolicy]

DIAGNOSIS_PRESET = ProgressivePolicy()
HARVEST_PRESET = SchedulePolicy()

PRESETS: Dict[str, CompressionPolicy] = {
    DIAGNOSIS_PRESET.name: DIAGNOSIS_PRESET,
    HARVEST_PRESET.name: HARVEST_PRESET,
}


@dataclass(frozen=True)
class CompressionAttempt:
    width: int
    height: int
    quality: float
    size: int


@dataclass
class CompressionResult:
    payload: bytes
    width: int
    height: int
    quality: float
    attempts: int
    policy: str
    trace: List[CompressionAttempt] = field(default_factory=list)
    passthrough: bool = False

    @property
    def size(self) -> int:
        return len(self.payload)

    @property
    def base64(self) -> str:
        return base64.b64encode(self.payload).decode("ascii")

    @property
    def data_url(self) -> str:
        return f"data:image/jpeg;base64,{self.base64}"

    def summary(self) -> Dict[str, Any]:
        return {
            "policy": self.policy,
            "size": self.size,
            "width": self.width,
            "height": self.height,
            "quality": round(self.quality, 2),
            "attempts": self.attempts,
        }


def decode_base64_image(text: str) -> bytes:
    """Accept either raw base64 or a `data:image/...;base64,` URL."""
    if "," in text and text.lstrip().startswith("data:"):
        text = text.split(",", 1)[1]
    try:
        return base64.b64decode(text, validate=False)
    except (ValueError, TypeError) as e:
        raise InvalidImage(f"Invalid base64 image: {e}") from e


def validate_upload(data: bytes, content_type: Optional[str], language: str = DEFAULT_LANGUAGE) -> None:
    """Reject non-image uploads and files above 15 MiB before any decoding."""
    if content_type is not None and not content_type.startswith("image/"):
        raise InvalidImage(translate("image.not_image", language))
    if len(data) > MAX_UPLOAD_BYTES:
        raise ImageTooLarge(translate("image.too_large", language))


def _scaled_size(width: int, height: int, max_dimension: int) -> Tuple[int, int]:
    # Scale down only; the longer side is constrained
    scale = min(1.0, max_dimension / max(width, height))
    return max(1, int(width * scale + 0.5)), max(1, int(height * scale + 0.5))


class ImageCompressor:
    """Compress images under a byte budget according to a policy."""

    def __init__(self, codec: Optional[ImageCodec] = None):
        self.codec = codec or PillowCodec()

    def compress(
        self,
        data: bytes,
        policy: Union[CompressionPolicy, str] = DIAGNOSIS_PRESET,
        on_progress: Optional[ProgressCallback] = None,
        language: str = DEFAULT_LANGUAGE,
    ) -> CompressionResult:
        if isinstance(policy, str):
            try:
                policy = PRESETS[policy]
            except KeyError:
                raise ValueError(f"Unknown compression preset: {policy}")
        report = on_progress or (lambda step, progress: None)
        if isinstance(policy, SchedulePolicy):
            return self._compress_scheduled(data, policy, report)
        return self._compress_progressive(data, policy, report, language)

    def _render(self, source: Any, width: int, height: int, quality: float,
                trace: List[CompressionAttempt]) -> Tuple[Any, bytes]:
        raster = self.codec.resize(source, width, height)
        payload = self.codec.encode_jpeg(raster, quality)
        trace.append(CompressionAttempt(width, height, quality, len(payload)))
        return raster, payload

    def _compress_progressive(self, data: bytes, policy: ProgressivePolicy,
                              report: ProgressCallback, language: str) -> CompressionResult:
        report(CompressionStep.READING, 10)
        logger.info("[Compression] Starting %s compression: %d bytes", policy.name, len(data))
        try:
            source = self.codec.decode(data)
        except InvalidImage:
            report(CompressionStep.ERROR, 0)
            raise InvalidImage(translate("image.unreadable", language))
        src_w, src_h = self.codec.dimensions(source)
        trace: List[CompressionAttempt] = []

        dimension = policy.initial_dimension
        quality = policy.initial_quality
        report(CompressionStep.RESIZING, 30)
        width, height = _scaled_size(src_w, src_h, dimension)
        raster = self.codec.resize(source, width, height)

        report(CompressionStep.COMPRESSING, 50)
        payload = self.codec.encode_jpeg(raster, quality)
        trace.append(CompressionAttempt(width, height, quality, len(payload)))

        attempts = 0
        while len(payload) > policy.target_bytes and attempts < policy.max_attempts:
            attempts += 1
            report(CompressionStep.COMPRESSING, 50 + min(40, attempts * 4))

            if quality > policy.min_quality:
                quality = max(policy.min_quality, round(quality - policy.quality_step, 2))
                payload = self.codec.encode_jpeg(raster, quality)
                trace.append(CompressionAttempt(width, height, quality, len(payload)))
            elif dimension > policy.min_dimension:
                dimension = max(policy.min_dimension, int(dimension * policy.dimension_factor))
                # A smaller raster tolerates higher quality for the same byte cost
                quality = policy.initial_quality
                report(CompressionStep.RESIZING, 30)
                width, height = _scaled_size(src_w, src_h, dimension)
                raster, payload = self._render(source, width, height, quality, trace)
            else:
                break

            logger.debug("[Compression] attempt=%d dim=%d quality=%.2f size=%d",
                         attempts, dimension, quality, len(payload))

        if len(payload) > policy.ceiling_bytes:
            report(CompressionStep.ERROR, 0)
            logger.warning("[Compression] Gave up at %d bytes (ceiling %d)", len(payload), int(policy.ceiling_bytes))
            raise CompressionTooLarge(translate("image.too_complex", language), len(payload), int(policy.ceiling_bytes))

        report(CompressionStep.READY, 100)
        logger.info("[Compression] Final: dim=%d quality=%.2f size=%d", dimension, quality, len(payload))
        return CompressionResult(payload, width, height, quality, attempts, policy.name, trace)

    def _compress_scheduled(self, data: bytes, policy: SchedulePolicy, report: ProgressCallback) -> CompressionResult:
        report(CompressionStep.READING, 10)
        try:
            source = self.codec.decode(data)
        except InvalidImage:
            if not policy.passthrough_on_decode_error:
                report(CompressionStep.ERROR, 0)
                raise
            logger.warning("[Compression] Could not decode image, sending it unchanged")
            report(CompressionStep.READY, 100)
            return CompressionResult(data, 0, 0, 1.0, 0, policy.name, passthrough=True)

        src_w, src_h = self.codec.dimensions(source)
        base_w, base_h = src_w, src_h
        if base_w > policy.max_dimension or base_h > policy.max_dimension:
            ratio = min(policy.max_dimension / base_w, policy.max_dimension / base_h)
            base_w, base_h = int(base_w * ratio + 0.5), int(base_h * ratio + 0.5)

        trace: List[CompressionAttempt] = []
        report(CompressionStep.COMPRESSING, 50)
        for index, (scale, quality) in enumerate(policy.passes, start=1):
            width, height = max(1, int(base_w * scale + 0.5)), max(1, int(base_h * scale + 0.5))
            _, payload = self._render(source, width, height, quality, trace)
            logger.debug("[Compression] Pass %.2fx @ %.2f: %d bytes", scale, quality, len(payload))
            if len(payload) <= policy.target_bytes:
                report(CompressionStep.READY, 100)
                return CompressionResult(payload, width, height, quality, index, policy.name, trace)
            report(CompressionStep.COMPRESSING, 50 + min(40, index * 8))

        scale, quality = policy.fallback
        width, height = max(1, int(base_w * scale + 0.5)), max(1, int(base_h * scale + 0.5))
        _, payload = self._render(source, width, height, quality, trace)
        report(CompressionStep.READY, 100)
        logger.info("[Compression] Fallback encode used: %d bytes", len(payload))
        return CompressionResult(payload, width, height, quality, len(policy.passes) + 1, policy.name, trace)
