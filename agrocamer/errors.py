"""
Error taxonomy shared by the geolocation resolver, the compression engine
and the analysis orchestrators.

Geolocation codes mirror the browser geolocation API (0 is used for
"unsupported") because callers branch on `code == 1` and `code == 0`.
"""
from typing import Optional

from .i18n import DEFAULT_LANGUAGE, translate


class AgroCamerError(Exception):
    """Base class for every error carrying a user-facing message."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# Geolocation ---------------------------------------------------------------

class GeolocationError(AgroCamerError):
    code = -1
    message_key = "geo.unknown"

    def __init__(self, message: Optional[str] = None, language: str = DEFAULT_LANGUAGE):
        super().__init__(message or translate(self.message_key, language))

    @property
    def retryable(self) -> bool:
        return self.code in (PositionUnavailable.code, LocationTimeout.code)

    def annotated(self, note: str) -> "GeolocationError":
        """Copy of this error with `note` appended to the message."""
        err = type(self)(f"{self.message} {note}")
        err.code = self.code
        return err

    def to_dict(self):
        return {"code": self.code, "message": self.message}

    @staticmethod
    def from_code(code: int, language: str = DEFAULT_LANGUAGE, message: Optional[str] = None) -> "GeolocationError":
        cls = _GEO_ERRORS_BY_CODE.get(code)
        if cls is None:
            err = GeolocationError(message, language)
            err.code = code
            return err
        return cls(message, language)


class Unsupported(GeolocationError):
    code = 0
    message_key = "geo.unsupported"


class PermissionDenied(GeolocationError):
    code = 1
    message_key = "geo.permission_denied"


class PositionUnavailable(GeolocationError):
    code = 2
    message_key = "geo.position_unavailable"


class LocationTimeout(GeolocationError):
    code = 3
    message_key = "geo.timeout"


_GEO_ERRORS_BY_CODE = {
    cls.code: cls for cls in (Unsupported, PermissionDenied, PositionUnavailable, LocationTimeout)
}


# Compression ---------------------------------------------------------------

class CompressionError(AgroCamerError):
    pass


class InvalidImage(CompressionError):
    pass


class ImageTooLarge(CompressionError):
    pass


class CompressionTooLarge(CompressionError):
    """Both floors were reached and the payload still exceeds the ceiling."""

    def __init__(self, message: str, size: int, ceiling: int):
        super().__init__(message)
        self.size = size
        self.ceiling = ceiling


# Remote analysis -----------------------------------------------------------

class AnalysisError(AgroCamerError):
    retryable = False


class NetworkError(AnalysisError):
    retryable = True


class TransientServerError(AnalysisError):
    retryable = True

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class UnexpectedResponseFormat(AnalysisError):
    pass


class AnalysisFailed(AnalysisError):
    """Terminal failure surfaced to the user after retries are exhausted."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause
