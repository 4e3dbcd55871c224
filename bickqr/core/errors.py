"""
Error taxonomy for the processing pipeline and the acquisition boundary.
"""

import enum
from typing import Optional


class ProcessingErrorType(str, enum.Enum):
    DOWNLOAD_FAILED = "DOWNLOAD_FAILED"
    INVALID_AUDIO = "INVALID_AUDIO"
    FFMPEG_FAILED = "FFMPEG_FAILED"
    UPLOAD_FAILED = "UPLOAD_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"


# Content problems never fix themselves on retry
NON_RETRYABLE_ERRORS = {ProcessingErrorType.INVALID_AUDIO}


class ProcessingError(Exception):
    """Raised when a pipeline stage fails for a bick."""

    def __init__(
        self,
        type: ProcessingErrorType,
        message: str,
        bick_id: Optional[str] = None,
        step: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        self.type = ProcessingErrorType(type)
        self.message = message
        self.bick_id = bick_id
        self.step = step
        self._retryable = retryable
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        return self.type not in NON_RETRYABLE_ERRORS

    def __str__(self):
        where = f" at {self.step}" if self.step else ""
        return f"[{self.type.value}{where}] {self.message}"


class ExtractionErrorCode(str, enum.Enum):
    INVALID_URL = "INVALID_URL"
    UNSUPPORTED_PLATFORM = "UNSUPPORTED_PLATFORM"
    VIDEO_UNAVAILABLE = "VIDEO_UNAVAILABLE"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"


EXTRACTION_HTTP_STATUS = {
    ExtractionErrorCode.INVALID_URL: 400,
    ExtractionErrorCode.UNSUPPORTED_PLATFORM: 400,
    ExtractionErrorCode.VIDEO_UNAVAILABLE: 404,
    ExtractionErrorCode.EXTRACTION_FAILED: 400,
}

# The source itself is bad; running yt-dlp again gives the same answer
NON_RETRYABLE_EXTRACTION_CODES = {
    ExtractionErrorCode.INVALID_URL,
    ExtractionErrorCode.UNSUPPORTED_PLATFORM,
    ExtractionErrorCode.VIDEO_UNAVAILABLE,
}


class ExtractionError(Exception):
    """Raised when a remote URL cannot be turned into local audio."""

    def __init__(self, code: ExtractionErrorCode, message: str):
        self.code = ExtractionErrorCode(code)
        self.message = message
        super().__init__(message)

    @property
    def http_status(self) -> int:
        return EXTRACTION_HTTP_STATUS[self.code]

    @property
    def retryable(self) -> bool:
        return self.code not in NON_RETRYABLE_EXTRACTION_CODES


class InvalidJobPayload(ValueError):
    """Job payload rejected at enqueue time. Never retried."""


class InvalidTransition(Exception):
    """A bick status change that the lifecycle does not allow."""

    def __init__(self, bick_id: str, current: str, target: str):
        self.bick_id = bick_id
        self.current = current
        self.target = target
        super().__init__(f"Bick {bick_id}: cannot move from {current} to {target}")
