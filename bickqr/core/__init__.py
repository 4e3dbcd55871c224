from bickqr.core.errors import (
    ExtractionError,
    ExtractionErrorCode,
    InvalidJobPayload,
    InvalidTransition,
    ProcessingError,
    ProcessingErrorType,
)
from bickqr.core.platform import Platform, detect_platform, is_supported_url
from bickqr.core.slug import generate_slug, generate_unique_slug
from bickqr.core.status import BickStatus, can_transition
from bickqr.core.waveform import extract_peaks

__all__ = [
    "ExtractionError",
    "ExtractionErrorCode",
    "InvalidJobPayload",
    "InvalidTransition",
    "ProcessingError",
    "ProcessingErrorType",
    "Platform",
    "detect_platform",
    "is_supported_url",
    "generate_slug",
    "generate_unique_slug",
    "BickStatus",
    "can_transition",
    "extract_peaks",
]
