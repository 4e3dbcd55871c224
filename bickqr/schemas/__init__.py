from bickqr.schemas.api import (
    CompleteUploadRequest,
    CompleteUploadResponse,
    ErrorResponse,
    ExtractResponse,
    UploadSessionRequest,
    UploadSessionResponse,
)
from bickqr.schemas.job import ProcessingJob

__all__ = [
    "CompleteUploadRequest",
    "CompleteUploadResponse",
    "ErrorResponse",
    "ExtractResponse",
    "ProcessingJob",
    "UploadSessionRequest",
    "UploadSessionResponse",
]
