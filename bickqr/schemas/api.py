"""
Request/response bodies for the HTTP API. Fields are camelCase on the wire.
"""
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from bickqr.core.config import ALLOWED_MIME_TYPES, MAX_FILE_SIZE

TITLE_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 500


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    code: str
    details: Optional[Dict[str, str]] = None


class ExtractResponse(CamelModel):
    success: bool = True
    audio_url: str
    duration_ms: int
    source_title: Optional[str] = None
    thumbnail_url: Optional[str] = None


class UploadSessionRequest(CamelModel):
    """Start an upload: creates the bick and hands back a presigned PUT URL."""
    title: str = Field(min_length=1, max_length=TITLE_MAX_LENGTH)
    description: Optional[str] = Field(default=None, max_length=DESCRIPTION_MAX_LENGTH)
    filename: str = Field(min_length=1)
    content_type: str
    duration_ms: int = Field(gt=0)
    original_duration_ms: Optional[int] = Field(default=None, gt=0)
    source_url: Optional[str] = None

    @field_validator("filename")
    @classmethod
    def filename_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Filename is required")
        return v

    @field_validator("source_url")
    @classmethod
    def source_url_stripped(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("content_type")
    @classmethod
    def content_type_allowed(cls, v: str) -> str:
        if v not in ALLOWED_MIME_TYPES:
            raise ValueError(f"Unsupported content type: {v}")
        return v


class UploadSessionResponse(CamelModel):
    success: bool = True
    bick_id: str
    upload_url: str
    storage_key: str
    expires_at: datetime


class CompleteUploadRequest(CamelModel):
    storage_key: str = Field(min_length=1)
    size_bytes: int = Field(gt=0, le=MAX_FILE_SIZE)


class CompleteUploadResponse(CamelModel):
    success: bool = True
    bick_id: str
    job_id: str
