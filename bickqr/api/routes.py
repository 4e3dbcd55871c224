"""
HTTP API - URL extraction and the upload ingestion endpoints.

Collaborators (repository, queue, storage, acquisition) are created at startup
and read from app.state.
"""

import logging
import uuid

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from bickqr.core.errors import (
    ExtractionError,
    ExtractionErrorCode,
    InvalidJobPayload,
    InvalidTransition,
    ProcessingError,
)
from bickqr.core.platform import SUPPORTED_PLATFORM_NAMES, detect_platform
from bickqr.core.slug import generate_unique_slug
from bickqr.core.status import BickStatus
from bickqr.db.models import AssetType
from bickqr.db.repository import NewAsset
from bickqr.schemas import (
    CompleteUploadRequest,
    CompleteUploadResponse,
    ExtractResponse,
    ProcessingJob,
    UploadSessionRequest,
    UploadSessionResponse,
)
from bickqr.storage.r2 import extracted_storage_key, original_storage_key
from bickqr.workers.acquisition import acquisition_scope
from bickqr.workers.bick_processor import mime_for_original

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["bicks"])
extract_router = APIRouter(tags=["extract"])


def error_response(status_code: int, error: str, code: str, details: dict = None) -> JSONResponse:
    content = {"success": False, "error": error, "code": code}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


# ── URL extraction ───────────────────────────────────────────────────


def _extract_to_storage(acquisition, storage, url) -> ExtractResponse:
    with acquisition_scope() as work_dir:
        audio = acquisition.acquire(url, work_dir)
        key = extracted_storage_key(str(uuid.uuid4()))
        result = storage.upload_file(audio.local_audio_path, key, "audio/mpeg")

    logger.info(f"Extracted {audio.platform.value} audio ({audio.duration_ms} ms) to {key}")
    return ExtractResponse(
        audio_url=result.cdn_url,
        duration_ms=audio.duration_ms,
        source_title=audio.title,
        thumbnail_url=audio.thumbnail_url,
    )


@extract_router.post("/extract")
async def extract(request: Request):
    """Pull audio from a supported platform URL and return its public URL."""
    try:
        body = await request.json()
    except ValueError:
        return error_response(400, "Invalid JSON in request body", ExtractionErrorCode.INVALID_URL.value)

    url = body.get("url") if isinstance(body, dict) else None

    try:
        response = await run_in_threadpool(
            _extract_to_storage, request.app.state.acquisition, request.app.state.storage, url
        )
    except ExtractionError as e:
        logger.warning(f"Extraction failed for {url!r}: {e.code.value} {e.message}")
        return error_response(e.http_status, e.message, e.code.value)
    except Exception as e:
        logger.error(f"Extraction error for {url!r}: {e}", exc_info=True)
        return error_response(
            500, "Failed to extract audio from URL", ExtractionErrorCode.EXTRACTION_FAILED.value
        )

    return JSONResponse(content=response.model_dump(by_alias=True, exclude_none=True))


# ── Upload ingestion ─────────────────────────────────────────────────


@router.post("/bicks/upload-session", response_model=UploadSessionResponse)
def create_upload_session(data: UploadSessionRequest, request: Request):
    """
    Create a processing bick and a presigned PUT URL for its original file.
    The client uploads directly to storage, then calls /complete.
    """
    repository = request.app.state.repository
    storage = request.app.state.storage

    if data.source_url is not None and detect_platform(data.source_url) is None:
        return error_response(
            400,
            "Unsupported platform. Supported platforms: " + ", ".join(SUPPORTED_PLATFORM_NAMES),
            ExtractionErrorCode.UNSUPPORTED_PLATFORM.value,
        )

    try:
        bick = repository.create_bick(
            slug=generate_unique_slug(data.title),
            title=data.title,
            description=data.description,
            source_url=data.source_url,
            original_filename=data.filename,
            duration_ms=data.duration_ms,
            original_duration_ms=data.original_duration_ms,
        )
    except ProcessingError as e:
        logger.error(f"Failed to create bick: {e}")
        return error_response(500, "Failed to create bick record", "DATABASE_ERROR")

    storage_key = original_storage_key(bick.id, data.filename)
    try:
        presigned = storage.presign(storage_key, data.content_type)
    except (BotoCoreError, ClientError) as e:
        logger.error(f"[{bick.id}] Failed to presign upload: {e}")
        try:
            repository.delete_bick(bick.id)
        except ProcessingError as cleanup_error:
            logger.error(f"[{bick.id}] Failed to delete orphaned bick: {cleanup_error}")
        return error_response(500, "Failed to generate upload URL", "R2_ERROR")

    logger.info(f"[{bick.id}] Upload session created for {storage_key}")
    return UploadSessionResponse(
        bick_id=bick.id,
        upload_url=presigned.url,
        storage_key=storage_key,
        expires_at=presigned.expires_at,
    )


@router.post("/bicks/{bick_id}/complete", response_model=CompleteUploadResponse)
def complete_upload(bick_id: str, data: CompleteUploadRequest, request: Request):
    """Record the uploaded original and queue the bick for processing."""
    repository = request.app.state.repository
    storage = request.app.state.storage
    queue = request.app.state.queue

    if not data.storage_key.startswith(f"uploads/{bick_id}/"):
        return error_response(400, "Storage key does not belong to this bick", "VALIDATION_ERROR")

    try:
        bick = repository.get_bick(bick_id)
    except ProcessingError as e:
        logger.error(f"[{bick_id}] Failed to load bick: {e}")
        return error_response(500, "Failed to load bick", "DATABASE_ERROR")
    if bick is None:
        return error_response(404, "Bick not found", "NOT_FOUND")
    if bick.status != BickStatus.PROCESSING:
        return error_response(409, f"Bick is already {bick.status.value}", "ALREADY_COMPLETED")

    try:
        repository.insert_asset(bick_id, NewAsset(
            asset_type=AssetType.ORIGINAL,
            storage_key=data.storage_key,
            cdn_url=storage.public_url(data.storage_key),
            mime_type=mime_for_original(data.storage_key),
            size_bytes=data.size_bytes,
        ))
    except ProcessingError as e:
        # The worker can still process the file
        logger.error(f"[{bick_id}] Failed to record original asset: {e}")

    try:
        job_id = queue.enqueue(ProcessingJob(
            bick_id=bick_id,
            storage_key=data.storage_key,
            original_filename=bick.original_filename or "unknown.mp3",
        ))
    except (InvalidJobPayload, SQLAlchemyError) as e:
        logger.error(f"[{bick_id}] Failed to enqueue processing job: {e}")
        return error_response(500, "Failed to enqueue processing job", "QUEUE_ERROR")

    return CompleteUploadResponse(bick_id=bick_id, job_id=job_id)


@router.post("/bicks/{bick_id}/retry", response_model=CompleteUploadResponse)
def retry_bick(bick_id: str, request: Request):
    """Send a failed bick back through the pipeline."""
    repository = request.app.state.repository
    queue = request.app.state.queue

    try:
        bick = repository.get_bick(bick_id)
    except ProcessingError as e:
        logger.error(f"[{bick_id}] Failed to load bick: {e}")
        return error_response(500, "Failed to load bick", "DATABASE_ERROR")
    if bick is None:
        return error_response(404, "Bick not found", "NOT_FOUND")
    if bick.status != BickStatus.FAILED:
        return error_response(409, f"Bick is {bick.status.value}, not failed", "NOT_FAILED")

    try:
        repository.update_bick_status(bick_id, BickStatus.PROCESSING)
    except InvalidTransition as e:
        return error_response(409, str(e), "NOT_FAILED")
    except ProcessingError as e:
        logger.error(f"[{bick_id}] Failed to reset status: {e}")
        return error_response(500, "Failed to update bick", "DATABASE_ERROR")

    try:
        job_id = queue.enqueue(ProcessingJob(
            bick_id=bick_id,
            storage_key=original_storage_key(bick_id, bick.original_filename or ""),
            original_filename=bick.original_filename or "unknown.mp3",
        ))
    except (InvalidJobPayload, SQLAlchemyError) as e:
        logger.error(f"[{bick_id}] Failed to enqueue retry: {e}")
        return error_response(500, "Failed to enqueue processing job", "QUEUE_ERROR")

    logger.info(f"[{bick_id}] Retry queued as {job_id}")
    return CompleteUploadResponse(bick_id=bick_id, job_id=job_id)
