"""
Bick Processor - runs the processing pipeline for one job.

Order per job:
    1. Load the bick (skip removed/live, revive failed)
    2. Acquire the source (yt-dlp for URL bicks not yet stored) or download it
    3. Validate audio and duration
    4. Waveform JSON
    5. OG image and teaser MP4
    6. Square thumbnail (best-effort)
    7. Check required assets (original included), then mark the bick live

Any stage failure raises ProcessingError; the caller decides about retries.
"""

import logging
import math
import os
from dataclasses import dataclass
from typing import Optional

from bickqr.core import config
from bickqr.core.errors import (
    ExtractionError,
    InvalidTransition,
    ProcessingError,
    ProcessingErrorType,
)
from bickqr.core.status import BickStatus
from bickqr.db.models import AssetType
from bickqr.db.repository import BickRepository, NewAsset
from bickqr.schemas.job import ProcessingJob
from bickqr.storage.r2 import R2Storage, storage_key_for
from bickqr.workers.acquisition import SourceAcquisition, cleanup_dir, download_thumbnail
from bickqr.workers.media import MediaTools

logger = logging.getLogger(__name__)

ASSET_MIME_TYPES = {
    AssetType.ORIGINAL: "audio/mpeg",
    AssetType.AUDIO: "audio/mpeg",
    AssetType.WAVEFORM_JSON: "application/json",
    AssetType.OG_IMAGE: "image/png",
    AssetType.TEASER_MP4: "video/mp4",
    AssetType.THUMBNAIL: "image/jpeg",
}

ORIGINAL_MIME_TYPES = {
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    "flac": "audio/flac",
    "mp4": "video/mp4",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mkv": "video/x-matroska",
}

REQUIRED_ASSETS = {
    AssetType.ORIGINAL,
    AssetType.WAVEFORM_JSON,
    AssetType.OG_IMAGE,
    AssetType.TEASER_MP4,
}


@dataclass
class ProcessingResult:
    bick_id: str
    duration_ms: int
    waveform_url: str
    og_image_url: str
    teaser_url: str
    thumbnail_url: Optional[str] = None


@dataclass
class _Source:
    path: str
    thumbnail_url: Optional[str] = None


def _extension(path: str) -> str:
    return os.path.splitext(path)[1].lstrip(".").lower()


def mime_for_original(storage_key: str) -> str:
    return ORIGINAL_MIME_TYPES.get(_extension(storage_key), "audio/mpeg")


class BickProcessor:
    def __init__(
        self,
        repository: BickRepository,
        storage: R2Storage,
        media: MediaTools = None,
        acquisition: SourceAcquisition = None,
        temp_root: str = None,
        max_duration_ms: int = None,
    ):
        self.repository = repository
        self.storage = storage
        self.media = media or MediaTools()
        self.acquisition = acquisition or SourceAcquisition()
        self.temp_root = temp_root or config.TEMP_ROOT
        self.max_duration_ms = max_duration_ms or config.MAX_AUDIO_DURATION_MS

    def temp_dir_for(self, bick_id: str) -> str:
        return os.path.join(self.temp_root, f"bick-{bick_id}")

    def process(self, job: ProcessingJob) -> Optional[ProcessingResult]:
        """
        Process one job. Returns None when there is nothing to do (bick gone,
        removed, or already live).
        """
        bick_id = job.bick_id
        try:
            return self._process(job)
        except ProcessingError as e:
            if e.bick_id is None:
                e.bick_id = bick_id
            logger.error(f"[{bick_id}] Processing failed: {e}")
            raise

    def _process(self, job: ProcessingJob) -> Optional[ProcessingResult]:
        bick_id = job.bick_id

        # 1. Load
        bick = self.repository.get_bick(bick_id)
        if bick is None:
            logger.warning(f"[{bick_id}] Bick not found, skipping")
            return None
        if bick.status in (BickStatus.REMOVED, BickStatus.LIVE):
            logger.info(f"[{bick_id}] Bick is {bick.status.value}, nothing to do")
            return None
        if bick.status == BickStatus.FAILED:
            self.repository.update_bick_status(bick_id, BickStatus.PROCESSING)

        temp_dir = self.temp_dir_for(bick_id)
        os.makedirs(temp_dir, exist_ok=True)
        try:
            # 2. Source
            source = self._fetch_source(bick, job, temp_dir)

            # 3. Validate
            logger.info(f"[{bick_id}] Validating audio")
            duration = self._validate(bick_id, source.path)
            duration_ms = int(round(duration * 1000))

            # 4. Waveform
            logger.info(f"[{bick_id}] Generating waveform")
            waveform_path = self.media.generate_waveform_json(source.path, temp_dir, duration)
            waveform_url = self._publish(
                bick_id, waveform_path, "waveform.json", AssetType.WAVEFORM_JSON
            )

            # 5. OG image and teaser
            logger.info(f"[{bick_id}] Generating OG image")
            og_path = self.media.generate_og_image(source.path, temp_dir)
            og_url = self._publish(bick_id, og_path, "og.png", AssetType.OG_IMAGE)

            logger.info(f"[{bick_id}] Generating teaser")
            teaser_path = self.media.generate_teaser(source.path, temp_dir, duration)
            teaser_url = self._publish(bick_id, teaser_path, "teaser.mp4", AssetType.TEASER_MP4)

            # 6. Thumbnail
            thumbnail_url = self._thumbnail(bick_id, source.thumbnail_url, og_path, temp_dir)

            # 7. Go live
            logger.info(f"[{bick_id}] Validating assets")
            missing = REQUIRED_ASSETS - self.repository.list_asset_types(bick_id)
            if missing:
                raise ProcessingError(
                    ProcessingErrorType.DATABASE_ERROR,
                    "Not all required assets were created: "
                    + ", ".join(sorted(t.value for t in missing)),
                    bick_id=bick_id,
                    step="validate_assets",
                )

            try:
                updated = self.repository.update_bick_status(
                    bick_id, BickStatus.LIVE, duration_ms=duration_ms
                )
            except InvalidTransition as e:
                # Removed (or published) while we were working
                logger.warning(f"[{bick_id}] Not marking live: {e}")
                return None
            if updated is None:
                logger.warning(f"[{bick_id}] Bick deleted during processing")
                return None

            logger.info(f"[{bick_id}] Bick is live ({duration_ms} ms)")
            return ProcessingResult(
                bick_id=bick_id,
                duration_ms=duration_ms,
                waveform_url=waveform_url,
                og_image_url=og_url,
                teaser_url=teaser_url,
                thumbnail_url=thumbnail_url,
            )
        finally:
            cleanup_dir(temp_dir)

    def _fetch_source(self, bick, job: ProcessingJob, temp_dir: str) -> _Source:
        if bick.source_url and not self.storage.exists(job.storage_key):
            logger.info(f"[{bick.id}] Acquiring audio from {bick.source_url}")
            try:
                acquired = self.acquisition.acquire(bick.source_url, temp_dir)
            except ExtractionError as e:
                raise ProcessingError(
                    ProcessingErrorType.DOWNLOAD_FAILED,
                    f"{e.code.value}: {e.message}",
                    bick_id=bick.id,
                    step="acquire",
                    retryable=e.retryable,
                ) from e

            result = self.storage.upload_file(
                acquired.local_audio_path, job.storage_key, ASSET_MIME_TYPES[AssetType.ORIGINAL]
            )
            self.repository.insert_asset(bick.id, NewAsset(
                asset_type=AssetType.ORIGINAL,
                storage_key=result.storage_key,
                cdn_url=result.cdn_url,
                mime_type=ASSET_MIME_TYPES[AssetType.ORIGINAL],
                size_bytes=result.size_bytes,
                metadata={"platform": acquired.platform.value, "title": acquired.title},
            ))
            return _Source(acquired.local_audio_path, acquired.thumbnail_url)

        logger.info(f"[{bick.id}] Downloading {job.storage_key}")
        ext = _extension(job.storage_key) or _extension(job.original_filename) or "mp3"
        local_path = self.storage.download_file(
            job.storage_key, os.path.join(temp_dir, f"original.{ext}")
        )

        if AssetType.ORIGINAL not in self.repository.list_asset_types(bick.id):
            logger.info(f"[{bick.id}] Recording missing original asset")
            self.repository.insert_asset(bick.id, NewAsset(
                asset_type=AssetType.ORIGINAL,
                storage_key=job.storage_key,
                cdn_url=self.storage.public_url(job.storage_key),
                mime_type=mime_for_original(job.storage_key),
                size_bytes=os.path.getsize(local_path),
            ))
        return _Source(local_path)

    def _validate(self, bick_id: str, audio_path: str) -> float:
        if not self.media.validate_audio(audio_path):
            raise ProcessingError(
                ProcessingErrorType.INVALID_AUDIO,
                "File is not a valid audio format",
                bick_id=bick_id,
                step="validate_audio",
            )

        duration = self.media.get_audio_duration(audio_path)
        if not duration > 0 or math.isinf(duration):
            raise ProcessingError(
                ProcessingErrorType.INVALID_AUDIO,
                f"Audio has no playable duration ({duration})",
                bick_id=bick_id,
                step="validate_audio",
            )
        if duration * 1000 > self.max_duration_ms:
            raise ProcessingError(
                ProcessingErrorType.INVALID_AUDIO,
                f"Audio is {duration:.2f}s, longer than {self.max_duration_ms / 1000:g}s",
                bick_id=bick_id,
                step="validate_audio",
            )
        return duration

    def _publish(self, bick_id: str, path: str, asset_name: str, asset_type: AssetType, metadata=None) -> str:
        key = storage_key_for(bick_id, asset_name)
        mime_type = ASSET_MIME_TYPES[asset_type]
        result = self.storage.upload_file(path, key, mime_type)
        self.repository.insert_asset(bick_id, NewAsset(
            asset_type=asset_type,
            storage_key=result.storage_key,
            cdn_url=result.cdn_url,
            mime_type=mime_type,
            size_bytes=result.size_bytes,
            metadata=metadata or {},
        ))
        return result.cdn_url

    def _thumbnail(self, bick_id: str, thumbnail_url: Optional[str], og_path: str, temp_dir: str) -> Optional[str]:
        """Source thumbnail when there is one, else the OG image. Never fails the job."""
        try:
            source_thumb = None
            if thumbnail_url:
                logger.info(f"[{bick_id}] Downloading source thumbnail")
                source_thumb = download_thumbnail(
                    thumbnail_url, os.path.join(temp_dir, "source_thumb.jpg")
                )

            if source_thumb:
                square = self.media.create_square_thumbnail(source_thumb, temp_dir)
            else:
                square = self.media.create_square_thumbnail(og_path, temp_dir, scale_to_fit=True)

            return self._publish(
                bick_id,
                square,
                "thumbnail.jpg",
                AssetType.THUMBNAIL,
                metadata={"source": "remote" if source_thumb else "og_image"},
            )
        except (ProcessingError, OSError) as e:
            logger.warning(f"[{bick_id}] Thumbnail generation failed, continuing: {e}")
            return None
