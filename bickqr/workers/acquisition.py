"""
Source Acquisition - resolve a remote media URL into a local mp3 with yt-dlp.

Two invocations per URL:
    1. yt-dlp --dump-json      metadata probe (title, duration, thumbnail)
    2. yt-dlp -x --audio-format mp3 ...   audio extraction into the work dir

Failures surface as ExtractionError with a code the HTTP layer maps to a status.
"""

import logging
import math
import os
import shutil
import tempfile
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

import requests

from bickqr.core import config
from bickqr.core.errors import ExtractionError, ExtractionErrorCode
from bickqr.core.platform import SUPPORTED_PLATFORM_NAMES, Platform, detect_platform
from bickqr.workers.runner import CommandFailed, CommandRunner, CommandTimeout

logger = logging.getLogger(__name__)

INFO_TIMEOUT = 30  # seconds
EXTRACTION_TIMEOUT = 120
THUMBNAIL_TIMEOUT = 15

# yt-dlp messages that mean the media itself is gone or private
UNAVAILABLE_MARKERS = (
    "Video unavailable",
    "Private video",
    "This video is not available",
)


@dataclass
class AcquiredAudio:
    local_audio_path: str
    duration_ms: int
    platform: Platform
    title: Optional[str] = None
    thumbnail_url: Optional[str] = None


def cleanup_dir(path: Optional[str]):
    """Remove a scratch directory. Missing directories are fine."""
    if not path:
        return
    shutil.rmtree(path, ignore_errors=True)


@contextmanager
def acquisition_scope(parent: str = None):
    """Per-call scratch directory, removed however the block exits."""
    parent = parent or config.TEMP_ROOT
    os.makedirs(parent, exist_ok=True)
    work_dir = tempfile.mkdtemp(prefix=f"extract-{uuid.uuid4().hex[:8]}-", dir=parent)
    try:
        yield work_dir
    finally:
        cleanup_dir(work_dir)


def _is_unavailable(message: str) -> bool:
    return any(marker in message for marker in UNAVAILABLE_MARKERS)


def _seconds_to_ms(seconds) -> int:
    try:
        value = float(seconds or 0)
    except (TypeError, ValueError):
        value = 0.0
    return int(math.floor(value * 1000 + 0.5))


class SourceAcquisition:
    """Runs yt-dlp through a CommandRunner."""

    def __init__(self, runner: CommandRunner = None, ytdlp_bin: str = None):
        self.runner = runner or CommandRunner()
        self.ytdlp_bin = ytdlp_bin or config.YTDLP_BIN

    def acquire(self, url, work_dir: str) -> AcquiredAudio:
        """
        Probe and extract audio from `url` into `work_dir/audio.mp3`.

        Raises:
            ExtractionError: INVALID_URL, UNSUPPORTED_PLATFORM,
                VIDEO_UNAVAILABLE or EXTRACTION_FAILED
        """
        if not isinstance(url, str) or not url.strip():
            raise ExtractionError(ExtractionErrorCode.INVALID_URL, "Invalid URL provided")

        url = url.strip()
        platform = detect_platform(url)
        if platform is None:
            raise ExtractionError(
                ExtractionErrorCode.UNSUPPORTED_PLATFORM,
                "Unsupported platform. Supported platforms: "
                + ", ".join(SUPPORTED_PLATFORM_NAMES),
            )

        info = self._probe(url)
        audio_path = self._extract(url, work_dir)

        return AcquiredAudio(
            local_audio_path=audio_path,
            duration_ms=_seconds_to_ms(info.get("duration")),
            platform=platform,
            title=info.get("title"),
            thumbnail_url=info.get("thumbnail"),
        )

    def _probe(self, url: str) -> dict:
        logger.info(f"Fetching media info for {url}")
        try:
            info = self.runner.run_json(
                [self.ytdlp_bin, "--dump-json", "--no-playlist", url],
                timeout=INFO_TIMEOUT,
            )
        except CommandTimeout as e:
            raise ExtractionError(
                ExtractionErrorCode.EXTRACTION_FAILED,
                "Timed out while fetching video information",
            ) from e
        except CommandFailed as e:
            if _is_unavailable(str(e)):
                raise ExtractionError(
                    ExtractionErrorCode.VIDEO_UNAVAILABLE,
                    "Video is unavailable or private",
                ) from e
            raise ExtractionError(
                ExtractionErrorCode.EXTRACTION_FAILED,
                "Failed to fetch video information",
            ) from e

        if not isinstance(info, dict):
            raise ExtractionError(
                ExtractionErrorCode.EXTRACTION_FAILED,
                "Failed to fetch video information",
            )
        return info

    def _extract(self, url: str, work_dir: str) -> str:
        os.makedirs(work_dir, exist_ok=True)
        template = os.path.join(work_dir, "audio.%(ext)s")
        audio_path = os.path.join(work_dir, "audio.mp3")

        logger.info(f"Extracting audio from {url}")
        try:
            self.runner.run(
                [
                    self.ytdlp_bin,
                    "-x",
                    "--audio-format",
                    "mp3",
                    "--audio-quality",
                    "0",
                    "--no-playlist",
                    "-o",
                    template,
                    url,
                ],
                timeout=EXTRACTION_TIMEOUT,
            )
        except (CommandFailed, CommandTimeout) as e:
            raise ExtractionError(
                ExtractionErrorCode.EXTRACTION_FAILED,
                "Failed to extract audio from video",
            ) from e

        # yt-dlp can exit 0 without producing the converted file
        if not os.path.isfile(audio_path):
            raise ExtractionError(
                ExtractionErrorCode.EXTRACTION_FAILED,
                "Extraction finished but no audio file was produced",
            )

        return audio_path


def download_thumbnail(thumbnail_url: str, dest: str) -> Optional[str]:
    """Fetch a source thumbnail image. Returns None if anything goes wrong."""
    if not thumbnail_url:
        return None
    try:
        resp = requests.get(thumbnail_url, stream=True, timeout=THUMBNAIL_TIMEOUT)
        resp.raise_for_status()

        os.makedirs(os.path.dirname(dest), exist_ok=True)
        with open(dest, "wb") as f:
            for chunk in resp.iter_content(chunk_size=64 * 1024):
                if chunk:
                    f.write(chunk)
    except (requests.RequestException, OSError) as e:
        logger.warning(f"Failed to download thumbnail from {thumbnail_url}: {e}")
        return None

    if os.path.getsize(dest) <= 0:
        logger.warning(f"Downloaded thumbnail is empty: {thumbnail_url}")
        return None
    return dest
