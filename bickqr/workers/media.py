"""
Media tools - ffprobe/ffmpeg wrappers used by the processing pipeline.

Outputs written into the job's temp dir:
    waveform.json   normalized peaks for client-side rendering
    og.png          1200x630 waveform over the brand background
    teaser.mp4      1280x720 animated waveform, H.264/AAC
    thumbnail.jpg   400x400 square
"""

import json
import logging
import math
import os

from bickqr.core import config
from bickqr.core.errors import ProcessingError, ProcessingErrorType
from bickqr.core.waveform import SAMPLES_PER_SECOND, extract_peaks
from bickqr.workers.runner import (
    COMMAND_NOT_STARTED,
    CommandFailed,
    CommandRunner,
    CommandTimeout,
)

logger = logging.getLogger(__name__)

PROBE_TIMEOUT = 30  # seconds
FFMPEG_TIMEOUT = 120
TEASER_TIMEOUT = 180
THUMBNAIL_TIMEOUT = 15

# Raw PCM rate for waveform extraction, downsampled in code afterwards
PCM_SAMPLE_RATE = 1000

OG_WIDTH, OG_HEIGHT = 1200, 630
TEASER_WIDTH, TEASER_HEIGHT = 1280, 720
WAVE_HEIGHT = 200
WAVE_PADDING = 50
THUMBNAIL_SIZE = 400


class MediaTools:
    def __init__(
        self,
        runner: CommandRunner = None,
        ffmpeg_bin: str = None,
        ffprobe_bin: str = None,
        brand_background: str = None,
        teaser_duration: float = None,
    ):
        self.runner = runner or CommandRunner()
        self.ffmpeg_bin = ffmpeg_bin or config.FFMPEG_BIN
        self.ffprobe_bin = ffprobe_bin or config.FFPROBE_BIN
        self.brand_background = brand_background or config.BRAND_BACKGROUND_PATH
        self.teaser_duration = teaser_duration or config.TEASER_DURATION

    def _ffmpeg(self, args, step: str, timeout: float = FFMPEG_TIMEOUT):
        try:
            return self.runner.run([self.ffmpeg_bin, "-y"] + list(args), timeout=timeout)
        except (CommandFailed, CommandTimeout) as e:
            logger.error(f"FFmpeg {step} failed: {e}")
            raise ProcessingError(ProcessingErrorType.FFMPEG_FAILED, str(e), step=step) from e

    # ── Probing ──────────────────────────────────────────────────────

    def validate_audio(self, audio_path: str) -> bool:
        """
        True when the file has a decodable audio stream. ffprobe rejecting the
        file means False; ffprobe itself not running (missing, timed out)
        raises FFMPEG_FAILED so the job is retried.
        """
        try:
            result = self.runner.run(
                [
                    self.ffprobe_bin,
                    "-v", "error",
                    "-select_streams", "a:0",
                    "-show_entries", "stream=codec_type",
                    "-of", "default=noprint_wrappers=1:nokey=1",
                    audio_path,
                ],
                timeout=PROBE_TIMEOUT,
            )
        except (CommandFailed, CommandTimeout) as e:
            if isinstance(e, CommandFailed) and e.returncode != COMMAND_NOT_STARTED:
                logger.warning(f"ffprobe rejected {audio_path}: {e}")
                return False
            raise ProcessingError(
                ProcessingErrorType.FFMPEG_FAILED,
                f"Failed to probe audio: {e}",
                step="validate_audio",
            ) from e
        return result.stdout.strip() == "audio"

    def get_audio_duration(self, audio_path: str) -> float:
        """Duration in seconds."""
        try:
            result = self.runner.run(
                [
                    self.ffprobe_bin,
                    "-v", "error",
                    "-show_entries", "format=duration",
                    "-of", "default=noprint_wrappers=1:nokey=1",
                    audio_path,
                ],
                timeout=PROBE_TIMEOUT,
            )
        except (CommandFailed, CommandTimeout) as e:
            raise ProcessingError(
                ProcessingErrorType.FFMPEG_FAILED,
                f"Failed to get audio duration: {e}",
                step="duration",
            ) from e

        try:
            duration = float(result.stdout.strip())
        except ValueError:
            duration = float("nan")
        if math.isnan(duration):
            raise ProcessingError(
                ProcessingErrorType.FFMPEG_FAILED,
                f"Invalid duration value: {result.stdout.strip()!r}",
                step="duration",
            )
        return duration

    # ── Generators ───────────────────────────────────────────────────

    def extract_pcm(self, audio_path: str, pcm_path: str) -> bytes:
        """Decode to raw mono 16-bit little-endian PCM."""
        self._ffmpeg(
            [
                "-i", audio_path,
                "-ac", "1",
                "-ar", str(PCM_SAMPLE_RATE),
                "-f", "s16le",
                "-acodec", "pcm_s16le",
                pcm_path,
            ],
            step="waveform",
        )
        with open(pcm_path, "rb") as f:
            return f.read()

    def generate_waveform_json(self, audio_path: str, output_dir: str, duration: float = None) -> str:
        if duration is None:
            duration = self.get_audio_duration(audio_path)
        target = math.ceil(duration * SAMPLES_PER_SECOND)

        pcm_path = os.path.join(output_dir, "waveform.pcm")
        output_path = os.path.join(output_dir, "waveform.json")
        try:
            peaks = extract_peaks(self.extract_pcm(audio_path, pcm_path), target)
        finally:
            if os.path.exists(pcm_path):
                os.remove(pcm_path)

        with open(output_path, "w") as f:
            json.dump(
                {
                    "version": 1,
                    "sampleRate": PCM_SAMPLE_RATE,
                    "samplesPerSecond": SAMPLES_PER_SECOND,
                    "duration": duration,
                    "peaks": peaks,
                },
                f,
            )

        logger.info(f"Generated {len(peaks)} peaks for {duration:.2f}s audio")
        return output_path

    def generate_og_image(self, audio_path: str, output_dir: str) -> str:
        """1200x630 PNG: showwavespic overlaid on the brand background."""
        output_path = os.path.join(output_dir, "og.png")
        wave_width = OG_WIDTH - 2 * WAVE_PADDING
        wave_y = (OG_HEIGHT - WAVE_HEIGHT) // 2

        self._ffmpeg(
            [
                "-i", self.brand_background,
                "-i", audio_path,
                "-filter_complex",
                f"[0:v]scale={OG_WIDTH}:{OG_HEIGHT}:force_original_aspect_ratio=increase,"
                f"crop={OG_WIDTH}:{OG_HEIGHT}[bg];"
                f"[1:a]showwavespic=s={wave_width}x{WAVE_HEIGHT}:colors=white@0.8:filter=peak[wave];"
                f"[bg][wave]overlay={WAVE_PADDING}:{wave_y}:format=auto",
                "-frames:v", "1",
                output_path,
            ],
            step="og_image",
        )

        logger.info(f"Generated {OG_WIDTH}x{OG_HEIGHT} OG image at {output_path}")
        return output_path

    def generate_teaser(self, audio_path: str, output_dir: str, duration: float = None) -> str:
        """1280x720 MP4 with an animated waveform, capped at the teaser duration."""
        if duration is None:
            duration = self.get_audio_duration(audio_path)
        teaser_duration = min(self.teaser_duration, duration)

        output_path = os.path.join(output_dir, "teaser.mp4")
        wave_width = TEASER_WIDTH - 2 * WAVE_PADDING
        wave_y = (TEASER_HEIGHT - WAVE_HEIGHT) // 2

        self._ffmpeg(
            [
                "-loop", "1",
                "-i", self.brand_background,
                "-i", audio_path,
                "-filter_complex",
                f"[0:v]scale={TEASER_WIDTH}:{TEASER_HEIGHT}:force_original_aspect_ratio=increase,"
                f"crop={TEASER_WIDTH}:{TEASER_HEIGHT},fps=30[bg];"
                f"[1:a]showwaves=s={wave_width}x{WAVE_HEIGHT}:mode=cline:colors=white@0.8:rate=30[wave];"
                f"[bg][wave]overlay={WAVE_PADDING}:{wave_y}:format=auto[v]",
                "-map", "[v]",
                "-map", "1:a",
                "-c:v", "libx264",
                "-preset", "fast",
                "-crf", "23",
                "-pix_fmt", "yuv420p",
                "-c:a", "aac",
                "-b:a", "128k",
                "-t", f"{teaser_duration:g}",
                "-shortest",
                output_path,
            ],
            step="teaser",
            timeout=TEASER_TIMEOUT,
        )

        logger.info(f"Generated {teaser_duration:.1f}s teaser at {output_path}")
        return output_path

    def create_square_thumbnail(
        self,
        input_path: str,
        output_dir: str,
        size: int = THUMBNAIL_SIZE,
        scale_to_fit: bool = False,
    ) -> str:
        """
        Square JPEG thumbnail. Photos are center-cropped; scale_to_fit pads
        instead so branded images (the OG fallback) are kept whole.
        """
        output_path = os.path.join(output_dir, "thumbnail.jpg")
        if scale_to_fit:
            vf = (
                f"scale={size}:{size}:force_original_aspect_ratio=decrease,"
                f"pad={size}:{size}:(ow-iw)/2:(oh-ih)/2:color=0x1a1a1a"
            )
        else:
            vf = f"crop=min(iw\\,ih):min(iw\\,ih),scale={size}:{size}"

        self._ffmpeg(
            ["-i", input_path, "-vf", vf, "-q:v", "2", output_path],
            step="thumbnail",
            timeout=THUMBNAIL_TIMEOUT,
        )
        return output_path
