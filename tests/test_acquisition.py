"""
Tests for yt-dlp source acquisition, scratch directory handling and the
thumbnail fetch.
"""

import json
import os
import shutil
import tempfile
import unittest
from unittest import mock

import requests

from bickqr.core.errors import ExtractionError, ExtractionErrorCode
from bickqr.core.platform import Platform
from bickqr.workers.acquisition import (
    SourceAcquisition,
    acquisition_scope,
    cleanup_dir,
    download_thumbnail,
)
from bickqr.workers.runner import CommandFailed, CommandTimeout
from tests.fakes import FakeRunner

INFO = {"title": "Funny clip", "duration": 4.2, "thumbnail": "https://img.test/t.jpg"}


def ytdlp(info=INFO, probe_error=None, extract_error=None, write_audio=True):
    """Handler imitating the two yt-dlp invocations."""

    def handler(args, timeout):
        if "--dump-json" in args:
            if probe_error is not None:
                raise probe_error
            return info if isinstance(info, str) else json.dumps(info)
        if "-x" in args:
            if extract_error is not None:
                raise extract_error
            if write_audio:
                template = args[args.index("-o") + 1]
                with open(template.replace("%(ext)s", "mp3"), "wb") as f:
                    f.write(b"ID3")
            return ""
        raise AssertionError(f"unexpected command {args}")

    return handler


class TestSourceAcquisition(unittest.TestCase):

    def setUp(self):
        self.work_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.work_dir, ignore_errors=True)

    def acquire(self, url, handler):
        self.runner = FakeRunner(handler)
        return SourceAcquisition(runner=self.runner, ytdlp_bin="yt-dlp").acquire(url, self.work_dir)

    def assertCode(self, ctx, code):
        self.assertEqual(ctx.exception.code, code)

    def test_success(self):
        audio = self.acquire("  https://youtu.be/abc  ", ytdlp())

        self.assertEqual(audio.local_audio_path, os.path.join(self.work_dir, "audio.mp3"))
        self.assertTrue(os.path.isfile(audio.local_audio_path))
        self.assertEqual(audio.duration_ms, 4200)
        self.assertEqual(audio.platform, Platform.YOUTUBE)
        self.assertEqual(audio.title, "Funny clip")
        self.assertEqual(audio.thumbnail_url, "https://img.test/t.jpg")

    def test_command_lines(self):
        self.acquire("https://youtu.be/abc", ytdlp())

        (probe, probe_timeout), (extract, extract_timeout) = self.runner.calls
        self.assertEqual(probe, ["yt-dlp", "--dump-json", "--no-playlist", "https://youtu.be/abc"])
        self.assertEqual(probe_timeout, 30)
        self.assertEqual(
            extract,
            [
                "yt-dlp", "-x", "--audio-format", "mp3", "--audio-quality", "0",
                "--no-playlist", "-o", os.path.join(self.work_dir, "audio.%(ext)s"),
                "https://youtu.be/abc",
            ],
        )
        self.assertEqual(extract_timeout, 120)

    def test_missing_duration_is_zero(self):
        audio = self.acquire("https://youtu.be/abc", ytdlp(info={"title": "x"}))
        self.assertEqual(audio.duration_ms, 0)

    def test_duration_rounds_half_up(self):
        audio = self.acquire("https://youtu.be/abc", ytdlp(info={"duration": 0.0625}))
        self.assertEqual(audio.duration_ms, 63)

    def test_invalid_url(self):
        for url in (None, "", "   ", 123):
            with self.assertRaises(ExtractionError) as ctx:
                self.acquire(url, ytdlp())
            self.assertCode(ctx, ExtractionErrorCode.INVALID_URL)
            self.assertEqual(self.runner.calls, [])

    def test_unsupported_platform(self):
        with self.assertRaises(ExtractionError) as ctx:
            self.acquire("https://vimeo.com/123", ytdlp())
        self.assertCode(ctx, ExtractionErrorCode.UNSUPPORTED_PLATFORM)
        self.assertIn("YouTube", ctx.exception.message)
        self.assertEqual(self.runner.calls, [])

    def test_unavailable_markers(self):
        for stderr in (
            "ERROR: [youtube] abc: Video unavailable",
            "ERROR: [youtube] abc: Private video. Sign in if you've been granted access",
            "ERROR: This video is not available in your country",
        ):
            error = CommandFailed(["yt-dlp"], 1, stderr)
            with self.assertRaises(ExtractionError) as ctx:
                self.acquire("https://youtu.be/abc", ytdlp(probe_error=error))
            self.assertCode(ctx, ExtractionErrorCode.VIDEO_UNAVAILABLE)
            self.assertEqual(ctx.exception.http_status, 404)

    def test_other_probe_failure(self):
        error = CommandFailed(["yt-dlp"], 1, "ERROR: Unable to download webpage: HTTP 500")
        with self.assertRaises(ExtractionError) as ctx:
            self.acquire("https://youtu.be/abc", ytdlp(probe_error=error))
        self.assertCode(ctx, ExtractionErrorCode.EXTRACTION_FAILED)

    def test_probe_timeout(self):
        with self.assertRaises(ExtractionError) as ctx:
            self.acquire(
                "https://youtu.be/abc", ytdlp(probe_error=CommandTimeout(["yt-dlp"], 30))
            )
        self.assertCode(ctx, ExtractionErrorCode.EXTRACTION_FAILED)

    def test_probe_garbage_output(self):
        with self.assertRaises(ExtractionError) as ctx:
            self.acquire("https://youtu.be/abc", ytdlp(info="not json"))
        self.assertCode(ctx, ExtractionErrorCode.EXTRACTION_FAILED)

    def test_extraction_failure(self):
        error = CommandFailed(["yt-dlp"], 1, "ERROR: Postprocessing: ffprobe not found")
        with self.assertRaises(ExtractionError) as ctx:
            self.acquire("https://youtu.be/abc", ytdlp(extract_error=error))
        self.assertCode(ctx, ExtractionErrorCode.EXTRACTION_FAILED)

    def test_zero_exit_without_output_file(self):
        with self.assertRaises(ExtractionError) as ctx:
            self.acquire("https://youtu.be/abc", ytdlp(write_audio=False))
        self.assertCode(ctx, ExtractionErrorCode.EXTRACTION_FAILED)


class TestScratchDirectories(unittest.TestCase):

    def setUp(self):
        self.parent = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.parent, ignore_errors=True)

    def test_scope_removed_on_success(self):
        with acquisition_scope(self.parent) as work_dir:
            self.assertTrue(os.path.isdir(work_dir))
            with open(os.path.join(work_dir, "audio.mp3"), "wb") as f:
                f.write(b"x")
        self.assertFalse(os.path.exists(work_dir))

    def test_scope_removed_on_error(self):
        with self.assertRaises(RuntimeError):
            with acquisition_scope(self.parent) as work_dir:
                raise RuntimeError("boom")
        self.assertFalse(os.path.exists(work_dir))

    def test_scopes_are_distinct(self):
        with acquisition_scope(self.parent) as a, acquisition_scope(self.parent) as b:
            self.assertNotEqual(a, b)

    def test_cleanup_is_idempotent(self):
        path = os.path.join(self.parent, "bick-1")
        os.makedirs(path)
        cleanup_dir(path)
        cleanup_dir(path)
        cleanup_dir(None)
        self.assertFalse(os.path.exists(path))


class TestDownloadThumbnail(unittest.TestCase):

    def setUp(self):
        self.dir = tempfile.mkdtemp()
        self.dest = os.path.join(self.dir, "thumb.jpg")

    def tearDown(self):
        shutil.rmtree(self.dir, ignore_errors=True)

    @mock.patch("bickqr.workers.acquisition.requests.get")
    def test_download(self, get):
        get.return_value.iter_content.return_value = [b"\xff\xd8", b"jpeg"]

        self.assertEqual(download_thumbnail("https://img.test/t.jpg", self.dest), self.dest)
        with open(self.dest, "rb") as f:
            self.assertEqual(f.read(), b"\xff\xd8jpeg")
        get.assert_called_once_with("https://img.test/t.jpg", stream=True, timeout=15)

    @mock.patch("bickqr.workers.acquisition.requests.get")
    def test_network_error_returns_none(self, get):
        get.side_effect = requests.ConnectionError("down")
        self.assertIsNone(download_thumbnail("https://img.test/t.jpg", self.dest))

    @mock.patch("bickqr.workers.acquisition.requests.get")
    def test_http_error_returns_none(self, get):
        get.return_value.raise_for_status.side_effect = requests.HTTPError("404")
        self.assertIsNone(download_thumbnail("https://img.test/t.jpg", self.dest))

    def test_no_url(self):
        self.assertIsNone(download_thumbnail(None, self.dest))
        self.assertIsNone(download_thumbnail("", self.dest))


if __name__ == "__main__":
    unittest.main()
