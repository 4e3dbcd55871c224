"""
Test doubles shared by the test modules: command runner, object storage,
media tools, acquisition, and a throwaway SQLite database.
"""

import json
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone

from botocore.exceptions import ClientError

from bickqr.core.errors import ProcessingError, ProcessingErrorType
from bickqr.core.platform import Platform
from bickqr.db import init_db, make_engine, make_session_factory
from bickqr.storage.r2 import PresignedUrl, UploadResult, join_public_url
from bickqr.workers.acquisition import AcquiredAudio
from bickqr.workers.runner import CommandResult, CommandRunner

CDN = "https://cdn.test"


class TempDatabase:
    """File-backed SQLite database in its own temp dir."""

    def __init__(self):
        self.dir = tempfile.mkdtemp(prefix="bickqr-test-")
        self.engine = make_engine(f"sqlite:///{os.path.join(self.dir, 'test.db')}")
        init_db(self.engine)
        self.session_factory = make_session_factory(self.engine)

    def close(self):
        self.engine.dispose()
        shutil.rmtree(self.dir, ignore_errors=True)


class FakeRunner(CommandRunner):
    """
    CommandRunner whose behaviour comes from `handler(args, timeout)`.
    The handler returns stdout (str) or raises CommandFailed/CommandTimeout.
    """

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def run(self, args, timeout=120):
        args = [str(a) for a in args]
        self.calls.append((args, timeout))
        stdout = self.handler(args, timeout) or ""
        return CommandResult(args=args, returncode=0, stdout=stdout, stderr="")


class FakeStorage:
    """In-memory bucket."""

    def __init__(self, fail_presign=False, fail_upload=None):
        self.objects = {}
        self.uploads = []
        self.fail_presign = fail_presign
        self.fail_upload = fail_upload

    def public_url(self, key):
        return join_public_url(CDN, key)

    def presign(self, key, content_type, expires_in=3600):
        if self.fail_presign:
            raise ClientError({"Error": {"Code": "500", "Message": "boom"}}, "PutObject")
        return PresignedUrl(
            url=f"https://r2.test/bucket/{key}?X-Amz-Signature=abc",
            expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        )

    def exists(self, key):
        return key in self.objects

    def upload_file(self, path, key, content_type):
        if self.fail_upload is not None:
            raise self.fail_upload
        with open(path, "rb") as f:
            data = f.read()
        self.objects[key] = data
        self.uploads.append((key, content_type))
        return UploadResult(cdn_url=self.public_url(key), storage_key=key, size_bytes=len(data))

    def download_file(self, key, dest):
        if key not in self.objects:
            raise ProcessingError(
                ProcessingErrorType.DOWNLOAD_FAILED, f"No such key: {key}", step="download"
            )
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        with open(dest, "wb") as f:
            f.write(self.objects[key])
        return dest


def _touch(directory, name, data=b"x"):
    path = os.path.join(directory, name)
    with open(path, "wb") as f:
        f.write(data)
    return path


class FakeMedia:
    """Records stage calls and writes small placeholder outputs."""

    def __init__(self, duration=4.2, valid=True, fail_on=None):
        self.duration = duration
        self.valid = valid
        self.fail_on = fail_on
        self.calls = []

    def _step(self, name):
        self.calls.append(name)
        if self.fail_on == name:
            raise ProcessingError(ProcessingErrorType.FFMPEG_FAILED, f"{name} broke", step=name)

    def validate_audio(self, audio_path):
        self.calls.append("validate")
        return self.valid

    def get_audio_duration(self, audio_path):
        self.calls.append("duration")
        return self.duration

    def generate_waveform_json(self, audio_path, output_dir, duration=None):
        self._step("waveform")
        return _touch(output_dir, "waveform.json", json.dumps({"peaks": [0.5]}).encode())

    def generate_og_image(self, audio_path, output_dir):
        self._step("og_image")
        return _touch(output_dir, "og.png")

    def generate_teaser(self, audio_path, output_dir, duration=None):
        self._step("teaser")
        return _touch(output_dir, "teaser.mp4")

    def create_square_thumbnail(self, input_path, output_dir, size=400, scale_to_fit=False):
        self._step("thumbnail")
        self.thumbnail_scale_to_fit = scale_to_fit
        return _touch(output_dir, "thumbnail.jpg")


class FakeAcquisition:
    def __init__(self, error=None, thumbnail_url=None):
        self.error = error
        self.thumbnail_url = thumbnail_url
        self.calls = []

    def acquire(self, url, work_dir):
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        os.makedirs(work_dir, exist_ok=True)
        path = _touch(work_dir, "audio.mp3", b"ID3fake")
        return AcquiredAudio(
            local_audio_path=path,
            duration_ms=4200,
            platform=Platform.TIKTOK,
            title="Remote clip",
            thumbnail_url=self.thumbnail_url,
        )
