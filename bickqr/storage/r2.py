"""
Object storage on Cloudflare R2 (S3-compatible).

Key layout:
    uploads/{bick_id}/original.{ext}
    uploads/{bick_id}/waveform.json
    uploads/{bick_id}/og.png
    uploads/{bick_id}/teaser.mp4
    uploads/{bick_id}/thumbnail.jpg
    extracted/{uuid}.mp3
"""

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from bickqr.core import config
from bickqr.core.errors import ProcessingError, ProcessingErrorType

logger = logging.getLogger(__name__)

PRESIGN_UPLOAD_EXPIRES = 60 * 60  # 1 hour

RECOGNISED_EXTENSIONS = {
    "mp3", "wav", "ogg", "m4a", "mp4", "webm", "mov", "avi", "mkv", "aac", "flac",
}


def storage_key_for(bick_id: str, asset_name: str) -> str:
    """Storage key of a bick asset: uploads/{bick_id}/{asset_name}"""
    return f"uploads/{bick_id}/{asset_name}"


def original_storage_key(bick_id: str, filename: str) -> str:
    """Storage key of the original upload, keeping a recognised extension or mp3."""
    ext = os.path.splitext(filename or "")[1].lstrip(".").lower()
    if ext not in RECOGNISED_EXTENSIONS:
        ext = "mp3"
    return storage_key_for(bick_id, f"original.{ext}")


def extracted_storage_key(token: str) -> str:
    return f"extracted/{token}.mp3"


def join_public_url(base: str, key: str) -> str:
    return f"{base.rstrip('/')}/{key.lstrip('/')}"


@dataclass
class PresignedUrl:
    url: str
    expires_at: datetime


@dataclass
class UploadResult:
    cdn_url: str
    storage_key: str
    size_bytes: int


def make_r2_client(
    endpoint_url: str = None,
    access_key_id: str = None,
    secret_access_key: str = None,
):
    return boto3.client(
        "s3",
        region_name="auto",
        endpoint_url=endpoint_url or config.R2_ENDPOINT,
        aws_access_key_id=access_key_id or config.R2_ACCESS_KEY_ID,
        aws_secret_access_key=secret_access_key or config.R2_SECRET_ACCESS_KEY,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
    )


class R2Storage:
    """Bucket-bound storage client used by the API and the worker."""

    def __init__(self, client=None, bucket: str = None, cdn_url: str = None):
        self.bucket = bucket or config.R2_BUCKET_NAME
        self.cdn_url = cdn_url if cdn_url is not None else config.CDN_URL
        if not self.bucket:
            raise RuntimeError("R2_BUCKET_NAME is not set")
        if not self.cdn_url:
            raise RuntimeError("CDN_URL is not set")
        self.client = client or make_r2_client()

    def public_url(self, key: str) -> str:
        return join_public_url(self.cdn_url, key)

    def presign(self, key: str, content_type: str, expires_in: int = PRESIGN_UPLOAD_EXPIRES) -> PresignedUrl:
        """Presigned PUT URL for a direct client upload."""
        url = self.client.generate_presigned_url(
            ClientMethod="put_object",
            Params={
                "Bucket": self.bucket,
                "Key": key,
                "ContentType": content_type,
            },
            ExpiresIn=expires_in,
        )
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
        return PresignedUrl(url=url, expires_at=expires_at)

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            code = (e.response.get("Error") or {}).get("Code")
            if code in ("404", "NoSuchKey", "NotFound"):
                return False
            raise

    def upload_file(self, path: str, key: str, content_type: str) -> UploadResult:
        """Upload a local file; any failure becomes UPLOAD_FAILED."""
        try:
            size = os.path.getsize(path)
            self.client.upload_file(
                path,
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type},
            )
        except (BotoCoreError, ClientError, OSError) as e:
            raise ProcessingError(
                ProcessingErrorType.UPLOAD_FAILED,
                f"Failed to upload {key}: {e}",
                step="upload",
            ) from e

        logger.info(f"Uploaded {key} ({size} bytes)")
        return UploadResult(cdn_url=self.public_url(key), storage_key=key, size_bytes=size)

    def download_file(self, key: str, dest: str) -> str:
        """Download an object to a local path; any failure becomes DOWNLOAD_FAILED."""
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        try:
            self.client.download_file(self.bucket, key, dest)
        except (BotoCoreError, ClientError, OSError) as e:
            raise ProcessingError(
                ProcessingErrorType.DOWNLOAD_FAILED,
                f"Failed to download {key}: {e}",
                step="download",
            ) from e

        logger.info(f"Downloaded {key} to {dest}")
        return dest
