from bickqr.storage.r2 import (
    PresignedUrl,
    R2Storage,
    UploadResult,
    extracted_storage_key,
    join_public_url,
    original_storage_key,
    storage_key_for,
)

__all__ = [
    "PresignedUrl",
    "R2Storage",
    "UploadResult",
    "extracted_storage_key",
    "join_public_url",
    "original_storage_key",
    "storage_key_for",
]
