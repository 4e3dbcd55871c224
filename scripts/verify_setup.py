#!/usr/bin/env python3
"""
Verify that the Bickqr worker and API can run on this machine.

Checks external tools, storage settings, the brand background and the
database connection.

Run with: python scripts/verify_setup.py
"""

import os
import shutil
import sys

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

from sqlalchemy import text  # noqa: E402
from sqlalchemy.exc import SQLAlchemyError  # noqa: E402

from bickqr.core import config  # noqa: E402
from bickqr.db import make_engine  # noqa: E402


def check(ok: bool, description: str, detail: str = "") -> bool:
    status = "✓" if ok else "✗"
    suffix = f": {detail}" if detail else ""
    print(f"  {status} {description}{suffix}")
    return ok


def main():
    print("=" * 60)
    print("Bickqr Setup Verification")
    print("=" * 60)

    errors = []

    print(f"\nProject root: {PROJECT_ROOT}")

    print("\n[1] External Tools")
    print("-" * 40)

    for name, binary in (
        ("yt-dlp", config.YTDLP_BIN),
        ("ffmpeg", config.FFMPEG_BIN),
        ("ffprobe", config.FFPROBE_BIN),
    ):
        found = shutil.which(binary)
        if not check(found is not None, name, found or f"{binary} not on PATH"):
            errors.append(f"{name} not found")

    print("\n[2] Object Storage")
    print("-" * 40)

    for name in ("R2_ENDPOINT", "R2_ACCESS_KEY_ID", "R2_SECRET_ACCESS_KEY", "R2_BUCKET_NAME", "CDN_URL"):
        value = getattr(config, name)
        shown = value if name in ("R2_ENDPOINT", "R2_BUCKET_NAME", "CDN_URL") else "set"
        if not check(bool(value), name, shown if value else "not set"):
            errors.append(f"{name} is not set")

    print("\n[3] Media Assets")
    print("-" * 40)

    if not check(
        os.path.isfile(config.BRAND_BACKGROUND_PATH),
        "Brand background",
        config.BRAND_BACKGROUND_PATH,
    ):
        errors.append("Brand background image not found")

    os.makedirs(config.TEMP_ROOT, exist_ok=True)
    check(os.access(config.TEMP_ROOT, os.W_OK), "Temp root writable", config.TEMP_ROOT)

    print("\n[4] Database")
    print("-" * 40)

    try:
        engine = make_engine(config.DATABASE_URL)
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        engine.dispose()
        check(True, "Connection", engine.url.render_as_string(hide_password=True))
    except SQLAlchemyError as e:
        check(False, "Connection", str(e).splitlines()[0])
        errors.append("Database connection failed")

    print("\n" + "=" * 60)

    if errors:
        print(f"VERIFICATION FAILED - {len(errors)} error(s) found:")
        print("-" * 40)
        for error in errors:
            print(f"  • {error}")
        print("\nHints:")
        print("  - Install tools: pip install yt-dlp; apt install ffmpeg")
        print("  - Set R2_ACCOUNT_ID (or R2_ENDPOINT), R2_ACCESS_KEY_ID, R2_SECRET_ACCESS_KEY,")
        print("    R2_BUCKET_NAME and CDN_URL")
        print("  - Or set YTDLP_BIN / FFMPEG_BIN / FFPROBE_BIN to explicit paths")
        return 1

    print("✓ VERIFICATION PASSED - All checks OK!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
