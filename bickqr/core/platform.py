"""
Platform detection for remote media URLs.

Supported:
- YouTube: youtube.com, youtu.be
- TikTok: tiktok.com, vm.tiktok.com, vt.tiktok.com (short links)
- Instagram: instagram.com/p/, /reel/, /reels/
- Twitter/X: twitter.com, x.com with /status/
"""

import enum
import re
from typing import Optional


class Platform(str, enum.Enum):
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    INSTAGRAM = "instagram"
    TWITTER = "twitter"


SUPPORTED_PLATFORMS = {
    Platform.YOUTUBE: re.compile(
        r"^(https?://)?(www\.|m\.)?(youtube\.com|youtu\.be)/.+", re.IGNORECASE
    ),
    Platform.TIKTOK: re.compile(
        r"^(https?://)?(www\.|vm\.|vt\.)?tiktok\.com/.+", re.IGNORECASE
    ),
    Platform.INSTAGRAM: re.compile(
        r"^(https?://)?(www\.)?instagram\.com/(p|reel|reels)/.+", re.IGNORECASE
    ),
    Platform.TWITTER: re.compile(
        r"^(https?://)?(www\.)?(twitter\.com|x\.com)/.+/status/.+", re.IGNORECASE
    ),
}

SUPPORTED_PLATFORM_NAMES = ["YouTube", "TikTok", "Instagram", "Twitter/X"]


def detect_platform(url) -> Optional[Platform]:
    """Return the platform a URL belongs to, or None if unsupported."""
    if not isinstance(url, str) or not url.strip():
        return None

    trimmed = url.strip()
    for platform, pattern in SUPPORTED_PLATFORMS.items():
        if pattern.match(trimmed):
            return platform
    return None


def is_supported_url(url) -> bool:
    return detect_platform(url) is not None
