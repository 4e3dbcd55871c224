"""
URL slugs for bick pages: /bick/{slug}-{id}
"""

import random
import re
import string
import unicodedata

_REPLACEMENTS = {
    "æ": "ae",
    "œ": "oe",
    "ø": "o",
    "ß": "ss",
    "ð": "d",
    "þ": "th",
}

SLUG_RE = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")


def generate_slug(title) -> str:
    """Lowercase ASCII slug with single hyphens; 'untitled' when nothing is left."""
    if not isinstance(title, str):
        return "untitled"

    slug = unicodedata.normalize("NFD", title)
    slug = "".join(ch for ch in slug if not unicodedata.combining(ch))
    slug = slug.lower()
    for src, dst in _REPLACEMENTS.items():
        slug = slug.replace(src, dst)
    slug = re.sub(r"[^a-z0-9]+", "-", slug).strip("-")

    return slug or "untitled"


def generate_unique_slug(title, suffix_length: int = 6) -> str:
    alphabet = string.ascii_lowercase + string.digits
    suffix = "".join(random.choice(alphabet) for _ in range(suffix_length))
    return f"{generate_slug(title)}-{suffix}"


def is_valid_slug(slug) -> bool:
    return isinstance(slug, str) and bool(SLUG_RE.match(slug))
