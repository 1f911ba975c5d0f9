"""SEO-friendly slug generation for catalog products.

Slugs are deterministic: the same title/artist and the same set of
existing slugs always produce the same result (no random or time-based
suffixes).
"""

import re
from collections.abc import Collection

MAX_SLUG_LENGTH = 60
UNKNOWN_ARTIST = "Unknown Artist"

_INVALID_CHARS = re.compile(r"[^a-z0-9\s-]")
_WHITESPACE = re.compile(r"\s+")
_HYPHEN_RUNS = re.compile(r"-+")
_VALID_SLUG = re.compile(r"^[a-z0-9-]+$")


def generate_slug(title: str, artist: str | None = None) -> str:
    """Build a slug from title (and artist, when known).

    "Abbey Road", "The Beatles" -> "abbey-road-the-beatles"
    """
    text = title or ""
    if artist and artist != UNKNOWN_ARTIST:
        text = f"{text} {artist}"

    slug = text.lower().strip()
    slug = _INVALID_CHARS.sub("", slug)
    slug = _WHITESPACE.sub("-", slug)
    slug = _HYPHEN_RUNS.sub("-", slug)
    slug = slug.strip("-")
    return slug[:MAX_SLUG_LENGTH].rstrip("-")


def generate_unique_slug(
    title: str, artist: str | None = None, existing_slugs: Collection[str] = ()
) -> str:
    """Return the base slug, or base-1, base-2, ... until it is not taken."""
    base = generate_slug(title, artist)
    if base not in existing_slugs:
        return base

    counter = 1
    candidate = _with_suffix(base, counter)
    while candidate in existing_slugs:
        counter += 1
        candidate = _with_suffix(base, counter)
    return candidate


def _with_suffix(base: str, counter: int) -> str:
    """base-N, with base trimmed so the result stays within MAX_SLUG_LENGTH."""
    suffix = f"-{counter}"
    return base[: MAX_SLUG_LENGTH - len(suffix)].rstrip("-") + suffix


def is_valid_slug(slug: str) -> bool:
    return bool(slug) and len(slug) <= MAX_SLUG_LENGTH and bool(_VALID_SLUG.match(slug))
