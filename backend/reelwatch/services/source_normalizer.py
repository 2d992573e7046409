"""
Resolve a tracked source (handle, profile URL, #tag, hashtag URL) into the
identifier the reel scraper actor takes in its ``username`` input.
"""
from __future__ import annotations

import logging
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

HASHTAG_URL_MARKER = "instagram.com/explore/tags/"


def _tag_from_url(descriptor: str) -> str | None:
    try:
        parsed = urlparse(descriptor.strip())
    except ValueError:
        return None
    parts = [p for p in parsed.path.split("/") if p]
    # /explore/tags/<tag>/
    if len(parts) >= 3 and parts[0] == "explore" and parts[1] == "tags":
        return parts[2]
    return None


def normalize_source(descriptor: str) -> str:
    """Never raises; falls back to the descriptor as given."""
    if not isinstance(descriptor, str):
        return str(descriptor)

    if descriptor.startswith("#"):
        return descriptor[1:].strip()

    if HASHTAG_URL_MARKER in descriptor:
        tag = _tag_from_url(descriptor)
        if tag:
            return tag
        logger.warning("[normalize] could not extract tag from %r, using as is", descriptor)
        return descriptor

    return descriptor.strip()
