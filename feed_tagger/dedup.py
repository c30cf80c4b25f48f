"""Content fingerprinting and item deduplication for Feed Tagger."""

import hashlib
from collections.abc import Iterable

from .models import Item


def content_fingerprint(title: str, description: str) -> str:
    """Return the SHA256 hex digest of ``title + description``.

    The digest ignores link and source so identical content published
    by several feeds shares one tag cache entry.
    """
    return hashlib.sha256(f"{title}{description}".encode("utf-8")).hexdigest()


def fingerprint(item: Item) -> str:
    """Generate the tag cache key for a feed item."""
    return content_fingerprint(item.title, item.description)


def dedupe_items(items: Iterable[Item]) -> list[Item]:
    """Drop items repeating an earlier (source, link) pair, keeping order."""
    seen: set[tuple[str, str]] = set()
    unique = []
    for item in items:
        key = (item.source, item.link)
        if key in seen:
            continue
        seen.add(key)
        unique.append(item)
    return unique
