"""Tag Cache and Feed Cache on top of a key-value store."""

import json
from collections.abc import Iterable

from .errors import CacheReadError, CacheWriteError
from .logging_config import create_execution_logger
from .models import FeedCacheEntry, Item, TagCacheEntry
from .store import KeyValueStore

TAG_PREFIX = "tags:"
FEED_PREFIX = "feed:"


def _encode(payload: dict) -> bytes:
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def _decode(raw: bytes) -> dict | None:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    return payload if isinstance(payload, dict) else None


class TagCache:
    """Maps a content fingerprint to its classification result."""

    def __init__(
        self, store: KeyValueStore, ttl: int = 86400, execution_id: str | None = None
    ):
        self.backend = store
        self.ttl = ttl
        self.logger = create_execution_logger("tag_cache", execution_id)

    @staticmethod
    def key_for(fingerprint: str) -> str:
        return f"{TAG_PREFIX}{fingerprint}"

    async def lookup(self, fingerprint: str) -> TagCacheEntry | None:
        """Return the cached entry, or None if absent, expired or unreadable."""
        try:
            raw = await self.backend.get(self.key_for(fingerprint))
        except CacheReadError as e:
            self.logger.warning(
                f"Tag cache lookup failed: {e}", fingerprint=fingerprint, error=str(e)
            )
            return None
        if raw is None:
            return None

        payload = _decode(raw)
        if payload is None:
            self.logger.warning("Discarding corrupt tag cache entry", fingerprint=fingerprint)
            return None
        if not isinstance(payload.get("tags"), list):
            self.logger.warning("Discarding malformed tag cache entry", fingerprint=fingerprint)
            return None
        return TagCacheEntry.from_dict(payload)

    async def store(
        self, fingerprint: str, tags: list[str], subcategories: dict[str, list[str]]
    ) -> TagCacheEntry:
        """Overwrite the entry for a fingerprint and reset its TTL.

        Raises:
            CacheWriteError: If the underlying store rejects the write
        """
        entry = TagCacheEntry(tags=list(tags), subcategories=subcategories)
        await self.backend.put(self.key_for(fingerprint), _encode(entry.to_dict()), self.ttl)
        self.logger.debug("Stored tags", fingerprint=fingerprint, tag_count=len(tags))
        return entry

    async def delete(self, fingerprint: str) -> None:
        await self.backend.delete(self.key_for(fingerprint))

    async def fingerprints(self) -> list[str]:
        """List every live fingerprint in the store."""
        keys = await self.backend.list_keys(TAG_PREFIX)
        return [key[len(TAG_PREFIX):] for key in keys]

    async def reconcile(
        self,
        feed_url: str,
        live_fingerprints: set[str],
        candidates: Iterable[str] | None = None,
    ) -> int:
        """Delete tag entries whose fingerprint is not live.

        Without ``candidates`` every tag entry in the store is scanned,
        since fingerprints carry no feed affinity. With ``candidates``
        only those fingerprints are considered.

        Returns:
            Number of entries deleted
        """
        if candidates is None:
            candidates = await self.fingerprints()

        deleted = 0
        for stale in candidates:
            if stale in live_fingerprints:
                continue
            try:
                await self.delete(stale)
                deleted += 1
            except CacheWriteError as e:
                self.logger.warning(
                    f"Failed to evict stale tags: {e}",
                    feed_url=feed_url,
                    fingerprint=stale,
                    error=str(e),
                )

        self.logger.info(
            "Reconciled tag cache",
            feed_url=feed_url,
            live_count=len(live_fingerprints),
            deleted_count=deleted,
        )
        return deleted

    async def clear(self) -> int:
        """Delete every tag entry; returns the number deleted."""
        fingerprints = await self.fingerprints()
        for value in fingerprints:
            await self.delete(value)
        return len(fingerprints)


class FeedCache:
    """Maps a feed URL to its most recent enriched item snapshot."""

    def __init__(
        self, store: KeyValueStore, ttl: int = 3600, execution_id: str | None = None
    ):
        self.backend = store
        self.ttl = ttl
        self.logger = create_execution_logger("feed_cache", execution_id)

    @staticmethod
    def key_for(feed_url: str) -> str:
        return f"{FEED_PREFIX}{feed_url}"

    async def get_entry(self, feed_url: str) -> FeedCacheEntry | None:
        try:
            raw = await self.backend.get(self.key_for(feed_url))
        except CacheReadError as e:
            self.logger.warning(
                f"Feed cache read failed: {e}", feed_url=feed_url, error=str(e)
            )
            return None
        if raw is None:
            return None

        payload = _decode(raw)
        if payload is None:
            self.logger.warning("Discarding corrupt feed cache entry", feed_url=feed_url)
            return None
        return FeedCacheEntry.from_dict(payload)

    async def get(self, feed_url: str) -> list[Item] | None:
        """Return the cached items for a feed, or None on a miss."""
        entry = await self.get_entry(feed_url)
        return entry.items if entry is not None else None

    async def put(self, feed_url: str, items: list[Item]) -> None:
        """Overwrite the snapshot for a feed and reset its TTL.

        Raises:
            CacheWriteError: If the underlying store rejects the write
        """
        entry = FeedCacheEntry(items=list(items))
        await self.backend.put(self.key_for(feed_url), _encode(entry.to_dict()), self.ttl)
        self.logger.debug("Stored feed snapshot", feed_url=feed_url, items_count=len(items))

    async def delete(self, feed_url: str) -> None:
        await self.backend.delete(self.key_for(feed_url))

    async def list_all(self) -> list[str]:
        """List every cached feed URL."""
        keys = await self.backend.list_keys(FEED_PREFIX)
        return [key[len(FEED_PREFIX):] for key in keys]

    async def clear(self) -> int:
        """Delete every feed snapshot; returns the number deleted."""
        feed_urls = await self.list_all()
        for feed_url in feed_urls:
            await self.delete(feed_url)
        return len(feed_urls)
