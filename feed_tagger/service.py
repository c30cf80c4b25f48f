"""Request orchestration for Feed Tagger: fetch, cache, enrich, invalidate."""

import asyncio
from typing import Any

from .cache import FeedCache, TagCache
from .classify import BedrockClassifier
from .config import Config
from .dedup import dedupe_items, fingerprint
from .errors import CacheWriteError
from .logging_config import create_execution_logger, new_execution_id
from .models import Item
from .pipeline import EnrichmentResult, TagEnrichmentPipeline
from .rss import FeedProcessor, source_for, validate_feed_url
from .store import DynamoDBStore, KeyValueStore, MemoryStore
from .taxonomy import load_taxonomy


class FeedService:
    """Serves feed requests and runs enrichment passes in the background.

    A request never waits for classification: :meth:`get_feed` stores the
    freshly parsed items, schedules an enrichment task and returns. The
    task reports only through the caches.
    """

    def __init__(
        self,
        feed_processor: FeedProcessor,
        tag_cache: TagCache,
        feed_cache: FeedCache,
        pipeline: TagEnrichmentPipeline,
        clear_cache_scope: str = "all",
        execution_id: str | None = None,
    ):
        self.feed_processor = feed_processor
        self.tag_cache = tag_cache
        self.feed_cache = feed_cache
        self.pipeline = pipeline
        self.clear_cache_scope = clear_cache_scope
        self.logger = create_execution_logger("feed_service", execution_id)
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: Config, store: KeyValueStore | None = None) -> "FeedService":
        """Wire every component from environment configuration."""
        execution_id = new_execution_id("service")
        cache_config = config.get_cache_config()
        if store is None:
            if cache_config.backend == "memory":
                store = MemoryStore()
            else:
                store = DynamoDBStore(
                    cache_config.table_name,
                    cache_config.region,
                    execution_id=execution_id,
                )

        tag_cache = TagCache(store, cache_config.tag_ttl, execution_id=execution_id)
        feed_cache = FeedCache(store, cache_config.feed_ttl, execution_id=execution_id)
        classifier = BedrockClassifier(config.get_bedrock_config(), execution_id=execution_id)
        pipeline = TagEnrichmentPipeline(
            tag_cache,
            feed_cache,
            classifier,
            config.get_pipeline_config(),
            taxonomy=load_taxonomy(config.tag_categories_file),
        )
        server_config = config.get_server_config()
        return cls(
            FeedProcessor(timeout=server_config.fetch_timeout, execution_id=execution_id),
            tag_cache,
            feed_cache,
            pipeline,
            clear_cache_scope=server_config.clear_cache_scope,
            execution_id=execution_id,
        )

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def get_feed(self, feed_url: str | None) -> list[Item]:
        """Fetch and normalize a feed, then start background enrichment.

        Returns:
            The feed's items as parsed, before enrichment

        Raises:
            InputError: If the URL is missing or invalid
            UpstreamFetchError: If the feed cannot be downloaded
        """
        feed_url = validate_feed_url(feed_url)
        raw = await self.feed_processor.fetch_raw(feed_url)

        source = source_for(feed_url)
        items = await asyncio.to_thread(self.feed_processor.parse_items, raw, feed_url)
        for item in items:
            item.source = source
        items = dedupe_items(items)

        previous_items = await self.feed_cache.get(feed_url)
        try:
            await self.feed_cache.put(feed_url, items)
        except CacheWriteError as e:
            self.logger.warning(
                f"Failed to store initial feed snapshot: {e}", feed_url=feed_url, error=str(e)
            )

        pass_items = [Item.from_dict(item.to_dict()) for item in items]
        self.start_enrichment(feed_url, pass_items, previous_items)
        return items

    async def get_cached_feed(self, feed_url: str | None) -> list[Item]:
        """Return the Feed Cache snapshot; never fetches the source feed.

        A miss yields an empty list, meaning "not ready yet".
        """
        feed_url = validate_feed_url(feed_url)
        items = await self.feed_cache.get(feed_url)
        return items if items is not None else []

    async def invalidate(self, feed_url: str | None) -> dict[str, Any]:
        """Delete cached data for a feed.

        With the ``all`` scope every feed snapshot and tag entry is
        removed as well; with ``feed`` only the tag entries of the
        feed's last snapshot go.

        Raises:
            InputError: If the URL is missing or invalid
        """
        feed_url = validate_feed_url(feed_url)

        snapshot = await self.feed_cache.get(feed_url)
        await self.feed_cache.delete(feed_url)
        feeds_deleted = 1 if snapshot is not None else 0

        if self.clear_cache_scope == "all":
            tags_deleted = await self.tag_cache.clear()
            feeds_deleted += await self.feed_cache.clear()
        else:
            fingerprints = {fingerprint(item) for item in snapshot or []}
            for value in fingerprints:
                await self.tag_cache.delete(value)
            tags_deleted = len(fingerprints)

        self.logger.info(
            "Cache invalidated",
            feed_url=feed_url,
            scope=self.clear_cache_scope,
            feeds_deleted=feeds_deleted,
            tags_deleted=tags_deleted,
        )
        return {
            "url": feed_url,
            "scope": self.clear_cache_scope,
            "feeds_deleted": feeds_deleted,
            "tags_deleted": tags_deleted,
        }

    def start_enrichment(
        self, feed_url: str, items: list[Item], previous_items: list[Item] | None = None
    ) -> asyncio.Task:
        """Schedule a detached enrichment pass on the running loop."""
        task = asyncio.create_task(
            self._run_enrichment(feed_url, items, previous_items),
            name=f"enrich:{feed_url}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run_enrichment(
        self, feed_url: str, items: list[Item], previous_items: list[Item] | None
    ) -> EnrichmentResult | None:
        execution_id = new_execution_id("enrich")
        try:
            return await self.pipeline.enrich(
                feed_url, items, previous_items, execution_id=execution_id
            )
        except Exception as e:
            self.logger.error(
                f"Background enrichment failed for {feed_url}: {e}",
                feed_url=feed_url,
                enrichment_id=execution_id,
                error=str(e),
            )
            return None

    async def wait_for_background(self) -> None:
        """Wait until every scheduled enrichment pass has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def shutdown(self, timeout: float | None = None) -> None:
        """Let in-flight passes finish, up to ``timeout`` seconds."""
        if not self._tasks:
            return
        self.logger.info("Waiting for background enrichment", pending=len(self._tasks))
        _, still_running = await asyncio.wait(set(self._tasks), timeout=timeout)
        if still_running:
            self.logger.warning(
                "Background enrichment still running at shutdown",
                pending=len(still_running),
            )
