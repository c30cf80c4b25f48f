"""Tag enrichment pipeline for Feed Tagger.

One enrichment pass runs per feed fetch:

1. partition items into tag cache hits and misses (by content fingerprint)
2. split the misses into fixed-size batches
3. classify batches in order under one wall-clock deadline, sleeping
   between classifier calls
4. post-process tags, falling back to taxonomy keywords when the model
   gives too little
5. persist tag entries, refresh the feed snapshot and reconcile the tag
   cache against the fingerprints still in the feed

Batch failures and the deadline only reduce tag coverage; they are
never raised to the caller of :meth:`TagEnrichmentPipeline.enrich`.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from .cache import FeedCache, TagCache
from .config import PipelineConfig
from .dedup import fingerprint
from .errors import (
    CacheReadError,
    CacheWriteError,
    ClassifierBatchError,
    ClassifierTimeoutError,
    RateLimitedError,
)
from .logging_config import create_execution_logger, new_execution_id
from .models import Item
from .rss import clean_html
from .taxonomy import TAG_CATEGORIES, Taxonomy, finalize_tags

MAX_TEXT_CHARS = 1000


class Classifier(Protocol):
    async def classify(self, texts: list[str]) -> list[list[object]]: ...


@dataclass
class EnrichmentResult:
    """Outcome of one enrichment pass."""

    feed_url: str
    items: list[Item]
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def deadline_hit(self) -> bool:
        return bool(self.metrics.get("deadline_hit"))

    @property
    def untagged(self) -> list[Item]:
        return [item for item in self.items if not item.tags]


def item_text(item: Item) -> str:
    """Title plus the description with markup removed."""
    return f"{item.title} {clean_html(item.description)}".strip()


def classifier_text(item: Item) -> str:
    """Plain text sent to the classifier for one item."""
    return item_text(item)[:MAX_TEXT_CHARS]


def _item_texts(pending: dict[str, list[Item]]) -> dict[str, str]:
    return {fp: classifier_text(group[0]) for fp, group in pending.items()}


def _deadline_message(batch_index: int, batch_total: int) -> str:
    return (
        f"Deadline reached before batch {batch_index + 1}/{batch_total}, "
        f"{batch_total - batch_index} batch(es) skipped"
    )


def make_batches(fingerprints: list[str], batch_size: int) -> list[list[str]]:
    return [
        fingerprints[i : i + batch_size] for i in range(0, len(fingerprints), batch_size)
    ]


class TagEnrichmentPipeline:
    """Partitions, batches, classifies and persists tags for a feed."""

    def __init__(
        self,
        tag_cache: TagCache,
        feed_cache: FeedCache,
        classifier: Classifier,
        config: PipelineConfig | None = None,
        taxonomy: Taxonomy = TAG_CATEGORIES,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.tag_cache = tag_cache
        self.feed_cache = feed_cache
        self.classifier = classifier
        self.config = config or PipelineConfig()
        self.taxonomy = taxonomy
        self._sleep = sleep
        self._clock = clock

    async def enrich(
        self,
        feed_url: str,
        items: list[Item],
        previous_items: list[Item] | None = None,
        execution_id: str | None = None,
    ) -> EnrichmentResult:
        """Run one enrichment pass, updating ``items`` in place.

        Args:
            feed_url: Feed whose snapshot is refreshed
            items: Normalized items in feed order
            previous_items: Snapshot seen before this fetch, used for
                feed-scoped reconciliation
            execution_id: Optional execution ID for logging context

        Returns:
            EnrichmentResult with the merged items and pass metrics
        """
        logger = create_execution_logger(
            "pipeline", execution_id or new_execution_id("enrich")
        )
        logger.log_execution_start(feed_url=feed_url, items_count=len(items))

        metrics: dict[str, Any] = {
            "items_total": len(items),
            "cache_hits": 0,
            "batches_total": 0,
            "batches_completed": 0,
            "batches_failed": 0,
            "items_classified": 0,
            "items_fallback": 0,
            "deadline_hit": False,
            "cache_write_errors": 0,
            "reconciled_deleted": 0,
        }

        start = self._clock()
        pending = await self._partition(items, metrics)
        texts = await asyncio.to_thread(_item_texts, pending)
        batches = make_batches(list(pending), self.config.batch_size)
        metrics["batches_total"] = len(batches)
        if metrics["cache_hits"] and batches:
            await self._save_snapshot(feed_url, items, metrics, logger)

        try:
            await self._classify_batches(
                feed_url, items, batches, pending, texts, start, metrics, logger
            )
        except ClassifierTimeoutError as e:
            metrics["deadline_hit"] = True
            logger.warning(str(e), feed_url=feed_url, exc_info=e)

        await self._save_snapshot(feed_url, items, metrics, logger)
        metrics["reconciled_deleted"] = await self._reconcile(
            feed_url, items, previous_items, logger
        )

        logger.log_metrics(metrics)
        logger.log_execution_end(success=metrics["batches_failed"] == 0, metrics=metrics)
        return EnrichmentResult(feed_url=feed_url, items=items, metrics=metrics)

    async def _classify_batches(
        self,
        feed_url: str,
        items: list[Item],
        batches: list[list[str]],
        pending: dict[str, list[Item]],
        texts: dict[str, str],
        start: float,
        metrics: dict[str, Any],
        logger,
    ) -> None:
        """Classify batches in order until done or the pass deadline.

        Raises:
            ClassifierTimeoutError: When the deadline stops the pass early
        """
        for batch_index, batch in enumerate(batches):
            if batch_index > 0:
                await self._sleep(self.config.batch_delay_seconds)

            remaining = self.config.deadline_seconds - (self._clock() - start)
            if remaining <= 0:
                raise ClassifierTimeoutError(
                    _deadline_message(batch_index, len(batches))
                )

            logger.log_batch(batch_index, len(batches), len(batch), "started")
            batch_texts = [texts[fp] for fp in batch]
            try:
                async with asyncio.timeout(remaining) as deadline:
                    raw_results = await self.classifier.classify(batch_texts)
            except TimeoutError as e:
                if deadline.expired():
                    raise ClassifierTimeoutError(
                        _deadline_message(batch_index, len(batches))
                    ) from e
                metrics["batches_failed"] += 1
                logger.warning(
                    f"Classifier call timed out: {e}",
                    feed_url=feed_url,
                    batch_index=batch_index,
                    error=str(e),
                )
                continue
            except RateLimitedError as e:
                metrics["batches_failed"] += 1
                logger.warning(
                    f"Classifier rate limited batch: {e}",
                    feed_url=feed_url,
                    batch_index=batch_index,
                    error=str(e),
                )
                continue
            except ClassifierBatchError as e:
                metrics["batches_failed"] += 1
                logger.error(
                    f"Classifier batch failed: {e}",
                    feed_url=feed_url,
                    batch_index=batch_index,
                    error=str(e),
                )
                continue
            except Exception as e:
                metrics["batches_failed"] += 1
                logger.error(
                    f"Unexpected classifier failure: {e}",
                    feed_url=feed_url,
                    batch_index=batch_index,
                    error=str(e),
                )
                continue

            await self._apply_batch(batch, raw_results, pending, texts, metrics, logger)
            metrics["batches_completed"] += 1
            logger.log_batch(batch_index, len(batches), len(batch), "completed")

            if batch_index < len(batches) - 1:
                await self._save_snapshot(feed_url, items, metrics, logger)

    async def _partition(
        self, items: list[Item], metrics: dict[str, Any]
    ) -> dict[str, list[Item]]:
        """Attach cached tags; return misses grouped by fingerprint in feed order."""
        pending: dict[str, list[Item]] = {}
        for item in items:
            fp = fingerprint(item)
            if fp in pending:
                pending[fp].append(item)
                continue

            entry = await self.tag_cache.lookup(fp)
            if entry is not None and entry.tags:
                item.tags = list(entry.tags)
                item.subcategories = {k: list(v) for k, v in entry.subcategories.items()}
                metrics["cache_hits"] += 1
            else:
                pending[fp] = [item]
        return pending

    async def _apply_batch(
        self,
        batch: list[str],
        raw_results: list[list[object]],
        pending: dict[str, list[Item]],
        texts: dict[str, str],
        metrics: dict[str, Any],
        logger,
    ) -> None:
        for index, fp in enumerate(batch):
            group = pending[fp]
            raw_tags = raw_results[index] if index < len(raw_results) else []
            tags, subcategories, used_fallback = finalize_tags(
                raw_tags, texts[fp], self.taxonomy
            )

            for item in group:
                item.tags = list(tags)
                item.subcategories = {k: list(v) for k, v in subcategories.items()}
            metrics["items_classified"] += len(group)
            if used_fallback:
                metrics["items_fallback"] += len(group)

            try:
                await self.tag_cache.store(fp, tags, subcategories)
            except CacheWriteError as e:
                metrics["cache_write_errors"] += 1
                logger.warning(
                    f"Failed to cache tags: {e}", fingerprint=fp, error=str(e)
                )

    async def _save_snapshot(
        self, feed_url: str, items: list[Item], metrics: dict[str, Any], logger
    ) -> None:
        try:
            await self.feed_cache.put(feed_url, items)
        except CacheWriteError as e:
            metrics["cache_write_errors"] += 1
            logger.warning(
                f"Failed to update feed snapshot: {e}", feed_url=feed_url, error=str(e)
            )

    async def _reconcile(
        self,
        feed_url: str,
        items: list[Item],
        previous_items: list[Item] | None,
        logger,
    ) -> int:
        live = {fingerprint(item) for item in items}
        candidates = None
        if self.config.reconcile_scope == "feed":
            candidates = {fingerprint(item) for item in previous_items or []}
        try:
            return await self.tag_cache.reconcile(feed_url, live, candidates)
        except CacheReadError as e:
            logger.warning(
                f"Tag cache reconciliation skipped: {e}", feed_url=feed_url, error=str(e)
            )
            return 0
