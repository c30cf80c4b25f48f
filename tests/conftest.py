"""Shared fixtures and fakes for Feed Tagger tests."""

import pytest

from feed_tagger.cache import FeedCache, TagCache
from feed_tagger.config import PipelineConfig
from feed_tagger.errors import ClassifierBatchError
from feed_tagger.pipeline import TagEnrichmentPipeline
from feed_tagger.store import MemoryStore

DEFAULT_TAGS = ["Cloud Security", "Open Source", "Machine Learning"]


def make_rss(count: int, prefix: str = "Article", host: str = "example.com") -> bytes:
    """Build an RSS 2.0 document with ``count`` distinct items."""
    items = "".join(
        f"<item><title>{prefix} {i}</title>"
        f"<description>Description of {prefix.lower()} {i}</description>"
        f"<link>https://{host}/{prefix.lower()}/{i}</link></item>"
        for i in range(count)
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Test Feed</title>'
        f"<link>https://{host}/</link><description>Test</description>"
        f"{items}</channel></rss>"
    ).encode("utf-8")


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeClassifier:
    """Records batches and answers with canned tags.

    Args:
        fail_batches: Call indexes that raise ClassifierBatchError
        responses: Optional per-call list of raw tag lists
        clock: Optional FakeClock advanced by ``cost`` on every call
        cost: Simulated seconds per call
    """

    def __init__(self, fail_batches=(), responses=None, clock=None, cost=0.0):
        self.fail_batches = set(fail_batches)
        self.responses = responses or {}
        self.clock = clock
        self.cost = cost
        self.calls: list[list[str]] = []

    async def classify(self, texts):
        index = len(self.calls)
        self.calls.append(list(texts))
        if self.clock is not None:
            self.clock.now += self.cost
        if index in self.fail_batches:
            raise ClassifierBatchError(f"batch {index} failed")
        if index in self.responses:
            return self.responses[index]
        return [list(DEFAULT_TAGS) for _ in texts]

    @property
    def texts_seen(self) -> list[str]:
        return [text for call in self.calls for text in call]


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def tag_cache(store):
    return TagCache(store, ttl=86400)


@pytest.fixture
def feed_cache(store):
    return FeedCache(store, ttl=3600)


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def pipeline_config():
    return PipelineConfig(batch_size=10, deadline_seconds=300.0, batch_delay_seconds=0.0)


@pytest.fixture
def pipeline(tag_cache, feed_cache, classifier, pipeline_config):
    return TagEnrichmentPipeline(tag_cache, feed_cache, classifier, pipeline_config)
