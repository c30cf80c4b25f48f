"""Error taxonomy for Feed Tagger."""


class FeedTaggerError(Exception):
    """Base class for all Feed Tagger errors."""


class InputError(FeedTaggerError):
    """Missing or invalid request parameter (surfaced as HTTP 400)."""


class UpstreamFetchError(FeedTaggerError):
    """Feed source unreachable or returned unusable content (HTTP 500)."""


class ClassifierBatchError(FeedTaggerError):
    """A single classifier batch failed; its items stay untagged."""


class RateLimitedError(ClassifierBatchError):
    """The classifier rejected the call because of rate limiting."""


class ClassifierTimeoutError(FeedTaggerError):
    """The enrichment pass deadline expired before all batches ran."""


class CacheWriteError(FeedTaggerError):
    """A key-value store write or delete failed."""


class CacheReadError(FeedTaggerError):
    """A key-value store read or listing failed."""
