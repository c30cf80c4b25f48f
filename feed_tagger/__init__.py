"""Feed Tagger - RSS item cache with asynchronous tag enrichment."""

__version__ = "0.1.0"
