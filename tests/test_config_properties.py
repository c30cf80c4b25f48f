"""Property-based tests for configuration management."""

import os
from unittest.mock import patch

from hypothesis import given
from hypothesis import strategies as st

from feed_tagger.config import Config


class TestConfigProperties:
    """Property-based tests for Config class."""

    @given(st.integers(min_value=1, max_value=1000))
    def test_batch_size_round_trips_property(self, batch_size):
        """
        Feature: feed-tagger, Property 1: Batch size configuration

        Any positive BATCH_SIZE reaches the pipeline configuration unchanged.
        """
        with patch.dict(os.environ, {"BATCH_SIZE": str(batch_size)}, clear=True):
            config = Config()

        assert config.get_pipeline_config().batch_size == batch_size

    @given(st.integers(max_value=0))
    def test_non_positive_batch_size_rejected_property(self, batch_size):
        """A batch size below one is never accepted."""
        with patch.dict(os.environ, {"BATCH_SIZE": str(batch_size)}, clear=True):
            try:
                Config()
            except ValueError as e:
                assert "BATCH_SIZE" in str(e)
            else:
                raise AssertionError("BATCH_SIZE below 1 was accepted")

    @given(
        st.integers(min_value=1, max_value=10**7),
        st.integers(min_value=1, max_value=10**7),
    )
    def test_ttls_property(self, feed_ttl, tag_ttl):
        """
        Feature: feed-tagger, Property 2: Cache lifetimes

        Both cache TTLs are taken from the environment independently.
        """
        env = {"FEED_CACHE_TTL": str(feed_ttl), "TAG_CACHE_TTL": str(tag_ttl)}
        with patch.dict(os.environ, env, clear=True):
            cache = Config().get_cache_config()

        assert cache.feed_ttl == feed_ttl
        assert cache.tag_ttl == tag_ttl
