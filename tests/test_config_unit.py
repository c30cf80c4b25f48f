"""Unit tests for configuration management."""

import os
from unittest.mock import patch

import pytest

from feed_tagger.config import Config


class TestConfigUnit:
    """Unit tests for Config class."""

    def test_defaults(self):
        """Every setting has a working default with an empty environment."""
        with patch.dict(os.environ, {}, clear=True):
            config = Config()

        cache = config.get_cache_config()
        assert cache.backend == "dynamodb"
        assert cache.table_name == "feed-tagger-cache"
        assert cache.feed_ttl == 3600
        assert cache.tag_ttl == 86400

        pipeline = config.get_pipeline_config()
        assert pipeline.batch_size == 10
        assert pipeline.deadline_seconds == 300.0
        assert pipeline.batch_delay_seconds == 1.0
        assert pipeline.reconcile_scope == "global"

        server = config.get_server_config()
        assert server.port == 3001
        assert server.clear_cache_scope == "all"

        bedrock = config.get_bedrock_config()
        assert bedrock.model_id == "amazon.nova-micro-v1:0"
        assert bedrock.region == "us-east-1"
        assert config.tag_categories_file is None

    def test_environment_overrides(self):
        env = {
            "AWS_REGION": "eu-west-1",
            "CACHE_BACKEND": "MEMORY",
            "DYNAMODB_TABLE": "tags-prod",
            "FEED_CACHE_TTL": "600",
            "TAG_CACHE_TTL": "7200",
            "BATCH_SIZE": "5",
            "ENRICHMENT_DEADLINE": "12.5",
            "BATCH_DELAY": "0",
            "RECONCILE_SCOPE": "feed",
            "BEDROCK_MODEL_ID": "meta.llama3-2-3b-instruct-v1:0",
            "PORT": "8080",
            "CLEAR_CACHE_SCOPE": "Feed",
            "TAG_CATEGORIES_FILE": "/etc/feed-tagger/categories.json",
        }
        with patch.dict(os.environ, env, clear=True):
            config = Config()

        assert config.get_cache_config().backend == "memory"
        assert config.get_cache_config().table_name == "tags-prod"
        assert config.get_cache_config().feed_ttl == 600
        assert config.get_cache_config().tag_ttl == 7200
        assert config.get_pipeline_config().batch_size == 5
        assert config.get_pipeline_config().deadline_seconds == 12.5
        assert config.get_pipeline_config().batch_delay_seconds == 0.0
        assert config.get_pipeline_config().reconcile_scope == "feed"
        assert config.get_bedrock_config().region == "eu-west-1"
        assert config.get_bedrock_config().model_id.startswith("meta.llama")
        assert config.get_server_config().port == 8080
        assert config.get_server_config().clear_cache_scope == "feed"
        assert config.tag_categories_file == "/etc/feed-tagger/categories.json"

    def test_aws_default_region_fallback(self):
        with patch.dict(os.environ, {"AWS_DEFAULT_REGION": "ap-south-1"}, clear=True):
            config = Config()

        assert config.get_cache_config().region == "ap-south-1"

    @pytest.mark.parametrize(
        "env, message",
        [
            ({"CACHE_BACKEND": "redis"}, "CACHE_BACKEND"),
            ({"BATCH_SIZE": "0"}, "BATCH_SIZE"),
            ({"BATCH_SIZE": "ten"}, "Invalid integer for BATCH_SIZE"),
            ({"ENRICHMENT_DEADLINE": "soon"}, "Invalid number for ENRICHMENT_DEADLINE"),
            ({"CLEAR_CACHE_SCOPE": "everything"}, "CLEAR_CACHE_SCOPE"),
            ({"RECONCILE_SCOPE": "local"}, "RECONCILE_SCOPE"),
        ],
    )
    def test_invalid_values_raise(self, env, message):
        with patch.dict(os.environ, env, clear=True):
            with pytest.raises(ValueError, match=message):
                Config()

    def test_blank_numeric_values_use_defaults(self):
        with patch.dict(os.environ, {"BATCH_SIZE": " ", "BATCH_DELAY": ""}, clear=True):
            config = Config()

        assert config.batch_size == 10
        assert config.batch_delay == 1.0
