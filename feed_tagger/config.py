"""Configuration management for Feed Tagger."""

import os
from dataclasses import dataclass


@dataclass
class CacheConfig:
    """Configuration for the key-value backed caches."""

    backend: str = "dynamodb"
    table_name: str = "feed-tagger-cache"
    region: str = "us-east-1"
    feed_ttl: int = 3600
    tag_ttl: int = 86400


@dataclass
class PipelineConfig:
    """Configuration for the tag enrichment pipeline."""

    batch_size: int = 10
    deadline_seconds: float = 300.0
    batch_delay_seconds: float = 1.0
    reconcile_scope: str = "global"


@dataclass
class BedrockConfig:
    """Configuration for Amazon Bedrock."""

    model_id: str = "amazon.nova-micro-v1:0"
    region: str = "us-east-1"
    max_tokens: int = 1000


@dataclass
class ServerConfig:
    """Configuration for the HTTP surface."""

    host: str = "0.0.0.0"
    port: int = 3001
    fetch_timeout: int = 30
    clear_cache_scope: str = "all"


class Config:
    """Main configuration manager."""

    CACHE_BACKENDS = ("dynamodb", "memory")
    SCOPES = {
        "CLEAR_CACHE_SCOPE": ("all", "feed"),
        "RECONCILE_SCOPE": ("global", "feed"),
    }

    def __init__(self):
        """Initialize configuration from environment variables."""
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.aws_region = os.getenv(
            "AWS_REGION", os.getenv("AWS_DEFAULT_REGION", "us-east-1")
        )
        self.cache_backend = os.getenv("CACHE_BACKEND", "dynamodb").lower()
        if self.cache_backend not in self.CACHE_BACKENDS:
            raise ValueError(
                f"CACHE_BACKEND must be one of {self.CACHE_BACKENDS}, "
                f"got {self.cache_backend!r}"
            )
        self.dynamodb_table = os.getenv("DYNAMODB_TABLE", "feed-tagger-cache")
        self.feed_cache_ttl = self._int_env("FEED_CACHE_TTL", 3600)
        self.tag_cache_ttl = self._int_env("TAG_CACHE_TTL", 86400)

        self.batch_size = self._int_env("BATCH_SIZE", 10)
        self.enrichment_deadline = self._float_env("ENRICHMENT_DEADLINE", 300.0)
        self.batch_delay = self._float_env("BATCH_DELAY", 1.0)
        self.reconcile_scope = self._choice_env("RECONCILE_SCOPE", "global")

        self.bedrock_model_id = os.getenv("BEDROCK_MODEL_ID", "amazon.nova-micro-v1:0")
        self.bedrock_max_tokens = self._int_env("BEDROCK_MAX_TOKENS", 1000)
        self.tag_categories_file = os.getenv("TAG_CATEGORIES_FILE") or None

        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = self._int_env("PORT", 3001)
        self.fetch_timeout = self._int_env("FETCH_TIMEOUT", 30)
        self.clear_cache_scope = self._choice_env("CLEAR_CACHE_SCOPE", "all")

        if self.batch_size < 1:
            raise ValueError("BATCH_SIZE must be at least 1")

    @staticmethod
    def _int_env(name: str, default: int) -> int:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError as e:
            raise ValueError(f"Invalid integer for {name}: {raw!r}") from e

    @staticmethod
    def _float_env(name: str, default: float) -> float:
        raw = os.getenv(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return float(raw)
        except ValueError as e:
            raise ValueError(f"Invalid number for {name}: {raw!r}") from e

    def _choice_env(self, name: str, default: str) -> str:
        value = os.getenv(name, default).lower()
        if value not in self.SCOPES[name]:
            raise ValueError(f"{name} must be one of {self.SCOPES[name]}, got {value!r}")
        return value

    def get_cache_config(self) -> CacheConfig:
        """Get cache configuration."""
        return CacheConfig(
            backend=self.cache_backend,
            table_name=self.dynamodb_table,
            region=self.aws_region,
            feed_ttl=self.feed_cache_ttl,
            tag_ttl=self.tag_cache_ttl,
        )

    def get_pipeline_config(self) -> PipelineConfig:
        """Get enrichment pipeline configuration."""
        return PipelineConfig(
            batch_size=self.batch_size,
            deadline_seconds=self.enrichment_deadline,
            batch_delay_seconds=self.batch_delay,
            reconcile_scope=self.reconcile_scope,
        )

    def get_bedrock_config(self) -> BedrockConfig:
        """Get Bedrock configuration."""
        return BedrockConfig(
            model_id=self.bedrock_model_id,
            region=self.aws_region,
            max_tokens=self.bedrock_max_tokens,
        )

    def get_server_config(self) -> ServerConfig:
        """Get HTTP server configuration."""
        return ServerConfig(
            host=self.host,
            port=self.port,
            fetch_timeout=self.fetch_timeout,
            clear_cache_scope=self.clear_cache_scope,
        )
