"""Key-value storage backends for Feed Tagger caches."""

import asyncio
import gzip
import time
import uuid
from collections.abc import Callable
from typing import Protocol

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import BotoCoreError, ClientError

from .errors import CacheReadError, CacheWriteError
from .logging_config import create_execution_logger


class KeyValueStore(Protocol):
    """Capability consumed by the caches: get/put-with-expiry/delete/list."""

    async def get(self, key: str) -> bytes | None: ...

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list_keys(self, prefix: str) -> list[str]: ...


class MemoryStore:
    """Process-local store. Expired entries are dropped on read and swept on write.

    Instances are created and passed explicitly; there is no module-level
    shared map.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[bytes, float]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        if entry[1] <= self._clock():
            del self._data[key]
            return False
        return True

    def _sweep(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            del self._data[key]

    async def get(self, key: str) -> bytes | None:
        if not self._alive(key):
            return None
        return self._data[key][0]

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        self._sweep()
        self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def list_keys(self, prefix: str) -> list[str]:
        return [key for key in list(self._data) if key.startswith(prefix) and self._alive(key)]

    def __len__(self) -> int:
        return sum(1 for key in list(self._data) if self._alive(key))


class DynamoDBStore:
    """DynamoDB-backed store using the table's TTL attribute for expiry.

    DynamoDB removes expired items lazily, so reads also compare
    ``expires_at`` with the current time.

    Values are gzip-compressed. A compressed value larger than one item can
    hold is split across chunk items keyed ``<key>#<version>#<n>``; the head
    item under ``<key>`` records the version and chunk count.
    """

    KEY_ATTRIBUTE = "cache_key"
    VALUE_ATTRIBUTE = "payload"
    TTL_ATTRIBUTE = "expires_at"
    ENCODING_ATTRIBUTE = "payload_encoding"
    CHUNKS_ATTRIBUTE = "chunk_count"
    VERSION_ATTRIBUTE = "chunk_version"
    CHUNK_OF_ATTRIBUTE = "chunk_of"

    # DynamoDB caps an item at 400 KB including attribute names
    MAX_PAYLOAD_BYTES = 350_000

    def __init__(
        self,
        table_name: str,
        aws_region: str = "us-east-1",
        execution_id: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the store with DynamoDB configuration.

        Args:
            table_name: Name of the DynamoDB table holding cache entries
            aws_region: AWS region for DynamoDB client
            execution_id: Execution ID for logging context
            clock: Time source returning epoch seconds
        """
        self.table_name = table_name
        self.aws_region = aws_region
        self._clock = clock
        self.logger = create_execution_logger("store", execution_id)
        self.dynamodb = boto3.resource("dynamodb", region_name=aws_region)
        self.table = self.dynamodb.Table(table_name)

        self.logger.info(
            "DynamoDBStore initialized", table_name=table_name, aws_region=aws_region
        )

    def create_table(self) -> None:
        """Create the cache table with TTL enabled (local setups and tests)."""
        client = self.dynamodb.meta.client
        client.create_table(
            TableName=self.table_name,
            KeySchema=[{"AttributeName": self.KEY_ATTRIBUTE, "KeyType": "HASH"}],
            AttributeDefinitions=[
                {"AttributeName": self.KEY_ATTRIBUTE, "AttributeType": "S"}
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        client.get_waiter("table_exists").wait(TableName=self.table_name)
        client.update_time_to_live(
            TableName=self.table_name,
            TimeToLiveSpecification={
                "Enabled": True,
                "AttributeName": self.TTL_ATTRIBUTE,
            },
        )
        self.logger.info("Created cache table", table_name=self.table_name)

    async def get(self, key: str) -> bytes | None:
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await asyncio.to_thread(self._put, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def list_keys(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self._list_keys, prefix)

    def _get(self, key: str) -> bytes | None:
        item = self._get_item(key)
        if item is None or self._expired(item):
            return None

        chunk_count = item.get(self.CHUNKS_ATTRIBUTE)
        if chunk_count is None:
            payload = _binary(item[self.VALUE_ATTRIBUTE])
        else:
            version = item[self.VERSION_ATTRIBUTE]
            parts = []
            for index in range(int(chunk_count)):
                chunk = self._get_item(self._chunk_key(key, version, index))
                if chunk is None:
                    self.logger.warning(
                        "Cache entry is missing a chunk", cache_key=key, chunk_index=index
                    )
                    return None
                parts.append(_binary(chunk[self.VALUE_ATTRIBUTE]))
            payload = b"".join(parts)

        if item.get(self.ENCODING_ATTRIBUTE) != "gzip":
            return payload
        try:
            return gzip.decompress(payload)
        except (OSError, EOFError) as e:
            self.logger.error(f"Corrupt compressed cache entry {key}: {e}", error=str(e))
            raise CacheReadError(f"Failed to decompress {key}") from e

    def _get_item(self, key: str) -> dict | None:
        try:
            response = self.table.get_item(Key={self.KEY_ATTRIBUTE: key})
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error reading cache key {key}: {e}", error=str(e))
            raise CacheReadError(f"Failed to read {key}") from e
        return response.get("Item")

    def _put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        expires_at = int(self._clock() + ttl_seconds)
        payload = gzip.compress(value)
        item = {
            self.KEY_ATTRIBUTE: key,
            self.ENCODING_ATTRIBUTE: "gzip",
            self.TTL_ATTRIBUTE: expires_at,
        }

        previous = self._chunk_keys(key)
        try:
            if len(payload) <= self.MAX_PAYLOAD_BYTES:
                item[self.VALUE_ATTRIBUTE] = payload
            else:
                # Chunks are written under a fresh version before the head
                # item points at them, so readers never mix two writes.
                version = uuid.uuid4().hex
                chunks = [
                    payload[i : i + self.MAX_PAYLOAD_BYTES]
                    for i in range(0, len(payload), self.MAX_PAYLOAD_BYTES)
                ]
                with self.table.batch_writer() as batch:
                    for index, chunk in enumerate(chunks):
                        batch.put_item(
                            Item={
                                self.KEY_ATTRIBUTE: self._chunk_key(key, version, index),
                                self.CHUNK_OF_ATTRIBUTE: key,
                                self.VALUE_ATTRIBUTE: chunk,
                                self.TTL_ATTRIBUTE: expires_at,
                            }
                        )
                item[self.VERSION_ATTRIBUTE] = version
                item[self.CHUNKS_ATTRIBUTE] = len(chunks)
            self.table.put_item(Item=item)
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error storing cache key {key}: {e}", error=str(e))
            raise CacheWriteError(f"Failed to store {key}") from e

        self._delete_keys(previous, key)
        self.logger.debug(
            "Stored cache key",
            cache_key=key,
            ttl_timestamp=expires_at,
            payload_bytes=len(payload),
            chunks=item.get(self.CHUNKS_ATTRIBUTE, 0),
        )

    def _delete(self, key: str) -> None:
        chunk_keys = self._chunk_keys(key)
        try:
            self.table.delete_item(Key={self.KEY_ATTRIBUTE: key})
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error deleting cache key {key}: {e}", error=str(e))
            raise CacheWriteError(f"Failed to delete {key}") from e
        self._delete_keys(chunk_keys, key)

    def _chunk_keys(self, key: str) -> list[str]:
        """Keys of the chunk items currently referenced by ``key``."""
        try:
            response = self.table.get_item(
                Key={self.KEY_ATTRIBUTE: key},
                ProjectionExpression=f"{self.CHUNKS_ATTRIBUTE}, {self.VERSION_ATTRIBUTE}",
            )
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error reading cache key {key}: {e}", error=str(e))
            raise CacheWriteError(f"Failed to inspect {key}") from e

        item = response.get("Item") or {}
        if self.CHUNKS_ATTRIBUTE not in item:
            return []
        version = item[self.VERSION_ATTRIBUTE]
        return [
            self._chunk_key(key, version, index)
            for index in range(int(item[self.CHUNKS_ATTRIBUTE]))
        ]

    def _delete_keys(self, keys: list[str], owner: str) -> None:
        if not keys:
            return
        try:
            with self.table.batch_writer() as batch:
                for chunk_key in keys:
                    batch.delete_item(Key={self.KEY_ATTRIBUTE: chunk_key})
        except (ClientError, BotoCoreError) as e:
            # Orphaned chunks still expire through the table TTL
            self.logger.warning(
                f"Failed to delete old chunks of {owner}: {e}", cache_key=owner, error=str(e)
            )

    @staticmethod
    def _chunk_key(key: str, version: str, index: int) -> str:
        return f"{key}#{version}#{index}"

    def _list_keys(self, prefix: str) -> list[str]:
        keys = []
        scan_kwargs = {
            "FilterExpression": Attr(self.KEY_ATTRIBUTE).begins_with(prefix)
            & Attr(self.CHUNK_OF_ATTRIBUTE).not_exists(),
            "ProjectionExpression": f"{self.KEY_ATTRIBUTE}, {self.TTL_ATTRIBUTE}",
        }
        try:
            while True:
                response = self.table.scan(**scan_kwargs)
                keys.extend(
                    item[self.KEY_ATTRIBUTE]
                    for item in response.get("Items", [])
                    if not self._expired(item)
                )
                last_key = response.get("LastEvaluatedKey")
                if not last_key:
                    break
                scan_kwargs["ExclusiveStartKey"] = last_key
        except (ClientError, BotoCoreError) as e:
            self.logger.error(f"Error listing cache prefix {prefix}: {e}", error=str(e))
            raise CacheReadError(f"Failed to list {prefix}") from e
        return keys

    def _expired(self, item: dict) -> bool:
        expires_at = item.get(self.TTL_ATTRIBUTE)
        return expires_at is not None and int(expires_at) <= self._clock()


def _binary(raw) -> bytes:
    # The resource API wraps binary attributes in boto3's Binary type
    return bytes(getattr(raw, "value", raw))
