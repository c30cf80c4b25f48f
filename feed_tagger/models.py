"""Data models for Feed Tagger."""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any


def _utcnow_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Item:
    """Represents a single normalized feed item."""

    title: str
    description: str
    link: str
    source: str = ""
    tags: list[str] = field(default_factory=list)  # relevance order
    subcategories: dict[str, list[str]] = field(default_factory=dict)

    @property
    def is_tagged(self) -> bool:
        return bool(self.tags)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "link": self.link,
            "source": self.source,
            "tags": list(self.tags),
            "subcategories": {k: list(v) for k, v in self.subcategories.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Item":
        return cls(
            title=data.get("title", ""),
            description=data.get("description", ""),
            link=data.get("link", ""),
            source=data.get("source", ""),
            tags=list(data.get("tags") or []),
            subcategories={
                k: list(v) for k, v in (data.get("subcategories") or {}).items()
            },
        )


@dataclass
class TagCacheEntry:
    """Cached classification result for one content fingerprint."""

    tags: list[str]
    subcategories: dict[str, list[str]]
    created_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tags": list(self.tags),
            "subcategories": {k: list(v) for k, v in self.subcategories.items()},
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TagCacheEntry":
        return cls(
            tags=list(data.get("tags") or []),
            subcategories={
                k: list(v) for k, v in (data.get("subcategories") or {}).items()
            },
            created_at=data.get("created_at") or _utcnow_iso(),
        )


@dataclass
class FeedCacheEntry:
    """Latest enriched snapshot of one feed."""

    items: list[Item]
    created_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "FeedCacheEntry":
        return cls(
            items=[Item.from_dict(raw) for raw in data.get("items") or []],
            created_at=data.get("created_at") or _utcnow_iso(),
        )
