"""Static tag taxonomy, keyword fallback classifier and tag post-processing."""

import json
from collections.abc import Iterable, Mapping
from pathlib import Path

Taxonomy = Mapping[str, tuple[str, ...]]

TAG_CATEGORIES: Taxonomy = {
    "Security": (
        "security", "vulnerability", "hack", "malware", "privacy", "encryption", "cyber",
    ),
    "Software": (
        "software", "application", "app", "platform",
        "framework", "library", "toolkit", "sdk",
        "open source", "github", "repository",
        "version", "release", "update", "patch",
        "backend", "frontend", "fullstack",
        "debugging", "testing", "deployment",
    ),
    "Development": ("programming", "code", "development", "api", "web", "scripting", "coding"),
    "Hardware": ("hardware", "chip", "computer", "device", "server", "network", "router", "iot"),
    "Technology": ("tech", "digital", "mobile", "app", "innovation", "system"),
    "AI & Data": ("ai", "machine learning", "data", "analytics", "model", "algorithm"),
    "Business": ("business", "company", "market", "startup", "industry", "enterprise"),
    "Legal & Policy": ("law", "policy", "regulation", "compliance", "legal"),
    "Research": ("research", "study", "analysis", "paper", "science", "academic"),
}

GENERIC_TAG = "General"
UNCATEGORIZED = "Uncategorized"
MAX_TAG_WORDS = 2
MIN_MODEL_TAGS = 2
MAX_TAGS = 5


def load_taxonomy(path: str | Path | None = None) -> Taxonomy:
    """Load the taxonomy once at startup.

    Args:
        path: Optional JSON file mapping category name to keyword list

    Returns:
        The built-in taxonomy when no path is given, otherwise the file's

    Raises:
        ValueError: If the file is missing or not a category→keywords mapping
    """
    if path is None:
        return TAG_CATEGORIES

    taxonomy_file = Path(path)
    if not taxonomy_file.exists():
        raise ValueError(f"Tag categories file not found: {taxonomy_file}")

    try:
        with open(taxonomy_file, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in tag categories file: {e}") from e

    if not isinstance(data, dict) or not data:
        raise ValueError("Tag categories file must contain a non-empty object")

    taxonomy = {}
    for category, keywords in data.items():
        if not isinstance(keywords, list) or not all(isinstance(k, str) for k in keywords):
            raise ValueError(f"Keywords for category {category!r} must be a list of strings")
        taxonomy[str(category)] = tuple(k.strip().lower() for k in keywords if k.strip())
    return taxonomy


def clean_tags(raw_tags: Iterable[object]) -> list[str]:
    """Keep trimmed, non-empty, 1-2 word tags, deduplicated in order."""
    tags = []
    seen = set()
    for raw in raw_tags:
        if not isinstance(raw, str):
            continue
        tag = " ".join(raw.strip().strip("#").split())
        if not tag or len(tag.split()) > MAX_TAG_WORDS:
            continue
        folded = tag.casefold()
        if folded in seen:
            continue
        seen.add(folded)
        tags.append(tag)
    return tags[:MAX_TAGS]


def keyword_tags(text: str, taxonomy: Taxonomy = TAG_CATEGORIES) -> list[str]:
    """Deterministic fallback: taxonomy keywords found in the text.

    Matching is a case-insensitive substring test, in taxonomy order.
    """
    haystack = text.lower()
    matches = []
    for keywords in taxonomy.values():
        for keyword in keywords:
            if keyword in haystack and keyword not in matches:
                matches.append(keyword)
    return clean_tags(matches)


def map_subcategories(
    tags: Iterable[str], taxonomy: Taxonomy = TAG_CATEGORIES
) -> dict[str, list[str]]:
    """File each tag under every taxonomy keyword it contains."""
    subcategories: dict[str, list[str]] = {}
    for tag in tags:
        lowered = tag.lower()
        matched = False
        for keywords in taxonomy.values():
            for keyword in keywords:
                if keyword in lowered:
                    bucket = subcategories.setdefault(keyword, [])
                    if tag not in bucket:
                        bucket.append(tag)
                    matched = True
        if not matched:
            subcategories.setdefault(UNCATEGORIZED, []).append(tag)
    return subcategories


def finalize_tags(
    raw_tags: Iterable[object], text: str, taxonomy: Taxonomy = TAG_CATEGORIES
) -> tuple[list[str], dict[str, list[str]], bool]:
    """Turn raw classifier output for one item into its final tags.

    Returns:
        (tags, subcategories, used_fallback)
    """
    tags = clean_tags(raw_tags)
    used_fallback = False
    if len(tags) < MIN_MODEL_TAGS:
        used_fallback = True
        tags = keyword_tags(text, taxonomy) or [GENERIC_TAG]
    return tags, map_subcategories(tags, taxonomy), used_fallback
