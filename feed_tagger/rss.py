"""RSS feed retrieval and normalization for Feed Tagger."""

import asyncio
import io
from urllib.parse import urlparse

import feedparser
import requests
from bs4 import BeautifulSoup

from .errors import InputError, UpstreamFetchError
from .logging_config import create_execution_logger
from .models import Item

DEFAULT_TITLE = "No Title"
DEFAULT_LINK = "#"


def source_for(feed_url: str) -> str:
    """Return the feed host used as the ``source`` of its items."""
    return urlparse(feed_url).hostname or ""


def validate_feed_url(feed_url: str | None) -> str:
    """Validate a feed URL coming from a caller.

    Raises:
        InputError: If the URL is missing or not an absolute http(s) URL
    """
    if not feed_url or not feed_url.strip():
        raise InputError("Missing url parameter")

    feed_url = feed_url.strip()
    try:
        parsed = urlparse(feed_url)
        hostname = parsed.hostname
    except ValueError as e:
        raise InputError(f"Invalid feed URL: {feed_url}") from e
    if parsed.scheme not in ("http", "https") or not hostname:
        raise InputError(f"Invalid feed URL: {feed_url}")
    return feed_url


class FeedProcessor:
    """Handles RSS feed retrieval and item normalization."""

    def __init__(self, timeout: int = 30, execution_id: str | None = None):
        """Initialize FeedProcessor with configuration.

        Args:
            timeout: HTTP request timeout in seconds
            execution_id: Execution ID for logging context
        """
        self.timeout = timeout
        self.logger = create_execution_logger("feed_processor", execution_id)
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "Feed-Tagger/0.1 (RSS tag cache)"})

        self.logger.info("FeedProcessor initialized", timeout=timeout)

    async def fetch_raw(self, feed_url: str) -> bytes:
        """Download the raw feed document without blocking the event loop.

        Raises:
            UpstreamFetchError: If the download fails
        """
        return await asyncio.to_thread(self._download, feed_url)

    def _download(self, feed_url: str) -> bytes:
        try:
            self.logger.info("Downloading feed content", feed_url=feed_url)
            response = self.session.get(feed_url, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            self.logger.error(
                f"Failed to download feed {feed_url}: {e}",
                feed_url=feed_url,
                error=str(e),
            )
            raise UpstreamFetchError(f"Error fetching RSS: {e}") from e

        content_type = response.headers.get("Content-Type", "")
        if content_type and not _is_textual(content_type):
            self.logger.error(
                "Feed returned non-text content",
                feed_url=feed_url,
                content_type=content_type,
            )
            raise UpstreamFetchError(
                f"Error fetching RSS: unexpected content type {content_type}"
            )

        self.logger.info(
            "Feed downloaded successfully",
            feed_url=feed_url,
            status_code=response.status_code,
            content_length=len(response.content),
        )
        return response.content

    def parse_items(self, raw: bytes | str, feed_url: str = "") -> list[Item]:
        """Parse a raw feed document into items with empty tags.

        Documents without extractable items yield an empty list.
        """
        if isinstance(raw, str):
            raw = raw.encode("utf-8")
        feed = feedparser.parse(io.BytesIO(raw))

        if feed.bozo and hasattr(feed, "bozo_exception"):
            self.logger.warning(
                f"Feed parsing warning: {feed.bozo_exception}",
                feed_url=feed_url,
                bozo_exception=str(feed.bozo_exception),
            )

        items = []
        for entry in feed.entries:
            try:
                items.append(self.normalize_item(entry))
            except (AttributeError, TypeError, ValueError) as e:
                self.logger.warning(
                    f"Failed to normalize entry: {e}",
                    feed_url=feed_url,
                    error=str(e),
                )
                continue

        self.logger.log_feed_processing(feed_url, len(items))
        return items

    def normalize_item(self, entry: dict) -> Item:
        """Normalize a feedparser entry into an Item.

        ``source`` is left unset; callers attach it per feed.
        """
        title = entry.get("title") or DEFAULT_TITLE
        description = entry.get("summary") or entry.get("description") or ""
        link = entry.get("link") or DEFAULT_LINK

        return Item(title=title, description=description, link=link)


def clean_html(content: str | None) -> str:
    """Remove HTML tags from content and normalize whitespace.

    Args:
        content: Raw content that may contain HTML

    Returns:
        Clean text content without HTML tags
    """
    if not content:
        return ""

    if "<" not in content and ">" not in content:
        return " ".join(content.split())

    soup = BeautifulSoup(content, "html.parser")

    for script in soup(["script", "style"]):
        script.decompose()

    text = soup.get_text(separator=" ")
    text = text.replace("<", "").replace(">", "")

    return " ".join(text.split())


def _is_textual(content_type: str) -> bool:
    media_type = content_type.split(";")[0].strip().lower()
    return media_type.startswith("text/") or "xml" in media_type or "rss" in media_type
