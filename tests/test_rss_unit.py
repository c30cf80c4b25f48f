"""Unit tests for feed retrieval and normalization."""

import asyncio
from unittest.mock import Mock

import pytest
import requests

from feed_tagger.errors import InputError, UpstreamFetchError
from feed_tagger.models import Item
from feed_tagger.rss import (
    DEFAULT_LINK,
    DEFAULT_TITLE,
    FeedProcessor,
    clean_html,
    source_for,
    validate_feed_url,
)

from conftest import make_rss


def _rss(items_xml: str) -> bytes:
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0"><channel><title>Feed</title>'
        "<link>https://example.com/</link><description>d</description>"
        f"{items_xml}</channel></rss>"
    ).encode("utf-8")


class TestParseItems:
    """Normalization of raw feed documents into items."""

    def test_rss_2_0_items_in_order(self):
        processor = FeedProcessor()

        items = processor.parse_items(make_rss(3), "https://example.com/feed")

        assert [item.title for item in items] == ["Article 0", "Article 1", "Article 2"]
        assert items[1].description == "Description of article 1"
        assert items[2].link == "https://example.com/article/2"
        for item in items:
            assert isinstance(item, Item)
            assert item.tags == []
            assert item.source == ""

    def test_missing_fields_use_sentinels(self):
        """Items without title, description or link get the defaults."""
        processor = FeedProcessor()

        items = processor.parse_items(
            _rss("<item><description>Only a body</description></item><item></item>")
        )

        assert len(items) == 2
        assert items[0].title == DEFAULT_TITLE
        assert items[0].description == "Only a body"
        assert items[0].link == DEFAULT_LINK
        assert items[1].title == "No Title"
        assert items[1].description == ""
        assert items[1].link == "#"

    def test_character_entities_are_decoded(self):
        processor = FeedProcessor()

        items = processor.parse_items(
            _rss(
                "<item><title>Tom &amp; Jerry say &quot;hi&quot; &#39;now&#39;</title>"
                "<link>https://example.com/a?x=1&amp;y=2</link></item>"
            )
        )

        assert items[0].title == "Tom & Jerry say \"hi\" 'now'"
        assert items[0].link == "https://example.com/a?x=1&y=2"

    @pytest.mark.parametrize(
        "raw",
        [
            b"",
            b"this is not xml at all",
            b"<rss><channel><title>Broken",
            b'<?xml version="1.0"?><rss version="2.0"><channel></channel></rss>',
        ],
    )
    def test_documents_without_items_yield_empty_list(self, raw):
        processor = FeedProcessor()

        assert processor.parse_items(raw, "https://example.com/feed") == []


class TestCleanHtml:
    """HTML stripping used to build classifier text."""

    def test_html_cleaning_specific_cases(self):
        test_cases = [
            ("<p>Simple paragraph</p>", "Simple paragraph"),
            ("<div><h1>Title</h1><p>Content</p></div>", "Title Content"),
            ("<script>alert('xss')</script><p>Safe content</p>", "Safe content"),
            ("<style>body{color:red}</style><p>Styled content</p>", "Styled content"),
            ("Plain text without HTML", "Plain text without HTML"),
            ("<p>Multiple  \n\n  spaces   and\tlines</p>", "Multiple spaces and lines"),
        ]

        for html_input, expected_output in test_cases:
            assert clean_html(html_input) == expected_output, f"Failed for input: {html_input}"

    def test_empty_and_none_content_handling(self):
        assert clean_html("") == ""
        assert clean_html(None) == ""
        assert clean_html("   ") == ""
        assert clean_html("<div></div>") == ""


class TestFeedUrls:
    """URL validation and source extraction."""

    def test_source_is_feed_hostname(self):
        assert source_for("https://news.example.org/rss.xml?x=1") == "news.example.org"

    def test_valid_url_is_stripped(self):
        assert validate_feed_url("  https://example.com/feed ") == "https://example.com/feed"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_missing_url_raises_input_error(self, value):
        with pytest.raises(InputError, match="Missing url parameter"):
            validate_feed_url(value)

    @pytest.mark.parametrize("value", ["ftp://example.com/feed", "example.com/feed", "https://"])
    def test_invalid_url_raises_input_error(self, value):
        with pytest.raises(InputError, match="Invalid feed URL"):
            validate_feed_url(value)


class TestFetchRaw:
    """Feed download through the requests session."""

    def _processor_with_response(self, response=None, error=None):
        processor = FeedProcessor(timeout=5)
        processor.session = Mock()
        if error is not None:
            processor.session.get.side_effect = error
        else:
            processor.session.get.return_value = response
        return processor

    def test_returns_body_bytes(self):
        response = Mock(status_code=200, content=b"<rss/>")
        response.headers = {"Content-Type": "application/rss+xml; charset=utf-8"}
        processor = self._processor_with_response(response)

        raw = asyncio.run(processor.fetch_raw("https://example.com/feed"))

        assert raw == b"<rss/>"
        processor.session.get.assert_called_once_with("https://example.com/feed", timeout=5)

    def test_network_error_becomes_upstream_fetch_error(self):
        processor = self._processor_with_response(
            error=requests.ConnectionError("connection refused")
        )

        with pytest.raises(UpstreamFetchError, match="connection refused"):
            asyncio.run(processor.fetch_raw("https://example.com/feed"))

    def test_http_error_status_becomes_upstream_fetch_error(self):
        response = Mock(status_code=404, content=b"")
        response.raise_for_status.side_effect = requests.HTTPError("404 Not Found")
        processor = self._processor_with_response(response)

        with pytest.raises(UpstreamFetchError, match="404"):
            asyncio.run(processor.fetch_raw("https://example.com/feed"))

    def test_non_text_content_is_rejected(self):
        response = Mock(status_code=200, content=b"\x89PNG")
        response.headers = {"Content-Type": "image/png"}
        processor = self._processor_with_response(response)

        with pytest.raises(UpstreamFetchError, match="image/png"):
            asyncio.run(processor.fetch_raw("https://example.com/feed"))
