"""Property-based tests for content fingerprinting and deduplication."""

import hashlib

from hypothesis import given
from hypothesis import strategies as st

from feed_tagger.dedup import content_fingerprint, dedupe_items, fingerprint
from feed_tagger.models import Item


class TestFingerprintProperties:
    """Property-based tests for content fingerprints."""

    @given(
        st.text(max_size=100),  # title
        st.text(max_size=300),  # description
        st.text(max_size=100),  # link A
        st.text(max_size=100),  # link B
        st.text(max_size=50),  # source A
        st.text(max_size=50),  # source B
    )
    def test_same_content_same_fingerprint_property(
        self, title, description, link_a, link_b, source_a, source_b
    ):
        """
        Feature: feed-tagger, Property 1: Idempotent fingerprinting

        Items with identical title and description share one fingerprint
        whatever their link or source.
        """
        item_a = Item(title=title, description=description, link=link_a, source=source_a)
        item_b = Item(title=title, description=description, link=link_b, source=source_b)

        assert fingerprint(item_a) == fingerprint(item_b)

    @given(st.text(max_size=100), st.text(max_size=300))
    def test_fingerprint_is_sha256_of_title_and_description_property(
        self, title, description
    ):
        """Fingerprint is the SHA256 hex digest of ``title + description``."""
        expected = hashlib.sha256(f"{title}{description}".encode("utf-8")).hexdigest()

        result = content_fingerprint(title, description)

        assert result == expected
        assert len(result) == 64
        assert all(c in "0123456789abcdef" for c in result)

    @given(st.text(min_size=1, max_size=50), st.text(min_size=1, max_size=50))
    def test_tags_do_not_affect_fingerprint_property(self, title, tag):
        item = Item(title=title, description="", link="#")
        before = fingerprint(item)

        item.tags = [tag]

        assert fingerprint(item) == before


class TestDedupeProperties:
    """Property-based tests for (source, link) deduplication."""

    @given(
        st.lists(
            st.tuples(
                st.sampled_from(["a.example", "b.example"]),
                st.sampled_from(["#", "https://x/1", "https://x/2", "https://x/3"]),
                st.text(max_size=20),
            ),
            max_size=30,
        )
    )
    def test_no_duplicate_source_link_pairs_property(self, rows):
        """
        Feature: feed-tagger, Property 2: Unique (source, link) per feed

        The deduplicated list holds each (source, link) pair once, keeps
        the first occurrence and preserves order.
        """
        items = [Item(title=title, description="", link=link, source=source) for source, link, title in rows]

        result = dedupe_items(items)

        keys = [(item.source, item.link) for item in result]
        assert len(keys) == len(set(keys))

        expected = []
        seen = set()
        for item in items:
            if (item.source, item.link) not in seen:
                seen.add((item.source, item.link))
                expected.append(item)
        assert [id(item) for item in result] == [id(item) for item in expected]
