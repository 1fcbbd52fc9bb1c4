"""
Tests for Structural Hashing.

These tests verify:
1. Feature tokens describe structure, not content
2. Equal structure gives equal fingerprints
3. Similarity is reflexive, symmetric and bounded
4. The banded index finds, replaces and forgets entries
5. Inconsistent index parameters are rejected
"""

import pytest

from patternscope.config import EngineSettings
from patternscope.dom import HtmlDocument
from patternscope.domain import ConfigurationError
from patternscope.hashing.lsh import (
    MASK32,
    LSHIndex,
    StructuralHasher,
    bucket_count,
    encode_fingerprint,
    hash32,
    similarity,
)


# =============================================================================
# TEST FIXTURES
# =============================================================================

LIST_PAGE = (
    '<ul id="inbox"><li>Hi</li><li>Lunch?</li><li>Sure</li></ul>'
    '<ul id="outbox"><li>Report</li><li>Invoice</li><li>Notes</li></ul>'
    '<form id="login"><input name="user"><input name="pass"><button>Go</button></form>'
)


def make_document(body: str = LIST_PAGE) -> HtmlDocument:
    """Helper to build a document from body markup."""
    return HtmlDocument(f"<html><body>{body}</body></html>")


def make_hasher(doc: HtmlDocument) -> StructuralHasher:
    return StructuralHasher(doc)


# =============================================================================
# PRIMITIVE TESTS
# =============================================================================

class TestPrimitives:

    def test_hash32_known_values(self):
        assert hash32("") == 0x811C9DC5
        assert hash32("a") == 0xE40C292C

    def test_bucket_count(self):
        assert [bucket_count(n) for n in (0, 1, 2, 3, 4, 10, 11)] == [
            "0", "1", "2-3", "2-3", "4-10", "4-10", "10+",
        ]

    def test_similarity_of_mismatched_lengths_is_zero(self):
        assert similarity([1, 2, 3], [1, 2]) == 0.0
        assert similarity([], []) == 0.0

    def test_similarity_counts_equal_slots(self):
        assert similarity([1, 2, 3, 4], [1, 2, 0, 0]) == 0.5

    def test_fingerprint_is_fixed_width_hex(self):
        assert encode_fingerprint([0, 255]) == "00000000000000ff"


# =============================================================================
# FEATURE TESTS
# =============================================================================

class TestFeatures:

    def test_list_features(self):
        doc = make_document()
        features = make_hasher(doc).extract_features(doc.query("#inbox"))

        assert features[:3] == ["tag:UL", "depth:0", "children:2-3"]
        assert "shape:LI,LI,LI" in features
        assert "repeat:2-3" in features
        assert features.count("tag:LI") == 3
        assert "depth:1" in features

    def test_form_features(self):
        doc = make_document()
        features = make_hasher(doc).extract_features(doc.query("#login"))

        assert "has-input" in features
        assert "has-button" in features
        assert "shape:INPUT,INPUT,BUTTON" in features

    def test_scrollable_and_fixed(self):
        doc = make_document(
            '<div id="panel" style="position: fixed; overflow-y: auto; height: 100px"></div>'
        )
        panel = doc.query("#panel")
        doc.set_scroll(panel, height=900)

        features = make_hasher(doc).extract_features(panel)

        assert "scrollable" in features
        assert "fixed" in features

    def test_aria_features(self):
        doc = make_document('<div id="log" role="log" aria-live="polite"></div>')

        features = make_hasher(doc).extract_features(doc.query("#log"))

        assert "role:log" in features
        assert "aria-live" in features

    def test_walk_stops_below_max_depth(self):
        doc = make_document("<div>" * 9 + "</div>" * 9)

        features = make_hasher(doc).extract_features(doc.query("div"))

        assert "depth:6" in features
        assert "depth:7" not in features


# =============================================================================
# SIGNATURE TESTS
# =============================================================================

class TestSignatures:

    def test_same_structure_same_fingerprint(self):
        doc = make_document()
        hasher = make_hasher(doc)

        inbox = hasher.signature(doc.query("#inbox"))
        outbox = hasher.signature(doc.query("#outbox"))

        assert inbox.fingerprint == outbox.fingerprint
        assert hasher.similarity(inbox, outbox) == 1.0

    def test_signature_shape(self):
        doc = make_document()
        sig = make_hasher(doc).signature(doc.query("#inbox"))

        assert len(sig.minhash) == 64
        assert len(sig.fingerprint) == 64 * 8
        assert sig.fingerprint == encode_fingerprint(sig.minhash)

    def test_similarity_bounded_and_symmetric(self):
        doc = make_document()
        hasher = make_hasher(doc)
        a = hasher.signature(doc.query("#inbox"))
        b = hasher.signature(doc.query("#login"))

        assert hasher.similarity(a, a) == 1.0
        assert hasher.similarity(a, b) == hasher.similarity(b, a)
        assert 0.0 <= hasher.similarity(a, b) < 1.0

    def test_too_few_features_gives_empty_signature(self):
        doc = make_document()
        sig = make_hasher(doc).signature_from_features(["tag:DIV", "depth:0"])

        assert sig.minhash == (MASK32,) * 64

    def test_hash_count_follows_settings(self):
        doc = make_document()
        hasher = StructuralHasher(doc, settings=EngineSettings(hash_count=32, num_bands=8))

        assert len(hasher.signature(doc.query("#inbox")).minhash) == 32


# =============================================================================
# INDEX TESTS
# =============================================================================

class TestIndex:

    def test_query_similar_finds_indexed_key(self):
        doc = make_document()
        hasher = make_hasher(doc)
        sig = hasher.signature(doc.query("#inbox"))

        hasher.add_to_index("K", sig, {"source": "test"})
        matches = hasher.query_similar(sig)

        assert matches[0].key == "K"
        assert matches[0].similarity == 1.0
        assert matches[0].metadata == {"source": "test"}

    def test_threshold_and_limit(self):
        doc = make_document()
        hasher = make_hasher(doc)
        list_sig = hasher.signature(doc.query("#inbox"))
        hasher.add_to_index("list", list_sig)
        hasher.add_to_index("form", hasher.signature(doc.query("#login")))

        strict = hasher.query_similar(list_sig, threshold=1.0)
        limited = hasher.query_similar(list_sig, limit=1)

        assert [m.key for m in strict] == ["list"]
        assert len(limited) == 1

    def test_re_adding_fingerprint_replaces_entry(self):
        doc = make_document()
        hasher = make_hasher(doc)
        sig = hasher.signature(doc.query("#inbox"))

        hasher.add_to_index("first", sig)
        hasher.add_to_index("second", sig)

        assert len(hasher.index) == 1
        assert [m.key for m in hasher.query_similar(sig)] == ["second"]

    def test_remove_and_clear(self):
        doc = make_document()
        hasher = make_hasher(doc)
        sig = hasher.signature(doc.query("#inbox"))
        hasher.add_to_index("K", sig)

        assert hasher.remove_from_index(sig.fingerprint) is True
        assert hasher.remove_from_index(sig.fingerprint) is False
        assert hasher.query_similar(sig) == []

        hasher.add_to_index("K", sig)
        hasher.clear_index()
        assert len(hasher.index) == 0

    def test_band_buckets_one_per_band(self):
        index = LSHIndex(64, 16)

        buckets = index.band_buckets(list(range(64)))

        assert len(buckets) == 16
        assert buckets[0].startswith("0:")
        assert buckets[15].startswith("15:")

    def test_bad_band_count_rejected(self):
        with pytest.raises(ConfigurationError):
            LSHIndex(64, 10)
        with pytest.raises(ConfigurationError):
            LSHIndex(0, 4)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
