"""
Tests for candidate scanning and confidence aggregation.

These tests verify:
1. Structural rules and component finders read the document correctly
2. Confidence is exactly the weighted sum of the four signals
3. Results are filtered by the guarantee threshold and ranked
4. Accepted detections are registered for re-binding
5. Explanations break the confidence down signal by signal
"""

import pytest

from patternscope.config import EngineSettings
from patternscope.detection.aggregator import (
    CandidateScanner,
    ConfidenceAggregator,
    DetectionRegistry,
    DetectionSource,
    generate_explanation,
)
from patternscope.detection.patterns import PATTERN_SPECS, RuleName
from patternscope.detection.rules import (
    BEHAVIOR_CHECKS,
    COMPONENT_FINDERS,
    RULE_CHECKS,
    SEMANTIC_CHECKS,
    check_rule,
    find_components,
    find_send_button,
    has_repeated_children,
    structural_score,
)
from patternscope.dom import HtmlDocument
from patternscope.domain import (
    DetectionResult,
    GuaranteeLevel,
    InferredPattern,
    PatternName,
    SignatureSummary,
)
from patternscope.evidence import Evidence, MatchStrength, PhrasalMatch
from patternscope.scanning.snapshot import SnapshotDiffer


# =============================================================================
# TEST FIXTURES
# =============================================================================

CHAT_PAGE = (
    '<section class="chat">'
    '<div class="messages" role="log" aria-live="polite" style="overflow-y: auto; height: 100px">'
    '<p class="msg">Hello</p><p class="msg">Hi</p>'
    '</div>'
    '<textarea></textarea>'
    '<button aria-label="Send message">&gt;</button>'
    '</section>'
)

COOKIE_PAGE = '<div class="cookie-bar" style="position: fixed"><button>Agree</button></div>'


def make_document(body: str) -> HtmlDocument:
    """Helper to build a document from body markup."""
    return HtmlDocument(f"<html><body>{body}</body></html>")


def make_chat_document() -> HtmlDocument:
    doc = make_document(CHAT_PAGE)
    doc.set_scroll(doc.query(".messages"), height=400)
    return doc


def make_result(**overrides) -> DetectionResult:
    """Helper to create a DetectionResult without scanning."""
    fields = dict(
        path="DIV[0]",
        node=None,
        pattern_name=PatternName.CHAT,
        confidence=0.3,
        guarantee=GuaranteeLevel.STRUCTURAL,
        evidence=Evidence(structural=0.6, phrasal=0.5, semantic=0.0, behavioral=0.0),
        components={},
        signature=SignatureSummary("00ff", ()),
    )
    fields.update(overrides)
    return DetectionResult(**fields)


# =============================================================================
# STRUCTURAL RULE TESTS
# =============================================================================

class TestStructuralRules:

    def test_repeated_children_by_class_token(self):
        doc = make_document(
            '<ul id="a"><li class="item x">1</li><li class="item y">2</li></ul>'
            '<ul id="b"><li class="x">1</li><li class="y">2</li></ul>'
        )

        assert has_repeated_children(doc, doc.query("#a"))
        assert not has_repeated_children(doc, doc.query("#b"))

    def test_repeated_children_by_tag(self):
        doc = make_document("<div><p>1</p><p>2</p></div><div><p>only</p></div>")

        first, second = doc.query_all("div")
        assert has_repeated_children(doc, first)
        assert not has_repeated_children(doc, second)

    def test_chat_rules_all_hold(self):
        doc = make_chat_document()
        log = doc.query(".messages")

        for rule in (RuleName.SCROLLABLE, RuleName.HAS_INPUT_NEARBY,
                     RuleName.REPEATED_CHILDREN, RuleName.ARIA_LIVE):
            assert check_rule(doc, log, rule), rule

        assert structural_score(doc, log, PatternName.CHAT) == 1.0

    def test_scrollable_needs_overflow(self):
        doc = make_document('<div style="height: 100px"></div>')
        box = doc.query("div")
        doc.set_scroll(box, height=500)

        assert not check_rule(doc, box, RuleName.SCROLLABLE)

    def test_partial_structural_score(self):
        doc = make_document('<div class="form-wrap"><input><button>Go</button></div>')

        assert structural_score(doc, doc.query("div"), PatternName.FORM) == pytest.approx(5 / 9)

    def test_every_table_is_exhaustive(self):
        assert set(RULE_CHECKS) == set(RuleName)
        for table in (PATTERN_SPECS, SEMANTIC_CHECKS, COMPONENT_FINDERS, BEHAVIOR_CHECKS):
            assert set(table) == set(PatternName)


# =============================================================================
# COMPONENT FINDER TESTS
# =============================================================================

class TestComponentFinders:

    def test_chat_parts(self):
        doc = make_chat_document()

        parts = find_components(doc, doc.query(".messages"), PatternName.CHAT)

        assert parts["container"] is doc.query(".messages")
        assert parts["input"] is doc.query("textarea")
        assert parts["send_button"] is doc.query("button")

    def test_chat_input_skips_hidden_and_owned(self):
        doc = make_document(
            '<section class="chat">'
            '<div aria-hidden="true"><textarea id="ghost"></textarea></div>'
            '<div data-uc-nonce="n1"><textarea id="ours"></textarea></div>'
            '<textarea id="real"></textarea>'
            '</section>'
        )

        parts = find_components(doc, doc.query("section"), PatternName.CHAT)

        assert parts["input"] is doc.query("#real")

    def test_send_button_fallback_skips_menu_controls(self):
        doc = make_document(
            '<div><textarea></textarea>'
            '<button aria-label="Attach file">+</button>'
            '<button id="go">Go</button>'
            '<button aria-label="Open menu">=</button></div>'
        )

        button = find_send_button(doc, doc.query("textarea"), None)

        assert button is doc.query("#go")

    def test_send_button_prefers_submit_type(self):
        doc = make_document(
            '<form><textarea></textarea><button id="x">X</button>'
            '<button id="ok" type="submit">OK</button></form>'
        )

        assert find_send_button(doc, doc.query("textarea"), None) is doc.query("#ok")

    def test_form_parts(self):
        doc = make_document(
            '<form><input name="a"><select></select><button type="submit">Save</button></form>'
        )

        parts = find_components(doc, doc.query("form"), PatternName.FORM)

        assert parts["container"] is doc.query("form")
        assert len(parts["fields"]) == 2
        assert parts["submit_button"] is doc.query("button")

    def test_dropdown_parts(self):
        doc = make_document(
            '<div class="dropdown"><button aria-haspopup="listbox">Pick</button>'
            '<ul role="listbox"><li>One</li></ul></div>'
        )

        parts = find_components(doc, doc.query(".dropdown"), PatternName.DROPDOWN)

        assert parts["trigger"] is doc.query("button")
        assert parts["menu"] is doc.query("ul")

    def test_cookie_accept_button(self):
        doc = make_document(COOKIE_PAGE)

        parts = find_components(doc, doc.query(".cookie-bar"), PatternName.COOKIE)

        assert parts["accept_button"] is doc.query("button")


# =============================================================================
# SCANNER TESTS
# =============================================================================

class TestCandidateScanner:

    def test_candidates_sorted_and_deduplicated(self):
        doc = make_chat_document()

        candidates = CandidateScanner(doc).scan(PatternName.CHAT)

        assert [c.path for c in candidates] == ["SECTION[0]>DIV[0]", "SECTION[0]"]
        assert candidates[0].structural_score == 1.0
        assert candidates[1].structural_score == pytest.approx(0.3)

    def test_owned_nodes_are_skipped(self):
        doc = make_document(f'<div data-uc-nonce="n1">{COOKIE_PAGE}</div>')

        assert CandidateScanner(doc).scan(PatternName.COOKIE) == []

    def test_low_scores_are_dropped(self):
        doc = make_document('<div class="formish"></div>')

        assert CandidateScanner(doc).scan(PatternName.FORM) == []

    def test_candidate_cap(self):
        doc = make_document(COOKIE_PAGE * 4)

        candidates = CandidateScanner(doc, EngineSettings(max_candidates=2)).scan(PatternName.COOKIE)

        assert len(candidates) == 2


# =============================================================================
# AGGREGATION TESTS
# =============================================================================

class TestConfidenceAggregator:

    def test_confidence_is_weighted_sum(self):
        doc = make_document(COOKIE_PAGE)

        results = ConfidenceAggregator(doc).detect("cookie", "BEHAVIORAL")

        assert len(results) == 1
        result = results[0]
        assert result.evidence.structural == 1.0
        assert result.evidence.phrasal == 0.0
        assert result.evidence.semantic == 0.0
        assert result.evidence.behavioral == 1.0
        assert result.confidence == pytest.approx(0.55)
        assert result.guarantee == GuaranteeLevel.BEHAVIORAL

    def test_threshold_excludes_weaker_results(self):
        doc = make_document(COOKIE_PAGE)

        assert ConfidenceAggregator(doc).detect("cookie", "VERIFIED") == []

    def test_results_ranked_highest_first(self):
        doc = make_chat_document()

        results = ConfidenceAggregator(doc).detect("chat", "STRUCTURAL")

        assert [r.path for r in results] == ["SECTION[0]>DIV[0]", "SECTION[0]"]
        assert results[0].confidence == pytest.approx(0.70)
        assert results[1].confidence == pytest.approx(0.375)
        confidences = [r.confidence for r in results]
        assert confidences == sorted(confidences, reverse=True)

    def test_behavioral_level_keeps_strong_chat_only(self):
        doc = make_chat_document()

        results = ConfidenceAggregator(doc).detect(PatternName.CHAT, GuaranteeLevel.BEHAVIORAL)

        assert [r.path for r in results] == ["SECTION[0]>DIV[0]"]
        assert results[0].evidence.semantic == 1.0

    def test_unknown_names_give_empty_list(self):
        aggregator = ConfidenceAggregator(make_chat_document())

        assert aggregator.detect("carousel") == []
        assert aggregator.detect("chat", "ULTRA") == []

    def test_accepted_results_are_registered(self):
        doc = make_chat_document()
        aggregator = ConfidenceAggregator(doc)

        results = aggregator.detect("chat")

        entry = aggregator.registry.get(results[0].path)
        assert entry.pattern == PatternName.CHAT
        assert entry.source == DetectionSource.DETECT
        assert aggregator.registry.resolve(results[0].path) is doc.query(".messages")

    def test_signature_summary_is_truncated(self):
        doc = make_chat_document()

        result = ConfidenceAggregator(doc, EngineSettings(result_feature_count=4)).detect("chat")[0]

        assert len(result.signature.features) == 4
        assert len(result.signature.fingerprint) == 64 * 8

    def test_best_match_by_saved_minhash(self):
        doc = make_chat_document()
        aggregator = ConfidenceAggregator(doc)
        results = aggregator.detect("chat", "STRUCTURAL")
        saved = aggregator.hasher.signature(doc.query("section")).minhash

        assert aggregator.best_match(results, saved) is results[1]
        assert aggregator.best_match([], saved) is None

    def test_auto_detect_registers_diff_matches(self):
        doc = make_chat_document()
        textarea = doc.query("textarea")
        doc.set_value(textarea, "hello")
        aggregator = ConfidenceAggregator(doc)
        differ = SnapshotDiffer(doc)
        differ.first_scan()

        doc.set_value(textarea, "")
        doc.append_html(doc.query(".messages"), '<p class="msg">hello</p>')
        matches = aggregator.auto_detect(differ.next_scan())

        assert [m.pattern for m in matches] == [PatternName.CHAT]
        entry = aggregator.registry.get("SECTION[0]>DIV[0]")
        assert entry.source == DetectionSource.DIFF

    def test_auto_detect_without_diff(self):
        assert ConfidenceAggregator(make_chat_document()).auto_detect(None) == []

    def test_all_signatures(self):
        doc = make_chat_document()

        listings = ConfidenceAggregator(doc).all_signatures()

        assert [l.path for l in listings] == ["SECTION[0]>DIV[0]", "SECTION[0]>BUTTON[2]", "SECTION[0]"]
        for listing in listings:
            assert len(listing.fingerprint) == 16
            assert len(listing.features) <= 6


# =============================================================================
# REGISTRY TESTS
# =============================================================================

class TestDetectionRegistry:

    def test_register_inferred_merges_observed_parts(self):
        doc = make_chat_document()
        registry = DetectionRegistry(doc)
        textarea = doc.query("textarea")
        inferred = InferredPattern(
            pattern=PatternName.CHAT,
            confidence=0.85,
            evidence="enter + children added",
            container=doc.query(".messages"),
            container_tag="DIV",
            extra_parts={"input": textarea},
        )

        path = registry.register_inferred(inferred)

        assert path == "SECTION[0]>DIV[0]"
        entry = registry.get(path)
        assert entry.source == DetectionSource.PASSIVE
        assert entry.components["input"] is textarea
        assert entry.components["send_button"] is doc.query("button")

    def test_later_registration_overwrites(self):
        doc = make_chat_document()
        registry = DetectionRegistry(doc)
        node = doc.query(".messages")

        registry.register("SECTION[0]>DIV[0]", PatternName.FEED, node, {})
        registry.register("SECTION[0]>DIV[0]", PatternName.CHAT, node, {})

        assert len(registry) == 1
        assert registry.get("SECTION[0]>DIV[0]").pattern == PatternName.CHAT

    def test_resolve_unknown_or_moved_path(self):
        doc = make_chat_document()
        registry = DetectionRegistry(doc)
        registry.register("ASIDE[3]", PatternName.CHAT, None, {})

        assert registry.resolve("SECTION[0]") is None
        assert registry.resolve("ASIDE[3]") is None


# =============================================================================
# EXPLANATION TESTS
# =============================================================================

class TestExplanation:

    def test_breakdown_lists_every_signal(self):
        doc = make_chat_document()
        result = ConfidenceAggregator(doc).detect("chat")[0]

        text = generate_explanation(result)

        assert "Signal breakdown:" in text
        assert "- structural 1.00 x 0.25 = 0.250" in text
        assert "- semantic   1.00 x 0.15 = 0.150" in text
        assert "- behavioral 1.00 x 0.30 = 0.300" in text
        assert "Components: container, input, send_button" in text

    def test_phrases_and_concerns(self):
        result = make_result(
            evidence=Evidence(
                structural=0.6,
                phrasal=0.1,
                semantic=0.0,
                behavioral=0.0,
                phrasal_matches=(
                    PhrasalMatch("chat", MatchStrength.MEDIUM),
                    PhrasalMatch("search", MatchStrength.NEGATIVE),
                ),
            ),
        )

        text = generate_explanation(result)

        assert "Phrases: medium: 'chat'; negative: 'search'" in text
        assert "Concerns: text also mentions 'search'" in text
        assert "Components: none found" in text


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
