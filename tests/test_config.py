"""
Tests for settings, evidence and domain objects.

These tests verify:
1. EngineSettings rejects inconsistent weights, thresholds and band layouts
2. Evidence and results refuse values outside [0, 1]
3. Pattern and guarantee names parse leniently and order correctly
4. Inferred patterns deduplicate on pattern, tag and id
"""

import pytest

from patternscope.config import DEFAULT_SETTINGS, EngineSettings
from patternscope.domain import (
    ConfigurationError,
    DetectionResult,
    GuaranteeLevel,
    InferredPattern,
    PatternName,
    SignatureSummary,
)
from patternscope.evidence import (
    Evidence,
    EvidenceValidationError,
    MatchStrength,
    PhrasalMatch,
)


# =============================================================================
# TEST FIXTURES
# =============================================================================

def make_evidence(**overrides) -> Evidence:
    """Helper to create valid evidence."""
    defaults = {
        "structural": 1.0,
        "phrasal": 0.5,
        "semantic": 1.0,
        "behavioral": 1.0,
        "phrasal_matches": (PhrasalMatch("chat", MatchStrength.STRONG),),
    }
    defaults.update(overrides)
    return Evidence(**defaults)


def make_result(**overrides) -> DetectionResult:
    defaults = {
        "path": "SECTION[0]",
        "node": None,
        "pattern_name": PatternName.CHAT,
        "confidence": 0.85,
        "guarantee": GuaranteeLevel.BEHAVIORAL,
        "evidence": make_evidence(),
        "components": {"container": object(), "input": None, "messages": []},
        "signature": SignatureSummary("abcd", ("TAG:SECTION",)),
    }
    defaults.update(overrides)
    return DetectionResult(**defaults)


# =============================================================================
# SETTINGS TESTS
# =============================================================================

class TestEngineSettings:

    def test_defaults(self):
        assert DEFAULT_SETTINGS.hash_count == 64
        assert DEFAULT_SETTINGS.num_bands == 16
        assert DEFAULT_SETTINGS.threshold_for(GuaranteeLevel.BEHAVIORAL) == 0.5
        assert DEFAULT_SETTINGS.threshold_for(GuaranteeLevel.VERIFIED) == 0.7

    def test_weights_must_sum_to_one(self):
        with pytest.raises(ConfigurationError, match="sum to 1.0"):
            EngineSettings(weight_structural=0.5)

    def test_negative_weight_rejected(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(weight_structural=-0.1, weight_phrasal=0.65)

    def test_hashes_must_divide_into_bands(self):
        with pytest.raises(ConfigurationError, match="divisible"):
            EngineSettings(hash_count=64, num_bands=10)

    def test_zero_bands_rejected(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(num_bands=0)

    def test_thresholds_must_not_decrease(self):
        thresholds = {
            GuaranteeLevel.STRUCTURAL: 0.2,
            GuaranteeLevel.SEMANTIC: 0.6,
            GuaranteeLevel.BEHAVIORAL: 0.5,
            GuaranteeLevel.VERIFIED: 0.7,
        }
        with pytest.raises(ConfigurationError, match="must not decrease"):
            EngineSettings(thresholds=thresholds)

    def test_missing_threshold_rejected(self):
        with pytest.raises(ConfigurationError, match="Missing"):
            EngineSettings(thresholds={GuaranteeLevel.STRUCTURAL: 0.2})

    def test_non_positive_window_rejected(self):
        with pytest.raises(ConfigurationError):
            EngineSettings(correlation_window_ms=0)

    def test_settings_are_frozen(self):
        with pytest.raises(AttributeError):
            DEFAULT_SETTINGS.hash_count = 32


# =============================================================================
# EVIDENCE TESTS
# =============================================================================

class TestEvidence:

    def test_valid_evidence(self):
        evidence = make_evidence()

        assert evidence.matches_of(MatchStrength.STRONG) == ["chat"]
        assert evidence.matches_of(MatchStrength.NEGATIVE) == []

    def test_semantic_is_binary(self):
        with pytest.raises(EvidenceValidationError, match="binary"):
            make_evidence(semantic=0.5)

    def test_structural_out_of_range(self):
        with pytest.raises(EvidenceValidationError):
            make_evidence(structural=1.5)

    def test_negative_phrasal_rejected(self):
        with pytest.raises(EvidenceValidationError):
            make_evidence(phrasal=-0.1)

    def test_contributions(self):
        contributions = make_evidence().contributions(0.25, 0.30, 0.15, 0.30)

        assert contributions["structural"] == pytest.approx(0.25)
        assert contributions["phrasal"] == pytest.approx(0.15)
        assert sum(contributions.values()) == pytest.approx(0.85)

    def test_phrase_deltas(self):
        assert PhrasalMatch("send", MatchStrength.BUTTON).delta == 0.2
        assert PhrasalMatch("ad", MatchStrength.NEGATIVE).delta == -0.25


# =============================================================================
# DOMAIN OBJECT TESTS
# =============================================================================

class TestDetectionResult:

    def test_confidence_out_of_range(self):
        with pytest.raises(EvidenceValidationError):
            make_result(confidence=1.2)

    def test_to_dict_drops_nodes_and_empty_parts(self):
        record = make_result().to_dict()

        assert record["pattern"] == "chat"
        assert record["guarantee"] == "BEHAVIORAL"
        assert record["components"] == ["container"]
        assert record["evidence"]["phrasal_matches"] == [{"phrase": "chat", "strength": "strong"}]
        assert "node" not in record


class TestNames:

    def test_pattern_parse(self):
        assert PatternName.parse(" Chat ") == PatternName.CHAT
        assert PatternName.parse(PatternName.FEED) == PatternName.FEED
        assert PatternName.parse("carousel") is None

    def test_guarantee_parse(self):
        assert GuaranteeLevel.parse("verified") == GuaranteeLevel.VERIFIED
        assert GuaranteeLevel.parse("ultra") is None

    def test_guarantee_ordering(self):
        assert GuaranteeLevel.STRUCTURAL < GuaranteeLevel.SEMANTIC
        assert GuaranteeLevel.BEHAVIORAL < GuaranteeLevel.VERIFIED
        assert max(GuaranteeLevel) == GuaranteeLevel.VERIFIED
        assert sorted([GuaranteeLevel.VERIFIED, GuaranteeLevel.STRUCTURAL]) == [
            GuaranteeLevel.STRUCTURAL, GuaranteeLevel.VERIFIED,
        ]


class TestInferredPattern:

    def test_dedup_key(self):
        inferred = InferredPattern(
            PatternName.MODAL, 0.95, "dialog appeared", object(), "DIV", "signup",
        )

        assert inferred.dedup_key == ("modal", "DIV", "signup")

    def test_confidence_validated(self):
        with pytest.raises(EvidenceValidationError):
            InferredPattern(PatternName.FEED, 1.5, "", None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
