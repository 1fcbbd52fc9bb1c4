"""
Evidence — the explainable record behind every detection.

SYSTEM INVARIANT:
    No confidence value leaves the engine without the four signals it
    was computed from. A DetectionResult carries its Evidence, and the
    Evidence carries every phrase that moved the phrasal signal.

Signals:
    structural  — fraction of weighted structural rules that hold
    phrasal     — lexicon match score over the node's text surface
    semantic    — accessibility role/attribute predicate (0 or 1)
    behavioral  — component-shape predicate over discovered parts
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class MatchStrength(Enum):
    """Phrase classes of a lexicon, each with a fixed score delta."""
    STRONG = "strong"
    MEDIUM = "medium"
    PLACEHOLDER = "placeholder"
    BUTTON = "button"
    NEGATIVE = "negative"


# Score delta per matched phrase
PHRASE_WEIGHTS = {
    MatchStrength.STRONG: 0.35,
    MatchStrength.MEDIUM: 0.15,
    MatchStrength.PLACEHOLDER: 0.25,
    MatchStrength.BUTTON: 0.2,
    MatchStrength.NEGATIVE: -0.25,
}


class EvidenceValidationError(Exception):
    """Raised when an evidence record violates its invariants."""
    pass


@dataclass(frozen=True)
class PhrasalMatch:
    """One phrase found in a node's text surface."""
    phrase: str
    strength: MatchStrength

    @property
    def delta(self) -> float:
        return PHRASE_WEIGHTS[self.strength]


def validate_unit_interval(name: str, value: float) -> None:
    if not (0.0 <= value <= 1.0):
        raise EvidenceValidationError(f"{name} must be in [0.0, 1.0], got {value}")


@dataclass(frozen=True)
class Evidence:
    """
    The four signals behind a confidence value.

    Invariants enforced:
    1. structural, phrasal, semantic and behavioral are each in [0.0, 1.0]
    2. semantic is binary (0.0 or 1.0)
    """
    structural: float
    phrasal: float
    semantic: float
    behavioral: float
    phrasal_matches: tuple[PhrasalMatch, ...] = field(default_factory=tuple)

    def __post_init__(self):
        self._validate()

    def _validate(self) -> None:
        for name in ("structural", "phrasal", "semantic", "behavioral"):
            validate_unit_interval(name, getattr(self, name))
        if self.semantic not in (0.0, 1.0):
            raise EvidenceValidationError(
                f"semantic is binary, got {self.semantic}"
            )

    def contributions(
        self,
        structural_weight: float,
        phrasal_weight: float,
        semantic_weight: float,
        behavioral_weight: float,
    ) -> dict[str, float]:
        """Weighted contribution of each signal, keyed by signal name."""
        return {
            "structural": self.structural * structural_weight,
            "phrasal": self.phrasal * phrasal_weight,
            "semantic": self.semantic * semantic_weight,
            "behavioral": self.behavioral * behavioral_weight,
        }

    def matches_of(self, strength: MatchStrength) -> list[str]:
        return [m.phrase for m in self.phrasal_matches if m.strength == strength]
