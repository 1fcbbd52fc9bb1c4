"""
Core Domain Objects for PatternScope.

All detection output is built on the Evidence foundation: a confidence
value never exists without the signals that produced it.

Domain Objects:
    PatternName      — The interaction patterns the engine knows
    GuaranteeLevel   — Ordered corroboration tiers
    Candidate        — A node worth scoring, with its structural score
    Signature        — A structural MinHash identity of a subtree
    DetectionResult  — An accepted, evidence-backed classification
    InferredPattern  — A classification made passively from action/mutation correlation
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import total_ordering
from typing import Any, Optional, Union

from .evidence import Evidence, validate_unit_interval


class ConfigurationError(Exception):
    """Raised when engine settings or index parameters are inconsistent."""
    pass


# =============================================================================
# PATTERNS & GUARANTEES
# =============================================================================

class PatternName(Enum):
    """Interaction patterns the classifier can recognise."""
    CHAT = "chat"
    FORM = "form"
    DROPDOWN = "dropdown"
    MODAL = "modal"
    LOGIN = "login"
    SEARCH = "search"
    COOKIE = "cookie"
    FEED = "feed"

    @classmethod
    def parse(cls, value: Union[str, PatternName]) -> Optional[PatternName]:
        """Look up a pattern by name; None when unknown."""
        if isinstance(value, PatternName):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None


@total_ordering
class GuaranteeLevel(Enum):
    """
    How strongly a detection has been corroborated.

    Ordered: STRUCTURAL < SEMANTIC < BEHAVIORAL < VERIFIED.
    Only a passing behavioral verification reaches VERIFIED.
    """
    STRUCTURAL = "STRUCTURAL"
    SEMANTIC = "SEMANTIC"
    BEHAVIORAL = "BEHAVIORAL"
    VERIFIED = "VERIFIED"

    @property
    def rank(self) -> int:
        return list(GuaranteeLevel).index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, GuaranteeLevel):
            return NotImplemented
        return self.rank < other.rank

    @classmethod
    def parse(cls, value: Union[str, GuaranteeLevel]) -> Optional[GuaranteeLevel]:
        if isinstance(value, GuaranteeLevel):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


# =============================================================================
# CANDIDATES & SIGNATURES
# =============================================================================

@dataclass
class Candidate:
    """A node found by the structural scan, transient per detect() call."""
    node: Any
    structural_score: float
    path: str


@dataclass(frozen=True)
class Signature:
    """
    Structural identity of a subtree.

    Invariant: len(minhash) equals the configured hash count, and
    fingerprint is the deterministic hex encoding of minhash.
    """
    features: tuple[str, ...]
    minhash: tuple[int, ...]
    fingerprint: str


@dataclass(frozen=True)
class SignatureSummary:
    """The part of a Signature reported alongside a detection."""
    fingerprint: str
    features: tuple[str, ...]


# =============================================================================
# DETECTION RESULT
# =============================================================================

@dataclass
class DetectionResult:
    """
    An accepted classification of one node.

    INVARIANT: confidence is in [0, 1] and is fully explained by evidence.
    Results of a single detect() call are ordered by confidence, highest first.
    """
    path: str
    node: Any
    pattern_name: PatternName
    confidence: float
    guarantee: GuaranteeLevel
    evidence: Evidence
    components: dict[str, Any]
    signature: SignatureSummary

    def __post_init__(self):
        validate_unit_interval("confidence", self.confidence)

    def to_dict(self) -> dict[str, Any]:
        """Plain record without node references."""
        return {
            "path": self.path,
            "pattern": self.pattern_name.value,
            "confidence": round(self.confidence, 4),
            "guarantee": self.guarantee.value,
            "evidence": {
                "structural": self.evidence.structural,
                "phrasal": self.evidence.phrasal,
                "phrasal_matches": [
                    {"phrase": m.phrase, "strength": m.strength.value}
                    for m in self.evidence.phrasal_matches
                ],
                "semantic": self.evidence.semantic,
                "behavioral": self.evidence.behavioral,
            },
            "components": sorted(
                k for k, v in self.components.items() if v is not None and v != []
            ),
            "signature": {
                "fingerprint": self.signature.fingerprint,
                "features": list(self.signature.features),
            },
        }


# =============================================================================
# INFERRED PATTERN (passive)
# =============================================================================

@dataclass
class InferredPattern:
    """
    A pattern inferred from a user action and the mutations that followed.

    Deduplicated by (pattern, container tag, container id).
    """
    pattern: PatternName
    confidence: float
    evidence: str
    container: Any
    container_tag: str = ""
    container_id: str = ""
    extra_parts: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        validate_unit_interval("confidence", self.confidence)

    @property
    def dedup_key(self) -> tuple[str, str, str]:
        return (self.pattern.value, self.container_tag, self.container_id)
