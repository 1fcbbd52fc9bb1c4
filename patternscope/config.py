"""
Engine configuration for PatternScope.

All tunables live here as named constants and are collected into one
frozen EngineSettings object. Components accept an optional settings
argument and fall back to DEFAULT_SETTINGS.

Settings are validated at construction time. An inconsistent
configuration is a programmer error and raises ConfigurationError;
nothing about the observed document can trigger it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from .domain import ConfigurationError, GuaranteeLevel


# =============================================================================
# CONFIGURATION CONSTANTS
# =============================================================================

# Snapshot scanning
MAX_SNAPSHOTS = 10
MAX_TEXT_LENGTH = 500
MAX_TEXT_CHILD_NODES = 3
MAX_DATA_ATTR_LENGTH = 100
MAX_CLASS_NAME_LENGTH = 50

# Candidate scanning
MIN_STRUCTURAL_SCORE = 0.2
MAX_CANDIDATES = 10
NONCE_ATTRIBUTE = "data-uc-nonce"

# Signal weights (must sum to 1.0)
WEIGHT_STRUCTURAL = 0.25
WEIGHT_PHRASAL = 0.30
WEIGHT_SEMANTIC = 0.15
WEIGHT_BEHAVIORAL = 0.30

# Acceptance threshold per requested guarantee level
GUARANTEE_THRESHOLDS = {
    GuaranteeLevel.STRUCTURAL: 0.2,
    GuaranteeLevel.SEMANTIC: 0.35,
    GuaranteeLevel.BEHAVIORAL: 0.5,
    GuaranteeLevel.VERIFIED: 0.7,
}

# Structural hashing
SHINGLE_SIZE = 3
HASH_COUNT = 64
NUM_BANDS = 16
MAX_FEATURE_DEPTH = 6
RESULT_FEATURE_COUNT = 10

# Passive correlation
CORRELATION_WINDOW_MS = 1000
MIN_PASSIVE_CONFIDENCE = 0.6
CORRELATION_TICK_MS = 500
MAX_QUEUE_SIZE = 100
SCROLL_BOTTOM_TOLERANCE_PX = 50
MODAL_MIN_WIDTH_PX = 200
MODAL_MIN_HEIGHT_PX = 100

# Behavioral verification (polling at animation-frame cadence)
FRAME_INTERVAL_S = 1 / 60


# =============================================================================
# SETTINGS OBJECT
# =============================================================================

@dataclass(frozen=True)
class EngineSettings:
    """Every tunable the engine reads, validated as a whole."""
    max_snapshots: int = MAX_SNAPSHOTS
    max_text_length: int = MAX_TEXT_LENGTH
    max_text_child_nodes: int = MAX_TEXT_CHILD_NODES
    max_data_attr_length: int = MAX_DATA_ATTR_LENGTH

    min_structural_score: float = MIN_STRUCTURAL_SCORE
    max_candidates: int = MAX_CANDIDATES
    nonce_attribute: str = NONCE_ATTRIBUTE

    weight_structural: float = WEIGHT_STRUCTURAL
    weight_phrasal: float = WEIGHT_PHRASAL
    weight_semantic: float = WEIGHT_SEMANTIC
    weight_behavioral: float = WEIGHT_BEHAVIORAL
    thresholds: dict[GuaranteeLevel, float] = field(
        default_factory=lambda: dict(GUARANTEE_THRESHOLDS)
    )

    shingle_size: int = SHINGLE_SIZE
    hash_count: int = HASH_COUNT
    num_bands: int = NUM_BANDS
    max_feature_depth: int = MAX_FEATURE_DEPTH
    result_feature_count: int = RESULT_FEATURE_COUNT

    correlation_window_ms: float = CORRELATION_WINDOW_MS
    min_passive_confidence: float = MIN_PASSIVE_CONFIDENCE
    correlation_tick_ms: float = CORRELATION_TICK_MS
    max_queue_size: int = MAX_QUEUE_SIZE
    scroll_bottom_tolerance: float = SCROLL_BOTTOM_TOLERANCE_PX
    modal_min_width: float = MODAL_MIN_WIDTH_PX
    modal_min_height: float = MODAL_MIN_HEIGHT_PX

    frame_interval_s: float = FRAME_INTERVAL_S

    def __post_init__(self):
        self._validate()

    def _validate(self) -> None:
        weights = (
            self.weight_structural,
            self.weight_phrasal,
            self.weight_semantic,
            self.weight_behavioral,
        )
        if any(w < 0 for w in weights) or not math.isclose(sum(weights), 1.0):
            raise ConfigurationError(
                f"Signal weights must be non-negative and sum to 1.0, got {weights}"
            )

        missing = [level.name for level in GuaranteeLevel if level not in self.thresholds]
        if missing:
            raise ConfigurationError(f"Missing guarantee thresholds: {missing}")
        ordered = [self.thresholds[level] for level in sorted(GuaranteeLevel)]
        if ordered != sorted(ordered):
            raise ConfigurationError(
                f"Guarantee thresholds must not decrease with the level, got {ordered}"
            )

        if self.hash_count <= 0 or self.num_bands <= 0:
            raise ConfigurationError("hash_count and num_bands must be positive")
        if self.hash_count % self.num_bands != 0:
            raise ConfigurationError(
                f"hash_count ({self.hash_count}) must be divisible by num_bands ({self.num_bands})"
            )
        if self.shingle_size <= 0:
            raise ConfigurationError("shingle_size must be positive")

        if self.correlation_window_ms <= 0 or self.correlation_tick_ms <= 0:
            raise ConfigurationError("correlation window and tick must be positive")
        if self.max_queue_size <= 0 or self.max_snapshots <= 0:
            raise ConfigurationError("queue and snapshot limits must be positive")

    def threshold_for(self, guarantee: GuaranteeLevel) -> float:
        return self.thresholds[guarantee]


DEFAULT_SETTINGS = EngineSettings()
