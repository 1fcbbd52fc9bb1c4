# PatternScope
# Multi-signal UI pattern classification and verification

"""
Core invariant: no classification exists without the evidence that
produced it, and no guarantee is claimed beyond what was observed.

Entry points:
    ConfidenceAggregator      four-signal detection over a document
    SnapshotDiffer            value snapshots and categorized diffs
    PassiveCorrelationEngine  inference from actions and mutations
    BehaviorVerifier          temporal-invariant verification
"""

from .config import DEFAULT_SETTINGS, EngineSettings
from .detection.aggregator import ConfidenceAggregator, DetectionRegistry, generate_explanation
from .dom import HtmlDocument
from .domain import (
    ConfigurationError,
    DetectionResult,
    GuaranteeLevel,
    InferredPattern,
    PatternName,
)
from .environment import DocumentEnvironment, EnvironmentAccessError
from .hashing.lsh import StructuralHasher
from .passive.correlation import PassiveCorrelationEngine
from .phrasal.scorer import PhrasalScorer
from .scanning.snapshot import SnapshotDiffer
from .verification.verifier import BehaviorVerifier

__version__ = "0.1.0"
