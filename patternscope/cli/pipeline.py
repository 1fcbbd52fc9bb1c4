"""
Command Orchestration for PatternScope.

Ties the engine together for one-shot, file-based runs:
    detection   HTML file -> ranked DetectionResults
    diff        two HTML files -> snapshot Diff + zero-config matches
    signatures  HTML file -> landmark signature listing
    similarity  HTML file + two selectors -> structural similarity

Every run is read-only. Nothing is persisted between runs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ..config import DEFAULT_SETTINGS, EngineSettings
from ..detection.aggregator import ConfidenceAggregator, SignatureListing
from ..dom import HtmlDocument
from ..domain import DetectionResult, GuaranteeLevel, PatternName, Signature
from ..hashing.lsh import StructuralHasher
from ..scanning.diff_patterns import DiffMatch, detect_pattern
from ..scanning.snapshot import Diff, SnapshotDiffer


logger = logging.getLogger(__name__)


PathLike = Union[str, Path]


def load_document(path: PathLike) -> HtmlDocument:
    """Parse an HTML file into an in-memory environment."""
    document = HtmlDocument.from_file(path)
    logger.debug("Loaded %s", path)
    return document


# =============================================================================
# RUN RESULTS
# =============================================================================

@dataclass
class DetectionRun:
    source: str
    pattern: PatternName
    guarantee: GuaranteeLevel
    results: list[DetectionResult]
    run_timestamp: datetime = field(default_factory=datetime.now)

    def get_result(self, index: int) -> Optional[DetectionResult]:
        if 0 <= index < len(self.results):
            return self.results[index]
        return None


@dataclass
class DiffRun:
    before: str
    after: str
    diff: Diff
    matches: list[DiffMatch]


@dataclass
class SimilarityRun:
    selector_a: str
    selector_b: str
    signature_a: Signature
    signature_b: Signature
    similarity: float


# =============================================================================
# RUNS
# =============================================================================

def run_detection(
    path: PathLike,
    pattern: PatternName,
    guarantee: GuaranteeLevel = GuaranteeLevel.BEHAVIORAL,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> DetectionRun:
    document = load_document(path)
    aggregator = ConfidenceAggregator(document, settings)
    results = aggregator.detect(pattern, guarantee)
    return DetectionRun(str(path), pattern, guarantee, results)


def run_diff(
    before_path: PathLike,
    after_path: PathLike,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> DiffRun:
    """
    Diff two captures of the same page.

    Paths are structural, so the two files are compared node-by-node by
    position. Matchers read live state from the "after" document.
    """
    before_snapshot = SnapshotDiffer(load_document(before_path), settings).snapshot()
    after_document = load_document(after_path)
    differ = SnapshotDiffer(after_document, settings)
    diff = differ.diff(before_snapshot, differ.snapshot())
    return DiffRun(str(before_path), str(after_path), diff, detect_pattern(diff, after_document))


def run_signatures(path: PathLike, settings: EngineSettings = DEFAULT_SETTINGS) -> list[SignatureListing]:
    return ConfidenceAggregator(load_document(path), settings).all_signatures()


def run_similarity(
    path: PathLike,
    selector_a: str,
    selector_b: str,
    settings: EngineSettings = DEFAULT_SETTINGS,
) -> SimilarityRun:
    """Structural similarity of the first nodes matched by two selectors."""
    document = load_document(path)
    hasher = StructuralHasher(document, settings)

    signatures = []
    for selector in (selector_a, selector_b):
        node = document.query(selector)
        if node is None:
            raise LookupError(f"No node matches {selector!r}")
        signatures.append(hasher.signature(node))

    return SimilarityRun(
        selector_a,
        selector_b,
        signatures[0],
        signatures[1],
        hasher.similarity(signatures[0], signatures[1]),
    )
