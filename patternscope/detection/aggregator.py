"""
Confidence Aggregator for PatternScope.

Four-signal classification with full explainability.

Core principle:
    Every confidence must be decomposable into its weighted signals.
    If a confidence cannot be explained line-by-line, it must not exist.

Confidence composition:
    confidence = 0.25 * structural
               + 0.30 * phrasal
               + 0.15 * semantic
               + 0.30 * behavioral
    capped at 1.0

A candidate is accepted when confidence >= the threshold of the
requested guarantee level (STRUCTURAL 0.2, SEMANTIC 0.35,
BEHAVIORAL 0.5, VERIFIED 0.7). Accepted results are registered by
structural path for later re-binding.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Union

from ..config import DEFAULT_SETTINGS, EngineSettings
from ..domain import (
    Candidate,
    DetectionResult,
    GuaranteeLevel,
    InferredPattern,
    PatternName,
    SignatureSummary,
)
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment, Node, element_path, resolve_path
from ..evidence import Evidence, MatchStrength
from ..hashing.lsh import StructuralHasher, similarity
from ..phrasal.scorer import PhrasalScorer
from ..scanning.diff_patterns import DiffMatch, detect_pattern
from ..scanning.snapshot import Diff
from .patterns import PATTERN_SPECS
from .rules import (
    check_behavioral,
    check_semantic,
    find_components,
    has_repeated_children,
    is_owned,
    structural_score,
)


logger = logging.getLogger(__name__)


SIGNATURE_SELECTORS = (
    "[role]",
    "[aria-live]",
    "form",
    "input",
    "button",
    '[class*="chat"]',
    '[class*="modal"]',
)
MAX_SIGNATURE_LISTING = 50
LISTING_FINGERPRINT_CHARS = 16
LISTING_FEATURE_COUNT = 6


# =============================================================================
# REGISTRY
# =============================================================================

class DetectionSource(Enum):
    """Where a registered detection came from."""
    DETECT = "detect"
    DIFF = "diff"
    PASSIVE = "passive"


@dataclass
class RegisteredDetection:
    pattern: PatternName
    node: Any
    components: dict[str, Any]
    source: DetectionSource


class DetectionRegistry:
    """
    Path -> detection map used for re-binding.

    A later registration for the same path overwrites the earlier one.
    """

    def __init__(self, env: DocumentEnvironment, settings: EngineSettings = DEFAULT_SETTINGS):
        self.env = env
        self.settings = settings
        self._entries: dict[str, RegisteredDetection] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    @property
    def paths(self) -> list[str]:
        return list(self._entries)

    def get(self, path: str) -> Optional[RegisteredDetection]:
        return self._entries.get(path)

    def resolve(self, path: str) -> Optional[Node]:
        """Current node at a registered path, or None if it moved."""
        if path not in self._entries:
            return None
        return resolve_path(self.env, path)

    def register(
        self,
        path: str,
        pattern: PatternName,
        node: Node,
        components: dict[str, Any],
        source: DetectionSource = DetectionSource.DETECT,
    ) -> None:
        self._entries[path] = RegisteredDetection(pattern, node, components, source)

    def register_inferred(self, inferred: InferredPattern) -> Optional[str]:
        """
        Register a passive inference under its container's path.

        Components are discovered fresh from the container; parts the
        inference observed directly (input, trigger) take precedence.
        """
        if inferred.container is None:
            return None
        path = element_path(self.env, inferred.container)
        components = find_components(
            self.env, inferred.container, inferred.pattern, self.settings.nonce_attribute
        )
        components.update({k: v for k, v in inferred.extra_parts.items() if v is not None})
        self.register(path, inferred.pattern, inferred.container, components, DetectionSource.PASSIVE)
        return path

    def clear(self) -> None:
        self._entries.clear()


# =============================================================================
# CANDIDATE SCANNER
# =============================================================================

class CandidateScanner:
    """Finds structural candidates for a pattern, best first."""

    def __init__(
        self,
        env: DocumentEnvironment,
        settings: EngineSettings = DEFAULT_SETTINGS,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)

    def scan(self, pattern: PatternName) -> list[Candidate]:
        spec = PATTERN_SPECS[pattern]
        candidates: list[Candidate] = []
        checked: set[str] = set()

        def consider(node: Node) -> None:
            if is_owned(self.env, node, self.settings.nonce_attribute):
                return
            path = element_path(self.env, node)
            if path in checked:
                return
            checked.add(path)
            score = structural_score(self.env, node, pattern)
            if score > self.settings.min_structural_score:
                candidates.append(Candidate(node=node, structural_score=score, path=path))

        for selector in spec.selectors:
            try:
                nodes = self.env.query_all(selector)
            except ENVIRONMENT_FAULTS as e:
                self.logger.debug("Selector %r skipped: %s", selector, e)
                continue
            for node in nodes:
                consider(node)

        if spec.scan_repeated_children:
            for node in self.env.query_all("*"):
                try:
                    repeated = has_repeated_children(self.env, node)
                except ENVIRONMENT_FAULTS:
                    repeated = False
                if repeated:
                    consider(node)

        candidates.sort(key=lambda c: c.structural_score, reverse=True)
        return candidates[:self.settings.max_candidates]


# =============================================================================
# SIGNATURE LISTING
# =============================================================================

@dataclass(frozen=True)
class SignatureListing:
    path: str
    tag: str
    fingerprint: str
    features: tuple[str, ...]


# =============================================================================
# AGGREGATOR
# =============================================================================

class ConfidenceAggregator:
    """Combines the four signals into ranked, registered detections."""

    def __init__(
        self,
        env: DocumentEnvironment,
        settings: EngineSettings = DEFAULT_SETTINGS,
        scanner: Optional[CandidateScanner] = None,
        phrasal: Optional[PhrasalScorer] = None,
        hasher: Optional[StructuralHasher] = None,
        registry: Optional[DetectionRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.scanner = scanner or CandidateScanner(env, settings, self.logger)
        self.phrasal = phrasal or PhrasalScorer(env, logger=self.logger)
        self.hasher = hasher or StructuralHasher(env, settings, self.logger)
        self.registry = registry or DetectionRegistry(env, settings)

    def evaluate(self, candidate: Candidate, pattern: PatternName) -> tuple[Evidence, dict[str, Any], float]:
        """Score one candidate on all four signals."""
        phrasal = self.phrasal.score(candidate.node, pattern)
        components = find_components(
            self.env, candidate.node, pattern, self.settings.nonce_attribute
        )
        evidence = Evidence(
            structural=candidate.structural_score,
            phrasal=phrasal.score,
            semantic=check_semantic(self.env, candidate.node, pattern),
            behavioral=check_behavioral(self.env, pattern, components),
            phrasal_matches=phrasal.matches,
        )
        confidence = min(1.0, sum(self._contributions(evidence).values()))
        return evidence, components, confidence

    def _contributions(self, evidence: Evidence) -> dict[str, float]:
        s = self.settings
        return evidence.contributions(
            s.weight_structural, s.weight_phrasal, s.weight_semantic, s.weight_behavioral
        )

    def detect(
        self,
        pattern_name: Union[str, PatternName],
        guarantee: Union[str, GuaranteeLevel] = GuaranteeLevel.BEHAVIORAL,
    ) -> list[DetectionResult]:
        """
        Classify the document for one pattern.

        Returns accepted results sorted by confidence, highest first.
        Unknown pattern or guarantee names yield an empty list.
        """
        pattern = PatternName.parse(pattern_name)
        if pattern is None:
            self.logger.warning("Unknown pattern %r", pattern_name)
            return []
        level = GuaranteeLevel.parse(guarantee)
        if level is None:
            self.logger.warning("Unknown guarantee level %r", guarantee)
            return []

        candidates = self.scanner.scan(pattern)
        self.logger.info("Found %d structural candidates for %s", len(candidates), pattern.value)

        threshold = self.settings.threshold_for(level)
        results: list[DetectionResult] = []
        for candidate in candidates:
            evidence, components, confidence = self.evaluate(candidate, pattern)
            if confidence < threshold:
                continue

            signature = self.hasher.signature(candidate.node)
            self.registry.register(candidate.path, pattern, candidate.node, components)
            results.append(DetectionResult(
                path=candidate.path,
                node=candidate.node,
                pattern_name=pattern,
                confidence=confidence,
                guarantee=level,
                evidence=evidence,
                components=components,
                signature=SignatureSummary(
                    fingerprint=signature.fingerprint,
                    features=signature.features[:self.settings.result_feature_count],
                ),
            ))

        results.sort(key=lambda r: r.confidence, reverse=True)

        if results:
            self.logger.info("Detected %d %s pattern(s)", len(results), pattern.value)
        else:
            self.logger.info("No %s found at %s level", pattern.value, level.value)
        return results

    def auto_detect(self, diff: Optional[Diff]) -> list[DiffMatch]:
        """Run the zero-configuration matchers and register what they bind."""
        if diff is None:
            self.logger.warning("No diff available; run a scan cycle first")
            return []

        matches = detect_pattern(diff, self.env)
        for match in matches:
            self.logger.info(
                "Found %s (%.0f%%) - %s", match.pattern.value, match.confidence * 100, match.proof
            )
            container = match.container
            if container is not None:
                self.registry.register(
                    element_path(self.env, container),
                    match.pattern,
                    container,
                    match.components,
                    DetectionSource.DIFF,
                )
        return matches

    def all_signatures(self) -> list[SignatureListing]:
        """Structural signatures of landmark nodes, for inspection."""
        listings: list[SignatureListing] = []
        seen: set[str] = set()
        for selector in SIGNATURE_SELECTORS:
            try:
                nodes = self.env.query_all(selector)
            except ENVIRONMENT_FAULTS as e:
                self.logger.debug("Selector %r skipped: %s", selector, e)
                continue
            for node in nodes:
                if is_owned(self.env, node, self.settings.nonce_attribute):
                    continue
                path = element_path(self.env, node)
                if path in seen:
                    continue
                seen.add(path)
                signature = self.hasher.signature(node)
                listings.append(SignatureListing(
                    path=path,
                    tag=self.env.tag(node),
                    fingerprint=signature.fingerprint[:LISTING_FINGERPRINT_CHARS],
                    features=signature.features[:LISTING_FEATURE_COUNT],
                ))
        return listings[:MAX_SIGNATURE_LISTING]

    def best_match(
        self,
        results: Sequence[DetectionResult],
        minhash: Sequence[int],
    ) -> Optional[DetectionResult]:
        """
        Pick the result most similar to a saved MinHash vector.

        Falls back to the first (highest confidence) result when nothing
        agrees with the saved vector at all.
        """
        if not results:
            return None
        best = results[0]
        best_similarity = 0.0
        for result in results:
            score = similarity(minhash, self.hasher.signature(result.node).minhash)
            if score > best_similarity:
                best_similarity = score
                best = result
        return best


# =============================================================================
# EXPLANATION GENERATION
# =============================================================================

def generate_explanation(result: DetectionResult, settings: EngineSettings = DEFAULT_SETTINGS) -> str:
    """
    Generate a plain-text explanation of a detection.

    This answers: "Why was this node classified this way?"
    """
    evidence = result.evidence
    contributions = evidence.contributions(
        settings.weight_structural,
        settings.weight_phrasal,
        settings.weight_semantic,
        settings.weight_behavioral,
    )
    weights = {
        "structural": settings.weight_structural,
        "phrasal": settings.weight_phrasal,
        "semantic": settings.weight_semantic,
        "behavioral": settings.weight_behavioral,
    }

    lines = [
        f"{result.pattern_name.value} at {result.path or '<root>'}: "
        f"confidence {result.confidence:.2f} (requested {result.guarantee.value})",
        "",
        "Signal breakdown:",
    ]
    for name, contribution in contributions.items():
        value = getattr(evidence, name)
        lines.append(f"- {name:<10} {value:.2f} x {weights[name]:.2f} = {contribution:.3f}")

    phrases = []
    for strength in MatchStrength:
        matched = evidence.matches_of(strength)
        if matched:
            phrases.append(f"{strength.value}: {', '.join(repr(p) for p in matched)}")
    if phrases:
        lines.append("")
        lines.append("Phrases: " + "; ".join(phrases))

    parts = sorted(name for name, part in result.components.items() if part is not None and part != [])
    lines.append("")
    lines.append("Components: " + (", ".join(parts) if parts else "none found"))

    negative = evidence.matches_of(MatchStrength.NEGATIVE)
    if negative:
        lines.append("")
        lines.append("Concerns: text also mentions " + ", ".join(repr(p) for p in negative))

    return "\n".join(lines)
