"""
Structural Hashing for PatternScope.

Turns a DOM subtree into a MinHash signature over shingled structural
feature tokens, and keeps a banded LSH index for sub-linear similarity
retrieval.

Pipeline:
    extract_features(node)  -> depth-first pre-order token list
    signature(node)         -> shingles (window 3, as a set)
                            -> MinHash vector of H slots
                            -> hex fingerprint of the full vector
    LSHIndex                -> H slots split into bands, one bucket map per band

Feature tokens per visited node (walk depth <= 6):
    tag:DIV  depth:N  children:<bucket>  scrollable  fixed
    has-input  has-button  role:<role>  aria-live  aria-haspopup
    shape:<first five child tags>  repeat:<bucket>

Similarity is the fraction of MinHash slots that are exactly equal.
This is a per-slot agreement rate used as an approximation of the
Jaccard similarity of the shingle sets; it is kept as is.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from ..config import DEFAULT_SETTINGS, EngineSettings
from ..domain import ConfigurationError, Signature
from ..environment import ENVIRONMENT_FAULTS, DocumentEnvironment, Node


logger = logging.getLogger(__name__)


FNV_OFFSET = 0x811C9DC5
FNV_PRIME = 0x01000193
GOLDEN_RATIO = 0x9E3779B9
MASK32 = 0xFFFFFFFF

MAX_DEPTH_TOKEN = 10
SHAPE_CHILDREN = 5


# =============================================================================
# HASH PRIMITIVES
# =============================================================================

def hash32(text: str) -> int:
    """32-bit FNV-1a over the UTF-16 code units of text."""
    h = FNV_OFFSET
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        h ^= data[i] | (data[i + 1] << 8)
        h = (h * FNV_PRIME) & MASK32
    return h


def bucket_count(n: int) -> str:
    if n == 0:
        return "0"
    if n == 1:
        return "1"
    if n <= 3:
        return "2-3"
    if n <= 10:
        return "4-10"
    return "10+"


def similarity(a: Sequence[int], b: Sequence[int]) -> float:
    """Fraction of equal slots; 0 for empty or mismatched vectors."""
    if not a or len(a) != len(b):
        return 0.0
    equal = sum(1 for x, y in zip(a, b) if x == y)
    return equal / len(a)


def encode_fingerprint(minhash: Sequence[int]) -> str:
    return "".join(f"{h:08x}" for h in minhash)


# =============================================================================
# INDEX
# =============================================================================

@dataclass
class LSHIndexEntry:
    key: str
    signature: Signature
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SimilarMatch:
    key: str
    similarity: float
    signature: Signature
    metadata: dict[str, Any]


class LSHIndex:
    """
    Banded MinHash index keyed by fingerprint.

    Each band of rows_per_band slots hashes to a bucket id; every band
    has its own bucket -> fingerprint set map. Entries sharing any
    bucket with a query are candidates, ranked by exact similarity.
    """

    def __init__(self, num_hashes: int, num_bands: int):
        if num_hashes <= 0 or num_bands <= 0 or num_hashes % num_bands != 0:
            raise ConfigurationError(
                f"num_hashes ({num_hashes}) must be a positive multiple of num_bands ({num_bands})"
            )
        self.num_hashes = num_hashes
        self.num_bands = num_bands
        self.rows_per_band = num_hashes // num_bands
        self._entries: dict[str, LSHIndexEntry] = {}
        self._buckets: list[dict[str, set[str]]] = [{} for _ in range(num_bands)]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._entries

    def band_buckets(self, minhash: Sequence[int]) -> list[str]:
        buckets = []
        for band in range(self.num_bands):
            start = band * self.rows_per_band
            rows = minhash[start:start + self.rows_per_band]
            digest = hash32(",".join(str(v) for v in rows))
            buckets.append(f"{band}:{digest:x}")
        return buckets

    def add(self, key: str, signature: Signature, metadata: Optional[dict[str, Any]] = None) -> None:
        fingerprint = signature.fingerprint
        if fingerprint in self._entries:
            self.remove(fingerprint)
        self._entries[fingerprint] = LSHIndexEntry(key, signature, dict(metadata or {}))
        for band, bucket in enumerate(self.band_buckets(signature.minhash)):
            self._buckets[band].setdefault(bucket, set()).add(fingerprint)

    def remove(self, fingerprint: str) -> bool:
        entry = self._entries.pop(fingerprint, None)
        if entry is None:
            return False
        for band, bucket in enumerate(self.band_buckets(entry.signature.minhash)):
            members = self._buckets[band].get(bucket)
            if members is None:
                continue
            members.discard(fingerprint)
            if not members:
                del self._buckets[band][bucket]
        return True

    def clear(self) -> None:
        self._entries.clear()
        self._buckets = [{} for _ in range(self.num_bands)]

    def query(
        self,
        signature: Signature,
        threshold: float = 0.0,
        limit: Optional[int] = None,
    ) -> list[SimilarMatch]:
        candidates: set[str] = set()
        for band, bucket in enumerate(self.band_buckets(signature.minhash)):
            candidates |= self._buckets[band].get(bucket, set())

        matches = []
        for fingerprint in candidates:
            entry = self._entries[fingerprint]
            score = similarity(signature.minhash, entry.signature.minhash)
            if score >= threshold:
                matches.append(SimilarMatch(entry.key, score, entry.signature, entry.metadata))

        matches.sort(key=lambda m: (-m.similarity, m.key))
        return matches[:limit] if limit is not None else matches


# =============================================================================
# HASHER
# =============================================================================

class StructuralHasher:
    """Feature extraction, MinHash signatures, and the owned LSH index."""

    def __init__(
        self,
        env: DocumentEnvironment,
        settings: EngineSettings = DEFAULT_SETTINGS,
        logger: Optional[logging.Logger] = None,
    ):
        self.env = env
        self.settings = settings
        self.logger = logger or logging.getLogger(__name__)
        self.seeds = [(i * GOLDEN_RATIO) & MASK32 for i in range(settings.hash_count)]
        self.index = LSHIndex(settings.hash_count, settings.num_bands)

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    def extract_features(self, node: Node) -> list[str]:
        features: list[str] = []
        self._walk(node, 0, features)
        return features

    def _walk(self, node: Node, depth: int, features: list[str]) -> None:
        if depth > self.settings.max_feature_depth:
            return

        env = self.env
        children = env.children(node)

        features.append(f"tag:{env.tag(node)}")
        features.append(f"depth:{min(depth, MAX_DEPTH_TOKEN)}")
        features.append(f"children:{bucket_count(len(children))}")

        try:
            style = env.style(node)
            if env.scroll(node).is_scrollable and style.overflow_y in ("auto", "scroll"):
                features.append("scrollable")
            if style.position == "fixed":
                features.append("fixed")
        except ENVIRONMENT_FAULTS as e:
            self.logger.debug("Style unavailable during feature walk: %s", e)

        if env.query("input,textarea", node) is not None:
            features.append("has-input")
        if env.query("button", node) is not None:
            features.append("has-button")

        role = env.get_attribute(node, "role")
        if role:
            features.append(f"role:{role}")
        if env.get_attribute(node, "aria-live"):
            features.append("aria-live")
        if env.get_attribute(node, "aria-haspopup"):
            features.append("aria-haspopup")

        child_tags = [env.tag(c) for c in children]
        if child_tags:
            features.append("shape:" + ",".join(child_tags[:SHAPE_CHILDREN]))
            max_repeat = max(Counter(child_tags).values())
            if max_repeat > 2:
                features.append(f"repeat:{bucket_count(max_repeat)}")

        for child in children:
            self._walk(child, depth + 1, features)

    # -------------------------------------------------------------------------
    # Signatures
    # -------------------------------------------------------------------------

    def signature(self, node: Node) -> Signature:
        return self.signature_from_features(self.extract_features(node))

    def signature_from_features(self, features: Sequence[str]) -> Signature:
        size = self.settings.shingle_size
        shingles = {
            "|".join(features[i:i + size])
            for i in range(len(features) - size + 1)
        }

        minhash = [MASK32] * self.settings.hash_count
        for shingle in shingles:
            h = hash32(shingle)
            for i, seed in enumerate(self.seeds):
                permuted = h ^ seed
                if permuted < minhash[i]:
                    minhash[i] = permuted

        return Signature(
            features=tuple(features),
            minhash=tuple(minhash),
            fingerprint=encode_fingerprint(minhash),
        )

    @staticmethod
    def similarity(a: Signature, b: Signature) -> float:
        return similarity(a.minhash, b.minhash)

    # -------------------------------------------------------------------------
    # Index delegation
    # -------------------------------------------------------------------------

    def add_to_index(self, key: str, signature: Signature, metadata: Optional[dict[str, Any]] = None) -> None:
        self.index.add(key, signature, metadata)

    def remove_from_index(self, fingerprint: str) -> bool:
        return self.index.remove(fingerprint)

    def clear_index(self) -> None:
        self.index.clear()

    def query_similar(
        self,
        signature: Signature,
        threshold: float = 0.0,
        limit: Optional[int] = None,
    ) -> list[SimilarMatch]:
        return self.index.query(signature, threshold, limit)
