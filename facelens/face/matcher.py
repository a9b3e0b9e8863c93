from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np

from facelens.config import UNKNOWN_LABEL
from facelens.face.types import FaceRecord, ProbeFace
from facelens.utils.math import as_embedding, euclidean_distance


@dataclass
class MatcherConfig:
    # Euclidean distance below which a gallery face counts as the same person.
    threshold: float = 0.6
    unknown_label: str = UNKNOWN_LABEL


@dataclass(frozen=True)
class MatchResult:
    index: int
    record: FaceRecord
    distance: float


def iter_candidates(
    embedding: np.ndarray, gallery: Sequence[FaceRecord], require_name: bool = True
) -> Iterator[Tuple[int, FaceRecord, float]]:
    """Yield (index, record, distance) in gallery order.

    Records whose embedding length differs from the probe's are skipped, as are
    unnamed records when `require_name` is set.
    """
    dim = int(embedding.shape[0])
    for i, rec in enumerate(gallery):
        if require_name and not rec.matchable:
            continue
        if rec.embedding is None or int(rec.embedding.shape[0]) != dim:
            continue
        yield i, rec, euclidean_distance(embedding, rec.embedding)


class ScanPolicy(ABC):
    """Chooses one gallery record among those under the distance threshold."""

    @abstractmethod
    def select(
        self, embedding: np.ndarray, gallery: Sequence[FaceRecord], threshold: float, require_name: bool = True
    ) -> Optional[MatchResult]:
        pass


class FirstUnderThreshold(ScanPolicy):
    """First record in gallery order with distance < threshold, not necessarily the closest."""

    def select(self, embedding, gallery, threshold, require_name=True):
        for i, rec, dist in iter_candidates(embedding, gallery, require_name):
            if dist < threshold:
                return MatchResult(index=i, record=rec, distance=dist)
        return None


class NearestUnderThreshold(ScanPolicy):
    """Closest record with distance < threshold; ties go to the earlier record."""

    def select(self, embedding, gallery, threshold, require_name=True):
        best: Optional[MatchResult] = None
        for i, rec, dist in iter_candidates(embedding, gallery, require_name):
            if dist >= threshold:
                continue
            if best is None or dist < best.distance:
                best = MatchResult(index=i, record=rec, distance=dist)
        return best


class IdentityMatcher:
    """Labels probe faces against a gallery snapshot."""

    def __init__(self, config: Optional[MatcherConfig] = None, policy: Optional[ScanPolicy] = None):
        self.config = config or MatcherConfig()
        self.policy = policy or FirstUnderThreshold()

    def find(
        self, embedding, gallery: Sequence[FaceRecord], threshold: Optional[float] = None
    ) -> Optional[MatchResult]:
        emb = as_embedding(embedding)
        if emb is None or not gallery:
            return None
        thr = self.config.threshold if threshold is None else float(threshold)
        return self.policy.select(emb, gallery, thr)

    def match(self, probe: Optional[ProbeFace], gallery: Sequence[FaceRecord], threshold: Optional[float] = None) -> str:
        """Return the matched name, or the unknown label."""
        if probe is None:
            return self.config.unknown_label
        found = self.find(probe.embedding, gallery, threshold)
        if found is None:
            return self.config.unknown_label
        return found.record.name
