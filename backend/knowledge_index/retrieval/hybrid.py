"""Hybrid search utilities."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


@dataclass(slots=True)
class RankedItem:
    identifier: str
    score: float


def reciprocal_rank_fusion(
    results: Sequence[Sequence[str]],
    weights: Sequence[float] | None = None,
    c: float = 60.0,
) -> list[RankedItem]:
    """Combine rankings using weighted reciprocal rank fusion.

    Each ranking contributes ``weight / (c + rank)`` for every identifier it contains.
    Ties keep the order in which identifiers were first seen.
    """
    if weights is None:
        weights = [1.0 / len(results)] * len(results) if results else []
    if len(weights) != len(results):
        raise ValueError("Number of weights must match number of rankings")
    scores: dict[str, float] = {}
    for hits, weight in zip(results, weights):
        for rank, identifier in enumerate(hits, start=1):
            scores[identifier] = scores.get(identifier, 0.0) + weight / (c + rank)
    fused = sorted(scores.items(), key=lambda item: item[1], reverse=True)
    return [RankedItem(identifier=identifier, score=score) for identifier, score in fused]


__all__ = ["reciprocal_rank_fusion", "RankedItem"]
