"""Search orchestration."""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Sequence

from knowledge_index.core.config import Settings
from knowledge_index.core.errors import BadRequestError, NotFoundError
from knowledge_index.core.logging import get_logger
from knowledge_index.core.metrics import RETRIEVAL_LATENCY
from knowledge_index.db import queries
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.keyword_table import KeywordIndexStore
from knowledge_index.ingest.embeddings import CachedEmbeddings
from knowledge_index.ingest.keywords import extract_keywords
from knowledge_index.models.dto import RetrievedSegment
from knowledge_index.models.entities import RetrievalStrategy, Segment, SegmentStatus
from knowledge_index.retrieval.hybrid import reciprocal_rank_fusion
from knowledge_index.retrieval.vector_index import VectorStore
from knowledge_index.utils.ids import new_id
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)

HYBRID_WEIGHTS = (0.5, 0.5)


@dataclass(slots=True)
class Candidate:
    segment: Segment
    score: float


class Retriever:
    """Full-text, semantic and hybrid retrieval over one or more datasets."""

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        keyword_store: KeywordIndexStore,
        vector_store: VectorStore,
        embeddings: CachedEmbeddings,
    ) -> None:
        self.db = db
        self.settings = settings
        self.keyword_store = keyword_store
        self.vector_store = vector_store
        self.embeddings = embeddings

    def search(
        self,
        query: str,
        dataset_ids: Sequence[str],
        strategy: RetrievalStrategy | str | None = None,
        k: int | None = None,
        score_threshold: float | None = None,
        source: str = "app",
    ) -> list[RetrievedSegment]:
        if not query or not query.strip():
            raise BadRequestError("Query must not be empty")
        if not dataset_ids:
            raise BadRequestError("At least one dataset is required")
        for dataset_id in dataset_ids:
            if queries.fetch_dataset(self.db, dataset_id) is None:
                raise NotFoundError(f"Dataset {dataset_id} not found")
        try:
            resolved = RetrievalStrategy(strategy or self.settings.default_strategy)
        except ValueError as exc:
            raise BadRequestError(f"Unknown retrieval strategy {strategy!r}") from exc
        if k is not None and k <= 0:
            raise BadRequestError("k must be a positive integer")
        top_k = k or self.settings.default_top_k
        threshold = self.settings.default_score_threshold if score_threshold is None else score_threshold

        start = time.perf_counter()
        if resolved is RetrievalStrategy.FULL_TEXT:
            candidates = self.full_text(query, dataset_ids, top_k)
        elif resolved is RetrievalStrategy.SEMANTIC:
            candidates = self.semantic(query, dataset_ids, top_k, threshold)
        else:
            candidates = self.hybrid(query, dataset_ids, top_k, threshold)
        RETRIEVAL_LATENCY.labels(strategy=resolved.value).observe(time.perf_counter() - start)

        self._record_hits(query, candidates, source)
        return [_to_result(candidate) for candidate in candidates]

    def full_text(self, query: str, dataset_ids: Sequence[str], k: int) -> list[Candidate]:
        """Rank segments by how many query keywords index them; score is always 0."""
        keywords = extract_keywords(query, self.settings.max_keywords)
        if not keywords:
            return []
        hits = self.keyword_store.find(dataset_ids, keywords)
        # Counter preserves first-seen order, and sorted() is stable on equal counts.
        ranked = sorted(Counter(hits).items(), key=lambda item: item[1], reverse=True)
        segments = queries.fetch_segments_by_ids(self.db, [segment_id for segment_id, _ in ranked])
        visible = self._visible_segment_ids(segments.values())
        candidates: list[Candidate] = []
        for segment_id, _ in ranked:
            if segment_id in visible:
                candidates.append(Candidate(segment=segments[segment_id], score=0.0))
            if len(candidates) >= k:
                break
        return candidates

    def semantic(
        self, query: str, dataset_ids: Sequence[str], k: int, score_threshold: float = 0.0
    ) -> list[Candidate]:
        vector = self.embeddings.embed(query)
        results = self.vector_store.search(
            vector,
            top_k=k,
            filters={
                "dataset_id": list(dataset_ids),
                "document_enabled": True,
                "segment_enabled": True,
            },
        )
        results = [result for result in results if result.score >= score_threshold]
        segment_ids = [result.metadata.get("segment_id") for result in results]
        segments = queries.fetch_segments_by_ids(self.db, [sid for sid in segment_ids if sid])
        visible = self._visible_segment_ids(segments.values())
        candidates: list[Candidate] = []
        for result, segment_id in zip(results, segment_ids):
            if segment_id in visible:
                candidates.append(Candidate(segment=segments[segment_id], score=result.score))
        return candidates

    def hybrid(
        self, query: str, dataset_ids: Sequence[str], k: int, score_threshold: float = 0.0
    ) -> list[Candidate]:
        semantic = self.semantic(query, dataset_ids, k, score_threshold)
        full_text = self.full_text(query, dataset_ids, k)
        fused = reciprocal_rank_fusion(
            [
                [candidate.segment.id for candidate in semantic],
                [candidate.segment.id for candidate in full_text],
            ],
            weights=HYBRID_WEIGHTS,
        )
        by_id = {candidate.segment.id: candidate for candidate in full_text}
        by_id.update({candidate.segment.id: candidate for candidate in semantic})
        return [by_id[item.identifier] for item in fused[:k]]

    # ------------------------------------------------------------------

    def _visible_segment_ids(self, segments: Iterable[Segment]) -> set[str]:
        """Ids of completed, enabled segments whose document is enabled."""
        segments = list(segments)
        if not segments:
            return set()
        document_ids = list({segment.document_id for segment in segments})
        rows = self.db.query(
            f"SELECT id FROM document WHERE enabled = 1 AND id IN ({queries.placeholders(len(document_ids))})",
            document_ids,
        )
        enabled_documents = {row["id"] for row in rows}
        return {
            segment.id
            for segment in segments
            if segment.enabled
            and segment.status is SegmentStatus.COMPLETED
            and segment.document_id in enabled_documents
        }

    def _record_hits(self, query: str, candidates: Sequence[Candidate], source: str) -> None:
        if not candidates:
            return
        try:
            ts = now_ms()
            dataset_ids = list(dict.fromkeys(candidate.segment.dataset_id for candidate in candidates))
            with self.db.transaction() as cur:
                cur.executemany(
                    "UPDATE segment SET hit_count = hit_count + 1 WHERE id = ?",
                    [(candidate.segment.id,) for candidate in candidates],
                )
                cur.executemany(
                    "INSERT INTO dataset_query (id, dataset_id, query, source, created_at) VALUES (?, ?, ?, ?, ?)",
                    [(new_id(), dataset_id, query, source, ts) for dataset_id in dataset_ids],
                )
        except Exception:
            logger.warning("Failed to record retrieval hits", exc_info=True)


def _to_result(candidate: Candidate) -> RetrievedSegment:
    segment = candidate.segment
    return RetrievedSegment(
        segment_id=segment.id,
        document_id=segment.document_id,
        dataset_id=segment.dataset_id,
        node_id=segment.node_id,
        position=segment.position,
        content=segment.content,
        keywords=segment.keywords,
        score=candidate.score,
    )


__all__ = ["Retriever", "Candidate", "HYBRID_WEIGHTS"]
