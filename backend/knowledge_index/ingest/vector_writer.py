"""Batched, bounded-concurrency writes of segments into the vector store."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Sequence

from knowledge_index.core.logging import get_logger
from knowledge_index.core.metrics import VECTOR_BATCHES
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.ingest.embeddings import CachedEmbeddings
from knowledge_index.models.entities import Segment, SegmentStatus
from knowledge_index.retrieval.vector_index import VectorStore
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)


def segment_metadata(segment: Segment, document_enabled: bool = True, segment_enabled: bool = True) -> dict:
    return {
        "dataset_id": segment.dataset_id,
        "document_id": segment.document_id,
        "segment_id": segment.id,
        "node_id": segment.node_id,
        "document_enabled": document_enabled,
        "segment_enabled": segment_enabled,
    }


class VectorStoreWriter:
    """Embeds and upserts segments in fixed-size batches on a thread pool.

    Completed batches are marked ``completed``/enabled on the calling thread as their
    futures finish. The first failing batch cancels the batches not yet started and its
    exception propagates; batches already written stay in the store.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        store: VectorStore,
        embeddings: CachedEmbeddings,
        batch_size: int = 10,
        concurrency: int = 10,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.db = db
        self.store = store
        self.embeddings = embeddings
        self.batch_size = batch_size
        self.concurrency = concurrency

    def upsert(self, segments: Sequence[Segment], concurrency: int | None = None) -> int:
        """Write every segment; returns the number of segments stored."""
        batches = [
            list(segments[start : start + self.batch_size])
            for start in range(0, len(segments), self.batch_size)
        ]
        if not batches:
            return 0
        limit = concurrency if concurrency is not None else self.concurrency
        workers = max(1, min(limit, len(batches)))
        written = 0
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="kidx-vector") as pool:
            futures: dict[Future[None], list[Segment]] = {
                pool.submit(self._write_batch, batch): batch for batch in batches
            }
            try:
                for future in as_completed(futures):
                    batch = futures[future]
                    future.result()
                    self._mark_completed(batch)
                    VECTOR_BATCHES.labels(outcome="success").inc()
                    written += len(batch)
            except Exception:
                VECTOR_BATCHES.labels(outcome="failure").inc()
                for pending in futures:
                    pending.cancel()
                logger.error(
                    "Vector batch failed",
                    extra={"ctx_written": written, "ctx_total": len(segments)},
                )
                raise
        return written

    def _write_batch(self, batch: Sequence[Segment]) -> None:
        vectors = self.embeddings.embed_batch([segment.content for segment in batch])
        self.store.upsert(
            ids=[segment.node_id for segment in batch],
            texts=[segment.content for segment in batch],
            vectors=vectors,
            metadata=[segment_metadata(segment) for segment in batch],
        )

    def _mark_completed(self, batch: Sequence[Segment]) -> None:
        ts = now_ms()
        self.db.executemany(
            """
            UPDATE segment
            SET status = ?, enabled = 1, disabled_at = NULL, completed_at = ?, updated_at = ?
            WHERE id = ?
            """,
            [(SegmentStatus.COMPLETED.value, ts, ts, segment.id) for segment in batch],
        )


__all__ = ["VectorStoreWriter", "segment_metadata"]
