"""Tests for the batched vector store writer."""

from __future__ import annotations

import threading
import time

import pytest

from knowledge_index.ingest.vector_writer import VectorStoreWriter
from knowledge_index.models.entities import Segment, SegmentStatus
from knowledge_index.retrieval.vector_index import VectorIndex


class TrackingIndex(VectorIndex):
    """Records how many upserts run at the same time."""

    def __init__(self, dim: int, delay: float = 0.02) -> None:
        super().__init__(dim)
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0
        self.calls = 0
        self._guard = threading.Lock()

    def upsert(self, ids, texts, vectors, metadata) -> None:
        with self._guard:
            self.in_flight += 1
            self.calls += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            time.sleep(self.delay)
            super().upsert(ids, texts, vectors, metadata)
        finally:
            with self._guard:
                self.in_flight -= 1


def _segments(count: int) -> list[Segment]:
    return [
        Segment(
            id=f"seg-{index}",
            dataset_id="ds",
            document_id="doc",
            node_id=f"node-{index}",
            position=index + 1,
            content=f"segment number {index}",
            character_count=10,
            token_count=3,
            hash=f"h{index}",
            status=SegmentStatus.INDEXING,
            enabled=False,
        )
        for index in range(count)
    ]


@pytest.mark.parametrize("concurrency", [1, 3])
def test_in_flight_batches_are_bounded(stack, concurrency: int) -> None:
    index = TrackingIndex(stack.settings.embedding_dim)
    writer = VectorStoreWriter(stack.db, index, stack.embeddings, batch_size=2)
    written = writer.upsert(_segments(25), concurrency=concurrency)
    assert written == 25
    assert index.calls == 13
    assert 1 <= index.max_in_flight <= concurrency
    assert index.size == 25


def test_metadata_marks_segments_visible(stack) -> None:
    index = VectorIndex(stack.settings.embedding_dim)
    VectorStoreWriter(stack.db, index, stack.embeddings, batch_size=10).upsert(_segments(3))
    text, metadata = index.get("node-1")
    assert text == "segment number 1"
    assert metadata == {
        "dataset_id": "ds",
        "document_id": "doc",
        "segment_id": "seg-1",
        "node_id": "node-1",
        "document_enabled": True,
        "segment_enabled": True,
    }


def test_failing_batch_propagates(stack, failing_index) -> None:
    index = failing_index("boom")
    writer = VectorStoreWriter(stack.db, index, stack.embeddings, batch_size=2)
    segments = _segments(5)
    segments[4].content += " boom"
    with pytest.raises(RuntimeError, match="vector store unavailable"):
        writer.upsert(segments, concurrency=1)
    assert "node-0" in index


def test_empty_input_is_noop(stack) -> None:
    index = VectorIndex(stack.settings.embedding_dim)
    assert VectorStoreWriter(stack.db, index, stack.embeddings).upsert([]) == 0
