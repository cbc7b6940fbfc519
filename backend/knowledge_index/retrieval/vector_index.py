"""Vector index abstraction."""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

from knowledge_index.core.errors import NotFoundError
from knowledge_index.core.metrics import INDEX_SIZE
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.ingest.embeddings import CachedEmbeddings


@dataclass(slots=True)
class SearchResult:
    node_id: str
    score: float
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore(Protocol):
    def upsert(
        self,
        ids: Sequence[str],
        texts: Sequence[str],
        vectors: Sequence[Sequence[float]],
        metadata: Sequence[Mapping[str, Any]],
    ) -> None: ...

    def update(
        self,
        node_id: str,
        properties: Mapping[str, Any] | None = None,
        vector: Sequence[float] | None = None,
        text: str | None = None,
    ) -> None: ...

    def delete(self, ids: Sequence[str]) -> None: ...

    def search(
        self,
        vector: Sequence[float],
        top_k: int = 4,
        filters: Mapping[str, Any] | None = None,
    ) -> list[SearchResult]: ...


@dataclass(slots=True)
class _Node:
    vector: list[float]
    text: str
    metadata: dict[str, Any]


class VectorIndex:
    """Simple in-memory vector index using cosine similarity and metadata filters.

    Filter values match by equality; a list or tuple value matches any of its members.
    """

    def __init__(self, dim: int) -> None:
        self.dim = dim
        self._nodes: dict[str, _Node] = {}
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    def get(self, node_id: str) -> tuple[str, dict[str, Any]] | None:
        node = self._nodes.get(node_id)
        if node is None:
            return None
        return node.text, dict(node.metadata)

    def upsert(
        self,
        ids: Sequence[str],
        texts: Sequence[str],
        vectors: Sequence[Sequence[float]],
        metadata: Sequence[Mapping[str, Any]],
    ) -> None:
        if not ids:
            return
        if not (len(ids) == len(texts) == len(vectors) == len(metadata)):
            raise ValueError("ids, texts, vectors and metadata must have equal length")
        for vector in vectors:
            if len(vector) != self.dim:
                raise ValueError("Vector dimension mismatch")
        with self._lock:
            for node_id, text, vector, meta in zip(ids, texts, vectors, metadata):
                self._nodes[node_id] = _Node(vector=list(vector), text=text, metadata=dict(meta))
            INDEX_SIZE.set(len(self._nodes))

    def update(
        self,
        node_id: str,
        properties: Mapping[str, Any] | None = None,
        vector: Sequence[float] | None = None,
        text: str | None = None,
    ) -> None:
        if vector is not None and len(vector) != self.dim:
            raise ValueError("Vector dimension mismatch")
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                raise NotFoundError(f"Vector node {node_id} not found")
            if properties:
                node.metadata.update(properties)
            if vector is not None:
                node.vector = list(vector)
            if text is not None:
                node.text = text

    def delete(self, ids: Sequence[str]) -> None:
        with self._lock:
            for node_id in ids:
                self._nodes.pop(node_id, None)
            INDEX_SIZE.set(len(self._nodes))

    def search(
        self,
        vector: Sequence[float],
        top_k: int = 4,
        filters: Mapping[str, Any] | None = None,
    ) -> list[SearchResult]:
        if len(vector) != self.dim:
            raise ValueError("Query vector dimension mismatch")
        with self._lock:
            scored = [
                SearchResult(node_id=node_id, score=_cosine(node.vector, vector), metadata=dict(node.metadata))
                for node_id, node in self._nodes.items()
                if not filters or _matches(node.metadata, filters)
            ]
        scored.sort(key=lambda item: item.score, reverse=True)
        return scored[:top_k]

    def rebuild(self, db: SQLiteDatabase, embeddings: CachedEmbeddings) -> None:
        """Reload every completed segment from the relational store."""
        rows = db.query(
            """
            SELECT segment.id, segment.node_id, segment.content, segment.dataset_id,
                   segment.document_id, segment.enabled AS segment_enabled,
                   document.enabled AS document_enabled
            FROM segment
            JOIN document ON document.id = segment.document_id
            WHERE segment.status = 'completed'
            ORDER BY segment.document_id, segment.position
            """
        )
        vectors = embeddings.embed_batch([row["content"] for row in rows]) if rows else []
        nodes: dict[str, _Node] = {}
        for row, vector in zip(rows, vectors):
            nodes[row["node_id"]] = _Node(
                vector=list(vector),
                text=row["content"],
                metadata={
                    "dataset_id": row["dataset_id"],
                    "document_id": row["document_id"],
                    "segment_id": row["id"],
                    "node_id": row["node_id"],
                    "document_enabled": bool(row["document_enabled"]),
                    "segment_enabled": bool(row["segment_enabled"]),
                },
            )
        with self._lock:
            self._nodes = nodes
            INDEX_SIZE.set(len(self._nodes))


def _matches(metadata: Mapping[str, Any], filters: Mapping[str, Any]) -> bool:
    for key, expected in filters.items():
        value = metadata.get(key)
        if isinstance(expected, (list, tuple, set, frozenset)):
            if value not in expected:
                return False
        elif value != expected:
            return False
    return True


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return 0.0
    return dot / norm


__all__ = ["VectorIndex", "VectorStore", "SearchResult"]
