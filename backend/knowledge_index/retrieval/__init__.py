"""Retrieval orchestration components."""

from .vector_index import SearchResult, VectorIndex, VectorStore
from .search import Retriever
from .hybrid import reciprocal_rank_fusion

__all__ = [
    "SearchResult",
    "VectorIndex",
    "VectorStore",
    "Retriever",
    "reciprocal_rank_fusion",
]
