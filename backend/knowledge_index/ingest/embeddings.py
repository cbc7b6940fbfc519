"""Embedding utilities."""

from __future__ import annotations

import hashlib
import logging
import math
import re
import threading
from array import array
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Iterable, Protocol, Sequence

from knowledge_index.utils.hashing import sha256_text

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+")


@dataclass(slots=True)
class EmbeddingBatch:
    vectors: list[list[float]]
    model: str
    dim: int
    backend: str


class EmbeddingModel:
    """Lightweight hashed embedding model with deterministic output."""

    _instances: dict[tuple[str, int], "EmbeddingModel"] = {}

    def __init__(
        self,
        model_name: str,
        dim: int = 384,
    ) -> None:
        self.model_name = model_name
        self._dim = dim
        self._backend = "hashed"

    @classmethod
    def get(cls, model_name: str, dim: int = 384) -> "EmbeddingModel":
        key = (model_name or "hashed", dim)
        if key not in cls._instances:
            cls._instances[key] = EmbeddingModel(model_name=key[0], dim=dim)
        return cls._instances[key]

    @property
    def dim(self) -> int:
        return self._dim

    @property
    def backend(self) -> str:
        return self._backend

    def encode(self, texts: Iterable[str]) -> EmbeddingBatch:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self._dim
            for token in _tokenize(text):
                vector[_hash_token(token, self._dim)] += 1.0
            _normalize(vector)
            vectors.append(vector)
        return EmbeddingBatch(vectors=vectors, model=self.model_name, dim=self._dim, backend=self._backend)


class EmbeddingCache(Protocol):
    def get(self, key: str) -> list[float] | None: ...

    def set(self, key: str, vector: list[float]) -> None: ...


class LocalEmbeddingCache:
    """Bounded in-process LRU cache of vectors keyed by content hash."""

    def __init__(self, max_entries: int = 10_000) -> None:
        self.max_entries = max_entries
        self._entries: OrderedDict[str, list[float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> list[float] | None:
        with self._lock:
            vector = self._entries.get(key)
            if vector is not None:
                self._entries.move_to_end(key)
            return vector

    def set(self, key: str, vector: list[float]) -> None:
        if self.max_entries <= 0:
            return
        with self._lock:
            self._entries[key] = vector
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __len__(self) -> int:
        return len(self._entries)


class RedisEmbeddingCache:
    """Vectors stored as packed float32 bytes in Redis."""

    def __init__(self, client: Any, namespace: str = "kidx:embeddings") -> None:
        self.client = client
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def get(self, key: str) -> list[float] | None:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return list(array("f", raw))

    def set(self, key: str, vector: list[float]) -> None:
        self.client.set(self._key(key), as_bytes(vector))


class CachedEmbeddings:
    """``text -> vector`` function backed by a content-hash cache."""

    def __init__(self, model: EmbeddingModel, cache: EmbeddingCache | None = None) -> None:
        self.model = model
        self.cache: EmbeddingCache = cache if cache is not None else LocalEmbeddingCache()

    @property
    def dim(self) -> int:
        return self.model.dim

    def _key(self, text: str) -> str:
        return f"{self.model.model_name}:{sha256_text(text)}"

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        results: list[list[float] | None] = []
        missing: list[int] = []
        for index, text in enumerate(texts):
            cached = self.cache.get(self._key(text))
            results.append(cached)
            if cached is None:
                missing.append(index)
        if missing:
            batch = self.model.encode(texts[index] for index in missing)
            for index, vector in zip(missing, batch.vectors):
                self.cache.set(self._key(texts[index]), vector)
                results[index] = vector
        logger.debug("Embedded %d texts (%d cache misses)", len(texts), len(missing))
        return [vector for vector in results if vector is not None]


def as_bytes(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    value = int.from_bytes(digest, "big")
    return value % dim


def _normalize(vector: list[float]) -> None:
    norm = math.sqrt(sum(value * value for value in vector))
    if norm == 0:
        return
    inv = 1.0 / norm
    for idx, value in enumerate(vector):
        vector[idx] = value * inv


__all__ = [
    "EmbeddingModel",
    "EmbeddingBatch",
    "EmbeddingCache",
    "LocalEmbeddingCache",
    "RedisEmbeddingCache",
    "CachedEmbeddings",
    "as_bytes",
]
