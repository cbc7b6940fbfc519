"""Tests for embedding utilities."""

import pytest

from knowledge_index.ingest.embeddings import (
    CachedEmbeddings,
    EmbeddingModel,
    LocalEmbeddingCache,
    RedisEmbeddingCache,
)


class CountingModel(EmbeddingModel):
    def __init__(self) -> None:
        super().__init__("counting", dim=16)
        self.encoded: list[str] = []

    def encode(self, texts):
        texts = list(texts)
        self.encoded.extend(texts)
        return super().encode(texts)


class DictRedis:
    def __init__(self) -> None:
        self.data: dict[str, bytes] = {}

    def get(self, key: str):
        return self.data.get(key)

    def set(self, key: str, value: bytes, **kwargs) -> bool:
        self.data[key] = value
        return True


def test_embedding_model_placeholder() -> None:
    model = EmbeddingModel.get("dummy-model")
    vectors = model.encode(["hello", "world"]).vectors
    assert len(vectors) == 2
    assert all(len(vec) == model.dim for vec in vectors)
    assert abs(sum(value * value for value in vectors[0]) - 1.0) < 1e-6


def test_embedding_model_is_deterministic() -> None:
    first = EmbeddingModel("a", dim=32).encode(["rust search"]).vectors[0]
    second = EmbeddingModel("a", dim=32).encode(["rust search"]).vectors[0]
    assert first == second


def test_cached_embeddings_only_encode_misses() -> None:
    model = CountingModel()
    embeddings = CachedEmbeddings(model)
    first = embeddings.embed_batch(["alpha", "beta"])
    second = embeddings.embed_batch(["beta", "gamma", "alpha"])
    assert model.encoded == ["alpha", "beta", "gamma"]
    assert second[0] == first[1]
    assert second[2] == first[0]
    assert embeddings.embed("gamma") == second[1]


def test_local_cache_evicts_least_recent() -> None:
    cache = LocalEmbeddingCache(max_entries=2)
    cache.set("a", [1.0])
    cache.set("b", [2.0])
    assert cache.get("a") == [1.0]
    cache.set("c", [3.0])
    assert cache.get("b") is None
    assert cache.get("a") == [1.0]
    assert len(cache) == 2


def test_redis_cache_round_trips_float32_bytes() -> None:
    client = DictRedis()
    embeddings = CachedEmbeddings(EmbeddingModel("r", dim=8), RedisEmbeddingCache(client))
    vector = embeddings.embed("stored in redis")
    assert len(client.data) == 1
    key = next(iter(client.data))
    assert key.startswith("kidx:embeddings:r:")
    cached = RedisEmbeddingCache(client).get(key.split("kidx:embeddings:", 1)[1])
    assert cached == pytest.approx(vector, rel=1e-6)
