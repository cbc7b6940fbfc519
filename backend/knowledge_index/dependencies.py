"""Shared service singletons built from settings."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import redis

from knowledge_index.core.config import Settings, get_settings as _load_settings
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.keyword_table import KeywordIndexStore
from knowledge_index.index.locks import InMemoryLockService, LockService, RedisLockService
from knowledge_index.ingest.embeddings import (
    CachedEmbeddings,
    EmbeddingModel,
    LocalEmbeddingCache,
    RedisEmbeddingCache,
)
from knowledge_index.ingest.loaders import FileLoader
from knowledge_index.ingest.pipeline import DocumentPipeline
from knowledge_index.ingest.vector_writer import VectorStoreWriter
from knowledge_index.jobs.queue import BaseJobQueue, LocalJobQueue, RedisJobQueue
from knowledge_index.jobs.worker import DocumentWorker
from knowledge_index.retrieval import Retriever, VectorIndex
from knowledge_index.services.documents import DocumentService
from knowledge_index.services.enablement import EnablementToggler
from knowledge_index.services.segments import SegmentService

_DB: SQLiteDatabase | None = None
_REDIS: Any | None = None
_LOCKS: LockService | None = None
_EMBEDDINGS: CachedEmbeddings | None = None
_VECTOR_INDEX: VectorIndex | None = None
_JOBS: BaseJobQueue | None = None


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return _load_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        db = SQLiteDatabase(get_settings().db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_redis() -> Any | None:
    """Redis client when ``redis_url`` is configured, else ``None`` (single-process mode)."""
    global _REDIS
    settings = get_settings()
    if _REDIS is None and settings.redis_url:
        _REDIS = redis.Redis.from_url(
            settings.redis_url,
            socket_timeout=5.0,
            socket_connect_timeout=2.0,
            decode_responses=False,
        )
    return _REDIS


def get_locks() -> LockService:
    global _LOCKS
    if _LOCKS is None:
        client = get_redis()
        _LOCKS = RedisLockService(client) if client is not None else InMemoryLockService()
    return _LOCKS


def get_embeddings() -> CachedEmbeddings:
    global _EMBEDDINGS
    if _EMBEDDINGS is None:
        settings = get_settings()
        model = EmbeddingModel.get(settings.embedding_model, dim=settings.embedding_dim)
        client = get_redis()
        cache = (
            RedisEmbeddingCache(client)
            if client is not None
            else LocalEmbeddingCache(settings.embedding_cache_size)
        )
        _EMBEDDINGS = CachedEmbeddings(model, cache)
    return _EMBEDDINGS


def get_vector_index() -> VectorIndex:
    global _VECTOR_INDEX
    if _VECTOR_INDEX is None:
        embeddings = get_embeddings()
        index = VectorIndex(dim=embeddings.dim)
        index.rebuild(get_database(), embeddings)
        _VECTOR_INDEX = index
    return _VECTOR_INDEX


def get_job_queue() -> BaseJobQueue:
    global _JOBS
    if _JOBS is None:
        client = get_redis()
        _JOBS = RedisJobQueue(client) if client is not None else LocalJobQueue()
    return _JOBS


def get_keyword_store() -> KeywordIndexStore:
    settings = get_settings()
    return KeywordIndexStore(
        get_database(),
        get_locks(),
        lock_ttl=settings.lock_ttl_seconds,
        lock_wait=settings.lock_wait_seconds,
    )


def get_pipeline() -> DocumentPipeline:
    settings = get_settings()
    return DocumentPipeline(
        database=get_database(),
        settings=settings,
        loader=FileLoader(settings.storage_root),
        keyword_store=get_keyword_store(),
        vector_store=get_vector_index(),
        writer=VectorStoreWriter(
            get_database(),
            get_vector_index(),
            get_embeddings(),
            batch_size=settings.vector_batch_size,
            concurrency=settings.vector_concurrency,
        ),
        locks=get_locks(),
    )


def get_retriever() -> Retriever:
    return Retriever(
        db=get_database(),
        settings=get_settings(),
        keyword_store=get_keyword_store(),
        vector_store=get_vector_index(),
        embeddings=get_embeddings(),
    )


def get_toggler() -> EnablementToggler:
    return EnablementToggler(
        db=get_database(),
        settings=get_settings(),
        keyword_store=get_keyword_store(),
        vector_store=get_vector_index(),
        locks=get_locks(),
    )


def get_segment_service() -> SegmentService:
    return SegmentService(
        db=get_database(),
        settings=get_settings(),
        keyword_store=get_keyword_store(),
        vector_store=get_vector_index(),
        embeddings=get_embeddings(),
        locks=get_locks(),
    )


def get_document_service() -> DocumentService:
    return DocumentService(
        db=get_database(),
        keyword_store=get_keyword_store(),
        vector_store=get_vector_index(),
        jobs=get_job_queue(),
    )


def get_worker() -> DocumentWorker:
    return DocumentWorker(
        jobs=get_job_queue(),
        pipeline=get_pipeline(),
        toggler=get_toggler(),
        documents=get_document_service(),
    )


def reset() -> None:
    """Drop cached singletons so the next accessor rebuilds them from fresh settings."""
    global _DB, _REDIS, _LOCKS, _EMBEDDINGS, _VECTOR_INDEX, _JOBS
    if _DB is not None:
        _DB.close()
    _DB = None
    _REDIS = None
    _LOCKS = None
    _EMBEDDINGS = None
    _VECTOR_INDEX = None
    _JOBS = None
    get_settings.cache_clear()
    _load_settings.cache_clear()


__all__ = [
    "get_settings",
    "get_database",
    "get_redis",
    "get_locks",
    "get_embeddings",
    "get_vector_index",
    "get_job_queue",
    "get_keyword_store",
    "get_pipeline",
    "get_retriever",
    "get_toggler",
    "get_segment_service",
    "get_document_service",
    "get_worker",
    "reset",
]
