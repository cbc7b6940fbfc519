"""Test fixtures for Knowledge Index."""

from __future__ import annotations

import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import orjson
import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from knowledge_index.core.config import Settings  # noqa: E402
from knowledge_index.db.sqlite import SQLiteDatabase  # noqa: E402
from knowledge_index.index.keyword_table import KeywordIndexStore  # noqa: E402
from knowledge_index.index.locks import InMemoryLockService  # noqa: E402
from knowledge_index.ingest.embeddings import CachedEmbeddings, EmbeddingModel  # noqa: E402
from knowledge_index.ingest.loaders import FileLoader  # noqa: E402
from knowledge_index.ingest.pipeline import DocumentPipeline  # noqa: E402
from knowledge_index.ingest.vector_writer import VectorStoreWriter  # noqa: E402
from knowledge_index.jobs.queue import LocalJobQueue  # noqa: E402
from knowledge_index.jobs.worker import DocumentWorker  # noqa: E402
from knowledge_index.retrieval.search import Retriever  # noqa: E402
from knowledge_index.retrieval.vector_index import VectorIndex  # noqa: E402
from knowledge_index.services.documents import DocumentService  # noqa: E402
from knowledge_index.services.enablement import EnablementToggler  # noqa: E402
from knowledge_index.services.segments import SegmentService  # noqa: E402
from knowledge_index.utils.ids import new_id  # noqa: E402
from knowledge_index.utils.time import now_ms  # noqa: E402

TEST_DIM = 64


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("KIDX_DB_PATH", str(tmp_path / "kidx.db"))
    monkeypatch.setenv("KIDX_STORAGE_ROOT", str(tmp_path / "files"))
    monkeypatch.delenv("KIDX_CONFIG", raising=False)
    monkeypatch.delenv("KIDX_REDIS_URL", raising=False)

    from knowledge_index import dependencies as deps

    EmbeddingModel._instances.clear()
    deps.reset()
    yield
    EmbeddingModel._instances.clear()
    deps.reset()


class FailingVectorIndex(VectorIndex):
    """Vector index that rejects selected texts or nodes, for failure-path tests."""

    def __init__(self, dim: int, fail_marker: str | None = None) -> None:
        super().__init__(dim)
        self.fail_marker = fail_marker
        self.fail_update_ids: set[str] = set()

    def upsert(self, ids, texts, vectors, metadata) -> None:
        if self.fail_marker and any(self.fail_marker in text for text in texts):
            raise RuntimeError("vector store unavailable")
        super().upsert(ids, texts, vectors, metadata)

    def update(self, node_id, properties=None, vector=None, text=None) -> None:
        if node_id in self.fail_update_ids:
            raise RuntimeError("vector update rejected")
        super().update(node_id, properties, vector, text)


@dataclass
class Stack:
    settings: Settings
    db: SQLiteDatabase
    storage_root: Path
    locks: InMemoryLockService
    embeddings: CachedEmbeddings
    vector_index: VectorIndex
    keyword_store: KeywordIndexStore
    writer: VectorStoreWriter
    pipeline: DocumentPipeline
    retriever: Retriever
    toggler: EnablementToggler
    segments: SegmentService
    documents: DocumentService
    jobs: LocalJobQueue
    worker: DocumentWorker

    def add_upload(self, name: str, content: str | bytes) -> str:
        """Write a file into storage and register its upload record."""
        key = f"uploads/{new_id()}/{name}"
        path = self.storage_root.joinpath(*key.split("/"))
        path.parent.mkdir(parents=True, exist_ok=True)
        data = content.encode("utf-8") if isinstance(content, str) else content
        path.write_bytes(data)
        upload_id = new_id()
        self.db.execute(
            """
            INSERT INTO upload_file (id, key, name, extension, mime_type, size, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (upload_id, key, name, Path(name).suffix.lstrip("."), None, len(data), now_ms()),
        )
        return upload_id

    def ingest(self, dataset_id: str, files: dict[str, str], rule=None) -> list[str]:
        """Register files as a batch and run the queued build job."""
        uploads = [self.add_upload(name, content) for name, content in files.items()]
        batch = self.documents.create_documents(dataset_id, uploads, rule)
        assert self.worker.run_once()
        return batch.document_ids

    def document_row(self, document_id: str):
        return self.db.query_one("SELECT * FROM document WHERE id = ?", (document_id,))

    def segment_rows(self, document_id: str):
        return self.db.query(
            "SELECT * FROM segment WHERE document_id = ? ORDER BY position", (document_id,)
        )

    def keyword_index(self, dataset_id: str) -> dict[str, set[str]]:
        table = self.keyword_store.load(dataset_id)
        return table.table if table else {}

    def expected_index(self, dataset_id: str) -> dict[str, set[str]]:
        """Inverted index rebuilt from the enabled segment rows."""
        rows = self.db.query(
            "SELECT id, keywords_json FROM segment WHERE dataset_id = ? AND enabled = 1", (dataset_id,)
        )
        expected: dict[str, set[str]] = {}
        for row in rows:
            for keyword in orjson.loads(row["keywords_json"]):
                expected.setdefault(keyword, set()).add(row["id"])
        return expected


@pytest.fixture
def make_stack(tmp_path: Path) -> Callable[..., Stack]:
    databases: list[SQLiteDatabase] = []

    def _factory(vector_index: VectorIndex | None = None, **overrides: Any) -> Stack:
        options: dict[str, Any] = {
            "db_path": tmp_path / "stack.db",
            "storage_root": tmp_path / "storage",
            "embedding_dim": TEST_DIM,
            "lock_wait_seconds": 0.2,
            "vector_batch_size": 2,
            "vector_concurrency": 2,
        }
        options.update(overrides)
        settings = Settings(**options)
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        databases.append(db)
        settings.storage_root.mkdir(parents=True, exist_ok=True)
        locks = InMemoryLockService()
        embeddings = CachedEmbeddings(EmbeddingModel("test-hashed", dim=settings.embedding_dim))
        index = vector_index or VectorIndex(dim=settings.embedding_dim)
        keyword_store = KeywordIndexStore(
            db, locks, lock_ttl=settings.lock_ttl_seconds, lock_wait=settings.lock_wait_seconds
        )
        writer = VectorStoreWriter(
            db,
            index,
            embeddings,
            batch_size=settings.vector_batch_size,
            concurrency=settings.vector_concurrency,
        )
        pipeline = DocumentPipeline(
            database=db,
            settings=settings,
            loader=FileLoader(settings.storage_root),
            keyword_store=keyword_store,
            vector_store=index,
            writer=writer,
            locks=locks,
        )
        toggler = EnablementToggler(db, settings, keyword_store, index, locks)
        jobs = LocalJobQueue()
        documents = DocumentService(db, keyword_store, index, jobs)
        return Stack(
            settings=settings,
            db=db,
            storage_root=settings.storage_root,
            locks=locks,
            embeddings=embeddings,
            vector_index=index,
            keyword_store=keyword_store,
            writer=writer,
            pipeline=pipeline,
            retriever=Retriever(db, settings, keyword_store, index, embeddings),
            toggler=toggler,
            segments=SegmentService(db, settings, keyword_store, index, embeddings, locks),
            documents=documents,
            jobs=jobs,
            worker=DocumentWorker(jobs, pipeline, toggler, documents),
        )

    yield _factory
    for db in databases:
        db.close()


@pytest.fixture
def stack(make_stack: Callable[..., Stack]) -> Stack:
    return make_stack()


@pytest.fixture
def dataset_id(stack: Stack) -> str:
    return stack.documents.create_dataset("Handbook").id


@pytest.fixture(scope="session")
def sample_text() -> str:
    return "Title\n\nParagraph one.\n\nParagraph two is here."


@pytest.fixture
def failing_index() -> Callable[..., FailingVectorIndex]:
    def _factory(fail_marker: str | None = None) -> FailingVectorIndex:
        return FailingVectorIndex(TEST_DIM, fail_marker=fail_marker)

    return _factory
