"""Document indexing pipeline: Parse -> Split -> Index -> Store."""

from __future__ import annotations

from typing import Callable, Sequence

import orjson

from knowledge_index.core.config import Settings
from knowledge_index.core.errors import ConflictError, NotFoundError, describe_error
from knowledge_index.core.logging import get_logger
from knowledge_index.core.metrics import DOCUMENTS_PROCESSED, STAGE_LATENCY
from knowledge_index.db import queries
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.keyword_table import KeywordIndexStore
from knowledge_index.index.locks import SEGMENT_POSITION_LOCK, LockService, hold_lock
from knowledge_index.ingest.chunker import RecursiveTextSplitter
from knowledge_index.ingest.keywords import extract_keywords
from knowledge_index.ingest.loaders import FileLoader
from knowledge_index.ingest.types import DocumentOutcome, LoadedBlock, PipelineReport
from knowledge_index.ingest.vector_writer import VectorStoreWriter
from knowledge_index.models.dto import ProcessRule
from knowledge_index.models.entities import Document, DocumentStatus, Segment, SegmentStatus
from knowledge_index.retrieval.vector_index import VectorStore
from knowledge_index.utils.hashing import sha256_text
from knowledge_index.utils.ids import new_id, new_node_id
from knowledge_index.utils.text import (
    clean_extra_text,
    count_tokens,
    remove_extra_space,
    remove_url_and_email,
)
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)

PRE_PROCESSORS: dict[str, Callable[[str], str]] = {
    "remove_extra_space": remove_extra_space,
    "remove_url_and_email": remove_url_and_email,
}


class DocumentPipeline:
    """Runs each document of a batch through the four stages, persisting progress.

    Documents are processed sequentially and independently: a failure is recorded on
    the failing document (and its segments) and the batch moves on.
    """

    def __init__(
        self,
        database: SQLiteDatabase,
        settings: Settings,
        loader: FileLoader,
        keyword_store: KeywordIndexStore,
        vector_store: VectorStore,
        writer: VectorStoreWriter,
        locks: LockService,
    ) -> None:
        self.db = database
        self.settings = settings
        self.loader = loader
        self.keyword_store = keyword_store
        self.vector_store = vector_store
        self.writer = writer
        self.locks = locks

    def build_documents(self, document_ids: Sequence[str], dataset_id: str) -> PipelineReport:
        report = PipelineReport(dataset_id=dataset_id)
        if not document_ids:
            logger.warning("build_documents called without document ids", extra={"ctx_dataset_id": dataset_id})
            return report
        documents = queries.fetch_documents(self.db, dataset_id, document_ids)
        if len(documents) != len(set(document_ids)):
            found = {document.id for document in documents}
            logger.warning(
                "Some documents were not found in dataset",
                extra={
                    "ctx_dataset_id": dataset_id,
                    "ctx_missing": [doc_id for doc_id in document_ids if doc_id not in found],
                },
            )
        self.keyword_store.get_or_create(dataset_id)
        for document in documents:
            report.outcomes.append(self._build_one(document))
        logger.info("Pipeline batch finished", extra={"ctx_report": report.to_dict()})
        return report

    # Stages -----------------------------------------------------------

    def _build_one(self, document: Document) -> DocumentOutcome:
        segments: list[Segment] = []
        try:
            self._start(document)
            with STAGE_LATENCY.labels(stage="parse").time():
                blocks = self._parse(document)
            with STAGE_LATENCY.labels(stage="split").time():
                segments = self._split(document, blocks)
            with STAGE_LATENCY.labels(stage="index").time():
                self._index(document, segments)
            with STAGE_LATENCY.labels(stage="store").time():
                self._store(document, segments)
        except Exception as exc:
            logger.exception(
                "Document indexing failed",
                extra={"ctx_document_id": document.id, "ctx_dataset_id": document.dataset_id},
            )
            DOCUMENTS_PROCESSED.labels(outcome="error").inc()
            try:
                self._fail(document, exc)
            except Exception:
                logger.exception("Could not record failure", extra={"ctx_document_id": document.id})
            return DocumentOutcome(document_id=document.id, status="error", error=describe_error(exc))
        DOCUMENTS_PROCESSED.labels(outcome="completed").inc()
        return DocumentOutcome(document_id=document.id, status="completed", segments=len(segments))

    def _start(self, document: Document) -> None:
        ts = now_ms()
        self.db.execute(
            """
            UPDATE document
            SET status = ?, processing_started_at = ?, error = NULL, stopped_at = NULL, updated_at = ?
            WHERE id = ?
            """,
            (DocumentStatus.PARSING.value, ts, ts, document.id),
        )

    def _parse(self, document: Document) -> list[LoadedBlock]:
        upload = queries.fetch_upload(self.db, document.upload_file_id)
        if upload is None:
            raise NotFoundError(f"Upload file {document.upload_file_id} not found")
        blocks = [
            LoadedBlock(text=clean_extra_text(block.text), metadata=block.metadata)
            for block in self.loader.load(upload.key)
        ]
        characters = sum(len(block.text) for block in blocks)
        ts = now_ms()
        self.db.execute(
            """
            UPDATE document
            SET character_count = ?, parsing_completed_at = ?, status = ?, updated_at = ?
            WHERE id = ?
            """,
            (characters, ts, DocumentStatus.SPLITTING.value, ts, document.id),
        )
        return blocks

    def _split(self, document: Document, blocks: Sequence[LoadedBlock]) -> list[Segment]:
        rule = self._load_rule(document.process_rule_id)
        for rule_id in rule.enabled_rules():
            processor = PRE_PROCESSORS[rule_id]
            blocks = [LoadedBlock(text=processor(block.text), metadata=block.metadata) for block in blocks]
        chunks = RecursiveTextSplitter.from_rule(rule.segment).split_blocks(blocks)

        self._purge_previous(document)

        lock_key = SEGMENT_POSITION_LOCK.format(document_id=document.id)
        with hold_lock(
            self.locks, lock_key, self.settings.lock_ttl_seconds, self.settings.lock_wait_seconds
        ) as acquired:
            if not acquired:
                raise ConflictError(f"Segment positions of document {document.id} are being allocated")
            start = queries.max_segment_position(self.db, document.id)
            ts = now_ms()
            segments = [
                Segment(
                    id=new_id(),
                    dataset_id=document.dataset_id,
                    document_id=document.id,
                    node_id=new_node_id(),
                    position=start + offset,
                    content=chunk.text,
                    character_count=len(chunk.text),
                    token_count=count_tokens(chunk.text),
                    hash=sha256_text(chunk.text),
                    status=SegmentStatus.WAITING,
                    enabled=False,
                    created_at=ts,
                    updated_at=ts,
                )
                for offset, chunk in enumerate(chunks, start=1)
            ]
            with self.db.transaction() as cur:
                cur.execute("DELETE FROM segment WHERE document_id = ?", (document.id,))
                cur.executemany(
                    """
                    INSERT INTO segment (
                      id, dataset_id, document_id, node_id, position, content, character_count,
                      token_count, keywords_json, hash, hit_count, enabled, processing_started_at,
                      status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, '[]', ?, 0, 0, ?, ?, ?, ?)
                    """,
                    [
                        (
                            segment.id,
                            segment.dataset_id,
                            segment.document_id,
                            segment.node_id,
                            segment.position,
                            segment.content,
                            segment.character_count,
                            segment.token_count,
                            segment.hash,
                            ts,
                            segment.status.value,
                            ts,
                            ts,
                        )
                        for segment in segments
                    ],
                )
                cur.execute(
                    """
                    UPDATE document
                    SET token_count = ?, splitting_completed_at = ?, status = ?, enabled = 0,
                        disabled_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        sum(segment.token_count for segment in segments),
                        ts,
                        DocumentStatus.INDEXING.value,
                        ts,
                        ts,
                        document.id,
                    ),
                )
        return segments

    def _index(self, document: Document, segments: Sequence[Segment]) -> None:
        ts = now_ms()
        for segment in segments:
            segment.keywords = extract_keywords(segment.content, self.settings.max_keywords)
            segment.status = SegmentStatus.INDEXING
        self.db.executemany(
            """
            UPDATE segment SET keywords_json = ?, status = ?, indexing_completed_at = ?, updated_at = ?
            WHERE id = ?
            """,
            [
                (orjson.dumps(segment.keywords).decode("utf-8"), segment.status.value, ts, ts, segment.id)
                for segment in segments
            ],
        )
        self.keyword_store.add_segments(document.dataset_id, [segment.id for segment in segments])
        self.db.execute(
            "UPDATE document SET indexing_completed_at = ?, updated_at = ? WHERE id = ?",
            (now_ms(), now_ms(), document.id),
        )

    def _store(self, document: Document, segments: Sequence[Segment]) -> None:
        # The document is enabled before any segment so no segment is visible under a disabled parent.
        ts = now_ms()
        self.db.execute(
            "UPDATE document SET enabled = 1, disabled_at = NULL, updated_at = ? WHERE id = ?",
            (ts, document.id),
        )
        self.writer.upsert(segments, self.settings.vector_concurrency)
        ts = now_ms()
        self.db.execute(
            """
            UPDATE document SET status = ?, completed_at = ?, enabled = 1, updated_at = ?
            WHERE id = ?
            """,
            (DocumentStatus.COMPLETED.value, ts, ts, document.id),
        )
        logger.info(
            "Document indexed",
            extra={"ctx_document_id": document.id, "ctx_segments": len(segments)},
        )

    # Helpers ----------------------------------------------------------

    def _load_rule(self, process_rule_id: str) -> ProcessRule:
        row = self.db.query_one("SELECT mode, rule_json FROM process_rule WHERE id = ?", (process_rule_id,))
        if row is None:
            raise NotFoundError(f"Process rule {process_rule_id} not found")
        payload = orjson.loads(row["rule_json"] or "{}")
        payload["mode"] = row["mode"]
        return ProcessRule.model_validate(payload)

    def _purge_previous(self, document: Document) -> None:
        """Remove the vectors and keyword entries left by an earlier run of this document."""
        previous = queries.fetch_segments(self.db, document.id)
        if not previous:
            return
        self.vector_store.delete([segment.node_id for segment in previous])
        self.keyword_store.remove_segments(document.dataset_id, [segment.id for segment in previous])

    def _fail(self, document: Document, error: BaseException) -> None:
        message = describe_error(error)
        ts = now_ms()
        with self.db.transaction() as cur:
            cur.execute(
                """
                UPDATE segment SET status = ?, error = ?, stopped_at = ?, updated_at = ?
                WHERE document_id = ? AND status != ?
                """,
                (SegmentStatus.ERROR.value, message, ts, ts, document.id, SegmentStatus.COMPLETED.value),
            )
            cur.execute(
                "UPDATE segment SET enabled = 0, disabled_at = ?, updated_at = ? WHERE document_id = ?",
                (ts, ts, document.id),
            )
            cur.execute(
                """
                UPDATE document
                SET status = ?, error = ?, stopped_at = ?, enabled = 0, disabled_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (DocumentStatus.ERROR.value, message, ts, ts, ts, document.id),
            )
        segments = queries.fetch_segments(self.db, document.id)
        # Vectors from batches written before the failure would otherwise hold top-k slots.
        try:
            self.vector_store.delete([segment.node_id for segment in segments])
        except Exception:
            logger.exception(
                "Failed to remove vectors of failed document",
                extra={"ctx_document_id": document.id},
            )
        try:
            self.keyword_store.remove_segments(document.dataset_id, [segment.id for segment in segments])
        except Exception:
            logger.exception(
                "Failed to remove keywords of failed document",
                extra={"ctx_document_id": document.id},
            )


__all__ = ["DocumentPipeline", "PRE_PROCESSORS"]
