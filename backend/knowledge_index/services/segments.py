"""Single-segment maintenance: create, edit, delete and toggle visibility."""

from __future__ import annotations

from typing import Sequence

import orjson

from knowledge_index.core.config import Settings
from knowledge_index.core.errors import (
    BadRequestError,
    ConflictError,
    InternalError,
    KnowledgeIndexError,
    NotFoundError,
    describe_error,
)
from knowledge_index.core.logging import get_logger
from knowledge_index.db import queries
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.keyword_table import KeywordIndexStore
from knowledge_index.index.locks import (
    SEGMENT_ENABLED_LOCK,
    SEGMENT_POSITION_LOCK,
    LockService,
    hold_lock,
)
from knowledge_index.ingest.embeddings import CachedEmbeddings
from knowledge_index.ingest.keywords import extract_keywords
from knowledge_index.ingest.vector_writer import segment_metadata
from knowledge_index.models.entities import Document, DocumentStatus, Segment, SegmentStatus
from knowledge_index.retrieval.vector_index import VectorStore
from knowledge_index.utils.hashing import sha256_text
from knowledge_index.utils.ids import new_id, new_node_id
from knowledge_index.utils.text import count_tokens
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)


class SegmentService:
    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        keyword_store: KeywordIndexStore,
        vector_store: VectorStore,
        embeddings: CachedEmbeddings,
        locks: LockService,
    ) -> None:
        self.db = db
        self.settings = settings
        self.keyword_store = keyword_store
        self.vector_store = vector_store
        self.embeddings = embeddings
        self.locks = locks

    def create_segment(
        self,
        dataset_id: str,
        document_id: str,
        content: str,
        keywords: Sequence[str] | None = None,
    ) -> Segment:
        """Append a segment to a completed document and index it immediately."""
        token_count = self._check_content(content)
        document = self._completed_document(dataset_id, document_id)
        resolved_keywords = list(keywords) if keywords else extract_keywords(content, self.settings.max_keywords)

        lock_key = SEGMENT_POSITION_LOCK.format(document_id=document_id)
        with hold_lock(
            self.locks, lock_key, self.settings.lock_ttl_seconds, self.settings.lock_wait_seconds
        ) as acquired:
            if not acquired:
                raise ConflictError(f"Segment positions of document {document_id} are being allocated")
            ts = now_ms()
            segment = Segment(
                id=new_id(),
                dataset_id=dataset_id,
                document_id=document_id,
                node_id=new_node_id(),
                position=queries.max_segment_position(self.db, document_id) + 1,
                content=content,
                character_count=len(content),
                token_count=token_count,
                hash=sha256_text(content),
                status=SegmentStatus.INDEXING,
                enabled=False,
                keywords=resolved_keywords,
                created_at=ts,
                updated_at=ts,
            )
            self.db.execute(
                """
                INSERT INTO segment (
                  id, dataset_id, document_id, node_id, position, content, character_count,
                  token_count, keywords_json, hash, hit_count, enabled, processing_started_at,
                  indexing_completed_at, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?, ?, ?, ?, ?)
                """,
                (
                    segment.id,
                    dataset_id,
                    document_id,
                    segment.node_id,
                    segment.position,
                    content,
                    segment.character_count,
                    token_count,
                    _dump_keywords(resolved_keywords),
                    segment.hash,
                    ts,
                    ts,
                    segment.status.value,
                    ts,
                    ts,
                ),
            )

        try:
            self.vector_store.upsert(
                ids=[segment.node_id],
                texts=[content],
                vectors=[self.embeddings.embed(content)],
                metadata=[segment_metadata(segment, document_enabled=document.enabled)],
            )
            ts = now_ms()
            self.db.execute(
                """
                UPDATE segment SET status = ?, enabled = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (SegmentStatus.COMPLETED.value, int(document.enabled), ts, ts, segment.id),
            )
            queries.refresh_document_counts(self.db, document_id)
            if document.enabled:
                self.keyword_store.add_segments(dataset_id, [segment.id])
        except Exception as exc:
            self._mark_error(dataset_id, segment.id, exc)
            raise InternalError(f"Failed to create segment: {describe_error(exc)}") from exc
        return self._reload(segment.id)

    def update_segment(
        self,
        dataset_id: str,
        segment_id: str,
        content: str,
        keywords: Sequence[str] | None = None,
    ) -> Segment:
        token_count = self._check_content(content)
        segment = self._get(dataset_id, segment_id)
        if segment.status is not SegmentStatus.COMPLETED:
            raise BadRequestError(f"Segment {segment_id} is not completed")
        resolved_keywords = list(keywords) if keywords else extract_keywords(content, self.settings.max_keywords)
        content_hash = sha256_text(content)
        try:
            if content_hash != segment.hash:
                self.vector_store.update(
                    segment.node_id, vector=self.embeddings.embed(content), text=content
                )
            ts = now_ms()
            self.db.execute(
                """
                UPDATE segment
                SET content = ?, character_count = ?, token_count = ?, keywords_json = ?, hash = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    content,
                    len(content),
                    token_count,
                    _dump_keywords(resolved_keywords),
                    content_hash,
                    ts,
                    segment_id,
                ),
            )
            self.keyword_store.remove_segments(dataset_id, [segment_id])
            if segment.enabled:
                self.keyword_store.add_segments(dataset_id, [segment_id])
            queries.refresh_document_counts(self.db, segment.document_id)
        except Exception as exc:
            self._mark_error(dataset_id, segment_id, exc)
            raise InternalError(f"Failed to update segment: {describe_error(exc)}") from exc
        return self._reload(segment_id)

    def delete_segment(self, dataset_id: str, segment_id: str) -> None:
        segment = self._get(dataset_id, segment_id)
        if segment.status not in (SegmentStatus.COMPLETED, SegmentStatus.ERROR):
            raise BadRequestError(f"Segment {segment_id} is still being processed")
        self.keyword_store.remove_segments(dataset_id, [segment_id])
        self.vector_store.delete([segment.node_id])
        self.db.execute("DELETE FROM segment WHERE id = ?", (segment_id,))
        queries.refresh_document_counts(self.db, segment.document_id)
        logger.info("Segment deleted", extra={"ctx_segment_id": segment_id})

    def set_segment_enabled(self, dataset_id: str, segment_id: str, enabled: bool) -> Segment:
        segment = self._get(dataset_id, segment_id)
        if segment.status is not SegmentStatus.COMPLETED:
            raise BadRequestError(f"Segment {segment_id} is not completed")
        if segment.enabled == enabled:
            raise BadRequestError(f"Segment {segment_id} is already {'enabled' if enabled else 'disabled'}")
        document = queries.fetch_document(self.db, segment.document_id)
        if enabled and (document is None or not document.enabled):
            raise BadRequestError("Cannot enable a segment of a disabled document")

        lock_key = SEGMENT_ENABLED_LOCK.format(segment_id=segment_id)
        with hold_lock(
            self.locks, lock_key, self.settings.lock_ttl_seconds, self.settings.lock_wait_seconds
        ) as acquired:
            if not acquired:
                raise ConflictError(f"Segment {segment_id} is being updated")
            self.vector_store.update(segment.node_id, {"segment_enabled": enabled})
            ts = now_ms()
            self.db.execute(
                "UPDATE segment SET enabled = ?, disabled_at = ?, updated_at = ? WHERE id = ?",
                (int(enabled), None if enabled else ts, ts, segment_id),
            )
            if enabled:
                self.keyword_store.add_segments(dataset_id, [segment_id])
            else:
                self.keyword_store.remove_segments(dataset_id, [segment_id])
        return self._reload(segment_id)

    # ------------------------------------------------------------------

    def _check_content(self, content: str) -> int:
        if not content or not content.strip():
            raise BadRequestError("Segment content must not be empty")
        tokens = count_tokens(content)
        if tokens > self.settings.max_segment_tokens:
            raise BadRequestError(
                f"Segment has {tokens} tokens, limit is {self.settings.max_segment_tokens}"
            )
        return tokens

    def _completed_document(self, dataset_id: str, document_id: str) -> Document:
        document = queries.fetch_document(self.db, document_id, dataset_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if document.status is not DocumentStatus.COMPLETED:
            raise BadRequestError(f"Document {document_id} is not completed")
        return document

    def _get(self, dataset_id: str, segment_id: str) -> Segment:
        segment = queries.fetch_segment(self.db, segment_id, dataset_id)
        if segment is None:
            raise NotFoundError(f"Segment {segment_id} not found")
        return segment

    def _reload(self, segment_id: str) -> Segment:
        segment = queries.fetch_segment(self.db, segment_id)
        if segment is None:
            raise NotFoundError(f"Segment {segment_id} not found")
        return segment

    def _mark_error(self, dataset_id: str, segment_id: str, error: BaseException) -> None:
        if isinstance(error, KnowledgeIndexError):
            logger.error("Segment operation failed: %s", error, extra={"ctx_segment_id": segment_id})
        else:
            logger.exception("Segment operation failed", extra={"ctx_segment_id": segment_id})
        ts = now_ms()
        self.db.execute(
            """
            UPDATE segment
            SET status = ?, error = ?, enabled = 0, disabled_at = ?, stopped_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (SegmentStatus.ERROR.value, describe_error(error), ts, ts, ts, segment_id),
        )
        try:
            self.keyword_store.remove_segments(dataset_id, [segment_id])
        except Exception:
            logger.exception("Failed to drop keywords of failed segment", extra={"ctx_segment_id": segment_id})


def _dump_keywords(keywords: Sequence[str]) -> str:
    return orjson.dumps(list(keywords)).decode("utf-8")


__all__ = ["SegmentService"]
