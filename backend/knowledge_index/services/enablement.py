"""Flip a document's visibility across the relational store, vector store and keyword index."""

from __future__ import annotations

from dataclasses import dataclass, field

from knowledge_index.core.config import Settings
from knowledge_index.core.errors import BadRequestError, ConflictError, NotFoundError, describe_error
from knowledge_index.core.logging import get_logger
from knowledge_index.db import queries
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.keyword_table import KeywordIndexStore
from knowledge_index.index.locks import DOCUMENT_ENABLED_LOCK, LockService, hold_lock
from knowledge_index.models.entities import Document, DocumentStatus, Segment, SegmentStatus
from knowledge_index.retrieval.vector_index import VectorStore
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)


@dataclass(slots=True)
class ToggleResult:
    document_id: str
    enabled: bool
    updated: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class EnablementToggler:
    """Enables or disables a completed document and its completed segments.

    Enabling updates the document before its segments and disabling updates segments
    before the document, so no enabled segment ever sits under a disabled document.
    A segment that cannot be updated is marked ``error`` and the rest continue.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        settings: Settings,
        keyword_store: KeywordIndexStore,
        vector_store: VectorStore,
        locks: LockService,
    ) -> None:
        self.db = db
        self.settings = settings
        self.keyword_store = keyword_store
        self.vector_store = vector_store
        self.locks = locks

    def set_enabled(self, document_id: str, enabled: bool) -> ToggleResult:
        document = queries.fetch_document(self.db, document_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if document.status is not DocumentStatus.COMPLETED:
            raise BadRequestError(f"Document {document_id} is not completed")
        if document.enabled == enabled:
            raise BadRequestError(f"Document {document_id} is already {'enabled' if enabled else 'disabled'}")

        lock_key = DOCUMENT_ENABLED_LOCK.format(document_id=document_id)
        with hold_lock(
            self.locks, lock_key, self.settings.lock_ttl_seconds, self.settings.lock_wait_seconds
        ) as acquired:
            if not acquired:
                raise ConflictError(f"Document {document_id} is being updated")
            result = ToggleResult(document_id=document_id, enabled=enabled)
            segments = queries.fetch_segments(self.db, document_id, SegmentStatus.COMPLETED)
            if enabled:
                self._update_document(document, True)
                self._update_segments(segments, True, result)
                self.keyword_store.add_segments(document.dataset_id, result.updated)
            else:
                self._update_segments(segments, False, result)
                self._update_document(document, False)
                all_ids = [segment.id for segment in queries.fetch_segments(self.db, document_id)]
                self.keyword_store.remove_segments(document.dataset_id, all_ids)
        logger.info(
            "Document enablement changed",
            extra={
                "ctx_document_id": document_id,
                "ctx_enabled": enabled,
                "ctx_updated": len(result.updated),
                "ctx_failed": len(result.failed),
            },
        )
        return result

    def _update_document(self, document: Document, enabled: bool) -> None:
        ts = now_ms()
        self.db.execute(
            "UPDATE document SET enabled = ?, disabled_at = ?, updated_at = ? WHERE id = ?",
            (int(enabled), None if enabled else ts, ts, document.id),
        )

    def _update_segments(self, segments: list[Segment], enabled: bool, result: ToggleResult) -> None:
        for segment in segments:
            try:
                # Both flags follow the relational row so vector filtering agrees with it.
                self.vector_store.update(
                    segment.node_id, {"document_enabled": enabled, "segment_enabled": enabled}
                )
                ts = now_ms()
                self.db.execute(
                    "UPDATE segment SET enabled = ?, disabled_at = ?, updated_at = ? WHERE id = ?",
                    (int(enabled), None if enabled else ts, ts, segment.id),
                )
            except Exception as exc:
                logger.exception(
                    "Failed to update segment enablement",
                    extra={"ctx_segment_id": segment.id, "ctx_document_id": segment.document_id},
                )
                self._mark_segment_error(segment, exc)
                result.failed.append(segment.id)
                continue
            result.updated.append(segment.id)

    def _mark_segment_error(self, segment: Segment, error: BaseException) -> None:
        ts = now_ms()
        self.db.execute(
            """
            UPDATE segment
            SET status = ?, error = ?, enabled = 0, disabled_at = ?, stopped_at = ?, updated_at = ?
            WHERE id = ?
            """,
            (SegmentStatus.ERROR.value, describe_error(error), ts, ts, ts, segment.id),
        )


__all__ = ["EnablementToggler", "ToggleResult"]
