"""Datasets, upload batches and document removal."""

from __future__ import annotations

import uuid
from typing import Sequence

from knowledge_index.core.errors import BadRequestError, NotFoundError
from knowledge_index.core.logging import get_logger
from knowledge_index.db import queries
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.keyword_table import KeywordIndexStore
from knowledge_index.jobs.queue import BaseJobQueue
from knowledge_index.models.dto import CreatedBatch, DocumentProgress, ProcessRule
from knowledge_index.models.entities import Dataset, DocumentStatus
from knowledge_index.retrieval.vector_index import VectorStore
from knowledge_index.utils.ids import new_id
from knowledge_index.utils.time import batch_tag, now_ms

logger = get_logger(__name__)


class DocumentService:
    def __init__(
        self,
        db: SQLiteDatabase,
        keyword_store: KeywordIndexStore,
        vector_store: VectorStore,
        jobs: BaseJobQueue,
    ) -> None:
        self.db = db
        self.keyword_store = keyword_store
        self.vector_store = vector_store
        self.jobs = jobs

    def create_dataset(self, name: str, description: str | None = None) -> Dataset:
        if not name or not name.strip():
            raise BadRequestError("Dataset name must not be empty")
        dataset_id = new_id()
        ts = now_ms()
        self.db.execute(
            "INSERT INTO dataset (id, name, description, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            (dataset_id, name.strip(), description, ts, ts),
        )
        self.keyword_store.get_or_create(dataset_id)
        return Dataset(id=dataset_id, name=name.strip(), description=description, created_at=ts, updated_at=ts)

    def create_documents(
        self,
        dataset_id: str,
        upload_file_ids: Sequence[str],
        rule: ProcessRule | None = None,
    ) -> CreatedBatch:
        """Register uploaded files as a new batch and submit a build job for them."""
        if not upload_file_ids:
            raise BadRequestError("At least one upload file is required")
        if queries.fetch_dataset(self.db, dataset_id) is None:
            raise NotFoundError(f"Dataset {dataset_id} not found")
        uploads = []
        for upload_file_id in upload_file_ids:
            upload = queries.fetch_upload(self.db, upload_file_id)
            if upload is None:
                raise NotFoundError(f"Upload file {upload_file_id} not found")
            uploads.append(upload)

        rule = rule or ProcessRule()
        rule_id = new_id()
        batch = f"{batch_tag()}-{uuid.uuid4()}"
        ts = now_ms()
        document_ids = [new_id() for _ in uploads]
        with self.db.transaction() as cur:
            row = cur.execute(
                "SELECT COALESCE(MAX(position), 0) AS position FROM document WHERE dataset_id = ?",
                (dataset_id,),
            ).fetchone()
            start = int(row["position"])
            cur.execute(
                "INSERT INTO process_rule (id, dataset_id, mode, rule_json, created_at) VALUES (?, ?, ?, ?, ?)",
                (rule_id, dataset_id, rule.mode, rule.model_dump_json(exclude={"mode"}), ts),
            )
            cur.executemany(
                """
                INSERT INTO document (
                  id, dataset_id, upload_file_id, process_rule_id, batch, name, position,
                  enabled, status, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?)
                """,
                [
                    (
                        document_id,
                        dataset_id,
                        upload.id,
                        rule_id,
                        batch,
                        upload.name,
                        start + offset,
                        DocumentStatus.WAITING.value,
                        ts,
                        ts,
                    )
                    for offset, (document_id, upload) in enumerate(zip(document_ids, uploads), start=1)
                ],
            )
        self.jobs.submit(document_ids, dataset_id)
        logger.info(
            "Documents registered",
            extra={"ctx_dataset_id": dataset_id, "ctx_batch": batch, "ctx_documents": len(document_ids)},
        )
        return CreatedBatch(batch=batch, process_rule_id=rule_id, document_ids=document_ids)

    def get_batch(self, dataset_id: str, batch: str) -> list[DocumentProgress]:
        rows = self.db.query(
            """
            SELECT document.*,
                   (SELECT COUNT(*) FROM segment WHERE segment.document_id = document.id) AS total_segments,
                   (SELECT COUNT(*) FROM segment
                     WHERE segment.document_id = document.id AND segment.status = 'completed')
                     AS completed_segments
            FROM document
            WHERE dataset_id = ? AND batch = ?
            ORDER BY position
            """,
            (dataset_id, batch),
        )
        if not rows:
            raise NotFoundError(f"Batch {batch} not found")
        return [
            DocumentProgress(
                id=row["id"],
                name=row["name"],
                status=row["status"],
                error=row["error"],
                enabled=bool(row["enabled"]),
                completed_segments=row["completed_segments"],
                total_segments=row["total_segments"],
                processing_started_at=row["processing_started_at"],
                parsing_completed_at=row["parsing_completed_at"],
                splitting_completed_at=row["splitting_completed_at"],
                indexing_completed_at=row["indexing_completed_at"],
                completed_at=row["completed_at"],
                stopped_at=row["stopped_at"],
            )
            for row in rows
        ]

    def delete_document(self, dataset_id: str, document_id: str) -> None:
        document = queries.fetch_document(self.db, document_id, dataset_id)
        if document is None:
            raise NotFoundError(f"Document {document_id} not found")
        if document.status not in (DocumentStatus.COMPLETED, DocumentStatus.ERROR):
            raise BadRequestError(f"Document {document_id} is still being processed")
        segments = queries.fetch_segments(self.db, document_id)
        self.keyword_store.remove_segments(dataset_id, [segment.id for segment in segments])
        self.vector_store.delete([segment.node_id for segment in segments])
        self.db.execute("DELETE FROM document WHERE id = ?", (document_id,))
        logger.info("Document deleted", extra={"ctx_document_id": document_id, "ctx_segments": len(segments)})

    def delete_dataset(self, dataset_id: str) -> None:
        """Delete the dataset rows now; its vectors are purged by a background job."""
        if queries.fetch_dataset(self.db, dataset_id) is None:
            raise NotFoundError(f"Dataset {dataset_id} not found")
        rows = self.db.query("SELECT node_id FROM segment WHERE dataset_id = ?", (dataset_id,))
        node_ids = [row["node_id"] for row in rows]
        self.db.execute("DELETE FROM dataset WHERE id = ?", (dataset_id,))
        self.jobs.submit_delete_dataset(dataset_id, node_ids)
        logger.info("Dataset deleted", extra={"ctx_dataset_id": dataset_id, "ctx_vectors": len(node_ids)})

    def purge_vectors(self, dataset_id: str, node_ids: Sequence[str]) -> None:
        self.vector_store.delete(list(node_ids))
        logger.info("Dataset vectors purged", extra={"ctx_dataset_id": dataset_id, "ctx_vectors": len(node_ids)})


__all__ = ["DocumentService"]
