"""Row lookups shared by the pipeline and the services."""

from __future__ import annotations

from typing import Iterable, Sequence

from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.models.entities import Dataset, Document, Segment, SegmentStatus, UploadFile
from knowledge_index.utils.time import now_ms


def placeholders(count: int) -> str:
    return ",".join("?" for _ in range(count))


def fetch_dataset(db: SQLiteDatabase, dataset_id: str) -> Dataset | None:
    row = db.query_one("SELECT * FROM dataset WHERE id = ?", (dataset_id,))
    return Dataset.from_row(row) if row else None


def fetch_upload(db: SQLiteDatabase, upload_file_id: str) -> UploadFile | None:
    row = db.query_one("SELECT * FROM upload_file WHERE id = ?", (upload_file_id,))
    return UploadFile.from_row(row) if row else None


def fetch_document(db: SQLiteDatabase, document_id: str, dataset_id: str | None = None) -> Document | None:
    if dataset_id is None:
        row = db.query_one("SELECT * FROM document WHERE id = ?", (document_id,))
    else:
        row = db.query_one(
            "SELECT * FROM document WHERE id = ? AND dataset_id = ?", (document_id, dataset_id)
        )
    return Document.from_row(row) if row else None


def fetch_documents(db: SQLiteDatabase, dataset_id: str, document_ids: Sequence[str]) -> list[Document]:
    """Documents of ``dataset_id`` in the order the ids were requested."""
    if not document_ids:
        return []
    rows = db.query(
        f"SELECT * FROM document WHERE dataset_id = ? AND id IN ({placeholders(len(document_ids))})",
        (dataset_id, *document_ids),
    )
    by_id = {row["id"]: Document.from_row(row) for row in rows}
    return [by_id[document_id] for document_id in dict.fromkeys(document_ids) if document_id in by_id]


def fetch_segment(db: SQLiteDatabase, segment_id: str, dataset_id: str | None = None) -> Segment | None:
    if dataset_id is None:
        row = db.query_one("SELECT * FROM segment WHERE id = ?", (segment_id,))
    else:
        row = db.query_one(
            "SELECT * FROM segment WHERE id = ? AND dataset_id = ?", (segment_id, dataset_id)
        )
    return Segment.from_row(row) if row else None


def fetch_segments(
    db: SQLiteDatabase, document_id: str, status: SegmentStatus | None = None
) -> list[Segment]:
    if status is None:
        rows = db.query(
            "SELECT * FROM segment WHERE document_id = ? ORDER BY position", (document_id,)
        )
    else:
        rows = db.query(
            "SELECT * FROM segment WHERE document_id = ? AND status = ? ORDER BY position",
            (document_id, status.value),
        )
    return [Segment.from_row(row) for row in rows]


def fetch_segments_by_ids(db: SQLiteDatabase, segment_ids: Iterable[str]) -> dict[str, Segment]:
    ids = list(dict.fromkeys(segment_ids))
    segments: dict[str, Segment] = {}
    for start in range(0, len(ids), 500):
        batch = ids[start : start + 500]
        rows = db.query(f"SELECT * FROM segment WHERE id IN ({placeholders(len(batch))})", batch)
        segments.update({row["id"]: Segment.from_row(row) for row in rows})
    return segments


def max_segment_position(db: SQLiteDatabase, document_id: str) -> int:
    row = db.query_one(
        "SELECT COALESCE(MAX(position), 0) AS position FROM segment WHERE document_id = ?",
        (document_id,),
    )
    return int(row["position"]) if row else 0


def refresh_document_counts(db: SQLiteDatabase, document_id: str) -> None:
    """Recompute a document's character and token totals from its segments."""
    db.execute(
        """
        UPDATE document
        SET character_count = (
                SELECT COALESCE(SUM(character_count), 0) FROM segment WHERE document_id = ?
            ),
            token_count = (
                SELECT COALESCE(SUM(token_count), 0) FROM segment WHERE document_id = ?
            ),
            updated_at = ?
        WHERE id = ?
        """,
        (document_id, document_id, now_ms(), document_id),
    )


__all__ = [
    "placeholders",
    "fetch_dataset",
    "fetch_upload",
    "fetch_document",
    "fetch_documents",
    "fetch_segment",
    "fetch_segments",
    "fetch_segments_by_ids",
    "max_segment_position",
    "refresh_document_counts",
]
