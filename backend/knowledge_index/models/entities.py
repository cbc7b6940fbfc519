"""Internal dataclasses representing persisted entities."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson


class DocumentStatus(str, Enum):
    WAITING = "waiting"
    PARSING = "parsing"
    SPLITTING = "splitting"
    INDEXING = "indexing"
    COMPLETED = "completed"
    ERROR = "error"


class SegmentStatus(str, Enum):
    WAITING = "waiting"
    INDEXING = "indexing"
    COMPLETED = "completed"
    ERROR = "error"


class RetrievalStrategy(str, Enum):
    FULL_TEXT = "full_text"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass(slots=True)
class Dataset:
    id: str
    name: str
    description: str | None
    created_at: int
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Dataset":
        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class UploadFile:
    """Object-storage record written by the upload service."""

    id: str
    key: str
    name: str
    extension: str | None
    mime_type: str | None
    size: int
    created_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "UploadFile":
        return cls(
            id=row["id"],
            key=row["key"],
            name=row["name"],
            extension=row["extension"],
            mime_type=row["mime_type"],
            size=row["size"],
            created_at=row["created_at"],
        )


@dataclass(slots=True)
class Document:
    id: str
    dataset_id: str
    upload_file_id: str
    process_rule_id: str
    batch: str
    name: str
    position: int
    character_count: int
    token_count: int
    status: DocumentStatus
    enabled: bool
    error: str | None = None
    processing_started_at: int | None = None
    parsing_completed_at: int | None = None
    splitting_completed_at: int | None = None
    indexing_completed_at: int | None = None
    completed_at: int | None = None
    stopped_at: int | None = None
    disabled_at: int | None = None
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Document":
        return cls(
            id=row["id"],
            dataset_id=row["dataset_id"],
            upload_file_id=row["upload_file_id"],
            process_rule_id=row["process_rule_id"],
            batch=row["batch"],
            name=row["name"],
            position=row["position"],
            character_count=row["character_count"],
            token_count=row["token_count"],
            status=DocumentStatus(row["status"]),
            enabled=bool(row["enabled"]),
            error=row["error"],
            processing_started_at=row["processing_started_at"],
            parsing_completed_at=row["parsing_completed_at"],
            splitting_completed_at=row["splitting_completed_at"],
            indexing_completed_at=row["indexing_completed_at"],
            completed_at=row["completed_at"],
            stopped_at=row["stopped_at"],
            disabled_at=row["disabled_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class Segment:
    id: str
    dataset_id: str
    document_id: str
    node_id: str
    position: int
    content: str
    character_count: int
    token_count: int
    hash: str
    status: SegmentStatus
    enabled: bool
    keywords: list[str] = field(default_factory=list)
    hit_count: int = 0
    error: str | None = None
    disabled_at: int | None = None
    indexing_completed_at: int | None = None
    completed_at: int | None = None
    stopped_at: int | None = None
    created_at: int = 0
    updated_at: int = 0

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Segment":
        return cls(
            id=row["id"],
            dataset_id=row["dataset_id"],
            document_id=row["document_id"],
            node_id=row["node_id"],
            position=row["position"],
            content=row["content"],
            character_count=row["character_count"],
            token_count=row["token_count"],
            hash=row["hash"],
            status=SegmentStatus(row["status"]),
            enabled=bool(row["enabled"]),
            keywords=list(orjson.loads(row["keywords_json"] or "[]")),
            hit_count=row["hit_count"],
            error=row["error"],
            disabled_at=row["disabled_at"],
            indexing_completed_at=row["indexing_completed_at"],
            completed_at=row["completed_at"],
            stopped_at=row["stopped_at"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


@dataclass(slots=True)
class KeywordTable:
    """Inverted index of one dataset: keyword -> set of segment ids."""

    id: str
    dataset_id: str
    table: dict[str, set[str]]
    updated_at: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "KeywordTable":
        raw: dict[str, Any] = orjson.loads(row["keywords_json"] or "{}")
        return cls(
            id=row["id"],
            dataset_id=row["dataset_id"],
            table={keyword: set(ids) for keyword, ids in raw.items()},
            updated_at=row["updated_at"],
        )

    def dumps(self) -> str:
        payload = {keyword: sorted(ids) for keyword, ids in sorted(self.table.items())}
        return orjson.dumps(payload).decode("utf-8")


__all__ = [
    "DocumentStatus",
    "SegmentStatus",
    "RetrievalStrategy",
    "Dataset",
    "UploadFile",
    "Document",
    "Segment",
    "KeywordTable",
]
