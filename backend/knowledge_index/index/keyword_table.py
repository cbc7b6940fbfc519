"""Per-dataset keyword inverted index stored as a single JSON document."""

from __future__ import annotations

from typing import Iterable, Iterator, Sequence

import orjson

from knowledge_index.core.errors import InternalError
from knowledge_index.core.logging import get_logger
from knowledge_index.core.metrics import KEYWORD_LOCK_SKIPPED
from knowledge_index.db.sqlite import SQLiteDatabase
from knowledge_index.index.locks import KEYWORD_TABLE_LOCK, LockService, hold_lock
from knowledge_index.models.entities import KeywordTable
from knowledge_index.utils.ids import new_id
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)

_SQL_BATCH = 500


class KeywordIndexStore:
    """Read-modify-write access to the keyword table, serialized by the dataset lock.

    Mutations that cannot obtain the lock within ``lock_wait`` seconds are skipped and
    reported through the return value; the table is left untouched in that case.
    """

    def __init__(
        self,
        db: SQLiteDatabase,
        locks: LockService,
        lock_ttl: int = 600,
        lock_wait: float = 5.0,
    ) -> None:
        self.db = db
        self.locks = locks
        self.lock_ttl = lock_ttl
        self.lock_wait = lock_wait

    def get_or_create(self, dataset_id: str) -> KeywordTable:
        ts = now_ms()
        self.db.execute(
            """
            INSERT OR IGNORE INTO keyword_table(id, dataset_id, keywords_json, created_at, updated_at)
            VALUES (?, ?, '{}', ?, ?)
            """,
            (new_id(), dataset_id, ts, ts),
        )
        table = self.load(dataset_id)
        if table is None:
            raise InternalError(f"Keyword table for dataset {dataset_id} could not be created")
        return table

    def load(self, dataset_id: str) -> KeywordTable | None:
        row = self.db.query_one("SELECT * FROM keyword_table WHERE dataset_id = ?", (dataset_id,))
        return KeywordTable.from_row(row) if row else None

    def add_segments(self, dataset_id: str, segment_ids: Sequence[str]) -> bool:
        """Index each segment id under every keyword stored on the segment row."""
        if not segment_ids:
            return True
        with hold_lock(self.locks, self._lock_key(dataset_id), self.lock_ttl, self.lock_wait) as acquired:
            if not acquired:
                self._skipped("add", dataset_id, segment_ids)
                return False
            table = self.get_or_create(dataset_id)
            for segment_id, keywords in self._segment_keywords(dataset_id, segment_ids):
                for keyword in keywords:
                    table.table.setdefault(keyword, set()).add(segment_id)
            self._save(table)
        logger.debug(
            "Added segments to keyword table",
            extra={"ctx_dataset_id": dataset_id, "ctx_segments": len(segment_ids)},
        )
        return True

    def remove_segments(self, dataset_id: str, segment_ids: Sequence[str]) -> bool:
        """Remove segment ids from every keyword, dropping keywords left without segments."""
        if not segment_ids:
            return True
        with hold_lock(self.locks, self._lock_key(dataset_id), self.lock_ttl, self.lock_wait) as acquired:
            if not acquired:
                self._skipped("remove", dataset_id, segment_ids)
                return False
            table = self.load(dataset_id)
            if table is None:
                return True
            removed = set(segment_ids)
            table.table = {
                keyword: remaining
                for keyword, ids in table.table.items()
                if (remaining := ids - removed)
            }
            self._save(table)
        logger.debug(
            "Removed segments from keyword table",
            extra={"ctx_dataset_id": dataset_id, "ctx_segments": len(segment_ids)},
        )
        return True

    def find(self, dataset_ids: Iterable[str], keywords: Sequence[str]) -> list[str]:
        """Segment ids matched by each keyword, one entry per (keyword, segment) hit."""
        hits: list[str] = []
        for dataset_id in dataset_ids:
            table = self.load(dataset_id)
            if table is None:
                continue
            for keyword in keywords:
                hits.extend(sorted(table.table.get(keyword, ())))
        return hits

    def _save(self, table: KeywordTable) -> None:
        self.db.execute(
            "UPDATE keyword_table SET keywords_json = ?, updated_at = ? WHERE id = ?",
            (table.dumps(), now_ms(), table.id),
        )

    def _segment_keywords(
        self, dataset_id: str, segment_ids: Sequence[str]
    ) -> Iterator[tuple[str, list[str]]]:
        for batch in _batched(segment_ids, _SQL_BATCH):
            placeholders = ",".join("?" for _ in batch)
            rows = self.db.query(
                f"SELECT id, keywords_json FROM segment WHERE dataset_id = ? AND id IN ({placeholders})",
                (dataset_id, *batch),
            )
            for row in rows:
                yield row["id"], orjson.loads(row["keywords_json"] or "[]")

    def _skipped(self, operation: str, dataset_id: str, segment_ids: Sequence[str]) -> None:
        KEYWORD_LOCK_SKIPPED.labels(operation=operation).inc()
        logger.error(
            "Keyword table lock busy; update skipped",
            extra={
                "ctx_dataset_id": dataset_id,
                "ctx_operation": operation,
                "ctx_segments": len(segment_ids),
            },
        )

    @staticmethod
    def _lock_key(dataset_id: str) -> str:
        return KEYWORD_TABLE_LOCK.format(dataset_id=dataset_id)


def _batched(items: Sequence[str], size: int) -> Iterator[Sequence[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


__all__ = ["KeywordIndexStore"]
