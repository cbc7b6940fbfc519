"""Job submission contract with in-process and Redis list backends."""

from __future__ import annotations

import math
import queue
from dataclasses import dataclass, field
from typing import Any, Sequence

import orjson

from knowledge_index.core.logging import get_logger
from knowledge_index.utils.ids import new_id
from knowledge_index.utils.time import now_ms

logger = get_logger(__name__)

BUILD_DOCUMENTS = "build_documents"
UPDATE_DOCUMENT_ENABLED = "update_document_enabled"
DELETE_DATASET = "delete_dataset"


@dataclass(slots=True)
class Job:
    name: str
    payload: dict[str, Any]
    id: str = field(default_factory=lambda: new_id("job"))
    created_at: int = field(default_factory=now_ms)

    def dumps(self) -> bytes:
        return orjson.dumps(
            {"id": self.id, "name": self.name, "payload": self.payload, "created_at": self.created_at}
        )

    @classmethod
    def loads(cls, raw: bytes | str) -> "Job":
        data = orjson.loads(raw)
        return cls(name=data["name"], payload=data["payload"], id=data["id"], created_at=data["created_at"])


class BaseJobQueue:
    """Common submission helpers; backends implement ``put`` and ``get``."""

    def put(self, job: Job) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    def get(self, timeout: float | None = None) -> Job | None:  # pragma: no cover - interface
        raise NotImplementedError

    def submit(self, document_ids: Sequence[str], dataset_id: str) -> Job:
        job = Job(name=BUILD_DOCUMENTS, payload={"document_ids": list(document_ids), "dataset_id": dataset_id})
        self._enqueue(job)
        return job

    def submit_enabled(self, document_id: str, enabled: bool) -> Job:
        job = Job(name=UPDATE_DOCUMENT_ENABLED, payload={"document_id": document_id, "enabled": enabled})
        self._enqueue(job)
        return job

    def submit_delete_dataset(self, dataset_id: str, node_ids: Sequence[str] = ()) -> Job:
        job = Job(name=DELETE_DATASET, payload={"dataset_id": dataset_id, "node_ids": list(node_ids)})
        self._enqueue(job)
        return job

    def _enqueue(self, job: Job) -> None:
        self.put(job)
        logger.info("Job submitted", extra={"ctx_job_id": job.id, "ctx_job": job.name})


class LocalJobQueue(BaseJobQueue):
    def __init__(self) -> None:
        self._queue: queue.Queue[Job] = queue.Queue()

    def put(self, job: Job) -> None:
        self._queue.put(job)

    def get(self, timeout: float | None = None) -> Job | None:
        try:
            return self._queue.get(timeout=timeout) if timeout else self._queue.get_nowait()
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()


class RedisJobQueue(BaseJobQueue):
    """FIFO over a Redis list: LPUSH to submit, BRPOP to consume."""

    def __init__(self, client: Any, key: str = "kidx:jobs") -> None:
        self.client = client
        self.key = key

    def put(self, job: Job) -> None:
        self.client.lpush(self.key, job.dumps())

    def get(self, timeout: float | None = None) -> Job | None:
        if not timeout:
            raw = self.client.rpop(self.key)
        else:
            item = self.client.brpop([self.key], timeout=max(1, math.ceil(timeout)))
            raw = item[1] if item else None
        return Job.loads(raw) if raw is not None else None

    def __len__(self) -> int:
        return int(self.client.llen(self.key))


__all__ = [
    "BUILD_DOCUMENTS",
    "UPDATE_DOCUMENT_ENABLED",
    "DELETE_DATASET",
    "Job",
    "BaseJobQueue",
    "LocalJobQueue",
    "RedisJobQueue",
]
