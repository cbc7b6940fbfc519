"""Background worker consuming indexing jobs."""

from __future__ import annotations

import signal
import threading
from typing import Any

from knowledge_index.core.errors import KnowledgeIndexError
from knowledge_index.core.logging import configure_logging, get_logger
from knowledge_index.ingest.pipeline import DocumentPipeline
from knowledge_index.jobs.queue import (
    BUILD_DOCUMENTS,
    DELETE_DATASET,
    UPDATE_DOCUMENT_ENABLED,
    BaseJobQueue,
    Job,
)
from knowledge_index.services.documents import DocumentService
from knowledge_index.services.enablement import EnablementToggler

logger = get_logger(__name__)


class DocumentWorker:
    """Dispatches queued jobs by name. Failures are logged; jobs are never requeued."""

    def __init__(
        self,
        jobs: BaseJobQueue,
        pipeline: DocumentPipeline,
        toggler: EnablementToggler,
        documents: DocumentService,
    ) -> None:
        self.jobs = jobs
        self.pipeline = pipeline
        self.toggler = toggler
        self.documents = documents

    def handle(self, job: Job) -> Any:
        payload = job.payload
        if job.name == BUILD_DOCUMENTS:
            return self.pipeline.build_documents(payload["document_ids"], payload["dataset_id"])
        if job.name == UPDATE_DOCUMENT_ENABLED:
            return self.toggler.set_enabled(payload["document_id"], bool(payload["enabled"]))
        if job.name == DELETE_DATASET:
            return self.documents.purge_vectors(payload["dataset_id"], payload.get("node_ids", []))
        logger.warning("Dropping job with unknown name", extra={"ctx_job_id": job.id, "ctx_job": job.name})
        return None

    def run_once(self, timeout: float | None = None) -> bool:
        """Process at most one job; returns whether a job was taken from the queue."""
        job = self.jobs.get(timeout=timeout)
        if job is None:
            return False
        try:
            self.handle(job)
        except KnowledgeIndexError as exc:
            logger.error(
                "Job rejected: %s",
                exc,
                extra={"ctx_job_id": job.id, "ctx_job": job.name, "ctx_status": exc.status_code},
            )
        except Exception:
            logger.exception("Job failed", extra={"ctx_job_id": job.id, "ctx_job": job.name})
        return True

    def run_forever(self, stop_event: threading.Event, poll_interval: float = 1.0) -> None:
        logger.info("Worker started")
        while not stop_event.is_set():
            self.run_once(timeout=poll_interval)
        logger.info("Worker stopped")


def main() -> None:
    from knowledge_index import dependencies

    settings = dependencies.get_settings()
    configure_logging(settings.log_level, use_json=settings.log_json)
    worker = dependencies.get_worker()
    stop_event = threading.Event()

    def _stop(signum, frame) -> None:  # pragma: no cover - signal handler
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)
    worker.run_forever(stop_event)


if __name__ == "__main__":  # pragma: no cover
    main()
