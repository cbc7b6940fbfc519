"""Common ingestion data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class LoadedBlock:
    """A unit of text extracted from an uploaded file (a page, row or whole file)."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TextChunk:
    """Chunk produced by the splitter prior to persistence."""

    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class DocumentOutcome:
    """Result of running one document through the pipeline."""

    document_id: str
    status: str
    segments: int = 0
    error: str | None = None


@dataclass(slots=True)
class PipelineReport:
    """Aggregated outcome of a ``build_documents`` batch."""

    dataset_id: str
    outcomes: list[DocumentOutcome] = field(default_factory=list)

    @property
    def completed(self) -> list[str]:
        return [item.document_id for item in self.outcomes if item.status == "completed"]

    @property
    def failed(self) -> list[str]:
        return [item.document_id for item in self.outcomes if item.status == "error"]

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "completed": len(self.completed),
            "failed": len(self.failed),
            "segments": sum(item.segments for item in self.outcomes),
        }


__all__ = ["LoadedBlock", "TextChunk", "DocumentOutcome", "PipelineReport"]
