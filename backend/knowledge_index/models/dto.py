"""Pydantic models for process rules and service results."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

DEFAULT_SEPARATORS = [
    "\n\n",
    "\n",
    "。",
    "！",
    "？",
    ".",
    "!",
    "?",
    "；",
    ";",
    "，",
    ",",
    " ",
    "",
]


class PreProcessRule(BaseModel):
    id: Literal["remove_extra_space", "remove_url_and_email"]
    enabled: bool = True


class SegmentRule(BaseModel):
    separators: list[str] = Field(default_factory=lambda: list(DEFAULT_SEPARATORS))
    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "SegmentRule":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


def _default_pre_process_rules() -> list[PreProcessRule]:
    return [
        PreProcessRule(id="remove_extra_space", enabled=True),
        PreProcessRule(id="remove_url_and_email", enabled=True),
    ]


class ProcessRule(BaseModel):
    """How a document is cleaned and segmented."""

    mode: Literal["custom", "automatic"] = "automatic"
    pre_process_rules: list[PreProcessRule] = Field(default_factory=_default_pre_process_rules)
    segment: SegmentRule = Field(default_factory=SegmentRule)

    @model_validator(mode="after")
    def _automatic_uses_defaults(self) -> "ProcessRule":
        if self.mode == "automatic":
            self.pre_process_rules = _default_pre_process_rules()
            self.segment = SegmentRule()
        return self

    def enabled_rules(self) -> list[str]:
        return [rule.id for rule in self.pre_process_rules if rule.enabled]


class RetrievedSegment(BaseModel):
    segment_id: str
    document_id: str
    dataset_id: str
    node_id: str
    position: int
    content: str
    keywords: list[str]
    score: float


class DocumentProgress(BaseModel):
    """Per-document progress of one upload batch."""

    id: str
    name: str
    status: str
    error: str | None
    enabled: bool
    completed_segments: int
    total_segments: int
    processing_started_at: int | None
    parsing_completed_at: int | None
    splitting_completed_at: int | None
    indexing_completed_at: int | None
    completed_at: int | None
    stopped_at: int | None


class CreatedBatch(BaseModel):
    batch: str
    process_rule_id: str
    document_ids: list[str]


__all__ = [
    "DEFAULT_SEPARATORS",
    "PreProcessRule",
    "SegmentRule",
    "ProcessRule",
    "RetrievedSegment",
    "DocumentProgress",
    "CreatedBatch",
]
