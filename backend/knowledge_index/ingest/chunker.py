"""Chunking utilities."""

from __future__ import annotations

import re
from typing import Callable, Iterable, Sequence

from knowledge_index.core.logging import get_logger
from knowledge_index.ingest.types import LoadedBlock, TextChunk
from knowledge_index.models.dto import DEFAULT_SEPARATORS, SegmentRule
from knowledge_index.utils.text import count_tokens

logger = get_logger(__name__)


class RecursiveTextSplitter:
    """Split text on the first separator that occurs, recursing into oversized pieces.

    Pieces are merged back greedily up to ``chunk_size`` with ``chunk_overlap`` carried
    between neighbouring chunks. Separators stay attached to the end of the piece they
    terminate, so sentence punctuation is not moved to the next chunk.
    """

    def __init__(
        self,
        separators: Sequence[str] | None = None,
        chunk_size: int = 500,
        chunk_overlap: int = 50,
        length_function: Callable[[str], int] = count_tokens,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be in [0, chunk_size)")
        self.separators = list(separators) if separators is not None else list(DEFAULT_SEPARATORS)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.length_function = length_function

    @classmethod
    def from_rule(cls, rule: SegmentRule) -> "RecursiveTextSplitter":
        return cls(
            separators=rule.separators,
            chunk_size=rule.chunk_size,
            chunk_overlap=rule.chunk_overlap,
        )

    def split_text(self, text: str) -> list[str]:
        if not text.strip():
            return []
        return self._split(text, self.separators)

    def split_blocks(self, blocks: Iterable[LoadedBlock]) -> list[TextChunk]:
        chunks: list[TextChunk] = []
        for block in blocks:
            for piece in self.split_text(block.text):
                chunks.append(TextChunk(text=piece, metadata=dict(block.metadata)))
        return chunks

    def _split(self, text: str, separators: Sequence[str]) -> list[str]:
        separator = separators[-1] if separators else ""
        remaining: Sequence[str] = []
        for index, candidate in enumerate(separators):
            if candidate == "":
                separator = candidate
                break
            if candidate in text:
                separator = candidate
                remaining = separators[index + 1 :]
                break

        final: list[str] = []
        good: list[str] = []
        for piece in _split_keeping_separator(text, separator):
            if self.length_function(piece) < self.chunk_size:
                good.append(piece)
                continue
            if good:
                final.extend(self._merge(good))
                good = []
            if remaining:
                final.extend(self._split(piece, remaining))
            else:
                stripped = piece.strip()
                if stripped:
                    final.append(stripped)
        if good:
            final.extend(self._merge(good))
        return final

    def _merge(self, pieces: Sequence[str]) -> list[str]:
        merged: list[str] = []
        current: list[str] = []
        total = 0
        for piece in pieces:
            length = self.length_function(piece)
            if current and total + length > self.chunk_size:
                if total > self.chunk_size:
                    logger.warning(
                        "Created a chunk larger than the configured size",
                        extra={"ctx_tokens": total, "ctx_chunk_size": self.chunk_size},
                    )
                chunk = "".join(current).strip()
                if chunk:
                    merged.append(chunk)
                while current and (
                    total > self.chunk_overlap or total + length > self.chunk_size
                ):
                    total -= self.length_function(current[0])
                    current = current[1:]
            current.append(piece)
            total += length
        chunk = "".join(current).strip()
        if chunk:
            merged.append(chunk)
        return merged


def _split_keeping_separator(text: str, separator: str) -> list[str]:
    if separator == "":
        return list(text)
    parts = re.split(f"({re.escape(separator)})", text)
    pieces = [parts[i] + parts[i + 1] for i in range(0, len(parts) - 1, 2)]
    if len(parts) % 2 == 1:
        pieces.append(parts[-1])
    return [piece for piece in pieces if piece != ""]


__all__ = ["RecursiveTextSplitter"]
