"""Typed exceptions raised by the indexing and retrieval services."""

from __future__ import annotations


class KnowledgeIndexError(Exception):
    """Base error carrying an HTTP-style status and a stable result code."""

    status_code: int = 500
    code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.code.replace("_", " ").title())
        self.message = str(self)


class BadRequestError(KnowledgeIndexError):
    """Invalid input or state transition (e.g. toggling to the current value)."""

    status_code = 400
    code = "BAD_REQUEST"


class NotFoundError(KnowledgeIndexError):
    """A referenced dataset, upload, process rule, document or segment is missing."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(KnowledgeIndexError):
    """A lock is held by another caller."""

    status_code = 409
    code = "CONFLICT"


class InternalError(KnowledgeIndexError):
    """Unexpected failure in a store, index or vector operation."""

    status_code = 500
    code = "INTERNAL_SERVER_ERROR"


def describe_error(error: BaseException) -> str:
    """Human readable message stored on failed documents and segments."""
    message = str(error)
    return message if message else error.__class__.__name__


__all__ = [
    "KnowledgeIndexError",
    "BadRequestError",
    "NotFoundError",
    "ConflictError",
    "InternalError",
    "describe_error",
]
