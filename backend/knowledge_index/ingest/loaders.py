"""File loaders resolving object-storage keys to text blocks."""

from __future__ import annotations

import csv
import io
from pathlib import Path, PurePosixPath
from typing import Any

import fitz
import orjson
import yaml
from docx import Document as DocxDocument
from markdown_it import MarkdownIt

from knowledge_index.core.errors import BadRequestError, NotFoundError
from knowledge_index.ingest.types import LoadedBlock

_MD = MarkdownIt()


class BaseLoader:
    """Common loader interface."""

    suffixes: tuple[str, ...] = ()
    mime_type: str = "application/octet-stream"

    def can_load(self, path: Path) -> bool:
        return path.suffix.lower() in self.suffixes

    def load(self, path: Path) -> list[LoadedBlock]:  # pragma: no cover - interface
        raise NotImplementedError


class MarkdownLoader(BaseLoader):
    suffixes = (".md", ".markdown", ".mdx")
    mime_type = "text/markdown"

    def load(self, path: Path) -> list[LoadedBlock]:
        text = path.read_bytes().decode("utf-8", errors="ignore")
        front_matter, body = _split_front_matter(text)
        metadata: dict[str, Any] = {"source": path.name, "mime": self.mime_type}
        if front_matter:
            metadata["title"] = front_matter.get("title")
        return [LoadedBlock(text=_markdown_to_text(body), metadata=metadata)]


class TextLoader(BaseLoader):
    suffixes = (".txt", ".text", ".log")
    mime_type = "text/plain"

    def load(self, path: Path) -> list[LoadedBlock]:
        text = path.read_bytes().decode("utf-8", errors="ignore")
        return [LoadedBlock(text=text, metadata={"source": path.name, "mime": self.mime_type})]


class PDFLoader(BaseLoader):
    suffixes = (".pdf",)
    mime_type = "application/pdf"

    def load(self, path: Path) -> list[LoadedBlock]:
        blocks: list[LoadedBlock] = []
        with fitz.open(stream=path.read_bytes(), filetype="pdf") as doc:
            for number, page in enumerate(doc, start=1):
                blocks.append(
                    LoadedBlock(
                        text=page.get_text("text", sort=True),
                        metadata={"source": path.name, "mime": self.mime_type, "page": number},
                    )
                )
        return blocks


class DocxLoader(BaseLoader):
    suffixes = (".docx",)
    mime_type = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

    def load(self, path: Path) -> list[LoadedBlock]:
        document = DocxDocument(str(path))
        paragraphs = [para.text for para in document.paragraphs if para.text.strip()]
        metadata = {
            "source": path.name,
            "mime": self.mime_type,
            "title": document.core_properties.title or None,
        }
        return [LoadedBlock(text="\n".join(paragraphs), metadata=metadata)]


class CSVLoader(BaseLoader):
    """One block per row, rendered as ``column: value`` lines."""

    suffixes = (".csv",)
    mime_type = "text/csv"

    def load(self, path: Path) -> list[LoadedBlock]:
        text = path.read_bytes().decode("utf-8-sig", errors="ignore")
        blocks: list[LoadedBlock] = []
        for row_number, row in enumerate(csv.DictReader(io.StringIO(text)), start=1):
            lines = [f"{key}: {value}" for key, value in row.items() if key is not None]
            blocks.append(
                LoadedBlock(
                    text="\n".join(lines),
                    metadata={"source": path.name, "mime": self.mime_type, "row": row_number},
                )
            )
        return blocks


class JSONLoader(BaseLoader):
    """Concatenates every string value found in the document."""

    suffixes = (".json",)
    mime_type = "application/json"

    def load(self, path: Path) -> list[LoadedBlock]:
        payload = orjson.loads(path.read_bytes())
        strings = list(_iter_strings(payload))
        return [LoadedBlock(text="\n".join(strings), metadata={"source": path.name, "mime": self.mime_type})]


class LoaderRegistry:
    """Registry that selects an appropriate loader for a path."""

    def __init__(self) -> None:
        self._loaders: list[BaseLoader] = [
            MarkdownLoader(),
            TextLoader(),
            PDFLoader(),
            DocxLoader(),
            CSVLoader(),
            JSONLoader(),
        ]

    def register(self, loader: BaseLoader) -> None:
        self._loaders.append(loader)

    def for_path(self, path: Path) -> BaseLoader | None:
        for loader in self._loaders:
            if loader.can_load(path):
                return loader
        return None

    def load(self, path: Path) -> list[LoadedBlock]:
        loader = self.for_path(path)
        if loader is None:
            raise BadRequestError(f"No loader registered for suffix {path.suffix}")
        return loader.load(path)


class FileLoader:
    """Resolves object-storage keys below ``storage_root`` and extracts their blocks."""

    def __init__(self, storage_root: Path, registry: LoaderRegistry | None = None) -> None:
        self.storage_root = storage_root.expanduser()
        self.registry = registry or LoaderRegistry()

    def resolve(self, file_key: str) -> Path:
        relative = PurePosixPath(file_key)
        if relative.is_absolute() or ".." in relative.parts:
            raise BadRequestError(f"Invalid file key {file_key!r}")
        return self.storage_root.joinpath(*relative.parts)

    def load(self, file_key: str) -> list[LoadedBlock]:
        path = self.resolve(file_key)
        if not path.is_file():
            raise NotFoundError(f"File {file_key} not found in storage")
        return self.registry.load(path)


def _split_front_matter(text: str) -> tuple[dict[str, Any] | None, str]:
    if text.startswith("---"):
        parts = text.split("---", 2)
        if len(parts) >= 3:
            try:
                front_matter = yaml.safe_load(parts[1]) or {}
            except yaml.YAMLError:
                return None, text
            if isinstance(front_matter, dict):
                return front_matter, parts[2]
    return None, text


def _markdown_to_text(text: str) -> str:
    tokens = _MD.parse(text)
    parts: list[str] = []
    for token in tokens:
        content = token.content.strip()
        if content:
            parts.append(content)
    return "\n\n".join(parts) if parts else text


def _iter_strings(value: Any):
    if isinstance(value, str):
        if value.strip():
            yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _iter_strings(item)


__all__ = ["BaseLoader", "LoaderRegistry", "FileLoader"]
