"""Tests for file loaders."""

from __future__ import annotations

from pathlib import Path

import fitz
import pytest
from docx import Document as DocxDocument

from knowledge_index.core.errors import BadRequestError, NotFoundError
from knowledge_index.ingest.loaders import BaseLoader, FileLoader, LoaderRegistry
from knowledge_index.ingest.types import LoadedBlock


@pytest.fixture
def loader(tmp_path: Path) -> FileLoader:
    return FileLoader(tmp_path)


def test_markdown_front_matter(tmp_path: Path, loader: FileLoader) -> None:
    (tmp_path / "guide.md").write_text(
        "---\ntitle: Onboarding Guide\n---\n# Welcome\n\nRead the handbook first.\n", encoding="utf-8"
    )
    [block] = loader.load("guide.md")
    assert block.metadata["title"] == "Onboarding Guide"
    assert block.text == "Welcome\n\nRead the handbook first."
    assert "title:" not in block.text


def test_plain_text(tmp_path: Path, loader: FileLoader) -> None:
    (tmp_path / "notes.txt").write_text("plain words", encoding="utf-8")
    [block] = loader.load("notes.txt")
    assert block.text == "plain words"
    assert block.metadata == {"source": "notes.txt", "mime": "text/plain"}


def test_csv_rows_become_blocks(tmp_path: Path, loader: FileLoader) -> None:
    (tmp_path / "people.csv").write_text("name,role\nAda,engineer\nGrace,admiral\n", encoding="utf-8")
    blocks = loader.load("people.csv")
    assert [block.text for block in blocks] == ["name: Ada\nrole: engineer", "name: Grace\nrole: admiral"]
    assert [block.metadata["row"] for block in blocks] == [1, 2]


def test_json_collects_strings(tmp_path: Path, loader: FileLoader) -> None:
    (tmp_path / "faq.json").write_text(
        '{"title": "FAQ", "items": [{"answer": "Use the portal."}, 3, " "]}', encoding="utf-8"
    )
    [block] = loader.load("faq.json")
    assert block.text == "FAQ\nUse the portal."


def test_pdf_pages(tmp_path: Path, loader: FileLoader) -> None:
    pdf = fitz.open()
    for text in ("First page text", "Second page text"):
        page = pdf.new_page()
        page.insert_text((72, 72), text)
    pdf.save(str(tmp_path / "report.pdf"))
    pdf.close()

    blocks = loader.load("report.pdf")
    assert [block.metadata["page"] for block in blocks] == [1, 2]
    assert "First page text" in blocks[0].text
    assert "Second page text" in blocks[1].text


def test_docx_paragraphs(tmp_path: Path, loader: FileLoader) -> None:
    document = DocxDocument()
    document.core_properties.title = "Policy"
    document.add_paragraph("Remote work is allowed.")
    document.add_paragraph("")
    document.add_paragraph("Equipment is provided.")
    document.save(str(tmp_path / "policy.docx"))

    [block] = loader.load("policy.docx")
    assert block.text == "Remote work is allowed.\nEquipment is provided."
    assert block.metadata["title"] == "Policy"


def test_unsupported_suffix(tmp_path: Path, loader: FileLoader) -> None:
    (tmp_path / "archive.zip").write_bytes(b"PK")
    with pytest.raises(BadRequestError):
        loader.load("archive.zip")


def test_missing_file(loader: FileLoader) -> None:
    with pytest.raises(NotFoundError):
        loader.load("nowhere/file.txt")


@pytest.mark.parametrize("key", ["../secret.txt", "/etc/passwd", "a/../../b.txt"])
def test_keys_cannot_escape_storage(loader: FileLoader, key: str) -> None:
    with pytest.raises(BadRequestError):
        loader.load(key)


def test_registry_lookup() -> None:
    registry = LoaderRegistry()
    assert registry.for_path(Path("a.MD")) is not None
    assert registry.for_path(Path("a.exe")) is None


def test_registered_loader_is_used(tmp_path: Path) -> None:
    class UpperLoader(BaseLoader):
        suffixes = (".up",)

        def load(self, path: Path) -> list[LoadedBlock]:
            return [LoadedBlock(text=path.read_text(encoding="utf-8").upper())]

    registry = LoaderRegistry()
    registry.register(UpperLoader())
    (tmp_path / "shout.up").write_text("quiet", encoding="utf-8")
    [block] = FileLoader(tmp_path, registry).load("shout.up")
    assert block.text == "QUIET"
