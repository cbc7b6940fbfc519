"""Tests for chunker."""

import pytest

from knowledge_index.ingest.chunker import RecursiveTextSplitter
from knowledge_index.ingest.types import LoadedBlock
from knowledge_index.models.dto import SegmentRule
from knowledge_index.utils.text import count_tokens

WORDS = "one two three four five six seven eight nine ten"


def test_chunk_boundaries_basic() -> None:
    text = ("Title\n\nPara1.\n\nPara2 is longer..." * 5).strip()
    chunks = RecursiveTextSplitter(chunk_size=8, chunk_overlap=0).split_text(text)
    assert chunks, "Should produce chunks"
    assert all(chunk == chunk.strip() and chunk for chunk in chunks)
    assert all(count_tokens(chunk) <= 8 for chunk in chunks)


def test_short_text_stays_in_one_chunk(sample_text: str) -> None:
    chunks = RecursiveTextSplitter().split_text(sample_text)
    assert chunks == [sample_text]


def test_splits_without_overlap() -> None:
    chunks = RecursiveTextSplitter(chunk_size=5, chunk_overlap=0).split_text(WORDS)
    assert chunks == ["one two three four five", "six seven eight nine ten"]


def test_overlap_carries_trailing_pieces() -> None:
    chunks = RecursiveTextSplitter(chunk_size=4, chunk_overlap=2).split_text(WORDS)
    assert chunks == [
        "one two three four",
        "three four five six",
        "five six seven eight",
        "seven eight nine ten",
    ]


def test_cjk_sentences_keep_their_punctuation() -> None:
    text = "今天天气很好。我们去公园散步。然后回家吃饭。"
    chunks = RecursiveTextSplitter(chunk_size=10, chunk_overlap=0).split_text(text)
    assert chunks == ["今天天气很好。", "我们去公园散步。", "然后回家吃饭。"]


def test_falls_back_to_characters_for_unbroken_text() -> None:
    text = "x" * 30
    chunks = RecursiveTextSplitter(separators=[" ", ""], chunk_size=3, chunk_overlap=0,
                                   length_function=len).split_text(text)
    assert "".join(chunks) == text
    assert all(len(chunk) <= 3 for chunk in chunks)


def test_blank_text_yields_nothing() -> None:
    assert RecursiveTextSplitter().split_text("  \n\n ") == []


@pytest.mark.parametrize("size,overlap", [(0, 0), (10, 10), (10, -1)])
def test_invalid_sizes_rejected(size: int, overlap: int) -> None:
    with pytest.raises(ValueError):
        RecursiveTextSplitter(chunk_size=size, chunk_overlap=overlap)


def test_split_blocks_keeps_block_metadata() -> None:
    splitter = RecursiveTextSplitter.from_rule(SegmentRule(chunk_size=5, chunk_overlap=0))
    chunks = splitter.split_blocks(
        [LoadedBlock(text=WORDS, metadata={"page": 1}), LoadedBlock(text="eleven twelve", metadata={"page": 2})]
    )
    assert [chunk.metadata["page"] for chunk in chunks] == [1, 1, 2]
    assert chunks[-1].text == "eleven twelve"
