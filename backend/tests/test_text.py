"""Tests for text cleaning helpers."""

from knowledge_index.utils.text import (
    clean_extra_text,
    count_tokens,
    remove_extra_space,
    remove_url_and_email,
)


def test_clean_extra_text_strips_markers_and_control_chars() -> None:
    assert clean_extra_text("<|start|>a\x00b\x07c\n") == "<start>abc\n"


def test_remove_extra_space() -> None:
    assert remove_extra_space("a\n\n\n\nb   c\t\td") == "a\n\nb c d"


def test_remove_url_and_email() -> None:
    text = "Mail ops@example.com or see https://example.com/docs?q=1 now"
    assert remove_url_and_email(text) == "Mail  or see  now"


def test_count_tokens() -> None:
    assert count_tokens("Hello, world!") == 4
    assert count_tokens("搜索引擎 rust") == 5
    assert count_tokens("   ") == 0
