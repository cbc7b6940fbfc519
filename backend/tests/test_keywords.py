"""Tests for keyword extraction."""

from knowledge_index.ingest.keywords import extract_keywords


def test_punctuation_is_ignored() -> None:
    assert extract_keywords("Hello, world!") == ["hello", "world"]


def test_ranked_by_frequency() -> None:
    text = "rust search rust engine search rust"
    assert extract_keywords(text) == ["rust", "search", "engine"]


def test_ties_keep_first_occurrence_order() -> None:
    assert extract_keywords("beta alpha gamma") == ["beta", "alpha", "gamma"]


def test_stopwords_and_numbers_dropped() -> None:
    assert extract_keywords("The history of Python and 2024") == ["history", "python"]


def test_respects_limit() -> None:
    text = " ".join(f"word{index}" for index in range(30))
    keywords = extract_keywords(text, max_keywords=10)
    assert len(keywords) == 10
    assert keywords[0] == "word0"


def test_cjk_bigrams() -> None:
    assert extract_keywords("搜索引擎") == ["搜索", "索引", "引擎"]


def test_empty_input() -> None:
    assert extract_keywords("") == []
    assert extract_keywords("!!! ...") == []
    assert extract_keywords("anything", max_keywords=0) == []


def test_deterministic() -> None:
    text = "Consistent hashing distributes keys across nodes; hashing keys again is stable."
    assert extract_keywords(text) == extract_keywords(text)
