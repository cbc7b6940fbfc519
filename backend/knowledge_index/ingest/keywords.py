"""Keyword extraction used by the inverted index and full-text retrieval."""

from __future__ import annotations

import re
from collections import Counter

_CJK = r"\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
_WORD_RE = re.compile(rf"[^\W_{_CJK}]+(?:['’][^\W_{_CJK}]+)*")
_CJK_RUN_RE = re.compile(rf"[{_CJK}]+")

STOPWORDS = frozenset(
    """
    a about above after again against all am an and any are as at be because been before
    being below between both but by can could did do does doing down during each few for
    from further had has have having he her here hers herself him himself his how i if in
    into is it its itself just me more most my myself no nor not now of off on once only
    or other our ours ourselves out over own same she should so some such than that the
    their theirs them themselves then there these they this those through to too under
    until up very was we were what when where which while who whom why will with would
    you your yours yourself yourselves also may might must shall us via etc
    的 了 和 是 在 我 有 就 不 人 都 一 也 很 到 说 要 去 你 会 着 没有 看 好 这 那
    """.split()
)


def _candidates(text: str) -> list[str]:
    """Lowercased words and CJK bigrams in order of appearance."""
    terms: list[tuple[int, str]] = []
    for match in _WORD_RE.finditer(text):
        word = match.group().lower()
        if len(word) < 2 or word.isdigit() or word in STOPWORDS:
            continue
        terms.append((match.start(), word))
    for match in _CJK_RUN_RE.finditer(text):
        run = match.group()
        if len(run) == 1:
            if run not in STOPWORDS:
                terms.append((match.start(), run))
            continue
        for offset in range(len(run) - 1):
            gram = run[offset : offset + 2]
            if gram not in STOPWORDS:
                terms.append((match.start() + offset, gram))
    terms.sort(key=lambda item: item[0])
    return [term for _, term in terms]


def extract_keywords(text: str, max_keywords: int = 10) -> list[str]:
    """Return at most ``max_keywords`` distinct keywords ranked by frequency.

    Ties keep first-occurrence order, so identical input always yields identical output.
    """
    if max_keywords <= 0 or not text:
        return []
    terms = _candidates(text)
    counts = Counter(terms)
    first_seen: dict[str, int] = {}
    for index, term in enumerate(terms):
        first_seen.setdefault(term, index)
    ranked = sorted(counts, key=lambda term: (-counts[term], first_seen[term]))
    return ranked[:max_keywords]


__all__ = ["STOPWORDS", "extract_keywords"]
