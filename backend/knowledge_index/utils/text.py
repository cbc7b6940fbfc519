"""Text processing helpers."""

from __future__ import annotations

import re

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f\ufffe]")
_EXTRA_NEWLINES_RE = re.compile(r"\n{3,}")
_EXTRA_SPACES_RE = re.compile(r"[\t\f\r\x20\u00a0\u1680\u180e\u2000-\u200a\u202f\u205f\u3000]{2,}")
_EMAIL_RE = re.compile(r"[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\.[a-zA-Z0-9-.]+")
_URL_RE = re.compile(r"https?://[^\s]+|mailto:[^\s]+")

_CJK = r"\u3040-\u30ff\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
# CJK ideographs count one token each; words and punctuation marks count one token.
_TOKEN_RE = re.compile(rf"[{_CJK}]|[^\W_{_CJK}]+|[^\w\s]")


def clean_extra_text(text: str) -> str:
    """Strip control characters and ``<|``/``|>`` markers from extracted text."""
    result = text.replace("<|", "<").replace("|>", ">")
    return _CONTROL_CHARS_RE.sub("", result)


def remove_extra_space(text: str) -> str:
    """Collapse runs of blank lines and horizontal whitespace."""
    text = _EXTRA_NEWLINES_RE.sub("\n\n", text)
    return _EXTRA_SPACES_RE.sub(" ", text)


def remove_url_and_email(text: str) -> str:
    """Drop e-mail addresses, then http(s) and mailto links."""
    text = _EMAIL_RE.sub("", text)
    return _URL_RE.sub("", text)


def count_tokens(text: str) -> int:
    """Shared tokenizer used for chunk sizing and segment token counts."""
    return len(_TOKEN_RE.findall(text))


__all__ = ["clean_extra_text", "remove_extra_space", "remove_url_and_email", "count_tokens"]
