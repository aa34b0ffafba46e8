"""Text normalization and forward tokenization shared by the index and the query path."""

import re
import unicodedata
from typing import Iterator, List, Tuple

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def fold(text: str) -> str:
    """Lower-case and strip accents so "Berço" and "berco" compare equal."""
    return "".join(_fold_char(ch) for ch in text)


def _fold_char(ch: str) -> str:
    decomposed = unicodedata.normalize("NFKD", ch)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    # Keep a 1:1 character mapping so token offsets point into the original text
    if len(stripped) != 1:
        return ch.lower()[:1] or ch
    return stripped.lower()


def tokenize(text: str) -> List[str]:
    """Folded word tokens of a text."""
    return _WORD_RE.findall(fold(text))


def token_spans(text: str) -> Iterator[Tuple[str, int, int]]:
    """Yield (folded token, start, end) with offsets into the original text."""
    folded = fold(text)
    for match in _WORD_RE.finditer(folded):
        yield match.group(0), match.start(), match.end()


def prefixes(token: str) -> Iterator[str]:
    """All forward prefixes of a token, shortest first."""
    for end in range(1, len(token) + 1):
        yield token[:end]
