"""Keyword extraction for titles and chunk contents."""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from collections import Counter

_WORD = re.compile(r"[^\W\d_]{3,}", flags=re.UNICODE)

_STOP_WORDS = frozenset(
    """
    and are but for from has have how its not our that the their them then there
    these they this was were what when where which who why will with you your
    about also into more only other over some such than very can may
    och att det som för med den till inte har var ett men om kan ska vid
    eller från alla hos dig din ditt våra vår oss sig sin sina efter under
    """.split()
)


class KeywordExtractor(ABC):
    """Keyword extraction interface used by the ingest pipeline."""

    @abstractmethod
    def extract(self, texts: list[str]) -> list[list[str]]:
        """Return keywords for every text, in input order."""


class FrequencyKeywordExtractor(KeywordExtractor):
    """Most frequent non-stop-word terms; deterministic, no service calls."""

    def __init__(self, count: int = 10, stop_words: frozenset[str] | None = None) -> None:
        self.count = count
        self.stop_words = _STOP_WORDS if stop_words is None else stop_words

    def extract(self, texts: list[str]) -> list[list[str]]:
        return [self._extract_one(text) for text in texts]

    def _extract_one(self, text: str) -> list[str]:
        if self.count == 0:
            return []
        words = [
            word
            for word in (match.lower() for match in _WORD.findall(text))
            if word not in self.stop_words
        ]
        # Counter keeps first-seen order among equal counts.
        return [word for word, _ in Counter(words).most_common(self.count)]
