"""Candidates and the score-ordered result sequence of a filter pass."""

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from .algorithms import UNSCORED, MatchResult


@dataclass(frozen=True)
class Candidate:
    """One raw string from the source stream, numbered in arrival order."""
    text: str
    seq: int


@dataclass(frozen=True)
class ResultEntry:
    """A scored candidate inside RankedResults."""
    candidate: Candidate
    score: int = UNSCORED
    positions: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def text(self) -> str:
        return self.candidate.text


class RankedResults:
    """
    Results sorted by descending score.

    Insertion is stable: a new entry goes after existing entries with the
    same score, so ties keep arrival order. Unscored entries (empty pattern)
    are appended. Appending the lowest score so far costs O(1).
    """

    def __init__(self):
        self._entries: List[ResultEntry] = []
        # Negated scores, ascending, parallel to _entries
        self._keys: List[int] = []

    def add(self, candidate: Candidate, match: MatchResult) -> int:
        """Insert a scored candidate and return its index."""
        entry = ResultEntry(candidate, match.score, match.positions)
        if match.score == UNSCORED:
            index = len(self._entries)
        else:
            index = bisect_right(self._keys, -match.score)
        self._entries.insert(index, entry)
        self._keys.insert(index, -match.score)
        return index

    def window(self, start: int, size: int) -> List[ResultEntry]:
        return self._entries[start:start + size]

    def get(self, index: int) -> Optional[ResultEntry]:
        if 0 <= index < len(self._entries):
            return self._entries[index]
        return None

    def scores(self) -> List[int]:
        return [-k for k in self._keys]

    def texts(self) -> List[str]:
        return [e.text for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ResultEntry]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> ResultEntry:
        return self._entries[index]
