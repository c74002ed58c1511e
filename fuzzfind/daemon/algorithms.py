"""Fuzzy scoring: subsequence matching with boundary and run bonuses.

A pattern matches a candidate when every pattern character appears in the
candidate in order. The matched span is first found greedily left to right
and then tightened right to left, so "fg" in "fffg" reports the last "f".

Scores reward:
- the first pattern character landing on a word start (weighted double)
- word boundaries and camelCase / digit transitions
- consecutive runs of matched characters
- short candidates (small bonus)
and penalise gaps inside the matched span.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple, Union

# Score weights
SCORE_MATCH = 16
SCORE_GAP_START = -3
SCORE_GAP_EXTENSION = -1
BONUS_BOUNDARY = SCORE_MATCH // 2
BONUS_NON_WORD = SCORE_MATCH // 2
BONUS_CAMEL123 = BONUS_BOUNDARY + SCORE_GAP_EXTENSION
BONUS_CONSECUTIVE = -(SCORE_GAP_START + SCORE_GAP_EXTENSION)
BONUS_FIRST_CHAR_MULTIPLIER = 2
MAX_LENGTH_BONUS = 8
LENGTH_BONUS_STEP = 8

# Sentinel score of candidates filtered with an empty pattern
UNSCORED = -1

# Character classes
CHAR_NON_WORD = 0
CHAR_LOWER = 1
CHAR_UPPER = 2
CHAR_LETTER = 3
CHAR_NUMBER = 4

Folded = Union[str, List[str]]


@dataclass(frozen=True)
class MatchResult:
    """Score and matched character indices of one candidate."""
    score: int
    positions: Tuple[int, ...] = field(default_factory=tuple)

    @property
    def scored(self) -> bool:
        return self.score != UNSCORED


EMPTY_MATCH = MatchResult(score=UNSCORED)


def is_case_sensitive(pattern: str) -> bool:
    """Smart case: any uppercase letter makes matching case-sensitive."""
    return any(c.isupper() for c in pattern)


def char_class(c: str) -> int:
    if c.islower():
        return CHAR_LOWER
    if c.isupper():
        return CHAR_UPPER
    if c.isalpha():
        return CHAR_LETTER
    if c.isdigit():
        return CHAR_NUMBER
    return CHAR_NON_WORD


def bonus_at(prev_class: int, cls: int) -> int:
    if prev_class == CHAR_NON_WORD and cls != CHAR_NON_WORD:
        return BONUS_BOUNDARY
    if (prev_class == CHAR_LOWER and cls == CHAR_UPPER) or \
            (prev_class != CHAR_NUMBER and cls == CHAR_NUMBER):
        return BONUS_CAMEL123
    if cls == CHAR_NON_WORD:
        return BONUS_NON_WORD
    return 0


def fold(text: str, case_sensitive: bool) -> Folded:
    """Per code point case folding that keeps indices aligned with ``text``."""
    if case_sensitive:
        return text
    lowered = text.lower()
    if len(lowered) == len(text):
        return lowered
    return [c.lower() for c in text]


def _find_span(folded: Folded, pattern: Folded) -> Optional[Tuple[int, int]]:
    """Locate the tightest span ending at the first complete match."""
    pidx = 0
    start = -1
    end = -1
    plen = len(pattern)
    for idx, c in enumerate(folded):
        if c == pattern[pidx]:
            if start < 0:
                start = idx
            pidx += 1
            if pidx == plen:
                end = idx + 1
                break
    if end < 0:
        return None

    pidx = plen - 1
    for idx in range(end - 1, start - 1, -1):
        if folded[idx] == pattern[pidx]:
            pidx -= 1
            if pidx < 0:
                start = idx
                break
    return start, end


def _score_span(
    text: str,
    folded: Folded,
    pattern: Folded,
    start: int,
    end: int
) -> Tuple[int, List[int]]:
    positions: List[int] = []
    pidx = 0
    score = 0
    in_gap = False
    consecutive = 0
    first_bonus = 0
    prev_class = char_class(text[start - 1]) if start > 0 else CHAR_NON_WORD

    for idx in range(start, end):
        cls = char_class(text[idx])
        if pidx < len(pattern) and folded[idx] == pattern[pidx]:
            positions.append(idx)
            score += SCORE_MATCH
            bonus = bonus_at(prev_class, cls)
            if consecutive == 0:
                first_bonus = bonus
            else:
                # Break consecutive chunk on a new word boundary
                if bonus == BONUS_BOUNDARY:
                    first_bonus = bonus
                bonus = max(bonus, first_bonus, BONUS_CONSECUTIVE)
            if pidx == 0:
                score += bonus * BONUS_FIRST_CHAR_MULTIPLIER
            else:
                score += bonus
            in_gap = False
            consecutive += 1
            pidx += 1
        else:
            score += SCORE_GAP_EXTENSION if in_gap else SCORE_GAP_START
            in_gap = True
            consecutive = 0
            first_bonus = 0
        prev_class = cls

    return score, positions


def fuzzy_match(
    pattern: str,
    text: str,
    case_sensitive: Optional[bool] = None
) -> Optional[MatchResult]:
    """
    Score ``text`` against ``pattern``.

    Args:
        pattern: Query typed by the user
        text: Candidate text
        case_sensitive: Force case handling, smart case when None

    Returns:
        EMPTY_MATCH for an empty pattern, None when ``text`` does not contain
        the pattern as a subsequence, otherwise a positive score and the
        matched indices into ``text``.
    """
    if not pattern:
        return EMPTY_MATCH
    if len(pattern) > len(text):
        return None
    if case_sensitive is None:
        case_sensitive = is_case_sensitive(pattern)

    folded_pattern = fold(pattern, case_sensitive)
    folded_text = fold(text, case_sensitive)
    span = _find_span(folded_text, folded_pattern)
    if span is None:
        return None

    score, positions = _score_span(text, folded_text, folded_pattern, *span)
    score += max(0, MAX_LENGTH_BONUS - len(text) // LENGTH_BONUS_STEP)
    # Every subsequence match ranks above "no match"
    return MatchResult(score=max(score, 1), positions=tuple(positions))


def carve(text: str, result_type: str) -> Tuple[int, str]:
    """
    Cut the searchable part out of a candidate.

    Returns the offset of the searchable part inside ``text`` and the part
    itself. ``line`` candidates are searched after the first tab,
    ``file_line`` and ``ag`` candidates (``file:line:col:content``) in
    their content only. Candidates not in the expected shape are searched
    whole.
    """
    if result_type == "line":
        tab = text.find("\t")
        if tab >= 0:
            return tab + 1, text[tab + 1:]
    elif result_type in ("file_line", "ag"):
        parts = text.split(":", 3)
        if len(parts) == 4:
            offset = len(text) - len(parts[3])
            return offset, parts[3]
    return 0, text


def split_file_line(text: str) -> Tuple[str, str]:
    """Split ``file:line:col:content`` into the file and the remainder."""
    file, sep, rest = text.partition(":")
    if not sep:
        return "", text
    return file, rest


class Matcher:
    """Scores candidates of one result type against one pattern."""

    def __init__(self, pattern: str, result_type: str = "plain"):
        self.pattern = pattern
        self.result_type = result_type
        self.case_sensitive = is_case_sensitive(pattern)

    def match(self, candidate: str) -> Optional[MatchResult]:
        """Score a candidate; positions index into the full candidate."""
        if not self.pattern:
            return EMPTY_MATCH
        offset, searchable = carve(candidate, self.result_type)
        result = fuzzy_match(self.pattern, searchable, self.case_sensitive)
        if result is None or offset == 0:
            return result
        return MatchResult(
            score=result.score,
            positions=tuple(p + offset for p in result.positions)
        )

    def match_positions(self, text: str) -> Sequence[int]:
        """Matched indices of ``text`` scored whole, empty when no match."""
        result = fuzzy_match(self.pattern, text, self.case_sensitive)
        return result.positions if result is not None else ()
