"""Tests for the ranked result sequence."""

from fuzzfind.daemon.algorithms import EMPTY_MATCH, MatchResult
from fuzzfind.daemon.ranking import Candidate, RankedResults


def add(results: RankedResults, text: str, score: int, seq: int) -> int:
    return results.add(Candidate(text, seq), MatchResult(score, (0,)))


def test_sorted_by_descending_score():
    results = RankedResults()
    for seq, score in enumerate([5, 40, 12, 33, 1, 40]):
        add(results, f"item{seq}", score, seq)

    assert results.scores() == [40, 40, 33, 12, 5, 1]
    assert len(results) == 6


def test_ties_keep_arrival_order():
    results = RankedResults()
    add(results, "first", 10, 0)
    add(results, "better", 20, 1)
    add(results, "second", 10, 2)
    add(results, "third", 10, 3)

    assert results.texts() == ["better", "first", "second", "third"]
    seqs = [entry.candidate.seq for entry in results if entry.score == 10]
    assert seqs == sorted(seqs)


def test_add_returns_index():
    results = RankedResults()
    assert add(results, "a", 10, 0) == 0
    assert add(results, "b", 30, 1) == 0
    assert add(results, "c", 20, 2) == 1
    assert add(results, "d", 1, 3) == 3


def test_unscored_entries_are_appended():
    results = RankedResults()
    for seq, text in enumerate(["c", "a", "b"]):
        results.add(Candidate(text, seq), EMPTY_MATCH)

    assert results.texts() == ["c", "a", "b"]
    assert all(not entry.positions for entry in results)


def test_window_and_get():
    results = RankedResults()
    for seq in range(5):
        add(results, f"item{seq}", 10 - seq, seq)

    assert [e.text for e in results.window(1, 2)] == ["item1", "item2"]
    assert [e.text for e in results.window(4, 10)] == ["item4"]
    assert results.window(9, 3) == []
    assert results.get(0).text == "item0"
    assert results.get(5) is None
    assert results.get(-1) is None
    assert results[2].text == "item2"
