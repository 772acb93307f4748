"""Tests for duplicate grouping."""

import pytest

from notegraph.dedup import DuplicateGroup, find_duplicates, summarize_groups
from notegraph.errors import InvalidArgument
from notegraph.evaluate import PairwiseEvaluator, SimilarityScore


def _score(a, b, value):
    a, b = sorted((a, b))
    return SimilarityScore(a, b, value, value, 0.0, 0.0)


def test_hello_world_scenario(make_note):
    notes = [
        make_note("A", "hello world"),
        make_note("B", "hello world!"),
        make_note("C", "goodbye"),
    ]
    evaluator = PairwiseEvaluator()
    scores = [evaluator.evaluate(a, b) for i, a in enumerate(notes) for b in notes[i + 1 :]]

    groups = find_duplicates(notes, scores, 0.8)
    assert len(groups) == 1
    assert groups[0].note_ids == ("A", "B")
    assert "C" not in groups[0].note_ids


def test_grouping_is_transitive(make_note):
    notes = [make_note("A"), make_note("B", day=1), make_note("C", day=2)]
    scores = [_score("A", "B", 0.9), _score("B", "C", 0.9), _score("A", "C", 0.4)]
    groups = find_duplicates(notes, scores, 0.85)
    assert len(groups) == 1
    assert set(groups[0].note_ids) == {"A", "B", "C"}
    assert groups[0].min_similarity == 0.4
    assert groups[0].similarity == pytest.approx((0.9 + 0.9 + 0.4) / 3)


def test_singletons_are_not_groups(make_note):
    notes = [make_note("A"), make_note("B")]
    assert find_duplicates(notes, [_score("A", "B", 0.5)], 0.85) == []


def test_group_ordering(make_note):
    notes = [
        make_note("late1", day=10),
        make_note("late2", day=11),
        make_note("early1", day=1),
        make_note("early2", day=2),
        make_note("big1", day=5),
        make_note("big2", day=6),
        make_note("big3", day=7),
    ]
    scores = [
        _score("late1", "late2", 0.9),
        _score("early1", "early2", 0.9),
        _score("big1", "big2", 0.9),
        _score("big2", "big3", 0.9),
    ]
    groups = find_duplicates(notes, scores, 0.85)
    assert [g.note_ids for g in groups] == [
        ("big1", "big2", "big3"),
        ("early1", "early2"),
        ("late1", "late2"),
    ]
    assert groups[1].group_id == "group-early1"


def test_members_ordered_by_creation(make_note):
    notes = [make_note("x", day=3), make_note("y", day=1)]
    groups = find_duplicates(notes, [_score("x", "y", 0.99)], 0.85)
    assert groups[0].note_ids == ("y", "x")
    assert groups[0].earliest == notes[1].created_at


def test_missing_member_pairs_scored_by_evaluator(make_note):
    notes = [make_note("A", "same"), make_note("B", "same"), make_note("C", "same")]
    scores = [_score("A", "B", 1.0), _score("B", "C", 1.0)]
    groups = find_duplicates(notes, scores, 0.85, evaluator=PairwiseEvaluator())
    assert groups[0].similarity == 1.0


def test_suggested_action():
    group = DuplicateGroup("g", ("a", "b"), 0.97, 0.97, None)
    assert group.suggested_action == "merge"
    assert DuplicateGroup("g", ("a", "b"), 0.9, 0.9, None).suggested_action == "review"


def test_invalid_threshold(make_note):
    with pytest.raises(InvalidArgument):
        find_duplicates([make_note("A")], [], 1.5)


def test_summarize_groups(make_note):
    notes = [make_note("A"), make_note("B"), make_note("C")]
    groups = find_duplicates(notes, [_score("A", "B", 0.99), _score("B", "C", 0.99)], 0.85)
    report = summarize_groups(groups, total_notes=10)
    assert "1 duplicate groups covering 3 of 10 notes" in report
    assert "2 notes are redundant" in report
    assert "(merge)" in report
    assert summarize_groups([], 4) == "No duplicates found among 4 notes."
