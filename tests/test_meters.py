"""
Tests for edit-distance and average meters.

Tests cover:
- Substitution, insertion and deletion counting on known examples
- Empty hypothesis and reference
- Accumulation and value() layout of EditDistanceMeter
- Word-level error rate verified against the jiwer library
- AverageValueMeter mean and variance
"""

import jiwer
import pytest

from src.evaluation.meters import AverageValueMeter, EditCounts, EditDistanceMeter, edit_distance


class TestEditDistance:
    """Test the decomposed Levenshtein alignment."""

    def test_identical_sequences(self):
        """Test identical sequences have no edits."""
        counts = edit_distance(list("cat"), list("cat"))

        assert counts == EditCounts(substitutions=0, insertions=0, deletions=0, reference_length=3)
        assert counts.errors == 0

    def test_single_substitution(self):
        """Test one replaced token counts as a substitution."""
        counts = edit_distance(list("bat"), list("cat"))

        assert counts.substitutions == 1
        assert counts.insertions == 0
        assert counts.deletions == 0

    def test_single_insertion(self):
        """Test an extra hypothesis token counts as an insertion."""
        counts = edit_distance(list("cats"), list("cat"))

        assert counts.insertions == 1
        assert counts.errors == 1

    def test_single_deletion(self):
        """Test a missing reference token counts as a deletion."""
        counts = edit_distance(list("ca"), list("cat"))

        assert counts.deletions == 1
        assert counts.errors == 1

    def test_empty_hypothesis(self):
        """Test an empty hypothesis deletes every reference token."""
        counts = edit_distance([], list("hello"))

        assert counts.deletions == 5
        assert counts.insertions == 0
        assert counts.substitutions == 0
        assert counts.reference_length == 5

    def test_empty_reference(self):
        """Test an empty reference turns every hypothesis token into an insertion."""
        counts = edit_distance(list("hi"), [])

        assert counts.insertions == 2
        assert counts.reference_length == 0

    def test_both_empty(self):
        """Test two empty sequences."""
        assert edit_distance([], []).errors == 0

    def test_total_is_symmetric(self):
        """Test the total number of edits doesn't depend on argument order."""
        pairs = [
            (list("kitten"), list("sitting")),
            (list("flaw"), list("lawn")),
            (["the", "cat", "sat"], ["a", "cat", "sat", "down"]),
        ]

        for a, b in pairs:
            assert edit_distance(a, b).errors == edit_distance(b, a).errors
            assert edit_distance(a, a).errors == 0
            assert edit_distance(a, b).errors <= max(len(a), len(b))

    def test_known_distance(self):
        """Test the classic kitten/sitting example."""
        counts = edit_distance(list("sitting"), list("kitten"))

        assert counts.errors == 3
        assert counts.substitutions == 2
        assert counts.insertions == 1

    def test_word_tokens(self):
        """Test sequences of words are compared element-wise."""
        counts = edit_distance(["the", "cat"], ["the", "hat"])

        assert counts.substitutions == 1
        assert counts.reference_length == 2


class TestEditDistanceMeter:
    """Test accumulation of edit counts."""

    def test_initial_value(self):
        """Test a fresh meter reports zero error rate."""
        meter = EditDistanceMeter()

        assert meter.value() == [0.0, 0, 0, 0, 0]
        assert meter.error_rate() == 0.0

    @pytest.mark.parametrize(
        "hypothesis, expected",
        [
            (["c", "a", "t"], [0.0, 0, 0, 0, 0]),
            (["b", "a", "t"], [100.0 / 3, 1, 0, 0, 1]),
            (["c", "a"], [100.0 / 3, 1, 1, 0, 0]),
        ],
    )
    def test_scenarios(self, hypothesis, expected):
        """Test rate and breakdown against the reference "cat"."""
        meter = EditDistanceMeter()
        meter.add(hypothesis, ["c", "a", "t"])

        assert meter.value() == pytest.approx(expected)

    def test_add_returns_counts(self):
        """Test add() returns the counts of that comparison only."""
        meter = EditDistanceMeter()
        meter.add(list("xyz"), list("abc"))

        counts = meter.add(list("ca"), list("cat"))

        assert counts.deletions == 1
        assert counts.errors == 1

    def test_accumulation(self):
        """Test counts and reference lengths accumulate across calls."""
        meter = EditDistanceMeter()
        meter.add(list("ca"), list("cat"))
        meter.add(list("dig"), list("dog"))

        rate, edits, deletions, insertions, substitutions = meter.value()

        assert edits == 2
        assert deletions == 1
        assert insertions == 0
        assert substitutions == 1
        assert rate == pytest.approx(100.0 * 2 / 6)

    def test_error_rate_can_exceed_hundred(self):
        """Test insertions can push the error rate above 100%."""
        meter = EditDistanceMeter()
        meter.add(list("abcd"), list("a"))

        assert meter.error_rate() == pytest.approx(300.0)

    def test_reset(self):
        """Test reset() clears all totals."""
        meter = EditDistanceMeter()
        meter.add(list("abc"), list("xyz"))
        meter.reset()

        assert meter.value() == [0.0, 0, 0, 0, 0]
        assert meter.n == 0

    def test_matches_jiwer_word_error_rate(self):
        """Test corpus-level WER agrees with jiwer."""
        references = [
            "the cat sat on the mat",
            "hello world",
            "a quick brown fox",
        ]
        hypotheses = [
            "the cat sat on mat",
            "hello there world",
            "a quick brown dog jumps",
        ]

        meter = EditDistanceMeter()
        for hypothesis, reference in zip(hypotheses, references):
            meter.add(hypothesis.split(), reference.split())

        expected = jiwer.wer(references, hypotheses)
        assert meter.error_rate() / 100.0 == pytest.approx(expected)


class TestAverageValueMeter:
    """Test the running mean meter."""

    def test_empty(self):
        """Test an empty meter reports zeros."""
        assert AverageValueMeter().value() == [0.0, 0.0]

    def test_mean_and_variance(self):
        """Test mean and population variance of a few values."""
        meter = AverageValueMeter()
        for value in (1.0, 2.0, 3.0):
            meter.add(value)

        mean, variance = meter.value()

        assert mean == pytest.approx(2.0)
        assert variance == pytest.approx(2.0 / 3.0)

    def test_weighted_add(self):
        """Test values added with a weight count n times."""
        meter = AverageValueMeter()
        meter.add(1.0, n=3)
        meter.add(5.0)

        assert meter.value()[0] == pytest.approx(2.0)

    def test_reset(self):
        """Test reset() clears the running totals."""
        meter = AverageValueMeter()
        meter.add(4.0)
        meter.reset()

        assert meter.value() == [0.0, 0.0]
