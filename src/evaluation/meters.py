"""
Running error-rate and average meters for ASR evaluation.

This module provides Levenshtein-based error counting with a full
substitution / insertion / deletion breakdown. Sequences may hold any
element type that supports equality, so the same meter scores letters,
phonemes and words.
"""

import logging
from dataclasses import dataclass
from typing import Hashable, List, Sequence

logger = logging.getLogger(__name__)


@dataclass
class EditCounts:
    """
    Decomposed edit operations between a hypothesis and a reference.

    Attributes:
        substitutions: Reference tokens replaced by a different token
        insertions: Hypothesis tokens with no reference counterpart
        deletions: Reference tokens missing from the hypothesis
        reference_length: Number of reference tokens
    """

    substitutions: int = 0
    insertions: int = 0
    deletions: int = 0
    reference_length: int = 0

    @property
    def errors(self) -> int:
        """Total number of edits (S + I + D)."""
        return self.substitutions + self.insertions + self.deletions


def edit_distance(hypothesis: Sequence[Hashable], reference: Sequence[Hashable]) -> EditCounts:
    """
    Align two sequences with unit-cost edits and count each operation.

    Among alignments with the minimal number of edits, the backtrace prefers
    a match or substitution, then a deletion, then an insertion.

    Args:
        hypothesis: Decoded sequence
        reference: Ground-truth sequence

    Returns:
        EditCounts for the minimal alignment. Empty inputs are valid: an empty
        hypothesis costs one deletion per reference token and vice versa.

    Example:
        >>> edit_distance(["b", "a", "t"], ["c", "a", "t"])
        EditCounts(substitutions=1, insertions=0, deletions=0, reference_length=3)
    """
    hypothesis = list(hypothesis)
    reference = list(reference)
    n, m = len(reference), len(hypothesis)

    # dp[i][j]: edits between reference[:i] and hypothesis[:j]
    dp = [[0] * (m + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        dp[i][0] = i
    for j in range(1, m + 1):
        dp[0][j] = j

    for i in range(1, n + 1):
        for j in range(1, m + 1):
            cost_sub = 0 if reference[i - 1] == hypothesis[j - 1] else 1
            dp[i][j] = min(
                dp[i - 1][j - 1] + cost_sub,
                dp[i - 1][j] + 1,
                dp[i][j - 1] + 1,
            )

    counts = EditCounts(reference_length=n)
    i, j = n, m
    while i > 0 or j > 0:
        if i > 0 and j > 0:
            cost_sub = 0 if reference[i - 1] == hypothesis[j - 1] else 1
            if dp[i][j] == dp[i - 1][j - 1] + cost_sub:
                counts.substitutions += cost_sub
                i -= 1
                j -= 1
                continue
        if i > 0 and dp[i][j] == dp[i - 1][j] + 1:
            counts.deletions += 1
            i -= 1
        else:
            counts.insertions += 1
            j -= 1

    return counts


class EditDistanceMeter:
    """
    Accumulates edit-distance errors over repeated comparisons.

    The meter never inspects token values beyond equality; end-of-sequence
    truncation and label remapping must already be applied to its inputs.

    Example:
        >>> meter = EditDistanceMeter()
        >>> counts = meter.add(["c", "a"], ["c", "a", "t"])
        >>> meter.value()
        [33.333333333333336, 1, 1, 0, 0]
    """

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        """Clear all running totals."""
        self.n = 0
        self.substitutions = 0
        self.insertions = 0
        self.deletions = 0

    def add(self, hypothesis: Sequence[Hashable], reference: Sequence[Hashable]) -> EditCounts:
        """
        Compare one hypothesis to its reference and add the counts.

        Args:
            hypothesis: Decoded sequence
            reference: Ground-truth sequence

        Returns:
            EditCounts of this comparison alone
        """
        counts = edit_distance(hypothesis, reference)
        self.n += counts.reference_length
        self.substitutions += counts.substitutions
        self.insertions += counts.insertions
        self.deletions += counts.deletions
        return counts

    @property
    def errors(self) -> int:
        return self.substitutions + self.insertions + self.deletions

    def error_rate(self) -> float:
        """Percentage of edits per reference token (0.0 before any reference token)."""
        if self.n == 0:
            return 0.0
        return 100.0 * self.errors / self.n

    def value(self) -> List[float]:
        """
        Snapshot of the running totals.

        Returns:
            [error_rate, edits, deletions, insertions, substitutions] where
            error_rate is a percentage of all reference tokens seen so far
        """
        return [self.error_rate(), self.errors, self.deletions, self.insertions, self.substitutions]


class AverageValueMeter:
    """Running (optionally weighted) mean and variance of scalar values."""

    def __init__(self):
        self.reset()

    def reset(self) -> None:
        self.count = 0.0
        self.total = 0.0
        self.total_squared = 0.0

    def add(self, value: float, n: float = 1.0) -> None:
        value = float(value)
        self.count += n
        self.total += value * n
        self.total_squared += value * value * n

    def value(self) -> List[float]:
        """
        Returns:
            [mean, variance]; both 0.0 while empty
        """
        if self.count <= 0:
            return [0.0, 0.0]

        mean = self.total / self.count
        variance = max(self.total_squared / self.count - mean * mean, 0.0)
        return [mean, variance]
