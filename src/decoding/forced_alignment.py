"""
Forced alignment of an emission matrix against a known target sequence.

The alignment graph has one state per target position. On every frame the
current state emits its label; between frames a state either repeats
(self-transition) or advances to the next target position. A valid path
starts in the first state on frame 0 and ends in the last state on the last
frame, so every target label is emitted, in order, on at least one frame.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import torch

from src.decoding.scaling import CriterionScaleMode, parse_scale_mode, scale_divisor
from src.decoding.viterbi import ArrayLike, prepare_emissions, prepare_transitions
from src.utils.config import ConfigurationError

logger = logging.getLogger(__name__)

NEG_INF = float('-inf')


class AlignmentError(ValueError):
    """Raised when a target sequence cannot be aligned to the available frames."""
    pass


def _check_reachable(score: float, target_length: int, num_frames: int) -> None:
    if not math.isfinite(score):
        raise AlignmentError(
            f"No alignment of a target of length {target_length} to {num_frames} frames has a finite score"
        )


@dataclass
class Alignment:
    """
    Best forced alignment of one utterance.

    Attributes:
        path: Label emitted on each frame, LongTensor of length T
        states: Target position occupied on each frame, LongTensor of length T
        score: Log-domain score of the path
    """

    path: torch.Tensor
    states: torch.Tensor
    score: float


class ForcedAlignmentDecoder:
    """
    Dynamic programs over the forced-alignment graph of a target sequence.

    ``forward_score`` aggregates all alignments with log-sum-exp,
    ``viterbi`` keeps only the best one and ``posteriors`` returns the
    per-frame state occupancy. All operations are pure functions of the
    emissions, the target, the transition scores and the scale mode.

    Args:
        num_labels: Vocabulary size V
        transitions: Optional (V, V) transition scores indexed
            ``transitions[previous_label, next_label]``
        scale_mode: Loss normalization, a CriterionScaleMode or its name

    Raises:
        ConfigurationError: If num_labels is not positive, the transition
            matrix has the wrong shape, or the scale mode is unknown

    Example:
        >>> decoder = ForcedAlignmentDecoder(num_labels=3)
        >>> emissions = torch.log_softmax(torch.randn(5, 3), dim=-1)
        >>> alignment = decoder.viterbi(emissions, [2, 0])
        >>> alignment.path.shape
        torch.Size([5])
    """

    def __init__(
        self,
        num_labels: int,
        transitions: Optional[ArrayLike] = None,
        scale_mode: Union[str, CriterionScaleMode, None] = CriterionScaleMode.NONE,
    ):
        if isinstance(num_labels, bool) or not isinstance(num_labels, int) or num_labels <= 0:
            raise ConfigurationError(f"num_labels must be a positive integer, got {num_labels!r}")

        self.num_labels = num_labels
        self.transitions = prepare_transitions(transitions, num_labels)
        self.scale_mode = parse_scale_mode(scale_mode)

    def _prepare(self, emissions: ArrayLike, target: Union[torch.Tensor, Sequence[int]]) -> Tuple[torch.Tensor, torch.Tensor]:
        emissions = prepare_emissions(emissions)
        num_frames, num_labels = emissions.shape
        if num_labels != self.num_labels:
            raise ValueError(f"Emissions have {num_labels} labels, decoder expects {self.num_labels}")

        target = torch.as_tensor(target, dtype=torch.long).flatten()
        target_length = target.numel()

        if target_length > num_frames:
            raise AlignmentError(
                f"Target of length {target_length} cannot be aligned to {num_frames} frames"
            )
        if target_length == 0 and num_frames > 0:
            raise AlignmentError(f"Empty target cannot be aligned to {num_frames} frames")
        if target_length > 0 and (int(target.min()) < 0 or int(target.max()) >= self.num_labels):
            raise ValueError(f"Target labels must lie in [0, {self.num_labels})")

        return emissions, target.to(emissions.device)

    def _transition_scores(self, target: torch.Tensor) -> Tuple[torch.Tensor, torch.Tensor]:
        """Self-transition scores (L,) and advance scores (L-1,) along the target."""
        transitions = self.transitions.to(target.device)
        repeat = transitions[target, target]
        advance = transitions[target[:-1], target[1:]]
        return repeat, advance

    def forward_score(self, emissions: ArrayLike, target: Union[torch.Tensor, Sequence[int]]) -> float:
        """
        Log-sum-exp of the scores of every alignment of target to emissions.

        Args:
            emissions: Scores of shape (T, V)
            target: Label sequence of length L <= T

        Returns:
            Forward score in log space

        Raises:
            AlignmentError: If the target is longer than the input or no
                alignment has a finite score
        """
        emissions, target = self._prepare(emissions, target)
        num_frames = emissions.shape[0]
        if num_frames == 0:
            return 0.0

        emit = emissions[:, target]
        repeat, advance = self._transition_scores(target)
        head = torch.full((1,), NEG_INF, dtype=emissions.dtype, device=emissions.device)

        alpha = torch.full_like(emit[0], NEG_INF)
        alpha[0] = emit[0, 0]
        for t in range(1, num_frames):
            stay = alpha + repeat
            move = torch.cat([head, alpha[:-1] + advance])
            alpha = torch.logaddexp(stay, move) + emit[t]

        score = float(alpha[-1])
        _check_reachable(score, target.numel(), num_frames)
        return score

    def loss(
        self,
        emissions: ArrayLike,
        target: Union[torch.Tensor, Sequence[int]],
        max_length: Optional[int] = None,
    ) -> float:
        """
        Negative forward score divided by the configured scale.

        Args:
            emissions: Scores of shape (T, V)
            target: Label sequence of length L <= T
            max_length: Padded frame count of the batch, used by MAX_SZ

        Returns:
            Scaled loss
        """
        emissions, target = self._prepare(emissions, target)
        divisor = scale_divisor(self.scale_mode, emissions.shape[0], target.numel(), max_length)
        return -self.forward_score(emissions, target) / divisor

    def viterbi(self, emissions: ArrayLike, target: Union[torch.Tensor, Sequence[int]]) -> Alignment:
        """
        Best single alignment of target to emissions.

        Ties between repeating and advancing prefer repeating.

        Args:
            emissions: Scores of shape (T, V)
            target: Label sequence of length L <= T

        Returns:
            Alignment with one label and one target position per frame

        Raises:
            AlignmentError: If the target is longer than the input or no
                alignment has a finite score
        """
        emissions, target = self._prepare(emissions, target)
        num_frames = emissions.shape[0]
        if num_frames == 0:
            empty = torch.empty(0, dtype=torch.long)
            return Alignment(path=empty, states=empty.clone(), score=0.0)

        emit = emissions[:, target]
        repeat, advance = self._transition_scores(target)
        head = torch.full((1,), NEG_INF, dtype=emissions.dtype, device=emissions.device)

        advanced = torch.zeros((num_frames, target.numel()), dtype=torch.bool)
        score = torch.full_like(emit[0], NEG_INF)
        score[0] = emit[0, 0]
        for t in range(1, num_frames):
            stay = score + repeat
            move = torch.cat([head, score[:-1] + advance])
            take_move = move > stay
            advanced[t] = take_move.cpu()
            score = torch.where(take_move, move, stay) + emit[t]

        states = torch.empty(num_frames, dtype=torch.long)
        state = target.numel() - 1
        for t in range(num_frames - 1, -1, -1):
            states[t] = state
            if t > 0 and advanced[t, state]:
                state -= 1

        _check_reachable(float(score[-1]), target.numel(), num_frames)
        path = target.cpu()[states]
        return Alignment(path=path, states=states, score=float(score[-1]))

    def viterbi_path(self, emissions: ArrayLike, target: Union[torch.Tensor, Sequence[int]]) -> torch.Tensor:
        """Label emitted on each frame by the best alignment."""
        return self.viterbi(emissions, target).path

    def posteriors(self, emissions: ArrayLike, target: Union[torch.Tensor, Sequence[int]]) -> torch.Tensor:
        """
        Posterior probability of occupying each target position on each frame.

        Computed with the forward-backward algorithm in log space; every row
        sums to one.

        Args:
            emissions: Scores of shape (T, V)
            target: Label sequence of length L <= T

        Returns:
            float64 tensor of shape (T, L)
        """
        emissions, target = self._prepare(emissions, target)
        num_frames = emissions.shape[0]
        target_length = target.numel()
        if num_frames == 0:
            return torch.zeros((0, target_length), dtype=torch.float64)

        emit = emissions[:, target]
        repeat, advance = self._transition_scores(target)
        edge = torch.full((1,), NEG_INF, dtype=emissions.dtype, device=emissions.device)

        alphas = torch.full_like(emit, NEG_INF)
        alphas[0, 0] = emit[0, 0]
        for t in range(1, num_frames):
            stay = alphas[t - 1] + repeat
            move = torch.cat([edge, alphas[t - 1, :-1] + advance])
            alphas[t] = torch.logaddexp(stay, move) + emit[t]

        betas = torch.full_like(emit, NEG_INF)
        betas[-1, -1] = 0.0
        for t in range(num_frames - 2, -1, -1):
            stay = betas[t + 1] + repeat + emit[t + 1]
            move = torch.cat([betas[t + 1, 1:] + advance + emit[t + 1, 1:], edge])
            betas[t] = torch.logaddexp(stay, move)

        log_total = alphas[-1, -1]
        _check_reachable(float(log_total), target_length, num_frames)
        return torch.exp(alphas + betas - log_total).cpu()

    def __repr__(self) -> str:
        return f"ForcedAlignmentDecoder(num_labels={self.num_labels}, scale_mode={self.scale_mode.value})"
