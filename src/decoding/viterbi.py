"""
Unconstrained frame-level decoding over an emission matrix.

Every decoder in this package works on a single utterance's ``(T, V)``
emission matrix of log-domain scores, optionally combined with a ``(V, V)``
transition matrix indexed as ``transitions[previous_label, next_label]``.
A frame path (one label per frame) becomes a label sequence by merging
consecutive duplicates, see :func:`collapse_repeats`.
"""

import logging
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import torch

from src.utils.config import ConfigurationError

logger = logging.getLogger(__name__)

ArrayLike = Union[torch.Tensor, np.ndarray, Sequence[Sequence[float]]]


def prepare_emissions(emissions: ArrayLike) -> torch.Tensor:
    """
    Convert an utterance's emission scores to a 2-D float64 tensor.

    Args:
        emissions: Scores of shape (T, V)

    Returns:
        Detached float64 tensor of shape (T, V)

    Raises:
        ValueError: If the input is not two-dimensional
    """
    emissions = torch.as_tensor(emissions).detach()
    if emissions.dim() != 2:
        raise ValueError(f"Expected emissions of shape (T, V), got {tuple(emissions.shape)}")
    return emissions.to(dtype=torch.float64)


def prepare_transitions(
    transitions: Optional[ArrayLike],
    num_labels: int,
    device: Optional[torch.device] = None,
) -> torch.Tensor:
    """
    Validate a transition matrix, or build an all-zero one.

    Args:
        transitions: Scores of shape (V, V) or None
        num_labels: Vocabulary size V
        device: Device of the returned tensor

    Returns:
        float64 tensor of shape (V, V)

    Raises:
        ConfigurationError: If the matrix has the wrong shape
    """
    if transitions is None:
        return torch.zeros((num_labels, num_labels), dtype=torch.float64, device=device)

    transitions = torch.as_tensor(transitions).detach().to(dtype=torch.float64, device=device)
    if tuple(transitions.shape) != (num_labels, num_labels):
        raise ConfigurationError(
            f"Transition matrix must have shape ({num_labels}, {num_labels}), "
            f"got {tuple(transitions.shape)}"
        )
    return transitions


def collapse_repeats(path: Union[torch.Tensor, Sequence[int]]) -> List[int]:
    """
    Merge runs of identical consecutive labels.

    Example:
        >>> collapse_repeats([3, 3, 1, 1, 1, 3])
        [3, 1, 3]
    """
    if isinstance(path, torch.Tensor):
        path = path.tolist()

    labels: List[int] = []
    for label in path:
        label = int(label)
        if not labels or labels[-1] != label:
            labels.append(label)
    return labels


def full_connection_score(emissions: ArrayLike, transitions: Optional[ArrayLike] = None) -> float:
    """
    Log-sum-exp of the scores of every frame path.

    This is the normalizer of the auto-segmentation criterion. The recursion
    stays in log space, so arbitrarily long inputs neither overflow nor
    underflow.

    Args:
        emissions: Scores of shape (T, V)
        transitions: Optional (V, V) transition scores

    Returns:
        Log partition value (0.0 for an empty matrix)
    """
    emissions = prepare_emissions(emissions)
    num_frames, num_labels = emissions.shape
    if num_frames == 0:
        return 0.0

    trans = prepare_transitions(transitions, num_labels, emissions.device)

    alpha = emissions[0].clone()
    for t in range(1, num_frames):
        alpha = torch.logsumexp(alpha.unsqueeze(1) + trans, dim=0) + emissions[t]

    return float(torch.logsumexp(alpha, dim=0))


def viterbi_decode(
    emissions: ArrayLike,
    transitions: Optional[ArrayLike] = None,
) -> Tuple[torch.Tensor, float]:
    """
    Best-scoring frame path without any target constraint.

    Args:
        emissions: Scores of shape (T, V)
        transitions: Optional (V, V) transition scores

    Returns:
        Tuple of (path, score) where path is a LongTensor of length T. Ties are
        resolved towards the lower label index.
    """
    emissions = prepare_emissions(emissions)
    num_frames, num_labels = emissions.shape
    if num_frames == 0:
        return torch.empty(0, dtype=torch.long), 0.0

    trans = prepare_transitions(transitions, num_labels, emissions.device)

    score = emissions[0].clone()
    backpointers = torch.zeros((num_frames, num_labels), dtype=torch.long)

    for t in range(1, num_frames):
        candidates = score.unsqueeze(1) + trans  # [prev, next]
        best_prev = torch.argmax(candidates, dim=0)
        backpointers[t] = best_prev.cpu()
        score = candidates.gather(0, best_prev.unsqueeze(0)).squeeze(0) + emissions[t]

    last = int(torch.argmax(score))
    best_score = float(score[last])

    path = torch.empty(num_frames, dtype=torch.long)
    path[-1] = last
    for t in range(num_frames - 1, 0, -1):
        path[t - 1] = backpointers[t, path[t]]

    return path, best_score


def greedy_decode(emissions: ArrayLike, transitions: Optional[ArrayLike] = None) -> torch.Tensor:
    """
    Pick the arg-max label frame by frame.

    Each frame is scored with the transition from the label chosen on the
    previous frame. The first maximal index wins ties.

    Args:
        emissions: Scores of shape (T, V)
        transitions: Optional (V, V) transition scores

    Returns:
        LongTensor frame path of length T
    """
    emissions = prepare_emissions(emissions)
    num_frames, num_labels = emissions.shape
    trans = prepare_transitions(transitions, num_labels, emissions.device)

    path = torch.empty(num_frames, dtype=torch.long)
    previous = None
    for t in range(num_frames):
        scores = emissions[t] if previous is None else emissions[t] + trans[previous]
        previous = int(torch.argmax(scores))
        path[t] = previous

    return path
