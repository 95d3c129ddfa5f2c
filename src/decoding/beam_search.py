"""
Frame-synchronous beam search over an emission matrix.

Hypotheses advance one frame at a time. Every active hypothesis is extended
with every label, and the best ``beam_size`` extensions over the whole
candidate set survive (a global beam, not a per-hypothesis one).
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

import torch

from src.decoding.viterbi import ArrayLike, collapse_repeats, prepare_emissions, prepare_transitions
from src.utils.config import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass
class BeamHypothesis:
    """Partial frame path and its cumulative score."""

    labels: List[int]
    score: float

    @property
    def last_label(self) -> Optional[int]:
        return self.labels[-1] if self.labels else None


@dataclass
class BeamSearchResult:
    """
    Outcome of a beam search.

    Attributes:
        path: Best frame path, one label per frame
        labels: ``path`` with consecutive repeats merged
        score: Cumulative score of the best hypothesis
    """

    path: List[int] = field(default_factory=list)
    labels: List[int] = field(default_factory=list)
    score: float = 0.0


class BeamSearchDecoder:
    """
    Free decoding of an emission matrix with a width-bounded beam.

    Candidates with exactly equal scores keep their enumeration order (lower
    hypothesis index first, then lower label index), so decoding is
    deterministic. With ``beam_size=1`` the search reduces to greedy
    arg-max decoding.

    Args:
        beam_size: Number of hypotheses kept after every frame
        transitions: Optional (V, V) transition scores indexed
            ``transitions[previous_label, next_label]``

    Raises:
        ConfigurationError: If beam_size is not a positive integer

    Example:
        >>> decoder = BeamSearchDecoder(beam_size=4)
        >>> result = decoder.decode(torch.log_softmax(torch.randn(10, 5), dim=-1))
        >>> len(result.path)
        10
    """

    def __init__(self, beam_size: int, transitions: Optional[ArrayLike] = None):
        if isinstance(beam_size, bool) or not isinstance(beam_size, int) or beam_size <= 0:
            raise ConfigurationError(f"beam_size must be a positive integer, got {beam_size!r}")

        self.beam_size = beam_size
        self.transitions = None if transitions is None else torch.as_tensor(transitions).detach()

    def decode(self, emissions: ArrayLike) -> BeamSearchResult:
        """
        Find the best-scoring frame path.

        Args:
            emissions: Scores of shape (T, V)

        Returns:
            BeamSearchResult for the best hypothesis after the last frame.
            An input without frames yields an empty result.
        """
        emissions = prepare_emissions(emissions)
        num_frames, num_labels = emissions.shape
        if num_frames == 0:
            return BeamSearchResult()

        transitions = prepare_transitions(self.transitions, num_labels, emissions.device)

        hypotheses = [BeamHypothesis(labels=[], score=0.0)]
        for t in range(num_frames):
            hypotheses = self._step(hypotheses, emissions[t], transitions)

        best = hypotheses[0]
        logger.debug(f"Beam search finished after {num_frames} frames, best score {best.score:.4f}")
        return BeamSearchResult(path=list(best.labels), labels=collapse_repeats(best.labels), score=best.score)

    def _step(
        self,
        hypotheses: List[BeamHypothesis],
        frame: torch.Tensor,
        transitions: torch.Tensor,
    ) -> List[BeamHypothesis]:
        """Extend every hypothesis by one frame and keep the global top-K."""
        scores = torch.tensor([hyp.score for hyp in hypotheses], dtype=frame.dtype, device=frame.device)

        if hypotheses[0].last_label is None:
            local = frame.unsqueeze(0)
        else:
            previous = torch.tensor([hyp.last_label for hyp in hypotheses], device=frame.device)
            local = frame.unsqueeze(0) + transitions[previous]

        candidates = (scores.unsqueeze(1) + local).flatten()  # row-major: (hypothesis, label)
        order = torch.sort(candidates, descending=True, stable=True).indices[: self.beam_size]

        num_labels = frame.shape[0]
        survivors = []
        for index in order.tolist():
            parent, label = divmod(index, num_labels)
            survivors.append(
                BeamHypothesis(
                    labels=hypotheses[parent].labels + [label],
                    score=float(candidates[index]),
                )
            )
        return survivors
