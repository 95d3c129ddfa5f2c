"""
Base interface for sequence criteria.

A criterion pairs a loss with the decoding operations the evaluation driver
needs. The decoding work itself is done by the pure functions and decoders
in ``src.decoding``; a criterion only holds the shared parameters (label
count, transition scores, scale mode) and hands them to those operations.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Union

import torch

from src.decoding.beam_search import BeamSearchDecoder
from src.decoding.forced_alignment import ForcedAlignmentDecoder
from src.decoding.scaling import CriterionScaleMode, parse_scale_mode
from src.decoding.viterbi import prepare_emissions, prepare_transitions, viterbi_decode
from src.utils.config import ConfigurationError


class SequenceCriterion(ABC):
    """
    Abstract base class for criteria scored on (T, V) emission matrices.

    Subclasses implement ``utterance_loss``; batching, teacher-forced
    decoding, Viterbi and beam decoding and alignment maps are shared.

    Args:
        num_labels: Vocabulary size V
        transitions: Optional (V, V) transition scores indexed
            ``transitions[previous_label, next_label]``; zeros when omitted
        scale_mode: Loss normalization, a CriterionScaleMode or its name

    Raises:
        ConfigurationError: If a parameter is invalid

    Example:
        >>> class ZeroLoss(SequenceCriterion):
        ...     name = 'zero'
        ...     def utterance_loss(self, emissions, target, max_length=None):
        ...         return 0.0
        >>> criterion = ZeroLoss(num_labels=4)
    """

    name: str = ''

    def __init__(
        self,
        num_labels: int,
        transitions: Optional[Union[torch.Tensor, Sequence[Sequence[float]]]] = None,
        scale_mode: Union[str, CriterionScaleMode, None] = CriterionScaleMode.NONE,
    ):
        if isinstance(num_labels, bool) or not isinstance(num_labels, int) or num_labels <= 0:
            raise ConfigurationError(f"num_labels must be a positive integer, got {num_labels!r}")

        self.num_labels = num_labels
        self.transitions = prepare_transitions(transitions, num_labels)
        self.scale_mode = parse_scale_mode(scale_mode)
        self.aligner = ForcedAlignmentDecoder(num_labels, self.transitions, self.scale_mode)
        self.training = True

    @abstractmethod
    def utterance_loss(
        self,
        emissions: torch.Tensor,
        target: Union[torch.Tensor, Sequence[int]],
        max_length: Optional[int] = None,
    ) -> float:
        """
        Loss of a single utterance.

        Args:
            emissions: Scores of shape (T, V)
            target: Unpadded target labels
            max_length: Padded frame count of the batch

        Returns:
            Scaled scalar loss

        Raises:
            AlignmentError: If the target cannot be aligned to the frames
        """
        raise NotImplementedError("Subclasses must implement utterance_loss()")

    def forward(
        self,
        emissions: torch.Tensor,
        targets: torch.Tensor,
        input_lengths: Optional[torch.Tensor] = None,
        target_lengths: Optional[torch.Tensor] = None,
    ) -> torch.Tensor:
        """
        Loss of every utterance in a batch.

        Args:
            emissions: (B, T, V) batch or a single (T, V) utterance
            targets: (B, L) padded targets, or (L,) for a single utterance.
                Negative indices are padding.
            input_lengths: Optional (B,) frame counts
            target_lengths: Optional (B,) target lengths

        Returns:
            float tensor of shape (B,)
        """
        emissions = torch.as_tensor(emissions)
        targets = torch.as_tensor(targets)
        if emissions.dim() == 2:
            emissions = emissions.unsqueeze(0)
            targets = targets.reshape(1, -1)

        max_length = emissions.shape[1]
        losses = []
        for b in range(emissions.shape[0]):
            num_frames = int(input_lengths[b]) if input_lengths is not None else max_length
            target = targets[b]
            if target_lengths is not None:
                target = target[: int(target_lengths[b])]
            target = target[target >= 0]
            losses.append(self.utterance_loss(emissions[b, :num_frames], target, max_length=max_length))

        return torch.tensor(losses, dtype=torch.float32)

    def __call__(self, *args, **kwargs) -> torch.Tensor:
        return self.forward(*args, **kwargs)

    def decoder(self, emissions: torch.Tensor, target: Union[torch.Tensor, Sequence[int]]) -> torch.Tensor:
        """
        Teacher-forced scores of one utterance.

        The forced alignment of the target supplies the ground-truth label of
        every frame; frame t is then scored with the transition from the
        ground-truth label of frame t-1 instead of the model's own choice.

        Args:
            emissions: Scores of shape (T, V)
            target: Unpadded target labels

        Returns:
            Scores of shape (T, V); the arg-max over V is the teacher-forced path
        """
        emissions = prepare_emissions(emissions)
        scores = emissions.clone()
        if emissions.shape[0] > 1:
            ground_truth = self.aligner.viterbi_path(emissions, target)
            scores[1:] += self.transitions.to(scores.device)[ground_truth[:-1].to(scores.device)]
        return scores

    def viterbi_path(self, emissions: torch.Tensor) -> torch.Tensor:
        """Best unconstrained frame path of one utterance, LongTensor of length T."""
        path, _ = viterbi_decode(emissions, self.transitions)
        return path

    def beam_path(self, emissions: torch.Tensor, beam_size: int) -> List[int]:
        """
        Best frame path found by beam search.

        Raises:
            ConfigurationError: If beam_size is not a positive integer
        """
        return BeamSearchDecoder(beam_size, self.transitions).decode(emissions).path

    def alignment_map(self, emissions: torch.Tensor, target: Union[torch.Tensor, Sequence[int]]) -> torch.Tensor:
        """Forced-alignment state posteriors of shape (T, L), the exported attention map."""
        return self.aligner.posteriors(emissions, target)

    def with_scale_mode(self, scale_mode: Union[str, CriterionScaleMode]) -> 'SequenceCriterion':
        """Copy of this criterion with a different loss normalization."""
        criterion = type(self)(self.num_labels, self.transitions, scale_mode)
        criterion.training = self.training
        return criterion

    def eval(self) -> 'SequenceCriterion':
        self.training = False
        return self

    def train(self, mode: bool = True) -> 'SequenceCriterion':
        self.training = mode
        return self

    def to_config(self) -> Dict[str, Any]:
        """Serializable description, the inverse of CriterionFactory.create_criterion()."""
        return {
            'name': self.name,
            'num_labels': self.num_labels,
            'scale_mode': self.scale_mode.value,
            'transitions': self.transitions.clone(),
        }

    def get_info(self) -> Dict[str, Any]:
        """
        Get criterion metadata.

        Returns:
            Dictionary with name, num_labels and scale_mode
        """
        return {
            'name': self.name,
            'num_labels': self.num_labels,
            'scale_mode': self.scale_mode.value,
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(num_labels={self.num_labels}, scale_mode={self.scale_mode.value})"
