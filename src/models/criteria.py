"""
Alignment-based sequence criteria.

ForceAlignmentCriterion scores the target alone; AutoSegmentationCriterion
normalizes that score by all label paths. Both delegate the target-side
dynamic program to the ForcedAlignmentDecoder they own.
"""

import logging
from typing import Optional, Sequence, Union

import torch

from src.decoding.scaling import scale_divisor
from src.decoding.viterbi import full_connection_score, prepare_emissions
from src.models.base_criterion import SequenceCriterion

logger = logging.getLogger(__name__)


class ForceAlignmentCriterion(SequenceCriterion):
    """
    Negative forced-alignment score of the target, divided by the scale.

    Example:
        >>> criterion = ForceAlignmentCriterion(num_labels=5, scale_mode='target_sz')
        >>> emissions = torch.log_softmax(torch.randn(2, 8, 5), dim=-1)
        >>> criterion(emissions, torch.tensor([[1, 2, 3], [4, 4, -1]])).shape
        torch.Size([2])
    """

    name = 'fac'

    def utterance_loss(
        self,
        emissions: torch.Tensor,
        target: Union[torch.Tensor, Sequence[int]],
        max_length: Optional[int] = None,
    ) -> float:
        return self.aligner.loss(emissions, target, max_length=max_length)


class AutoSegmentationCriterion(SequenceCriterion):
    """
    Auto-segmentation loss: log partition over all paths minus the target score.

    The full-connection term sums over every frame path with the same
    transition scores the forced alignment uses, so the loss is a
    non-negative negative log-likelihood before scaling.
    """

    name = 'asg'

    def utterance_loss(
        self,
        emissions: torch.Tensor,
        target: Union[torch.Tensor, Sequence[int]],
        max_length: Optional[int] = None,
    ) -> float:
        emissions = prepare_emissions(emissions)
        target = torch.as_tensor(target, dtype=torch.long).flatten()

        forced = self.aligner.forward_score(emissions, target)
        full = full_connection_score(emissions, self.transitions)
        divisor = scale_divisor(self.scale_mode, emissions.shape[0], target.numel(), max_length)
        return (full - forced) / divisor
