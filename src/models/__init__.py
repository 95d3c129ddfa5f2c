"""Sequence criteria and checkpoint handling."""

from src.models.base_criterion import SequenceCriterion
from src.models.criteria import AutoSegmentationCriterion, ForceAlignmentCriterion
from src.models.criterion_factory import CriterionFactory
from src.models.checkpoint import load_checkpoint, save_checkpoint

__all__ = [
    'SequenceCriterion',
    'ForceAlignmentCriterion',
    'AutoSegmentationCriterion',
    'CriterionFactory',
    'load_checkpoint',
    'save_checkpoint',
]
