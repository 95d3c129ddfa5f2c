"""Error meters, evaluation driver and alignment-map export."""

from src.evaluation.meters import AverageValueMeter, EditCounts, EditDistanceMeter, edit_distance
from src.evaluation.attention import attention_key, export_attention
from src.evaluation.evaluator import (
    ErrorSummary,
    EvaluationDriver,
    EvaluationResult,
    UtteranceReport,
    log_results,
)

__all__ = [
    'AverageValueMeter',
    'EditCounts',
    'EditDistanceMeter',
    'edit_distance',
    'attention_key',
    'export_attention',
    'ErrorSummary',
    'EvaluationDriver',
    'EvaluationResult',
    'UtteranceReport',
    'log_results',
]
