"""Decoding and alignment over emission matrices."""

from src.decoding.scaling import CriterionScaleMode, parse_scale_mode, scale_divisor
from src.decoding.viterbi import collapse_repeats, full_connection_score, greedy_decode, viterbi_decode
from src.decoding.forced_alignment import Alignment, AlignmentError, ForcedAlignmentDecoder
from src.decoding.beam_search import BeamHypothesis, BeamSearchDecoder, BeamSearchResult

__all__ = [
    'CriterionScaleMode',
    'parse_scale_mode',
    'scale_divisor',
    'collapse_repeats',
    'full_connection_score',
    'greedy_decode',
    'viterbi_decode',
    'Alignment',
    'AlignmentError',
    'ForcedAlignmentDecoder',
    'BeamHypothesis',
    'BeamSearchDecoder',
    'BeamSearchResult',
]
