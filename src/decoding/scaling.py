"""Score normalization modes for sequence criteria."""

import math
from enum import Enum
from typing import Optional, Union

from src.utils.config import ConfigurationError


class CriterionScaleMode(Enum):
    """How the raw forward score of a criterion is normalized into a loss."""

    NONE = 'none'
    INPUT_SZ = 'input_sz'
    INPUT_SZ_SQRT = 'input_sz_sqrt'
    TARGET_SZ = 'target_sz'
    TARGET_SZ_SQRT = 'target_sz_sqrt'
    MAX_SZ = 'max_sz'


def parse_scale_mode(value: Union[str, CriterionScaleMode, None]) -> CriterionScaleMode:
    """
    Resolve a scale mode from an enum member or its (case-insensitive) name.

    Args:
        value: CriterionScaleMode, name such as 'TARGET_SZ' / 'target_sz', or None

    Returns:
        The matching CriterionScaleMode (NONE when value is None)

    Raises:
        ConfigurationError: If the name is not a known scale mode
    """
    if value is None:
        return CriterionScaleMode.NONE
    if isinstance(value, CriterionScaleMode):
        return value
    if isinstance(value, str):
        try:
            return CriterionScaleMode(value.strip().lower())
        except ValueError:
            pass

    valid = ', '.join(mode.value for mode in CriterionScaleMode)
    raise ConfigurationError(f"Invalid scale mode {value!r}. Must be one of: {valid}")


def scale_divisor(
    mode: CriterionScaleMode,
    input_length: int,
    target_length: int,
    max_length: Optional[int] = None,
) -> float:
    """
    Divisor applied to a raw forward score.

    Args:
        mode: Normalization policy
        input_length: Number of frames of the utterance
        target_length: Number of target labels
        max_length: Padded frame count of the batch; defaults to input_length

    Returns:
        A positive divisor (1.0 for degenerate zero lengths)
    """
    if mode is CriterionScaleMode.NONE:
        size = 1
    elif mode is CriterionScaleMode.INPUT_SZ:
        size = input_length
    elif mode is CriterionScaleMode.INPUT_SZ_SQRT:
        size = math.sqrt(input_length)
    elif mode is CriterionScaleMode.TARGET_SZ:
        size = target_length
    elif mode is CriterionScaleMode.TARGET_SZ_SQRT:
        size = math.sqrt(target_length)
    elif mode is CriterionScaleMode.MAX_SZ:
        size = max_length if max_length is not None else input_length
    else:
        raise ConfigurationError(f"Unsupported scale mode: {mode}")

    return float(size) if size > 0 else 1.0
