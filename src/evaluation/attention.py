"""Per-utterance export of alignment ("attention") maps."""

import logging
from pathlib import Path
from typing import Sequence, Union

import numpy as np
import torch

logger = logging.getLogger(__name__)


def attention_key(uid: Union[int, str], letters: Sequence[str], eos_token: str = '<eos>') -> str:
    """
    Key identifying an exported map: the uid followed by the decoded letters.

    Example:
        >>> attention_key(3, ['c', 'a', 't'])
        '3-c-a-t-<eos>'
    """
    return '-'.join([str(uid), *letters, eos_token])


def export_attention(
    directory: Union[str, Path],
    uid: Union[int, str],
    letters: Sequence[str],
    attention: Union[torch.Tensor, np.ndarray],
    utterance_id: str = '',
    eos_token: str = '<eos>',
) -> Path:
    """
    Write one utterance's alignment map to ``<directory>/<uid>_attn.npz``.

    The archive holds ``key`` (see attention_key), ``utterance_id`` and the
    ``attention`` matrix. Every utterance writes its own file.

    Args:
        directory: Output directory, created if missing
        uid: Running utterance number
        letters: Decoded letters used in the key
        attention: Map of shape (frames, target positions)
        utterance_id: Dataset identifier of the utterance
        eos_token: Token closing the key

    Returns:
        Path of the written file
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)

    if isinstance(attention, torch.Tensor):
        attention = attention.detach().cpu().numpy()

    filename = directory / f"{uid}_attn.npz"
    np.savez(
        filename,
        key=np.array(attention_key(uid, letters, eos_token)),
        utterance_id=np.array(utterance_id),
        attention=np.asarray(attention),
    )
    logger.debug(f"Wrote attention map {attention.shape} to {filename}")
    return filename
