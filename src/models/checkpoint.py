"""
Saving and loading evaluation checkpoints.

A checkpoint bundles the network (a pickled ``torch.nn.Module``), the
criterion description and the configuration the model was trained with.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import torch

from src.models.base_criterion import SequenceCriterion
from src.models.criterion_factory import CriterionFactory

logger = logging.getLogger(__name__)

CHECKPOINT_VERSION = 1


def save_checkpoint(
    path: Union[str, Path],
    network: torch.nn.Module,
    criterion: SequenceCriterion,
    config: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Write network, criterion and configuration to one file.

    Args:
        path: Output file path; parent directories are created
        network: Network producing (B, T, V) emission scores
        criterion: Criterion whose description is stored
        config: Configuration to restore with the model
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    torch.save(
        {
            'version': CHECKPOINT_VERSION,
            'network': network,
            'criterion': criterion.to_config(),
            'config': dict(config or {}),
        },
        path,
    )
    logger.info(f"Saved checkpoint to {path}")


def load_checkpoint(
    path: Union[str, Path],
    map_location: Union[str, torch.device] = 'cpu',
) -> Tuple[Dict[str, Any], torch.nn.Module, SequenceCriterion]:
    """
    Load a checkpoint written by save_checkpoint().

    Args:
        path: Checkpoint file
        map_location: Device to map tensors to

    Returns:
        Tuple of (config, network, criterion)

    Raises:
        FileNotFoundError: If the checkpoint doesn't exist
        RuntimeError: If the file cannot be read or lacks required entries
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Checkpoint not found: {path}")

    logger.info(f"Loading checkpoint from {path}")
    try:
        # The network is stored as a pickled module, not as bare weights
        payload = torch.load(path, map_location=map_location, weights_only=False)
    except Exception as e:
        logger.error(f"Failed to load checkpoint: {e}")
        raise RuntimeError(f"Checkpoint loading failed: {e}") from e

    missing = [key for key in ('network', 'criterion') if key not in payload]
    if missing:
        raise RuntimeError(f"Invalid checkpoint {path}: missing {', '.join(missing)}")

    network = payload['network']
    criterion = CriterionFactory.create_criterion(payload['criterion'])
    config = payload.get('config') or {}

    num_parameters = sum(p.numel() for p in network.parameters())
    logger.info(f"Loaded network with {num_parameters:,} parameters and {criterion}")

    return config, network, criterion
