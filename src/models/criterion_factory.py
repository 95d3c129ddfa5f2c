"""
Criterion factory for creating sequence criteria from configuration.

This module provides a factory pattern for instantiating criteria from the
description stored in checkpoints or configuration files, so the evaluation
code never hard-codes criterion construction.
"""

import logging
from typing import Any, Dict, Type

from src.models.base_criterion import SequenceCriterion
from src.models.criteria import AutoSegmentationCriterion, ForceAlignmentCriterion
from src.utils.config import ConfigurationError

logger = logging.getLogger(__name__)


class CriterionFactory:
    """
    Factory class for creating SequenceCriterion instances from configuration.

    Criteria are selected via config['name'] and built with 'num_labels',
    optional 'transitions' and optional 'scale_mode'.

    Attributes:
        _CRITERION_REGISTRY: Class-level dictionary mapping names to criterion classes

    Example:
        >>> config = {'name': 'asg', 'num_labels': 30, 'scale_mode': 'target_sz'}
        >>> criterion = CriterionFactory.create_criterion(config)
        >>> criterion.get_info()['name']
        'asg'
    """

    _CRITERION_REGISTRY: Dict[str, Type[SequenceCriterion]] = {
        "fac": ForceAlignmentCriterion,
        "asg": AutoSegmentationCriterion,
    }

    @classmethod
    def create_criterion(cls, config: Dict[str, Any]) -> SequenceCriterion:
        """
        Create a criterion instance from its description.

        Args:
            config: Dictionary with:
                - name: Registered criterion name (e.g. 'fac', 'asg')
                - num_labels: Vocabulary size
                - transitions: Optional (V, V) transition scores
                - scale_mode: Optional scale mode name

        Returns:
            Instantiated criterion

        Raises:
            ConfigurationError: If the name is not registered, a required
                field is missing, or a parameter is invalid
        """
        missing = [key for key in ("name", "num_labels") if key not in config]
        if missing:
            raise ConfigurationError(f"Criterion configuration is missing: {', '.join(missing)}")

        name = str(config["name"]).lower()
        logger.info(f"Creating criterion: {name}")

        if name not in cls._CRITERION_REGISTRY:
            available = ", ".join(cls.list_available_criteria())
            raise ConfigurationError(f"Unknown criterion type: '{name}'. Available criteria: {available}")

        criterion_class = cls._CRITERION_REGISTRY[name]
        criterion = criterion_class(
            num_labels=config["num_labels"],
            transitions=config.get("transitions"),
            scale_mode=config.get("scale_mode"),
        )
        logger.info(f"Created {criterion}")
        return criterion

    @classmethod
    def register_criterion(cls, name: str, criterion_class: Type[SequenceCriterion]) -> None:
        """
        Register a new criterion class in the factory.

        Args:
            name: Criterion name identifier, matched case-insensitively
            criterion_class: Class that implements SequenceCriterion

        Raises:
            ValueError: If the class doesn't inherit from SequenceCriterion
        """
        if not isinstance(criterion_class, type) or not issubclass(criterion_class, SequenceCriterion):
            raise ValueError(f"Criterion class must inherit from SequenceCriterion, got {criterion_class!r}")

        name_lower = name.lower()
        cls._CRITERION_REGISTRY[name_lower] = criterion_class
        logger.info(f"Registered criterion '{name_lower}' -> {criterion_class.__name__}")

    @classmethod
    def list_available_criteria(cls) -> list:
        """Sorted list of registered criterion names."""
        return sorted(cls._CRITERION_REGISTRY.keys())
