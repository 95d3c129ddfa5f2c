"""Configuration loading and validation utilities."""

import yaml
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Dict, Any, Optional, List


VALID_TARGETS = ('ltr', 'phn')


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""
    pass


def load_config(yaml_path: str) -> Dict[str, Any]:
    """
    Load and validate configuration from a YAML file.

    Args:
        yaml_path: Path to the YAML configuration file

    Returns:
        Dictionary containing validated configuration

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        ConfigurationError: If required fields are missing or invalid
        yaml.YAMLError: If YAML parsing fails
    """
    config_file = Path(yaml_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(config_file, 'r') as f:
            config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise yaml.YAMLError(f"Failed to parse YAML file {yaml_path}: {e}")

    _validate_config(config, yaml_path)

    return config


def _validate_config(config: Dict[str, Any], config_path: str) -> None:
    """
    Validate that configuration contains all required fields.

    Args:
        config: Configuration dictionary to validate
        config_path: Path to config file (for error messages)

    Raises:
        ConfigurationError: If validation fails
    """
    if config is None:
        raise ConfigurationError(f"Configuration file {config_path} is empty")

    required_sections = ['model', 'data']
    missing_sections = [section for section in required_sections if section not in config]

    if missing_sections:
        raise ConfigurationError(
            f"Missing required configuration sections in {config_path}: {', '.join(missing_sections)}"
        )

    _validate_model_config(config['model'], config_path)
    _validate_data_config(config['data'], config_path)

    if config.get('decoding') is not None:
        _validate_decoding_config(config['decoding'], config_path)


def _validate_model_config(model_config: Dict[str, Any], config_path: str) -> None:
    """Validate model configuration section."""
    _check_required_fields(model_config, ['checkpoint'], 'model', config_path)


def _validate_data_config(data_config: Dict[str, Any], config_path: str) -> None:
    """Validate data configuration section."""
    required_fields = ['manifest', 'tokens']
    _check_required_fields(data_config, required_fields, 'data', config_path)

    batch_size = data_config.get('batch_size', 1)
    if not isinstance(batch_size, int) or batch_size <= 0:
        raise ConfigurationError(
            f"'data.batch_size' must be a positive integer in {config_path}"
        )


def _validate_decoding_config(decoding_config: Dict[str, Any], config_path: str) -> None:
    """Validate decoding configuration section."""
    beam_size = decoding_config.get('beam_size', 1)
    if not isinstance(beam_size, int) or beam_size <= 0:
        raise ConfigurationError(
            f"'decoding.beam_size' must be a positive integer in {config_path}"
        )

    target = decoding_config.get('target', 'ltr')
    if target not in VALID_TARGETS:
        raise ConfigurationError(
            f"Invalid target '{target}' in {config_path}. "
            f"Must be one of: {', '.join(VALID_TARGETS)}"
        )


def _check_required_fields(
    config_section: Dict[str, Any],
    required_fields: List[str],
    section_name: str,
    config_path: str
) -> None:
    """
    Check that all required fields are present in a configuration section.

    Args:
        config_section: Configuration section to check
        required_fields: List of required field names
        section_name: Name of the section (for error messages)
        config_path: Path to config file (for error messages)

    Raises:
        ConfigurationError: If any required fields are missing
    """
    if config_section is None:
        raise ConfigurationError(
            f"Configuration section '{section_name}' is empty in {config_path}"
        )

    missing_fields = [field for field in required_fields if field not in config_section]

    if missing_fields:
        raise ConfigurationError(
            f"Missing required fields in '{section_name}' section of {config_path}: "
            f"{', '.join(missing_fields)}"
        )


def get_nested_value(config: Dict[str, Any], key_path: str, default: Any = None) -> Any:
    """
    Get a value from nested configuration using dot notation.

    Args:
        config: Configuration dictionary
        key_path: Dot-separated path to the value (e.g., 'decoding.beam_size')
        default: Default value if key path doesn't exist

    Returns:
        Value at the specified path, or default if not found

    Example:
        >>> config = {'decoding': {'beam_size': 4, 'target': 'ltr'}}
        >>> get_nested_value(config, 'decoding.beam_size')
        4
        >>> get_nested_value(config, 'decoding.unknown', 'default')
        'default'
    """
    keys = key_path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


@dataclass
class EvaluationConfig:
    """
    Explicit options of an evaluation run.

    Attributes:
        beam_size: Beam width for free decoding. 1 reuses the Viterbi path.
        target: Target granularity, 'ltr' (letters) or 'phn' (phonemes).
            Word error rate is only reported for letter targets.
        word_separator: Token that separates words in letter sequences
        attention_dir: Directory for per-utterance alignment maps, or None
        scale_mode: Forced-alignment normalization override, or None to keep
            the mode stored with the criterion
        view_transcripts: Log reference and hypotheses for every utterance
        skip_alignment_errors: Skip utterances whose target cannot be aligned
            instead of aborting the run
        eos_token: Reserved end-of-sequence token
        replabel: Maximum repetition count encoded by repetition tokens
        surround: Token trimmed from both ends of every sequence ('' for none)
        use_word_piece: Explode word-piece tokens into letters before scoring
        show_progress: Show a progress bar over batches
    """

    beam_size: int = 1
    target: str = 'ltr'
    word_separator: str = '|'
    attention_dir: Optional[str] = None
    scale_mode: Optional[str] = None
    view_transcripts: bool = False
    skip_alignment_errors: bool = True
    eos_token: str = '<eos>'
    replabel: int = 0
    surround: str = ''
    use_word_piece: bool = False
    show_progress: bool = True

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check option values.

        Raises:
            ConfigurationError: If any option is out of range
        """
        if isinstance(self.beam_size, bool) or not isinstance(self.beam_size, int) or self.beam_size <= 0:
            raise ConfigurationError(f"beam_size must be a positive integer, got {self.beam_size!r}")

        if self.target not in VALID_TARGETS:
            raise ConfigurationError(
                f"Invalid target '{self.target}'. Must be one of: {', '.join(VALID_TARGETS)}"
            )

        if not self.word_separator:
            raise ConfigurationError("word_separator cannot be empty")

        if not isinstance(self.replabel, int) or self.replabel < 0:
            raise ConfigurationError(f"replabel must be a non-negative integer, got {self.replabel!r}")

        if self.scale_mode is not None:
            # src.decoding.scaling imports this module
            from src.decoding.scaling import parse_scale_mode

            parse_scale_mode(self.scale_mode)

    @classmethod
    def from_config(cls, config: Dict[str, Any], **overrides: Any) -> 'EvaluationConfig':
        """
        Build options from the 'decoding' and 'evaluation' config sections.

        Keys of both sections are merged; explicit keyword overrides that are
        not None take precedence.

        Args:
            config: Full configuration dictionary
            **overrides: Option values from the command line

        Returns:
            Validated EvaluationConfig

        Raises:
            ConfigurationError: If an unknown option is present or a value is invalid
        """
        known = {f.name for f in fields(cls)}
        options: Dict[str, Any] = {}

        for section_name in ('decoding', 'evaluation'):
            section = config.get(section_name) or {}
            for key, value in section.items():
                if key not in known:
                    # Keys consumed by the CLI rather than the driver
                    if key in ('output_json', 'log_file'):
                        continue
                    raise ConfigurationError(
                        f"Unknown option '{key}' in '{section_name}' section. "
                        f"Known options: {', '.join(sorted(known))}"
                    )
                options[key] = value

        for key, value in overrides.items():
            if key not in known:
                raise ConfigurationError(f"Unknown option override '{key}'")
            if value is not None:
                options[key] = value

        return cls(**options)
