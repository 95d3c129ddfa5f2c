#!/usr/bin/env python3
"""
Evaluation script for alignment-based sequence models.

This script loads a checkpoint (network and criterion), decodes every
utterance of a manifest with teacher forcing, Viterbi and beam search,
and reports letter (or phoneme) error rates, word error rate and the
average loss.

Options are resolved in order of precedence: command line, then the YAML
config, then the configuration stored in the checkpoint.

Usage:
    python scripts/evaluate.py --config configs/eval.yaml
    python scripts/evaluate.py --checkpoint checkpoints/model.pt --manifest data/dev.jsonl \\
        --tokens data/tokens.txt --beam-size 8 --output-json results.json
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from torch.utils.data import DataLoader

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.data.dataset import EvalDataCollator, SpeechEvalDataset
from src.data.dictionary import create_token_dictionary
from src.evaluation.evaluator import EvaluationDriver, EvaluationResult, log_results
from src.models.checkpoint import load_checkpoint
from src.utils.config import ConfigurationError, EvaluationConfig, get_nested_value, load_config
from src.utils.logging_utils import set_log_level, setup_logger

OPTION_SECTIONS = ('decoding', 'evaluation')


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Evaluate an alignment-based model with teacher-forced, Viterbi and beam decoding'
    )
    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to YAML configuration file'
    )
    parser.add_argument(
        '--checkpoint',
        type=str,
        default=None,
        help='Path to model checkpoint (overrides model.checkpoint)'
    )
    parser.add_argument(
        '--manifest',
        type=str,
        default=None,
        help='Path to evaluation JSONL manifest (overrides data.manifest)'
    )
    parser.add_argument(
        '--tokens',
        type=str,
        default=None,
        help='Path to tokens file (overrides data.tokens)'
    )
    parser.add_argument(
        '--beam-size',
        type=int,
        default=None,
        help='Beam width; 1 reuses the Viterbi path (default: 1)'
    )
    parser.add_argument(
        '--target',
        type=str,
        default=None,
        choices=['ltr', 'phn'],
        help='Target granularity (default: ltr)'
    )
    parser.add_argument(
        '--attention-dir',
        type=str,
        default=None,
        help='Directory to write per-utterance alignment maps to'
    )
    parser.add_argument(
        '--view-transcripts',
        action='store_true',
        default=None,
        help='Log reference and hypotheses for every utterance'
    )
    parser.add_argument(
        '--fail-on-alignment-error',
        action='store_true',
        help='Abort when an utterance cannot be aligned instead of skipping it'
    )
    parser.add_argument(
        '--batch-size',
        type=int,
        default=None,
        help='Batch size (overrides data.batch_size, default: 1)'
    )
    parser.add_argument(
        '--device',
        type=str,
        default=None,
        choices=['cuda', 'cpu', 'mps'],
        help='Device to run on (default: auto-detect)'
    )
    parser.add_argument(
        '--output-json',
        type=str,
        default=None,
        help='Path to save evaluation results as JSON'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        default=None,
        help='Path to log file (default: logs/evaluate_{timestamp}.log)'
    )
    parser.add_argument(
        '--no-progress',
        action='store_true',
        help='Disable progress bar'
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Dict[str, Any]:
    """
    Combine the YAML config with the path arguments of the command line.

    Raises:
        ConfigurationError: If checkpoint, manifest or tokens are not given anywhere
    """
    config = load_config(args.config) if args.config else {}
    config.setdefault('model', {})
    config.setdefault('data', {})

    if args.checkpoint:
        config['model']['checkpoint'] = args.checkpoint
    if args.manifest:
        config['data']['manifest'] = args.manifest
    if args.tokens:
        config['data']['tokens'] = args.tokens
    if args.batch_size is not None:
        config['data']['batch_size'] = args.batch_size

    required = {
        'model.checkpoint': '--checkpoint',
        'data.manifest': '--manifest',
        'data.tokens': '--tokens',
    }
    missing = [
        f"{key} ({flag})" for key, flag in required.items() if get_nested_value(config, key) is None
    ]
    if missing:
        raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

    batch_size = config['data'].get('batch_size', 1)
    if not isinstance(batch_size, int) or batch_size <= 0:
        raise ConfigurationError(f"Batch size must be a positive integer, got {batch_size!r}")

    return config


def merge_option_sections(stored: Dict[str, Any], config: Dict[str, Any]) -> Dict[str, Any]:
    """Decoding/evaluation options of the checkpoint, overridden key by key by the YAML config."""
    merged: Dict[str, Any] = {}
    for section in OPTION_SECTIONS:
        options = dict(stored.get(section) or {})
        options.update(config.get(section) or {})
        merged[section] = options
    return merged


def resolve_evaluation_config(
    args: argparse.Namespace,
    stored: Dict[str, Any],
    config: Dict[str, Any],
) -> EvaluationConfig:
    """Build EvaluationConfig from checkpoint < YAML < command line."""
    return EvaluationConfig.from_config(
        merge_option_sections(stored, config),
        beam_size=args.beam_size,
        target=args.target,
        attention_dir=args.attention_dir,
        view_transcripts=args.view_transcripts,
        skip_alignment_errors=False if args.fail_on_alignment_error else None,
        show_progress=False if args.no_progress else None,
    )


def save_results(result: EvaluationResult, output_path: Path, logger: logging.Logger):
    """
    Save evaluation results to JSON file.

    Args:
        result: Evaluation result
        output_path: Path to output JSON file
        logger: Logger instance
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w') as f:
        json.dump(result.to_dict(), f, indent=2)

    logger.info(f"Results saved to: {output_path}")


def main(argv=None) -> int:
    """Main evaluation function."""
    args = parse_args(argv)

    log_file = args.log_file
    if log_file is None:
        from datetime import datetime
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        log_file = f'logs/evaluate_{timestamp}.log'

    logger = setup_logger('evaluate', log_file)
    if args.verbose:
        set_log_level(logger, logging.DEBUG)

    logger.info("=" * 80)
    logger.info("Starting Evaluation")
    logger.info("=" * 80)

    try:
        config = build_config(args)
        data_config = config['data']

        logger.info(f"Checkpoint: {config['model']['checkpoint']}")
        logger.info(f"Manifest: {data_config['manifest']}")
        logger.info(f"Tokens: {data_config['tokens']}")

        stored_config, network, criterion = load_checkpoint(config['model']['checkpoint'])
        eval_config = resolve_evaluation_config(args, stored_config, config)
        logger.info(f"Options: {eval_config}")

        dictionary = create_token_dictionary(
            data_config['tokens'],
            replabel=eval_config.replabel,
            eos_token=eval_config.eos_token,
        )
        logger.info(f"Number of tokens: {dictionary.index_size()}")

        dataset = SpeechEvalDataset(
            dictionary,
            manifest_path=data_config['manifest'],
            data_dirs=data_config.get('data_dirs'),
            target=eval_config.target,
            word_separator=eval_config.word_separator,
            replabel=eval_config.replabel,
            append_eos=data_config.get('append_eos', True),
            eos_token=eval_config.eos_token,
            sample_rate=data_config.get('sample_rate', 16000),
            n_mels=data_config.get('n_mels', 80),
        )
        loader = DataLoader(
            dataset,
            batch_size=data_config.get('batch_size', 1),
            shuffle=False,
            num_workers=data_config.get('num_workers', 0),
            collate_fn=EvalDataCollator(),
        )

        driver = EvaluationDriver(network, criterion, dictionary, eval_config, device=args.device)
        logger.info(f"Evaluating {len(dataset):,} utterances on {driver.device}")
        result = driver.run(loader)

        log_results(result, logger)

        output_json = args.output_json or get_nested_value(config, 'evaluation.output_json')
        if output_json:
            save_results(result, Path(output_json), logger)

        logger.info("=" * 80)
        logger.info("Evaluation completed successfully!")
        logger.info("=" * 80)

        return 0

    except Exception as e:
        logger.error("=" * 80)
        logger.error("Evaluation failed with error:")
        logger.error("=" * 80)
        logger.exception(e)
        return 1


if __name__ == '__main__':
    sys.exit(main())
