"""
PyTorch Dataset for held-out evaluation data.

This module provides the SpeechEvalDataset class for loading utterances from
JSONL manifests, either as precomputed feature matrices (.npy) or as audio
files turned into log-mel features, together with tokenized targets.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import numpy as np
import torch
from torch.utils.data import Dataset

from src.data.audio_processor import compute_log_mel, load_audio, normalize_audio
from src.data.dictionary import EOS_TOKEN, TokenDictionary
from src.data.transforms import pack_replabels, transcript_to_tokens

logger = logging.getLogger(__name__)

INPUT_KEY = 'input'
TARGET_KEY = 'target'
PAD_INDEX = -1


def load_manifest(manifest_path: Union[str, Path]) -> List[Dict]:
    """
    Load samples from a JSONL manifest file.

    Lines that fail to parse are logged and skipped.

    Args:
        manifest_path: Path to JSONL manifest

    Returns:
        List of sample dictionaries

    Raises:
        FileNotFoundError: If the manifest doesn't exist
    """
    manifest_path = Path(manifest_path)
    if not manifest_path.exists():
        raise FileNotFoundError(f"Manifest file not found: {manifest_path}")

    samples = []
    with open(manifest_path, 'r') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                samples.append(json.loads(line))
            except json.JSONDecodeError as e:
                logger.warning(f"Failed to parse line {line_num}: {e}")
                continue

    return samples


class SpeechEvalDataset(Dataset):
    """
    Evaluation utterances with features and tokenized targets.

    Each manifest line holds an ``utterance_id``, a ``transcript`` and either
    ``features`` (path to a (frames, dims) .npy matrix) or ``audio`` (path to
    an audio file). Relative paths are resolved against the manifest's
    directory and then against ``data_dirs``.

    Args:
        dictionary: Token dictionary used to index targets
        manifest_path: Path to JSONL file with utterance metadata
        data_dirs: Extra directories to search for feature and audio files
        target: Target granularity, 'ltr' or 'phn'
        word_separator: Token inserted between words of letter targets
        replabel: Maximum repetition count packed into repetition tokens
        append_eos: Append the end-of-sequence token to every target
        eos_token: End-of-sequence token
        sample_rate: Audio sample rate (default: 16000)
        n_mels: Number of mel bands for audio inputs (default: 80)
        normalize_audio_amplitude: Peak-normalize audio before features
        samples: Pre-loaded manifest entries instead of manifest_path

    Example:
        >>> dictionary = create_token_dictionary("data/tokens.txt")
        >>> dataset = SpeechEvalDataset(dictionary, manifest_path="data/dev.jsonl")
        >>> sample = dataset[0]
        >>> print(sample.keys())
        dict_keys(['input', 'target', 'utterance_id'])
    """

    def __init__(
        self,
        dictionary: TokenDictionary,
        manifest_path: Optional[Union[str, Path]] = None,
        data_dirs: Optional[List[Union[str, Path]]] = None,
        target: str = 'ltr',
        word_separator: str = '|',
        replabel: int = 0,
        append_eos: bool = True,
        eos_token: str = EOS_TOKEN,
        sample_rate: int = 16000,
        n_mels: int = 80,
        normalize_audio_amplitude: bool = True,
        samples: Optional[List[Dict]] = None,
    ):
        self.dictionary = dictionary
        self.data_dirs = [Path(d) for d in data_dirs] if data_dirs else []
        self.target = target
        self.word_separator = word_separator
        self.replabel = replabel
        self.append_eos = append_eos
        self.eos_token = eos_token
        self.sample_rate = sample_rate
        self.n_mels = n_mels
        self.normalize_audio_amplitude = normalize_audio_amplitude

        if samples is not None:
            self.samples = samples
            self.manifest_path = None
            logger.info(f"Initialized with {len(self.samples)} pre-loaded samples")
        elif manifest_path is not None:
            self.manifest_path = Path(manifest_path)
            self.samples = load_manifest(self.manifest_path)
            self.data_dirs.insert(0, self.manifest_path.parent)
            logger.info(f"Loaded {len(self.samples)} samples from {manifest_path}")
        else:
            raise ValueError("Must provide either manifest_path or samples")

        if append_eos and not dictionary.contains(eos_token):
            raise ValueError(f"End-of-sequence token {eos_token!r} is not in the dictionary")

        for data_dir in self.data_dirs:
            if not data_dir.exists():
                logger.warning(f"Data directory not found: {data_dir}")

    def _find_file(self, file_path: str) -> Optional[Path]:
        """
        Resolve a manifest path, searching the data directories for relative paths.

        Args:
            file_path: Path from the manifest entry

        Returns:
            Full path to the file if found, None otherwise
        """
        candidate = Path(file_path)
        if candidate.is_absolute():
            return candidate if candidate.exists() else None

        for data_dir in self.data_dirs:
            for full_path in (data_dir / candidate, data_dir / candidate.name):
                if full_path.exists():
                    return full_path

        logger.warning(f"File not found in any directory: {file_path}")
        return None

    def _load_input(self, sample: Dict) -> np.ndarray:
        utterance_id = sample.get('utterance_id', '?')
        key = 'features' if 'features' in sample else 'audio'
        if key not in sample:
            raise ValueError(f"Utterance {utterance_id} has neither 'features' nor 'audio'")

        path = self._find_file(sample[key])
        if path is None:
            raise FileNotFoundError(f"Input file not found for utterance {utterance_id}: {sample[key]}")

        if key == 'features':
            features = np.load(path)
            if features.ndim != 2:
                raise ValueError(
                    f"Features for utterance {utterance_id} must have shape (frames, dims), "
                    f"got {features.shape}"
                )
            return features.astype(np.float32)

        try:
            audio, sr = load_audio(path, sr=self.sample_rate)
        except Exception as e:
            raise RuntimeError(f"Failed to load audio for utterance {utterance_id}: {e}") from e

        if self.normalize_audio_amplitude:
            audio = normalize_audio(audio)

        return compute_log_mel(audio, sr=self.sample_rate, n_mels=self.n_mels)

    def encode_transcript(self, transcript: str) -> List[int]:
        """
        Turn a transcript into target label indices.

        Args:
            transcript: Space-separated words (letters) or phones

        Returns:
            Label indices with repetitions packed and EOS appended as configured

        Raises:
            KeyError: If the transcript contains a token missing from the dictionary
        """
        tokens = transcript_to_tokens(transcript, self.target, self.word_separator)
        labels = self.dictionary.map_entries_to_indices(tokens)
        labels = pack_replabels(labels, self.dictionary, self.replabel)
        if self.append_eos:
            labels.append(self.dictionary.get_index(self.eos_token))
        return labels

    def __len__(self) -> int:
        """Return the number of samples in the dataset."""
        return len(self.samples)

    def __getitem__(self, idx: int) -> Dict[str, Union[torch.Tensor, str]]:
        """
        Load and process a single sample.

        Args:
            idx: Index of sample to load

        Returns:
            Dictionary containing:
                - input: Float tensor of shape (frames, dims)
                - target: Long tensor of target label indices
                - utterance_id: Unique identifier for the utterance
        """
        sample = self.samples[idx]
        utterance_id = str(sample.get('utterance_id', idx))

        features = self._load_input(sample)

        try:
            labels = self.encode_transcript(sample.get('transcript', ''))
        except KeyError as e:
            raise KeyError(f"Utterance {utterance_id}: {e}") from e

        return {
            INPUT_KEY: torch.from_numpy(features),
            TARGET_KEY: torch.tensor(labels, dtype=torch.long),
            'utterance_id': utterance_id,
        }


class EvalDataCollator:
    """
    Batches variable-length evaluation samples.

    Inputs are zero-padded along time to (B, T_max, dims); targets are padded
    with PAD_INDEX to (B, L_max). Unpadded lengths are kept alongside.

    Example:
        >>> from torch.utils.data import DataLoader
        >>> loader = DataLoader(dataset, batch_size=4, collate_fn=EvalDataCollator())
    """

    def __init__(self, pad_index: int = PAD_INDEX):
        self.pad_index = pad_index

    def __call__(self, features: List[Dict]) -> Dict[str, Union[torch.Tensor, List[str]]]:
        inputs = [f[INPUT_KEY] for f in features]
        targets = [f[TARGET_KEY] for f in features]

        input_lengths = torch.tensor([x.shape[0] for x in inputs], dtype=torch.long)
        target_lengths = torch.tensor([len(y) for y in targets], dtype=torch.long)

        max_frames = int(input_lengths.max()) if len(inputs) else 0
        max_labels = int(target_lengths.max()) if len(targets) else 0
        dims = inputs[0].shape[1] if inputs else 0

        padded_inputs = torch.zeros((len(inputs), max_frames, dims), dtype=torch.float32)
        padded_targets = torch.full((len(targets), max_labels), self.pad_index, dtype=torch.long)
        for b, (x, y) in enumerate(zip(inputs, targets)):
            padded_inputs[b, : x.shape[0]] = x
            padded_targets[b, : len(y)] = y

        return {
            INPUT_KEY: padded_inputs,
            TARGET_KEY: padded_targets,
            'input_lengths': input_lengths,
            'target_lengths': target_lengths,
            'utterance_id': [f['utterance_id'] for f in features],
        }
