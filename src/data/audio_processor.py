"""
Audio loading and feature extraction for evaluation inputs.

This module provides functions for loading and normalizing audio files and
turning them into log-mel feature matrices of shape (frames, n_mels).
"""

import logging
import numpy as np
import librosa
from pathlib import Path
from typing import Tuple, Union

logger = logging.getLogger(__name__)


def load_audio(path: Union[str, Path], sr: int = 16000) -> Tuple[np.ndarray, float]:
    """
    Load audio file and resample to target sample rate.

    Args:
        path: Path to audio file (supports FLAC, WAV, MP3, etc.)
        sr: Target sample rate in Hz (default: 16000)

    Returns:
        Tuple of (audio_array, sample_rate) where:
            - audio_array: numpy array of audio samples (mono)
            - sample_rate: sample rate of the returned audio

    Raises:
        FileNotFoundError: If audio file doesn't exist
        RuntimeError: If audio file cannot be loaded

    Example:
        >>> audio, sr = load_audio('path/to/audio.flac', sr=16000)
        >>> print(audio.shape, sr)
        (48000,) 16000
    """
    path = Path(path)

    if not path.exists():
        raise FileNotFoundError(f"Audio file not found: {path}")

    try:
        audio, sample_rate = librosa.load(path, sr=sr, mono=True)

        logger.debug(f"Loaded audio from {path.name}: {len(audio)} samples at {sample_rate}Hz")

        return audio, sample_rate

    except Exception as e:
        raise RuntimeError(f"Failed to load audio file {path}: {str(e)}") from e


def normalize_audio(audio: np.ndarray, target_level: float = 0.95) -> np.ndarray:
    """
    Normalize audio amplitude to target peak level.

    Args:
        audio: Audio array to normalize
        target_level: Target peak amplitude level (default: 0.95)

    Returns:
        Normalized audio array

    Example:
        >>> audio = np.array([0.1, -0.5, 0.3, -0.2])
        >>> normalized = normalize_audio(audio, target_level=0.95)
        >>> np.max(np.abs(normalized))
        0.95
    """
    if len(audio) == 0:
        logger.warning("Empty audio array, returning as-is")
        return audio

    max_val = np.max(np.abs(audio))

    if max_val == 0:
        logger.warning("Audio contains only silence (all zeros), cannot normalize")
        return audio

    return audio * (target_level / max_val)


def compute_log_mel(
    audio: np.ndarray,
    sr: int = 16000,
    n_mels: int = 80,
    frame_length_ms: float = 25.0,
    frame_shift_ms: float = 10.0,
) -> np.ndarray:
    """
    Compute log-mel filterbank features.

    Args:
        audio: Mono audio samples
        sr: Sample rate of the audio in Hz
        n_mels: Number of mel bands
        frame_length_ms: Analysis window length in milliseconds
        frame_shift_ms: Hop between frames in milliseconds

    Returns:
        float32 array of shape (frames, n_mels)

    Example:
        >>> features = compute_log_mel(np.random.randn(16000), sr=16000)
        >>> features.shape
        (101, 80)
    """
    n_fft = int(round(sr * frame_length_ms / 1000.0))
    hop_length = int(round(sr * frame_shift_ms / 1000.0))

    mel = librosa.feature.melspectrogram(
        y=np.asarray(audio, dtype=np.float32),
        sr=sr,
        n_fft=n_fft,
        hop_length=hop_length,
        n_mels=n_mels,
    )
    log_mel = np.log(mel + 1e-6)

    logger.debug(f"Computed log-mel features: {log_mel.shape[1]} frames x {n_mels} bands")

    return log_mel.T.astype(np.float32)
