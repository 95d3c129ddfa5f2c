"""
Conversions between token indices, letters and words.

Every decoded path and every target goes through ``remap_labels`` before
scoring, so the meters only ever see plain label sequences.
"""

import logging
from typing import Iterable, List, Optional, Sequence

import torch

from src.data.dictionary import EOS_TOKEN, TokenDictionary

logger = logging.getLogger(__name__)


def _as_list(labels) -> List[int]:
    if isinstance(labels, torch.Tensor):
        return [int(label) for label in labels.flatten().tolist()]
    return [int(label) for label in labels]


def _replabel_indices(dictionary: TokenDictionary, max_reps: int) -> List[int]:
    """Indices of the repetition tokens "1".."max_reps", position k-1 holding count k."""
    return [dictionary.get_index(str(count)) for count in range(1, max_reps + 1)]


def pack_replabels(labels: Sequence[int], dictionary: TokenDictionary, max_reps: int) -> List[int]:
    """
    Replace repeated labels with repetition tokens.

    A run of a label is written as the label followed by the repetition token
    for the number of extra occurrences, at most max_reps per token.

    Example:
        With max_reps=2, [a, a, a, a] becomes [a, "2", a].
    """
    labels = _as_list(labels)
    if max_reps <= 0:
        return labels

    replabels = _replabel_indices(dictionary, max_reps)
    packed: List[int] = []
    previous = None
    repeats = 0
    for label in labels:
        if label == previous and repeats < max_reps:
            repeats += 1
            continue
        if repeats > 0:
            packed.append(replabels[repeats - 1])
        repeats = 0
        packed.append(label)
        previous = label

    if repeats > 0:
        packed.append(replabels[repeats - 1])
    return packed


def unpack_replabels(labels: Sequence[int], dictionary: TokenDictionary, max_reps: int) -> List[int]:
    """
    Expand repetition tokens back into repeated labels.

    Repetition tokens with no preceding label are dropped.
    """
    labels = _as_list(labels)
    if max_reps <= 0:
        return labels

    counts = {index: position + 1 for position, index in enumerate(_replabel_indices(dictionary, max_reps))}
    unpacked: List[int] = []
    previous = None
    for label in labels:
        if label in counts:
            if previous is not None:
                unpacked.extend([previous] * counts[label])
            continue
        unpacked.append(label)
        previous = label
    return unpacked


def truncate_at_eos(labels: Sequence[int], eos_index: Optional[int]) -> List[int]:
    """Keep the labels before the first end-of-sequence index."""
    labels = _as_list(labels)
    if eos_index is None or eos_index not in labels:
        return labels
    return labels[: labels.index(eos_index)]


def remap_labels(
    labels: Sequence[int],
    dictionary: TokenDictionary,
    eos_token: str = EOS_TOKEN,
    replabel: int = 0,
    surround: str = '',
) -> List[int]:
    """
    Prepare a raw label sequence for scoring.

    Drops padding (negative indices), cuts at the first end-of-sequence token,
    expands repetition tokens and trims the surround token from both ends.
    The same policy is applied to targets and to every decoded path.

    Args:
        labels: Raw label indices
        dictionary: Token dictionary
        eos_token: End-of-sequence token; ignored if not in the dictionary
        replabel: Maximum repetition count encoded by repetition tokens
        surround: Token trimmed from both ends ('' to disable)

    Returns:
        Remapped label indices
    """
    labels = [label for label in _as_list(labels) if label >= 0]

    eos_index = dictionary.get_index(eos_token) if dictionary.contains(eos_token) else None
    labels = truncate_at_eos(labels, eos_index)
    labels = unpack_replabels(labels, dictionary, replabel)

    if surround and dictionary.contains(surround):
        surround_index = dictionary.get_index(surround)
        if labels and labels[-1] == surround_index:
            labels.pop()
        if labels and labels[0] == surround_index:
            labels.pop(0)

    return labels


def tokens_to_letters(
    labels: Iterable[int],
    dictionary: TokenDictionary,
    use_word_piece: bool = False,
) -> List[str]:
    """
    Map label indices to token strings.

    Args:
        labels: Label indices
        dictionary: Token dictionary
        use_word_piece: Explode multi-character tokens into single letters

    Returns:
        List of token (or letter) strings
    """
    tokens = dictionary.map_indices_to_entries(_as_list(labels))
    if not use_word_piece:
        return tokens
    return [letter for token in tokens for letter in token]


def letters_to_string(letters: Sequence[str], target: str = 'ltr') -> str:
    """Concatenate letters; phoneme targets are separated by spaces."""
    if target == 'phn':
        return ' '.join(letters)
    return ''.join(letters)


def split_words(letters: Sequence[str], word_separator: str, target: str = 'ltr') -> List[str]:
    """
    Split a letter sequence into words on the separator token.

    Empty fields are dropped, so repeated or leading/trailing separators do
    not create words.

    Example:
        >>> split_words(['|', 't', 'h', 'e', '|', '|', 'c', 'a', 't'], '|')
        ['the', 'cat']
    """
    text = letters_to_string(letters, target)
    return [word for word in text.split(word_separator) if word]


def transcript_to_tokens(text: str, target: str = 'ltr', word_separator: str = '|') -> List[str]:
    """
    Tokenize a transcript for the given target granularity.

    Letter targets become the characters of each word with the word separator
    between words; phoneme targets are whitespace-separated phones.

    Example:
        >>> transcript_to_tokens('the cat')
        ['t', 'h', 'e', '|', 'c', 'a', 't']
    """
    words = text.split()
    if target == 'phn':
        return words

    tokens: List[str] = []
    for position, word in enumerate(words):
        if position > 0:
            tokens.append(word_separator)
        tokens.extend(word)
    return tokens
