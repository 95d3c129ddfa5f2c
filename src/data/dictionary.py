"""
Token dictionary mapping label indices to token strings.

Tokens files list one token per line. Extra whitespace-separated fields on a
line are alternative spellings that map to the same index.
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

EOS_TOKEN = '<eos>'


class TokenDictionary:
    """
    Bidirectional index <-> token mapping.

    Several tokens may share one index; lookups from index return the first
    token registered for it.

    Args:
        tokens: Optional tokens to add in order, each with a new index

    Example:
        >>> dictionary = TokenDictionary(['a', 'b', '|'])
        >>> dictionary.get_index('b')
        1
        >>> dictionary.get_entry(2)
        '|'
    """

    def __init__(self, tokens: Optional[Iterable[str]] = None):
        self._entry_to_index: Dict[str, int] = {}
        self._index_to_entry: Dict[int, str] = {}
        self._next_index = 0
        self._default_index: Optional[int] = None

        for token in tokens or []:
            self.add_entry(token)

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> 'TokenDictionary':
        """
        Load a dictionary from a tokens file.

        Args:
            path: Path to the tokens file

        Returns:
            TokenDictionary with one index per non-empty line

        Raises:
            FileNotFoundError: If the file doesn't exist
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Tokens file not found: {path}")

        dictionary = cls()
        with open(path, 'r', encoding='utf-8') as f:
            for line in f:
                fields = line.split()
                if not fields:
                    continue
                index = dictionary._next_index
                for token in fields:
                    dictionary.add_entry(token, index)

        logger.info(f"Loaded {dictionary.index_size()} tokens from {path}")
        return dictionary

    def add_entry(self, token: str, index: Optional[int] = None) -> int:
        """
        Register a token.

        Args:
            token: Token string
            index: Index to map the token to. Defaults to the next free index.

        Returns:
            The index of the token
        """
        if index is None:
            index = self._next_index
        if index < 0:
            raise ValueError(f"Token index must be non-negative, got {index}")

        self._entry_to_index[token] = index
        self._index_to_entry.setdefault(index, token)
        self._next_index = max(self._next_index, index + 1)
        return index

    def index_size(self) -> int:
        """Number of distinct indices."""
        return len(self._index_to_entry)

    def entry_size(self) -> int:
        """Number of registered tokens, including alternative spellings."""
        return len(self._entry_to_index)

    def is_contiguous(self) -> bool:
        """True if the indices are exactly 0..index_size()-1."""
        return set(self._index_to_entry) == set(range(self.index_size()))

    def contains(self, token: str) -> bool:
        return token in self._entry_to_index

    def set_default_index(self, index: int) -> None:
        """Index returned by get_index() for unknown tokens."""
        self._default_index = index

    def get_index(self, token: str) -> int:
        """
        Look up the index of a token.

        Raises:
            KeyError: If the token is unknown and no default index is set
        """
        if token in self._entry_to_index:
            return self._entry_to_index[token]
        if self._default_index is not None:
            return self._default_index
        raise KeyError(f"Unknown token: {token!r}")

    def get_entry(self, index: int) -> str:
        """
        Look up the token of an index.

        Raises:
            KeyError: If the index is unknown
        """
        index = int(index)
        if index not in self._index_to_entry:
            raise KeyError(f"Unknown token index: {index}")
        return self._index_to_entry[index]

    def map_entries_to_indices(self, tokens: Iterable[str]) -> List[int]:
        return [self.get_index(token) for token in tokens]

    def map_indices_to_entries(self, indices: Iterable[int]) -> List[str]:
        return [self.get_entry(index) for index in indices]

    def __len__(self) -> int:
        return self.index_size()

    def __contains__(self, token: str) -> bool:
        return self.contains(token)


def create_token_dictionary(
    tokens_path: Union[str, Path],
    replabel: int = 0,
    eos_token: str = EOS_TOKEN,
    add_eos: bool = True,
) -> TokenDictionary:
    """
    Build the token dictionary used for scoring.

    Loads the tokens file, then appends the repetition tokens "1".."replabel"
    and the end-of-sequence token when they are not already present.

    Args:
        tokens_path: Path to the tokens file
        replabel: Number of repetition tokens to append
        eos_token: End-of-sequence token
        add_eos: Whether to append the end-of-sequence token

    Returns:
        TokenDictionary with contiguous indices

    Raises:
        FileNotFoundError: If the tokens file doesn't exist
        ValueError: If the resulting indices are not contiguous
    """
    dictionary = TokenDictionary.from_file(tokens_path)

    for count in range(1, replabel + 1):
        if not dictionary.contains(str(count)):
            dictionary.add_entry(str(count))

    if add_eos and not dictionary.contains(eos_token):
        dictionary.add_entry(eos_token)

    if not dictionary.is_contiguous():
        raise ValueError(f"Token indices in {tokens_path} are not contiguous")

    return dictionary
