"""
seqhmm corpus reading and observation encoding.

A corpus file holds one sequence per line, observations separated by
whitespace. Blank lines are skipped. Tokens are mapped to integer symbol ids
by a Vocabulary, in order of first appearance.
"""

import json
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from seqhmm.core.exceptions import ConfigurationError


class Vocabulary:
    """Bidirectional token <-> symbol id mapping."""

    def __init__(self, tokens: Optional[Iterable[str]] = None):
        self._ids: Dict[str, int] = {}
        self._tokens: List[str] = []
        for token in tokens or ():
            self.add(token)

    def __len__(self) -> int:
        return len(self._tokens)

    def __contains__(self, token: str) -> bool:
        return token in self._ids

    def add(self, token: str) -> int:
        """Symbol id of ``token``, assigning the next id if it is new."""
        idx = self._ids.get(token)
        if idx is None:
            idx = len(self._tokens)
            self._ids[token] = idx
            self._tokens.append(token)
        return idx

    def id(self, token: str) -> int:
        try:
            return self._ids[token]
        except KeyError:
            raise ConfigurationError(f"Unknown token '{token}'") from None

    def token(self, idx: int) -> str:
        return self._tokens[idx]

    @property
    def tokens(self) -> List[str]:
        return list(self._tokens)

    def encode(self, tokens: Iterable[str], grow: bool = False) -> np.ndarray:
        """Encode tokens to an int64 array; unknown tokens are added if ``grow``."""
        lookup = self.add if grow else self.id
        return np.array([lookup(token) for token in tokens], dtype=np.int64)

    def save(self, filepath: str) -> None:
        with open(filepath, 'w') as f:
            json.dump({'tokens': self._tokens}, f, indent=2)

    @classmethod
    def load(cls, filepath: str) -> 'Vocabulary':
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls(data['tokens'])


def read_tokens(filepath: str) -> List[List[str]]:
    """Tokenized non-blank lines of a corpus file."""
    sequences = []
    with open(filepath, 'r') as f:
        for line in f:
            tokens = line.split()
            if tokens:
                sequences.append(tokens)
    return sequences


def encode_corpus(sequences: Iterable[Iterable[str]],
                  vocabulary: Optional[Vocabulary] = None) -> Tuple[List[np.ndarray], Vocabulary]:
    """
    Encode tokenized sequences.

    Args:
        sequences: Token sequences
        vocabulary: Fixed vocabulary to encode with; unknown tokens raise.
            If None, a new vocabulary is built from the data.

    Returns:
        (encoded sequences, vocabulary)
    """
    grow = vocabulary is None
    if vocabulary is None:
        vocabulary = Vocabulary()
    encoded = [vocabulary.encode(tokens, grow=grow) for tokens in sequences]
    return encoded, vocabulary


def read_corpus(filepath: str,
                vocabulary: Optional[Vocabulary] = None) -> Tuple[List[np.ndarray], Vocabulary]:
    """Read and encode a corpus file. See encode_corpus."""
    return encode_corpus(read_tokens(filepath), vocabulary)
