"""
Observation distributions for seqhmm.

An observation distribution maps (observation, hidden state) to an emission
probability. The EM trainer only relies on the small contract defined by
ObservationDistribution / ObservationCounts:

    1. Score observations: ``probability()`` and the batched
       ``output_probabilities()`` used to build the per-sequence b[t, s] table.

    2. Collect expected emission counts: ``expected_counts()`` returns a fresh
       accumulator with ``increment()`` and ``+=``.

    3. Refit from the collected counts: ``from_counts()``.

    4. Persist to a binary stream: ``save()`` / ``load()``.

MultinomialObservations implements the contract for discrete symbol
alphabets (one categorical distribution per state).
"""

from abc import ABC, abstractmethod
from typing import Any, BinaryIO, Dict, Optional, Sequence

import numpy as np

from seqhmm.core.exceptions import ConfigurationError


class ObservationCounts(ABC):
    """Accumulator of expected emission counts."""

    @abstractmethod
    def increment(self, observation, state: int, weight: float) -> None:
        """Add ``weight`` expected occurrences of ``observation`` in ``state``."""

    def increment_sequence(self, sequence: Sequence, gamma: np.ndarray) -> None:
        """Add gamma[t, s] for every position t and state s of a sequence."""
        n_states = gamma.shape[1]
        for t, observation in enumerate(sequence):
            for s in range(n_states):
                self.increment(observation, s, gamma[t, s])

    @abstractmethod
    def __iadd__(self, other: 'ObservationCounts') -> 'ObservationCounts':
        """Merge another accumulator into this one (associative, commutative)."""


class ObservationDistribution(ABC):
    """Per-state emission distribution consumed by HiddenMarkovModel."""

    @abstractmethod
    def num_states(self) -> int:
        ...

    @abstractmethod
    def probability(self, observation, state: int) -> float:
        ...

    def output_probabilities(self, sequence: Sequence) -> np.ndarray:
        """(T, S) table of P(sequence[t] | s)."""
        n_states = self.num_states()
        table = np.empty((len(sequence), n_states))
        for t, observation in enumerate(sequence):
            for s in range(n_states):
                table[t, s] = self.probability(observation, s)
        return table

    @abstractmethod
    def expected_counts(self) -> ObservationCounts:
        """Fresh zeroed accumulator matching this distribution's shape."""

    @classmethod
    @abstractmethod
    def from_counts(cls, counts: ObservationCounts) -> 'ObservationDistribution':
        """Refit a new distribution from accumulated counts."""

    @abstractmethod
    def save(self, stream: BinaryIO) -> None:
        ...

    @classmethod
    @abstractmethod
    def load(cls, stream: BinaryIO) -> 'ObservationDistribution':
        ...


# =============================================================================
# Categorical emissions over a finite alphabet
# =============================================================================

def _normalize_rows(counts: np.ndarray) -> np.ndarray:
    """Row-normalize; all-zero rows become uniform."""
    sums = counts.sum(axis=1, keepdims=True)
    uniform = np.full_like(counts, 1.0 / counts.shape[1])
    with np.errstate(invalid='ignore', divide='ignore'):
        probs = counts / sums
    return np.where(sums > 0, probs, uniform)


class MultinomialCounts(ObservationCounts):
    """Expected symbol counts, shape (n_states, n_symbols)."""

    def __init__(self, n_states: int, n_symbols: int, prior: float = 0.0):
        self.counts = np.zeros((n_states, n_symbols))
        self.prior = prior

    def increment(self, observation: int, state: int, weight: float) -> None:
        self.counts[state, observation] += weight

    def increment_sequence(self, sequence: Sequence[int], gamma: np.ndarray) -> None:
        # Vectorized: scatter-add every gamma row into its symbol column
        np.add.at(self.counts.T, np.asarray(sequence, dtype=np.int64), gamma)

    def __iadd__(self, other: 'MultinomialCounts') -> 'MultinomialCounts':
        self.counts += other.counts
        return self


class MultinomialObservations(ObservationDistribution):
    """
    One categorical distribution over ``n_symbols`` symbols per hidden state.

    Observations are integer symbol ids in [0, n_symbols). ``prior`` is a
    symmetric Dirichlet pseudo-count added to every cell when refitting.
    """

    def __init__(self, probs: np.ndarray, prior: float = 0.0):
        probs = np.asarray(probs, dtype=np.float64)
        if probs.ndim != 2 or probs.shape[0] == 0 or probs.shape[1] == 0:
            raise ConfigurationError(
                f"Emission table must be (n_states, n_symbols), got shape {probs.shape}"
            )
        if np.any(probs < 0) or not np.allclose(probs.sum(axis=1), 1.0):
            raise ConfigurationError("Emission table rows must be probability distributions")
        if prior < 0:
            raise ConfigurationError(f"Dirichlet prior must be non-negative, got {prior}")
        self.emissionprob_ = probs
        self.prior = float(prior)

    @classmethod
    def random(cls, n_states: int, n_symbols: int, rng: np.random.Generator,
               prior: float = 0.0) -> 'MultinomialObservations':
        """Draw each state's distribution from a flat Dirichlet."""
        return cls(rng.dirichlet(np.ones(n_symbols), size=n_states), prior=prior)

    @classmethod
    def uniform(cls, n_states: int, n_symbols: int,
                prior: float = 0.0) -> 'MultinomialObservations':
        return cls(np.full((n_states, n_symbols), 1.0 / n_symbols), prior=prior)

    @property
    def n_symbols(self) -> int:
        return self.emissionprob_.shape[1]

    def num_states(self) -> int:
        return self.emissionprob_.shape[0]

    def probability(self, observation: int, state: int) -> float:
        return float(self.emissionprob_[state, observation])

    def output_probabilities(self, sequence: Sequence[int]) -> np.ndarray:
        obs = np.asarray(sequence, dtype=np.int64)
        if obs.size and (obs.min() < 0 or obs.max() >= self.n_symbols):
            raise ConfigurationError(
                f"Observation symbols must lie in [0, {self.n_symbols}), "
                f"got range [{obs.min()}, {obs.max()}]"
            )
        return np.ascontiguousarray(self.emissionprob_[:, obs].T)

    def distribution(self, state: int) -> np.ndarray:
        """Categorical distribution of a single state."""
        return self.emissionprob_[state]

    def expected_counts(self) -> MultinomialCounts:
        return MultinomialCounts(self.num_states(), self.n_symbols, self.prior)

    @classmethod
    def from_counts(cls, counts: MultinomialCounts) -> 'MultinomialObservations':
        return cls(_normalize_rows(counts.counts + counts.prior), prior=counts.prior)

    def save(self, stream: BinaryIO) -> None:
        np.save(stream, self.emissionprob_, allow_pickle=False)
        np.save(stream, np.array([self.prior]), allow_pickle=False)

    @classmethod
    def load(cls, stream: BinaryIO) -> 'MultinomialObservations':
        probs = np.load(stream, allow_pickle=False)
        prior = np.load(stream, allow_pickle=False)
        return cls(probs, prior=float(prior[0]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': 'multinomial',
            'emissionprob': self.emissionprob_.tolist(),
            'prior': self.prior,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'MultinomialObservations':
        return cls(np.array(d['emissionprob']), prior=d.get('prior', 0.0))


OBSERVATION_TYPES: Dict[str, type] = {
    'multinomial': MultinomialObservations,
}


def observation_type(name: Optional[str]) -> type:
    """Look up an observation distribution class by its serialized name."""
    try:
        return OBSERVATION_TYPES[name or 'multinomial']
    except KeyError:
        raise ConfigurationError(
            f"Unknown observation distribution '{name}', "
            f"expected one of {sorted(OBSERVATION_TYPES)}"
        ) from None
