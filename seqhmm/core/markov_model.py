"""Initial-state and transition distributions of a first-order Markov chain."""

from typing import Any, BinaryIO, Dict

import numpy as np

from seqhmm.core.exceptions import ConfigurationError
from seqhmm.core.observations import _normalize_rows


class MarkovModelCounts:
    """Expected initial-state and transition counts."""

    def __init__(self, n_states: int, prior: float = 0.0):
        self.initial = np.zeros(n_states)
        self.transitions = np.zeros((n_states, n_states))
        self.prior = prior

    def increment_initial(self, state: int, weight: float) -> None:
        self.initial[state] += weight

    def increment_transition(self, from_state: int, to_state: int, weight: float) -> None:
        self.transitions[from_state, to_state] += weight

    def __iadd__(self, other: 'MarkovModelCounts') -> 'MarkovModelCounts':
        self.initial += other.initial
        self.transitions += other.transitions
        return self


class MarkovModel:
    """
    Start and transition probabilities over ``n_states`` hidden states.

    ``prior`` is a symmetric Dirichlet pseudo-count added to every initial and
    transition count when refitting from expected counts.
    """

    def __init__(self, startprob: np.ndarray, transmat: np.ndarray, prior: float = 0.0):
        startprob = np.asarray(startprob, dtype=np.float64)
        transmat = np.asarray(transmat, dtype=np.float64)
        n_states = startprob.shape[0] if startprob.ndim == 1 else -1

        if n_states < 1 or transmat.shape != (n_states, n_states):
            raise ConfigurationError(
                f"Start probabilities {startprob.shape} and transition matrix "
                f"{transmat.shape} do not describe the same states"
            )
        if np.any(startprob < 0) or not np.isclose(startprob.sum(), 1.0):
            raise ConfigurationError("Start probabilities must sum to 1")
        if np.any(transmat < 0) or not np.allclose(transmat.sum(axis=1), 1.0):
            raise ConfigurationError("Transition matrix rows must sum to 1")
        if prior < 0:
            raise ConfigurationError(f"Dirichlet prior must be non-negative, got {prior}")

        self.startprob_ = startprob
        self.transmat_ = transmat
        self.prior = float(prior)

    @classmethod
    def random(cls, n_states: int, rng: np.random.Generator,
               prior: float = 0.0) -> 'MarkovModel':
        """Draw start and transition rows from flat Dirichlet distributions."""
        startprob = rng.dirichlet(np.ones(n_states))
        transmat = rng.dirichlet(np.ones(n_states), size=n_states)
        return cls(startprob, transmat, prior=prior)

    @classmethod
    def uniform(cls, n_states: int, prior: float = 0.0) -> 'MarkovModel':
        return cls(np.full(n_states, 1.0 / n_states),
                   np.full((n_states, n_states), 1.0 / n_states),
                   prior=prior)

    def num_states(self) -> int:
        return self.startprob_.shape[0]

    def transition_probability(self, from_state: int, to_state: int) -> float:
        return float(self.transmat_[from_state, to_state])

    def initial_probability(self, state: int) -> float:
        return float(self.startprob_[state])

    def expected_counts(self) -> MarkovModelCounts:
        return MarkovModelCounts(self.num_states(), self.prior)

    @classmethod
    def from_counts(cls, counts: MarkovModelCounts) -> 'MarkovModel':
        initial = (counts.initial + counts.prior)[np.newaxis, :]
        startprob = _normalize_rows(initial)[0]
        transmat = _normalize_rows(counts.transitions + counts.prior)
        return cls(startprob, transmat, prior=counts.prior)

    def save(self, stream: BinaryIO) -> None:
        np.save(stream, self.startprob_, allow_pickle=False)
        np.save(stream, self.transmat_, allow_pickle=False)
        np.save(stream, np.array([self.prior]), allow_pickle=False)

    @classmethod
    def load(cls, stream: BinaryIO) -> 'MarkovModel':
        startprob = np.load(stream, allow_pickle=False)
        transmat = np.load(stream, allow_pickle=False)
        prior = np.load(stream, allow_pickle=False)
        return cls(startprob, transmat, prior=float(prior[0]))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'startprob': self.startprob_.tolist(),
            'transmat': self.transmat_.tolist(),
            'prior': self.prior,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'MarkovModel':
        return cls(np.array(d['startprob']), np.array(d['transmat']),
                   prior=d.get('prior', 0.0))
