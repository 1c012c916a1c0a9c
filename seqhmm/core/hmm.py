"""
seqhmm HMM module

Provides:
1. HiddenMarkovModel: an observation distribution plus a Markov chain over
   the hidden states
2. Unsupervised Baum-Welch (EM) training over a corpus of sequences, with the
   E-step split across a thread pool
3. Scoring and posterior state membership for single sequences
4. A random-restart training driver (train_model)

Model I/O (files on disk) lives in seqhmm.core.model_io.
"""

import logging
import sys
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, BinaryIO, Dict, List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from seqhmm.core.exceptions import (
    ConfigurationError,
    ConvergenceFailure,
    DegenerateSequenceError,
    HMMError,
)
from seqhmm.core.markov_model import MarkovModel
from seqhmm.core.observations import (
    MultinomialObservations,
    ObservationDistribution,
    observation_type,
)
from seqhmm.core.trellis import XI_METHODS, forward, log_forward
from seqhmm.training.expectation import (
    ExpectedCounts,
    expectation_step,
    forward_backward,
    markov_tables,
)
from seqhmm.training.parallel import default_chunk_count

logger = logging.getLogger(__name__)

FORMAT_VERSION = '1.0'


class TrainingStatus(Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZED = 'initialized'
    TRAINING = 'training'
    CONVERGED = 'converged'
    MAX_ITERATIONS_REACHED = 'max_iterations_reached'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (TrainingStatus.CONVERGED,
                        TrainingStatus.MAX_ITERATIONS_REACHED,
                        TrainingStatus.FAILED)


@dataclass
class TrainingOptions:
    """
    Settings for HiddenMarkovModel.fit.

    Attributes:
        delta: Stop once the log likelihood improves by less than this
        max_iters: Hard cap on EM iterations
        xi_method: 'scaled' or 'ratio' formula for expected transitions
        decrease_tolerance: Relative log likelihood drop tolerated as
            floating-point noise before training fails
        n_jobs: Worker threads when fit() creates its own pool
        n_chunks: Tasks per E-step (default: one per worker when fit creates
            its own pool, one per CPU for a caller-supplied executor)
    """
    delta: float = 1e-5
    max_iters: int = sys.maxsize
    xi_method: str = 'scaled'
    decrease_tolerance: float = 1e-9
    n_jobs: int = 1
    n_chunks: Optional[int] = None

    def validate(self) -> None:
        if self.delta < 0:
            raise ConfigurationError(f"delta must be non-negative, got {self.delta}")
        if self.max_iters < 1:
            raise ConfigurationError(f"max_iters must be at least 1, got {self.max_iters}")
        if self.xi_method not in XI_METHODS:
            raise ConfigurationError(
                f"Unknown xi_method '{self.xi_method}', expected one of {XI_METHODS}"
            )
        if self.decrease_tolerance < 0:
            raise ConfigurationError("decrease_tolerance must be non-negative")
        if self.n_jobs < 1:
            raise ConfigurationError(f"n_jobs must be at least 1, got {self.n_jobs}")
        if self.n_chunks is not None and self.n_chunks < 1:
            raise ConfigurationError(f"n_chunks must be at least 1, got {self.n_chunks}")

    def for_own_pool(self) -> 'TrainingOptions':
        """Copy with n_chunks pinned to the n_jobs-thread pool built for these options."""
        return replace(self, n_chunks=self.n_chunks or default_chunk_count(self.n_jobs))


class TrainingMonitor:
    """Tracks training progress."""

    def __init__(self):
        self.history: List[float] = []
        self.status = TrainingStatus.UNINITIALIZED
        self.error: Optional[HMMError] = None

    @property
    def iterations(self) -> int:
        return len(self.history)

    @property
    def converged(self) -> bool:
        return self.status is TrainingStatus.CONVERGED


class HiddenMarkovModel:
    """
    Hidden Markov Model for unsupervised sequence labeling.

    Owns one observation distribution and one MarkovModel; both must agree on
    the number of hidden states. Training replaces both wholesale at the end
    of every EM iteration.
    """

    def __init__(self, obs_dist: ObservationDistribution, markov_model: MarkovModel):
        self.obs_dist_ = obs_dist
        self.model_ = markov_model
        self._check_states()

        self.status = TrainingStatus.INITIALIZED
        self.monitor_: Optional[TrainingMonitor] = None

    @classmethod
    def random(cls, n_states: int, obs_dist: ObservationDistribution,
               rng: np.random.Generator, prior: float = 0.0) -> 'HiddenMarkovModel':
        """
        Random initial-state and transition probabilities drawn from ``rng``.

        The observation distribution is not touched; initialize it yourself.
        """
        cls._require_states(n_states, obs_dist)
        return cls(obs_dist, MarkovModel.random(n_states, rng, prior=prior))

    @classmethod
    def uniform(cls, n_states: int, obs_dist: ObservationDistribution,
                prior: float = 0.0) -> 'HiddenMarkovModel':
        """
        Uniform initial-state and transition probabilities.

        The observation distribution is then the only thing that tells states
        apart, so it should be randomly initialized.
        """
        cls._require_states(n_states, obs_dist)
        return cls(obs_dist, MarkovModel.uniform(n_states, prior=prior))

    @staticmethod
    def _require_states(n_states: int, obs_dist: ObservationDistribution) -> None:
        if obs_dist.num_states() != n_states:
            raise ConfigurationError(
                "The observation distribution and HMM have differing numbers of "
                f"hidden states ({obs_dist.num_states()} != {n_states})"
            )

    def _check_states(self) -> None:
        self._require_states(self.model_.num_states(), self.obs_dist_)

    # -------------------------------------------------------------------------
    # Parameter access
    # -------------------------------------------------------------------------

    def num_states(self) -> int:
        return self.model_.num_states()

    def trans_prob(self, from_state: int, to_state: int) -> float:
        return self.model_.transition_probability(from_state, to_state)

    def init_prob(self, state: int) -> float:
        return self.model_.initial_probability(state)

    def observation_distribution(self) -> ObservationDistribution:
        return self.obs_dist_

    def markov_model(self) -> MarkovModel:
        return self.model_

    # -------------------------------------------------------------------------
    # Training
    # -------------------------------------------------------------------------

    def fit(self, corpus: Sequence[Sequence], executor: Optional[Executor] = None,
            options: Optional[TrainingOptions] = None, progress: bool = False) -> float:
        """
        Fit the model to a corpus with Baum-Welch.

        Args:
            corpus: Observation sequences
            executor: Thread pool for the E-step; if None, a pool of
                options.n_jobs threads is created for this call
            options: TrainingOptions (defaults if None)
            progress: Show a per-iteration tqdm bar

        Returns:
            Log likelihood of the data at the last completed iteration

        Raises:
            ConfigurationError: empty corpus or sequence, state-count mismatch,
                invalid options
            ConvergenceFailure: log likelihood decreased between iterations
            DegenerateSequenceError: a sequence has no probability mass under
                the current parameters
        """
        options = options or TrainingOptions()
        options.validate()
        corpus = validate_corpus(corpus)
        self._check_states()

        if executor is None:
            with ThreadPoolExecutor(max_workers=options.n_jobs) as pool:
                return self.fit(corpus, pool, options.for_own_pool(), progress)

        self.monitor_ = TrainingMonitor()
        self._set_status(TrainingStatus.TRAINING)

        old_ll = -np.inf
        try:
            for iteration in range(1, options.max_iters + 1):
                start = time.perf_counter()
                with tqdm(total=len(corpus), desc=f"> Iteration {iteration}",
                          leave=False, disable=not progress) as pbar:
                    counts = expectation_step(
                        corpus, self.obs_dist_, self.model_, executor,
                        xi_method=options.xi_method,
                        n_chunks=options.n_chunks,
                        progress=pbar,
                    )
                ll = counts.log_likelihood
                self.monitor_.history.append(ll)

                logger.info("Iteration %d took %.3fs", iteration, time.perf_counter() - start)
                logger.info("Log likelihood: %.6f", ll)

                if old_ll - ll > options.decrease_tolerance * max(1.0, abs(old_ll)):
                    logger.critical("Log likelihood did not improve!")
                    raise ConvergenceFailure(iteration, old_ll, ll)

                # normalize and replace old parameters
                self._refit(counts)

                if ll - old_ll < options.delta:
                    logger.info("Converged! (%.3e < %.3e)", ll - old_ll, options.delta)
                    self._set_status(TrainingStatus.CONVERGED)
                    return ll

                old_ll = ll
        except HMMError as e:
            self.monitor_.error = e
            self._set_status(TrainingStatus.FAILED)
            raise

        logger.info("Reached maximum of %d iterations", options.max_iters)
        self._set_status(TrainingStatus.MAX_ITERATIONS_REACHED)
        return old_ll

    def _refit(self, counts: ExpectedCounts) -> None:
        """Build both new distributions before discarding the old ones."""
        obs_dist = type(self.obs_dist_).from_counts(counts.obs_counts)
        model = type(self.model_).from_counts(counts.model_counts)
        self.obs_dist_, self.model_ = obs_dist, model

    def _set_status(self, status: TrainingStatus) -> None:
        self.status = status
        if self.monitor_ is not None:
            self.monitor_.status = status

    # -------------------------------------------------------------------------
    # Inference on single sequences
    # -------------------------------------------------------------------------

    def score(self, sequence: Sequence, log_space: bool = False) -> float:
        """
        Log probability of an observation sequence.

        Args:
            sequence: Observations
            log_space: Use the unscaled log-space forward recursion instead of
                the scaled trellis

        Returns:
            Log probability (-inf if the sequence is impossible under the model)
        """
        output_probs = self.obs_dist_.output_probabilities(sequence)
        startprob, transmat = markov_tables(self.model_)

        if log_space:
            _, log_prob = log_forward(output_probs, startprob, transmat)
            return log_prob

        try:
            return forward(output_probs, startprob, transmat).log_likelihood()
        except DegenerateSequenceError:
            return -np.inf

    def predict_proba(self, sequence: Sequence) -> np.ndarray:
        """
        Posterior probabilities P(state at t | sequence) via forward-backward.

        Returns:
            (T, n_states) array, each row sums to 1.0
        """
        startprob, transmat = markov_tables(self.model_)
        return forward_backward(sequence, self.obs_dist_, startprob, transmat).gamma

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def save(self, stream: BinaryIO) -> None:
        """Write the observation distribution, then the Markov model."""
        self.obs_dist_.save(stream)
        self.model_.save(stream)

    @classmethod
    def load(cls, stream: BinaryIO,
             obs_type: type = MultinomialObservations) -> 'HiddenMarkovModel':
        """Read a model written by save(), in the same order."""
        obs_dist = obs_type.load(stream)
        markov_model = MarkovModel.load(stream)
        return cls(obs_dist, markov_model)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize model to dictionary."""
        return {
            'model_type': 'seqhmm',
            'version': FORMAT_VERSION,
            'n_states': self.num_states(),
            'observations': self.obs_dist_.to_dict(),
            'markov_model': self.model_.to_dict(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'HiddenMarkovModel':
        """Deserialize model from dictionary."""
        try:
            observations = d['observations']
            obs_dist = observation_type(observations.get('type')).from_dict(observations)
            markov_model = MarkovModel.from_dict(d['markov_model'])
        except KeyError as e:
            raise ConfigurationError(f"Model dictionary is missing key {e}") from None

        model = cls(obs_dist, markov_model)
        if 'n_states' in d and d['n_states'] != model.num_states():
            raise ConfigurationError(
                f"Model declares {d['n_states']} states but its parameters have "
                f"{model.num_states()}"
            )
        return model


def validate_corpus(corpus: Sequence[Sequence]) -> List[Sequence]:
    """
    Materialize a corpus and reject empty input.

    Raises:
        ConfigurationError: if the corpus or any of its sequences is empty
    """
    corpus = list(corpus)
    if not corpus:
        raise ConfigurationError("Training corpus is empty")
    for idx, sequence in enumerate(corpus):
        if len(sequence) == 0:
            raise ConfigurationError(f"Training sequence {idx} is empty")
    return corpus


# =============================================================================
# Random-restart training
# =============================================================================

def train_model(corpus: Sequence[Sequence[int]], n_states: int, n_symbols: int,
                n_restarts: int = 10, seed: int = 42,
                options: Optional[TrainingOptions] = None,
                init: str = 'random', prior: float = 0.0,
                progress: bool = False) -> Tuple[HiddenMarkovModel, List[Tuple[HiddenMarkovModel, float]]]:
    """
    Train several randomly initialized categorical HMMs and keep the best.

    Args:
        corpus: Sequences of integer symbol ids in [0, n_symbols)
        n_states: Number of hidden states
        n_symbols: Alphabet size
        n_restarts: Number of random initializations
        seed: Seed of the single random generator shared by all restarts
        options: TrainingOptions for every restart
        init: 'random' (random chain and emissions) or 'uniform' (uniform
            chain, random emissions)
        prior: Dirichlet pseudo-count for every refit
        progress: Show a tqdm bar over restarts

    Returns:
        (best_model, [(model, log_likelihood), ...]) for the restarts that
        finished without error
    """
    if init not in ('random', 'uniform'):
        raise ConfigurationError(f"Unknown initialization '{init}'")
    if n_restarts < 1:
        raise ConfigurationError(f"n_restarts must be at least 1, got {n_restarts}")

    options = options or TrainingOptions()
    options.validate()
    options = options.for_own_pool()
    corpus = validate_corpus(corpus)
    rng = np.random.default_rng(seed)

    best_model = None
    best_logprob = float('-inf')
    results = []
    last_error: Optional[HMMError] = None

    with ThreadPoolExecutor(max_workers=options.n_jobs) as pool:
        pbar = tqdm(range(n_restarts), desc="Training restarts", disable=not progress)
        for i in pbar:
            obs_dist = MultinomialObservations.random(n_states, n_symbols, rng, prior=prior)
            if init == 'random':
                model = HiddenMarkovModel.random(n_states, obs_dist, rng, prior=prior)
            else:
                model = HiddenMarkovModel.uniform(n_states, obs_dist, prior=prior)

            try:
                logprob = model.fit(corpus, pool, options)
            # ConfigurationError would repeat on every restart, so it propagates
            except (ConvergenceFailure, DegenerateSequenceError) as e:
                logger.warning("Restart %d failed: %s", i + 1, e)
                last_error = e
                continue

            results.append((model, logprob))
            logger.info("Restart %d: log likelihood %.6f after %d iterations (%s)",
                        i + 1, logprob, model.monitor_.iterations, model.status.value)

            if logprob > best_logprob:
                best_logprob = logprob
                best_model = model

            pbar.set_postfix({'best_logprob': f'{best_logprob:.4e}'})

    if best_model is None:
        raise last_error

    return best_model, results
