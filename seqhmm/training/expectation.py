"""
seqhmm E-step: forward-backward over a corpus and expected count accumulation.

Each training sequence is independent. For one sequence we

    1. cache the output probabilities b[t, s] (the observation distribution may
       be arbitrarily expensive to query),
    2. run the scaled forward and backward passes,
    3. derive gamma and the summed xi transition counts,
    4. add initial, transition and emission counts plus the sequence log
       likelihood to a worker-local ExpectedCounts.

Worker-local accumulators are merged with ExpectedCounts.combine by the
parallel reduction.
"""

from concurrent.futures import Executor
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from seqhmm.core.exceptions import DegenerateSequenceError
from seqhmm.core.markov_model import MarkovModel
from seqhmm.core.observations import ObservationDistribution
from seqhmm.core.trellis import (
    ForwardTrellis,
    Trellis,
    backward,
    forward,
    posteriors,
    transition_counts,
)
from seqhmm.training.parallel import reduction


class ExpectedCounts:
    """
    Expected sufficient statistics for one EM iteration.

    Holds the observation distribution's count accumulator, the Markov model's
    count accumulator and the running data log likelihood.
    """

    def __init__(self, obs_dist: ObservationDistribution, markov_model: MarkovModel):
        self.obs_counts = obs_dist.expected_counts()
        self.model_counts = markov_model.expected_counts()
        self.log_likelihood = 0.0
        self.n_sequences = 0

    def __iadd__(self, other: 'ExpectedCounts') -> 'ExpectedCounts':
        self.obs_counts += other.obs_counts
        self.model_counts += other.model_counts
        self.log_likelihood += other.log_likelihood
        self.n_sequences += other.n_sequences
        return self

    def combine(self, other: 'ExpectedCounts') -> None:
        """Merge ``other`` into this accumulator in place."""
        self += other


class ForwardBackwardResult(NamedTuple):
    output_probs: np.ndarray
    fwd: ForwardTrellis
    bwd: Trellis
    gamma: np.ndarray
    xi: np.ndarray


def markov_tables(markov_model: MarkovModel) -> Tuple[np.ndarray, np.ndarray]:
    """Frozen (startprob, transmat) arrays read through the model's accessors."""
    n = markov_model.num_states()
    startprob = np.array([markov_model.initial_probability(s) for s in range(n)])
    transmat = np.array([[markov_model.transition_probability(i, j) for j in range(n)]
                         for i in range(n)])
    return startprob, transmat


def forward_backward(sequence: Sequence, obs_dist: ObservationDistribution,
                     startprob: np.ndarray, transmat: np.ndarray,
                     xi_method: str = 'scaled') -> ForwardBackwardResult:
    """
    Run forward-backward on one sequence.

    Returns:
        ForwardBackwardResult with the cached output probabilities, both
        trellises, gamma (T, S) and the summed xi counts (S, S)

    Raises:
        DegenerateSequenceError: if the sequence has no probability mass
            under the model, or a backward divisor is zero (xi_method='ratio')
    """
    # cache b_s(o_t) since this could be computed with an arbitrarily complex model
    output_probs = obs_dist.output_probabilities(sequence)

    fwd = forward(output_probs, startprob, transmat)
    bwd = backward(fwd, output_probs, transmat)
    gamma, row_totals = posteriors(fwd, bwd)
    xi = transition_counts(fwd, bwd, gamma, row_totals, output_probs, transmat,
                           method=xi_method)

    return ForwardBackwardResult(output_probs, fwd, bwd, gamma, xi)


def accumulate_sequence(counts: ExpectedCounts, sequence: Sequence,
                        obs_dist: ObservationDistribution,
                        startprob: np.ndarray, transmat: np.ndarray,
                        xi_method: str = 'scaled',
                        sequence_index: Optional[int] = None) -> None:
    """Add the expected counts and log likelihood of one sequence to ``counts``."""
    try:
        result = forward_backward(sequence, obs_dist, startprob, transmat, xi_method)
        log_likelihood = result.fwd.log_likelihood()
        if not (np.isfinite(log_likelihood) and np.all(np.isfinite(result.xi))):
            raise DegenerateSequenceError("Expected counts are not finite")
    except DegenerateSequenceError as e:
        if sequence_index is None:
            raise
        raise e.for_sequence(sequence_index) from e

    gamma = result.gamma
    n_states = gamma.shape[1]
    for i in range(n_states):
        # add expected counts for initial state probabilities
        counts.model_counts.increment_initial(i, gamma[0, i])

        # add expected counts for transition probabilities
        for j in range(n_states):
            counts.model_counts.increment_transition(i, j, result.xi[i, j])

    # add expected counts for observation probabilities
    counts.obs_counts.increment_sequence(sequence, gamma)

    # L = prod_t 1 / normalizer(t)  =>  log L = -sum_t log normalizer(t)
    counts.log_likelihood += log_likelihood
    counts.n_sequences += 1


def expectation_step(corpus: Sequence[Sequence], obs_dist: ObservationDistribution,
                     markov_model: MarkovModel, executor: Executor,
                     xi_method: str = 'scaled', n_chunks: Optional[int] = None,
                     progress: Optional[tqdm] = None) -> ExpectedCounts:
    """
    Expected counts across a corpus, computed in parallel.

    The model parameters are read once into a frozen snapshot shared by all
    workers; nothing is written back to the model here.
    """
    startprob, transmat = markov_tables(markov_model)

    def work(counts: ExpectedCounts, item) -> None:
        idx, sequence = item
        accumulate_sequence(counts, sequence, obs_dist, startprob, transmat,
                            xi_method=xi_method, sequence_index=idx)

    return reduction(
        list(enumerate(corpus)),
        executor,
        initializer=lambda: ExpectedCounts(obs_dist, markov_model),
        work=work,
        combine=ExpectedCounts.combine,
        n_chunks=n_chunks,
        progress=progress,
    )
