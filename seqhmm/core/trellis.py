"""
seqhmm trellis module

Scaled forward-backward recurrences for a single observation sequence.

All recurrences work on a precomputed output probability table
output_probs[t, s] = P(o_t | state s), so the observation distribution is
queried exactly once per (time step, state) no matter how expensive it is.
The inner loops are Numba-compiled with the GIL released, which lets several
sequences run concurrently on a thread pool.

Scaling: column t of the forward trellis is divided by its sum, and the
reciprocal of that sum is stored as normalizer(t). The backward trellis reuses
the same normalizers, so that sum_s alpha(t, s) * beta(t, s) == 1 for every t
and the sequence log likelihood is -sum_t log normalizer(t).
"""

import math
import numpy as np
from numba import jit
from scipy.special import logsumexp
from typing import Tuple

from seqhmm.core.exceptions import DegenerateSequenceError

XI_METHODS = ('scaled', 'ratio')


# =============================================================================
# Numba JIT-compiled recurrences
# =============================================================================

@jit(nopython=True, nogil=True, cache=False)
def _forward_numba(output_probs, startprob, transmat):
    """
    Numba-compiled scaled forward pass.

    Returns:
        alpha: (T, S) scaled forward probabilities
        normalizers: (T,) reciprocal column sums
        failed_t: first time step whose column sums to zero, or -1
    """
    T, S = output_probs.shape
    alpha = np.zeros((T, S))
    normalizers = np.zeros(T)

    for t in range(T):
        total = 0.0
        for i in range(S):
            if t == 0:
                prior = startprob[i]
            else:
                prior = 0.0
                for j in range(S):
                    prior += alpha[t - 1, j] * transmat[j, i]
            alpha[t, i] = prior * output_probs[t, i]
            total += alpha[t, i]

        # Normalize every column to avoid underflow
        if total <= 0.0 or math.isinf(1.0 / total):
            return alpha, normalizers, t
        normalizers[t] = 1.0 / total
        for i in range(S):
            alpha[t, i] *= normalizers[t]

    return alpha, normalizers, -1


@jit(nopython=True, nogil=True, cache=False)
def _backward_numba(output_probs, transmat, normalizers):
    """Numba-compiled backward pass scaled by the forward normalizers."""
    T, S = output_probs.shape
    beta = np.zeros((T, S))

    for i in range(S):
        beta[T - 1, i] = 1.0

    for t in range(T - 2, -1, -1):
        norm = normalizers[t + 1]
        for i in range(S):
            total = 0.0
            for j in range(S):
                # beta of an unreachable state may overflow; a zero weight stays zero
                w = transmat[i, j] * output_probs[t + 1, j]
                if w != 0.0:
                    total += w * beta[t + 1, j]
            beta[t, i] = norm * total

    return beta


@jit(nopython=True, nogil=True, cache=False)
def _posteriors_numba(alpha, beta):
    """Numba-compiled gamma table, one probability distribution per row."""
    T, S = alpha.shape
    gamma = np.zeros((T, S))
    row_totals = np.zeros(T)

    for t in range(T):
        total = 0.0
        for i in range(S):
            if alpha[t, i] != 0.0:
                gamma[t, i] = alpha[t, i] * beta[t, i]
                total += gamma[t, i]
        if not total > 0.0 or math.isinf(total):
            return gamma, row_totals, t
        row_totals[t] = total
        for i in range(S):
            gamma[t, i] /= total

    return gamma, row_totals, -1


@jit(nopython=True, nogil=True, cache=False)
def _xi_scaled_numba(alpha, beta, row_totals, normalizers, output_probs, transmat):
    """
    Numba-compiled expected transition counts summed over time.

    xi(t, i, j) = alpha(t, i) A(i, j) b(t+1, j) normalizer(t+1) beta(t+1, j) / Z(t)
    where Z(t) is the gamma row total at t.
    """
    T, S = alpha.shape
    counts = np.zeros((S, S))

    for t in range(T - 1):
        scale = normalizers[t + 1] / row_totals[t]
        for i in range(S):
            a = alpha[t, i] * scale
            if a == 0.0:
                continue
            for j in range(S):
                w = a * transmat[i, j] * output_probs[t + 1, j]
                if w != 0.0:
                    counts[i, j] += w * beta[t + 1, j]

    return counts


@jit(nopython=True, nogil=True, cache=False)
def _xi_ratio_numba(gamma, beta, normalizers, output_probs, transmat):
    """
    Numba-compiled expected transition counts using the gamma / beta ratio.

    xi(t, i, j) = gamma(t, i) A(i, j) b(t+1, j) normalizer(t+1) beta(t+1, j) / beta(t, i)

    Returns:
        counts: (S, S) summed transition counts
        failed_t, failed_state: location of the first zero divisor, or -1, -1
    """
    T, S = gamma.shape
    counts = np.zeros((S, S))

    for t in range(T - 1):
        norm = normalizers[t + 1]
        for i in range(S):
            if beta[t, i] == 0.0:
                return counts, t, i
            if gamma[t, i] == 0.0:
                continue
            for j in range(S):
                w = gamma[t, i] * transmat[i, j] * output_probs[t + 1, j]
                if w != 0.0:
                    counts[i, j] += (w * norm * beta[t + 1, j]) / beta[t, i]

    return counts, -1, -1


# =============================================================================
# Trellis containers
# =============================================================================

class Trellis:
    """Time x state table of scaled probabilities."""

    def __init__(self, probabilities: np.ndarray):
        self.probabilities = probabilities

    def __len__(self) -> int:
        return self.probabilities.shape[0]

    @property
    def n_states(self) -> int:
        return self.probabilities.shape[1]

    def probability(self, t: int, state: int) -> float:
        return float(self.probabilities[t, state])


class ForwardTrellis(Trellis):
    """
    Scaled forward trellis.

    Every column sums to one; normalizers[t] holds the reciprocal of the
    column's mass before scaling.
    """

    def __init__(self, probabilities: np.ndarray, normalizers: np.ndarray):
        super().__init__(probabilities)
        self.normalizers = normalizers

    def normalizer(self, t: int) -> float:
        return float(self.normalizers[t])

    def log_likelihood(self) -> float:
        """log P(sequence) = sum_t log(1 / normalizer(t))."""
        return float(-np.sum(np.log(self.normalizers)))


# =============================================================================
# Public recurrences
# =============================================================================

def _as_float_array(a) -> np.ndarray:
    return np.ascontiguousarray(a, dtype=np.float64)


def forward(output_probs: np.ndarray, startprob: np.ndarray,
            transmat: np.ndarray) -> ForwardTrellis:
    """
    Scaled forward algorithm.

    Args:
        output_probs: (T, S) table of P(o_t | s)
        startprob: (S,) initial state distribution
        transmat: (S, S) transition matrix, rows are "from" states

    Returns:
        ForwardTrellis with T normalizers

    Raises:
        DegenerateSequenceError: if some observation has zero probability
            under every state reachable at its time step
    """
    output_probs = _as_float_array(output_probs)
    if output_probs.ndim != 2 or output_probs.shape[0] == 0:
        raise ValueError("output_probs must be a non-empty (T, n_states) array")

    alpha, normalizers, failed_t = _forward_numba(
        output_probs, _as_float_array(startprob), _as_float_array(transmat)
    )
    if failed_t >= 0:
        raise DegenerateSequenceError(
            "Observation has zero probability under every reachable state",
            time_step=int(failed_t),
        )
    return ForwardTrellis(alpha, normalizers)


def backward(fwd: ForwardTrellis, output_probs: np.ndarray,
             transmat: np.ndarray) -> Trellis:
    """Backward algorithm, scaled with the normalizers of ``fwd``."""
    beta = _backward_numba(_as_float_array(output_probs), _as_float_array(transmat),
                           fwd.normalizers)
    return Trellis(beta)


def posteriors(fwd: ForwardTrellis, bwd: Trellis) -> Tuple[np.ndarray, np.ndarray]:
    """
    Posterior state membership (gamma).

    Returns:
        gamma: (T, S), each row sums to 1
        row_totals: (T,) sum_s alpha(t, s) * beta(t, s) before renormalizing
    """
    gamma, row_totals, failed_t = _posteriors_numba(fwd.probabilities,
                                                    bwd.probabilities)
    if failed_t >= 0:
        raise DegenerateSequenceError(
            "Forward and backward trellises share no finite probability mass",
            time_step=int(failed_t),
        )
    return gamma, row_totals


def transition_counts(fwd: ForwardTrellis, bwd: Trellis, gamma: np.ndarray,
                      row_totals: np.ndarray, output_probs: np.ndarray,
                      transmat: np.ndarray, method: str = 'scaled') -> np.ndarray:
    """
    Expected transition counts sum_t xi(t, i, j) for one sequence.

    Args:
        method: 'scaled' divides by the gamma row total; 'ratio' divides by
            beta(t, i) and fails when that backward probability is zero

    Returns:
        (S, S) array of expected counts

    Raises:
        DegenerateSequenceError: with method='ratio', if a backward
            probability used as a divisor is zero
    """
    output_probs = _as_float_array(output_probs)
    transmat = _as_float_array(transmat)

    if method == 'scaled':
        return _xi_scaled_numba(fwd.probabilities, bwd.probabilities, row_totals,
                                fwd.normalizers, output_probs, transmat)

    if method == 'ratio':
        counts, failed_t, failed_state = _xi_ratio_numba(
            gamma, bwd.probabilities, fwd.normalizers, output_probs, transmat
        )
        if failed_t >= 0:
            raise DegenerateSequenceError(
                "Backward probability is zero for an expected transition",
                time_step=int(failed_t),
                state=int(failed_state),
            )
        return counts

    raise ValueError(f"Unknown xi method '{method}', expected one of {XI_METHODS}")


def log_forward(output_probs: np.ndarray, startprob: np.ndarray,
                transmat: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Unscaled forward algorithm in log space.

    Independent of the scaled recurrences above; useful to cross-check
    scaled likelihoods.

    Returns:
        log_alpha: (T, S) log forward probabilities
        log_prob: log probability of the observation sequence
    """
    with np.errstate(divide='ignore'):  # Handle log(0) gracefully
        log_b = np.log(_as_float_array(output_probs))
        log_start = np.log(_as_float_array(startprob))
        log_trans = np.log(_as_float_array(transmat))

        T = log_b.shape[0]
        log_alpha = np.empty_like(log_b)
        log_alpha[0] = log_start + log_b[0]
        for t in range(1, T):
            log_alpha[t] = logsumexp(log_alpha[t - 1][:, np.newaxis] + log_trans,
                                     axis=0) + log_b[t]
        log_prob = float(logsumexp(log_alpha[-1]))

    return log_alpha, log_prob
