"""Exceptions raised while building or training hidden Markov models."""

from typing import Optional


class HMMError(RuntimeError):
    """Base class for all seqhmm errors."""


class ConfigurationError(HMMError):
    """The model or the training inputs are inconsistent."""


class ConvergenceFailure(HMMError):
    """Log likelihood decreased between two consecutive EM iterations."""

    def __init__(self, iteration: int, old_log_likelihood: float,
                 log_likelihood: float):
        self.iteration = iteration
        self.old_log_likelihood = old_log_likelihood
        self.log_likelihood = log_likelihood
        self.delta = log_likelihood - old_log_likelihood
        super().__init__(
            f"Log likelihood did not improve at iteration {iteration}: "
            f"{old_log_likelihood:.6f} -> {log_likelihood:.6f} "
            f"(delta {self.delta:.3e})"
        )


class DegenerateSequenceError(HMMError):
    """A sequence has zero probability mass somewhere in its trellis."""

    def __init__(self, reason: str, sequence_index: Optional[int] = None,
                 time_step: Optional[int] = None, state: Optional[int] = None):
        self.reason = reason
        self.sequence_index = sequence_index
        self.time_step = time_step
        self.state = state

        where = []
        if sequence_index is not None:
            where.append(f"sequence {sequence_index}")
        if time_step is not None:
            where.append(f"t={time_step}")
        if state is not None:
            where.append(f"state {state}")
        message = reason if not where else f"{reason} ({', '.join(where)})"
        super().__init__(message)

    def for_sequence(self, sequence_index: int) -> 'DegenerateSequenceError':
        """Copy of this error tagged with the corpus index of its sequence."""
        return DegenerateSequenceError(self.reason, sequence_index,
                                       self.time_step, self.state)
