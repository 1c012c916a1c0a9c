"""E-step expected count accumulation and parallel reduction."""

from seqhmm.training.expectation import (
    ExpectedCounts,
    accumulate_sequence,
    expectation_step,
    forward_backward,
)
from seqhmm.training.parallel import reduction

__all__ = [
    'ExpectedCounts',
    'accumulate_sequence',
    'expectation_step',
    'forward_backward',
    'reduction',
]
