"""
seqhmm - unsupervised Hidden Markov Model training (Baum-Welch) for
sequence labeling over unlabeled corpora.
"""

__version__ = "1.0.0"

from seqhmm.core.hmm import HiddenMarkovModel, TrainingOptions, TrainingStatus, train_model
from seqhmm.core.markov_model import MarkovModel
from seqhmm.core.observations import MultinomialObservations, ObservationDistribution
from seqhmm.core.exceptions import (
    HMMError,
    ConfigurationError,
    ConvergenceFailure,
    DegenerateSequenceError,
)
from seqhmm.core.model_io import load_model, save_model, load_model_with_metadata
