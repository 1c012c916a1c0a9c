"""Core HMM model, trellis recurrences, distributions and model I/O."""

from seqhmm.core.hmm import HiddenMarkovModel, TrainingOptions, TrainingStatus, train_model
from seqhmm.core.markov_model import MarkovModel
from seqhmm.core.observations import MultinomialObservations, ObservationDistribution
from seqhmm.core.model_io import load_model, save_model, load_model_with_metadata
