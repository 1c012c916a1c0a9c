"""
Shared pytest fixtures for seqhmm tests.
"""
import pytest
import numpy as np


@pytest.fixture
def simple_emission_probs():
    """
    Simple 2-state, 4-symbol emission probability matrix.
    State 0: prefers low symbols
    State 1: prefers high symbols
    """
    return np.array([
        [0.4, 0.3, 0.2, 0.1],
        [0.1, 0.2, 0.3, 0.4],
    ])


@pytest.fixture
def sticky_transmat():
    return np.array([[0.9, 0.1], [0.2, 0.8]])


@pytest.fixture
def simple_observations():
    """Observation sequence with a low-symbol block, a high-symbol block, then low again."""
    return np.array([0, 0, 1, 0, 1, 3, 3, 2, 3, 3, 2, 1, 0, 0, 1], dtype=np.int64)


@pytest.fixture
def simple_model(simple_emission_probs, sticky_transmat):
    """2-state categorical HMM with fixed parameters."""
    from seqhmm.core.hmm import HiddenMarkovModel
    from seqhmm.core.markov_model import MarkovModel
    from seqhmm.core.observations import MultinomialObservations

    return HiddenMarkovModel(
        MultinomialObservations(simple_emission_probs),
        MarkovModel(np.array([0.6, 0.4]), sticky_transmat),
    )


@pytest.fixture
def model_tables(simple_model, simple_observations):
    """(output_probs, startprob, transmat) for simple_model on simple_observations."""
    from seqhmm.training.expectation import markov_tables

    startprob, transmat = markov_tables(simple_model.markov_model())
    output_probs = simple_model.observation_distribution().output_probabilities(simple_observations)
    return output_probs, startprob, transmat


@pytest.fixture
def random_corpus():
    """Small corpus of random-length sequences over 4 symbols, including a length-1 sequence."""
    rng = np.random.default_rng(7)
    corpus = [rng.integers(0, 4, size=n) for n in (12, 7, 20, 3, 15, 9)]
    corpus.append(np.array([2]))
    return corpus


@pytest.fixture
def corpus_file(tmp_path):
    """Whitespace-tokenized corpus file with a blank line."""
    path = tmp_path / "corpus.txt"
    path.write_text(
        "the cat sat on the mat\n"
        "\n"
        "a dog sat on a log\n"
        "the dog saw the cat\n"
        "cat\n"
    )
    return str(path)
