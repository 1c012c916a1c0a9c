"""
Tests for seqhmm.core.observations: the observation distribution contract and
the categorical implementation.
"""
import io

import pytest
import numpy as np

from seqhmm.core.exceptions import ConfigurationError
from seqhmm.core.observations import (
    MultinomialCounts,
    MultinomialObservations,
    ObservationCounts,
    ObservationDistribution,
    observation_type,
)


class TestValidation:
    @pytest.mark.parametrize("probs", [
        np.array([0.5, 0.5]),
        np.zeros((0, 3)),
        np.array([[0.5, 0.6], [0.5, 0.5]]),
        np.array([[1.5, -0.5], [0.5, 0.5]]),
    ])
    def test_invalid_table(self, probs):
        with pytest.raises(ConfigurationError):
            MultinomialObservations(probs)

    def test_negative_prior(self, simple_emission_probs):
        with pytest.raises(ConfigurationError, match="prior"):
            MultinomialObservations(simple_emission_probs, prior=-1.0)

    def test_shape_accessors(self, simple_emission_probs):
        dist = MultinomialObservations(simple_emission_probs)
        assert dist.num_states() == 2
        assert dist.n_symbols == 4
        assert dist.probability(3, 1) == pytest.approx(0.4)
        np.testing.assert_allclose(dist.distribution(0), [0.4, 0.3, 0.2, 0.1])


class TestConstruction:
    def test_random_rows_are_distributions(self):
        dist = MultinomialObservations.random(3, 6, np.random.default_rng(1))
        assert dist.emissionprob_.shape == (3, 6)
        np.testing.assert_allclose(dist.emissionprob_.sum(axis=1), 1.0)

    def test_random_reproducible(self):
        a = MultinomialObservations.random(3, 6, np.random.default_rng(5))
        b = MultinomialObservations.random(3, 6, np.random.default_rng(5))
        np.testing.assert_array_equal(a.emissionprob_, b.emissionprob_)

    def test_uniform(self):
        dist = MultinomialObservations.uniform(2, 5, prior=0.5)
        np.testing.assert_allclose(dist.emissionprob_, 0.2)
        assert dist.prior == 0.5


class TestOutputProbabilities:
    def test_table_shape_and_values(self, simple_emission_probs, simple_observations):
        dist = MultinomialObservations(simple_emission_probs)
        table = dist.output_probabilities(simple_observations)

        assert table.shape == (len(simple_observations), 2)
        for t, o in enumerate(simple_observations):
            for s in range(2):
                assert table[t, s] == dist.probability(o, s)

    @pytest.mark.parametrize("bad", [[0, 4], [-1, 2]])
    def test_out_of_range_symbol(self, simple_emission_probs, bad):
        dist = MultinomialObservations(simple_emission_probs)
        with pytest.raises(ConfigurationError, match="Observation symbols"):
            dist.output_probabilities(np.array(bad))


class TestCounts:
    def test_increment(self):
        counts = MultinomialCounts(2, 3)
        counts.increment(2, 1, 0.25)
        counts.increment(2, 1, 0.5)
        assert counts.counts[1, 2] == pytest.approx(0.75)
        assert counts.counts.sum() == pytest.approx(0.75)

    def test_increment_sequence_matches_loop(self):
        rng = np.random.default_rng(3)
        sequence = np.array([0, 2, 2, 1, 0, 2])
        gamma = rng.dirichlet(np.ones(2), size=len(sequence))

        vectorized = MultinomialCounts(2, 3)
        vectorized.increment_sequence(sequence, gamma)

        looped = MultinomialCounts(2, 3)
        for t, o in enumerate(sequence):
            for s in range(2):
                looped.increment(o, s, gamma[t, s])

        np.testing.assert_allclose(vectorized.counts, looped.counts)

    def test_iadd(self):
        a = MultinomialCounts(2, 2)
        b = MultinomialCounts(2, 2)
        a.increment(0, 0, 1.0)
        b.increment(1, 1, 2.0)

        result = a
        result += b
        assert result is a
        np.testing.assert_allclose(a.counts, [[1.0, 0.0], [0.0, 2.0]])

    def test_expected_counts_shape(self, simple_emission_probs):
        dist = MultinomialObservations(simple_emission_probs, prior=0.1)
        counts = dist.expected_counts()
        assert counts.counts.shape == (2, 4)
        assert counts.prior == 0.1
        assert not counts.counts.any()


class TestFromCounts:
    def test_normalizes_rows(self):
        counts = MultinomialCounts(2, 3)
        counts.counts[:] = [[2.0, 1.0, 1.0], [0.0, 3.0, 1.0]]

        dist = MultinomialObservations.from_counts(counts)
        np.testing.assert_allclose(dist.emissionprob_, [[0.5, 0.25, 0.25], [0.0, 0.75, 0.25]])

    def test_prior_smooths_zero_counts(self):
        counts = MultinomialCounts(1, 3, prior=1.0)
        counts.counts[:] = [[2.0, 0.0, 0.0]]

        dist = MultinomialObservations.from_counts(counts)
        np.testing.assert_allclose(dist.emissionprob_, [[0.6, 0.2, 0.2]])
        assert dist.prior == 1.0

    def test_empty_row_becomes_uniform(self):
        counts = MultinomialCounts(2, 4)
        counts.counts[0] = [1.0, 1.0, 0.0, 0.0]

        dist = MultinomialObservations.from_counts(counts)
        np.testing.assert_allclose(dist.emissionprob_[1], 0.25)


class TestStream:
    def test_save_load(self, simple_emission_probs):
        dist = MultinomialObservations(simple_emission_probs, prior=0.3)
        stream = io.BytesIO()
        dist.save(stream)
        stream.seek(0)

        loaded = MultinomialObservations.load(stream)
        np.testing.assert_array_equal(loaded.emissionprob_, dist.emissionprob_)
        assert loaded.prior == 0.3

    def test_dict_round_trip(self, simple_emission_probs):
        dist = MultinomialObservations(simple_emission_probs)
        d = dist.to_dict()
        assert d['type'] == 'multinomial'
        loaded = MultinomialObservations.from_dict(d)
        np.testing.assert_allclose(loaded.emissionprob_, dist.emissionprob_)


class TestObservationType:
    def test_lookup(self):
        assert observation_type('multinomial') is MultinomialObservations
        assert observation_type(None) is MultinomialObservations

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="Unknown observation distribution"):
            observation_type('gaussian')


class ParityCounts(ObservationCounts):
    """Counts of even/odd observations per state."""

    def __init__(self, n_states):
        self.table = np.zeros((n_states, 2))

    def increment(self, observation, state, weight):
        self.table[state, observation % 2] += weight

    def __iadd__(self, other):
        self.table += other.table
        return self


class ParityObservations(ObservationDistribution):
    """Distribution over integers that only looks at parity."""

    def __init__(self, p_even):
        self.p_even = np.asarray(p_even, dtype=float)

    def num_states(self):
        return len(self.p_even)

    def probability(self, observation, state):
        return self.p_even[state] if observation % 2 == 0 else 1.0 - self.p_even[state]

    def expected_counts(self):
        return ParityCounts(self.num_states())

    @classmethod
    def from_counts(cls, counts):
        return cls(counts.table[:, 0] / counts.table.sum(axis=1))

    def save(self, stream):
        np.save(stream, self.p_even)

    @classmethod
    def load(cls, stream):
        return cls(np.load(stream))


class TestCustomDistribution:
    """The base class supplies working defaults for the batched methods."""

    def test_default_output_probabilities(self):
        dist = ParityObservations([0.9, 0.2])
        table = dist.output_probabilities([4, 7, 10])
        np.testing.assert_allclose(table, [[0.9, 0.2], [0.1, 0.8], [0.9, 0.2]])

    def test_default_increment_sequence(self):
        counts = ParityCounts(2)
        counts.increment_sequence([4, 7], np.array([[0.75, 0.25], [0.5, 0.5]]))
        np.testing.assert_allclose(counts.table, [[0.75, 0.5], [0.25, 0.5]])

    def test_trains_inside_hmm(self):
        from seqhmm.core.hmm import HiddenMarkovModel, TrainingOptions
        from seqhmm.core.markov_model import MarkovModel

        model = HiddenMarkovModel(ParityObservations([0.7, 0.4]),
                                  MarkovModel(np.array([0.5, 0.5]),
                                              np.array([[0.8, 0.2], [0.3, 0.7]])))
        corpus = [np.array([2, 4, 6, 1, 3, 5, 8, 10]), np.array([1, 1, 3, 2])]

        ll = model.fit(corpus, options=TrainingOptions(max_iters=20))

        assert np.isfinite(ll)
        assert isinstance(model.observation_distribution(), ParityObservations)
