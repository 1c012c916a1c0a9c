"""
Tests for seqhmm.cli.common argument factories.
"""
import pytest
import argparse
import os

from seqhmm.cli.common import (
    add_training_args,
    add_init_args,
    add_parallel_args,
    add_output_args,
    add_verbose_args,
    resolve_cores,
)


class TestAddTrainingArgs:
    def test_defaults(self):
        parser = argparse.ArgumentParser()
        add_training_args(parser)
        args = parser.parse_args([])
        assert args.delta == 1e-5
        assert args.max_iters == 1000
        assert args.xi_method == 'scaled'

    def test_custom_defaults(self):
        parser = argparse.ArgumentParser()
        add_training_args(parser, delta=0.1, max_iters=7)
        args = parser.parse_args([])
        assert args.delta == 0.1
        assert args.max_iters == 7

    def test_xi_method_choices(self):
        parser = argparse.ArgumentParser()
        add_training_args(parser)
        assert parser.parse_args(['--xi-method', 'ratio']).xi_method == 'ratio'
        with pytest.raises(SystemExit):
            parser.parse_args(['--xi-method', 'invalid'])


class TestAddInitArgs:
    def test_defaults(self):
        parser = argparse.ArgumentParser()
        add_init_args(parser)
        args = parser.parse_args([])
        assert args.init == 'random'
        assert args.restarts == 10
        assert args.seed == 42
        assert args.prior == 0.0

    def test_short_flags(self):
        parser = argparse.ArgumentParser()
        add_init_args(parser)
        args = parser.parse_args(['-r', '3', '-s', '7', '--init', 'uniform'])
        assert args.restarts == 3
        assert args.seed == 7
        assert args.init == 'uniform'

    def test_invalid_init(self):
        parser = argparse.ArgumentParser()
        add_init_args(parser)
        with pytest.raises(SystemExit):
            parser.parse_args(['--init', 'kmeans'])


class TestAddParallelArgs:
    def test_default(self):
        parser = argparse.ArgumentParser()
        add_parallel_args(parser)
        args = parser.parse_args([])
        assert args.cores == 1

    def test_short_flag(self):
        parser = argparse.ArgumentParser()
        add_parallel_args(parser, default_cores=2)
        assert parser.parse_args([]).cores == 2
        assert parser.parse_args(['-c', '8']).cores == 8


class TestAddOutputArgs:
    def test_required(self):
        parser = argparse.ArgumentParser()
        add_output_args(parser)
        with pytest.raises(SystemExit):
            parser.parse_args([])

    def test_optional(self):
        parser = argparse.ArgumentParser()
        add_output_args(parser, required=False)
        args = parser.parse_args([])
        assert args.output is None


class TestAddVerboseArgs:
    def test_flag(self):
        parser = argparse.ArgumentParser()
        add_verbose_args(parser)
        assert not parser.parse_args([]).verbose
        assert parser.parse_args(['-v']).verbose


class TestResolveCores:
    def test_explicit(self):
        assert resolve_cores(3) == 3

    def test_auto(self):
        assert resolve_cores(0) == (os.cpu_count() or 1)
