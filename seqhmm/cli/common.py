"""Shared argparse argument factories for seqhmm CLI tools.

Each function adds a group of related arguments to an ArgumentParser.
Default values can be overridden per-script where needed.
"""

import argparse
import logging
import sys

from seqhmm.core.trellis import XI_METHODS


def add_training_args(parser: argparse.ArgumentParser,
                      delta: float = 1e-5,
                      max_iters: int = 1000) -> None:
    """Add EM convergence arguments (--delta, --max-iters, --xi-method)."""
    parser.add_argument(
        '--delta', type=float, default=delta,
        help=f"Stop when log likelihood improves by less than this (default: {delta})"
    )
    parser.add_argument(
        '--max-iters', type=int, default=max_iters,
        help=f"Maximum EM iterations per restart (default: {max_iters})"
    )
    parser.add_argument(
        '--xi-method', choices=list(XI_METHODS), default='scaled',
        help="Expected transition formula: 'scaled' divides by the posterior "
             "normalizer, 'ratio' divides by the backward probability (default: scaled)"
    )


def add_init_args(parser: argparse.ArgumentParser,
                  restarts: int = 10,
                  seed: int = 42) -> None:
    """Add initialization arguments (--init, --restarts, --seed, --prior)."""
    parser.add_argument(
        '--init', choices=['random', 'uniform'], default='random',
        help="Start/transition initialization; emissions are always random (default: random)"
    )
    parser.add_argument(
        '--restarts', '-r', type=int, default=restarts,
        help=f"Number of random initializations (default: {restarts})"
    )
    parser.add_argument(
        '--seed', '-s', type=int, default=seed,
        help=f"Random seed (default: {seed})"
    )
    parser.add_argument(
        '--prior', type=float, default=0.0,
        help="Dirichlet pseudo-count added to every count when refitting (default: 0.0)"
    )


def add_parallel_args(parser: argparse.ArgumentParser,
                      default_cores: int = 1) -> None:
    """Add --cores argument."""
    parser.add_argument(
        '--cores', '-c', type=int, default=default_cores,
        help=f"Number of worker threads (0=auto, default: {default_cores})"
    )


def add_output_args(parser: argparse.ArgumentParser,
                    required: bool = True,
                    help_text: str = "Output directory") -> None:
    """Add -o/--output argument."""
    parser.add_argument(
        '-o', '--output', required=required,
        help=help_text
    )


def add_verbose_args(parser: argparse.ArgumentParser) -> None:
    """Add --verbose flag."""
    parser.add_argument(
        '-v', '--verbose', action='store_true',
        help="Verbose output"
    )


def add_version_args(parser: argparse.ArgumentParser) -> None:
    """Add --version flag."""
    from seqhmm import __version__
    parser.add_argument(
        '--version', action='version',
        version=f'%(prog)s {__version__}'
    )


def resolve_cores(cores: int) -> int:
    """Translate the 0=auto convention into a thread count."""
    if cores > 0:
        return cores
    import os
    return os.cpu_count() or 1


def configure_logging(verbose: bool = False) -> None:
    """Route library log records to stdout; per-iteration detail only with --verbose."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format='%(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )
