#!/usr/bin/env python3
"""
seqhmm posteriors CLI entry point.
Writes P(state | sequence) for every position of every sequence in a corpus.
"""

import argparse
import sys

import numpy as np
import pandas as pd

from seqhmm.core.corpus import Vocabulary, read_corpus
from seqhmm.core.exceptions import HMMError
from seqhmm.core.model_io import load_model
from seqhmm.cli.common import add_output_args, add_verbose_args, add_version_args, configure_logging


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Compute posterior state probabilities with a trained seqhmm model',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Output:
  TSV with columns sequence, position, token, log_likelihood, state_0 ... state_{n-1}

Examples:
  seqhmm-posteriors -m out/best-model.json -V out/vocabulary.json -i corpus.txt -o posteriors.tsv
'''
    )

    add_version_args(parser)

    parser.add_argument('-m', '--model', required=True,
                        help='Trained model (.json or binary)')
    parser.add_argument('-V', '--vocabulary', required=True,
                        help='vocabulary.json written by seqhmm-train')
    parser.add_argument('-i', '--input', required=True,
                        help='Corpus file, one whitespace-tokenized sequence per line')
    add_output_args(parser, help_text='Output TSV path')
    add_verbose_args(parser)

    return parser.parse_args(argv)


def posterior_frame(model, corpus, vocabulary: Vocabulary) -> pd.DataFrame:
    """Long-format table: one row per (sequence, position)."""
    n_states = model.num_states()
    frames = []
    for idx, sequence in enumerate(corpus):
        gamma = model.predict_proba(sequence)
        frame = pd.DataFrame(gamma, columns=[f'state_{s}' for s in range(n_states)])
        frame.insert(0, 'log_likelihood', model.score(sequence))
        frame.insert(0, 'token', [vocabulary.token(int(o)) for o in sequence])
        frame.insert(0, 'position', np.arange(len(sequence)))
        frame.insert(0, 'sequence', idx)
        frames.append(frame)
    return pd.concat(frames, ignore_index=True)


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)

    model = load_model(args.model)
    vocabulary = Vocabulary.load(args.vocabulary)
    print(f"Loaded model with {model.num_states()} states, {len(vocabulary)} symbols")

    try:
        corpus, _ = read_corpus(args.input, vocabulary)
    except HMMError as e:
        print(f"Error: {e}")
        sys.exit(1)
    if not corpus:
        print(f"Error: {args.input} contains no sequences")
        sys.exit(1)

    try:
        frame = posterior_frame(model, corpus, vocabulary)
    except HMMError as e:
        print(f"Error: {e}")
        sys.exit(1)

    frame.to_csv(args.output, sep='\t', index=False)
    print(f"  Saved: {args.output} ({len(frame):,} positions)")
    print("Done!")


if __name__ == '__main__':
    main()
