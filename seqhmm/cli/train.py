#!/usr/bin/env python3
"""
seqhmm train CLI entry point.
Fits a categorical HMM to an unlabeled, whitespace-tokenized corpus
(one sequence per line) with Baum-Welch and random restarts.
"""

import argparse
import json
import os
import sys

import pandas as pd

from seqhmm.core.corpus import read_corpus
from seqhmm.core.exceptions import HMMError
from seqhmm.core.hmm import TrainingOptions, train_model
from seqhmm.core.model_io import save_model
from seqhmm.cli.common import (
    add_training_args, add_init_args, add_parallel_args, add_output_args,
    add_verbose_args, add_version_args, configure_logging, resolve_cores,
)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Train an HMM on an unlabeled corpus with Baum-Welch',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Output:
  best-model.json     Best model (human-readable)
  best-model.hmm      Best model (binary stream format)
  vocabulary.json     Token -> symbol id mapping
  history.tsv         Log likelihood per EM iteration, per restart
  model_config.json   Training settings

Examples:
  seqhmm-train -i corpus.txt -o out/ -n 2
  seqhmm-train -i corpus.txt -o out/ -n 8 --restarts 20 -c 4 --prior 0.01
'''
    )

    add_version_args(parser)

    parser.add_argument('-i', '--input', required=True,
                        help='Corpus file, one whitespace-tokenized sequence per line')
    add_output_args(parser)
    parser.add_argument('-n', '--states', type=int, required=True,
                        help='Number of hidden states')

    add_training_args(parser)
    add_init_args(parser)
    add_parallel_args(parser)
    add_verbose_args(parser)

    return parser.parse_args(argv)


def history_frame(results) -> pd.DataFrame:
    """One row per (restart, iteration) with that iteration's log likelihood."""
    rows = []
    for restart, (model, _) in enumerate(results, start=1):
        for iteration, ll in enumerate(model.monitor_.history, start=1):
            rows.append({
                'restart': restart,
                'iteration': iteration,
                'log_likelihood': ll,
                'status': model.status.value,
            })
    return pd.DataFrame(rows, columns=['restart', 'iteration', 'log_likelihood', 'status'])


def main(argv=None):
    args = parse_args(argv)
    configure_logging(args.verbose)

    cores = resolve_cores(args.cores)

    print("seqhmm Model Training")
    print(f"  Input: {args.input}")
    print(f"  States: {args.states}")
    print(f"  Restarts: {args.restarts} ({args.init} init)")
    print(f"  Seed: {args.seed}")
    print(f"  Cores: {cores}")

    corpus, vocabulary = read_corpus(args.input)
    n_observations = sum(len(seq) for seq in corpus)
    print(f"\nRead {len(corpus)} sequences, {n_observations:,} observations, "
          f"{len(vocabulary)} distinct symbols")

    options = TrainingOptions(
        delta=args.delta,
        max_iters=args.max_iters,
        xi_method=args.xi_method,
        n_jobs=cores,
    )

    print(f"\nTraining HMM ({args.restarts} restarts)...")
    try:
        best_model, results = train_model(
            corpus, args.states, len(vocabulary),
            n_restarts=args.restarts,
            seed=args.seed,
            options=options,
            init=args.init,
            prior=args.prior,
            progress=True,
        )
    except HMMError as e:
        print(f"Error: training failed: {e}")
        sys.exit(1)

    best_ll = max(ll for _, ll in results)
    print(f"\nBest model selected (log likelihood {best_ll:.4f}, "
          f"{len(results)}/{args.restarts} restarts succeeded)")

    os.makedirs(args.output, exist_ok=True)
    print(f"\nSaving to {args.output}")

    config = {
        'input': args.input,
        'states': args.states,
        'symbols': len(vocabulary),
        'restarts': args.restarts,
        'init': args.init,
        'seed': args.seed,
        'prior': args.prior,
        'delta': args.delta,
        'max_iters': args.max_iters,
        'xi_method': args.xi_method,
    }

    save_model(best_model, os.path.join(args.output, 'best-model.json'),
               log_likelihood=best_ll, **config)
    print("  Saved: best-model.json")

    save_model(best_model, os.path.join(args.output, 'best-model.hmm'))
    print("  Saved: best-model.hmm")

    vocabulary.save(os.path.join(args.output, 'vocabulary.json'))
    print("  Saved: vocabulary.json")

    history_frame(results).to_csv(os.path.join(args.output, 'history.tsv'),
                                  sep='\t', index=False)
    print("  Saved: history.tsv")

    with open(os.path.join(args.output, 'model_config.json'), 'w') as f:
        json.dump(config, f, indent=2)
    print("  Saved: model_config.json")

    print("Done!")


if __name__ == '__main__':
    main()
