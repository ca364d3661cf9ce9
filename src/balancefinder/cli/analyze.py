"""
BalanceFinder analyze command - full compositional analysis of one count table.

Usage:
    balancefinder analyze --counts counts.tsv --metadata metadata.tsv --outcome diagnosis

Outputs (in --output):
    summary.json  Run summary: ordination, PERMANOVA, selected balance, config
    samples.tsv   Per-sample metadata, coverage, diversity, balance, PC coordinates
    taxa.tsv      Per-taxon SBP, contrast, CLR and approximate mean differences
"""

import argparse
import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from balancefinder.cli._validators import (
    _non_negative_int,
    _positive_float,
    _positive_int,
    _probability,
)
from balancefinder.stats.scoring import ScoringRule


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the analyze subcommand."""
    parser = subparsers.add_parser(
        "analyze",
        help="Diversity, PERMANOVA and balance selection for a count table",
        description="Compositional analysis: prevalence filter, zero replacement, rarefied "
                    "diversity, Aitchison PCoA, PERMANOVA and greedy balance selection"
    )

    parser.add_argument("--counts", "-i", type=Path, required=True,
                        help="Count table (CSV/TSV), samples as rows unless --taxa-in-rows")
    parser.add_argument("--metadata", "-m", type=Path, required=True,
                        help="Sample metadata table (CSV/TSV)")
    parser.add_argument("--outcome", default=None,
                        help="Metadata column holding the categorical outcome")
    parser.add_argument("--covariates", nargs="+", default=None,
                        help="Numeric metadata columns to adjust balance models for")
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="YAML or JSON analysis config; flags override its values")
    parser.add_argument("--output", "-o", type=Path, default=Path("results/balancefinder"),
                        help="Output directory for results")
    parser.add_argument("--taxa-in-rows", action="store_true",
                        help="Count table has taxa as rows and samples as columns")
    parser.add_argument("--sample-id-column", default=None,
                        help="Metadata column with sample identifiers (default: first column)")

    # Overrides (None = keep config value)
    parser.add_argument("--seed", type=_non_negative_int, default=None,
                        help="Random seed for rarefaction and permutations")
    parser.add_argument("--depth", type=_positive_int, default=None,
                        help="Rarefaction depth (default: smallest library size)")
    parser.add_argument("--repetitions", type=_positive_int, default=None,
                        help="Rarefaction repetitions (default: 10)")
    parser.add_argument("--permutations", type=_positive_int, default=None,
                        help="PERMANOVA permutations (default: 999)")
    parser.add_argument("--min-prevalence", type=_probability, default=None,
                        help="Minimum fraction of samples a taxon must be present in (default: 0.1)")
    parser.add_argument("--scoring", choices=[rule.value for rule in ScoringRule], default=None,
                        help="Association score for balance selection (default: f_statistic)")
    parser.add_argument("--max-taxa", type=_positive_int, default=None,
                        help="Maximum taxa in the selected balance (default: 20)")
    parser.add_argument("--time-budget", type=_positive_float, default=None,
                        help="Wall-clock limit for balance selection, in seconds")
    parser.add_argument("--strict", action="store_true",
                        help="Fail if balance selection does not converge")
    parser.add_argument("--workers", type=_positive_int, default=None,
                        help="Worker threads for rarefaction and permutations (default: 1)")

    parser.set_defaults(func=run_analyze)


def _separator(path: Path) -> str:
    return "\t" if path.suffix.lower() in (".tsv", ".txt", ".tab") else ","


def read_counts(path: Path, taxa_in_rows: bool = False) -> pd.DataFrame:
    """Read a count table into a samples × taxa DataFrame."""
    counts = pd.read_csv(path, sep=_separator(path), index_col=0)
    if taxa_in_rows:
        counts = counts.T
    return counts


def read_metadata(path: Path, sample_id_column: Optional[str] = None) -> pd.DataFrame:
    """Read a metadata table indexed by sample identifier."""
    if sample_id_column is None:
        return pd.read_csv(path, sep=_separator(path), index_col=0)
    metadata = pd.read_csv(path, sep=_separator(path))
    if sample_id_column not in metadata.columns:
        raise KeyError(f"Sample id column '{sample_id_column}' not in metadata")
    return metadata.set_index(sample_id_column)


def build_config(args: argparse.Namespace):
    """Config file (if any) with explicitly given flags applied on top."""
    from balancefinder.config import AnalysisConfig, load_config

    config = load_config(args.config) if args.config else AnalysisConfig()

    if args.outcome is not None:
        config.outcome = args.outcome
    if args.covariates is not None:
        config.covariates = list(args.covariates)
    if args.seed is not None:
        config.seed = args.seed
    if args.workers is not None:
        config.n_jobs = args.workers
    if args.min_prevalence is not None:
        config.filter.min_prevalence = args.min_prevalence
    if args.depth is not None:
        config.rarefaction.depth = args.depth
    if args.repetitions is not None:
        config.rarefaction.repetitions = args.repetitions
    if args.permutations is not None:
        config.permutation.n_permutations = args.permutations
    if args.scoring is not None:
        config.selection.scoring = args.scoring
    if args.max_taxa is not None:
        config.selection.max_taxa = args.max_taxa
    if args.time_budget is not None:
        config.selection.time_budget = args.time_budget
    if args.strict:
        config.selection.strict = True

    return config


def print_summary(result) -> None:
    """Print a short human-readable summary of an AnalysisResult."""
    selection = result.selection
    permanova = result.permanova

    print(f"\n{'='*70}")
    print("  Analysis Summary")
    print(f"{'='*70}")
    print(f"  Samples: {len(result.samples)}/{result.n_samples_input}   "
          f"Taxa: {len(result.taxa)}/{result.n_taxa_input}")
    print(f"  Rarefaction depth: {result.depth}")
    print(f"  PCoA: PC1 {result.percent_explained.iloc[0]:.1f}%"
          + (f", PC2 {result.percent_explained.iloc[1]:.1f}%" if len(result.percent_explained) > 1 else ""))
    print(f"  PERMANOVA: pseudo-F={permanova.statistic:.3f}, R²={permanova.r_squared:.3f}, "
          f"p={permanova.p_value:.4f} ({permanova.n_permutations} permutations)")
    print(f"  Balance ({selection.scoring}={selection.score:.3f}, {selection.stop_reason}):")
    print(f"    numerator:   {', '.join(selection.balance.numerator)}")
    print(f"    denominator: {', '.join(selection.balance.denominator)}")
    print(f"    model: F={selection.model.f_statistic:.3f}, p={selection.model.p_value:.3g}, "
          f"R²={selection.model.r_squared:.3f}")
    if not selection.converged:
        print("    WARNING: selection did not converge; balance is a partial result")
    print(f"{'='*70}\n")


def run_analyze(args: argparse.Namespace) -> int:
    """Execute the analyze command."""
    from balancefinder.core.errors import BalanceFinderError
    from balancefinder.pipeline import run_analysis
    from balancefinder.utils.fileio import atomic_write_json, atomic_write_table

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logger = logging.getLogger(__name__)

    print(f"\n{'='*70}")
    print("  BalanceFinder: Compositional Analysis")
    print(f"{'='*70}\n")

    try:
        config = build_config(args)
        config.check()

        logger.info(f"Loading counts: {args.counts}")
        counts = read_counts(args.counts, taxa_in_rows=args.taxa_in_rows)
        logger.info(f"Loading metadata: {args.metadata}")
        metadata = read_metadata(args.metadata, sample_id_column=args.sample_id_column)

        result = run_analysis(counts, metadata, config)
    except BalanceFinderError as e:
        logger.error(f"Analysis failed: {e}")
        return 1
    except (FileNotFoundError, KeyError) as e:
        logger.error(f"Could not read input: {e}")
        return 1

    args.output.mkdir(parents=True, exist_ok=True)
    atomic_write_json(args.output / "summary.json", result.to_dict())
    atomic_write_table(args.output / "samples.tsv", result.samples)
    atomic_write_table(args.output / "taxa.tsv", result.taxa)
    logger.info(f"Results written to {args.output}")

    print_summary(result)
    return 0
