"""
BalanceFinder CLI - Command-line interface for compositional microbiome analysis.

Commands:
    balancefinder analyze  - Diversity, PERMANOVA and balance selection for one count table
"""

import argparse
import sys
from typing import Optional, List

from balancefinder import __version__


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for balancefinder."""
    parser = argparse.ArgumentParser(
        prog="balancefinder",
        description="Compositional diversity and outcome-associated balances for microbiome count tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  analyze       Filter, replace zeros, rarefy, ordinate, test and select a balance

Examples:
  balancefinder analyze --counts counts.tsv --metadata metadata.tsv --outcome diagnosis
  balancefinder analyze --counts counts.csv --metadata meta.csv --outcome diagnosis \\
      --config analysis.yaml --seed 42 --workers 4 --output results/ibd
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    from balancefinder.cli import analyze
    analyze.register_parser(subparsers)

    parsed_args = parser.parse_args(args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
