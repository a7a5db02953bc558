"""Command-line interface for store merger."""

import argparse
import json
import sys
from pathlib import Path
from typing import Optional

from .errors import MergeError
from .merger import STRATEGIES, merge_files
from .models import MergeStats
from .rules import COMBINATORS, DEFAULT_RULES, parse_rules

DEFAULT_PRIMARY = Path("jarvis.db")
DEFAULT_SOURCE = Path("hal.db")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    default_rules = " ".join(str(rule) for rule in DEFAULT_RULES)
    parser = argparse.ArgumentParser(
        description="Merge file metadata from a source SQLite store into a primary store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Only rows whose path exists in both stores are updated. Nothing is
inserted or deleted, and the source store is opened read-only.

Default rules: {default_rules}
Note: min2 yields NULL when either side is NULL.

Examples:
  %(prog)s
  %(prog)s --primary jarvis.db --source hal.db --verbose
  %(prog)s --rule size_bytes=min2 --rule optimized=coalesce2 --dry-run
        """
    )

    parser.add_argument(
        "--primary", "-p",
        type=Path,
        default=DEFAULT_PRIMARY,
        help=f"Store receiving merged values (default: {DEFAULT_PRIMARY})"
    )

    parser.add_argument(
        "--source", "-s",
        type=Path,
        default=DEFAULT_SOURCE,
        help=f"Read-only store supplying values (default: {DEFAULT_SOURCE})"
    )

    parser.add_argument(
        "--rule", "-r",
        action="append",
        dest="rules",
        metavar="FIELD=COMBINATOR",
        help=f"Merge rule, repeatable; replaces the defaults "
             f"(combinators: {', '.join(sorted(COMBINATORS))})"
    )

    parser.add_argument(
        "--strategy",
        choices=STRATEGIES,
        default="rows",
        help="rows: read-then-write loop, bulk: one UPDATE ... FROM statement (default: rows)"
    )

    parser.add_argument(
        "--timeout",
        type=float,
        default=5.0,
        help="Seconds to wait for the primary store's write lock (default: 5.0)"
    )

    parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Show what would change, then roll back"
    )

    parser.add_argument(
        "--progress",
        action="store_true",
        help="Show a progress bar while merging"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Print a summary after merging"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the merge statistics as JSON"
    )

    args = parser.parse_args(argv)
    try:
        args.rules = parse_rules(args.rules)
    except ValueError as e:
        parser.error(str(e))
    return args


def print_summary(stats: MergeStats, args: argparse.Namespace) -> None:
    """Print the outcome of a merge."""
    print("=" * 60)
    print("STORE MERGER" + (" (DRY RUN)" if stats.dry_run else ""))
    print("=" * 60)
    print(f"Primary: {args.primary.absolute()}")
    print(f"Source:  {args.source.absolute()}")
    print(f"Rules:   {' '.join(str(rule) for rule in args.rules)}")
    print(f"Matched rows: {stats.matched}")
    if stats.dry_run:
        print(f"Rows that would change: {stats.updated}")
    else:
        print(f"Rows changed: {stats.updated}")

    if stats.dry_run and stats.changes:
        print("\n--- Pending changes ---")
        for change in stats.changes:
            print(f"  {change.path}: {change.field} {change.before!r} -> {change.after!r}")
        print("-" * 20)


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    try:
        stats = merge_files(
            args.primary,
            args.source,
            rules=args.rules,
            strategy=args.strategy,
            dry_run=args.dry_run,
            progress=args.progress,
            timeout=args.timeout
        )
    except MergeError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        print("\n\nInterrupted! The primary store was left unchanged.", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(stats.to_dict(), indent=2, default=str))
    elif args.verbose or args.dry_run:
        print_summary(stats, args)
