"""CLI entry point for the CDA copier.

Usage:
    python -m cdacopy --config ./cda_copy.yaml
    python -m cdacopy --config ./cda_copy.yaml --dry-run
    cda-copy --config ./cda_copy.yaml --json-log --log-file ./cda_copy.log

Exit codes:
    0 - the run completed (individual jobs may have failed; see the summary)
    1 - fatal error (configuration, manifest, output or savepoints location)
    2 - usage error
    130 - interrupted
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from cdacopy.lib.config_loader import load_config
from cdacopy.lib.copier import RunSummary, TableCopier
from cdacopy.lib.env import load_env_file
from cdacopy.lib.errors import CopyError
from cdacopy.lib.observability import setup_logging

logger = logging.getLogger("cdacopy")


def print_plan(summary: RunSummary) -> None:
    """Print the jobs a dry run would execute."""
    plan = summary.plan
    rows = plan.describe() if plan else []
    print(f"\nPlanned {len(rows)} copy job(s):")
    for row in rows:
        print(
            f"  {row['table']} [{row['fingerprint']}]: {row['partitions']} partition(s) "
            f"{row['first_timestamp']}..{row['last_timestamp']}"
        )
    for failure in summary.failed:
        print(f"  {failure.table} [{failure.fingerprint}]: cannot be planned ({failure.error})")


def print_summary(summary: RunSummary) -> None:
    """Print the outcome of a run."""
    print(
        f"\nCompleted {summary.completed_jobs} of {summary.total_jobs} copy job(s) "
        f"in {summary.elapsed_seconds:.1f}s"
    )
    if summary.failed:
        print(f"{summary.failed_jobs} job(s) failed and will be retried on the next run:")
        for failure in summary.failed:
            stage = failure.failed_in.value if failure.failed_in else "unknown"
            print(f"  {failure.table} [{failure.fingerprint}] failed while {stage}: {failure.error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cda-copy",
        description="Incrementally copy CDA export snapshots to an output location",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Copy everything not yet copied
    cda-copy --config ./cda_copy.yaml

    # Show which partitions would be copied, without copying
    cda-copy --config ./cda_copy.yaml --dry-run
        """,
    )
    parser.add_argument(
        "-c",
        "--config",
        required=True,
        help="Path to the YAML configuration file",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Plan the copy jobs without fetching, writing or saving savepoints",
    )
    parser.add_argument(
        "--env-file",
        help="Load environment variables from this .env file first",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to a file in addition to console",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_log,
        log_file=args.log_file,
    )

    try:
        load_env_file(args.env_file)
        config = load_config(args.config)
        copier = TableCopier.from_config(config)
        summary = copier.run(dry_run=args.dry_run)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(130)
    except CopyError as e:
        logger.error("Run aborted: %s", e, extra={"error": e.to_dict()})
        print(f"\nError: {e}")
        sys.exit(1)

    if summary.dry_run:
        print_plan(summary)
    else:
        print_summary(summary)


if __name__ == "__main__":
    main()
