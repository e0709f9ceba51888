"""
Command-line interface for the pipeline.

Each stage has its own subcommand so a failed partition (page offset, batch
index, year-month) can be rerun without repeating the rest. Exit status is 1
whenever a stage reports failures.
"""

from __future__ import annotations

import argparse
import logging
import sys

from marine_sdm import __version__
from marine_sdm.config import get_settings
from marine_sdm.errors import PipelineError
from marine_sdm.flows.backbone import backbone_flow
from marine_sdm.flows.join import join_flow
from marine_sdm.flows.occurrences import materialize_handles, occurrences_flow
from marine_sdm.flows.pipeline import pipeline_flow
from marine_sdm.flows.taxonomy import taxonomy_flow


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="marine-sdm",
        description="Acquisition-and-join pipeline for marine species distribution models",
    )
    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("info", help="Show settings and expected environmental variables")

    taxonomy_parser = subparsers.add_parser(
        "taxonomy", help="Dump the WoRMS register and curate the shortlist"
    )
    taxonomy_parser.add_argument(
        "--resume",
        action="store_true",
        help="Continue after the last page stored on disk instead of starting over",
    )

    subparsers.add_parser("match", help="Match shortlist names against the GBIF backbone")

    download_parser = subparsers.add_parser("download", help="Run GBIF occurrence downloads")
    download_parser.add_argument(
        "--batch",
        type=int,
        action="append",
        dest="batches",
        metavar="INDEX",
        help="Only (re)run this batch index (repeatable)",
    )
    download_parser.add_argument(
        "--materialize",
        action="store_true",
        help="Fetch archives for download keys recorded in handle mode",
    )

    join_parser = subparsers.add_parser("join", help="Join occurrences to environmental layers")
    join_parser.add_argument(
        "--month",
        action="append",
        dest="months",
        metavar="YYYYMM",
        help="Only (re)extract this year-month (repeatable)",
    )

    run_parser = subparsers.add_parser("run", help="Run every stage in order")
    run_parser.add_argument(
        "--resume",
        action="store_true",
        help="Resume the taxonomy dump from disk",
    )

    return parser


def cmd_info(_args: argparse.Namespace) -> int:
    """Handle the 'info' command."""
    settings = get_settings()
    print(f"Application: {settings.app_name}")
    print(f"Version: {__version__}")
    print(f"Environment: {settings.app_env}")
    print(f"Debug: {settings.debug}")
    print(f"Data dir: {settings.data_dir}")
    print(f"Target taxa: {len(settings.target_taxon_keys)}")
    background = settings.background_taxon_keys
    print(f"Background taxa: {'all non-target' if background is None else len(background)}")
    print(f"Download mode: {settings.download.mode} (batch size {settings.download.batch_size})")
    print(f"Environment dir: {settings.join.environment_dir}")
    print(f"Expected layers per month: {settings.join.expected_layers}")
    variables = settings.expected_variables()
    if variables:
        print("Environmental variables:")
        for name in variables:
            entry = settings.datasets[name]
            print(f"  {name}: {entry.dataset_id} ({entry.timescale})")
    return 0


def cmd_taxonomy(args: argparse.Namespace) -> int:
    """Handle the 'taxonomy' command."""
    report = taxonomy_flow(resume=args.resume)
    if not report.ok:
        print(
            f"Error: registry page at offset {report.fetch.failed_offset} failed twice",
            file=sys.stderr,
        )
        return 1
    return 0


def cmd_match(_args: argparse.Namespace) -> int:
    """Handle the 'match' command."""
    report = backbone_flow()
    if not report.ok:
        starts = ", ".join(str(f.chunk_start) for f in report.failures)
        print(f"Error: name chunks starting at {starts} failed", file=sys.stderr)
        return 1
    return 0


def cmd_download(args: argparse.Namespace) -> int:
    """Handle the 'download' command."""
    if args.materialize:
        report = materialize_handles(batches=args.batches)
    else:
        report = occurrences_flow(batches=args.batches)
    if not report.ok:
        failed = " ".join(f"--batch {job.batch_index}" for job in report.failed)
        print(f"Error: {len(report.failed)} batches failed; rerun with {failed}", file=sys.stderr)
        return 1
    return 0


def cmd_join(args: argparse.Namespace) -> int:
    """Handle the 'join' command."""
    report = join_flow(months=args.months)
    if not report.ok:
        failed = " ".join(f"--month {ym}" for ym in sorted(report.failed_months))
        print(
            f"Error: {len(report.failed_months)} months failed; rerun with {failed}",
            file=sys.stderr,
        )
        return 1
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command: every stage in order."""
    result = pipeline_flow(resume=args.resume)
    if not result.ok:
        print("Error: pipeline stopped with failures (see stage output above)", file=sys.stderr)
        return 1
    print("Done.")
    return 0


def main() -> int:
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "info": cmd_info,
        "taxonomy": cmd_taxonomy,
        "match": cmd_match,
        "download": cmd_download,
        "join": cmd_join,
        "run": cmd_run,
    }

    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    try:
        return handler(args)
    except (PipelineError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
