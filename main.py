"""Main entry point for Ledgerflow"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import List, Optional

from config import Settings, load_settings
from core.exceptions import ConfigurationError, LedgerflowError, PipelineTimeoutError
from core.logging_config import configure_logging
from core.models import PipelineResult
from pipeline.builder import transaction_pipeline
from stages.s0_fetch import open_source
from ui.progress import ConsoleProgress, ProgressTracker

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2
EXIT_TIMEOUT = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Ledgerflow - Transaction enrichment pipeline",
        epilog="Unset options fall back to environment variables and .env"
    )
    parser.add_argument("source", help="CSV file path or http(s) URL returning JSON transactions")
    parser.add_argument("--output-dir", type=Path, help="Output directory")
    parser.add_argument("--capacity", type=int, help="Queue capacity per stage")
    parser.add_argument("--concurrency", type=int, help="Workers per stage")
    parser.add_argument("--categorizer-concurrency", type=int, help="Workers for the categorization stage")
    parser.add_argument("--buffer-size", type=int, help="Items per exported batch")
    parser.add_argument("--flush-interval", type=float, help="Seconds between timed flushes")
    parser.add_argument("--deadline", type=float, help="Seconds before the run is aborted")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-json", action="store_true", default=None, help="Log JSON lines")
    return parser


def settings_from_args(args: argparse.Namespace) -> Settings:
    """Raises ConfigurationError on invalid values"""
    return load_settings(
        OUTPUT_DIR=str(args.output_dir) if args.output_dir else None,
        STAGE_QUEUE_CAPACITY=args.capacity,
        STAGE_CONCURRENCY=args.concurrency,
        CATEGORIZER_CONCURRENCY=args.categorizer_concurrency,
        EXPORT_BUFFER_SIZE=args.buffer_size,
        EXPORT_FLUSH_INTERVAL=args.flush_interval,
        PIPELINE_DEADLINE_SECONDS=args.deadline,
        LOG_LEVEL=args.log_level,
        LOG_JSON=args.log_json,
    )


async def run_pipeline(
    settings: Settings,
    source_identifier: str,
    progress: Optional[ProgressTracker] = None,
) -> PipelineResult:
    """Run the full pipeline over one source"""
    source = open_source(
        source_identifier,
        encoding=settings.INPUT_ENCODING,
        delimiter=settings.CSV_DELIMITER,
        timeout=settings.SOURCE_TIMEOUT,
    )
    async with transaction_pipeline(settings, progress) as orchestrator:
        return await orchestrator.run(
            source,
            deadline=settings.PIPELINE_DEADLINE_SECONDS,
            source_name=source.name,
        )


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = settings_from_args(args)
    except ConfigurationError as e:
        print("Error: invalid configuration", file=sys.stderr)
        for failure in e.failures:
            print(f"  - {failure}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    progress = ConsoleProgress()

    try:
        result = asyncio.run(run_pipeline(settings, args.source, progress))
    except PipelineTimeoutError as e:
        print(f"\n✗ {e}")
        if e.result is not None:
            print(f"  Flushed {e.result.exported + e.result.failed} item(s) before stopping")
        return EXIT_TIMEOUT
    except LedgerflowError as e:
        print(f"\n✗ Pipeline failed: {e}")
        return EXIT_FAILED

    print(f"  Output: {settings.OUTPUT_DIR}")
    if result.degraded:
        print("  Completed with degraded items (see log for details)")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
