"""maintsentry command line entry point."""
from __future__ import annotations

import argparse
import contextlib
import dataclasses
import logging
import logging.handlers
import signal
import sys
from pathlib import Path
from typing import Iterator, Sequence

from . import __version__
from .cli import Console, Icons, Spinner, Theme
from .core.config import DEFAULT_LOG_DIR, ConfigStore, Settings
from .core.context import SessionContext
from .core.errors import ConfigurationError
from .core.resilience import CancellationToken
from .engine.pipeline import SessionOutcome, SessionPipeline
from .tasks import TaskTable, load_tasks
from .tasks.types import ReportFormat
from .utils.parsers import split_csv

LOG_FILE_NAME = "maintsentry.log"

# Verbosity levels
VERBOSITY_QUIET = 0      # Only errors
VERBOSITY_NORMAL = 1     # Task results and summary
VERBOSITY_VERBOSE = 2    # Include per-task counts
VERBOSITY_DEBUG = 3      # Include debug logging

# Exit codes
EXIT_OK = 0
EXIT_FAILURES = 1
EXIT_CONFIG_ERROR = 2


def configure_logging(level: int = logging.INFO, log_dir: Path = DEFAULT_LOG_DIR) -> Path:
    """Configure logging for the application.

    Logs are written to ``<log_dir>/maintsentry.log`` with automatic rotation
    at 5MB and 3 backup files retained. Warnings and errors also go to stderr.
    """
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    formatter = logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Rotating file handler: 5MB max, keep 3 backups
    file_handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5 MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    file_handler.setLevel(level)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler.setLevel(logging.WARNING)

    logging.basicConfig(level=level, handlers=[file_handler, console_handler])
    return log_file


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="maintsentry",
        description="maintsentry - host maintenance sessions with health reporting",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --config maint.json                 Run every enabled task
  %(prog)s --config maint.json --dry-run       Validate actions without changing anything
  %(prog)s --tasks installed_packages          Run a single audit
  %(prog)s --format html,json -o ./sessions    Choose report formats and location
  %(prog)s --list-tasks                        Show the registered tasks
""",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        help="Path to the JSON configuration file (default: built-in settings, empty allow-lists)",
    )
    parser.add_argument(
        "--tasks",
        type=str,
        help="Comma-separated list of tasks to run (default: all enabled tasks)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate every action without making changes",
    )
    parser.add_argument(
        "--format",
        type=str,
        help="Comma-separated report formats: html, json, text (default: from config)",
    )
    parser.add_argument(
        "--output-dir", "-o",
        type=str,
        help="Directory that receives the session folder (default: from config)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        help="Directory for the application log (default: from config)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        help="Default per-task timeout in seconds",
    )
    parser.add_argument(
        "--list-tasks",
        action="store_true",
        help="List registered tasks and exit",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase output verbosity (-v for item counts, -vv for debug)",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Minimal output (only errors)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )
    return parser.parse_args(argv)


def _verbosity(args: argparse.Namespace) -> int:
    if args.quiet:
        return VERBOSITY_QUIET
    if args.debug or args.verbose >= 2:
        return VERBOSITY_DEBUG
    if args.verbose == 1:
        return VERBOSITY_VERBOSE
    return VERBOSITY_NORMAL


def _parse_formats(raw: str) -> tuple:
    formats = []
    for value in split_csv(raw):
        try:
            formats.append(ReportFormat(value.lower()))
        except ValueError:
            raise ConfigurationError(f"Unknown report format: {value}") from None
    if not formats:
        raise ConfigurationError("--format needs at least one format")
    return tuple(formats)


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Fold command line flags into the loaded settings."""
    changes = {}
    if args.dry_run:
        changes["dry_run"] = True
    if args.timeout is not None:
        if args.timeout < 0:
            raise ConfigurationError("--timeout must not be negative")
        changes["task_timeout"] = args.timeout
    if args.output_dir:
        changes["artifact_dir"] = Path(args.output_dir).expanduser()
    if args.log_dir:
        changes["log_dir"] = Path(args.log_dir).expanduser()
    if args.format:
        changes["report_formats"] = _parse_formats(args.format)
    return dataclasses.replace(settings, **changes) if changes else settings


def load_config(args: argparse.Namespace) -> ConfigStore:
    config = ConfigStore.load(Path(args.config).expanduser()) if args.config else ConfigStore()
    return config.with_settings(apply_overrides(config.settings, args))


@contextlib.contextmanager
def cancel_on_interrupt(token: CancellationToken) -> Iterator[CancellationToken]:
    """Turn SIGINT into a cancellation request observed between tasks."""

    def _handler(signum, frame) -> None:
        token.cancel("interrupted")

    try:
        previous = signal.signal(signal.SIGINT, _handler)
        installed = True
    except ValueError:
        # signal handlers can only be installed from the main thread
        previous, installed = None, False
    try:
        yield token
    finally:
        if installed and previous is not None:
            signal.signal(signal.SIGINT, previous)


def _load_table(console: Console, verbosity: int) -> TaskTable:
    if verbosity > VERBOSITY_QUIET:
        with Spinner("Loading maintenance tasks...", use_color=console.use_color) as spinner:
            load_tasks()
            table = TaskTable.from_registry()
            spinner.stop(f"{len(table)} maintenance tasks loaded", Icons.PASS, Theme.SUCCESS)
        return table
    load_tasks()
    return TaskTable.from_registry()


def _display_outcome(outcome: SessionOutcome, console: Console, verbosity: int) -> None:
    summary = outcome.summary
    metrics = summary.aggregate_metrics
    results = {r.task_name: r for r in summary.task_results}

    console.subheader("Task Results")
    for metric in metrics.task_metrics:
        result = results.get(metric.task_name)
        if result is None:
            console.missing_task(metric.task_name)
        else:
            console.task_result(result, show_details=verbosity >= VERBOSITY_VERBOSE)

    console.summary_box(
        total=metrics.total_tasks,
        successful=metrics.successful_tasks,
        partial=metrics.partial_tasks,
        failed=metrics.failed_tasks,
        skipped=metrics.skipped_tasks,
        missing=metrics.missing_count,
        health_score=metrics.health_score,
    )
    console.info("Success rate", f"{metrics.success_rate:.1f}%")
    console.info("Data completeness", f"{metrics.data_completeness:.1f}%")
    console.info("Errors recorded", str(len(summary.errors)))

    console.subheader("Reports")
    for path in outcome.report_paths:
        console.info(path.suffix.lstrip(".").upper() or "file", str(path))
    console.blank()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    verbosity = _verbosity(args)
    console = Console(color=False if args.no_color else None)

    try:
        config = load_config(args)
    except ConfigurationError as exc:
        console.error(f"Configuration error: {exc}")
        return EXIT_CONFIG_ERROR

    configure_logging(
        level=logging.DEBUG if verbosity >= VERBOSITY_DEBUG else logging.INFO,
        log_dir=config.settings.log_dir,
    )
    logger = logging.getLogger(__name__)

    if verbosity > VERBOSITY_QUIET:
        console.banner()

    table = _load_table(console, verbosity)

    if args.list_tasks:
        console.task_table(table, enabled=config.is_enabled)
        console.blank()
        return EXIT_OK

    token = CancellationToken()
    ctx = SessionContext.create(config, cancellation=token)
    pipeline = SessionPipeline(config, table)

    try:
        selection = pipeline.select(split_csv(args.tasks))
        if verbosity > VERBOSITY_QUIET:
            console.subheader("Session")
            console.info("Session", ctx.session_id)
            console.info("Mode", "Dry run" if ctx.dry_run else "Live")
            console.info("Config", str(config.source or "built-in defaults"))
            console.info("Tasks", ", ".join(selection.names) or "none")
        with cancel_on_interrupt(token):
            outcome = pipeline.run(selection, ctx)
    except ConfigurationError as exc:
        logger.error("Session aborted: %s", exc)
        console.error(f"Configuration error: {exc}")
        return EXIT_CONFIG_ERROR

    if verbosity > VERBOSITY_QUIET:
        _display_outcome(outcome, console, verbosity)

    if token.is_cancelled:
        console.warning(f"Session cancelled ({token.reason}); remaining tasks were skipped")

    if outcome.has_failures:
        if verbosity > VERBOSITY_QUIET:
            console.warning("Session completed with failures (review the report)")
        return EXIT_FAILURES

    if verbosity > VERBOSITY_QUIET:
        console.success(f"Session completed in {outcome.summary.duration_seconds:.1f}s")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
