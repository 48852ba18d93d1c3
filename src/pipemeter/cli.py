"""CLI for pipemeter: copy a file or URL while reporting progress."""

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from pydantic import ValidationError

from .config import APP_NAME, ConfigLoader, PipemeterConfig, TransferConfig
from .errors import PipemeterError, classify_error
from .logging import LogContext, setup_logging
from .pipeline import pump
from .progress import ProgressStream
from .reporting import ProgressReporter
from .streams import FileSink, FileSource, HttpSource


def is_url(source: str) -> bool:
    """Whether the source argument names an HTTP(S) resource."""
    return urlparse(source).scheme in ("http", "https")


def open_source(source: str, transfer: TransferConfig) -> Any:
    """Create the source stage for a path or URL.

    Raises:
        FileNotFoundError: If a local source does not exist
    """
    if is_url(source):
        return HttpSource(source, chunk_size=transfer.chunk_size, timeout=transfer.http_timeout)
    return FileSource(Path(source), chunk_size=transfer.chunk_size)


def _report_failure(logger: logging.Logger, error: BaseException) -> None:
    category = classify_error(error)
    if isinstance(error, PipemeterError):
        logger.error(f"Copy failed: {{'category': {category!r}, 'error': {error.message!r}, 'context': {error.context!r}}}")
    else:
        logger.error(f"Copy failed: {{'category': {category!r}, 'error': {str(error)!r}}}")


def copy_command(
    config: PipemeterConfig,
    source: str,
    destination: Path,
    interval_override: Optional[float] = None,
    speed_window_override: Optional[float] = None,
    length_override: Optional[int] = None,
) -> int:
    """Copy source to destination through a progress stage.

    Args:
        config: Configuration object
        source: Local path or http(s) URL
        destination: File to write
        interval_override: Optional override for the snapshot interval (ms)
        speed_window_override: Optional override for the speed window (ms)
        length_override: Optional expected size, disables auto-detection

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    logger_name = __package__ or __name__
    logger = logging.getLogger(logger_name)

    overrides: Dict[str, Any] = {}
    if interval_override is not None:
        overrides["time"] = interval_override
    if speed_window_override is not None:
        overrides["speed"] = speed_window_override
    if length_override is not None:
        overrides["length"] = length_override

    result: Dict[str, Optional[BaseException]] = {}

    def on_done(error: Optional[BaseException]) -> None:
        result["error"] = error

    with LogContext(logger, source=source, destination=str(destination)):
        try:
            logger.info(f"Copying: {{'source': {source!r}, 'destination': {str(destination)!r}}}")

            source_stage = open_source(source, config.transfer)
            progress = ProgressStream(config.progress, **overrides)
            reporter = ProgressReporter(
                Path(urlparse(source).path).name or source,
                interval_ms=config.transfer.log_interval,
            ).attach(progress)
            sink = FileSink(destination)

            pump(source_stage, progress, sink, on_done)
        except (PipemeterError, OSError) as e:
            _report_failure(logger, e)
            return 1

        if "error" not in result:
            logger.error(f"Copy did not complete: {{'transferred': {progress.transferred}}}")
            return 1

        error = result["error"]
        if error is not None:
            _report_failure(logger, error)
            return 1

        reporter.log_final_summary()
        return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for the ``pipemeter`` command."""
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Stream data between sources and sinks with progress reporting"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    copy_parser = subparsers.add_parser("copy", help="Copy a file or URL to a file")
    copy_parser.add_argument("source", help="Source file path or http(s) URL")
    copy_parser.add_argument("destination", type=Path, help="Destination file path")
    copy_parser.add_argument(
        "--interval",
        type=float,
        help="Minimum ms between progress snapshots (overrides config)"
    )
    copy_parser.add_argument(
        "--speed-window",
        type=float,
        help="Speed estimation window in ms (overrides config)"
    )
    copy_parser.add_argument(
        "--length",
        type=int,
        help="Expected size in bytes (overrides auto-detection)"
    )
    copy_parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help="Log level (overrides config)"
    )
    copy_parser.add_argument(
        "--log-format",
        choices=["simple", "detailed", "json"],
        type=str.lower,
        help="Log format (overrides config)"
    )
    copy_parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (config.toml)"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    loader = ConfigLoader(app_name=APP_NAME)
    try:
        config = loader.load(config_path=args.config)
    except (FileNotFoundError, ValidationError) as e:
        setup_logging()
        logging.getLogger(__package__ or __name__).error(f"Invalid configuration: {e}")
        return 1

    level = args.log_level or config.logging.level
    log_format = args.log_format or config.logging.format
    log_file = Path(config.logging.file) if config.logging.file else None
    setup_logging(level=level, format=log_format, log_file=log_file)

    return copy_command(
        config=config,
        source=args.source,
        destination=args.destination,
        interval_override=args.interval,
        speed_window_override=args.speed_window,
        length_override=args.length,
    )


if __name__ == "__main__":
    sys.exit(main())
