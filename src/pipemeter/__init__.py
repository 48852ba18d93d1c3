"""Composable stream pipelines with progress instrumentation."""

from .errors import (
    PipemeterError, ConfigurationError, StageError, StreamStateError, classify_error
)
from .logging import setup_logging, LogContext
from .logging_config import LoggingConfig
from .config import ConfigLoader, PipemeterConfig, ProgressOptions, TransferConfig
from .metadata import SizeHint, LateMetadata, HeaderMetadata
from .speedometer import Speedometer, Ticker, ManualTicker, get_default_ticker
from .progress import ProgressStream, ProgressUpdate, ProgressState, create_progress_stream
from .pipeline import Pipeline, StageCapabilities, compose, pump
from .concat import ConcatSink, concat

__version__ = "0.1.0"

__all__ = [
    'PipemeterError',
    'ConfigurationError',
    'StageError',
    'StreamStateError',
    'classify_error',
    'setup_logging',
    'LogContext',
    'LoggingConfig',
    'ConfigLoader',
    'PipemeterConfig',
    'ProgressOptions',
    'TransferConfig',
    'SizeHint',
    'LateMetadata',
    'HeaderMetadata',
    'Speedometer',
    'Ticker',
    'ManualTicker',
    'get_default_ticker',
    'ProgressStream',
    'ProgressUpdate',
    'ProgressState',
    'create_progress_stream',
    'Pipeline',
    'StageCapabilities',
    'compose',
    'pump',
    'ConcatSink',
    'concat',
]
