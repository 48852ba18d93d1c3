"""Error definitions for pipemeter."""

from typing import Any, Dict


class PipemeterError(Exception):
    """Base exception for all pipemeter errors."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context


class ConfigurationError(PipemeterError):
    """Pipeline or options are invalid."""
    pass


class StageError(PipemeterError):
    """A stage failed while reading or writing."""
    pass


class StreamStateError(PipemeterError):
    """Stream operation is not valid in the current state."""
    pass


def classify_error(exception: BaseException) -> str:
    """
    Classify an exception into an error category.

    Args:
        exception: The exception to classify

    Returns:
        Error category string: 'configuration', 'stage', 'state',
        'permission', 'not_found', 'io', 'network' or 'unknown'
    """
    if isinstance(exception, ConfigurationError):
        return 'configuration'
    elif isinstance(exception, StageError):
        return 'stage'
    elif isinstance(exception, StreamStateError):
        return 'state'
    elif isinstance(exception, PermissionError):
        return 'permission'
    elif isinstance(exception, FileNotFoundError):
        return 'not_found'
    elif isinstance(exception, ConnectionError):
        return 'network'
    elif isinstance(exception, OSError):
        return 'io'
    else:
        return 'unknown'
