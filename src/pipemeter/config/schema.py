"""Configuration models for pipemeter."""

from pydantic import BaseModel, Field, ConfigDict
from ..logging_config import LoggingConfig


class ProgressOptions(BaseModel):
    """Options for a progress instrumentation stage.

    Times are in milliseconds, sizes in units (bytes, or objects in
    object mode).
    """

    model_config = ConfigDict(extra='forbid')

    length: int = Field(
        default=0,
        ge=0,
        description="Expected total units (0 = unknown, may be auto-detected)"
    )
    time: float = Field(
        default=0,
        ge=0,
        description="Minimum interval between progress snapshots in ms"
    )
    drain: bool = Field(
        default=False,
        description="Consume input immediately without waiting for a downstream reader"
    )
    transferred: int = Field(
        default=0,
        ge=0,
        description="Initial transferred offset (e.g. resumed download)"
    )
    speed: float = Field(
        default=5000,
        gt=0,
        description="Speed estimator window in ms"
    )
    object_mode: bool = Field(
        default=False,
        description="Count one unit per chunk instead of chunk length"
    )


class TransferConfig(BaseModel):
    """Source/sink settings used by the copy command."""

    model_config = ConfigDict(extra='forbid')

    chunk_size: int = Field(
        default=64 * 1024,
        gt=0,
        description="Bytes read per chunk from files and HTTP responses"
    )
    http_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP connect/read timeout in seconds"
    )
    log_interval: float = Field(
        default=1000,
        ge=0,
        description="Minimum ms between progress log lines"
    )


class PipemeterConfig(BaseModel):
    """Root configuration for pipemeter."""

    model_config = ConfigDict(extra='forbid')

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    progress: ProgressOptions = Field(default_factory=ProgressOptions)
    transfer: TransferConfig = Field(default_factory=TransferConfig)
