"""Configuration management."""

from .loader import ConfigLoader, APP_NAME
from .schema import PipemeterConfig, ProgressOptions, TransferConfig

__all__ = ["ConfigLoader", "APP_NAME", "PipemeterConfig", "ProgressOptions", "TransferConfig"]
