"""Event-driven stream stages.

This package contains the stream substrate the pipeline and progress
stages operate on:
- Event emitter: listener registration and dispatch
- Base stages: Readable, Writable, Duplex, Transform, PassThrough
- Sources and sinks: iterables, files, HTTP responses
"""

from .events import EventEmitter
from .base import (
    HIGH_WATER_MARK,
    OBJECT_HIGH_WATER_MARK,
    Duplex,
    PassThrough,
    Readable,
    Stream,
    Transform,
    Writable,
)
from .sources import FileSink, FileSource, HttpSource, IterableSource

__all__ = [
    "EventEmitter",
    "HIGH_WATER_MARK",
    "OBJECT_HIGH_WATER_MARK",
    "Stream",
    "Readable",
    "Writable",
    "Duplex",
    "Transform",
    "PassThrough",
    "IterableSource",
    "FileSource",
    "FileSink",
    "HttpSource",
]
