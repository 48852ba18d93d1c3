"""Size metadata exposed by producers, used for automatic length detection.

A producer can advertise its expected size in three ways, checked in order:

1. ``SizeHint``: ``get_expected_size()`` / ``is_compressed()``, answered at
   attach time (e.g. an HTTP response whose headers are already known);
2. a numeric ``size`` attribute (e.g. a file source);
3. ``LateMetadata``: ``on_metadata(callback)``, for producers that learn
   their headers after being attached.

Sizes of compressed payloads are ignored: the bytes flowing downstream are
decoded and will not match the advertised length.
"""

import math
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

IDENTITY_ENCODINGS = ("", "identity")


@runtime_checkable
class SizeHint(Protocol):
    """Producer that knows its expected size."""

    def get_expected_size(self) -> Optional[int]:
        ...

    def is_compressed(self) -> bool:
        ...


@runtime_checkable
class LateMetadata(Protocol):
    """Producer whose headers become available after attachment."""

    def on_metadata(self, callback: Callable[[Mapping[str, str]], None]) -> None:
        ...


class HeaderMetadata:
    """Case-insensitive view of HTTP-style headers.

    Implements ``SizeHint`` from ``Content-Length`` and ``Content-Encoding``.
    """

    def __init__(self, headers: Mapping[str, Any]) -> None:
        self.headers = {str(k).lower(): str(v) for k, v in headers.items()}

    def get_expected_size(self) -> Optional[int]:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            size = int(value.strip())
        except ValueError:
            return None
        return size if size >= 0 else None

    def is_compressed(self) -> bool:
        encoding = self.headers.get("content-encoding", "").strip().lower()
        return encoding not in IDENTITY_ENCODINGS


def size_from_headers(headers: Mapping[str, Any]) -> Optional[int]:
    """Expected size from headers, or None if absent or compressed."""
    metadata = HeaderMetadata(headers)
    if metadata.is_compressed():
        return None
    return metadata.get_expected_size()


def size_attribute(producer: Any) -> Optional[int]:
    """Numeric ``size`` attribute of a producer, if it has a usable one."""
    size = getattr(producer, "size", None)
    if isinstance(size, bool) or not isinstance(size, (int, float)):
        return None
    if not math.isfinite(size) or size < 0:
        return None
    return int(size)


def detect_expected_size(producer: Any) -> Optional[int]:
    """Resolve a producer's expected size at attach time (steps 1 and 2)."""
    if isinstance(producer, SizeHint):
        size = producer.get_expected_size()
        if size is not None and not producer.is_compressed():
            return size
    return size_attribute(producer)
