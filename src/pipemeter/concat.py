"""Aggregation sink: collects every chunk written and reduces them to one value."""

from typing import Any, Callable, List, Optional, Union

from .streams.base import Writable, WriteCallback

BodyCallback = Callable[[Any], None]

ENCODING_ALIASES = {
    "bytes": "buffer",
    "list": "array",
    "str": "string",
    "uint8array": "bytearray",
}


def infer_encoding(chunk: Any) -> str:
    """Guess the reduction to apply from a sample chunk."""
    if isinstance(chunk, bytes):
        return "buffer"
    if isinstance(chunk, (bytearray, memoryview)):
        return "bytearray"
    if isinstance(chunk, (list, tuple)):
        return "array"
    if isinstance(chunk, str):
        return "string"
    if isinstance(chunk, dict):
        return "object"
    return "buffer"


def _to_bytes(part: Any) -> bytes:
    if isinstance(part, bytes):
        return part
    if isinstance(part, (bytearray, memoryview)):
        return bytes(part)
    if isinstance(part, str):
        return part.encode("utf-8")
    if isinstance(part, (list, tuple)):
        return bytes(part)
    return str(part).encode("utf-8")


class ConcatSink(Writable):
    """Object-mode sink that buffers chunks until the writer ends.

    Args:
        encoding: One of ``string``, ``buffer``, ``bytearray``, ``array``,
            ``object`` (inferred from the first chunk when omitted)
        callback: Called with ``get_body()`` once the sink finishes
    """

    def __init__(
        self,
        encoding: Union[str, BodyCallback, None] = None,
        callback: Optional[BodyCallback] = None,
    ) -> None:
        if callable(encoding):
            callback, encoding = encoding, None
        super().__init__(object_mode=True)

        self.encoding: Optional[str] = self._normalize(encoding) if encoding else None
        self.infer = self.encoding is None
        self.body: List[Any] = []

        if callback is not None:
            self.on("finish", lambda: callback(self.get_body()))

    @staticmethod
    def _normalize(encoding: str) -> str:
        name = str(encoding).lower()
        return ENCODING_ALIASES.get(name, name)

    def _write(self, chunk: Any, callback: WriteCallback) -> None:
        self.body.append(chunk)
        callback()

    def infer_encoding(self, sample: Any = None) -> str:
        """Encoding for ``sample``, or for the first chunk written."""
        if sample is None and self.body:
            sample = self.body[0]
        return infer_encoding(sample)

    def get_body(self) -> Any:
        """Reduce the collected chunks according to the encoding."""
        if self.encoding is None and not self.body:
            return []
        if self.infer:
            self.encoding = self.infer_encoding()

        if self.encoding == "array":
            return self._array_concat(self.body)
        if self.encoding == "string":
            return self._string_concat(self.body)
        if self.encoding == "buffer":
            return b"".join(_to_bytes(part) for part in self.body)
        if self.encoding == "bytearray":
            return bytearray(b"".join(_to_bytes(part) for part in self.body))
        return self.body

    @staticmethod
    def _string_concat(parts: List[Any]) -> str:
        strings = []
        for part in parts:
            if isinstance(part, str):
                strings.append(part)
            elif isinstance(part, (bytes, bytearray, memoryview)):
                strings.append(bytes(part).decode("utf-8"))
            else:
                strings.append(str(part))
        return "".join(strings)

    @staticmethod
    def _array_concat(parts: List[Any]) -> List[Any]:
        flat: List[Any] = []
        for part in parts:
            if isinstance(part, (list, tuple)):
                flat.extend(part)
            else:
                flat.append(part)
        return flat


def concat(
    encoding: Union[str, BodyCallback, None] = None,
    callback: Optional[BodyCallback] = None,
) -> ConcatSink:
    """Create a ``ConcatSink``; a callable first argument is the callback."""
    return ConcatSink(encoding, callback)
