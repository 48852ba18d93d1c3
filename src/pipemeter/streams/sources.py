"""Concrete source and sink stages: iterables, files and HTTP responses."""

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, List, Mapping, Optional

import requests

from ..errors import StageError
from ..metadata import HeaderMetadata
from .base import Readable, Writable, WriteCallback

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


class IterableSource(Readable):
    """Readable that yields the items of an iterable, one per read.

    Exceptions raised by the iterator destroy the stage with that error.
    """

    def __init__(
        self,
        iterable: Iterable[Any],
        *,
        object_mode: bool = True,
        high_water_mark: Optional[int] = None,
    ) -> None:
        super().__init__(object_mode=object_mode, high_water_mark=high_water_mark)
        self._iterator: Iterator[Any] = iter(iterable)

    def _read(self) -> None:
        try:
            chunk = next(self._iterator)
        except StopIteration:
            self.push(None)
            return
        except Exception as e:
            self.destroy(e)
            return
        self.push(chunk)


class FileSource(Readable):
    """Reads a file in fixed-size binary chunks.

    Exposes ``size`` (bytes on disk) so progress stages can pick up the
    expected length.
    """

    def __init__(
        self,
        path: Path,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        high_water_mark: Optional[int] = None,
    ) -> None:
        super().__init__(high_water_mark=high_water_mark)
        self.path = Path(path)
        self.chunk_size = chunk_size
        self.size: int = self.path.stat().st_size
        self._handle: Any = None

    def _read(self) -> None:
        try:
            if self._handle is None:
                self._handle = self.path.open("rb")
            data = self._handle.read(self.chunk_size)
        except OSError as e:
            error = StageError(f"Failed to read {self.path}", path=str(self.path), error=str(e))
            error.__cause__ = e
            self.destroy(error)
            return

        if data:
            self.push(data)
        else:
            self._close_handle()
            self.push(None)

    def close(self) -> None:
        """Close the file and destroy the stage."""
        self.destroy()

    def _destroy(self, error: Optional[BaseException]) -> None:
        self._close_handle()

    def _close_handle(self) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.close()
        except OSError as e:
            logger.debug(f"Failed to close source file: {{'path': {str(self.path)!r}, 'error': {str(e)!r}}}")


class FileSink(Writable):
    """Writes binary (or UTF-8 encoded text) chunks to a file.

    The file is created on first write, or at end when nothing was written.
    """

    def __init__(self, path: Path, *, high_water_mark: Optional[int] = None) -> None:
        super().__init__(high_water_mark=high_water_mark)
        self.path = Path(path)
        self.bytes_written = 0
        self._handle: Any = None

    def _open(self) -> Any:
        if self._handle is None:
            self._handle = self.path.open("wb")
        return self._handle

    def _write(self, chunk: Any, callback: WriteCallback) -> None:
        data = chunk.encode("utf-8") if isinstance(chunk, str) else chunk
        try:
            self._open().write(data)
        except OSError as e:
            error = StageError(f"Failed to write {self.path}", path=str(self.path), error=str(e))
            error.__cause__ = e
            callback(error)
            return
        self.bytes_written += len(data)
        callback()

    def _final(self, callback: WriteCallback) -> None:
        try:
            handle = self._open()
            handle.flush()
            self._handle = None
            handle.close()
        except OSError as e:
            error = StageError(f"Failed to finalize {self.path}", path=str(self.path), error=str(e))
            error.__cause__ = e
            callback(error)
            return
        callback()

    def close(self) -> None:
        """Close the file and destroy the stage."""
        self.destroy()

    def _destroy(self, error: Optional[BaseException]) -> None:
        if self._handle is None:
            return
        handle, self._handle = self._handle, None
        try:
            handle.close()
        except OSError as e:
            logger.debug(f"Failed to close sink file: {{'path': {str(self.path)!r}, 'error': {str(e)!r}}}")


MetadataCallback = Callable[[Mapping[str, str]], None]


class HttpSource(Readable):
    """Streams an HTTP response body using ``requests``.

    The request is sent lazily on the first read unless ``open()`` is called
    first. Headers are exposed two ways: as a size hint once the response is
    known, and through ``on_metadata`` callbacks fired when it arrives.
    """

    def __init__(
        self,
        url: str,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        timeout: float = 30.0,
        headers: Optional[Mapping[str, str]] = None,
        session: Optional[requests.Session] = None,
        high_water_mark: Optional[int] = None,
    ) -> None:
        super().__init__(high_water_mark=high_water_mark)
        self.url = url
        self.chunk_size = chunk_size
        self.timeout = timeout
        self.request_headers = dict(headers or {})
        self._session = session
        self._response: Optional[requests.Response] = None
        self._chunks: Optional[Iterator[bytes]] = None
        self.metadata: Optional[HeaderMetadata] = None
        self._metadata_callbacks: List[MetadataCallback] = []

    def open(self) -> "HttpSource":
        """Send the request and read the response headers.

        Raises:
            StageError: If the request fails or returns an error status
        """
        if self._response is not None:
            return self
        client = self._session if self._session is not None else requests
        try:
            response = client.get(
                self.url,
                stream=True,
                timeout=self.timeout,
                headers=self.request_headers,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            error = StageError(f"HTTP request failed: {self.url}", url=self.url, error=str(e))
            error.__cause__ = e
            raise error

        self._response = response
        self._chunks = response.iter_content(chunk_size=self.chunk_size)
        self.metadata = HeaderMetadata(response.headers)
        logger.debug(
            f"HTTP response received: {{'url': {self.url!r}, 'status': {response.status_code}, "
            f"'content_length': {self.metadata.get_expected_size()}}}"
        )
        for callback in list(self._metadata_callbacks):
            callback(response.headers)
        return self

    # Size hint -----------------------------------------------------------

    def get_expected_size(self) -> Optional[int]:
        if self.metadata is None:
            return None
        return self.metadata.get_expected_size()

    def is_compressed(self) -> bool:
        if self.metadata is None:
            return False
        return self.metadata.is_compressed()

    def on_metadata(self, callback: MetadataCallback) -> None:
        """Register a callback receiving the response headers when they arrive."""
        self._metadata_callbacks.append(callback)

    # Readable ------------------------------------------------------------

    def _read(self) -> None:
        try:
            if self._chunks is None:
                self.open()
            chunk = b""
            while not chunk:
                # skip keep-alive chunks
                chunk = next(self._chunks)  # type: ignore[arg-type]
        except StopIteration:
            self._close_response()
            self.push(None)
            return
        except StageError as e:
            self.destroy(e)
            return
        except requests.RequestException as e:
            error = StageError(f"HTTP read failed: {self.url}", url=self.url, error=str(e))
            error.__cause__ = e
            self.destroy(error)
            return

        self.push(chunk)

    def close(self) -> None:
        """Close the connection and destroy the stage."""
        self.destroy()

    def _destroy(self, error: Optional[BaseException]) -> None:
        self._close_response()

    def _close_response(self) -> None:
        if self._response is None:
            return
        self._response.close()
        self._chunks = iter(())
