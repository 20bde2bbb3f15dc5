"""Byte sources the GGUF decoder reads from."""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import BinaryIO, Protocol, Union

from gguf_parser import GGUFParseError


class UnexpectedEndOfStream(GGUFParseError):
    """Raised when a source runs out of bytes before a read is satisfied."""

    def __init__(self, requested: int, available: int, position: int) -> None:
        self.requested = requested
        self.available = available
        self.position = position
        super().__init__(
            f"Unexpected end of stream at offset {position}: "
            f"wanted {requested} bytes, got {available}"
        )


class ByteSource(Protocol):
    """A forward-readable stream of bytes with a cursor."""

    def tell(self) -> int:
        ...

    def read(self, size: int = -1) -> bytes:
        ...

    def read_exact(self, size: int) -> bytes:
        ...

    def skip(self, size: int) -> None:
        ...

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> None:
        ...

    @property
    def eof(self) -> bool:
        ...

    def close(self) -> None:
        ...

    def __enter__(self) -> "ByteSource":
        ...

    def __exit__(self, exc_type: type | None, exc_value: Exception | None, traceback: object | None) -> None:
        ...


class LocalFileSource:
    """ByteSource over a file on disk."""

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        if not self.path.exists():
            raise GGUFParseError(f"GGUF file not found: {self.path}")
        self._file: BinaryIO = open(self.path, "rb")
        self._size = self.path.stat().st_size
        logging.debug(f"LocalFileSource opened: path={self.path}, size={self._size}")

    def tell(self) -> int:
        return self._file.tell()

    def read(self, size: int = -1) -> bytes:
        return self._file.read(size)

    def read_exact(self, size: int) -> bytes:
        """Read exactly `size` bytes or raise UnexpectedEndOfStream."""
        position = self._file.tell()
        data = self._file.read(size)
        if len(data) != size:
            raise UnexpectedEndOfStream(size, len(data), position)
        return data

    def skip(self, size: int) -> None:
        """Move the cursor forward by `size` bytes without reading them."""
        position = self._file.tell()
        available = max(0, self._size - position)
        if size > available:
            self._file.seek(self._size)
            raise UnexpectedEndOfStream(size, available, position)
        self._file.seek(position + size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> None:
        self._file.seek(offset, whence)

    @property
    def eof(self) -> bool:
        return self._file.tell() >= self._size

    @property
    def size(self) -> int:
        return self._size

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "LocalFileSource":
        return self

    def __exit__(self, exc_type: type | None, exc_value: Exception | None, traceback: object | None) -> None:
        self.close()
