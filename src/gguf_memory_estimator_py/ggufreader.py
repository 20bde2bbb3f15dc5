"""Streaming GGUF metadata decoder.

Reads the key/value metadata section of a GGUF file strictly forward and
stops as soon as the architecture hyperparameters needed for a memory
estimate are known. Works on any ByteSource, so the same code serves local
files and ranged HTTP reads.
"""

from __future__ import annotations

import logging
import struct
import threading
from dataclasses import dataclass
from enum import Enum, IntEnum
from pathlib import Path
from typing import Dict, Optional, Union
from urllib.parse import urlparse

import requests
from gguf_parser import GGUFParseError

from .bytesource import ByteSource, LocalFileSource, UnexpectedEndOfStream
from .httpfile import DEFAULT_CHUNK_SIZE, DEFAULT_TIMEOUT, HttpFile
from .models import ModelHyperparameters

GGUF_MAGIC = 0x46554747  # "GGUF" read as a little-endian u32
MAX_SUPPORTED_VERSION = 3
MAX_STRING_LENGTH = 1024 * 1024


class GGUFCorruptStreamError(GGUFParseError):
    """Raised when a length or type tag in the stream cannot be valid."""
    pass


class GGUFValueType(IntEnum):
    """GGUF metadata value type tags."""

    UINT8 = 0
    INT8 = 1
    UINT16 = 2
    INT16 = 3
    UINT32 = 4
    INT32 = 5
    FLOAT32 = 6
    BOOL = 7
    STRING = 8
    ARRAY = 9
    UINT64 = 10
    INT64 = 11
    FLOAT64 = 12

    @classmethod
    def from_tag(cls, tag: int) -> GGUFValueType:
        """Map a raw tag to a value type, rejecting anything outside 0..12."""
        try:
            return cls(tag)
        except ValueError:
            raise GGUFCorruptStreamError(f"Unknown GGUF value type: {tag}") from None

    @property
    def fixed_width(self) -> Optional[int]:
        """Byte width of scalar types, None for STRING and ARRAY."""
        return _FIXED_WIDTHS.get(self)


_FIXED_WIDTHS: Dict[GGUFValueType, int] = {
    GGUFValueType.UINT8: 1,
    GGUFValueType.INT8: 1,
    GGUFValueType.UINT16: 2,
    GGUFValueType.INT16: 2,
    GGUFValueType.UINT32: 4,
    GGUFValueType.INT32: 4,
    GGUFValueType.FLOAT32: 4,
    GGUFValueType.BOOL: 1,
    GGUFValueType.UINT64: 8,
    GGUFValueType.INT64: 8,
    GGUFValueType.FLOAT64: 8,
}

_INT32_TYPES = (GGUFValueType.UINT32, GGUFValueType.INT32)
_INT64_TYPES = (GGUFValueType.UINT64, GGUFValueType.INT64)

# Key suffixes of interest, matched after the "<arch>." prefix
HEAD_COUNT = "attention.head_count"
HEAD_COUNT_KV = "attention.head_count_kv"
BLOCK_COUNT = "block_count"
EMBEDDING_LENGTH = "embedding_length"


class DecodeStatus(Enum):
    """Outcome of a decode attempt."""

    OK = "ok"
    NOT_GGUF = "not_gguf"
    UNSUPPORTED_VERSION = "unsupported_version"
    MISSING_PARAMS = "missing_params"
    CORRUPT = "corrupt"
    TRUNCATED = "truncated"


@dataclass(frozen=True)
class DecodeResult:
    """Decoded hyperparameters, or the reason there are none."""

    status: DecodeStatus
    params: Optional[ModelHyperparameters] = None
    version: Optional[int] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is DecodeStatus.OK and self.params is not None

    @property
    def is_model_file(self) -> bool:
        """False when the stream is not a GGUF this decoder understands."""
        return self.status not in (DecodeStatus.NOT_GGUF, DecodeStatus.UNSUPPORTED_VERSION)


def _key_matches(key: str, suffix: str) -> bool:
    return key == suffix or key.endswith("." + suffix)


class GGUFHeaderDecoder:
    """Extracts ModelHyperparameters from the metadata section of a GGUF stream."""

    def __init__(self, max_string_length: int = MAX_STRING_LENGTH) -> None:
        self.max_string_length = max_string_length

    def decode(self, source: ByteSource) -> DecodeResult:
        """Decode hyperparameters from `source`.

        Corrupt and truncated streams are reported through the result status.
        Transport errors raised by the source propagate to the caller.
        """
        try:
            return self._decode(source)
        except GGUFCorruptStreamError as e:
            logging.debug(f"GGUFHeaderDecoder.decode: corrupt stream: {e}")
            return DecodeResult(DecodeStatus.CORRUPT, detail=str(e))
        except UnexpectedEndOfStream as e:
            logging.debug(f"GGUFHeaderDecoder.decode: truncated stream: {e}")
            return DecodeResult(DecodeStatus.TRUNCATED, detail=str(e))

    def _decode(self, source: ByteSource) -> DecodeResult:
        magic = self._read_u32(source)
        if magic != GGUF_MAGIC:
            logging.debug(f"GGUFHeaderDecoder: invalid magic 0x{magic:08x}")
            return DecodeResult(DecodeStatus.NOT_GGUF, detail=f"magic 0x{magic:08x}")

        version = self._read_u32(source)
        if version > MAX_SUPPORTED_VERSION:
            logging.debug(f"GGUFHeaderDecoder: unsupported version {version}")
            return DecodeResult(DecodeStatus.UNSUPPORTED_VERSION, version=version,
                                detail=f"version {version}")
        if version >= 1:
            # Tensor count; not needed for the estimate
            source.skip(8)

        entry_count = self._read_u64(source)
        logging.debug(f"GGUFHeaderDecoder: version={version}, metadata entries={entry_count}")

        attention_heads: Optional[int] = None
        kv_heads: Optional[int] = None
        hidden_layers: Optional[int] = None
        hidden_size: Optional[int] = None

        for _ in range(entry_count):
            key = self._read_key(source)
            value_type = GGUFValueType.from_tag(self._read_u32(source))

            if _key_matches(key, HEAD_COUNT) and value_type in _INT32_TYPES:
                attention_heads = self._read_u32(source)
                if kv_heads is None:
                    kv_heads = attention_heads
                logging.debug(f"  Found attention_heads: {attention_heads} (from key: {key})")
            elif _key_matches(key, HEAD_COUNT_KV) and value_type in _INT32_TYPES:
                kv_heads = self._read_u32(source)
                logging.debug(f"  Found kv_heads: {kv_heads} (from key: {key})")
            elif _key_matches(key, BLOCK_COUNT) and value_type in _INT32_TYPES:
                hidden_layers = self._read_u32(source)
                logging.debug(f"  Found hidden_layers: {hidden_layers} (from key: {key})")
            elif _key_matches(key, EMBEDDING_LENGTH) and value_type in _INT32_TYPES:
                hidden_size = self._read_u32(source)
                logging.debug(f"  Found hidden_size: {hidden_size} (from key: {key})")
            elif _key_matches(key, EMBEDDING_LENGTH) and value_type in _INT64_TYPES:
                hidden_size = self._read_u64(source)
                logging.debug(f"  Found hidden_size: {hidden_size} (from key: {key})")
            else:
                self.skip_value(source, value_type)

            if attention_heads is not None and hidden_layers is not None and hidden_size is not None:
                break

        if attention_heads is None or hidden_layers is None or hidden_size is None:
            missing = [
                name for name, value in (
                    ("attention_heads", attention_heads),
                    ("hidden_layers", hidden_layers),
                    ("hidden_size", hidden_size),
                ) if value is None
            ]
            logging.debug(f"GGUFHeaderDecoder: missing required parameters: {missing}")
            return DecodeResult(DecodeStatus.MISSING_PARAMS, version=version,
                                detail=f"missing {', '.join(missing)}")

        params = ModelHyperparameters(
            hidden_size=hidden_size,
            attention_heads=attention_heads,
            kv_heads=kv_heads if kv_heads is not None else attention_heads,
            hidden_layers=hidden_layers,
        )
        return DecodeResult(DecodeStatus.OK, params=params, version=version)

    def skip_value(self, source: ByteSource, value_type: GGUFValueType) -> None:
        """Consume one value of `value_type` without interpreting it."""
        width = value_type.fixed_width
        if width is not None:
            source.skip(width)
        elif value_type is GGUFValueType.STRING:
            source.skip(self._read_length(source, self.max_string_length, "String"))
        elif value_type is GGUFValueType.ARRAY:
            element_type = GGUFValueType.from_tag(self._read_u32(source))
            # Element counts are unbounded; a bogus count runs into end of stream
            count = self._read_u64(source)
            self._skip_array(source, element_type, count)
        else:
            raise GGUFCorruptStreamError(f"Unknown GGUF value type: {value_type}")

    def _skip_array(self, source: ByteSource, element_type: GGUFValueType, count: int) -> None:
        width = element_type.fixed_width
        if width is not None:
            source.skip(width * count)
            return
        for _ in range(count):
            self.skip_value(source, element_type)

    def _read_key(self, source: ByteSource) -> str:
        length = self._read_length(source, self.max_string_length, "Key")
        raw = source.read_exact(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise GGUFCorruptStreamError(f"Metadata key is not valid UTF-8: {e}") from e

    def _read_length(self, source: ByteSource, limit: int, what: str) -> int:
        length = self._read_u64(source)
        if length > limit:
            raise GGUFCorruptStreamError(f"{what} length too large: {length}")
        return length

    @staticmethod
    def _read_u32(source: ByteSource) -> int:
        return struct.unpack("<I", source.read_exact(4))[0]

    @staticmethod
    def _read_u64(source: ByteSource) -> int:
        return struct.unpack("<Q", source.read_exact(8))[0]


def is_url(path_or_url: Union[str, Path]) -> bool:
    """Return True for http(s) URLs."""
    return urlparse(str(path_or_url)).scheme in ("http", "https")


class GGUFMetadataReader:
    """Reads model hyperparameters from a local GGUF file or an HTTP(S) URL."""

    def __init__(self,
                 decoder: Optional[GGUFHeaderDecoder] = None,
                 session: Optional[requests.Session] = None,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 timeout: float = DEFAULT_TIMEOUT) -> None:
        self.decoder = decoder or GGUFHeaderDecoder()
        self.session = session
        self.chunk_size = chunk_size
        self.timeout = timeout

    def open_source(self, path_or_url: Union[str, Path], token: Optional[str] = None,
                    abort_event: Optional[threading.Event] = None) -> ByteSource:
        """Open the ByteSource matching the location type."""
        if is_url(path_or_url):
            logging.debug(f"Reading from URL: {path_or_url}")
            return HttpFile(str(path_or_url), chunk_size=self.chunk_size, session=self.session,
                            token=token, timeout=self.timeout, abort_event=abort_event)
        logging.debug(f"Reading from file: {path_or_url}")
        return LocalFileSource(path_or_url)

    def decode_path(self, path_or_url: Union[str, Path], token: Optional[str] = None,
                    abort_event: Optional[threading.Event] = None) -> DecodeResult:
        """Decode the file at `path_or_url` and return the full result.

        Raises:
            GGUFParseError: If a local file does not exist
            HttpFileError: If a remote read fails or is aborted
        """
        with self.open_source(path_or_url, token, abort_event) as source:
            return self.decoder.decode(source)

    def read_model_params(self, path_or_url: Union[str, Path],
                          token: Optional[str] = None) -> Optional[ModelHyperparameters]:
        """Return hyperparameters, or None when the file cannot be decoded."""
        result = self.decode_path(path_or_url, token)
        if not result.ok:
            logging.debug(f"GGUFMetadataReader: no parameters for {path_or_url}: "
                          f"{result.status.value} {result.detail}")
            return None
        return result.params
