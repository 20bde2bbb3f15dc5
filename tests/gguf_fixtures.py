"""Helpers for building synthetic GGUF buffers and faking ranged HTTP servers."""

from __future__ import annotations

import re
import struct
from typing import Dict, List, Optional, Union

import requests

GGUF_MAGIC = 0x46554747

UINT8, INT8, UINT16, INT16, UINT32, INT32, FLOAT32, BOOL, STRING, ARRAY, UINT64, INT64, FLOAT64 = range(13)


def gguf_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return struct.pack("<Q", len(raw)) + raw


def kv_u32(key: str, value: int, tag: int = UINT32) -> bytes:
    return gguf_string(key) + struct.pack("<I", tag) + struct.pack("<I", value)


def kv_u64(key: str, value: int, tag: int = UINT64) -> bytes:
    return gguf_string(key) + struct.pack("<I", tag) + struct.pack("<Q", value)


def kv_f32(key: str, value: float) -> bytes:
    return gguf_string(key) + struct.pack("<I", FLOAT32) + struct.pack("<f", value)


def kv_string(key: str, value: str) -> bytes:
    return gguf_string(key) + struct.pack("<I", STRING) + gguf_string(value)


def array_value(element_tag: int, count: int, payload: bytes) -> bytes:
    """Array value body (element tag, count, elements) without the leading ARRAY tag."""
    return struct.pack("<I", element_tag) + struct.pack("<Q", count) + payload


def kv_array(key: str, element_tag: int, count: int, payload: bytes) -> bytes:
    return gguf_string(key) + struct.pack("<I", ARRAY) + array_value(element_tag, count, payload)


def kv_raw(key: str, tag: int, payload: bytes = b"") -> bytes:
    return gguf_string(key) + struct.pack("<I", tag) + payload


def build_gguf(entries: List[bytes],
               version: int = 3,
               magic: int = GGUF_MAGIC,
               tensor_count: int = 0,
               entry_count: Optional[int] = None,
               trailer: bytes = b"") -> bytes:
    """Assemble a GGUF header with the given metadata entries."""
    header = struct.pack("<I", magic) + struct.pack("<I", version)
    if version >= 1:
        header += struct.pack("<Q", tensor_count)
    count = len(entries) if entry_count is None else entry_count
    return header + struct.pack("<Q", count) + b"".join(entries) + trailer


def llama_entries(heads: int = 32, layers: int = 32, hidden: int = 4096,
                  kv_heads: Optional[int] = None) -> List[bytes]:
    """General keys followed by hyperparameters; head_count comes last so it completes the set."""
    entries = [
        kv_string("general.architecture", "llama"),
        kv_string("general.name", "Synthetic Llama"),
        kv_u32("llama.context_length", 4096),
        kv_u32("llama.embedding_length", hidden),
        kv_u32("llama.block_count", layers),
    ]
    if kv_heads is not None:
        entries.append(kv_u32("llama.attention.head_count_kv", kv_heads))
    entries.append(kv_u32("llama.attention.head_count", heads))
    return entries


class FakeResponse:
    """Minimal stand-in for requests.Response."""

    def __init__(self, status_code: int, body: bytes = b"", headers: Optional[Dict[str, str]] = None):
        self.status_code = status_code
        self.content = body
        self.headers = headers or {}
        self.closed = False

    def iter_content(self, chunk_size: int = 1):
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i:i + chunk_size]

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error", response=self)

    def close(self) -> None:
        self.closed = True


_RANGE = re.compile(r"bytes=(\d+)-(\d+)")


class FakeRangeServer:
    """A fake requests.Session serving byte ranges of in-memory files.

    Args:
        files: URL -> content; a single bytes object is served for every URL
        honor_ranges: When False, every GET returns 200 with the full body
        head_length: When False, HEAD responses omit Content-Length
        range_total: When False, 206 responses omit Content-Range
        get_length: When False, 200 responses omit Content-Length
    """

    def __init__(self, files: Union[bytes, Dict[str, bytes]],
                 honor_ranges: bool = True,
                 head_length: bool = True,
                 range_total: bool = True,
                 get_length: bool = True):
        self.files = files
        self.honor_ranges = honor_ranges
        self.head_length = head_length
        self.range_total = range_total
        self.get_length = get_length
        self.calls: List[tuple] = []

    def _data(self, url: str) -> Optional[bytes]:
        if isinstance(self.files, bytes):
            return self.files
        return self.files.get(url)

    def head(self, url, headers=None, allow_redirects=True, timeout=None):
        self.calls.append(("HEAD", url, dict(headers or {})))
        data = self._data(url)
        if data is None:
            return FakeResponse(404)
        hdrs = {"Content-Length": str(len(data))} if self.head_length else {}
        return FakeResponse(200, b"", hdrs)

    def get(self, url, headers=None, allow_redirects=True, timeout=None, stream=False):
        headers = dict(headers or {})
        self.calls.append(("GET", url, headers))
        data = self._data(url)
        if data is None:
            return FakeResponse(404)

        match = _RANGE.fullmatch(headers.get("Range", ""))
        if match is None or not self.honor_ranges:
            hdrs = {"Content-Length": str(len(data))} if self.get_length else {}
            return FakeResponse(200, data, hdrs)

        start, end = int(match.group(1)), int(match.group(2))
        if start >= len(data):
            return FakeResponse(416, b"", {"Content-Range": f"bytes */{len(data)}"})
        body = data[start:end + 1]
        hdrs = {"Content-Length": str(len(body))}
        if self.range_total:
            hdrs["Content-Range"] = f"bytes {start}-{start + len(body) - 1}/{len(data)}"
        return FakeResponse(206, body, hdrs)

    def close(self) -> None:
        pass

    @property
    def range_requests(self) -> List[str]:
        return [call[2].get("Range") for call in self.calls if call[0] == "GET"]

    @property
    def bytes_served(self) -> int:
        total = 0
        for rng in self.range_requests:
            match = _RANGE.fullmatch(rng or "")
            if match:
                total += int(match.group(2)) - int(match.group(1)) + 1
        return total
