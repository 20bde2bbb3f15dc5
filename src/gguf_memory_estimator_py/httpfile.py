from functools import cached_property
import io
import logging
import threading

import requests
from requests.exceptions import RequestException

from gguf_memory_estimator_py.bytesource import UnexpectedEndOfStream

# Constants
DEFAULT_CHUNK_SIZE = 256 * 1024  # bytes
DEFAULT_TIMEOUT = 30.0  # seconds
STREAM_READ_SIZE = 64 * 1024
USER_AGENT = "gguf-memory-estimator-py/0.1.0"
RANGE_HEADER_FIRST_BYTE = "bytes=0-0"
CONTENT_LENGTH_HEADER = "Content-Length"
CONTENT_RANGE_HEADER = "Content-Range"
RANGE_HEADER = "Range"
AUTHORIZATION_HEADER = "Authorization"
USER_AGENT_HEADER = "User-Agent"
HTTP_OK = 200
HTTP_PARTIAL_CONTENT = 206
HTTP_RANGE_NOT_SATISFIABLE = 416


# Custom exceptions
class HttpFileError(Exception):
    """Base exception for HttpFile operations."""
    pass


class FileLengthError(HttpFileError):
    """Exception raised when file length cannot be determined."""
    pass


class DataFetchError(HttpFileError):
    """Exception raised when data cannot be fetched from the remote file."""
    pass


class FetchAborted(DataFetchError):
    """Exception raised when a fetch is attempted after abort() was called."""
    pass


def build_request_headers(token: str | None = None, extra_headers: dict[str, str] | None = None) -> dict[str, str]:
    """Build the headers attached to every outbound request.

    Args:
        token: Optional bearer credential
        extra_headers: Additional HTTP headers

    Returns:
        Header dictionary with User-Agent and, when a token is given, Authorization
    """
    headers = {USER_AGENT_HEADER: USER_AGENT}
    if extra_headers:
        headers.update(extra_headers)
    if token:
        headers[AUTHORIZATION_HEADER] = f"Bearer {token}"
    return headers


class HttpFile:
    """A forward-only file-like object that fetches a remote file in ranged chunks.

    Only the bytes between the read cursor and the tail of the last fetched
    chunk are kept in memory. Consumed bytes are discarded before every fetch,
    so reading the metadata prefix of a multi-gigabyte file costs a few
    chunk-sized requests.
    """

    def __init__(self,
                 url: str,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 extra_headers: dict[str, str] | None = None,
                 session: requests.Session | None = None,
                 token: str | None = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 abort_event: threading.Event | None = None) -> None:
        """Initialize the HttpFile.

        Args:
            url: The URL to fetch data from
            chunk_size: Number of bytes requested per range fetch (default: 256 KiB)
            extra_headers: Additional HTTP headers to send with requests
            session: Requests session to use (default: creates new session)
            token: Optional bearer credential attached to every request
            timeout: Per-request timeout in seconds
            abort_event: Event shared with the owner of this read; once set,
                every request fails with FetchAborted
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self.url = url
        self.chunk_size = chunk_size
        self.extra_headers = build_request_headers(token, extra_headers)
        self.session = session if session else requests.Session()
        self._owns_session = session is None
        self.timeout = timeout
        self.offset = 0
        self._buffer = bytearray()
        self._buffer_start = 0
        self._eof = False
        self._aborted = abort_event if abort_event is not None else threading.Event()
        self.requests_sent = 0
        logging.debug(f"HttpFile initialized: url={url}, chunk_size={chunk_size}, timeout={timeout}")

    def _get_length_from_head(self) -> int | None:
        """Try to get file length using HEAD request.

        Returns:
            File length in bytes if successful, None if the HEAD request failed
            or Content-Length was not available
        """
        logging.debug(f"HttpFile._get_length_from_head: Sending HEAD request to {self.url}")
        try:
            response = self.session.head(self.url, headers=self.extra_headers,
                                         allow_redirects=True, timeout=self.timeout)
            self.requests_sent += 1
            response.raise_for_status()
        except RequestException as e:
            logging.debug(f"HttpFile._get_length_from_head: HEAD request failed: {e}")
            return None
        length = response.headers.get(CONTENT_LENGTH_HEADER)
        if length is not None and length.isdigit() and int(length) > 0:
            logging.debug(f"HttpFile._get_length_from_head: Content-Length from HEAD={length}")
            return int(length)
        return None

    def _parse_content_range(self, content_range: str) -> int | None:
        """Parse the Content-Range header to extract total file size.

        Args:
            content_range: Content-Range header value (e.g., "bytes 0-0/123456")

        Returns:
            Total file size in bytes if parsing successful, None otherwise
        """
        try:
            # Content-Range: bytes 0-0/123456
            total = int(content_range.split('/')[-1])
            logging.debug(f"HttpFile._parse_content_range: Parsed total from Content-Range: {total}")
            return total if total > 0 else None
        except (ValueError, IndexError):
            logging.debug(f"HttpFile._parse_content_range: Failed to parse Content-Range: {content_range}")
            return None

    def _get_length_from_range_request(self) -> int | None:
        """Try to get file length using a single-byte range request.

        Returns:
            File length in bytes if successful, None if not available

        Raises:
            FileLengthError: If the HTTP request fails
        """
        self._check_aborted()
        logging.debug("HttpFile._get_length_from_range_request: Trying GET with Range: bytes=0-0")
        headers = self.extra_headers.copy()
        headers[RANGE_HEADER] = RANGE_HEADER_FIRST_BYTE

        try:
            get_response = self.session.get(self.url, headers=headers, allow_redirects=True,
                                            timeout=self.timeout, stream=True)
            self.requests_sent += 1
            try:
                get_response.raise_for_status()

                if get_response.status_code == HTTP_PARTIAL_CONTENT:
                    content_range = get_response.headers.get(CONTENT_RANGE_HEADER)
                    if content_range:
                        return self._parse_content_range(content_range)
                    return None

                # Server ignored the range; a 200 carries the full length
                length = get_response.headers.get(CONTENT_LENGTH_HEADER)
                if length is not None and length.isdigit() and int(length) > 0:
                    logging.debug(f"HttpFile._get_length_from_range_request: Content-Length from GET={length}")
                    return int(length)
                return None
            finally:
                get_response.close()
        except RequestException as e:
            logging.debug(f"HttpFile._get_length_from_range_request: GET request failed: {e}")
            raise FileLengthError(f"Failed to get file length: {e}") from e

    def _check_aborted(self) -> None:
        if self._aborted.is_set():
            raise FetchAborted(f"Fetch aborted: {self.url}")

    @cached_property
    def file_length(self) -> int:
        """Get the total length of the file, handling redirects and missing Content-Length."""
        self._check_aborted()

        # First try HEAD request
        length = self._get_length_from_head()
        if length is not None:
            return length

        # If HEAD fails, try range request
        length = self._get_length_from_range_request()
        if length is not None:
            return length

        logging.debug("HttpFile.file_length: Could not determine file length from HEAD or GET")
        raise FileLengthError("Content-Length header is missing and could not be determined via GET")

    def _read_body(self, response: requests.Response, limit: int) -> bytes:
        """Read at most `limit` bytes of a streamed response body."""
        body = bytearray()
        for piece in response.iter_content(chunk_size=STREAM_READ_SIZE):
            self._check_aborted()
            body.extend(piece)
            if len(body) >= limit:
                break
        return bytes(body[:limit])

    def _fetch_range(self, start: int, end_exclusive: int) -> bytes:
        """Fetch bytes [start, end_exclusive) from the remote file.

        Returns:
            The fetched bytes; empty when the range lies past the end of the file

        Raises:
            FetchAborted: If abort() was called
            DataFetchError: If the HTTP request fails or times out
        """
        self._check_aborted()

        logging.debug(f"HttpFile._fetch_range: GET {self.url} bytes={start}-{end_exclusive - 1}")
        headers = self.extra_headers.copy()
        headers[RANGE_HEADER] = f"bytes={start}-{end_exclusive - 1}"

        try:
            response = self.session.get(self.url, headers=headers, allow_redirects=True,
                                        timeout=self.timeout, stream=True)
            self.requests_sent += 1
            try:
                if response.status_code == HTTP_RANGE_NOT_SATISFIABLE:
                    logging.debug(f"HttpFile._fetch_range: 416 for start={start}, treating as end of stream")
                    return b""
                response.raise_for_status()

                if response.status_code == HTTP_OK and start > 0:
                    # Range ignored: the body starts at absolute offset 0
                    body = self._read_body(response, end_exclusive)
                    logging.debug(f"HttpFile._fetch_range: Server ignored range, slicing {len(body)} bytes from offset 0")
                    return body[start:end_exclusive]

                data = self._read_body(response, end_exclusive - start)
                logging.debug(f"HttpFile._fetch_range: Received {len(data)} bytes for start={start}")
                return data
            finally:
                response.close()
        except RequestException as e:
            logging.debug(f"HttpFile._fetch_range: HTTP GET failed for start={start}: {e}")
            raise DataFetchError(f"Failed to fetch data: {e}") from e

    def _buffered_ahead(self) -> int:
        return self._buffer_start + len(self._buffer) - self.offset

    def _compact(self) -> None:
        """Discard buffered bytes that lie before the read cursor."""
        buffer_end = self._buffer_start + len(self._buffer)
        if self.offset >= buffer_end:
            self._buffer = bytearray()
        elif self.offset > self._buffer_start:
            del self._buffer[: self.offset - self._buffer_start]
        self._buffer_start = self.offset

    def _fill(self, size: int) -> int:
        """Fetch chunks until `size` bytes are buffered past the cursor or EOF is hit.

        Returns:
            Number of bytes available past the cursor (may be less than size)
        """
        while self._buffered_ahead() < size and not self._eof:
            self._compact()
            next_start = self._buffer_start + len(self._buffer)
            chunk = self._fetch_range(next_start, next_start + self.chunk_size)
            if not chunk:
                self._eof = True
                break
            self._buffer.extend(chunk)
        return min(size, max(0, self._buffered_ahead()))

    def _take(self, size: int) -> bytes:
        local_offset = self.offset - self._buffer_start
        data = bytes(self._buffer[local_offset:local_offset + size])
        self.offset += len(data)
        return data

    def read_exact(self, size: int) -> bytes:
        """Read exactly `size` bytes.

        Raises:
            UnexpectedEndOfStream: If the remote file ends first
            DataFetchError: If fetching data from the remote file fails
        """
        if size == 0:
            return b""
        available = self._fill(size)
        if available < size:
            raise UnexpectedEndOfStream(size, available, self.offset)
        return self._take(size)

    def read(self, size: int = -1) -> bytes:
        """Read up to `size` bytes; a negative size reads until EOF.

        Raises:
            DataFetchError: If fetching data from the remote file fails
        """
        if size == 0:
            return b""
        if size < 0:
            data = bytearray()
            while True:
                piece = self._take(self._fill(self.chunk_size))
                if not piece:
                    return bytes(data)
                data.extend(piece)
        return self._take(self._fill(size))

    def skip(self, size: int) -> None:
        """Advance the cursor by `size` bytes.

        Bytes already buffered are consumed in place; a skip past the buffered
        tail moves the cursor without fetching, so the skipped region is never
        downloaded. Running past the end of the file surfaces on the next read.
        """
        if size < 0:
            raise ValueError(f"Cannot skip a negative number of bytes: {size}")
        self.offset += size

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> None:
        """Seek to a specified offset in the file.

        Args:
            offset: Byte offset to seek to
            whence: How to interpret the offset:
                   - io.SEEK_SET (0): absolute position
                   - io.SEEK_CUR (1): relative to current position
                   - io.SEEK_END (2): relative to end of file
        """
        old_offset = self.offset
        if whence == io.SEEK_CUR:
            new_offset = self.offset + offset
        elif whence == io.SEEK_END:
            new_offset = self.file_length + offset
        else:  # io.SEEK_SET
            new_offset = offset
        if new_offset < 0:
            raise ValueError(f"Negative seek position {new_offset}")

        buffer_end = self._buffer_start + len(self._buffer)
        if not (self._buffer_start <= new_offset < buffer_end):
            self._buffer = bytearray()
            self._buffer_start = new_offset
            self._eof = False
        self.offset = new_offset
        logging.debug(f"HttpFile.seek(offset={offset}, whence={whence}): {old_offset} -> {self.offset}")

    def tell(self) -> int:
        return self.offset

    @property
    def eof(self) -> bool:
        return self._eof and self._buffered_ahead() <= 0

    def abort(self) -> None:
        """Make every subsequent fetch fail with FetchAborted. Safe to call from any thread."""
        logging.debug(f"HttpFile.abort() called for {self.url}")
        self._aborted.set()

    @property
    def aborted(self) -> bool:
        return self._aborted.is_set()

    def close(self) -> None:
        """Close the HttpFile and release the buffer."""
        logging.debug(f"HttpFile.close() called. requests_sent={self.requests_sent}")
        self._buffer = bytearray()
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> 'HttpFile':
        """Enter the context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_value: Exception | None, traceback: object | None) -> None:
        """Exit the context manager."""
        logging.debug(f"HttpFile.__exit__() called. exc_type={exc_type}, exc_value={exc_value}")
        self.close()
