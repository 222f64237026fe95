from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler
from typing import BinaryIO, Dict, Iterable, Mapping, Optional, Tuple, Union

Headers = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass
class IncomingRequest:
    """
    Request handed to middleware by the host.

    ``headers`` uses lower-cased names. The body is read with ``read()``,
    which stops at the declared Content-Length or decodes a chunked body.
    """
    method: str
    url: str
    headers: Dict[str, str]
    stream: Optional[BinaryIO] = None
    _remaining: int = field(default=0, init=False, repr=False)
    _chunked: bool = field(default=False, init=False, repr=False)
    _chunk_left: int = field(default=0, init=False, repr=False)
    _done: bool = field(default=False, init=False, repr=False)

    def __post_init__(self):
        self._chunked = 'chunked' in self.headers.get('transfer-encoding', '').lower()
        if not self._chunked:
            self._remaining = int(self.headers.get('content-length') or 0)

    @classmethod
    def from_handler(cls, handler: BaseHTTPRequestHandler) -> 'IncomingRequest':
        """Create an IncomingRequest from a parsed http.server request."""
        headers = {}
        for key in handler.headers.keys():
            name = key.lower()
            if name not in headers:
                separator = '; ' if name == 'cookie' else ', '
                headers[name] = separator.join(handler.headers.get_all(key))
        return cls(
            method=handler.command,
            url=handler.path,
            headers=headers,
            stream=handler.rfile
        )

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` body bytes, or the rest of the body if negative."""
        if self.stream is None:
            return b''
        if size == 0:
            return b''
        if self._chunked:
            return self._read_chunked(size)
        if self._remaining <= 0:
            return b''

        if size < 0 or size > self._remaining:
            size = self._remaining
        data = self.stream.read(size)
        self._remaining = self._remaining - len(data) if data else 0
        return data

    def _read_chunked(self, size: int) -> bytes:
        body = bytearray()
        while not self._done and (size < 0 or len(body) < size):
            if self._chunk_left == 0:
                line = self.stream.readline(65537)
                self._chunk_left = int(line.split(b';', 1)[0].strip() or b'0', 16)
                if self._chunk_left == 0:
                    # Skip trailers up to the blank line ending the message
                    while self.stream.readline(65537) not in (b'\r\n', b'\n', b''):
                        pass
                    self._done = True
                    break

            wanted = self._chunk_left if size < 0 else min(self._chunk_left, size - len(body))
            data = self.stream.read(wanted)
            if not data:
                self._done = True
                break
            body.extend(data)
            self._chunk_left -= len(data)
            if self._chunk_left == 0:
                self.stream.readline(65537)

        return bytes(body)


class ResponseSink:
    """Response object handed to middleware: write_head, then write, then end."""

    def __init__(self, handler: BaseHTTPRequestHandler):
        self._handler = handler
        self._headers_sent = False
        self._finished = False

    @property
    def headers_sent(self) -> bool:
        """Whether the status line and headers have gone out."""
        return self._headers_sent

    @property
    def finished(self) -> bool:
        """Whether end() has been called."""
        return self._finished

    def write_head(self, status_code: int, headers: Headers) -> None:
        """
        Send the status line and headers.

        Args:
            status_code: HTTP status code
            headers: Mapping or sequence of (name, value) pairs; a sequence
                may repeat a name, e.g. for several Set-Cookie headers
        """
        if self._headers_sent:
            raise RuntimeError("Response headers already sent")

        items = headers.items() if isinstance(headers, Mapping) else headers
        self._handler.log_request(status_code)
        self._handler.send_response_only(status_code)
        for name, value in items:
            self._handler.send_header(name, value)
        self._handler.end_headers()
        self._headers_sent = True

    def write(self, chunk: bytes) -> None:
        """Send a chunk of the response body."""
        if not self._headers_sent:
            raise RuntimeError("write_head() must be called before write()")
        if self._finished:
            raise RuntimeError("Response already finished")
        self._handler.wfile.write(chunk)

    def end(self) -> None:
        """Finish the response."""
        if self._finished:
            return
        self._finished = True
        self._handler.wfile.flush()


def send_error(response, status_code: int, message: str) -> None:
    """
    Complete a response with a plain-text error.

    Args:
        response: Response sink that has not sent headers yet
        status_code: HTTP status code
        message: Error message, also used as the body
    """
    body = message.encode('utf-8')
    response.write_head(status_code, {
        'Content-Type': 'text/plain',
        'Content-Length': str(len(body))
    })
    response.write(body)
    response.end()
