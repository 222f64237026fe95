import logging
from http.server import ThreadingHTTPServer
from typing import Callable, List, Sequence

from .handler import RequestHandler

logger = logging.getLogger(__name__)


class MiddlewareHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the middleware chain for its handlers."""
    daemon_threads = True

    def __init__(self, server_address, middleware: Sequence[Callable]):
        self.middleware = list(middleware)
        super().__init__(server_address, RequestHandler)


class ProxyServer:
    """Development host that runs requests through a chain of middleware."""

    def __init__(self, host: str = "localhost", port: int = 8080,
                 middleware: Sequence[Callable] = None):
        """
        Initialize the server and bind its socket.

        Args:
            host: Host address to bind
            port: Port number to listen on, 0 for any free port
            middleware: Handlers called as ``handler(request, response, next)``
        """
        self._host = host
        self._httpd = MiddlewareHTTPServer((host, port), middleware or [])
        self._running = False

    @property
    def host(self) -> str:
        """Get the host address."""
        return self._host

    @property
    def port(self) -> int:
        """Get the bound port number."""
        return self._httpd.server_address[1]

    @property
    def middleware(self) -> List[Callable]:
        """Get the middleware chain."""
        return self._httpd.middleware.copy()

    @property
    def server(self) -> MiddlewareHTTPServer:
        """Get the underlying HTTP server."""
        return self._httpd

    def start(self) -> None:
        """Serve requests until shutdown() is called."""
        self._running = True
        logger.info(f"Proxy server started on {self._host}:{self.port}")
        try:
            self._httpd.serve_forever()
        finally:
            self._running = False
            self._httpd.server_close()

    def shutdown(self) -> None:
        """Shutdown the server gracefully."""
        if self._running:
            self._httpd.shutdown()
        self._httpd.server_close()
