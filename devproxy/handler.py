import logging
from http.server import BaseHTTPRequestHandler

from .models import IncomingRequest, ResponseSink, send_error

logger = logging.getLogger(__name__)


class RequestHandler(BaseHTTPRequestHandler):
    """
    Handles processing of individual HTTP requests.

    Every request runs through the middleware chain held by the server.
    Each middleware either completes the response or calls ``next()``; when
    the whole chain passes, the request gets a 404.
    """

    def handle_one_request(self) -> None:
        """Read and dispatch a single request, whatever its method."""
        self.raw_requestline = self.rfile.readline(65537)
        if len(self.raw_requestline) > 65536:
            self.requestline = ''
            self.request_version = ''
            self.command = ''
            self.send_error(414)
            return
        if not self.raw_requestline:
            self.close_connection = True
            return
        if not self.parse_request():
            return

        self._dispatch()
        self.wfile.flush()

    def _dispatch(self) -> None:
        request = IncomingRequest.from_handler(self)
        response = ResponseSink(self)

        try:
            self._run_chain(request, response, 0)
        except Exception as e:
            logger.error(f"Error handling {self.command} {self.path} from {self.client_address}: {e}")
            if not response.headers_sent:
                send_error(response, 500, "Internal Server Error")
            else:
                response.end()

    def _run_chain(self, request: IncomingRequest, response: ResponseSink, index: int):
        middleware = self.server.middleware
        if index >= len(middleware):
            send_error(response, 404, "Not Found")
            return

        return middleware[index](
            request,
            response,
            lambda: self._run_chain(request, response, index + 1)
        )

    def log_message(self, format, *args):
        """Override to use our logger."""
        logger.info(f"{self.address_string()} - {format % args}")
