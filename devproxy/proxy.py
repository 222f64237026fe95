import logging
from typing import Callable, List, Optional, Tuple
from urllib.parse import urlsplit

import requests
from requests.structures import CaseInsensitiveDict
from urllib3.exceptions import HTTPError
from urllib3.util import SKIP_HEADER

from .config import ProxyConfig
from .cookies import parse_cookie_header, strip_cookie_domain
from .models import send_error

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192

# Framing of the upstream connection; the host frames its own response
HOP_BY_HOP_HEADERS = {'connection', 'keep-alive', 'proxy-connection', 'transfer-encoding', 'upgrade'}


class UpstreamSession(requests.Session):
    """
    Session used for a single proxied request.

    Redirects keep the original method instead of falling back to GET, and
    the Host header follows the redirect target. Only headers the client sent
    go upstream: no requests defaults, and urllib3 is told not to add its
    own User-Agent or Accept-Encoding. Proxy settings and .netrc from the
    environment are ignored.
    """

    def __init__(self):
        super().__init__()
        self.trust_env = False
        self.headers.clear()
        self.headers.update({'User-Agent': SKIP_HEADER, 'Accept-Encoding': SKIP_HEADER})

    def rebuild_method(self, prepared_request, response):
        pass

    def rebuild_auth(self, prepared_request, response):
        super().rebuild_auth(prepared_request, response)
        prepared_request.headers['host'] = urlsplit(prepared_request.url).netloc


class _SizedBody:
    """File-like view of a request body with a known length."""

    def __init__(self, request, length: int):
        self._request = request
        self.len = length

    def read(self, size: int = -1) -> bytes:
        return self._request.read(size)


class ProxyMiddleware:
    """
    Middleware that forwards matching requests to a single upstream server.

    Called as ``middleware(request, response, next)``. Requests whose URL does
    not satisfy the matcher are passed on with ``next()``; all others are sent
    upstream and the upstream response is streamed back through ``response``.
    """

    def __init__(self, config: ProxyConfig):
        self._config = config

    @property
    def config(self) -> ProxyConfig:
        """Get the proxy configuration."""
        return self._config

    def __call__(self, request, response, next: Callable[[], None]):
        if not self._config.matcher.matches(request.url):
            return next()

        path = self._config.rewrite_path(request.url)
        uri = self._config.target.uri_for(path)
        incoming = CaseInsensitiveDict(request.headers)
        logger.debug(f"Proxying {request.method} {request.url} to {uri}")

        with UpstreamSession() as session:
            prepared = session.prepare_request(requests.Request(
                method=request.method,
                url=uri,
                headers=self._outbound_headers(request.headers),
                data=self._outbound_body(request, incoming),
                cookies=parse_cookie_header(incoming.get('cookie', ''))
            ))
            try:
                upstream = session.send(
                    prepared,
                    stream=True,
                    allow_redirects=True,
                    timeout=self._config.timeout
                )
            except requests.RequestException as e:
                logger.error(f"Error forwarding {request.method} {request.url} to {uri}: {e}")
                send_error(response, 502, "Bad Gateway")
                return

            with upstream:
                self._relay(upstream, response)

    def _outbound_headers(self, headers) -> CaseInsensitiveDict:
        """Synthesized host header first, then every client header not yet set."""
        outbound = CaseInsensitiveDict({'host': self._config.target.host})
        for key, value in headers.items():
            if key not in outbound:
                outbound[key] = value
        return outbound

    def _outbound_body(self, request, incoming: CaseInsensitiveDict):
        if 'chunked' in incoming.get('transfer-encoding', '').lower():
            return iter(lambda: request.read(CHUNK_SIZE), b'')

        length = int(incoming.get('content-length') or 0)
        if length > 0:
            return _SizedBody(request, length)
        return None

    def _response_headers(self, upstream: requests.Response) -> List[Tuple[str, str]]:
        headers = []
        for name, value in upstream.raw.headers.iteritems():
            lowered = name.lower()
            if lowered in HOP_BY_HOP_HEADERS:
                continue
            if lowered == 'set-cookie':
                value = strip_cookie_domain(value)
            headers.append((name, value))
        return headers

    def _relay(self, upstream: requests.Response, response) -> None:
        """Write upstream status and headers, then stream the body undecoded."""
        response.write_head(upstream.status_code, self._response_headers(upstream))
        try:
            for chunk in upstream.raw.stream(CHUNK_SIZE, decode_content=False):
                response.write(chunk)
        except (HTTPError, requests.RequestException) as e:
            logger.error(f"Error streaming response from {upstream.url}: {e}")
        finally:
            response.end()


def make_proxy(matcher, server, path_to_strip: Optional[str] = None,
               timeout: Optional[float] = None) -> ProxyMiddleware:
    """
    Create a middleware that selectively proxies requests to another server.

    Args:
        matcher: Literal URL prefix or compiled regular expression deciding
            which requests are proxied
        server: Fully qualified server address, e.g. http://localhost:8080
        path_to_strip: Optional leading string removed from the request URL
        timeout: Optional upstream connect/read timeout in seconds

    Returns:
        Middleware callable as ``middleware(request, response, next)``

    Raises:
        ConfigurationError: If any argument has the wrong type

    With ``path_to_strip`` equal to the whole URL the rewritten path is
    empty; requests normalizes ``http://upstream`` to ``http://upstream/``.
    """
    return ProxyMiddleware(ProxyConfig.from_args(matcher, server, path_to_strip, timeout))
