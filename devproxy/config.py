import re
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlsplit

DEFAULT_PORTS = {"http": 80, "https": 443}


class ConfigurationError(ValueError):
    """Raised when a proxy is constructed with invalid arguments."""


@dataclass(frozen=True)
class PrefixMatcher:
    """Matches request URLs that start with a literal string."""
    prefix: str

    def matches(self, url: str) -> bool:
        return url.startswith(self.prefix)


@dataclass(frozen=True)
class PatternMatcher:
    """Matches request URLs containing a regular expression match."""
    pattern: re.Pattern

    def matches(self, url: str) -> bool:
        return self.pattern.search(url) is not None


Matcher = Union[PrefixMatcher, PatternMatcher]


def build_matcher(matcher: Union[str, re.Pattern]) -> Matcher:
    """
    Wrap a string or compiled pattern in the matching variant.

    Args:
        matcher: Literal URL prefix or compiled regular expression

    Returns:
        A matcher exposing ``matches(url)``
    """
    if isinstance(matcher, str):
        return PrefixMatcher(matcher)
    if isinstance(matcher, re.Pattern):
        return PatternMatcher(matcher)
    raise ConfigurationError("matcher (first arg) must be a string or regex")


@dataclass(frozen=True)
class UpstreamTarget:
    """Parsed address of the server requests are forwarded to."""
    scheme: str = "http"
    hostname: str = "localhost"
    port: Optional[int] = None
    query: str = ""
    fragment: str = ""

    @classmethod
    def from_url(cls, server: str) -> 'UpstreamTarget':
        """
        Parse a server address such as ``http://localhost:8080``.

        A value without ``//`` is read as a bare network location, so
        ``localhost:8080`` means host ``localhost`` on port 8080.
        """
        if "//" not in server:
            server = "//" + server
        parts = urlsplit(server)
        try:
            port = parts.port
        except ValueError as e:
            raise ConfigurationError(f"server (second arg) has an invalid port: {e}")

        scheme = parts.scheme or "http"
        if port is not None and DEFAULT_PORTS.get(scheme) == port:
            port = None

        return cls(
            scheme=scheme,
            hostname=parts.hostname or "localhost",
            port=port,
            query=f"?{parts.query}" if parts.query else "",
            fragment=f"#{parts.fragment}" if parts.fragment else "",
        )

    @property
    def host(self) -> str:
        """Value for the outbound ``host`` header: hostname[:port]."""
        hostname = f"[{self.hostname}]" if ":" in self.hostname else self.hostname
        if self.port is None:
            return hostname
        return f"{hostname}:{self.port}"

    def uri_for(self, path: str) -> str:
        """Compose the outbound URI for an already rewritten path."""
        return f"{self.scheme}://{self.host}{path}{self.query}{self.fragment}"


@dataclass(frozen=True)
class ProxyConfig:
    """Immutable configuration shared by every request a proxy handles."""
    matcher: Matcher
    target: UpstreamTarget
    path_to_strip: Optional[str] = None
    timeout: Optional[float] = None

    @classmethod
    def from_args(cls, matcher, server, path_to_strip=None, timeout=None) -> 'ProxyConfig':
        """
        Validate factory arguments and build the configuration.

        Args:
            matcher: Literal URL prefix or compiled regular expression
            server: Fully qualified upstream address, e.g. http://localhost:8080
            path_to_strip: Optional leading string removed from proxied URLs
            timeout: Optional upstream connect/read timeout in seconds

        Raises:
            ConfigurationError: If any argument has the wrong type
        """
        built = build_matcher(matcher)
        if not isinstance(server, str):
            raise ConfigurationError("server (second arg) must be a string")
        if path_to_strip is not None and not isinstance(path_to_strip, str):
            raise ConfigurationError("path_to_strip (optional third arg) must be a string")

        return cls(
            matcher=built,
            target=UpstreamTarget.from_url(server),
            path_to_strip=path_to_strip,
            timeout=timeout,
        )

    def rewrite_path(self, url: str) -> str:
        """Remove the configured prefix from a URL that starts with it."""
        if self.path_to_strip and url.startswith(self.path_to_strip):
            return url[len(self.path_to_strip):]
        return url
