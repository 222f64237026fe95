"""
Selective HTTP proxy middleware for development servers.
"""

from .config import ConfigurationError, ProxyConfig, UpstreamTarget, PrefixMatcher, PatternMatcher
from .proxy import make_proxy, ProxyMiddleware
from .server import ProxyServer
from .handler import RequestHandler
from .models import IncomingRequest, ResponseSink

__all__ = [
    'make_proxy', 'ProxyMiddleware', 'ConfigurationError', 'ProxyConfig', 'UpstreamTarget',
    'PrefixMatcher', 'PatternMatcher', 'ProxyServer', 'RequestHandler', 'IncomingRequest',
    'ResponseSink'
]
