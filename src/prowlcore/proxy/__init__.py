"""Proxy pool and HTTP transport."""

from .pool import ProxyPool, proxy_scheme
from .transport import RawResponse, Transport, map_transport_error, proxy_connector

__all__ = ["ProxyPool", "RawResponse", "Transport", "map_transport_error", "proxy_connector", "proxy_scheme"]
