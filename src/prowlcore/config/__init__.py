"""Configuration models for prowlcore."""

from .config import CacheConfig, Config, CrawlerConfig, LoggingConfig, ProxyConfig, parse_raw_cookie, proxy_host_port

__all__ = [
    "CacheConfig",
    "Config",
    "CrawlerConfig",
    "LoggingConfig",
    "ProxyConfig",
    "parse_raw_cookie",
    "proxy_host_port",
]
