"""
Configuration management for prowlcore using Pydantic.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prowlcore.errors import InvalidProxy

# --- Setup Logging ---
log = logging.getLogger(__name__)

SUPPORTED_PROXY_SCHEMES = ("http", "https", "socks5")


def parse_raw_cookie(cookie: str) -> Dict[str, str]:
    """Split a raw ``Cookie`` header value into a name -> value map."""
    cookies: Dict[str, str] = {}
    for part in cookie.split(";"):
        part = part.strip()
        if not part:
            continue
        name, sep, value = part.partition("=")
        if not sep:
            raise ValueError(f"malformed cookie pair: {part!r}")
        cookies[name.strip()] = value.strip()
    return cookies


def proxy_host_port(proxy_url: str) -> str:
    """Return ``host:port`` of a proxy URL, without scheme or credentials."""
    parts = urlsplit(proxy_url if "//" in proxy_url else f"//{proxy_url}")
    try:
        port = parts.port
    except ValueError as e:
        raise InvalidProxy(f"invalid proxy port: {e}", proxy_url) from e
    if not parts.hostname or port is None:
        raise InvalidProxy("proxy URL must contain a host and a port", proxy_url)
    host = parts.hostname
    if ":" in host:
        host = f"[{host}]"
    return f"{host}:{port}"


# --- Nested Configuration Models ---


class CrawlerConfig(BaseModel):
    """Crawler configuration."""

    user_agent: str = Field(default="Prowlcore", description="User-Agent sent when a request sets none.")
    cookies: Dict[str, str] = Field(default_factory=dict, description="Cookies injected into every request.")
    concurrency: Optional[int] = Field(default=None, description="Worker pool capacity. None runs inline.")
    block_panic: bool = Field(default=False, description="Log handler errors in workers instead of propagating.")
    retry_count: int = Field(default=0, ge=0, description="Maximum retries per request.")
    timeout: Optional[float] = Field(default=None, gt=0, description="Per-attempt timeout in seconds.")
    context_kind: Literal["read", "write"] = Field(default="write", description="Context variant for new requests.")

    @field_validator("cookies", mode="before")
    @classmethod
    def parse_cookies(cls, v: Any) -> Any:
        if isinstance(v, str):
            return parse_raw_cookie(v)
        return v

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v <= 0:
            raise ValueError("concurrency must be a positive integer")
        return v


class ProxyConfig(BaseModel):
    """Proxy pool configuration."""

    urls: List[str] = Field(default_factory=list, description="Proxy URLs: http://, https:// or socks5://")

    @field_validator("urls", mode="before")
    @classmethod
    def split_urls(cls, v: Any) -> Any:
        if isinstance(v, str):
            return [u.strip() for u in v.split(",") if u.strip()]
        return v

    @field_validator("urls")
    @classmethod
    def validate_urls(cls, v: List[str]) -> List[str]:
        for url in v:
            proxy_host_port(url)
        return v


class CacheConfig(BaseModel):
    """Response cache configuration."""

    backend: Optional[Literal["memory", "sqlite", "redis", "sql"]] = Field(
        default=None, description="Cache backend. None disables caching."
    )
    path: Path = Field(default=Path("predator-cache.sqlite"), description="SQLite database file.")
    url: Optional[str] = Field(default=None, description="Redis or SQLAlchemy connection URL.")
    compressed: bool = Field(default=False, description="zlib-compress cached responses.")

    @model_validator(mode="after")
    def require_url(self) -> "CacheConfig":
        if self.backend in ("redis", "sql") and not self.url:
            raise ValueError(f"cache backend {self.backend!r} requires a url")
        return self


class LoggingConfig(BaseModel):
    """Configuration for structured logging sinks."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    sink: Literal["console", "file", "both"] = "console"
    file: Optional[Path] = Field(default=None, description="Log file, required for the file and both sinks.")

    @field_validator("level", mode="before")
    @classmethod
    def upper_level(cls, v: Any) -> Any:
        return v.upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def require_file(self) -> "LoggingConfig":
        if self.sink in ("file", "both"):
            if self.file is None:
                raise ValueError(f"logging sink {self.sink!r} requires a file")
            self.file.parent.mkdir(parents=True, exist_ok=True)
        return self


# --- Main Configuration Class ---


class Config(BaseSettings):
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: Optional[LoggingConfig] = None

    model_config = SettingsConfigDict(env_prefix="PROWL_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        path = Path(path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)
