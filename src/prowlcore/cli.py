"""Command-line interface for prowlcore."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import click
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from prowlcore import __version__
from prowlcore.config import Config, LoggingConfig
from prowlcore.crawler import Crawler, Response
from prowlcore.errors import ProwlError

console = Console()
logger = structlog.get_logger(__name__)


def _load_config(ctx: click.Context) -> Config:
    config_path: Optional[Path] = ctx.obj["config_path"]
    config = Config.from_yaml(config_path) if config_path else Config()
    if config.logging is None:
        config.logging = LoggingConfig(level=ctx.obj["log_level"])
    return config


def _parse_headers(values: Tuple[str, ...]) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for value in values:
        name, sep, content = value.partition(":")
        if not sep or not name.strip():
            raise click.BadParameter(f"expected 'Name: value', got {value!r}", param_hint="--header")
        headers[name.strip()] = content.strip()
    return headers


def _apply_cache_options(config: Config, backend: Optional[str], url: Optional[str], path: Optional[str]) -> None:
    if backend is None:
        return
    data: Dict[str, Any] = config.cache.model_dump()
    data["backend"] = backend
    if url:
        data["url"] = url
    if path:
        data["path"] = path
    config.cache = type(config.cache).model_validate(data)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "-c", type=click.Path(exists=True), help="Configuration file path")
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Logging level",
)
@click.pass_context
def cli(ctx: click.Context, config: Optional[str], log_level: str) -> None:
    """Prowlcore - asynchronous HTTP crawler."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config) if config else None
    ctx.obj["log_level"] = log_level


@cli.command()
@click.argument("url")
@click.option("--header", "-H", multiple=True, help="Extra header, 'Name: value' (repeatable)")
@click.option("--proxy", multiple=True, help="Proxy URL added to the pool (repeatable)")
@click.option("--retry", type=click.IntRange(min=0), default=None, help="Retries on timeout or 5xx")
@click.option("--timeout", type=click.FloatRange(min=0, min_open=True), default=None, help="Per-attempt timeout")
@click.option("--redirects", type=click.IntRange(min=0), default=0, help="Maximum redirects to follow")
@click.option("--cache-backend", type=click.Choice(["memory", "sqlite", "redis", "sql"]), default=None)
@click.option("--cache-url", default=None, help="Redis or SQLAlchemy URL for the cache")
@click.option("--cache-path", default=None, help="SQLite cache file")
@click.option("--body/--no-body", default=True, help="Print the response body")
@click.pass_context
def get(
    ctx: click.Context,
    url: str,
    header: Tuple[str, ...],
    proxy: Tuple[str, ...],
    retry: Optional[int],
    timeout: Optional[float],
    redirects: int,
    cache_backend: Optional[str],
    cache_url: Optional[str],
    cache_path: Optional[str],
    body: bool,
) -> None:
    """Fetch URL and print the response."""
    headers = _parse_headers(header)
    config = _load_config(ctx)
    if retry is not None:
        config.crawler.retry_count = retry
    if timeout is not None:
        config.crawler.timeout = timeout
    _apply_cache_options(config, cache_backend, cache_url, cache_path)

    async def fetch() -> None:
        crawler = Crawler(config)
        for proxy_url in proxy:
            crawler.add_proxy(proxy_url)
        if retry:
            crawler.set_retry(retry, lambda r: r.status_code >= 500)

        @crawler.before_request
        def follow_redirects(request) -> None:
            request.allow_redirect(redirects)

        @crawler.after_response
        def show(response: Response) -> None:
            table = Table(show_header=False, box=None)
            table.add_row("[bold]Status[/bold]", f"{response.status_code} {response.status_text}")
            table.add_row("[bold]From cache[/bold]", str(response.from_cache))
            for key, value in response.headers.items():
                table.add_row(key, value)
            console.print(Panel(table, title=url))
            if body:
                click.echo(response.text)

        async with crawler:
            await crawler.get(url, headers)

    try:
        asyncio.run(fetch())
    except ProwlError as e:
        console.print(f"[red]Request failed: {e}[/red]")
        sys.exit(1)


@cli.group()
def cache() -> None:
    """Manage the response cache."""


@cache.command("clear")
@click.option("--backend", type=click.Choice(["memory", "sqlite", "redis", "sql"]), default=None)
@click.option("--url", default=None, help="Redis or SQLAlchemy URL")
@click.option("--path", default=None, help="SQLite cache file")
@click.pass_context
def cache_clear(ctx: click.Context, backend: Optional[str], url: Optional[str], path: Optional[str]) -> None:
    """Delete every cached response."""
    config = _load_config(ctx)
    _apply_cache_options(config, backend, url, path)

    async def clear() -> None:
        crawler = Crawler(config)
        try:
            await crawler.clear_cache()
        finally:
            await crawler.close()

    try:
        asyncio.run(clear())
    except ProwlError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    console.print("[green]Cache cleared[/green]")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
