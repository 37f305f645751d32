"""
Test configuration for prowlcore.

Provides the asyncio task cleanup fixture, temporary paths and a local aiohttp
test server that the integration tests crawl.
"""

# Standard library imports
import asyncio
import json
from collections import defaultdict
from pathlib import Path
from typing import AsyncGenerator, Generator

# Third-party imports
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

# Local imports
from prowlcore.config import Config

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")
    config.addinivalue_line("markers", "slow: Tests that take >10 seconds")


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """
    Cancel every task a test left behind so that a failing test cannot hang
    the ones after it.
    """
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                print(f"Unexpected error during task cleanup: {e}")


@pytest.fixture
def temp_dir(tmp_path: Path) -> Generator[Path, None, None]:
    """Per-test temporary directory."""
    yield tmp_path


@pytest.fixture
def sqlite_path(temp_dir: Path) -> Path:
    return temp_dir / "predator-cache.sqlite"


@pytest.fixture
def test_config() -> Config:
    """Default configuration without logging sinks or caching."""
    return Config()


# ============================================================================
# Local HTTP server
# ============================================================================

SAMPLE_HTML = """<!DOCTYPE html>
<html>
<head><title>Catalogue</title></head>
<body>
  <ul id="items">
    <li class="item" data-id="1"><a href="/a">Alpha</a></li>
    <li class="item" data-id="2"><a href="/b">Beta</a></li>
    <li class="item" data-id="3"><a href="/c">Gamma</a></li>
  </ul>
  <table id="prices">
    <tr><th>Name</th><th>Price</th></tr>
    <tr><td>Alpha</td><td>1.50</td></tr>
    <tr><td>Beta</td><td>2.00</td></tr>
  </table>
</body>
</html>
"""


def build_app() -> web.Application:
    """aiohttp application exposing the routes the integration tests use."""
    hits = defaultdict(int)

    async def index(request: web.Request) -> web.Response:
        hits["index"] += 1
        return web.Response(text="hello world\n")

    async def login(request: web.Request) -> web.Response:
        form = await request.post()
        return web.Response(text=str(form.get("name", "")), content_type="text/html")

    async def check_cookie(request: web.Request) -> web.Response:
        cookie = request.headers.get("Cookie", "")
        status = 200 if "session=valid" in cookie else 403
        return web.Response(status=status, text=cookie)

    async def user_agent(request: web.Request) -> web.Response:
        return web.Response(text=request.headers.get("User-Agent", ""))

    async def redirect(request: web.Request) -> web.Response:
        raise web.HTTPMovedPermanently(location="/")

    async def found(request: web.Request) -> web.Response:
        raise web.HTTPFound(location="/")

    async def html(request: web.Request) -> web.Response:
        return web.Response(text=SAMPLE_HTML, content_type="text/html")

    async def json_route(request: web.Request) -> web.Response:
        return web.json_response({"name": "prowl", "tags": ["a", "b"], "stats": {"count": 3, "ok": True}})

    async def echo(request: web.Request) -> web.Response:
        body = await request.read()
        return web.Response(body=body, content_type=request.content_type or "application/octet-stream")

    async def counted(request: web.Request) -> web.Response:
        hits["counted"] += 1
        return web.Response(text=str(hits["counted"]))

    async def flaky(request: web.Request) -> web.Response:
        hits["flaky"] += 1
        failures = int(request.query.get("failures", "2"))
        if hits["flaky"] <= failures:
            return web.Response(status=503, text="unavailable")
        return web.Response(text="recovered")

    async def status(request: web.Request) -> web.Response:
        return web.Response(status=int(request.match_info["code"]), text="status")

    async def slow(request: web.Request) -> web.Response:
        hits["slow"] += 1
        await asyncio.sleep(float(request.query.get("delay", "1")))
        return web.Response(text="slow")

    async def hit_count(request: web.Request) -> web.Response:
        return web.Response(text=json.dumps(dict(hits)), content_type="application/json")

    app = web.Application()
    app["hits"] = hits
    app.router.add_get("/", index)
    app.router.add_post("/login", login)
    app.router.add_get("/check_cookie", check_cookie)
    app.router.add_get("/user_agent", user_agent)
    app.router.add_get("/redirect", redirect)
    app.router.add_get("/found", found)
    app.router.add_get("/html", html)
    app.router.add_get("/json", json_route)
    app.router.add_post("/echo", echo)
    app.router.add_get("/counted", counted)
    app.router.add_post("/counted", counted)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/status/{code}", status)
    app.router.add_get("/slow", slow)
    app.router.add_get("/hits", hit_count)
    return app


@pytest_asyncio.fixture
async def http_server() -> AsyncGenerator[TestServer, None]:
    """A running local HTTP server; build URLs with ``server.make_url(path)``."""
    server = TestServer(build_app())
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()


@pytest.fixture
def server_url(http_server: TestServer):
    def make(path: str = "/") -> str:
        return str(http_server.make_url(path))

    return make


# ============================================================================
# Stub Proxy
# ============================================================================


class RejectingProxy:
    """A TCP listener that answers every proxy request with 407."""

    def __init__(self) -> None:
        self.heads: list = []
        self._server: asyncio.AbstractServer = None

    @property
    def url(self) -> str:
        host, port = self._server.sockets[0].getsockname()[:2]
        return f"http://{host}:{port}"

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            head = await reader.readuntil(b"\r\n\r\n")
            self.heads.append(head.decode("latin-1"))
            writer.write(
                b"HTTP/1.1 407 Proxy Authentication Required\r\n"
                b'Proxy-Authenticate: Basic realm="stub"\r\n'
                b"Content-Length: 0\r\n"
                b"Connection: close\r\n\r\n"
            )
            await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            writer.close()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)

    async def close(self) -> None:
        self._server.close()
        await self._server.wait_closed()


@pytest_asyncio.fixture
async def rejecting_proxy() -> AsyncGenerator[RejectingProxy, None]:
    proxy = RejectingProxy()
    await proxy.start()
    try:
        yield proxy
    finally:
        await proxy.close()
