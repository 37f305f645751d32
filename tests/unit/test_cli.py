"""
Tests for the command-line interface.
"""

import logging
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from prowlcore import __version__
from prowlcore.cli import _parse_headers, cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_log_handlers():
    """The CLI installs console handlers bound to the runner's captured stream."""
    yield
    root = logging.getLogger("prowlcore")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()


@pytest.mark.unit
class TestCli:
    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_parse_headers(self):
        assert _parse_headers(("Accept: text/html", "X-A:1")) == {"Accept": "text/html", "X-A": "1"}

    def test_bad_header_rejected(self, runner):
        result = runner.invoke(cli, ["get", "http://x.test/", "-H", "no-colon"])
        assert result.exit_code != 0
        assert "Name: value" in result.output

    def test_cache_clear_memory(self, runner):
        result = runner.invoke(cli, ["cache", "clear", "--backend", "memory"])
        assert result.exit_code == 0, result.output
        assert "Cache cleared" in result.output

    def test_cache_clear_sqlite(self, runner, tmp_path):
        path = tmp_path / "c.sqlite"
        result = runner.invoke(cli, ["cache", "clear", "--backend", "sqlite", "--path", str(path)])
        assert result.exit_code == 0, result.output
        assert path.exists()

    def test_cache_clear_without_cache(self, runner, monkeypatch):
        monkeypatch.delenv("PROWL_CACHE__BACKEND", raising=False)
        result = runner.invoke(cli, ["cache", "clear"])
        assert result.exit_code == 1
        assert "no cache configured" in result.output

    def test_get_dispatches_request(self, runner):
        with patch("prowlcore.cli.Crawler.get") as get:
            result = runner.invoke(cli, ["get", "http://x.test/", "-H", "X-A: 1", "--retry", "2"])
        assert result.exit_code == 0, result.output
        get.assert_awaited_once_with("http://x.test/", {"X-A": "1"})
