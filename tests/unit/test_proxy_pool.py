"""
Tests for the self-healing proxy pool.
"""

import pytest

from prowlcore.errors import EmptyProxyPool, InvalidProxy, UnknownProtocol
from prowlcore.observability import METRICS
from prowlcore.proxy import ProxyPool, proxy_scheme
from tests.helpers import metric_delta

PROXIES = ["http://10.0.0.1:8080", "http://user:pw@10.0.0.2:8080", "socks5://10.0.0.3:1080"]


@pytest.mark.unit
class TestProxyScheme:
    def test_supported(self):
        assert proxy_scheme("HTTP://h:1") == "http"
        assert proxy_scheme("https://h:1") == "https"
        assert proxy_scheme("socks5://h:1") == "socks5"

    def test_unknown(self):
        with pytest.raises(UnknownProtocol):
            proxy_scheme("ftp://h:21")
        with pytest.raises(UnknownProtocol):
            proxy_scheme("h:21")


@pytest.mark.unit
class TestProxyPool:
    def test_construction_validates(self):
        with pytest.raises(InvalidProxy):
            ProxyPool(["http://no-port"])
        with pytest.raises(UnknownProtocol):
            ProxyPool(["socks4://h:1"])

    @pytest.mark.asyncio
    async def test_select_returns_member(self):
        pool = ProxyPool(PROXIES)
        for _ in range(20):
            assert await pool.select() in PROXIES

    @pytest.mark.asyncio
    async def test_select_on_empty_pool(self):
        with pytest.raises(EmptyProxyPool):
            await ProxyPool().select()

    @pytest.mark.asyncio
    async def test_select_replenishes_empty_pool(self):
        pool = ProxyPool(replenisher=lambda: ["http://10.1.1.1:3128"])
        assert await pool.select() == "http://10.1.1.1:3128"
        assert pool.size() == 1

    @pytest.mark.asyncio
    async def test_remove_matches_host_port(self):
        pool = ProxyPool(PROXIES)
        with metric_delta(METRICS["proxy_evictions"]):
            assert await pool.remove("10.0.0.2:8080") is True
        assert pool.snapshot() == [PROXIES[0], PROXIES[2]]

    @pytest.mark.asyncio
    async def test_remove_twice_is_harmless(self):
        pool = ProxyPool(PROXIES)
        assert await pool.remove(PROXIES[0]) is True
        assert await pool.remove(PROXIES[0]) is False
        assert len(pool) == 2

    @pytest.mark.asyncio
    async def test_removed_proxy_never_selected(self):
        pool = ProxyPool(PROXIES)
        await pool.remove(PROXIES[1])
        for _ in range(30):
            assert await pool.select() != PROXIES[1]

    @pytest.mark.asyncio
    async def test_last_removal_replenishes(self):
        calls = []

        async def replenish():
            calls.append(1)
            return ["http://10.9.9.9:80"]

        pool = ProxyPool(["http://10.0.0.1:8080"], replenisher=replenish)
        assert await pool.remove("http://10.0.0.1:8080") is True
        assert pool.snapshot() == ["http://10.9.9.9:80"]
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_last_removal_without_replacement(self):
        pool = ProxyPool(["http://10.0.0.1:8080"], replenisher=lambda: [])
        with pytest.raises(EmptyProxyPool) as excinfo:
            await pool.remove("http://10.0.0.1:8080")
        assert excinfo.value.proxy == "10.0.0.1:8080"
        assert pool.size() == 0

    def test_add(self):
        pool = ProxyPool()
        pool.add("https://h.example:443")
        assert pool.snapshot() == ["https://h.example:443"]
        with pytest.raises(InvalidProxy):
            pool.add("https://h.example")
