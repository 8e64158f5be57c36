"""
Tests for the relay-chain fetcher.
"""
from urllib.parse import quote

import httpx
import pytest
import respx

from streamhub.models.catalog import ProxyConfig, ProxyMode
from streamhub.services.errors import FetchExhausted
from streamhub.services.proxy_fetcher import ProxyAttemptError, ProxyFetcher

TARGET = "https://cms.example.com/api.php/provide/vod/?ac=detail&wd=test"
DOUBAN = "https://movie.douban.com/j/search_subjects?type=movie&tag=hot"


def _relay_one(target: str) -> str:
    return "https://relay-one.test/raw?url=" + quote(target, safe="")


class TestBuildRelayUrl:

    def test_query_mode_encodes_target(self):
        fetcher = ProxyFetcher(proxies=[])
        proxy = ProxyConfig(prefix="https://p.test/?url=", mode=ProxyMode.QUERY)
        assert fetcher.build_relay_url(proxy, "https://a/b?c=1&d=2") == (
            "https://p.test/?url=https%3A%2F%2Fa%2Fb%3Fc%3D1%26d%3D2"
        )

    def test_append_mode_keeps_target(self):
        fetcher = ProxyFetcher(proxies=[])
        proxy = ProxyConfig(prefix="https://p.test/?", mode=ProxyMode.APPEND)
        assert fetcher.build_relay_url(proxy, "https://a/b?c=1") == "https://p.test/?https://a/b?c=1"

    def test_direct(self):
        fetcher = ProxyFetcher(proxies=[])
        assert fetcher.build_relay_url(ProxyConfig(prefix="", mode=ProxyMode.APPEND), TARGET) == TARGET

    def test_relative_prefix_needs_public_base_url(self):
        proxy = ProxyConfig(prefix="/api/proxy?url=", mode=ProxyMode.QUERY)
        assert ProxyFetcher(proxies=[]).build_relay_url(proxy, TARGET) is None

        fetcher = ProxyFetcher(proxies=[], public_base_url="https://hub.test/")
        assert fetcher.build_relay_url(proxy, TARGET) == "https://hub.test/api/proxy?url=" + quote(TARGET, safe="")


class TestValidateBody:

    def test_empty_body_rejected(self):
        with pytest.raises(ProxyAttemptError):
            ProxyFetcher.validate_body("  \n ", TARGET)

    def test_html_rejected_for_non_catalog_targets(self):
        with pytest.raises(ProxyAttemptError):
            ProxyFetcher.validate_body("<!DOCTYPE html><html></html>", DOUBAN)
        with pytest.raises(ProxyAttemptError):
            ProxyFetcher.validate_body("  <HTML><body>blocked</body></HTML>", DOUBAN)

    def test_html_allowed_for_catalog_actions(self):
        ProxyFetcher.validate_body("<html>odd but allowed</html>", TARGET)
        ProxyFetcher.validate_body("<html></html>", "https://cms.example.com/api.php?ac=list")

    def test_xml_accepted(self):
        ProxyFetcher.validate_body("<?xml version='1.0'?><rss/>", DOUBAN)

    def test_bom_does_not_hide_html(self):
        with pytest.raises(ProxyAttemptError):
            ProxyFetcher.validate_body("\ufeff<!doctype html><p>captcha</p>", DOUBAN)

    def test_bom_only_body_rejected(self):
        with pytest.raises(ProxyAttemptError):
            ProxyFetcher.validate_body("\ufeff\n", TARGET)


class TestFetch:

    @respx.mock
    @pytest.mark.asyncio
    async def test_third_strategy_wins(self, relay_chain):
        direct = respx.get(TARGET).respond(503)
        first = respx.get(host="relay-one.test").respond(200, text="   ")
        second = respx.get(host="relay-two.test").respond(200, text='{"list": []}')

        fetcher = ProxyFetcher(proxies=relay_chain, timeout=5.0)
        body = await fetcher.fetch(TARGET)

        assert body == '{"list": []}'
        assert direct.call_count == 1
        assert first.call_count == 1
        assert second.call_count == 1
        assert str(first.calls.last.request.url) == _relay_one(TARGET)
        assert second.calls.last.request.url.query.startswith(b"https://cms.example.com")

    @pytest.mark.asyncio
    async def test_first_success_stops_chain(self, relay_chain):
        with respx.mock(assert_all_called=False) as router:
            router.get(TARGET).respond(200, text="ok")
            later = router.get(host="relay-one.test").respond(200, text="never")

            assert await ProxyFetcher(proxies=relay_chain, timeout=5.0).fetch(TARGET) == "ok"
            assert not later.called

    @respx.mock
    @pytest.mark.asyncio
    async def test_all_fail_raises_with_last_error(self, relay_chain):
        respx.get(DOUBAN).mock(side_effect=httpx.ConnectError("refused"))
        respx.get(host="relay-one.test").respond(500)
        respx.get(host="relay-two.test").respond(200, text="<!doctype html><p>captcha</p>")

        fetcher = ProxyFetcher(proxies=relay_chain, timeout=5.0)
        with pytest.raises(FetchExhausted) as exc_info:
            await fetcher.fetch(DOUBAN)

        error = exc_info.value
        assert error.url == DOUBAN
        assert len(error.errors) == 3
        assert isinstance(error.errors[0], httpx.ConnectError)
        assert isinstance(error.errors[1], httpx.HTTPStatusError)
        assert isinstance(error.last_error, ProxyAttemptError)
        assert error.__cause__ is error.last_error

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout_moves_on(self, relay_chain):
        respx.get(TARGET).mock(side_effect=httpx.ReadTimeout("timed out"))
        respx.get(host="relay-one.test").respond(200, text="fast")

        fetcher = ProxyFetcher(proxies=relay_chain, timeout=5.0)
        assert await fetcher.fetch(TARGET) == "fast"

    @pytest.mark.asyncio
    async def test_relative_url_rejected(self, relay_chain):
        with pytest.raises(ValueError):
            await ProxyFetcher(proxies=relay_chain).fetch("/api.php?ac=list")

    @pytest.mark.asyncio
    async def test_no_usable_strategy(self):
        relative_only = [ProxyConfig(prefix="/api/proxy?url=", mode=ProxyMode.QUERY)]
        with pytest.raises(FetchExhausted):
            await ProxyFetcher(proxies=relative_only).fetch(TARGET)
