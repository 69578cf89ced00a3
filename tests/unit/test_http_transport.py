"""
Unit tests for the direct HTTP transport
"""
import asyncio
import random

import httpx

from conftest import RecordingSleep
from shelfscan.adapters.http_transport import (
    FetchOutcome,
    HeaderProfile,
    HttpTransport,
    backoff_delays,
    build_headers,
)
from shelfscan.context import RunContext

URL = "https://www.instacart.com/store/safeway/categories/316-food"
STATE_PAGE = '<html><script id="node-apollo-state">{}</script></html>'


def make_transport(handler, context=None, max_retries=3):
    sleep = RecordingSleep()
    transport = HttpTransport(
        context or RunContext(),
        max_retries=max_retries,
        backoff_base=1.0,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    return transport, sleep


def statuses(*codes, body="<html></html>"):
    """Handler returning the given statuses in order, repeating the last one."""
    seen = []

    def handler(request):
        code = codes[min(len(seen), len(codes) - 1)]
        seen.append(code)
        return httpx.Response(code, text=body)

    handler.seen = seen
    return handler


class TestStatusClassification:
    """Test suite for response outcome classification"""

    def test_200_is_success(self):
        transport, sleep = make_transport(statuses(200, body=STATE_PAGE))
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.SUCCESS
        assert result.body == STATE_PAGE
        assert result.attempts == 1
        assert sleep.delays == []

    def test_202_with_marker_is_success(self):
        transport, sleep = make_transport(statuses(202, body=STATE_PAGE))
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.SUCCESS
        assert sleep.delays == []

    def test_202_without_marker_degrades_to_best_effort(self):
        handler = statuses(202)
        transport, sleep = make_transport(handler)
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.BEST_EFFORT
        assert result.body == "<html></html>"
        assert len(handler.seen) == 4

    def test_transient_then_success(self):
        transport, sleep = make_transport(statuses(503, 200))
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.SUCCESS
        assert result.attempts == 2
        assert sleep.delays == [1.0]

    def test_retry_schedule_is_exponential(self):
        transport, sleep = make_transport(statuses(429))
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.BEST_EFFORT
        assert result.status_code == 429
        assert result.attempts == 4
        assert sleep.delays == [1.0, 2.0, 4.0]

    def test_forbidden_is_retried(self):
        handler = statuses(403, 403, 200)
        transport, _ = make_transport(handler)
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.SUCCESS
        assert handler.seen == [403, 403, 200]

    def test_other_status_fails_immediately(self):
        handler = statuses(404)
        transport, sleep = make_transport(handler)
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.FAILURE
        assert result.status_code == 404
        assert handler.seen == [404]
        assert sleep.delays == []


class TestNetworkErrors:
    """Test suite for connection-level failures"""

    def test_connect_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        transport, sleep = make_transport(handler)
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.FAILURE
        assert result.status_code is None
        assert sleep.delays == []

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("too slow", request=request)

        transport, _ = make_transport(handler)
        result = asyncio.run(transport.fetch_page(URL))
        assert result.outcome == FetchOutcome.FAILURE
        assert result.message == "timeout"


class TestCookies:
    """Test suite for the run-scoped cookie jar"""

    def test_cookies_persist_across_requests(self):
        seen_cookies = []

        def handler(request):
            seen_cookies.append(request.headers.get("cookie"))
            return httpx.Response(200, text=STATE_PAGE, headers={"set-cookie": "session=abc; Path=/"})

        context = RunContext()
        transport, _ = make_transport(handler, context=context)
        asyncio.run(transport.fetch_page(URL))
        asyncio.run(transport.fetch_page(URL))

        assert context.cookies.get("session") == "abc"
        assert seen_cookies[0] is None
        assert "session=abc" in seen_cookies[1]

    def test_cookie_overwritten_by_key(self):
        values = iter(["one", "two"])

        def handler(request):
            return httpx.Response(200, text=STATE_PAGE, headers={"set-cookie": f"token={next(values)}; Path=/"})

        context = RunContext()
        transport, _ = make_transport(handler, context=context)
        asyncio.run(transport.fetch_page(URL))
        asyncio.run(transport.fetch_page(URL))
        assert context.cookies.get("token") == "two"


class TestHeaders:
    """Test suite for navigation header generation"""

    def test_chrome_profile_has_client_hints(self):
        chrome = "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        headers = build_headers(HeaderProfile(user_agents=[chrome]), random.Random(1))
        assert headers["User-Agent"] == chrome
        assert '"Chromium";v="120"' in headers["sec-ch-ua"]
        assert headers["sec-ch-ua-platform"] == '"macOS"'
        assert headers["Sec-Fetch-Mode"] == "navigate"

    def test_firefox_profile_has_no_client_hints(self):
        firefox = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0"
        headers = build_headers(HeaderProfile(user_agents=[firefox]))
        assert "sec-ch-ua" not in headers

    def test_referer_override(self):
        profile = HeaderProfile(referer="https://www.instacart.com/store/safeway")
        assert build_headers(profile)["Referer"] == "https://www.instacart.com/store/safeway"


def test_backoff_delays():
    assert backoff_delays(3, 1.0) == [1.0, 2.0, 4.0]
    assert backoff_delays(0, 1.0) == []
    assert backoff_delays(2, 0.5) == [0.5, 1.0]
