from __future__ import annotations

import random

import pytest
import requests

from network.fetch import FetchError, Fetcher, build_request_headers
from network.proxy_pool import ProxyPool


class _MockResponse:
    def __init__(self, status_code: int, text: str = "") -> None:
        self.status_code = status_code
        self.text = text


class _ScriptedSession:
    """Returns (or raises) the scripted outcomes in order."""

    def __init__(self, outcomes: list) -> None:
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _proxy_pool(*raw: str) -> ProxyPool:
    pool = ProxyPool(inline_entries=list(raw), validate=False)
    pool.initialize(sleep=lambda _s: None)
    return pool


def test_fetch_returns_body_on_success() -> None:
    session = _ScriptedSession([_MockResponse(200, "<html>ok</html>")])
    fetcher = Fetcher(session=session, sleep=lambda _s: None)

    assert fetcher.fetch_with_retry("https://example.test/page") == "<html>ok</html>"
    assert session.calls[0]["allow_redirects"] is True
    assert session.calls[0]["proxies"] is None


def test_fetch_retries_with_linear_backoff_then_succeeds() -> None:
    sleeps: list[float] = []
    session = _ScriptedSession(
        [
            _MockResponse(503),
            requests.Timeout("read timed out"),
            _MockResponse(200, "third time"),
        ]
    )
    fetcher = Fetcher(session=session, backoff_seconds=0.5, sleep=sleeps.append)

    assert fetcher.fetch_with_retry("https://example.test/page") == "third time"
    assert sleeps == [0.5, 1.0]


def test_fetch_raises_after_exhausting_attempts_without_final_sleep() -> None:
    sleeps: list[float] = []
    session = _ScriptedSession([_MockResponse(500), _MockResponse(502)])
    fetcher = Fetcher(session=session, max_attempts=2, sleep=sleeps.append)

    with pytest.raises(FetchError) as excinfo:
        fetcher.fetch_with_retry("https://example.test/page")

    assert excinfo.value.url == "https://example.test/page"
    assert excinfo.value.message == "HTTP 502"
    assert sleeps == [0.5]


def test_explicit_max_attempts_overrides_default() -> None:
    session = _ScriptedSession([_MockResponse(404)])
    fetcher = Fetcher(session=session, max_attempts=5, sleep=lambda _s: None)

    with pytest.raises(FetchError):
        fetcher.fetch_with_retry("https://example.test/missing", 1)
    assert len(session.calls) == 1


def test_connection_failure_tombstones_proxy_and_next_attempt_rotates() -> None:
    pool = _proxy_pool("a:1", "b:2")
    session = _ScriptedSession([requests.ConnectionError("refused"), _MockResponse(200, "via b")])
    fetcher = Fetcher(proxy_pool=pool, session=session, sleep=lambda _s: None)

    assert fetcher.fetch_with_retry("https://example.test/") == "via b"
    assert session.calls[0]["proxies"] == {"http": "http://a:1", "https": "http://a:1"}
    assert session.calls[1]["proxies"] == {"http": "http://b:2", "https": "http://b:2"}
    assert pool.stats()["failed"] == 1


def test_http_error_status_does_not_tombstone_proxy() -> None:
    pool = _proxy_pool("a:1")
    session = _ScriptedSession([_MockResponse(403), _MockResponse(200, "ok")])
    fetcher = Fetcher(proxy_pool=pool, session=session, sleep=lambda _s: None)

    fetcher.fetch_with_retry("https://example.test/")
    assert pool.stats()["failed"] == 0


def test_post_form_sends_ajax_headers_and_data() -> None:
    session = _ScriptedSession([_MockResponse(200, "<li>fragment</li>")])
    fetcher = Fetcher(session=session, sleep=lambda _s: None)

    body = fetcher.post_form("https://site.test/wp-admin/admin-ajax.php", {"action": "x", "post": "7"})

    call = session.calls[0]
    assert body == "<li>fragment</li>"
    assert call["method"] == "POST"
    assert call["data"] == {"action": "x", "post": "7"}
    assert call["headers"]["X-Requested-With"] == "XMLHttpRequest"
    assert call["headers"]["Content-Type"].startswith("application/x-www-form-urlencoded")


def test_source_site_requests_get_referer_origin_and_cookies() -> None:
    headers = build_request_headers(
        "https://www.site.test/series/show/",
        site_host="site.test",
        site_origin="https://site.test",
        home_url="https://site.test/home/",
        cookies="cf_clearance=abc",
        rng=random.Random(1),
    )

    assert headers["Referer"] == "https://site.test/home/"
    assert headers["Origin"] == "https://site.test"
    assert headers["Cookie"] == "cf_clearance=abc"
    assert headers["Sec-Fetch-Mode"] == "navigate"


def test_explicit_referer_wins_and_foreign_hosts_get_no_site_headers() -> None:
    headers = build_request_headers(
        "https://player.test/embed/1",
        referer="https://site.test/episode/show-1x1/",
        site_host="site.test",
        site_origin="https://site.test",
        cookies="secret",
    )

    assert headers["Referer"] == "https://site.test/episode/show-1x1/"
    assert "Origin" not in headers
    assert "Cookie" not in headers
    assert headers["User-Agent"]


def test_rate_limiter_spaces_requests(monkeypatch) -> None:
    sleeps: list[float] = []
    ticks = iter([100.0, 100.0, 100.2, 100.2])

    class _FakeClock:
        @staticmethod
        def monotonic() -> float:
            return next(ticks)

    monkeypatch.setattr("network.fetch.time", _FakeClock)
    session = _ScriptedSession([_MockResponse(200, "a"), _MockResponse(200, "b")])
    fetcher = Fetcher(session=session, min_interval_seconds=1.0, sleep=sleeps.append)
    fetcher._last_request_ts = 99.5

    fetcher.fetch_with_retry("https://example.test/a")
    fetcher.fetch_with_retry("https://example.test/b")

    assert sleeps == pytest.approx([0.5, 0.8])
