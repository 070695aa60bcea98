from __future__ import annotations

import logging
import random
import threading
import time
from typing import Any, Callable, Mapping
from urllib.parse import urlparse

import requests

from engine.models import FetchRequest
from network.proxy_pool import ProxyPool

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
)

BASE_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Upgrade-Insecure-Requests": "1",
}

SOURCE_SITE_HEADERS = {
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "same-origin",
    "Sec-Fetch-User": "?1",
}


class FetchError(RuntimeError):
    """Raised once every attempt for a URL has failed. Means unavailable, not absent."""

    def __init__(self, url: str, message: str) -> None:
        super().__init__(f"{url}: {message}")
        self.url = url
        self.message = message


def _host(url: str | None) -> str:
    host = (urlparse(url or "").hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def build_request_headers(
    url: str,
    *,
    referer: str | None = None,
    extra: Mapping[str, str] | None = None,
    site_host: str | None = None,
    site_origin: str | None = None,
    home_url: str | None = None,
    cookies: str | None = None,
    rng: random.Random | None = None,
) -> dict[str, str]:
    """Browser-like headers; requests to the source site also carry referer, origin and cookies."""
    chooser = rng or random
    headers = {"User-Agent": chooser.choice(USER_AGENTS), **BASE_HEADERS}
    if referer:
        headers["Referer"] = referer
    if extra:
        headers.update(extra)

    if site_host and _host(url) == site_host:
        headers.setdefault("Referer", home_url or site_origin or url)
        if site_origin:
            headers.setdefault("Origin", site_origin)
        for key, value in SOURCE_SITE_HEADERS.items():
            headers.setdefault(key, value)
        if cookies:
            headers["Cookie"] = cookies
    return headers


def _is_connection_failure(exc: requests.RequestException) -> bool:
    return isinstance(exc, (requests.ConnectionError, requests.Timeout))


class Fetcher:
    """Fetches pages through the proxy pool with linear backoff between attempts."""

    def __init__(
        self,
        *,
        proxy_pool: ProxyPool | None = None,
        session: requests.Session | None = None,
        timeout: float = 30.0,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        min_interval_seconds: float = 0.0,
        site_host: str | None = None,
        site_origin: str | None = None,
        home_url: str | None = None,
        cookies: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.proxy_pool = proxy_pool
        self._session = session or requests.Session()
        self.timeout = timeout
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_seconds = max(0.0, backoff_seconds)
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self.site_host = site_host
        self.site_origin = site_origin
        self.home_url = home_url
        self.cookies = cookies
        self._sleep = sleep
        self._rate_lock = threading.Lock()
        self._last_request_ts = 0.0

    @classmethod
    def from_settings(cls, settings, proxy_pool: ProxyPool | None = None) -> "Fetcher":
        return cls(
            proxy_pool=proxy_pool,
            timeout=settings.request_timeout,
            max_attempts=settings.fetch_max_attempts,
            backoff_seconds=settings.fetch_backoff_seconds,
            min_interval_seconds=settings.request_min_interval,
            site_host=settings.site_host,
            site_origin=settings.site_origin,
            home_url=settings.home_url,
            cookies=settings.cookies,
        )

    def _sleep_for_rate_limit(self) -> None:
        if self.min_interval_seconds <= 0:
            return
        with self._rate_lock:
            elapsed = time.monotonic() - self._last_request_ts
            wait_for = self.min_interval_seconds - elapsed
            if wait_for > 0:
                self._sleep(wait_for)
            self._last_request_ts = time.monotonic()

    def build_request(
        self,
        url: str,
        *,
        referer: str | None = None,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> FetchRequest:
        return FetchRequest(
            url=url,
            referer=referer,
            timeout=self.timeout if timeout is None else timeout,
            headers=build_request_headers(
                url,
                referer=referer,
                extra=headers,
                site_host=self.site_host,
                site_origin=self.site_origin,
                home_url=self.home_url,
                cookies=self.cookies,
            ),
        )

    def _request(self, method: str, request: FetchRequest, proxies: dict[str, str] | None, data: Any = None):
        self._sleep_for_rate_limit()
        return self._session.request(
            method,
            request.url,
            headers=request.headers,
            data=data,
            proxies=proxies,
            timeout=request.timeout,
            allow_redirects=True,
        )

    def _with_retry(
        self,
        method: str,
        url: str,
        max_attempts: int | None,
        *,
        referer: str | None,
        timeout: float | None,
        headers: Mapping[str, str] | None,
        data: Any = None,
    ) -> requests.Response:
        attempts = max(1, int(max_attempts or self.max_attempts))
        last_message = "no attempts made"
        for attempt in range(1, attempts + 1):
            proxy = self.proxy_pool.next() if self.proxy_pool else None
            proxies = self.proxy_pool.agent_for(proxy) if self.proxy_pool else None
            request = self.build_request(url, referer=referer, timeout=timeout, headers=headers)
            try:
                response = self._request(method, request, proxies, data=data)
            except requests.RequestException as exc:
                last_message = str(exc) or exc.__class__.__name__
                if proxy is not None and _is_connection_failure(exc):
                    self.proxy_pool.mark_failed(proxy)
                logger.warning(
                    "[FETCH] attempt %d/%d failed url=%s proxy=%s error=%s",
                    attempt,
                    attempts,
                    url,
                    proxy or "direct",
                    last_message,
                )
            else:
                if 200 <= response.status_code < 400:
                    return response
                last_message = f"HTTP {response.status_code}"
                logger.warning(
                    "[FETCH] attempt %d/%d status=%s url=%s", attempt, attempts, response.status_code, url
                )
            if attempt < attempts:
                self._sleep(self.backoff_seconds * attempt)
        raise FetchError(url, last_message)

    def fetch_with_retry(
        self,
        url: str,
        max_attempts: int | None = None,
        *,
        referer: str | None = None,
        timeout: float | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        response = self._with_retry(
            "GET", url, max_attempts, referer=referer, timeout=timeout, headers=headers
        )
        return response.text

    def post_form(
        self,
        url: str,
        data: Mapping[str, Any],
        *,
        referer: str | None = None,
        headers: Mapping[str, str] | None = None,
        max_attempts: int | None = None,
    ) -> str:
        merged = {
            "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
            "X-Requested-With": "XMLHttpRequest",
            "Accept": "*/*",
        }
        merged.update(headers or {})
        response = self._with_retry(
            "POST",
            url,
            max_attempts,
            referer=referer,
            timeout=None,
            headers=merged,
            data=dict(data),
        )
        return response.text
