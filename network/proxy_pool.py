"""Round-robin egress proxy pool with soft-failure tombstones."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable
from urllib.parse import quote, unquote, urlparse

import requests

logger = logging.getLogger(__name__)

PROXY_TEST_TIMEOUT_SECONDS = 5
PROXY_TEST_PAUSE_SECONDS = 0.2
PUBLIC_SOURCE_TIMEOUT_SECONDS = 10
PUBLIC_SOURCE_TAKE = 20


@dataclass(frozen=True)
class ProxyEntry:
    scheme: str
    host: str
    port: int
    username: str | None = None
    password: str | None = None

    @property
    def url(self) -> str:
        if self.username:
            user = quote(self.username, safe="")
            password = quote(self.password or "", safe="")
            return f"{self.scheme}://{user}:{password}@{self.host}:{self.port}"
        return f"{self.scheme}://{self.host}:{self.port}"

    def __str__(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"


def parse_proxy_entries(raw: str | None) -> list[str]:
    return [part.strip() for part in (raw or "").replace("\n", ",").split(",") if part.strip()]


def normalize_proxy_entry(raw: str | None) -> ProxyEntry | None:
    """Parse ``scheme://[user:pass@]host:port``, ``host:port`` or ``host:port:user:pass``."""
    text = (raw or "").strip()
    if not text:
        return None

    if "://" in text:
        parsed = urlparse(text)
        if parsed.scheme.lower() not in {"http", "https"} or not parsed.hostname:
            return None
        try:
            port = parsed.port
        except ValueError:
            return None
        if port is None:
            return None
        return ProxyEntry(
            scheme=parsed.scheme.lower(),
            host=parsed.hostname,
            port=port,
            username=unquote(parsed.username) if parsed.username else None,
            password=unquote(parsed.password) if parsed.password else None,
        )

    parts = [part.strip() for part in text.split(":") if part.strip()]
    if len(parts) < 2 or len(parts) == 3:
        return None
    host, port_text = parts[0], parts[1]
    if not port_text.isdigit():
        return None
    if len(parts) >= 4:
        return ProxyEntry("http", host, int(port_text), username=parts[2], password=parts[3])
    return ProxyEntry("http", host, int(port_text))


def load_proxy_file_entries(path: str | None) -> list[str]:
    if not path or not os.path.exists(path):
        return []
    try:
        with open(path, "r", encoding="utf-8") as handle:
            return parse_proxy_entries(handle.read())
    except OSError as exc:
        logger.warning("[PROXY] Failed to read proxy file %s: %s", path, exc)
        return []


class ProxyPool:
    """Hands out proxies round-robin, skipping tombstoned entries.

    When every entry is tombstoned the tombstones are cleared and the first
    entry is returned, so rotation never stalls on a fully failed pool.
    """

    def __init__(
        self,
        *,
        inline_entries: Iterable[str] | None = None,
        proxy_file: str | None = None,
        use_proxy: bool | None = None,
        validate: bool = True,
        test_url: str = "https://ipv4.webshare.io/",
        max_tests: int = 15,
        public_sources: Iterable[str] = (),
        session: requests.Session | None = None,
    ) -> None:
        custom = list(inline_entries or [])
        if not custom:
            custom = load_proxy_file_entries(proxy_file)
        self._raw_entries = custom
        if use_proxy is None:
            self.enabled = bool(custom)
        else:
            self.enabled = bool(use_proxy)
        self.validate = validate
        self.test_url = test_url
        self.max_tests = max(0, int(max_tests))
        self.public_sources = tuple(public_sources)
        self._session = session or requests.Session()
        self._lock = threading.Lock()
        self._entries: list[ProxyEntry] = []
        self._failed: set[ProxyEntry] = set()
        self._index = 0

    @classmethod
    def from_settings(cls, settings) -> "ProxyPool":
        return cls(
            inline_entries=parse_proxy_entries(settings.proxy_list),
            proxy_file=settings.proxy_file,
            use_proxy=settings.use_proxy,
            validate=settings.proxy_validate,
            test_url=settings.proxy_test_url,
            max_tests=settings.proxy_max_tests,
            public_sources=settings.proxy_public_sources,
        )

    @property
    def entries(self) -> list[ProxyEntry]:
        return list(self._entries)

    def initialize(self, *, sleep: Callable[[float], None] = time.sleep) -> None:
        if not self.enabled:
            logger.info("[PROXY] Proxy system disabled - using direct connection")
            return

        if self._raw_entries:
            entries = []
            for raw in self._raw_entries:
                entry = normalize_proxy_entry(raw)
                if entry is not None and entry not in entries:
                    entries.append(entry)
            if not entries:
                logger.warning("[PROXY] Custom proxies provided but none were valid, disabling proxy")
                self.enabled = False
                return
            self._entries = entries
            if self.validate:
                self._filter_working(sleep=sleep)
            logger.info("[PROXY] Loaded %d custom proxies", len(self._entries))
            return

        self._load_public_entries()

    def _load_public_entries(self) -> None:
        for source in self.public_sources:
            try:
                response = self._session.get(source, timeout=PUBLIC_SOURCE_TIMEOUT_SECONDS)
                response.raise_for_status()
            except requests.RequestException as exc:
                logger.warning("[PROXY] Failed to fetch public proxy source %s: %s", source, exc)
                continue
            entries = [
                entry
                for entry in (normalize_proxy_entry(line) for line in response.text.splitlines())
                if entry is not None
            ]
            if entries:
                self._entries = entries[:PUBLIC_SOURCE_TAKE]
                logger.info("[PROXY] Fetched %d proxies from %s", len(entries), source)
                break
        if not self._entries:
            logger.warning("[PROXY] No proxies found, disabling proxy")
            self.enabled = False

    def test_proxy(self, entry: ProxyEntry) -> bool:
        try:
            response = self._session.get(
                self.test_url,
                proxies=self.agent_for(entry),
                timeout=PROXY_TEST_TIMEOUT_SECONDS,
            )
        except requests.RequestException:
            return False
        return 200 <= response.status_code < 400

    def _filter_working(self, *, sleep: Callable[[float], None]) -> None:
        logger.info(
            "[PROXY] Testing up to %d proxy(ies) via %s",
            self.max_tests or len(self._entries),
            self.test_url,
        )
        kept: list[ProxyEntry] = []
        checked = 0
        for entry in self._entries:
            if self.max_tests and checked >= self.max_tests:
                kept.append(entry)
                continue
            checked += 1
            if self.test_proxy(entry):
                kept.append(entry)
            else:
                logger.warning("[PROXY] Proxy failed health check: %s", entry)
            sleep(PROXY_TEST_PAUSE_SECONDS)

        if not kept:
            logger.warning("[PROXY] All tested proxies failed. Keeping original list to avoid empty rotation.")
            return
        if len(kept) != len(self._entries):
            logger.info("[PROXY] %d/%d proxies passed health check", len(kept), len(self._entries))
        self._entries = kept

    def next(self) -> ProxyEntry | None:
        with self._lock:
            if not self.enabled or not self._entries:
                return None
            for _ in range(len(self._entries)):
                entry = self._entries[self._index]
                self._index = (self._index + 1) % len(self._entries)
                if entry not in self._failed:
                    return entry
            logger.warning("[PROXY] All proxies failed, resetting...")
            self._failed.clear()
            self._index = 1 % len(self._entries)
            return self._entries[0]

    def mark_failed(self, entry: ProxyEntry | None) -> None:
        if entry is None:
            return
        with self._lock:
            if entry in self._failed:
                return
            self._failed.add(entry)
        logger.warning("[PROXY] Marking proxy as failed: %s", entry)

    def agent_for(self, entry: ProxyEntry | None) -> dict[str, str] | None:
        if entry is None:
            return None
        return {"http": entry.url, "https": entry.url}

    def stats(self) -> dict[str, object]:
        with self._lock:
            total = len(self._entries)
            failed = len(self._failed)
        return {
            "total": total,
            "failed": failed,
            "active": total - failed,
            "enabled": self.enabled,
        }
