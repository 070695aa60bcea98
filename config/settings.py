"""Runtime settings for the catalog sync engine."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent

DEFAULT_HOME_URL = "https://toonstream.one/home/"
DEFAULT_AJAX_URL = "https://toonstream.one/wp-admin/admin-ajax.php"
DEFAULT_PROXY_TEST_URL = "https://ipv4.webshare.io/"
DEFAULT_PUBLIC_PROXY_SOURCES = (
    "https://api.proxyscrape.com/v2/?request=get&protocol=http&timeout=10000&country=all&ssl=all&anonymity=all",
    "https://www.proxy-list.download/api/v1/get?type=http",
)
DEFAULT_ALIASES_FILE = PROJECT_ROOT / "config" / "aliases.json"

# Hours between scheduled re-resolutions, indexed by attempt count.
RETRY_INTERVALS_HOURS = (3, 5, 10)
MAX_RETRY_ATTEMPTS = len(RETRY_INTERVALS_HOURS)

REQUIRED_ENV = ("TMDB_API_KEY",)


class ConfigError(ValueError):
    """Raised when mandatory configuration is missing or malformed."""


@dataclass(frozen=True)
class SyncSettings:
    tmdb_api_key: str
    tvdb_api_key: str | None = None
    home_url: str = DEFAULT_HOME_URL
    home_fallbacks: tuple[str, ...] = ()
    ajax_url: str = DEFAULT_AJAX_URL
    cookies: str | None = None
    embed_max_depth: int = 3
    request_timeout: float = 30.0
    fetch_max_attempts: int = 3
    fetch_backoff_seconds: float = 0.5
    request_min_interval: float = 0.0
    poll_interval_seconds: int = 60
    latest_audit_limit: int = 25
    empty_servers_audit_limit: int = 50
    retry_batch_limit: int = 10
    db_path: str = "catalog.sqlite3"
    cache_dir: str = "bin"
    aliases_file: str | None = None
    use_proxy: bool | None = None
    proxy_list: str = ""
    proxy_file: str = "proxy.txt"
    proxy_validate: bool = True
    proxy_test_url: str = DEFAULT_PROXY_TEST_URL
    proxy_max_tests: int = 15
    proxy_public_sources: tuple[str, ...] = DEFAULT_PUBLIC_PROXY_SOURCES
    aliases: dict[str, Any] = field(default_factory=dict)

    @property
    def resolution_max_depth(self) -> int:
        return self.embed_max_depth + 2

    @property
    def site_host(self) -> str:
        host = (urlparse(self.home_url).hostname or "").lower()
        return host[4:] if host.startswith("www.") else host

    @property
    def site_origin(self) -> str:
        parsed = urlparse(self.home_url)
        if not parsed.scheme or not parsed.netloc:
            return self.home_url
        return f"{parsed.scheme}://{parsed.netloc}"

    @property
    def homepage_candidates(self) -> list[str]:
        base = self.home_url if self.home_url.endswith("/") else f"{self.home_url}/"
        ordered = [self.home_url, *self.home_fallbacks, f"{base}home/", f"{base}page/1/"]
        seen: set[str] = set()
        candidates = []
        for url in ordered:
            if url and url not in seen:
                seen.add(url)
                candidates.append(url)
        return candidates

    @property
    def series_cache_path(self) -> str:
        return os.path.join(self.cache_dir, "series_cache.json")

    @property
    def episode_cache_path(self) -> str:
        return os.path.join(self.cache_dir, "episode_cache.json")


def _split_list(raw: str | None) -> tuple[str, ...]:
    return tuple(part.strip() for part in (raw or "").replace("\n", ",").split(",") if part.strip())


def _parse_bool(raw: str | None) -> bool | None:
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    return None


def load_aliases(path: str | os.PathLike | None) -> dict[str, Any]:
    """Load the slug/title alias table; a missing file yields an empty table."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"alias table {path} is unreadable: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigError(f"alias table {path} must contain a JSON object")
    return payload


def load_settings(env: Mapping[str, str] | None = None) -> SyncSettings:
    """Build settings from environment variables, collecting every problem before failing."""
    source = os.environ if env is None else env
    errors: list[str] = []

    missing = [key for key in REQUIRED_ENV if not (source.get(key) or "").strip()]
    if missing:
        errors.append(f"missing environment variables: {', '.join(missing)}")

    def _int(key: str, default: int, minimum: int = 0) -> int:
        raw = source.get(key)
        if raw is None or not raw.strip():
            return default
        try:
            value = int(raw)
        except ValueError:
            errors.append(f"{key} must be an integer")
            return default
        if value < minimum:
            errors.append(f"{key} must be >= {minimum}")
            return default
        return value

    def _float(key: str, default: float) -> float:
        raw = source.get(key)
        if raw is None or not raw.strip():
            return default
        try:
            value = float(raw)
        except ValueError:
            errors.append(f"{key} must be a number")
            return default
        if value < 0:
            errors.append(f"{key} must be >= 0")
            return default
        return value

    home_url = (source.get("SOURCE_HOME_URL") or DEFAULT_HOME_URL).strip()
    if not urlparse(home_url).scheme:
        errors.append("SOURCE_HOME_URL must be an absolute URL")

    aliases_file = source.get("ALIASES_FILE") or (
        str(DEFAULT_ALIASES_FILE) if DEFAULT_ALIASES_FILE.exists() else None
    )
    try:
        aliases = load_aliases(aliases_file)
    except ConfigError as exc:
        errors.append(str(exc))
        aliases = {}

    public_sources = _split_list(source.get("PROXY_PUBLIC_SOURCES"))
    settings = SyncSettings(
        tmdb_api_key=(source.get("TMDB_API_KEY") or "").strip(),
        tvdb_api_key=(source.get("TVDB_API_KEY") or "").strip() or None,
        home_url=home_url,
        home_fallbacks=_split_list(source.get("SOURCE_HOME_FALLBACKS")),
        ajax_url=(source.get("SOURCE_AJAX_URL") or DEFAULT_AJAX_URL).strip(),
        cookies=(source.get("SOURCE_COOKIES") or "").strip() or None,
        embed_max_depth=_int("EMBED_MAX_DEPTH", 3),
        request_timeout=_float("REQUEST_TIMEOUT_SECONDS", 30.0),
        fetch_max_attempts=_int("FETCH_MAX_ATTEMPTS", 3, minimum=1),
        fetch_backoff_seconds=_float("FETCH_BACKOFF_SECONDS", 0.5),
        request_min_interval=_float("REQUEST_MIN_INTERVAL_SECONDS", 0.0),
        poll_interval_seconds=_int("POLL_INTERVAL_SECONDS", 60, minimum=1),
        latest_audit_limit=_int("LATEST_AUDIT_LIMIT", 25),
        empty_servers_audit_limit=_int("EMPTY_SERVERS_AUDIT_LIMIT", 50),
        retry_batch_limit=_int("RETRY_BATCH_LIMIT", 10),
        db_path=source.get("SYNC_DB_PATH") or os.path.join(os.getcwd(), "catalog.sqlite3"),
        cache_dir=source.get("SYNC_CACHE_DIR") or os.path.join(os.getcwd(), "bin"),
        aliases_file=aliases_file,
        use_proxy=_parse_bool(source.get("USE_PROXY")),
        proxy_list=source.get("PROXY_LIST") or "",
        proxy_file=source.get("PROXY_FILE") or "proxy.txt",
        proxy_validate=_parse_bool(source.get("PROXY_VALIDATE")) is not False,
        proxy_test_url=source.get("PROXY_TEST_URL") or DEFAULT_PROXY_TEST_URL,
        proxy_max_tests=_int("PROXY_MAX_TESTS", 15),
        proxy_public_sources=public_sources or DEFAULT_PUBLIC_PROXY_SOURCES,
        aliases=aliases,
    )

    if errors:
        raise ConfigError("; ".join(errors))
    logger.debug("Settings loaded for %s (max depth %d)", settings.site_host, settings.resolution_max_depth)
    return settings
