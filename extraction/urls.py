"""URL helpers for the source site: normalization, slugs and episode codes."""

from __future__ import annotations

import html
import re
from urllib.parse import urljoin, urlparse

from metadata.normalize import EMPTY_ALIASES, AliasTable, clean_slug

_EPISODE_CODE_RE = re.compile(r"(\d+)x(\d+)", re.IGNORECASE)
_EPISODE_SLUG_SUFFIX_RE = re.compile(r"-\d+x\d+$", re.IGNORECASE)


def decode_entities(value: str | None) -> str | None:
    if not value:
        return value
    return html.unescape(value)


def normalize_url(raw_url: str | None, base: str | None = None) -> str | None:
    """Absolute URL for ``raw_url`` resolved against ``base``; ``None`` for javascript: or junk."""
    if not raw_url:
        return None
    text = decode_entities(raw_url.strip()) or ""
    if not text or text.lower().startswith("javascript:"):
        return None
    if text.startswith("//"):
        text = f"https:{text}"
    resolved = urljoin(base, text) if base else text
    parsed = urlparse(resolved)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        if parsed.scheme == "blob":
            return resolved
        return None
    return resolved


def host_of(url: str | None) -> str:
    host = (urlparse(url or "").hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def is_site_url(url: str | None, site_host: str) -> bool:
    return bool(url) and bool(site_host) and host_of(url) == site_host


def parse_episode_code(url: str | None) -> tuple[int, int] | None:
    match = _EPISODE_CODE_RE.search(url or "")
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def is_valid_episode_url(url: str | None) -> bool:
    if not url or "/episode/" not in url:
        return False
    remainder = url.split("/episode/", 1)[1]
    return bool(remainder.strip("/"))


def _path_parts(url: str) -> list[str]:
    return [part for part in urlparse(url).path.split("/") if part]


def series_slug_from_url(series_url: str | None, aliases: AliasTable = EMPTY_ALIASES) -> str | None:
    if not series_url:
        return None
    parts = _path_parts(series_url)
    if not parts:
        return None
    return clean_slug(parts[-1], aliases)


def series_slug_from_episode_url(episode_url: str | None, aliases: AliasTable = EMPTY_ALIASES) -> str | None:
    if not episode_url:
        return None
    parts = _path_parts(episode_url)
    if not parts:
        return None
    episode_slug = parts[1] if len(parts) > 1 else parts[-1]
    base_slug = _EPISODE_SLUG_SUFFIX_RE.sub("", episode_slug) or episode_slug
    return clean_slug(base_slug, aliases)


def build_series_url(origin: str, series_slug: str, aliases: AliasTable = EMPTY_ALIASES) -> str:
    return f"{origin.rstrip('/')}/series/{aliases.source_slug(series_slug)}/"


def build_episode_url(
    origin: str,
    series_slug: str,
    season: int,
    episode: int,
    aliases: AliasTable = EMPTY_ALIASES,
) -> str:
    return f"{origin.rstrip('/')}/episode/{aliases.source_slug(series_slug)}-{season}x{episode}/"
