"""Ordered URL classifier and script-extractor tables used during resolution.

Each table is evaluated first-to-last and the first matching entry wins, so
table order is resolution priority. Tests enumerate every entry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator

from extraction.urls import is_site_url, normalize_url

REDIRECTION_MARKERS = ("trembed", "trid=", "trtype=")
MEDIA_EXTENSIONS = (".mp4", ".m3u8", ".webm", ".mkv", ".avi", ".mov", ".flv")
STREAMING_PATHS = ("/video/", "/stream/", "/hls/")
GOOGLE_MEDIA_HOSTS = ("googlevideo.com", "googleusercontent.com")
KNOWN_MEDIA_HOSTS = ("streamtape", "filemoon", "voe.sx", "dood", "mixdrop", "streamlare")
EMBED_PATHS = ("/embed/", "/player/", "/e/")

PLAYER_SIGNATURES = (
    "play.",
    "player.",
    "/video/",
    "/embed/",
    "/e/",
    "/t/",
    "zephyrflick",
    "filemoon",
    "streamtape",
    "dood",
    "voe.sx",
    "mixdrop",
    "emturbovid",
    "turbovid",
    "vidmoly",
    "streamwish",
    "vidhide",
    "vidguard",
    "vidsrc",
    "embedsito",
    "upstream",
    "mp4upload",
    "okru",
    "sbplay",
    "streamsb",
    "vidcloud",
    "goload",
    "gogo",
)


@dataclass(frozen=True)
class UrlRule:
    name: str
    test: Callable[[str, str], bool]

    def __call__(self, url: str, site_host: str = "") -> bool:
        return self.test(url, site_host)


def _contains_any(tokens: Iterable[str], *, lower: bool = False) -> Callable[[str, str], bool]:
    tokens = tuple(tokens)

    def _test(url: str, _site_host: str) -> bool:
        haystack = url.lower() if lower else url
        return any(token in haystack for token in tokens)

    return _test


VIDEO_URL_RULES = (
    UrlRule("media-extension", _contains_any(MEDIA_EXTENSIONS, lower=True)),
    UrlRule("streaming-path", _contains_any(STREAMING_PATHS)),
    UrlRule("google-media-host", _contains_any(GOOGLE_MEDIA_HOSTS)),
    UrlRule("known-media-host", _contains_any(KNOWN_MEDIA_HOSTS)),
)

FOLLOW_RULES = (
    UrlRule("redirection-marker", _contains_any(REDIRECTION_MARKERS)),
    UrlRule("source-site", lambda url, site_host: is_site_url(url, site_host)),
    UrlRule("embed-path", _contains_any(EMBED_PATHS)),
)


@dataclass(frozen=True)
class ScriptExtractor:
    name: str
    pattern: re.Pattern[str]

    def find(self, text: str) -> Iterator[str]:
        for match in self.pattern.finditer(text):
            candidate = match.group(1) if match.groups() else match.group(0)
            if candidate:
                yield candidate


SCRIPT_URL_EXTRACTORS = (
    ScriptExtractor(
        "media-key-value",
        re.compile(
            r"[\"']?(?:src|file|source|url|video_url|stream_url)[\"']?\s*[:=]\s*[\"']([^\"']+\.(?:mp4|m3u8|webm)[^\"']*)",
            re.IGNORECASE,
        ),
    ),
    ScriptExtractor("embed-src", re.compile(r"(?:iframe|embed|player).*?src=[\"']([^\"']+)[\"']", re.IGNORECASE)),
    ScriptExtractor("json-double-quoted", re.compile(r"\"(?:url|file|src|source)\":\s*\"([^\"]+)\"", re.IGNORECASE)),
    ScriptExtractor("json-single-quoted", re.compile(r"'(?:url|file|src|source)':\s*'([^']+)'", re.IGNORECASE)),
    ScriptExtractor(
        "player-setup",
        re.compile(
            r"(?:player|jwplayer|videojs).*?[\"']?(?:file|src|source)[\"']?\s*[:=]\s*[\"']([^\"']+)",
            re.IGNORECASE,
        ),
    ),
    ScriptExtractor("bare-media-url", re.compile(r"https?://[^\s\"'<>\]]+\.(?:mp4|m3u8|webm)", re.IGNORECASE)),
    ScriptExtractor("bare-url", re.compile(r"https?://[^\s\"'<>\]]+", re.IGNORECASE)),
)


def _first_match(rules: Iterable[UrlRule], url: str | None, site_host: str) -> str | None:
    if not url:
        return None
    for rule in rules:
        if rule(url, site_host):
            return rule.name
    return None


class UrlClassifier:
    """Applies the rule tables relative to one source site."""

    def __init__(self, site_host: str) -> None:
        self.site_host = site_host

    def video_rule(self, url: str | None) -> str | None:
        return _first_match(VIDEO_URL_RULES, url, self.site_host)

    def follow_rule(self, url: str | None) -> str | None:
        return _first_match(FOLLOW_RULES, url, self.site_host)

    def is_video(self, url: str | None) -> bool:
        return self.video_rule(url) is not None

    def needs_follow(self, url: str | None) -> bool:
        return self.follow_rule(url) is not None

    def has_redirection_marker(self, url: str | None) -> bool:
        return bool(url) and any(marker in url for marker in REDIRECTION_MARKERS)

    def is_external(self, url: str | None) -> bool:
        """Off-site and free of redirection markers: treated as a resolution endpoint."""
        if not url or not url.startswith("http"):
            return False
        return not is_site_url(url, self.site_host) and not self.has_redirection_marker(url)

    def player_signature(self, url: str | None) -> str | None:
        if not url:
            return None
        for signature in PLAYER_SIGNATURES:
            if signature in url:
                return signature
        return None

    def script_candidates(self, scripts: Iterable[str], base_url: str) -> list[str]:
        """Every URL the extractor table finds, in script order then extractor order."""
        found: list[str] = []
        for text in scripts:
            if not text:
                continue
            for extractor in SCRIPT_URL_EXTRACTORS:
                for raw in extractor.find(text):
                    normalized = normalize_url(raw, base_url)
                    if normalized and normalized not in found:
                        found.append(normalized)
        return found

    def pick_script_url(self, candidates: Iterable[str]) -> str | None:
        """Prefer media, then anything needing a follow hop, then the first candidate."""
        candidates = list(candidates)
        for candidate in candidates:
            if self.is_video(candidate):
                return candidate
        for candidate in candidates:
            if self.needs_follow(candidate):
                return candidate
        return candidates[0] if candidates else None
