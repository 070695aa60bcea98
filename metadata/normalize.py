"""Slug and title normalization for catalog records.

Catalog-specific quirks live in an external alias table (``config/aliases.json``)
that is consulted before any generic normalization runs.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Any, Mapping

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_EPISODE_CODE_SUFFIX_RE = re.compile(r"-\d+x\d+$", re.IGNORECASE)
_HALF_FRACTION_RE = re.compile(r"(\w+?)-?1[-/]2", re.IGNORECASE)
_SLUG_HALF_SUFFIX_RE = re.compile(r"(\w+)1-2$", re.IGNORECASE)
_SEASON_MARKER_RES = (
    re.compile(r"[:\-–—]+\s*Season\s*\d+", re.IGNORECASE),
    re.compile(r"\s*Season\s*\d+", re.IGNORECASE),
    re.compile(r"\s*\bS\d+(?:E\d+)?\b", re.IGNORECASE),
    re.compile(r"\s*\d+x\d+", re.IGNORECASE),
)
_BRACKET_TAG_RE = re.compile(r"\s*\[[^\]]*\]")
_LANGUAGE_TAG_RE = re.compile(
    r"\s*\b(?:Hindi Dub|Dubbed|Subbed|Dub|Sub|English|Japanese|Hindi|Eng|Jap)\b\s*",
    re.IGNORECASE,
)
_QUALITY_TAG_RE = re.compile(r"\s*\b(?:1080p|720p|480p|HD|4K)\b\s*", re.IGNORECASE)
_PAREN_RE = re.compile(r"\([^)]*\)")
_SEARCH_SUFFIX_RE = re.compile(r"\s+(?:the animation|the movie|movie|ova|ona|specials?)$", re.IGNORECASE)


def _collapse(value: str) -> str:
    return _WHITESPACE_RE.sub(" ", value).strip()


@dataclass(frozen=True)
class SeriesAlias:
    match: tuple[str, ...]
    slug: str
    source_slug: str
    title: str | None = None
    force_full_sync: bool = False

    def matches(self, value: str) -> bool:
        lowered = value.lower()
        return any(token in lowered for token in self.match)


@dataclass(frozen=True)
class AliasTable:
    series: tuple[SeriesAlias, ...] = ()
    search_titles: tuple[tuple[str, str], ...] = ()
    _by_slug: dict[str, SeriesAlias] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "AliasTable":
        payload = payload or {}
        series = []
        for raw in payload.get("series") or []:
            if not isinstance(raw, Mapping) or not raw.get("slug"):
                logger.warning("Ignoring malformed series alias: %r", raw)
                continue
            matches = raw.get("match") or []
            if isinstance(matches, str):
                matches = [matches]
            slug = str(raw["slug"]).strip().lower()
            series.append(
                SeriesAlias(
                    match=tuple(str(token).lower() for token in matches if token) or (slug,),
                    slug=slug,
                    source_slug=str(raw.get("source_slug") or slug).strip().lower(),
                    title=raw.get("title"),
                    force_full_sync=bool(raw.get("force_full_sync")),
                )
            )
        titles = []
        for raw in payload.get("search_titles") or []:
            if isinstance(raw, Mapping) and raw.get("match") and raw.get("title"):
                titles.append((str(raw["match"]).lower(), str(raw["title"])))
        by_slug = {}
        for alias in series:
            by_slug[alias.slug] = alias
            by_slug.setdefault(alias.source_slug, alias)
        return cls(series=tuple(series), search_titles=tuple(titles), _by_slug=by_slug)

    def series_for(self, value: str | None) -> SeriesAlias | None:
        if not value:
            return None
        lowered = value.strip().lower()
        direct = self._by_slug.get(_EPISODE_CODE_SUFFIX_RE.sub("", lowered))
        if direct is not None:
            return direct
        for alias in self.series:
            if alias.matches(lowered):
                return alias
        return None

    def source_slug(self, slug: str) -> str:
        """Slug as the source site spells it in URLs."""
        alias = self._by_slug.get(slug)
        return alias.source_slug if alias else slug

    def search_title(self, title: str) -> str | None:
        lowered = title.lower()
        for token, replacement in self.search_titles:
            if token in lowered:
                return replacement
        for alias in self.series:
            if alias.title and alias.matches(lowered):
                return alias.title
        return None


EMPTY_ALIASES = AliasTable()


def clean_slug(name: str | None, aliases: AliasTable = EMPTY_ALIASES) -> str:
    if not name:
        return "item"
    alias = aliases.series_for(name)
    if alias is not None:
        return alias.slug
    cleaned = unicodedata.normalize("NFKD", name.lower())
    cleaned = "".join(ch for ch in cleaned if not unicodedata.combining(ch))
    cleaned = re.sub(r"['\"]", "", cleaned)
    cleaned = re.sub(r"[^\w\s-]", "", cleaned)
    cleaned = re.sub(r"\s+", "-", cleaned)
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned.strip("-") or "item"


def clean_title_for_search(title: str | None, aliases: AliasTable = EMPTY_ALIASES) -> str | None:
    """Strip season/episode markers, language and quality tags from a listing title."""
    if not title:
        return title
    replacement = aliases.search_title(title)
    if replacement:
        return replacement

    cleaned = _HALF_FRACTION_RE.sub(r"\1 1/2", title)
    cleaned = cleaned.replace("-", " ")
    for pattern in _SEASON_MARKER_RES:
        cleaned = pattern.sub("", cleaned)
    cleaned = _BRACKET_TAG_RE.sub(" ", cleaned)
    cleaned = _LANGUAGE_TAG_RE.sub(" ", cleaned)
    cleaned = _QUALITY_TAG_RE.sub(" ", cleaned)
    cleaned = _PAREN_RE.sub("", cleaned)
    return _collapse(cleaned)


def strip_search_suffix(title: str) -> str:
    return _collapse(_SEARCH_SUFFIX_RE.sub("", title))


def series_name_from_slug(slug: str | None, aliases: AliasTable = EMPTY_ALIASES) -> str | None:
    if not slug:
        return None
    alias = aliases.series_for(slug)
    if alias is not None and alias.title:
        return alias.title
    name = _EPISODE_CODE_SUFFIX_RE.sub("", slug)
    name = _SLUG_HALF_SUFFIX_RE.sub(r"\1 1/2", name)
    name = name.replace("-", " ")
    return _collapse(re.sub(r"\b\w", lambda match: match.group(0).upper(), name))


def search_queries(title: str | None, slug: str | None = None, aliases: AliasTable = EMPTY_ALIASES) -> list[str]:
    """Ordered, de-duplicated metadata search queries for a series."""
    ordered: list[str] = []
    for raw in (series_name_from_slug(slug, aliases), title):
        cleaned = clean_title_for_search(raw, aliases) if raw else None
        if not cleaned:
            continue
        for query in (cleaned, strip_search_suffix(cleaned)):
            if query and query not in ordered:
                ordered.append(query)
    return ordered


def collapse_whitespace(value: str | None) -> str | None:
    if value is None:
        return None
    return _collapse(value) or None
