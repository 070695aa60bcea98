"""Parsers for the source site's listing, series and episode pages."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable

from bs4 import BeautifulSoup

from extraction.servers import first_attr
from extraction.urls import normalize_url, parse_episode_code
from metadata.normalize import collapse_whitespace

IMAGE_ATTRS = ("data-src", "src", "data-lazy-src")

_POST_ID_SCRIPT_RES = (
    re.compile(r"\"post_id\"\s*:\s*\"?(\d+)\"?"),
    re.compile(r"'post_id'\s*:\s*'?(\d+)'?"),
    re.compile(r"post[_-]?id\s*=\s*['\"]?(\d+)['\"]?", re.IGNORECASE),
)
_NONCE_SCRIPT_RES = (
    re.compile(r"[\"']nonce[\"']\s*:\s*[\"']([A-Za-z0-9_-]+)[\"']"),
    re.compile(r"[\"']_wpnonce[\"']\s*:\s*[\"']([A-Za-z0-9_-]+)[\"']"),
    re.compile(r"nonce\s*=\s*[\"']([A-Za-z0-9_-]+)[\"']"),
    re.compile(r"ajax_nonce\s*[=:]\s*[\"']([A-Za-z0-9_-]+)[\"']"),
    re.compile(r"security\s*[=:]\s*[\"']([A-Za-z0-9_-]+)[\"']"),
    re.compile(r"dooplay\s*=\s*\{[^}]*nonce\s*:\s*[\"']([A-Za-z0-9_-]+)[\"']"),
    re.compile(r"var\s+\w+\s*=\s*\{[^}]*[\"']nonce[\"']\s*:\s*[\"']([A-Za-z0-9_-]+)[\"']"),
)
_SEASON_HEADING_RE = re.compile(r"season\s+(\d+)", re.IGNORECASE)
_YEAR_RE = re.compile(r"\d{4}")


@dataclass(frozen=True)
class ListingCard:
    url: str
    title: str
    thumbnail: str | None = None


@dataclass(frozen=True)
class EpisodeLink:
    url: str
    season: int
    episode: int
    title: str = ""
    thumbnail: str | None = None


@dataclass(frozen=True)
class EpisodeMeta:
    title: str | None
    thumbnail: str | None
    main_poster: str | None


@dataclass(frozen=True)
class SeriesMeta:
    title: str | None
    description: str | None
    poster: str | None
    genres: list[str] = field(default_factory=list)
    year: int | None = None


def _soup(html: str | None) -> BeautifulSoup:
    return BeautifulSoup(html or "", "html.parser")


def _text(node) -> str:
    return node.get_text(" ", strip=True) if node is not None else ""


def _meta_content(soup: BeautifulSoup, prop: str) -> str | None:
    node = soup.find("meta", attrs={"property": prop})
    value = node.get("content") if node is not None else None
    return value.strip() if value and value.strip() else None


def _attr(node, name: str) -> str | None:
    return node.get(name) if node is not None else None


def _image_url(node, base_url: str) -> str | None:
    if node is None:
        return None
    return normalize_url(first_attr(node, IMAGE_ATTRS), base_url)


def _scripts(soup: BeautifulSoup) -> list[str]:
    return [script.string or script.get_text() or "" for script in soup.find_all("script")]


def extract_episode_cards(html: str, base_url: str) -> list[ListingCard]:
    """Episode cards from a listing page: article cards first, then loose episode anchors."""
    soup = _soup(html)
    seen: set[str] = set()
    cards: list[ListingCard] = []

    for article in soup.select("article.episodes, article.post"):
        anchor = article.select_one('a[href*="/episode/"]')
        if anchor is None:
            continue
        url = normalize_url(anchor.get("href"), base_url)
        if not url or url in seen:
            continue
        seen.add(url)
        title = _text(article.select_one(".entry-title, h2")) or (anchor.get("title") or "").strip()
        image = article.select_one("figure img, .post-thumbnail img, img")
        cards.append(ListingCard(url=url, title=title, thumbnail=_image_url(image, base_url)))

    for anchor in soup.select('a[href*="/episode/"], a[href*="/watch/"]'):
        url = normalize_url(anchor.get("href"), base_url)
        if not url or url in seen:
            continue
        seen.add(url)
        title = (anchor.get("title") or _text(anchor)).strip()
        cards.append(ListingCard(url=url, title=title, thumbnail=_image_url(anchor.find("img"), base_url)))
    return cards


def extract_series_episode_links(html: str, series_url: str) -> list[EpisodeLink]:
    soup = _soup(html)
    seen: set[tuple[int, int]] = set()
    links: list[EpisodeLink] = []
    for anchor in soup.select('a[href*="/episode/"]'):
        url = normalize_url(anchor.get("href"), series_url)
        if not url or "/episode/" not in url:
            continue
        code = parse_episode_code(url)
        if code is None or code in seen:
            continue
        seen.add(code)
        links.append(
            EpisodeLink(
                url=url,
                season=code[0],
                episode=code[1],
                title=_text(anchor),
                thumbnail=_image_url(anchor.find("img"), series_url),
            )
        )
    return sorted(links, key=lambda link: (link.season, link.episode))


def parse_season_fragment(html: str, base_url: str) -> list[EpisodeLink]:
    """Episode entries from the season listing fragment returned by the AJAX endpoint."""
    soup = _soup(html)
    episodes: list[EpisodeLink] = []
    for item in soup.find_all("li"):
        article = item.select_one("article.post, article.episodes")
        if article is None:
            continue
        anchor = article.select_one('a.lnk-blk, a[href*="/episode/"]')
        url = normalize_url(anchor.get("href") if anchor is not None else None, base_url)
        code_text = _text(article.select_one(".num-epi, .entry-header span"))
        code = parse_episode_code(code_text)
        if not url or code is None:
            continue
        episodes.append(
            EpisodeLink(
                url=url,
                season=code[0],
                episode=code[1],
                title=_text(article.select_one(".entry-title, h2")),
                thumbnail=_image_url(article.select_one("img"), base_url),
            )
        )
    return episodes


def _first_title(soup: BeautifulSoup) -> str | None:
    heading = _text(soup.select_one("h1.entry-title"))
    title = heading or _meta_content(soup, "og:title") or _text(soup.find("title"))
    return collapse_whitespace(title)


def extract_episode_meta(html: str, base_url: str) -> EpisodeMeta:
    soup = _soup(html)
    options_image = soup.select_one("div.video-options img")
    thumbnail = (
        _meta_content(soup, "og:image")
        or _attr(soup.select_one("div.post-thumbnail img"), "src")
        or (options_image.get("src") if options_image is not None else None)
    )
    return EpisodeMeta(
        title=_first_title(soup),
        thumbnail=normalize_url(thumbnail, base_url),
        main_poster=_image_url(options_image, base_url),
    )


def extract_series_meta(html: str, base_url: str) -> SeriesMeta:
    soup = _soup(html)
    description = _meta_content(soup, "og:description") or _text(soup.select_one("div.entry-content p"))
    poster = _meta_content(soup, "og:image") or _attr(soup.select_one("div.post-thumbnail img"), "src")
    genres: list[str] = []
    for anchor in soup.select('a[rel="tag"], .genres a'):
        name = _text(anchor)
        if name and name not in genres:
            genres.append(name)
    year_match = _YEAR_RE.search(_text(soup.select_one("span.year, .year")))
    return SeriesMeta(
        title=_first_title(soup),
        description=collapse_whitespace(description),
        poster=normalize_url(poster, base_url),
        genres=genres,
        year=int(year_match.group(0)) if year_match else None,
    )


def _first_found(finders: list[Callable[[], str | None]]) -> str | None:
    for finder in finders:
        value = finder()
        if value:
            return str(value).strip()
    return None


def _search_scripts(soup: BeautifulSoup, patterns) -> str | None:
    for content in _scripts(soup):
        for pattern in patterns:
            match = pattern.search(content)
            if match:
                return match.group(1)
    return None


def extract_post_id(html: str) -> str | None:
    soup = _soup(html)

    def _data_attr() -> str | None:
        node = soup.select_one("[data-post], [data-post-id]")
        return (node.get("data-post") or node.get("data-post-id")) if node is not None else None

    def _input() -> str | None:
        node = soup.select_one('input[name="post"], input[name="post_id"]')
        return node.get("value") if node is not None else None

    def _body_class() -> str | None:
        body = soup.find("body")
        classes = " ".join(body.get("class") or []) if body is not None else ""
        match = re.search(r"postid-(\d+)", classes)
        return match.group(1) if match else None

    def _article_id() -> str | None:
        node = soup.select_one('article[id^="post-"]')
        return node["id"][len("post-"):] if node is not None else None

    return _first_found(
        [_data_attr, _input, _body_class, _article_id, lambda: _search_scripts(soup, _POST_ID_SCRIPT_RES)]
    )


def extract_nonce(html: str) -> str | None:
    soup = _soup(html)

    def _input(name: str) -> Callable[[], str | None]:
        def _find() -> str | None:
            node = soup.find("input", attrs={"name": name})
            return node.get("value") if node is not None else None

        return _find

    def _data_attr() -> str | None:
        node = soup.select_one("[data-nonce]")
        return node.get("data-nonce") if node is not None else None

    return _first_found(
        [_input("_wpnonce"), _input("nonce"), _data_attr, lambda: _search_scripts(soup, _NONCE_SCRIPT_RES)]
    )


def extract_season_numbers(html: str) -> list[int]:
    soup = _soup(html)
    seasons: set[int] = set()
    for node in soup.select("[data-season], option[value]"):
        raw = (node.get("data-season") or node.get("value") or "").strip()
        if raw.isdigit():
            seasons.add(int(raw))
    if not seasons:
        for block in soup.select(".aa-cnt .se-c"):
            match = _SEASON_HEADING_RE.search(_text(block.select_one(".se-t")))
            if match:
                seasons.add(int(match.group(1)))
    return sorted(seasons) or [1]


def extract_breadcrumb_series_url(html: str, base_url: str) -> str | None:
    soup = _soup(html)
    crumbs = soup.select('nav.breadcrumb a[href*="/series/"], .entry-meta a[href*="/series/"]')
    if not crumbs:
        return None
    return normalize_url(crumbs[-1].get("href"), base_url)
