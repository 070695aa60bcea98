"""Source-site surfaces: the listing page, series pages and the season AJAX endpoint."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from extraction.pages import (
    EpisodeLink,
    ListingCard,
    extract_episode_cards,
    extract_nonce,
    extract_post_id,
    extract_season_numbers,
    extract_series_episode_links,
    parse_season_fragment,
)
from extraction.urls import build_episode_url, is_valid_episode_url
from metadata.normalize import EMPTY_ALIASES, AliasTable
from network.fetch import FetchError, Fetcher

logger = logging.getLogger(__name__)

SEASON_DELAY_SECONDS = 0.3
HOMEPAGE_FALLBACK_DELAY_SECONDS = 0.5
SEASON_ACTION = "action_select_season"


@dataclass
class SeriesListing:
    series_url: str
    html: str
    episodes: list[EpisodeLink] = field(default_factory=list)
    seasons: list[int] = field(default_factory=list)
    post_id: str | None = None


class SourceCatalog:
    def __init__(
        self,
        fetcher: Fetcher,
        *,
        home_url: str,
        homepage_candidates: list[str],
        ajax_url: str,
        site_origin: str,
        aliases: AliasTable = EMPTY_ALIASES,
        season_delay: float = SEASON_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.home_url = home_url
        self.homepage_candidates = list(homepage_candidates) or [home_url]
        self.ajax_url = ajax_url
        self.site_origin = site_origin
        self.aliases = aliases
        self.season_delay = season_delay
        self._sleep = sleep

    def fetch_page(self, url: str, *, referer: str | None = None) -> str:
        return self.fetcher.fetch_with_retry(url, referer=referer or self.home_url)

    def fetch_homepage(self) -> tuple[str, str]:
        last_error: FetchError | None = None
        for candidate in self.homepage_candidates:
            try:
                html = self.fetch_page(candidate)
            except FetchError as exc:
                last_error = exc
                logger.warning("[SYNC] homepage %s unavailable: %s", candidate, exc.message)
                self._sleep(HOMEPAGE_FALLBACK_DELAY_SECONDS)
                continue
            if candidate != self.home_url:
                logger.info("[SYNC] using homepage fallback %s", candidate)
            return candidate, html
        raise last_error or FetchError(self.home_url, "all homepage candidates failed")

    def latest_cards(self) -> list[ListingCard]:
        url, html = self.fetch_homepage()
        cards = extract_episode_cards(html, url)
        logger.info("[SYNC] %d candidate episode(s) on %s", len(cards), url)
        return cards

    def season_episodes(self, post_id: str | None, season: int, nonce: str | None = None) -> list[EpisodeLink]:
        if not post_id or not season:
            return []
        data = {"action": SEASON_ACTION, "season": str(season), "post": post_id}
        if nonce:
            data["nonce"] = nonce
            data["_wpnonce"] = nonce
        try:
            html = self.fetcher.post_form(self.ajax_url, data, referer=self.home_url)
        except FetchError as exc:
            logger.warning("[SYNC] season listing failed post=%s season=%s: %s", post_id, season, exc.message)
            return []
        return parse_season_fragment(html, self.home_url)

    def _canonical_link(self, series_slug: str, link: EpisodeLink, fallback: EpisodeLink | None) -> EpisodeLink | None:
        built = build_episode_url(self.site_origin, series_slug, link.season, link.episode, self.aliases)
        url = built
        if not is_valid_episode_url(url):
            for candidate in (fallback.url if fallback else None, link.url):
                if is_valid_episode_url(candidate):
                    url = candidate
                    break
        if not is_valid_episode_url(url):
            logger.warning("[SYNC] skipping S%sE%s: no valid url for %s", link.season, link.episode, series_slug)
            return None
        return EpisodeLink(
            url=url,
            season=link.season,
            episode=link.episode,
            title=link.title or (fallback.title if fallback else ""),
            thumbnail=link.thumbnail or (fallback.thumbnail if fallback else None),
        )

    def list_series_episodes(self, series_url: str, series_slug: str) -> SeriesListing:
        """Every upstream episode of a series, with canonical URLs built from the slug."""
        html = self.fetch_page(series_url)
        post_id = extract_post_id(html)
        nonce = extract_nonce(html)
        page_links = extract_series_episode_links(html, series_url)
        by_code = {(link.season, link.episode): link for link in page_links}
        seasons = extract_season_numbers(html)

        listed: list[EpisodeLink] = []
        for index, season in enumerate(seasons):
            if index:
                self._sleep(self.season_delay)
            for link in self.season_episodes(post_id, season, nonce):
                canonical = self._canonical_link(series_slug, link, by_code.get((link.season, link.episode)))
                if canonical is not None:
                    listed.append(canonical)
            logger.info("[SYNC] %s season %s listed", series_slug, season)

        if not listed:
            for link in page_links:
                canonical = self._canonical_link(series_slug, link, None)
                if canonical is not None:
                    listed.append(canonical)
            if listed:
                logger.info("[SYNC] using %d episode(s) from the series page for %s", len(listed), series_slug)

        unique: dict[tuple[int, int], EpisodeLink] = {}
        for link in listed:
            unique.setdefault((link.season, link.episode), link)
        episodes = sorted(unique.values(), key=lambda link: (link.season, link.episode))
        return SeriesListing(series_url=series_url, html=html, episodes=episodes, seasons=seasons, post_id=post_id)
