"""Best-effort metadata enrichment: series details and episode artwork.

Nothing here raises to the caller. A failed lookup logs and yields ``None`` so
the episode or series is persisted with the field left empty.
"""

from __future__ import annotations

import logging
from typing import Any

from metadata.normalize import EMPTY_ALIASES, AliasTable, search_queries
from metadata.providers.base import EpisodeImageFallback, MetadataProvider, SeriesDetails

logger = logging.getLogger(__name__)


class MetadataEnricher:
    def __init__(
        self,
        provider: MetadataProvider | None,
        fallback: EpisodeImageFallback | None = None,
        *,
        aliases: AliasTable = EMPTY_ALIASES,
    ) -> None:
        self.provider = provider
        self.fallback = fallback
        self.aliases = aliases
        self._season_images: dict[tuple[Any, int], dict[int, str]] = {}

    def lookup_series(self, title: str | None, slug: str | None = None, kind: str = "tv") -> SeriesDetails | None:
        """Search by slug-derived name first, then the page title; first hit wins."""
        if self.provider is None:
            return None
        for query in search_queries(title, slug, self.aliases):
            try:
                provider_id = self.provider.search(query, kind)
                if not provider_id:
                    continue
                details = self.provider.get_details(provider_id, kind)
            except Exception:
                logger.exception("[TMDB] lookup failed for %r", query)
                continue
            if details:
                logger.info(
                    "[TMDB] matched %r -> id=%s rating=%s", query, details.get("tmdb_id"), details.get("rating")
                )
                return details
        logger.info("[TMDB] no match for title=%r slug=%r", title, slug)
        return None

    def _season_image_map(self, provider_id: Any, season: int) -> dict[int, str]:
        key = (provider_id, season)
        if key not in self._season_images:
            try:
                self._season_images[key] = dict(self.provider.get_season_episode_images(provider_id, season) or {})
            except Exception:
                logger.exception("[TMDB] season image lookup failed id=%s season=%s", provider_id, season)
                self._season_images[key] = {}
        return self._season_images[key]

    def episode_image(self, series: dict[str, Any], season: int, episode: int) -> str | None:
        """Provider episode still, then TVDB, then the provider series poster. Never a scraped image."""
        provider_id = series.get("tmdb_id")
        image = None
        if provider_id and self.provider is not None:
            season_images = self._season_image_map(provider_id, season)
            image = season_images.get(episode)
            if not image:
                try:
                    image = self.provider.get_episode_image(provider_id, season, episode)
                except Exception:
                    logger.exception("[TMDB] episode image lookup failed id=%s S%sE%s", provider_id, season, episode)
                    image = None
                if image:
                    season_images[episode] = image

        if not image and self.fallback is not None:
            try:
                image = self.fallback.find_episode_image(series.get("title"), season, episode)
            except Exception:
                logger.exception("[TVDB] fallback lookup failed for %s", series.get("title"))
                image = None

        if not image:
            image = series.get("tmdb_poster") or None
            if image:
                logger.info("[TMDB] using series poster for S%sE%s", season, episode)
        return image
