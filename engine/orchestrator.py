"""Per-episode sync with three-tier dedupe, confirmed persistence and retry scheduling."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

from db.catalog_store import CatalogStore, StoreError
from db.local_cache import EXISTS_MARKER, LocalCache, cache_aside
from engine.models import (
    EpisodeRecord,
    RetryEntry,
    SyncStats,
    count_usable_servers,
    make_cache_key,
    make_episode_key,
    make_season_episode_key,
)
from engine.resolver import VideoSourceResolver
from engine.retry_policy import CLEAR, SCHEDULE, RetryPolicy
from engine.source_catalog import SourceCatalog
from extraction.pages import extract_breadcrumb_series_url, extract_episode_meta, extract_series_meta
from extraction.servers import extract_server_candidates
from extraction.urls import (
    build_episode_url,
    build_series_url,
    host_of,
    parse_episode_code,
    series_slug_from_episode_url,
    series_slug_from_url,
)
from metadata.enrichment import MetadataEnricher
from metadata.normalize import EMPTY_ALIASES, AliasTable, series_name_from_slug
from network.fetch import FetchError

logger = logging.getLogger(__name__)

NEW = "new"
UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"
DUPLICATE = "duplicate"

PERSIST_ATTEMPTS = 3
PERSIST_BACKOFF_SECONDS = 0.5
EPISODE_DELAY_SECONDS = 0.75
CARD_DELAY_SECONDS = 1.0
SERIES_DELAY_SECONDS = 1.5
RETRY_DELAY_SECONDS = 1.0
LATEST_AUDIT_DELAY_SECONDS = 0.5
EMPTY_AUDIT_DELAY_SECONDS = 1.0

SERIES_METADATA_FIELDS = ("rating", "poster", "banner_image", "genres", "description", "tmdb_id")


class SyncOrchestrator:
    """Sequential sync worker for one run. Holds the run's processed-set and counters."""

    def __init__(
        self,
        *,
        catalog: SourceCatalog,
        resolver: VideoSourceResolver,
        store: CatalogStore,
        series_cache: LocalCache,
        episode_cache: LocalCache,
        enricher: MetadataEnricher,
        retry_policy: RetryPolicy,
        site_origin: str,
        site_host: str,
        aliases: AliasTable = EMPTY_ALIASES,
        persist_attempts: int = PERSIST_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.catalog = catalog
        self.resolver = resolver
        self.store = store
        self.series_cache = series_cache
        self.episode_cache = episode_cache
        self.enricher = enricher
        self.retry_policy = retry_policy
        self.site_origin = site_origin
        self.site_host = site_host
        self.aliases = aliases
        self.persist_attempts = max(1, int(persist_attempts))
        self._sleep = sleep
        self.stats = SyncStats()
        self._processed: set[str] = set()
        self._series_memo: dict[str, dict[str, Any]] = {}

    # completeness checks

    def _hosted_on_source(self, url: str | None) -> bool:
        return bool(url) and host_of(url) == self.site_host

    def needs_update(self, episode: dict[str, Any] | None) -> bool:
        """Missing usable servers, missing thumbnail, or a thumbnail scraped from the source site."""
        if not episode:
            return True
        if count_usable_servers(episode.get("servers")) < 1:
            return True
        thumbnail = episode.get("thumbnail")
        return not thumbnail or self._hosted_on_source(thumbnail)

    def _cached_is_complete(self, cached: Any) -> bool:
        if cached == EXISTS_MARKER:
            return True
        return isinstance(cached, dict) and not self.needs_update(cached)

    def needs_metadata_update(self, series: dict[str, Any] | None) -> bool:
        if not series:
            return True
        if any(not series.get(field) for field in SERIES_METADATA_FIELDS):
            return True
        return self._hosted_on_source(series.get("poster")) or self._hosted_on_source(series.get("banner_image"))

    # series context

    def series_context(self, slug: str, series_url: str, fallback_title: str | None = None) -> dict[str, Any]:
        """In-run memo, then local cache, then the store, then a full fetch-and-enrich."""
        memo = self._series_memo.get(slug)
        if memo is not None:
            return memo
        alias = self.aliases.series_for(slug)
        force = bool(alias and alias.force_full_sync)
        lookup = cache_aside(self.series_cache, slug, lambda: self.store.get_series(slug), force=force)
        if lookup.hit:
            context = dict(lookup.value)
        else:
            try:
                context = self.sync_series(series_url, slug=slug, fallback_title=fallback_title, force=force)
            except FetchError as exc:
                logger.warning("[SYNC] series page %s unavailable: %s", series_url, exc.message)
                context = {"slug": slug, "title": fallback_title or series_name_from_slug(slug, self.aliases)}
        context.setdefault("url", series_url)
        self._series_memo[slug] = context
        return context

    def forget_series(self, slug: str) -> None:
        self._series_memo.pop(slug, None)

    def sync_series(
        self,
        series_url: str,
        *,
        slug: str | None = None,
        fallback_title: str | None = None,
        force: bool = False,
    ) -> dict[str, Any]:
        slug = slug or series_slug_from_url(series_url, self.aliases)
        html = self.catalog.fetch_page(series_url)
        meta = extract_series_meta(html, series_url)
        alias = self.aliases.series_for(slug)
        title = (
            (alias.title if alias else None)
            or meta.title
            or fallback_title
            or series_name_from_slug(slug, self.aliases)
        )

        details = self.enricher.lookup_series(title, slug) or {}
        tmdb_poster = details.get("poster")
        tmdb_banner = details.get("banner_image")
        payload: dict[str, Any] = {
            "slug": slug,
            "title": title,
            "description": details.get("description") or meta.description,
            "poster": tmdb_poster or meta.poster,
            "banner_image": tmdb_banner,
            "genres": details.get("genres") or meta.genres,
            "tmdb_id": details.get("tmdb_id"),
            "tmdb_poster": tmdb_poster,
            "tmdb_banner": tmdb_banner,
            "rating": details.get("rating"),
            "popularity": details.get("popularity"),
            "status": details.get("status"),
            "studios": details.get("studios") or [],
            "release_date": details.get("release_date"),
            "total_seasons": details.get("total_seasons") or 1,
            "total_episodes": details.get("total_episodes"),
            "posters": details.get("posters") or ([meta.poster] if meta.poster else []),
            "backdrops": details.get("backdrops") or [],
            "year": meta.year or details.get("year"),
            "source_url": series_url,
        }

        existing = self.series_cache.get(slug) or self.store.get_series(slug)
        if force or self.needs_metadata_update(existing):
            stored = self.store.upsert_series(payload)
            self.series_cache.set(slug, stored)
            logger.info("[SYNC] series metadata stored slug=%s tmdb_id=%s", slug, payload["tmdb_id"])
            payload = stored
        else:
            logger.info("[SYNC] series metadata already complete slug=%s", slug)
        return {**payload, "url": series_url}

    # episode record

    def build_record(
        self,
        episode_url: str,
        *,
        series_slug: str,
        season: int,
        episode: int,
        series_url: str,
        card_title: str | None = None,
    ) -> tuple[EpisodeRecord, dict[str, Any]]:
        html = self.catalog.fetch_page(episode_url, referer=series_url)
        breadcrumb = extract_breadcrumb_series_url(html, episode_url)
        if breadcrumb and series_slug_from_url(breadcrumb, self.aliases) == series_slug:
            series_url = breadcrumb
        series = self.series_context(series_slug, series_url, card_title)

        meta = extract_episode_meta(html, episode_url)
        candidates = extract_server_candidates(
            html,
            episode_url,
            site_origin=self.site_origin,
            classifier=self.resolver.classifier,
        )
        servers = self.resolver.resolve_candidates(candidates, referer=episode_url)
        thumbnail = self.enricher.episode_image(series, season, episode)
        record = EpisodeRecord(
            series_slug=series_slug,
            season=season,
            episode=episode,
            url=episode_url,
            title=meta.title or card_title or f"Episode {episode}",
            servers=servers,
            thumbnail=thumbnail,
        )
        return record, series

    def _apply_retry_policy(self, record: EpisodeRecord) -> None:
        existing = self.store.get_retry(record.series_slug, record.season, record.episode)
        decision = self.retry_policy.decide(
            existing,
            record.usable_server_count,
            series_slug=record.series_slug,
            season=record.season,
            episode=record.episode,
            episode_url=record.url,
        )
        if decision.action == SCHEDULE and decision.entry is not None:
            self.store.upsert_retry(decision.entry)
            logger.info(
                "[SYNC] retry %s for %s attempt=%d next=%s",
                decision.entry.status,
                record.key,
                decision.entry.attempt_count,
                decision.entry.next_attempt_at,
            )
        elif decision.action == CLEAR:
            self.store.delete_retry(record.series_slug, record.season, record.episode)
            logger.info("[SYNC] retry cleared for %s", record.key)

    def _persist(self, record: EpisodeRecord, series: dict[str, Any]) -> bool:
        title = series.get("title")
        self.store.upsert_episode(record, series_title=title)
        stored = self.store.get_episode(record.series_slug, record.season, record.episode)
        if stored is None or int(stored.get("server_count", -1)) != record.usable_server_count:
            return False
        self._apply_retry_policy(record)
        random_key = self.store.refresh_series_random_key(record.series_slug)
        cached_series = self.series_cache.get(record.series_slug)
        if isinstance(cached_series, dict):
            self.series_cache.set(record.series_slug, {**cached_series, "random_key": random_key})
        self.store.upsert_latest(record, series_title=title)
        return True

    # sync one episode

    def sync_episode(
        self,
        episode_url: str,
        *,
        series_slug: str | None = None,
        season: int | None = None,
        episode: int | None = None,
        series_url: str | None = None,
        card_title: str | None = None,
        force: bool = False,
        reason: str | None = None,
    ) -> str | None:
        code = (season, episode) if season is not None and episode is not None else parse_episode_code(episode_url)
        if code is None:
            logger.warning("[SYNC] no season/episode code in %s", episode_url)
            return None
        season, episode = code
        slug = series_slug or series_slug_from_episode_url(episode_url, self.aliases)
        if not slug:
            logger.warning("[SYNC] no series slug for %s", episode_url)
            return None
        series_url = series_url or build_series_url(self.site_origin, slug, self.aliases)

        key = make_episode_key(slug, season, episode)
        if key in self._processed and not force:
            return DUPLICATE
        self._processed.add(key)

        try:
            return self._sync_episode(
                episode_url,
                slug=slug,
                season=season,
                episode=episode,
                series_url=series_url,
                card_title=card_title,
                force=force,
                reason=reason,
            )
        except Exception:
            logger.exception("[SYNC] %s failed", key)
            self.stats.failed += 1
            return FAILED

    def _sync_episode(
        self,
        episode_url: str,
        *,
        slug: str,
        season: int,
        episode: int,
        series_url: str,
        card_title: str | None,
        force: bool,
        reason: str | None,
    ) -> str:
        label = f"{slug} S{season}E{episode}"
        found: dict[str, Any] = {}

        def _complete_in_store() -> dict[str, Any] | None:
            row = self.store.get_episode(slug, season, episode)
            found["row"] = row
            if row is not None and not self.needs_update(row):
                return row
            return None

        lookup = cache_aside(
            self.episode_cache,
            make_cache_key(slug, season, episode),
            _complete_in_store,
            force=force,
            accept_cached=self._cached_is_complete,
            to_cached=lambda _row: dict(EXISTS_MARKER),
        )
        if lookup.hit:
            logger.info("[SYNC] %s complete (%s), skipping", label, lookup.source)
            self.stats.skipped += 1
            return SKIPPED

        existing = found["row"] if "row" in found else self.store.get_episode(slug, season, episode)
        logger.info(
            "[SYNC] %s %s%s",
            "updating" if existing else "adding",
            label,
            f" ({reason})" if reason else "",
        )

        for attempt in range(1, self.persist_attempts + 1):
            try:
                record, series = self.build_record(
                    episode_url,
                    series_slug=slug,
                    season=season,
                    episode=episode,
                    series_url=series_url,
                    card_title=card_title,
                )
            except FetchError as exc:
                logger.warning("[SYNC] %s episode page unavailable: %s", label, exc.message)
                self.stats.failed += 1
                return FAILED
            try:
                persisted = self._persist(record, series)
            except StoreError as exc:
                logger.warning(
                    "[SYNC] %s store write failed, attempt %d/%d: %s", label, attempt, self.persist_attempts, exc
                )
                persisted = False
            else:
                if not persisted:
                    logger.warning(
                        "[SYNC] %s not confirmed after upsert, attempt %d/%d", label, attempt, self.persist_attempts
                    )
            if persisted:
                self.episode_cache.set(make_cache_key(slug, season, episode), record.to_payload())
                self.stats.total_servers += record.usable_server_count
                self.stats.series_touched.add(slug)
                outcome = UPDATED if existing else NEW
                if outcome == UPDATED:
                    self.stats.updated += 1
                else:
                    self.stats.new += 1
                logger.info("[SYNC] synced %s servers=%d (%s)", label, record.usable_server_count, outcome)
                return outcome
            if attempt < self.persist_attempts:
                self._sleep(PERSIST_BACKOFF_SECONDS * attempt)

        self.stats.failed += 1
        return FAILED

    # series-level passes

    def ensure_series_complete(
        self, series_slug: str, *, series_url: str | None = None, title: str | None = None
    ) -> dict[str, int]:
        """Backfill every upstream episode that is absent or incomplete downstream."""
        series_url = series_url or build_series_url(self.site_origin, series_slug, self.aliases)
        outcomes = {NEW: 0, UPDATED: 0, SKIPPED: 0, FAILED: 0}
        try:
            listing = self.catalog.list_series_episodes(series_url, series_slug)
            stored_codes = self.store.list_episode_codes(series_slug)
        except (FetchError, StoreError) as exc:
            logger.warning("[SYNC] cannot list %s: %s", series_slug, exc)
            self.stats.failed += 1
            outcomes[FAILED] += 1
            return outcomes

        if not listing.episodes:
            logger.warning("[SYNC] no upstream episodes for %s", series_slug)
            return outcomes

        upstream = len(listing.episodes)
        downstream = len(stored_codes)
        missing = [link for link in listing.episodes if (link.season, link.episode) not in stored_codes]
        logger.info(
            "[SYNC] %s upstream=%d stored=%d missing=%d",
            title or series_slug,
            upstream,
            downstream,
            len(missing),
        )
        if missing:
            logger.info(
                "[SYNC] backfilling %s",
                ", ".join(make_season_episode_key(link.season, link.episode) for link in missing[:10]),
            )

        for link in listing.episodes:
            absent = (link.season, link.episode) not in stored_codes
            outcome = self.sync_episode(
                link.url,
                series_slug=series_slug,
                season=link.season,
                episode=link.episode,
                series_url=series_url,
                card_title=link.title or None,
                force=absent,
                reason="backfill" if absent else None,
            )
            if outcome in outcomes:
                outcomes[outcome] += 1
            if outcome in (NEW, UPDATED, FAILED):
                self._sleep(EPISODE_DELAY_SECONDS)
        return outcomes

    def poll_latest(self) -> dict[str, tuple[int, int]]:
        """Sync every card on the listing surface; returns series with new or updated episodes."""
        touched: dict[str, tuple[int, int]] = {}
        try:
            cards = self.catalog.latest_cards()
        except FetchError as exc:
            logger.error("[SYNC] listing unavailable: %s", exc.message)
            return touched
        for index, card in enumerate(cards):
            if index:
                self._sleep(CARD_DELAY_SECONDS)
            outcome = self.sync_episode(card.url, card_title=card.title or None)
            if outcome not in (NEW, UPDATED):
                continue
            slug = series_slug_from_episode_url(card.url, self.aliases)
            code = parse_episode_code(card.url)
            if slug and code:
                touched[slug] = code
        return touched

    def update_series(self, series_map: dict[str, tuple[int, int]]) -> None:
        for index, (slug, trigger) in enumerate(series_map.items()):
            if index:
                self._sleep(SERIES_DELAY_SECONDS)
            try:
                stored = self.store.get_series(slug)
            except StoreError as exc:
                logger.warning("[SYNC] cannot read series %s: %s", slug, exc)
                continue
            title = (stored or {}).get("title") or slug
            logger.info("[SYNC] completeness pass for %s (triggered by S%sE%s)", title, trigger[0], trigger[1])
            self.forget_series(slug)
            self.ensure_series_complete(slug, title=title)

    def process_due_retries(self, limit: int) -> int:
        try:
            due = self.store.due_retries(self.retry_policy.now_iso(), limit)
        except StoreError as exc:
            logger.error("[SYNC] retry schedule unavailable: %s", exc)
            return 0
        if due:
            logger.info("[SYNC] processing %d scheduled retr%s", len(due), "y" if len(due) == 1 else "ies")
        for index, entry in enumerate(due):
            if index:
                self._sleep(RETRY_DELAY_SECONDS)
            url = entry.episode_url or build_episode_url(
                self.site_origin, entry.series_slug, entry.season, entry.episode, self.aliases
            )
            outcome = self.sync_episode(
                url,
                series_slug=entry.series_slug,
                season=entry.season,
                episode=entry.episode,
                force=True,
                reason="scheduled-retry",
            )
            self._settle_retry(entry, outcome)
        return len(due)

    def _settle_retry(self, entry: RetryEntry, outcome: str | None) -> None:
        """A due entry loses one attempt even when the re-sync failed or found no server."""
        key = make_episode_key(entry.series_slug, entry.season, entry.episode)
        try:
            current = self.store.get_retry(entry.series_slug, entry.season, entry.episode)
            if current is None or current.attempt_count != entry.attempt_count or not self.retry_policy.is_due(current):
                return
            advanced = self.retry_policy.advance(current)
            self.store.upsert_retry(advanced)
        except StoreError as exc:
            logger.warning("[SYNC] cannot advance retry for %s: %s", key, exc)
            return
        logger.info(
            "[SYNC] retry %s for %s attempt=%d next=%s (outcome=%s)",
            advanced.status,
            key,
            advanced.attempt_count,
            advanced.next_attempt_at,
            outcome,
        )

    def audit_latest(self, limit: int) -> int:
        """Restore latest-index entries whose episode row has gone missing."""
        restored = 0
        try:
            entries = self.store.list_latest(limit)
        except StoreError as exc:
            logger.error("[SYNC] latest audit failed: %s", exc)
            return 0
        for entry in entries:
            slug, season, episode = entry["series_slug"], int(entry["season"]), int(entry["episode"])
            try:
                if self.store.episode_exists(slug, season, episode):
                    continue
            except StoreError as exc:
                logger.warning("[SYNC] latest audit check failed for %s: %s", slug, exc)
                continue
            logger.info("[SYNC] restoring %s S%sE%s from latest index", slug, season, episode)
            self.forget_series(slug)
            self.sync_episode(
                build_episode_url(self.site_origin, slug, season, episode, self.aliases),
                series_slug=slug,
                season=season,
                episode=episode,
                card_title=entry.get("episode_title"),
                force=True,
                reason="latest-audit",
            )
            restored += 1
            self._sleep(LATEST_AUDIT_DELAY_SECONDS)
        return restored

    def audit_empty_servers(self, limit: int) -> int:
        """Force a re-sync of recently updated episodes that have no usable server."""
        try:
            rows = self.store.episodes_without_servers(limit)
        except StoreError as exc:
            logger.error("[SYNC] empty-server audit failed: %s", exc)
            return 0
        for row in rows:
            slug, season, episode = row["series_slug"], int(row["season"]), int(row["episode"])
            self.forget_series(slug)
            self.sync_episode(
                build_episode_url(self.site_origin, slug, season, episode, self.aliases),
                series_slug=slug,
                season=season,
                episode=episode,
                force=True,
                reason="empty-servers",
            )
            self._sleep(EMPTY_AUDIT_DELAY_SECONDS)
        if rows:
            logger.info("[SYNC] re-synced %d episode(s) without servers", len(rows))
        return len(rows)
