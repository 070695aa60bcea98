"""Scheduler job for one full catalog sync pass."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

from config.settings import SyncSettings
from db.catalog_store import CatalogStore
from db.local_cache import LocalCache
from engine.orchestrator import SyncOrchestrator
from engine.resolver import VideoSourceResolver
from engine.retry_policy import RetryPolicy
from engine.source_catalog import SourceCatalog
from extraction.classifiers import UrlClassifier
from metadata.enrichment import MetadataEnricher
from metadata.normalize import AliasTable
from metadata.providers.tmdb import TMDBClient
from metadata.providers.tvdb import TVDBClient
from network.fetch import Fetcher
from network.proxy_pool import ProxyPool

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    settings: SyncSettings
    proxy_pool: ProxyPool | None
    fetcher: Fetcher
    catalog: SourceCatalog
    store: CatalogStore
    series_cache: LocalCache
    episode_cache: LocalCache
    enricher: MetadataEnricher
    retry_policy: RetryPolicy
    aliases: AliasTable

    def new_orchestrator(self) -> SyncOrchestrator:
        """Each pass gets a fresh processed-set and fresh counters."""
        settings = self.settings
        resolver = VideoSourceResolver(
            self.fetcher,
            UrlClassifier(settings.site_host),
            max_depth=settings.resolution_max_depth,
            fallback_referer=settings.home_url,
        )
        return SyncOrchestrator(
            catalog=self.catalog,
            resolver=resolver,
            store=self.store,
            series_cache=self.series_cache,
            episode_cache=self.episode_cache,
            enricher=self.enricher,
            retry_policy=self.retry_policy,
            site_origin=settings.site_origin,
            site_host=settings.site_host,
            aliases=self.aliases,
        )


def build_sync_context(settings: SyncSettings) -> SyncContext:
    aliases = AliasTable.from_mapping(settings.aliases)
    proxy_pool = ProxyPool.from_settings(settings)
    proxy_pool.initialize()
    fetcher = Fetcher.from_settings(settings, proxy_pool if proxy_pool.enabled else None)
    catalog = SourceCatalog(
        fetcher,
        home_url=settings.home_url,
        homepage_candidates=settings.homepage_candidates,
        ajax_url=settings.ajax_url,
        site_origin=settings.site_origin,
        aliases=aliases,
    )

    db_dir = os.path.dirname(settings.db_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    tmdb = TMDBClient(settings.tmdb_api_key)
    if not tmdb.enabled:
        logger.warning("[TMDB] API key looks invalid; metadata enrichment will be skipped")
    tvdb = TVDBClient(settings.tvdb_api_key) if settings.tvdb_api_key else None

    return SyncContext(
        settings=settings,
        proxy_pool=proxy_pool,
        fetcher=fetcher,
        catalog=catalog,
        store=CatalogStore(settings.db_path),
        series_cache=LocalCache(settings.series_cache_path),
        episode_cache=LocalCache(settings.episode_cache_path),
        enricher=MetadataEnricher(tmdb if tmdb.enabled else None, tvdb, aliases=aliases),
        retry_policy=RetryPolicy(),
        aliases=aliases,
    )


def run_sync_pass(context: SyncContext, orchestrator: SyncOrchestrator | None = None) -> dict[str, Any]:
    """Retries, listing discovery, series completeness, then both audits."""
    settings = context.settings
    orchestrator = orchestrator or context.new_orchestrator()
    logger.info("[SYNC] pass started")

    orchestrator.process_due_retries(settings.retry_batch_limit)
    touched = orchestrator.poll_latest()
    if touched:
        logger.info("[SYNC] %d series with new episodes", len(touched))
        orchestrator.update_series(touched)
    orchestrator.audit_latest(settings.latest_audit_limit)
    orchestrator.audit_empty_servers(settings.empty_servers_audit_limit)

    summary = orchestrator.stats.summary()
    if context.proxy_pool is not None and context.proxy_pool.enabled:
        logger.info("[PROXY] pool stats: %s", context.proxy_pool.stats())
    logger.info(
        "[SYNC] pass complete new=%d updated=%d failed=%d skipped=%d servers=%d series=%d success=%.1f%%",
        summary["new"],
        summary["updated"],
        summary["failed"],
        summary["skipped"],
        summary["total_servers"],
        summary["series_touched"],
        summary["success_rate"],
    )
    return summary
