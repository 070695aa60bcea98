from __future__ import annotations

from datetime import datetime, timezone

from apscheduler.triggers.interval import IntervalTrigger

from config.settings import SyncSettings
from db.catalog_store import CatalogStore
from db.local_cache import LocalCache
from engine.orchestrator import SyncOrchestrator
from engine.resolver import VideoSourceResolver
from engine.retry_policy import RetryPolicy
from engine.source_catalog import SourceCatalog
from extraction.classifiers import UrlClassifier
from metadata.normalize import EMPTY_ALIASES
from network.fetch import FetchError
from scheduler.jobs.sync_pass import SyncContext, run_sync_pass
from scheduler.runner import SYNC_JOB_ID, build_scheduler

SITE = "https://site.test"
HOME = f"{SITE}/home/"
SERIES_URL = f"{SITE}/series/show/"


class _MockFetcher:
    def __init__(self, pages: dict[str, str]) -> None:
        self.pages = pages

    def fetch_with_retry(self, url, max_attempts=None, *, referer=None):
        if url not in self.pages:
            raise FetchError(url, "HTTP 404")
        return self.pages[url]

    def post_form(self, url, data, *, referer=None):
        raise FetchError(url, "HTTP 400")


class _MockEnricher:
    def lookup_series(self, title, slug=None, kind="tv"):
        return {"tmdb_id": 5, "poster": "https://image.tmdb.org/t/p/original/p.jpg"}

    def episode_image(self, series, season, episode):
        return f"https://image.tmdb.org/t/p/original/{season}-{episode}.jpg"


def _pages() -> dict[str, str]:
    pages = {
        HOME: (
            '<article class="post episodes"><h2 class="entry-title">Show 1x2</h2>'
            f'<a href="{SITE}/episode/show-1x2/"></a></article>'
        ),
        SERIES_URL: (
            '<h1 class="entry-title">Show</h1>'
            f'<a href="{SITE}/episode/show-1x1/">1</a><a href="{SITE}/episode/show-1x2/">2</a>'
        ),
    }
    for episode in (1, 2):
        post = 100 + episode
        pages[f"{SITE}/episode/show-1x{episode}/"] = "".join(
            f'<li class="dooplay_player_option" data-post="{post}" data-nume="{n}" data-type="tv"></li>'
            for n in (1, 2)
        )
        for n in (1, 2):
            pages[f"{SITE}/?trembed={n}&trid={post}&trtype=tv"] = (
                f'<iframe src="https://player.example/e/{post}-{n}"></iframe>'
            )
    return pages


def _context(tmp_path) -> tuple[SyncContext, SyncOrchestrator]:
    settings = SyncSettings(tmdb_api_key="k" * 32, home_url=HOME, db_path=str(tmp_path / "catalog.sqlite3"))
    fetcher = _MockFetcher(_pages())
    catalog = SourceCatalog(
        fetcher,
        home_url=HOME,
        homepage_candidates=[HOME],
        ajax_url=f"{SITE}/wp-admin/admin-ajax.php",
        site_origin=SITE,
        sleep=lambda _s: None,
    )
    context = SyncContext(
        settings=settings,
        proxy_pool=None,
        fetcher=fetcher,
        catalog=catalog,
        store=CatalogStore(settings.db_path),
        series_cache=LocalCache(tmp_path / "series_cache.json"),
        episode_cache=LocalCache(tmp_path / "episode_cache.json"),
        enricher=_MockEnricher(),
        retry_policy=RetryPolicy(clock=lambda: datetime(2026, 3, 1, tzinfo=timezone.utc)),
        aliases=EMPTY_ALIASES,
    )
    orchestrator = SyncOrchestrator(
        catalog=catalog,
        resolver=VideoSourceResolver(fetcher, UrlClassifier("site.test"), candidate_delay=0),
        store=context.store,
        series_cache=context.series_cache,
        episode_cache=context.episode_cache,
        enricher=context.enricher,
        retry_policy=context.retry_policy,
        site_origin=SITE,
        site_host="site.test",
        sleep=lambda _s: None,
    )
    return context, orchestrator


def test_pass_discovers_listing_then_backfills_touched_series(tmp_path) -> None:
    context, orchestrator = _context(tmp_path)

    summary = run_sync_pass(context, orchestrator)

    assert summary == {
        "new": 2,
        "updated": 0,
        "failed": 0,
        "skipped": 0,
        "total_servers": 4,
        "series_touched": 1,
        "total_processed": 2,
        "success_rate": 100.0,
    }
    assert context.store.list_episode_codes("show") == {(1, 1), (1, 2)}


def test_second_pass_writes_nothing_new(tmp_path) -> None:
    context, orchestrator = _context(tmp_path)
    run_sync_pass(context, orchestrator)

    _, fresh = _context(tmp_path)
    summary = run_sync_pass(context, fresh)

    assert (summary["new"], summary["updated"], summary["failed"]) == (0, 0, 0)
    assert summary["skipped"] == 1


def test_watch_scheduler_runs_single_instance_on_interval(tmp_path) -> None:
    context, _ = _context(tmp_path)

    scheduler = build_scheduler(context, run_now=False)
    job = scheduler.get_job(SYNC_JOB_ID)

    assert isinstance(job.trigger, IntervalTrigger)
    assert job.trigger.interval.total_seconds() == context.settings.poll_interval_seconds
    assert job.max_instances == 1
