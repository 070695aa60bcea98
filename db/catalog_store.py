"""Document-style SQLite store for series, episodes, retries and the latest index."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import datetime, timezone
from typing import Any

from db.migrations import ensure_catalog_tables
from engine.models import EpisodeRecord, RetryEntry

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the store rejects a read or write."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _require(value: str | None, name: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise ValueError(f"{name} is required")
    return cleaned


def _decode(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return payload if isinstance(payload, dict) else {}


class CatalogStore:
    """Upsert-by-key persistence. Every call opens its own connection, so reads follow writes."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        ensure_catalog_tables(conn)
        return conn

    def _execute(self, sql: str, params: tuple = (), *, fetch: str | None = None):
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise StoreError(f"cannot open catalog store {self.db_path}: {exc}") from exc
        try:
            cur = conn.cursor()
            cur.execute(sql, params)
            if fetch == "one":
                return cur.fetchone()
            if fetch == "all":
                return cur.fetchall()
            conn.commit()
            return cur.rowcount
        except sqlite3.Error as exc:
            logger.error("[STORE] query failed: %s", exc)
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    # series

    def get_series(self, slug: str) -> dict[str, Any] | None:
        row = self._execute(
            "SELECT payload, random_key FROM series WHERE slug=?",
            (_require(slug, "slug"),),
            fetch="one",
        )
        if not row:
            return None
        payload = _decode(row["payload"])
        payload["slug"] = slug
        payload["random_key"] = row["random_key"]
        return payload

    def upsert_series(self, record: dict[str, Any]) -> dict[str, Any]:
        slug = _require(record.get("slug"), "slug")
        now = utc_now_iso()
        payload = dict(record)
        payload.pop("random_key", None)
        self._execute(
            """
            INSERT INTO series (slug, title, tmdb_id, random_key, payload, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(slug) DO UPDATE SET
                title=excluded.title,
                tmdb_id=excluded.tmdb_id,
                payload=excluded.payload,
                updated_at=excluded.updated_at
            """,
            (
                slug,
                payload.get("title"),
                payload.get("tmdb_id"),
                uuid.uuid4().hex,
                json.dumps(payload, ensure_ascii=False, sort_keys=True),
                now,
                now,
            ),
        )
        logger.info("[STORE] series upserted slug=%s", slug)
        return self.get_series(slug) or payload

    def refresh_series_random_key(self, slug: str) -> str:
        key = uuid.uuid4().hex
        self._execute(
            "UPDATE series SET random_key=?, updated_at=? WHERE slug=?",
            (key, utc_now_iso(), _require(slug, "slug")),
        )
        return key

    # episodes

    def get_episode(self, slug: str, season: int, episode: int) -> dict[str, Any] | None:
        row = self._execute(
            """
            SELECT payload, server_count, updated_at
            FROM episodes
            WHERE series_slug=? AND season=? AND episode=?
            """,
            (_require(slug, "slug"), int(season), int(episode)),
            fetch="one",
        )
        if not row:
            return None
        payload = _decode(row["payload"])
        payload["server_count"] = int(row["server_count"])
        payload["updated_at"] = row["updated_at"]
        return payload

    def episode_exists(self, slug: str, season: int, episode: int) -> bool:
        row = self._execute(
            "SELECT 1 FROM episodes WHERE series_slug=? AND season=? AND episode=?",
            (_require(slug, "slug"), int(season), int(episode)),
            fetch="one",
        )
        return row is not None

    def upsert_episode(self, record: EpisodeRecord, *, series_title: str | None = None) -> None:
        slug = _require(record.series_slug, "series_slug")
        now = utc_now_iso()
        payload = record.to_payload()
        payload["series_title"] = series_title
        self._execute(
            """
            INSERT INTO episodes (
                series_slug, season, episode, episode_url, title, thumbnail,
                server_count, payload, created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(series_slug, season, episode) DO UPDATE SET
                episode_url=excluded.episode_url,
                title=excluded.title,
                thumbnail=excluded.thumbnail,
                server_count=excluded.server_count,
                payload=excluded.payload,
                updated_at=excluded.updated_at
            """,
            (
                slug,
                int(record.season),
                int(record.episode),
                record.url,
                record.title,
                record.thumbnail,
                record.usable_server_count,
                json.dumps(payload, ensure_ascii=False, sort_keys=True),
                now,
                now,
            ),
        )
        logger.info(
            "[STORE] episode upserted key=%s servers=%d", record.key, record.usable_server_count
        )

    def list_episode_codes(self, slug: str) -> set[tuple[int, int]]:
        rows = self._execute(
            "SELECT season, episode FROM episodes WHERE series_slug=?",
            (_require(slug, "slug"),),
            fetch="all",
        )
        return {(int(row["season"]), int(row["episode"])) for row in rows}

    def episodes_without_servers(self, limit: int) -> list[dict[str, Any]]:
        rows = self._execute(
            """
            SELECT series_slug, season, episode, episode_url
            FROM episodes
            WHERE server_count=0
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (max(0, int(limit)),),
            fetch="all",
        )
        return [dict(row) for row in rows]

    # retry schedule

    def get_retry(self, slug: str, season: int, episode: int) -> RetryEntry | None:
        row = self._execute(
            """
            SELECT series_slug, season, episode, episode_url, next_attempt_at, attempt_count, status
            FROM episode_retries
            WHERE series_slug=? AND season=? AND episode=?
            """,
            (_require(slug, "slug"), int(season), int(episode)),
            fetch="one",
        )
        return RetryEntry(**dict(row)) if row else None

    def upsert_retry(self, entry: RetryEntry) -> None:
        self._execute(
            """
            INSERT INTO episode_retries (
                series_slug, season, episode, episode_url, next_attempt_at,
                attempt_count, status, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(series_slug, season, episode) DO UPDATE SET
                episode_url=excluded.episode_url,
                next_attempt_at=excluded.next_attempt_at,
                attempt_count=excluded.attempt_count,
                status=excluded.status,
                updated_at=excluded.updated_at
            """,
            (
                _require(entry.series_slug, "series_slug"),
                int(entry.season),
                int(entry.episode),
                entry.episode_url,
                entry.next_attempt_at,
                int(entry.attempt_count),
                entry.status,
                utc_now_iso(),
            ),
        )

    def delete_retry(self, slug: str, season: int, episode: int) -> bool:
        deleted = self._execute(
            "DELETE FROM episode_retries WHERE series_slug=? AND season=? AND episode=?",
            (_require(slug, "slug"), int(season), int(episode)),
        )
        return bool(deleted)

    def due_retries(self, now_iso: str, limit: int) -> list[RetryEntry]:
        rows = self._execute(
            """
            SELECT series_slug, season, episode, episode_url, next_attempt_at, attempt_count, status
            FROM episode_retries
            WHERE status='pending' AND next_attempt_at <= ?
            ORDER BY next_attempt_at ASC
            LIMIT ?
            """,
            (now_iso, max(0, int(limit))),
            fetch="all",
        )
        return [RetryEntry(**dict(row)) for row in rows]

    # latest index

    def upsert_latest(self, record: EpisodeRecord, *, series_title: str | None = None) -> None:
        self._execute(
            """
            INSERT INTO latest_episodes (
                series_slug, season, episode, series_title, episode_title,
                episode_url, thumbnail, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(series_slug, season, episode) DO UPDATE SET
                series_title=excluded.series_title,
                episode_title=excluded.episode_title,
                episode_url=excluded.episode_url,
                thumbnail=excluded.thumbnail,
                updated_at=excluded.updated_at
            """,
            (
                _require(record.series_slug, "series_slug"),
                int(record.season),
                int(record.episode),
                series_title,
                record.title,
                record.url,
                record.thumbnail,
                utc_now_iso(),
            ),
        )

    def list_latest(self, limit: int) -> list[dict[str, Any]]:
        rows = self._execute(
            """
            SELECT series_slug, season, episode, series_title, episode_title, episode_url, thumbnail, updated_at
            FROM latest_episodes
            ORDER BY updated_at DESC
            LIMIT ?
            """,
            (max(0, int(limit)),),
            fetch="all",
        )
        return [dict(row) for row in rows]
