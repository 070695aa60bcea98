"""SQLite migrations for the catalog store."""

from __future__ import annotations

import sqlite3


def ensure_catalog_tables(conn: sqlite3.Connection) -> None:
    """Ensure series, episode, retry-schedule and latest-index tables exist."""
    cur = conn.cursor()
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS series (
            slug TEXT PRIMARY KEY,
            title TEXT,
            tmdb_id INTEGER,
            random_key TEXT,
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS episodes (
            series_slug TEXT NOT NULL,
            season INTEGER NOT NULL,
            episode INTEGER NOT NULL,
            episode_url TEXT,
            title TEXT,
            thumbnail TEXT,
            server_count INTEGER NOT NULL DEFAULT 0,
            payload TEXT NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (series_slug, season, episode)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_episodes_updated_at "
        "ON episodes (updated_at DESC)"
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_episodes_server_count "
        "ON episodes (server_count, updated_at DESC)"
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS episode_retries (
            series_slug TEXT NOT NULL,
            season INTEGER NOT NULL,
            episode INTEGER NOT NULL,
            episode_url TEXT,
            next_attempt_at TEXT NOT NULL,
            attempt_count INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'pending',
            updated_at TEXT NOT NULL,
            PRIMARY KEY (series_slug, season, episode)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_episode_retries_due "
        "ON episode_retries (status, next_attempt_at)"
    )
    cur.execute(
        """
        CREATE TABLE IF NOT EXISTS latest_episodes (
            series_slug TEXT NOT NULL,
            season INTEGER NOT NULL,
            episode INTEGER NOT NULL,
            series_title TEXT,
            episode_title TEXT,
            episode_url TEXT,
            thumbnail TEXT,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (series_slug, season, episode)
        )
        """
    )
    cur.execute(
        "CREATE INDEX IF NOT EXISTS idx_latest_episodes_updated_at "
        "ON latest_episodes (updated_at DESC)"
    )
    conn.commit()
