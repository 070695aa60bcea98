"""Record types shared by the resolution engine and the sync orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def make_episode_key(slug: str, season: int, episode: int) -> str:
    return f"{slug}::{season}x{episode}"


def make_season_episode_key(season: int, episode: int) -> str:
    return f"{season}x{episode}"


def make_cache_key(slug: str, season: int, episode: int) -> str:
    return f"{slug}-{season}-{episode}"


@dataclass(frozen=True)
class FetchRequest:
    url: str
    referer: str | None = None
    timeout: float = 30.0
    headers: dict[str, str] = field(default_factory=dict)


@dataclass
class ResolutionContext:
    """Per-call resolution state. Never shared between top-level resolutions."""

    max_depth: int
    referer_chain: list[str] = field(default_factory=list)
    visited: list[str] = field(default_factory=list)
    _seen: set[str] = field(default_factory=set, repr=False)

    def has_visited(self, url: str) -> bool:
        return url in self._seen

    def mark_visited(self, url: str) -> None:
        if url in self._seen:
            return
        self._seen.add(url)
        self.visited.append(url)

    @property
    def referer(self) -> str | None:
        return self.referer_chain[-1] if self.referer_chain else None

    def descend(self, parent_url: str) -> None:
        self.referer_chain.append(parent_url)

    def ascend(self) -> None:
        if self.referer_chain:
            self.referer_chain.pop()


@dataclass(frozen=True)
class ServerCandidate:
    name: str
    ordinal: int
    intermediate_url: str | None = None
    direct_url: str | None = None

    @property
    def needs_resolution(self) -> bool:
        return self.direct_url is None and self.intermediate_url is not None


@dataclass
class ResolvedServer:
    name: str
    ordinal: int
    url: str | None
    intermediate_url: str | None = None
    type: str = "iframe"

    @property
    def usable(self) -> bool:
        return bool(self.url)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "option": self.ordinal,
            "url": self.url,
            "real_video": self.url,
            "type": self.type,
            "intermediate_url": self.intermediate_url,
        }


def count_usable_servers(servers: list[Any] | None) -> int:
    """Count servers carrying a resolved URL; accepts records or stored dicts."""
    total = 0
    for server in servers or []:
        if isinstance(server, ResolvedServer):
            total += 1 if server.usable else 0
        elif isinstance(server, dict) and (server.get("url") or server.get("real_video")):
            total += 1
    return total


@dataclass
class EpisodeRecord:
    """Canonical per-episode record. Identity is (series_slug, season, episode)."""

    series_slug: str
    season: int
    episode: int
    url: str
    title: str
    servers: list[ResolvedServer] = field(default_factory=list)
    thumbnail: str | None = None

    @property
    def key(self) -> str:
        return make_episode_key(self.series_slug, self.season, self.episode)

    @property
    def usable_server_count(self) -> int:
        return count_usable_servers(self.servers)

    def to_payload(self) -> dict[str, Any]:
        return {
            "series_slug": self.series_slug,
            "season": self.season,
            "episode": self.episode,
            "episode_url": self.url,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "episode_main_poster": self.thumbnail,
            "episode_card_thumbnail": self.thumbnail,
            "episode_list_thumbnail": self.thumbnail,
            "video_player_thumbnail": self.thumbnail,
            "servers": [server.to_dict() for server in self.servers],
        }


@dataclass
class RetryEntry:
    series_slug: str
    season: int
    episode: int
    episode_url: str | None
    next_attempt_at: str
    attempt_count: int = 0
    status: str = "pending"


@dataclass
class SyncStats:
    new: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    total_servers: int = 0
    series_touched: set[str] = field(default_factory=set)

    @property
    def total_processed(self) -> int:
        return self.new + self.updated + self.failed + self.skipped

    def summary(self) -> dict[str, Any]:
        processed = self.total_processed
        synced = self.new + self.updated
        return {
            "new": self.new,
            "updated": self.updated,
            "failed": self.failed,
            "skipped": self.skipped,
            "total_servers": self.total_servers,
            "series_touched": len(self.series_touched),
            "total_processed": processed,
            "success_rate": round(synced / processed * 100, 1) if processed else 0.0,
        }
