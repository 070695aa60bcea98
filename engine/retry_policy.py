from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence

from config.settings import MAX_RETRY_ATTEMPTS, RETRY_INTERVALS_HOURS
from engine.models import RetryEntry

PENDING = "pending"
EXHAUSTED = "exhausted"

SCHEDULE = "schedule"
CLEAR = "clear"
KEEP = "keep"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class RetryDecision:
    action: str
    entry: RetryEntry | None = None


class RetryPolicy:
    """Schedules re-resolution of episodes that came back with a single usable server.

    The first entry gets attempt count 0 at the first interval. Every pass over a
    due entry advances it, whatever the outcome: the count goes up and the next
    interval applies, and at ``max_attempts`` the entry is left exhausted and is
    never due again. Two or more servers clear the entry. Zero servers on an
    entry that is not due leave it alone.
    """

    def __init__(
        self,
        intervals_hours: Sequence[float] = RETRY_INTERVALS_HOURS,
        *,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        if not intervals_hours:
            raise ValueError("intervals_hours must not be empty")
        self.intervals = tuple(timedelta(hours=hours) for hours in intervals_hours)
        self.max_attempts = max(1, int(max_attempts))
        self.clock = clock

    def interval_for(self, attempt: int) -> timedelta:
        return self.intervals[min(attempt, len(self.intervals) - 1)]

    def now_iso(self) -> str:
        return to_iso(self.clock())

    def is_due(self, entry: RetryEntry) -> bool:
        return entry.status == PENDING and entry.next_attempt_at <= self.now_iso()

    def decide(
        self,
        existing: RetryEntry | None,
        usable_servers: int,
        *,
        series_slug: str,
        season: int,
        episode: int,
        episode_url: str | None,
    ) -> RetryDecision:
        if usable_servers >= 2:
            return RetryDecision(CLEAR if existing is not None else KEEP)
        if usable_servers < 1:
            if existing is not None and self.is_due(existing):
                return RetryDecision(SCHEDULE, self.advance(existing, episode_url))
            return RetryDecision(KEEP, existing)

        now = self.clock()
        if existing is None:
            return RetryDecision(
                SCHEDULE,
                RetryEntry(
                    series_slug=series_slug,
                    season=season,
                    episode=episode,
                    episode_url=episode_url,
                    next_attempt_at=to_iso(now + self.interval_for(0)),
                    attempt_count=0,
                    status=PENDING,
                ),
            )
        if not self.is_due(existing):
            return RetryDecision(KEEP, existing)

        return RetryDecision(SCHEDULE, self.advance(existing, episode_url))

    def advance(self, existing: RetryEntry, episode_url: str | None = None) -> RetryEntry:
        """Count one more attempt against ``existing`` and push it to the next interval."""
        attempt = existing.attempt_count + 1
        if attempt >= self.max_attempts:
            return replace(existing, attempt_count=attempt, status=EXHAUSTED)
        return replace(
            existing,
            episode_url=episode_url or existing.episode_url,
            attempt_count=attempt,
            next_attempt_at=to_iso(self.clock() + self.interval_for(attempt)),
            status=PENDING,
        )
