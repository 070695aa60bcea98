from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from metadata.providers.base import SeriesDetails

logger = logging.getLogger(__name__)

TMDB_BASE_URL = os.getenv("TMDB_BASE_URL", "https://api.themoviedb.org/3")
TMDB_IMAGE_BASE = "https://image.tmdb.org/t/p/original"
TMDB_TIMEOUT_SECONDS = float(os.getenv("TMDB_TIMEOUT_SECONDS", "15"))
TMDB_MIN_INTERVAL_SECONDS = float(os.getenv("TMDB_MIN_INTERVAL_SECONDS", "0.25"))
MIN_API_KEY_LENGTH = 20
GALLERY_LIMIT = 5


def image_url(path: str | None) -> str | None:
    if not path:
        return None
    return f"{TMDB_IMAGE_BASE}{path}"


class TMDBClient:
    """Best-effort TMDB lookups. Every public method returns ``None``/empty on failure."""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = TMDB_BASE_URL,
        timeout: float = TMDB_TIMEOUT_SECONDS,
        min_interval_seconds: float = TMDB_MIN_INTERVAL_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.min_interval_seconds = max(0.0, min_interval_seconds)
        self._rate_lock = threading.Lock()
        self._last_request_ts = 0.0
        if session is None:
            session = requests.Session()
            retry = Retry(
                total=3,
                backoff_factor=0.4,
                status_forcelist=(429, 500, 502, 503, 504),
                allowed_methods=frozenset({"GET"}),
                respect_retry_after_header=True,
            )
            adapter = HTTPAdapter(max_retries=retry)
            session.mount("https://", adapter)
            session.mount("http://", adapter)
        self._session = session

    @property
    def enabled(self) -> bool:
        return len(self.api_key) >= MIN_API_KEY_LENGTH

    def _sleep_for_rate_limit(self) -> None:
        with self._rate_lock:
            elapsed = time.monotonic() - self._last_request_ts
            wait_for = self.min_interval_seconds - elapsed
            if wait_for > 0:
                time.sleep(wait_for)
            self._last_request_ts = time.monotonic()

    def _get(self, endpoint: str, **params: Any) -> dict[str, Any] | None:
        if not self.enabled:
            logger.warning("[TMDB] API key missing or too short, skipping request=%s", endpoint)
            return None
        self._sleep_for_rate_limit()
        query = {"api_key": self.api_key, "language": "en-US", **params}
        try:
            resp = self._session.get(f"{self.base_url}/{endpoint.lstrip('/')}", params=query, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning("[TMDB] request=%s status=error error=%s", endpoint, exc)
            return None
        status = int(resp.status_code)
        logger.info("[TMDB] request=%s status=%s", endpoint, status)
        if status == 401:
            logger.error("[TMDB] API key rejected; update TMDB_API_KEY")
            return None
        if status != 200:
            return None
        try:
            payload = resp.json()
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    def search(self, title: str | None, kind: str = "tv") -> int | None:
        query = (title or "").strip()
        if not query:
            return None
        payload = self._get(f"search/{kind}", query=query)
        results = (payload or {}).get("results") or []
        if not results:
            logger.info("[TMDB] no results for %r", query)
            return None
        first = results[0]
        logger.info("[TMDB] %d result(s) for %r, using %r", len(results), query, first.get("name") or first.get("title"))
        return first.get("id")

    def get_details(self, provider_id: int | None, kind: str = "tv") -> SeriesDetails | None:
        if not provider_id:
            return None
        data = self._get(f"{kind}/{provider_id}", append_to_response="images")
        if not data:
            return None
        posters = _gallery(data.get("poster_path"), (data.get("images") or {}).get("posters"))
        backdrops = _gallery(data.get("backdrop_path"), (data.get("images") or {}).get("backdrops"))
        release_date = data.get("first_air_date") or data.get("release_date") or None
        rating = data.get("vote_average")
        popularity = data.get("popularity")
        return SeriesDetails(
            tmdb_id=data.get("id"),
            title=data.get("name") or data.get("title"),
            description=data.get("overview") or None,
            rating=round(float(rating), 2) if rating else None,
            popularity=round(float(popularity), 3) if popularity else None,
            status=data.get("status"),
            genres=[genre.get("name") for genre in data.get("genres") or [] if genre.get("name")],
            studios=[company.get("name") for company in data.get("production_companies") or [] if company.get("name")],
            release_date=release_date,
            year=int(release_date[:4]) if release_date and release_date[:4].isdigit() else None,
            total_seasons=data.get("number_of_seasons"),
            total_episodes=data.get("number_of_episodes"),
            posters=posters,
            backdrops=backdrops,
            poster=posters[0] if posters else None,
            banner_image=backdrops[0] if backdrops else None,
        )

    def get_episode_image(self, provider_id: int | None, season: int, episode: int) -> str | None:
        if not provider_id:
            return None
        data = self._get(f"tv/{provider_id}/season/{season}/episode/{episode}")
        return image_url((data or {}).get("still_path"))

    def get_season_episode_images(self, provider_id: int | None, season: int) -> dict[int, str]:
        if not provider_id:
            return {}
        data = self._get(f"tv/{provider_id}/season/{season}")
        images: dict[int, str] = {}
        for item in (data or {}).get("episodes") or []:
            still = image_url(item.get("still_path"))
            number = item.get("episode_number")
            if still and number is not None:
                images[int(number)] = still
        return images


def _gallery(primary: str | None, extra: list[dict[str, Any]] | None) -> list[str]:
    urls: list[str] = []
    first = image_url(primary)
    if first:
        urls.append(first)
    for item in (extra or [])[:GALLERY_LIMIT]:
        url = image_url(item.get("file_path"))
        if url and url not in urls:
            urls.append(url)
    return urls
