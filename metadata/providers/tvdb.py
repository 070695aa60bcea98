from __future__ import annotations

import logging
import os
import threading
from typing import Any

import requests

logger = logging.getLogger(__name__)

TVDB_BASE_URL = os.getenv("TVDB_BASE_URL", "https://api4.thetvdb.com/v4")
TVDB_ARTWORK_BASE = "https://artworks.thetvdb.com"
TVDB_TIMEOUT_SECONDS = 15


class TVDBClient:
    """Fallback episode artwork lookups against TheTVDB v4."""

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = TVDB_BASE_URL,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._token: str | None = None
        self._token_lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    def _login(self) -> str | None:
        with self._token_lock:
            if self._token:
                return self._token
            try:
                resp = self._session.post(
                    f"{self.base_url}/login",
                    json={"apikey": self.api_key},
                    timeout=TVDB_TIMEOUT_SECONDS,
                )
                resp.raise_for_status()
                self._token = ((resp.json() or {}).get("data") or {}).get("token")
            except (requests.RequestException, ValueError) as exc:
                logger.warning("[TVDB] login failed: %s", exc)
                return None
            return self._token

    def _get(self, endpoint: str, **params: Any) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        token = self._login()
        if not token:
            return None
        try:
            resp = self._session.get(
                f"{self.base_url}/{endpoint.lstrip('/')}",
                params=params or None,
                headers={"Authorization": f"Bearer {token}"},
                timeout=TVDB_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("[TVDB] request=%s failed: %s", endpoint, exc)
            return None
        return payload if isinstance(payload, dict) else None

    def search_series(self, title: str | None) -> str | None:
        if not title:
            return None
        payload = self._get("search", query=title, type="series")
        results = (payload or {}).get("data") or []
        if not results:
            return None
        return results[0].get("tvdb_id") or None

    def get_episode_image(self, tvdb_id: str | None, season: int, episode: int) -> str | None:
        if not tvdb_id:
            return None
        payload = self._get(f"series/{tvdb_id}/episodes/default", page=0)
        episodes = ((payload or {}).get("data") or {}).get("episodes") or []
        for item in episodes:
            if item.get("seasonNumber") == season and item.get("number") == episode and item.get("image"):
                image = str(item["image"])
                return image if image.startswith("http") else f"{TVDB_ARTWORK_BASE}{image}"
        return None

    def find_episode_image(self, title: str | None, season: int, episode: int) -> str | None:
        tvdb_id = self.search_series(title)
        if not tvdb_id:
            return None
        image = self.get_episode_image(tvdb_id, season, episode)
        if image:
            logger.info("[TVDB] episode image found for %s S%sE%s", title, season, episode)
        return image
