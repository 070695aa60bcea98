from __future__ import annotations

from typing import Any

import requests

from metadata.enrichment import MetadataEnricher
from metadata.providers.tmdb import TMDB_IMAGE_BASE, TMDBClient

API_KEY = "k" * 32


class _MockResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _MockSession:
    def __init__(self, routes: dict[str, Any]) -> None:
        self.routes = routes
        self.calls: list[tuple[str, dict]] = []

    def get(self, url, params=None, timeout=None):
        self.calls.append((url, dict(params or {})))
        route = self.routes.get(url.split("/3/", 1)[1])
        if isinstance(route, Exception):
            raise route
        if route is None:
            return _MockResponse(404, {})
        return route


def _client(routes: dict[str, Any], api_key: str = API_KEY) -> tuple[TMDBClient, _MockSession]:
    session = _MockSession(routes)
    client = TMDBClient(
        api_key,
        base_url="https://api.themoviedb.org/3",
        min_interval_seconds=0,
        session=session,
    )
    return client, session


def test_search_returns_first_result_id() -> None:
    client, session = _client(
        {"search/tv": _MockResponse(200, {"results": [{"id": 31910, "name": "Naruto"}, {"id": 1}]})}
    )

    assert client.search("Naruto") == 31910
    assert session.calls[0][1]["query"] == "Naruto"
    assert session.calls[0][1]["api_key"] == API_KEY


def test_details_map_images_and_scores() -> None:
    client, _ = _client(
        {
            "tv/7": _MockResponse(
                200,
                {
                    "id": 7,
                    "name": "Show",
                    "overview": "Plot.",
                    "vote_average": 8.456,
                    "first_air_date": "2019-04-06",
                    "genres": [{"name": "Animation"}, {"name": "Action"}],
                    "poster_path": "/p.jpg",
                    "backdrop_path": "/b.jpg",
                    "images": {"posters": [{"file_path": "/p.jpg"}, {"file_path": "/p2.jpg"}], "backdrops": []},
                    "number_of_seasons": 3,
                },
            )
        }
    )

    details = client.get_details(7)

    assert details["rating"] == 8.46
    assert details["year"] == 2019
    assert details["genres"] == ["Animation", "Action"]
    assert details["posters"] == [f"{TMDB_IMAGE_BASE}/p.jpg", f"{TMDB_IMAGE_BASE}/p2.jpg"]
    assert details["poster"] == f"{TMDB_IMAGE_BASE}/p.jpg"
    assert details["banner_image"] == f"{TMDB_IMAGE_BASE}/b.jpg"


def test_failures_yield_none_instead_of_raising() -> None:
    client, _ = _client(
        {
            "search/tv": _MockResponse(401, {}),
            "tv/1": requests.ConnectionError("offline"),
            "tv/2": _MockResponse(200, ValueError("not json")),
        }
    )

    assert client.search("Anything") is None
    assert client.get_details(1) is None
    assert client.get_details(2) is None
    assert client.get_episode_image(None, 1, 1) is None


def test_short_api_key_disables_requests() -> None:
    client, session = _client({}, api_key="short")

    assert client.enabled is False
    assert client.search("Show") is None
    assert session.calls == []


def test_season_episode_images() -> None:
    client, _ = _client(
        {
            "tv/7/season/1": _MockResponse(
                200,
                {"episodes": [{"episode_number": 1, "still_path": "/s1.jpg"}, {"episode_number": 2, "still_path": None}]},
            )
        }
    )

    assert client.get_season_episode_images(7, 1) == {1: f"{TMDB_IMAGE_BASE}/s1.jpg"}


class _MockProvider:
    def __init__(self) -> None:
        self.queries: list[str] = []
        self.season_calls = 0

    def search(self, title, kind="tv"):
        self.queries.append(title)
        return 7 if title == "My Show" else None

    def get_details(self, provider_id, kind="tv"):
        return {"tmdb_id": provider_id, "poster": "https://image.tmdb.org/t/p/original/p.jpg"}

    def get_episode_image(self, provider_id, season, episode):
        return None

    def get_season_episode_images(self, provider_id, season):
        self.season_calls += 1
        return {1: "https://image.tmdb.org/t/p/original/s1e1.jpg"}


class _MockFallback:
    def find_episode_image(self, title, season, episode):
        return "https://artworks.thetvdb.com/e2.jpg" if episode == 2 else None


def test_enricher_searches_slug_name_first() -> None:
    provider = _MockProvider()
    enricher = MetadataEnricher(provider)

    details = enricher.lookup_series("Some Listing Title Season 2", "my-show")

    assert details["tmdb_id"] == 7
    assert provider.queries == ["My Show"]


def test_enricher_image_chain() -> None:
    provider = _MockProvider()
    enricher = MetadataEnricher(provider, _MockFallback())
    series = {"tmdb_id": 7, "title": "My Show", "tmdb_poster": "https://image.tmdb.org/t/p/original/p.jpg"}

    assert enricher.episode_image(series, 1, 1) == "https://image.tmdb.org/t/p/original/s1e1.jpg"
    assert enricher.episode_image(series, 1, 2) == "https://artworks.thetvdb.com/e2.jpg"
    assert enricher.episode_image(series, 1, 3) == "https://image.tmdb.org/t/p/original/p.jpg"
    assert provider.season_calls == 1


def test_enricher_without_provider_is_inert() -> None:
    enricher = MetadataEnricher(None)

    assert enricher.lookup_series("Show", "show") is None
    assert enricher.episode_image({"title": "Show"}, 1, 1) is None
