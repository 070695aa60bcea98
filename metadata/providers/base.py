from typing import Protocol, TypedDict


class SeriesDetails(TypedDict, total=False):
    tmdb_id: int
    title: str | None
    description: str | None
    rating: float | None
    popularity: float | None
    status: str | None
    genres: list[str]
    studios: list[str]
    release_date: str | None
    year: int | None
    total_seasons: int | None
    total_episodes: int | None
    posters: list[str]
    backdrops: list[str]
    poster: str | None
    banner_image: str | None


class MetadataProvider(Protocol):
    def search(self, title, kind="tv") -> int | None:
        raise NotImplementedError

    def get_details(self, provider_id, kind="tv") -> SeriesDetails | None:
        raise NotImplementedError

    def get_episode_image(self, provider_id, season, episode) -> str | None:
        raise NotImplementedError

    def get_season_episode_images(self, provider_id, season) -> dict[int, str]:
        raise NotImplementedError


class EpisodeImageFallback(Protocol):
    def find_episode_image(self, title, season, episode) -> str | None:
        raise NotImplementedError
