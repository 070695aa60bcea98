from metadata.providers.tmdb import TMDBClient
from metadata.providers.tvdb import TVDBClient

__all__ = ["TMDBClient", "TVDBClient"]
