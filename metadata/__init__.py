"""Series metadata: title normalization and TMDB/TVDB enrichment."""
