"""HTML and script extraction for the source site and embed pages."""
