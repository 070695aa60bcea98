"""Egress layer: proxy rotation and retrying page fetches."""

from network.fetch import FetchError, Fetcher, build_request_headers
from network.proxy_pool import ProxyEntry, ProxyPool, normalize_proxy_entry

__all__ = [
    "FetchError",
    "Fetcher",
    "ProxyEntry",
    "ProxyPool",
    "build_request_headers",
    "normalize_proxy_entry",
]
