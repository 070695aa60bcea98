from __future__ import annotations

import logging

from bs4 import BeautifulSoup

from engine.models import ServerCandidate
from extraction.classifiers import UrlClassifier
from extraction.urls import normalize_url

logger = logging.getLogger(__name__)

PLAYER_OPTION_SELECTOR = "li.dooplay_player_option"
SOURCE_BOX_SELECTOR = ".dooplay_player_option, .source-box, .video-source"
FRAME_SOURCE_ATTRS = ("src", "data-src", "data-lazy-src")


def build_redirection_url(site_origin: str, post: str, nume: str, kind: str | None) -> str:
    return f"{site_origin.rstrip('/')}/?trembed={nume}&trid={post}&trtype={kind or '2'}"


def first_attr(node, attrs) -> str | None:
    for attr in attrs:
        value = node.get(attr)
        if value and str(value).strip():
            return str(value).strip()
    return None


def extract_server_candidates(
    html: str,
    page_url: str,
    *,
    site_origin: str,
    classifier: UrlClassifier,
) -> list[ServerCandidate]:
    """Server candidates in discovery order, de-duplicated by absolute URL.

    Player options become constructed redirection URLs, option boxes already
    carrying the redirection query are taken as-is, and plain iframes are split
    into external (direct) and needs-follow (intermediate) references.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    seen: set[str] = set()
    found: list[tuple[str, bool]] = []

    def _add(url: str | None, direct: bool = False) -> None:
        if not url or url in seen:
            return
        seen.add(url)
        found.append((url, direct))

    for option in soup.select(PLAYER_OPTION_SELECTOR):
        post = (option.get("data-post") or "").strip()
        nume = (option.get("data-nume") or "").strip()
        if not post or not nume:
            continue
        kind = (option.get("data-type") or "").strip() or None
        _add(build_redirection_url(site_origin, post, nume, kind))

    for box in soup.select(SOURCE_BOX_SELECTOR):
        anchor = box.find("a")
        raw = (anchor.get("href") if anchor is not None else None) or box.get("href") or box.get("data-url")
        if raw and "trembed" in raw:
            _add(normalize_url(raw, page_url))

    for frame in soup.find_all("iframe"):
        url = normalize_url(first_attr(frame, FRAME_SOURCE_ATTRS), page_url)
        if url and not url.startswith("blob:"):
            _add(url, direct=classifier.is_external(url))

    candidates = []
    for ordinal, (url, direct) in enumerate(found, start=1):
        candidates.append(
            ServerCandidate(
                name=f"Server {ordinal}",
                ordinal=ordinal,
                intermediate_url=None if direct else url,
                direct_url=url if direct else None,
            )
        )
    logger.debug("[RESOLVE] %d server candidate(s) on %s", len(candidates), page_url)
    return candidates
