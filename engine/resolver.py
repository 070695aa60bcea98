"""Recursive, depth-bounded resolution of embed references to playable URLs."""

from __future__ import annotations

import logging
import time
from typing import Callable, Iterable, Protocol

from bs4 import BeautifulSoup

from engine.models import ResolutionContext, ResolvedServer, ServerCandidate
from extraction.classifiers import UrlClassifier
from extraction.servers import FRAME_SOURCE_ATTRS, first_attr
from extraction.urls import is_site_url, normalize_url
from network.fetch import FetchError

logger = logging.getLogger(__name__)

CANDIDATE_DELAY_SECONDS = 0.3


class PageFetcher(Protocol):
    def fetch_with_retry(self, url: str, max_attempts: int | None = None, *, referer: str | None = None) -> str:
        ...


def _short(url: str | None, width: int = 80) -> str:
    if not url:
        return "none"
    return url if len(url) <= width else f"{url[:width]}..."


class VideoSourceResolver:
    """Walks an intermediate reference through iframes and scripts to a media URL.

    ``resolve`` returns the playable URL, the frontier URL when the depth bound
    or a cycle stops the walk, or ``None`` when a hop in the chain could not be
    fetched.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        classifier: UrlClassifier,
        *,
        max_depth: int = 5,
        fallback_referer: str | None = None,
        candidate_delay: float = CANDIDATE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.fetcher = fetcher
        self.classifier = classifier
        self.max_depth = max_depth
        self.fallback_referer = fallback_referer
        self.candidate_delay = candidate_delay
        self._sleep = sleep

    def resolve(self, url: str | None, *, referer: str | None = None) -> str | None:
        context = ResolutionContext(max_depth=self.max_depth)
        if referer:
            context.descend(referer)
        result = self._resolve(url, 0, context)
        logger.info("[RESOLVE] final=%s hops=%d", _short(result), len(context.visited))
        return result

    def _resolve(self, url: str | None, depth: int, context: ResolutionContext) -> str | None:
        if not url:
            return None
        if context.has_visited(url):
            return url
        if depth > context.max_depth:
            return url

        context.mark_visited(url)
        logger.debug("[RESOLVE] depth=%d url=%s", depth, _short(url))
        try:
            html = self.fetcher.fetch_with_retry(url, referer=context.referer or self.fallback_referer)
        except FetchError as exc:
            logger.warning("[RESOLVE] failed to load %s (depth %d): %s", _short(url), depth, exc.message)
            return None

        soup = BeautifulSoup(html or "", "html.parser")

        direct = self._pick_direct_media(soup, url)
        if direct and self.classifier.is_video(direct):
            return direct

        iframe = self._pick_iframe(soup, url, context)
        # At the depth bound nothing on this page is followed or returned, not even an
        # external player iframe; the frontier url comes back and callers reject it.
        can_descend = depth < context.max_depth
        if iframe and can_descend:
            if self.classifier.is_external(iframe):
                if self.classifier.player_signature(iframe) or self.classifier.is_video(iframe):
                    logger.debug("[RESOLVE] player iframe %s", _short(iframe))
                else:
                    # Unrecognized off-site iframes are accepted as the final target.
                    logger.debug("[RESOLVE] external iframe %s", _short(iframe))
                return iframe
            if self.classifier.needs_follow(iframe):
                return self._descend(iframe, url, depth, context)

        script_url = self._pick_from_scripts(soup, url, context)
        if script_url:
            if self.classifier.is_video(script_url):
                return script_url
            if self.classifier.needs_follow(script_url) and can_descend:
                return self._descend(script_url, url, depth, context)

        if iframe and can_descend:
            return self._descend(iframe, url, depth, context)

        return direct or url

    def _descend(self, target: str, parent: str, depth: int, context: ResolutionContext) -> str | None:
        context.descend(parent)
        try:
            return self._resolve(target, depth + 1, context)
        finally:
            context.ascend()

    def _pick_direct_media(self, soup: BeautifulSoup, base_url: str) -> str | None:
        for node in soup.find_all(["video", "source"]):
            normalized = normalize_url(first_attr(node, ("src", "data-src")), base_url)
            if normalized and not normalized.startswith("blob:"):
                return normalized
        return None

    def _pick_iframe(self, soup: BeautifulSoup, base_url: str, context: ResolutionContext) -> str | None:
        for frame in soup.find_all("iframe"):
            normalized = normalize_url(first_attr(frame, FRAME_SOURCE_ATTRS), base_url)
            if normalized and normalized != base_url and not context.has_visited(normalized):
                return normalized
        return None

    def _pick_from_scripts(self, soup: BeautifulSoup, base_url: str, context: ResolutionContext) -> str | None:
        scripts = [script.string or script.get_text() or "" for script in soup.find_all("script")]
        candidates = [
            candidate
            for candidate in self.classifier.script_candidates(scripts, base_url)
            if candidate != base_url and not context.has_visited(candidate)
        ]
        return self.classifier.pick_script_url(candidates)

    def accepts(self, resolved: str | None, intermediate: str) -> bool:
        """A resolved URL counts only when it left the source site and its redirection layer."""
        if not resolved or resolved == intermediate:
            return False
        if is_site_url(resolved, self.classifier.site_host):
            return False
        return "trembed" not in resolved

    def resolve_candidates(
        self, candidates: Iterable[ServerCandidate], *, referer: str | None = None
    ) -> list[ResolvedServer]:
        """Resolve each candidate in order; unresolved ones are kept with ``url=None``."""
        servers: list[ResolvedServer] = []
        for candidate in candidates:
            if candidate.direct_url:
                logger.info("[RESOLVE] direct external url=%s", _short(candidate.direct_url))
                servers.append(ResolvedServer(candidate.name, candidate.ordinal, candidate.direct_url))
                continue
            if not candidate.needs_resolution:
                continue
            resolved = self.resolve(candidate.intermediate_url, referer=referer)
            if self.accepts(resolved, candidate.intermediate_url):
                url = resolved
            else:
                logger.warning("[RESOLVE] could not resolve %s", _short(candidate.intermediate_url))
                url = None
            servers.append(
                ResolvedServer(
                    candidate.name,
                    candidate.ordinal,
                    url,
                    intermediate_url=candidate.intermediate_url,
                )
            )
            if self.candidate_delay:
                self._sleep(self.candidate_delay)
        return servers
