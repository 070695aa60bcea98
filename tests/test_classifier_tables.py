from __future__ import annotations

import pytest

from extraction.classifiers import (
    FOLLOW_RULES,
    PLAYER_SIGNATURES,
    SCRIPT_URL_EXTRACTORS,
    VIDEO_URL_RULES,
    UrlClassifier,
)

SITE = "site.test"


@pytest.fixture
def classifier() -> UrlClassifier:
    return UrlClassifier(SITE)


def test_table_order_is_stable() -> None:
    assert [rule.name for rule in VIDEO_URL_RULES] == [
        "media-extension",
        "streaming-path",
        "google-media-host",
        "known-media-host",
    ]
    assert [rule.name for rule in FOLLOW_RULES] == ["redirection-marker", "source-site", "embed-path"]
    assert [extractor.name for extractor in SCRIPT_URL_EXTRACTORS] == [
        "media-key-value",
        "embed-src",
        "json-double-quoted",
        "json-single-quoted",
        "player-setup",
        "bare-media-url",
        "bare-url",
    ]
    assert PLAYER_SIGNATURES[:2] == ("play.", "player.")


@pytest.mark.parametrize(
    ("url", "rule"),
    [
        ("https://cdn.test/video/clip.MP4", "media-extension"),
        ("https://cdn.test/hls/master", "streaming-path"),
        ("https://r3---sn.googlevideo.com/videoplayback?id=1", "google-media-host"),
        ("https://streamtape.com/v/abc", "known-media-host"),
        ("https://other.test/page", None),
    ],
)
def test_video_rules_first_match_wins(classifier: UrlClassifier, url: str, rule: str | None) -> None:
    assert classifier.video_rule(url) == rule


@pytest.mark.parametrize(
    ("url", "rule"),
    [
        ("https://site.test/?trembed=1&trid=9&trtype=2", "redirection-marker"),
        ("https://other.test/?trid=9", "redirection-marker"),
        ("https://www.site.test/episode/show-1x1/", "source-site"),
        ("https://filemoon.test/e/abc", "embed-path"),
        ("https://other.test/about", None),
    ],
)
def test_follow_rules_first_match_wins(classifier: UrlClassifier, url: str, rule: str | None) -> None:
    assert classifier.follow_rule(url) == rule


@pytest.mark.parametrize(
    ("url", "signature"),
    [
        ("https://player.filemoon.sx/e/abc", "player."),
        ("https://vidmoly.to/w/abc", "vidmoly"),
        ("https://cdn.test/t/xyz", "/t/"),
        ("https://unknown.test/watch", None),
    ],
)
def test_player_signature(classifier: UrlClassifier, url: str, signature: str | None) -> None:
    assert classifier.player_signature(url) == signature


def test_is_external(classifier: UrlClassifier) -> None:
    assert classifier.is_external("https://player.test/embed/1") is True
    assert classifier.is_external("https://site.test/episode/x/") is False
    assert classifier.is_external("https://other.test/?trembed=1") is False
    assert classifier.is_external("/relative/path") is False
    assert classifier.is_external(None) is False


def test_script_candidates_in_script_then_extractor_order(classifier: UrlClassifier) -> None:
    scripts = [
        'var p = jwplayer("box").setup({file: "https://cdn.test/master.m3u8"});',
        "document.write('<iframe src=\"/embed/55\"></iframe>');",
        "",
    ]

    candidates = classifier.script_candidates(scripts, "https://host.test/page")

    assert candidates == ["https://cdn.test/master.m3u8", "https://host.test/embed/55"]


def test_pick_script_url_prefers_media_then_follow_then_first(classifier: UrlClassifier) -> None:
    assert (
        classifier.pick_script_url(["https://a.test/x", "https://b.test/embed/1", "https://c.test/v.mp4"])
        == "https://c.test/v.mp4"
    )
    assert classifier.pick_script_url(["https://a.test/x", "https://b.test/embed/1"]) == "https://b.test/embed/1"
    assert classifier.pick_script_url(["https://a.test/x"]) == "https://a.test/x"
    assert classifier.pick_script_url([]) is None
