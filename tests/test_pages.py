from __future__ import annotations

from extraction.pages import (
    extract_breadcrumb_series_url,
    extract_episode_cards,
    extract_episode_meta,
    extract_nonce,
    extract_post_id,
    extract_season_numbers,
    extract_series_episode_links,
    extract_series_meta,
    parse_season_fragment,
)
from extraction.urls import (
    build_episode_url,
    is_valid_episode_url,
    normalize_url,
    parse_episode_code,
    series_slug_from_episode_url,
)
from metadata.normalize import AliasTable

BASE = "https://site.test/home/"


def test_listing_cards_from_articles_then_loose_anchors() -> None:
    html = """
    <article class="post episodes">
      <figure><img data-src="//img.site.test/a.jpg"></figure>
      <h2 class="entry-title">Show 1x2</h2>
      <a class="lnk-blk" href="/episode/show-1x2/"></a>
    </article>
    <article class="post"><a href="/series/other/">not an episode</a></article>
    <a href="/episode/show-1x2/">duplicate</a>
    <a href="https://site.test/episode/other-2x5/" title="Other 2x5"><img src="/o.jpg"></a>
    """

    cards = extract_episode_cards(html, BASE)

    assert [card.url for card in cards] == [
        "https://site.test/episode/show-1x2/",
        "https://site.test/episode/other-2x5/",
    ]
    assert cards[0].title == "Show 1x2"
    assert cards[0].thumbnail == "https://img.site.test/a.jpg"
    assert cards[1].title == "Other 2x5"


def test_series_episode_links_sorted_and_deduplicated() -> None:
    html = """
    <a href="/episode/show-2x1/">S2E1</a>
    <a href="/episode/show-1x2/">S1E2</a>
    <a href="/episode/show-1x2/?ref=x">again</a>
    <a href="/episode/show-1x1/">S1E1</a>
    <a href="/episode/trailer/">no code</a>
    """

    links = extract_series_episode_links(html, "https://site.test/series/show/")

    assert [(link.season, link.episode) for link in links] == [(1, 1), (1, 2), (2, 1)]


def test_season_fragment_uses_code_label() -> None:
    html = """
    <ul>
      <li><article class="post"><span class="num-epi">3x4</span>
          <h2 class="entry-title">The Return</h2>
          <img src="/t.jpg"><a class="lnk-blk" href="/episode/show-3x4/"></a></article></li>
      <li><article class="post"><a class="lnk-blk" href="/episode/show-3x5/"></a></article></li>
      <li>no article</li>
    </ul>
    """

    links = parse_season_fragment(html, BASE)

    assert len(links) == 1
    assert (links[0].season, links[0].episode, links[0].title) == (3, 4, "The Return")
    assert links[0].url == "https://site.test/episode/show-3x4/"
    assert links[0].thumbnail == "https://site.test/t.jpg"


def test_post_id_and_nonce_lookup_order() -> None:
    html = """
    <body class="single postid-77">
      <input type="hidden" name="_wpnonce" value="abc123">
      <script>var dtAjax = {"post_id": "99", "nonce": "zzz"};</script>
    </body>
    """
    assert extract_post_id(html) == "77"
    assert extract_nonce(html) == "abc123"

    scripted = '<script>var dtAjax = {"post_id": "99", "nonce": "zzz"};</script>'
    assert extract_post_id(scripted) == "99"
    assert extract_nonce(scripted) == "zzz"
    assert extract_post_id("<p>nothing</p>") is None


def test_season_numbers_default_to_first_season() -> None:
    assert extract_season_numbers('<li data-season="2"></li><li data-season="1"></li>') == [1, 2]
    assert extract_season_numbers("<div></div>") == [1]


def test_episode_and_series_meta() -> None:
    episode_html = """
    <head><meta property="og:image" content="/ep.jpg"><title>Fallback</title></head>
    <h1 class="entry-title">  Show   1x1 </h1>
    <nav class="breadcrumb"><a href="/">Home</a><a href="/series/show/">Show</a></nav>
    """
    meta = extract_episode_meta(episode_html, "https://site.test/episode/show-1x1/")
    assert meta.title == "Show 1x1"
    assert meta.thumbnail == "https://site.test/ep.jpg"
    assert extract_breadcrumb_series_url(episode_html, BASE) == "https://site.test/series/show/"

    series_html = """
    <head><meta property="og:description" content="A story."></head>
    <h1 class="entry-title">Show</h1>
    <div class="post-thumbnail"><img src="/poster.jpg"></div>
    <span class="year">2021</span>
    <div class="genres"><a href="#">Action</a><a href="#">Action</a><a href="#">Drama</a></div>
    """
    series = extract_series_meta(series_html, "https://site.test/series/show/")
    assert series.title == "Show"
    assert series.description == "A story."
    assert series.poster == "https://site.test/poster.jpg"
    assert series.genres == ["Action", "Drama"]
    assert series.year == 2021


def test_url_helpers() -> None:
    assert normalize_url("javascript:void(0)", BASE) is None
    assert normalize_url("//cdn.test/x", BASE) == "https://cdn.test/x"
    assert normalize_url("/a?x=1&amp;y=2", BASE) == "https://site.test/a?x=1&y=2"
    assert parse_episode_code("https://site.test/episode/show-12x3/") == (12, 3)
    assert parse_episode_code("https://site.test/series/show/") is None
    assert is_valid_episode_url("https://site.test/episode/show-1x1/") is True
    assert is_valid_episode_url("https://site.test/episode/") is False
    assert series_slug_from_episode_url("https://site.test/episode/my-show-2x7/") == "my-show"


def test_alias_table_maps_between_catalog_and_source_slugs() -> None:
    aliases = AliasTable.from_mapping(
        {"series": [{"match": ["naruto shippuden"], "slug": "naruto-shippden", "source_slug": "naruto-shippuden"}]}
    )

    assert series_slug_from_episode_url("https://site.test/episode/naruto-shippuden-1x1/", aliases) == "naruto-shippden"
    assert (
        build_episode_url("https://site.test", "naruto-shippden", 1, 1, aliases)
        == "https://site.test/episode/naruto-shippuden-1x1/"
    )
