import httpx
import pytest

from otakuproxy.services.cbr import cbr_service, parse_article, parse_cards
from otakuproxy.services.livechart import (
    format_clock_time, livechart_service, parse_details, parse_schedule, parse_streams, parse_videos
)
from otakuproxy.utils.errors import UpstreamError

ARTICLE_HTML = """
<html><head><meta name="description" content="  Big news.  "></head><body>
<h1 class="article-header-title"> Frieren Season 2 </h1>
<div class="tag-label no-bg"><span>Anime</span></div>
<div class="heading_image"><img src="https://img/cover.jpg"></div>
<div id="article-body">
  <div class="content-block-regular"><p> First. </p><p>Second.</p></div>
</div>
</body></html>
"""

CARDS_HTML = """
<div class="display-card article small active-content">
  <a class="dc-img-link" href="/frieren-season-2/"></a>
  <picture><source srcset="small.jpg"><source srcset="large.jpg"></picture>
  <h5 class="display-card-title"> Frieren </h5>
</div>
<div class="display-card article small active-content">
  <a class="dc-img-link" href="/one-piece-1100/"></a>
  <h5 class="display-card-title">One Piece</h5>
</div>
"""

DETAILS_HTML = """
<div class="shrink-0"><img src="https://img/poster.jpg"></div>
<div class="text-xl font-medium">Sousou no Frieren</div>
<div class="text-lg">Frieren: Beyond Journey's End</div>
<div class="text-lg font-medium">9.1</div>
<div class="text-sm text-base-content/75">12,345 ratings</div>
<a href="/schedule?date=2023-09-29">Sep 29, 2023</a>
<a href="/fall-2023/tv">Fall 2023</a>
<div class="grid grid-flow-col auto-cols-fr">
  <div><div class="text-xs">Format</div>TV</div>
  <div><div class="text-xs">Source</div><a href="/manga">Manga</a></div>
  <div><div class="text-xs">Episodes</div>28 / 28</div>
  <div><div class="text-xs">Run time</div>24m</div>
</div>
<div class="lc-expander-content lc-markdown-html"><p>An elf mage.</p></div>
<div><div>Studio</div><div><a class="lc-chip-button">Madhouse</a></div></div>
<a class="lc-chip-button">Adventure</a>
<a class="lc-chip-button lc-chip-button-outline">Outline</a>
<a class="lc-chip-button hidden">Hidden</a>
"""

VIDEOS_HTML = """
<div class="lc-video" data-video-embed-url="https://yt/embed/1" data-video-uploaded-at="2023-09-01">
  <img src="thumb.jpg"><a href="https://youtube.com/watch?v=1"></a>
  <div class="text-sm line-clamp-2 font-bold">PV 1</div>
  <span data-video-target="durationBadge">1:30</span>
</div>
"""

STREAMS_HTML = """
<div class="flex-1 flex items-center gap-4 p-4">
  <a class="link-hover font-medium" href="https://crunchyroll.com/frieren">Crunchyroll</a>
  <div class="text-sm text-base-content/75">Subtitled</div>
  <div class="text-sm text-base-content/75"> </div>
</div>
"""

SCHEDULE_HTML = """
<div class="lc-timetable-day">
  <div class="lc-timetable-day__heading"><h2>Tuesday</h2><div class="text-xl opacity-75">Nov 14</div></div>
  <div class="lc-timetable-timeslot" data-timestamp="1700000000">
    <a href="/anime/11923"></a>
    <img data-schedule-anime-target="poster" src="poster.jpg">
    <span data-schedule-anime-target="preferredTitle">Frieren</span>
    <span class="lc-tt-release-label">EP10</span>
  </div>
  <div class="lc-timetable-timeslot" data-timestamp="1700000000">
    <span data-schedule-anime-target="preferredTitle"></span>
  </div>
</div>
<div class="lc-timetable-day">
  <div class="lc-timetable-day__heading"><h2>Wednesday</h2></div>
</div>
"""


def test_parse_article():
    article = parse_article(ARTICLE_HTML)
    assert article == {
        "anime_title": "Frieren Season 2",
        "tag": "Anime",
        "img": "https://img/cover.jpg",
        "description": "Big news.",
        "content": "First. Second."
    }


def test_parse_cards():
    cards = parse_cards(CARDS_HTML)
    assert cards[0] == {"anime_title": "Frieren", "anime_image": "large.jpg", "anime_id": "frieren-season-2"}
    assert cards[1]["anime_image"] is None
    assert cards[1]["anime_id"] == "one-piece-1100"


async def test_feed_stops_at_empty_page_and_is_cached(mock_http):
    def handler(request):
        if request.url.path == "/category/anime/":
            return httpx.Response(200, text=CARDS_HTML)
        return httpx.Response(200, text="<html></html>")

    calls = mock_http(handler)

    feed = await cbr_service.get_feed()
    again = await cbr_service.get_feed()

    assert len(feed) == 2
    assert again == feed
    assert [c.url.path for c in calls] == ["/category/anime/", "/category/anime/2/"]


async def test_missing_article_returns_none(mock_http):
    mock_http(lambda request: httpx.Response(404, text="gone"))
    assert await cbr_service.get_article("nope") is None


async def test_article_server_error_raises(mock_http):
    mock_http(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(UpstreamError):
        await cbr_service.get_article("broken")


def test_parse_details():
    info = parse_details(DETAILS_HTML, "11923")

    assert info["id"] == "11923"
    assert info["title"] == {"romaji": "Sousou no Frieren", "english": "Frieren: Beyond Journey's End"}
    assert info["imageUrl"] == "https://img/poster.jpg"
    assert info["releaseDate"] == "Sep 29, 2023"
    assert info["season"] == "Fall 2023"
    assert info["rating"] == {"score": "9.1", "count": "12,345 ratings"}
    assert info["details"] == {"format": "TV", "source": "Manga", "episodes": "28", "runtime": "24m"}
    assert "An elf mage." in info["description"]
    assert info["studio"] == "Madhouse"
    assert info["tags"] == ["Madhouse", "Adventure"]


def test_parse_videos_and_streams():
    assert parse_videos(VIDEOS_HTML) == [{
        "title": "PV 1",
        "duration": "1:30",
        "thumbnail": "thumb.jpg",
        "embedUrl": "https://yt/embed/1",
        "uploadedAt": "2023-09-01",
        "youtubeUrl": "https://youtube.com/watch?v=1"
    }]
    assert parse_streams(STREAMS_HTML) == [{
        "service": "Crunchyroll",
        "url": "https://crunchyroll.com/frieren",
        "notes": ["Subtitled"]
    }]


def test_format_clock_time():
    assert format_clock_time(1700000000000, "America/Jamaica") == "5:13 PM"
    assert format_clock_time(1699945200000, "UTC") == "7:00 AM"


def test_parse_schedule_drops_empty_entries():
    days = parse_schedule(SCHEDULE_HTML, "America/Jamaica")

    assert len(days) == 1
    assert days[0]["day"] == "Tuesday"
    assert days[0]["date"] == "Nov 14"
    assert days[0]["timeslots"] == [{
        "time": "5:13 PM",
        "animeTitle": "Frieren",
        "episodeInfo": "EP10",
        "imageUrl": "poster.jpg",
        "anime_id": "11923"
    }]


async def test_full_info_tolerates_failing_sub_fetches(mock_http):
    def handler(request):
        if request.url.path == "/anime/11923":
            return httpx.Response(200, text=DETAILS_HTML)
        if request.url.path == "/anime/11923/videos" and request.url.params["category"] == "promos":
            return httpx.Response(200, text=VIDEOS_HTML)
        return httpx.Response(503, text="busy")

    mock_http(handler)

    info = await livechart_service.get_full_info("11923")

    assert len(info["videos"]["promos"]) == 1
    assert info["videos"]["spots"] == []
    assert info["videos"]["music"] == []
    assert info["streams"] == []


async def test_full_info_fails_when_details_fail(mock_http):
    mock_http(lambda request: httpx.Response(404, text="missing"))
    with pytest.raises(UpstreamError):
        await livechart_service.get_full_info("0")
