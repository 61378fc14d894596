import asyncio
import re
from datetime import datetime
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import httpx
from selectolax.parser import HTMLParser, Node

from otakuproxy.config.settings import settings
from otakuproxy.utils.errors import NetworkError, UpstreamError
from otakuproxy.utils.http_client import http_client
from otakuproxy.utils.logger import scraper_logger

# ===========================
# Constants
# ===========================
VIDEO_CATEGORIES = ["promos", "spots", "music"]
MUTED_TEXT_CLASS = "text-base-content/75"
EPISODES_PATTERN = re.compile(r"/\s*(\d+)")


# ===========================
# Parsing Helpers
# ===========================
def has_class(node: Node, class_name: str) -> bool:
    return class_name in (node.attributes.get("class") or "").split()


def first_text(node, selector: str) -> str:
    found = node.css_first(selector)
    return found.text(strip=True) if found else ""


def first_attr(node, selector: str, attribute: str) -> Optional[str]:
    found = node.css_first(selector)
    return found.attributes.get(attribute) if found else None


def inner_html(node: Optional[Node]) -> str:
    if node is None:
        return ""
    return "".join(child.html or "" for child in node.iter(include_text=True))


def next_element(node: Node) -> Optional[Node]:
    sibling = node.next
    while sibling is not None and sibling.tag == "-text":
        sibling = sibling.next
    return sibling


def format_clock_time(timestamp_ms: int, timezone: str) -> str:
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=ZoneInfo(timezone))
    hour = moment.hour % 12 or 12
    meridiem = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {meridiem}"


# ===========================
# Page Parsers
# ===========================
def parse_details(html: str, anime_id: str) -> Dict:
    parser = HTMLParser(html)
    muted = [n for n in parser.css(".text-sm") if has_class(n, MUTED_TEXT_CLASS)]

    info = {
        "id": anime_id,
        "title": {
            "romaji": first_text(parser, ".text-xl.font-medium"),
            "english": first_text(parser, ".text-lg") or None
        },
        "imageUrl": first_attr(parser, ".shrink-0 img", "src"),
        "releaseDate": first_text(parser, 'a[href^="/schedule?date="]'),
        "season": " ".join(n.text(strip=True) for n in parser.css('a[href*="/tv"]')).strip(),
        "rating": {
            "score": first_text(parser, ".text-lg.font-medium"),
            "count": muted[-1].text(strip=True) if muted else ""
        },
        "details": {},
        "tags": [],
        "studio": "",
        "description": ""
    }

    for cell in parser.css(".grid.grid-flow-col.auto-cols-fr > div"):
        label = first_text(cell, ".text-xs")
        if label == "Format":
            info["details"]["format"] = cell.text(deep=False, strip=True)
        elif label == "Source":
            info["details"]["source"] = first_text(cell, "a")
        elif label == "Episodes":
            match = EPISODES_PATTERN.search(cell.text(strip=True))
            if match:
                info["details"]["episodes"] = match.group(1)
        elif label == "Run time":
            info["details"]["runtime"] = cell.text(deep=False, strip=True)

    info["description"] = inner_html(parser.css_first(".lc-expander-content.lc-markdown-html"))

    for div in parser.css("div"):
        if div.text(deep=False, strip=True) == "Studio":
            sibling = next_element(div)
            if sibling is not None:
                info["studio"] = "".join(n.text(strip=True) for n in sibling.css(".lc-chip-button"))
                break

    for chip in parser.css(".lc-chip-button"):
        if has_class(chip, "lc-chip-button-outline") or has_class(chip, "hidden"):
            continue
        info["tags"].append(chip.text(strip=True))

    return info


def parse_videos(html: str) -> List[Dict]:
    parser = HTMLParser(html)
    videos = []

    for video in parser.css(".lc-video"):
        videos.append({
            "title": first_text(video, ".text-sm.line-clamp-2.font-bold"),
            "duration": first_text(video, '[data-video-target="durationBadge"]'),
            "thumbnail": first_attr(video, "img", "src"),
            "embedUrl": video.attributes.get("data-video-embed-url"),
            "uploadedAt": video.attributes.get("data-video-uploaded-at"),
            "youtubeUrl": first_attr(video, "a", "href")
        })

    return videos


def parse_streams(html: str) -> List[Dict]:
    parser = HTMLParser(html)
    streams = []

    for row in parser.css(".flex-1.flex.items-center.gap-4.p-4"):
        notes = [n.text(strip=True) for n in row.css(".text-sm") if has_class(n, MUTED_TEXT_CLASS)]
        streams.append({
            "service": first_text(row, ".link-hover.font-medium"),
            "url": first_attr(row, ".link-hover.font-medium", "href"),
            "notes": [note for note in notes if note]
        })

    return streams


def parse_schedule(html: str, timezone: str) -> List[Dict]:
    parser = HTMLParser(html)
    days = []

    for day in parser.css(".lc-timetable-day"):
        day_info = {
            "day": first_text(day, ".lc-timetable-day__heading h2"),
            "date": first_text(day, ".lc-timetable-day__heading .text-xl.opacity-75"),
            "timeslots": []
        }

        for slot in day.css(".lc-timetable-timeslot"):
            title = first_text(slot, "[data-schedule-anime-target='preferredTitle']")
            if not title:
                continue

            raw_timestamp = slot.attributes.get("data-timestamp") or ""
            time_label = format_clock_time(int(raw_timestamp) * 1000, timezone) if raw_timestamp.isdigit() else None
            href = first_attr(slot, "a", "href")

            day_info["timeslots"].append({
                "time": time_label,
                "animeTitle": title,
                "episodeInfo": first_text(slot, ".lc-tt-release-label"),
                "imageUrl": first_attr(slot, "[data-schedule-anime-target='poster']", "src") or "No image available",
                "anime_id": href.rstrip("/").split("/")[-1] if href else None
            })

        if day_info["timeslots"]:
            days.append(day_info)

    return days


# ===========================
# LiveChart Service Class
# ===========================
class LiveChartService:

    @property
    def headers(self) -> Dict[str, str]:
        return {"User-Agent": settings.SCRAPER_USER_AGENT}

    async def _fetch(self, url: str) -> str:
        try:
            response = await http_client.get(url, headers=self.headers)
        except httpx.HTTPError as e:
            raise NetworkError(f"LiveChart unreachable: {type(e).__name__}") from e

        if not response.is_success:
            raise UpstreamError(f"LiveChart returned HTTP {response.status_code}", response.status_code)
        return response.text

    async def get_details(self, anime_id: str) -> Dict:
        scraper_logger.debug(f"LiveChart details: {anime_id}")
        html = await self._fetch(f"{settings.LIVECHART_URL}/anime/{anime_id}")
        return parse_details(html, anime_id)

    async def get_videos(self, anime_id: str, category: str) -> List[Dict]:
        """Best-effort: returns an empty list on failure."""
        url = f"{settings.LIVECHART_URL}/anime/{anime_id}/videos?category={category}&hide_unavailable=true"
        try:
            return parse_videos(await self._fetch(url))
        except (NetworkError, UpstreamError) as e:
            scraper_logger.error(f"{category} videos for {anime_id} failed: {e.detail}")
            return []

    async def get_streams(self, anime_id: str) -> List[Dict]:
        """Best-effort: returns an empty list on failure."""
        try:
            return parse_streams(await self._fetch(f"{settings.LIVECHART_URL}/anime/{anime_id}/streams"))
        except (NetworkError, UpstreamError) as e:
            scraper_logger.error(f"Streams for {anime_id} failed: {e.detail}")
            return []

    async def get_full_info(self, anime_id: str) -> Dict:
        details = await self.get_details(anime_id)

        *videos, streams = await asyncio.gather(
            *(self.get_videos(anime_id, category) for category in VIDEO_CATEGORIES),
            self.get_streams(anime_id)
        )

        details["videos"] = dict(zip(VIDEO_CATEGORIES, videos))
        details["streams"] = streams
        return details

    async def get_schedule(self) -> List[Dict]:
        html = await self._fetch(f"{settings.LIVECHART_URL}/schedule")
        schedule = parse_schedule(html, settings.SCHEDULE_TIMEZONE)
        scraper_logger.debug(f"LiveChart schedule: {len(schedule)} days")
        return schedule


# ===========================
# Global LiveChart Service Instance
# ===========================
livechart_service = LiveChartService()
