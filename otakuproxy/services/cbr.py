from typing import Dict, List, Optional

import httpx
from selectolax.parser import HTMLParser

from otakuproxy.config.settings import settings
from otakuproxy.utils.cache import memory_cache
from otakuproxy.utils.errors import NetworkError, UpstreamError
from otakuproxy.utils.http_client import http_client
from otakuproxy.utils.logger import scraper_logger


# ===========================
# Parsing Helpers
# ===========================
def node_text(parser, selector: str) -> str:
    node = parser.css_first(selector)
    return node.text(strip=True) if node else ""


def node_attr(parser, selector: str, attribute: str) -> Optional[str]:
    node = parser.css_first(selector)
    return node.attributes.get(attribute) if node else None


def parse_article(html: str) -> Dict:
    parser = HTMLParser(html)

    paragraphs = [p.text(strip=True) for p in parser.css("#article-body .content-block-regular p")]
    description = node_attr(parser, 'meta[name="description"]', "content") or ""

    return {
        "anime_title": node_text(parser, ".article-header-title"),
        "tag": node_text(parser, ".tag-label.no-bg span"),
        "img": node_attr(parser, ".heading_image img", "src"),
        "description": description.strip(),
        "content": " ".join(paragraphs)
    }


def parse_cards(html: str) -> List[Dict]:
    parser = HTMLParser(html)
    cards = []

    for card in parser.css(".display-card.article.small.active-content"):
        link_node = card.css_first("a.dc-img-link")
        link = link_node.attributes.get("href") if link_node else None
        if not link:
            continue

        sources = card.css("picture source")
        title_node = card.css_first(".display-card-title")
        cards.append({
            "anime_title": title_node.text(strip=True) if title_node else "",
            "anime_image": sources[-1].attributes.get("srcset") if sources else None,
            "anime_id": link.strip("/")
        })

    return cards


# ===========================
# CBR Service Class
# ===========================
class CBRService:

    async def _fetch(self, url: str) -> Optional[str]:
        try:
            response = await http_client.get(url)
        except httpx.HTTPError as e:
            scraper_logger.error(f"CBR unreachable: {type(e).__name__}")
            raise NetworkError(f"CBR unreachable: {type(e).__name__}") from e

        if response.status_code == 404:
            return None
        if not response.is_success:
            scraper_logger.error(f"CBR HTTP {response.status_code}")
            raise UpstreamError(f"CBR returned HTTP {response.status_code}", response.status_code)
        return response.text

    async def fetch_article(self, slug: str) -> Optional[Dict]:
        html = await self._fetch(f"{settings.CBR_URL}/{slug}")
        if html is None:
            scraper_logger.debug(f"Article not found: {slug}")
            return None
        return parse_article(html)

    async def fetch_cards(self, page_url: str) -> List[Dict]:
        html = await self._fetch(page_url)
        if html is None:
            return []
        return parse_cards(html)

    async def scrape_feed(self) -> List[Dict]:
        base = f"{settings.CBR_URL}/category/anime/"
        feed = []

        for page_number in range(1, settings.CBR_FEED_PAGES + 1):
            url = base if page_number == 1 else f"{base}{page_number}/"
            cards = await self.fetch_cards(url)
            if not cards:
                break
            feed.extend(cards)

        scraper_logger.debug(f"CBR feed: {len(feed)} cards")
        return feed

    async def get_feed(self) -> List[Dict]:
        return await memory_cache.get_or_set("feed:list", settings.FEED_CACHE_TTL, self.scrape_feed)

    async def get_article(self, slug: str) -> Optional[Dict]:
        return await memory_cache.get_or_set(f"news:{slug}", settings.NEWS_CACHE_TTL,
                                             lambda: self.fetch_article(slug))


# ===========================
# Global CBR Service Instance
# ===========================
cbr_service = CBRService()
