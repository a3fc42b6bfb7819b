"""
Route links: provider detection and distance/duration scraping.

Only Strava, RideWithGPS and Komoot pages are fetched. Scraping is
best-effort: any network error, non-200 response, timeout or unparseable
page gives ``None`` and the wizard simply asks for the values instead.
Pages are read with BeautifulSoup using each provider's stat selectors.
"""
import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Pattern

import httpx
from bs4 import BeautifulSoup, Tag

from ridebot.core.config import settings

logger = logging.getLogger(__name__)

ROUTE_PROVIDERS: Dict[str, List[Pattern]] = {
    "strava": [
        re.compile(r"https?://(?:www\.)?strava\.com/routes/\d+"),
        re.compile(r"https?://(?:www\.)?strava\.com/activities/\d+"),
    ],
    "ridewithgps": [
        re.compile(r"https?://(?:www\.)?ridewithgps\.com/routes/\d+"),
    ],
    "komoot": [
        re.compile(r"https?://(?:www\.)?komoot\.com/(?:[a-z]{2}-[a-z]{2}/)?tour/\d+"),
    ],
}

# Strava routes only show distance; duration is estimated at this pace
STRAVA_ROUTE_SPEED_KMH = 20

_KM = re.compile(r"(\d+(?:\.\d+)?)\s*km")
_HMS = re.compile(r"(?:(\d+)h\s*)?(?:(\d+)m\s*)?(?:(\d+)s)?")


@dataclass
class RouteInfo:
    distance: Optional[float] = None  # km
    duration: Optional[int] = None  # minutes


def get_route_provider(url: str) -> Optional[str]:
    for name, patterns in ROUTE_PROVIDERS.items():
        if any(pattern.search(url or "") for pattern in patterns):
            return name
    return None


def is_known_provider(url: str) -> bool:
    return get_route_provider(url) is not None


def _km(text: str) -> Optional[float]:
    match = _KM.search(text)
    return float(match.group(1)) if match else None


def _minutes(text: str, round_seconds: bool = False) -> Optional[int]:
    for match in _HMS.finditer(text):
        if not any(match.groups()):
            continue
        hours, minutes, seconds = (int(g or 0) for g in match.groups())
        total = hours * 60 + minutes
        if round_seconds and seconds >= 30:
            total += 1
        return total or None
    return None


def _text(element: Optional[Tag]) -> str:
    return element.get_text(" ", strip=True) if element is not None else ""


def _summary_value(soup: BeautifulSoup, name: str) -> str:
    """Strava activity stat: the last inner div holds the value when there is one."""
    container = soup.select_one(f'[data-cy="{name}"]')
    if container is None:
        return ""
    divs = container.find_all("div")
    return _text(divs[-1] if divs else container)


def parse_strava_page(html: str, url: str) -> Optional[RouteInfo]:
    soup = BeautifulSoup(html, "html.parser")
    info = RouteInfo()
    if "/activities/" in url:
        info.distance = _km(_summary_value(soup, "summary-distance"))
        info.duration = _minutes(_summary_value(soup, "summary-time"), round_seconds=True)
    else:
        # Distance is the first stat with an icon next to its value
        for stat in soup.select('div[class^="Detail_routeStat"]'):
            if stat.find("svg") is None or stat.find("span") is None:
                continue
            info.distance = _km(" ".join(_text(span) for span in stat.find_all("span")))
            break
        if info.distance:
            info.duration = round(info.distance / STRAVA_ROUTE_SPEED_KMH * 60)
    if info.distance:
        info.distance = float(round(info.distance))
    return info if (info.distance or info.duration) else None


def _parse_stats_block(html: str, block: str, duration_class: str) -> Optional[RouteInfo]:
    soup = BeautifulSoup(html, "html.parser")
    info = RouteInfo(
        distance=_km(_text(soup.select_one(f".{block} .distance"))),
        duration=_minutes(_text(soup.select_one(f".{block} .{duration_class}"))),
    )
    return info if (info.distance or info.duration) else None


def parse_ridewithgps_page(html: str, url: str) -> Optional[RouteInfo]:
    return _parse_stats_block(html, "route-stats", "time")


def parse_komoot_page(html: str, url: str) -> Optional[RouteInfo]:
    return _parse_stats_block(html, "tour-stats", "duration")


PAGE_PARSERS: Dict[str, Callable[[str, str], Optional[RouteInfo]]] = {
    "strava": parse_strava_page,
    "ridewithgps": parse_ridewithgps_page,
    "komoot": parse_komoot_page,
}


class RouteParser:
    """Fetches a route page and extracts distance/duration.

    ``transport`` is handed to ``httpx.AsyncClient`` (tests pass an
    ``httpx.MockTransport``).
    """

    def __init__(self, timeout: float = None, transport: httpx.AsyncBaseTransport = None):
        self.timeout = timeout or settings.EXTERNAL_CALL_TIMEOUT_SECONDS
        self.transport = transport

    async def _fetch(self, url: str) -> Optional[str]:
        async with httpx.AsyncClient(
            transport=self.transport,
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": "Mozilla/5.0 (compatible; ridebot/0.1)"},
        ) as client:
            response = await client.get(url)
        if response.status_code != 200:
            logger.warning(f"[RouteParser] {response.status_code} for {url}")
            return None
        return response.text

    async def parse_route(self, url: str) -> Optional[RouteInfo]:
        provider = get_route_provider(url)
        if not provider:
            logger.info(f"[RouteParser] Not a supported provider: {url}")
            return None

        try:
            html = await asyncio.wait_for(self._fetch(url), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[RouteParser] Timed out fetching {url}")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"[RouteParser] Error fetching {url}: {e}")
            return None
        if html is None:
            return None

        info = PAGE_PARSERS[provider](html, url)
        if info is None:
            logger.warning(f"[RouteParser] Could not parse {provider} page: {url}")
        return info
