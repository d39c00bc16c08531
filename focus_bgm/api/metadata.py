"""
Resolves display titles for media URLs via the public oEmbed endpoint.
"""

import asyncio
import logging
import re
from typing import Optional

import aiohttp

from focus_bgm.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError

log = logging.getLogger(__name__)

UNKNOWN_TITLE = "Unknown Title"

_SOURCE_URL_PATTERN = re.compile(
    r"^https?://((www\.|m\.|music\.)?youtube\.com|youtu\.be)/.+"
)
_VIDEO_ID_PATTERN = re.compile(
    r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/shorts/)"
    r"([^&\n?#/]+)"
)


def is_valid_source_url(url: str) -> bool:
    """Checks whether a URL points at a supported media source."""
    return bool(_SOURCE_URL_PATTERN.match(url.strip()))


def extract_video_id(url: str) -> Optional[str]:
    match = _VIDEO_ID_PATTERN.search(url)
    return match.group(1) if match else None


class OEmbedResolver:
    """
    Metadata collaborator for channels.

    `resolve_title` never fails: any network or service problem degrades to a
    placeholder title so that playback can go ahead.

    Resolved titles are cached per video id, so the different URL forms of one
    video cost a single lookup.
    """

    OEMBED_URL = "https://www.youtube.com/oembed"

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._circuit_breaker = CircuitBreaker(failure_threshold=3, recovery_timeout=30)
        self._titles: dict[str, str] = {}

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Accept": "application/json"},
            )
        return self._session

    def is_valid_source_url(self, url: str) -> bool:
        return is_valid_source_url(url)

    async def resolve_title(self, url: str) -> str:
        key = extract_video_id(url) or url
        if key in self._titles:
            return self._titles[key]

        try:
            async with self._circuit_breaker:
                session = await self._get_session()
                async with session.get(
                    self.OEMBED_URL, params={"url": url, "format": "json"}
                ) as response:
                    response.raise_for_status()
                    data = await response.json(content_type=None)
        except CircuitBreakerError:
            log.debug(f"Skipping title lookup for {url}: metadata circuit open.")
            return UNKNOWN_TITLE
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            log.debug(f"Title lookup for {url} failed: {e}")
            return UNKNOWN_TITLE

        title = data.get("title") if isinstance(data, dict) else None
        if not isinstance(title, str) or not title.strip():
            return UNKNOWN_TITLE
        self._titles[key] = title.strip()
        return self._titles[key]

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()
