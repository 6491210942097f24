#===============================================================
# Project:      TubeRelay
# File:         Duration resolver with in-process cache
#===============================================================

import re
import asyncio
import logging
from typing import Optional, Dict, List, Callable, Awaitable

import httpx

from config import PROBE_TIMEOUT, USER_AGENT
from errors import ProbeFailed
from models import watch_url
from youtube_client import youtube_client


log = logging.getLogger(__name__)

# A probe returns seconds, or None when it could not find a duration
DurationProbe = Callable[[str], Awaitable[Optional[int]]]

LENGTH_SECONDS_PATTERN = re.compile(r'"lengthSeconds"\s*:\s*"(\d+)"')


# Probes
class PageScrapeProbe:
    """Reads videoDetails.lengthSeconds out of the watch page's player response."""

    name = "page"

    def __init__(self, client_factory: Optional[Callable[[], httpx.AsyncClient]] = None):
        self._client_factory = client_factory or self._default_client

    @staticmethod
    def _default_client() -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=PROBE_TIMEOUT,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept-Language": "en-US,en;q=0.9"},
        )

    async def __call__(self, video_id: str) -> Optional[int]:
        async with self._client_factory() as client:
            response = await client.get(watch_url(video_id))
            response.raise_for_status()

        match = LENGTH_SECONDS_PATTERN.search(response.text)
        if not match:
            return None
        return int(match.group(1))


class ProviderProbe:
    """Asks the metadata provider for the duration."""

    name = "provider"

    async def __call__(self, video_id: str) -> Optional[int]:
        return await youtube_client.get_duration(video_id)


# Resolver
class DurationResolver:
    """
    Cache-first duration lookup.

    Only successful probes are cached, so a transient failure is retried
    on the next call. Entries are added, never replaced or evicted.
    """

    def __init__(self, probes: Optional[List[DurationProbe]] = None, timeout: float = PROBE_TIMEOUT):
        self.probes = probes if probes is not None else [PageScrapeProbe(), ProviderProbe()]
        self.timeout = timeout
        self._cache: Dict[str, int] = {}

    def cached(self, video_id: str) -> Optional[int]:
        """Cached duration without probing."""
        return self._cache.get(video_id)

    async def get_duration(self, video_id: str) -> int:
        if video_id in self._cache:
            return self._cache[video_id]

        failures = []
        for probe in self.probes:
            probe_name = getattr(probe, "name", type(probe).__name__)
            try:
                seconds = await asyncio.wait_for(probe(video_id), timeout=self.timeout)
            except asyncio.TimeoutError:
                failures.append(f"{probe_name}: timed out")
                continue
            except Exception as e:
                log.warning("Duration probe %s failed for %s: %s", probe_name, video_id, e)
                failures.append(f"{probe_name}: {type(e).__name__}")
                continue

            if seconds and seconds > 0:
                self._cache.setdefault(video_id, int(seconds))
                return self._cache[video_id]
            failures.append(f"{probe_name}: no duration")

        raise ProbeFailed(details="; ".join(failures) or "no probes configured")


duration_resolver = DurationResolver()
