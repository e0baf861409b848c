"""Resolve sharing links to a direct download and stream the candidate image bytes."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass

import httpx

from postguard.integrity.domain.errors import InvalidSource, RemoteFetchTimeout
from postguard.obs import metrics

logger = logging.getLogger(__name__)

DEFAULT_DOWNLOAD_HOST = "https://drive.usercontent.google.com/download"

# "/segment/" pairs, matched without overlap; the second match is the resource id.
SEGMENT_PATTERN_CHARCLASS = r"/([^/]+.)/"
SEGMENT_PATTERN_WORD = r"/\b(\w+)\b/"

SEGMENT_PATTERNS = {
    "charclass": SEGMENT_PATTERN_CHARCLASS,
    "word": SEGMENT_PATTERN_WORD,
}


def segment_pattern(name_or_regex: str) -> str:
    """Map a configured pattern name (any case) to its regex; anything else is a raw regex."""

    return SEGMENT_PATTERNS.get(name_or_regex.strip().lower(), name_or_regex)


@dataclass(frozen=True)
class SourceLinkParser:
    """Extracts the resource id from a sharing URL and builds the download URL."""

    pattern: re.Pattern[str] = re.compile(SEGMENT_PATTERN_CHARCLASS)
    download_host: str = DEFAULT_DOWNLOAD_HOST

    @classmethod
    def from_pattern(cls, pattern: str, download_host: str = DEFAULT_DOWNLOAD_HOST) -> "SourceLinkParser":
        return cls(pattern=re.compile(segment_pattern(pattern)), download_host=download_host)

    def resource_id(self, source_link: str) -> str:
        if not source_link:
            raise InvalidSource("source link is empty")
        found = [match.group(1) if match.groups() else match.group(0) for match in self.pattern.finditer(source_link)]
        if len(found) < 2 or not found[1]:
            raise InvalidSource(f"cannot extract a resource id from {source_link!r}")
        return found[1]

    def download_url(self, source_link: str) -> str:
        return f"{self.download_host}?id={self.resource_id(source_link)}"


@dataclass
class RemoteCandidateResolver:
    """Fetches a candidate image behind a sharing link as a hex string.

    The body is read chunk by chunk; each read is bounded by ``read_timeout`` and the whole
    transfer by ``deadline``. ``max_bytes`` caps the body size when set.
    """

    http: httpx.AsyncClient
    parser: SourceLinkParser = SourceLinkParser()
    deadline: float = 10.0
    read_timeout: float = 5.0
    max_bytes: int | None = None

    async def resolve(self, source_link: str) -> str:
        url = self.parser.download_url(source_link)
        try:
            data = await asyncio.wait_for(self._read(url), timeout=self.deadline)
        except asyncio.TimeoutError as exc:
            metrics.inc_remote_fetch("timeout")
            logger.warning("remote candidate fetch timed out", extra={"url": url})
            raise RemoteFetchTimeout(f"fetch of {url} exceeded {self.deadline}s") from exc
        metrics.inc_remote_fetch("ok")
        return data

    async def _read(self, url: str) -> str:
        timeout = httpx.Timeout(self.read_timeout)
        parts: list[str] = []
        received = 0
        try:
            async with self.http.stream("GET", url, timeout=timeout, follow_redirects=True) as response:
                if not response.is_success:
                    metrics.inc_remote_fetch("bad_status")
                    raise InvalidSource(f"{url} answered {response.status_code}")
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if self.max_bytes is not None and received > self.max_bytes:
                        metrics.inc_remote_fetch("too_large")
                        raise InvalidSource(f"{url} exceeded {self.max_bytes} bytes")
                    parts.append(chunk.hex())
        except httpx.TimeoutException as exc:
            metrics.inc_remote_fetch("timeout")
            raise RemoteFetchTimeout(f"read from {url} stalled") from exc
        except httpx.HTTPError as exc:
            metrics.inc_remote_fetch("error")
            raise InvalidSource(f"fetch of {url} failed: {exc}") from exc
        return "".join(parts)
