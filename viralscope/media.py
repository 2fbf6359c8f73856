import logging
from dataclasses import dataclass, field
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from .errors import InvalidInput

logger = logging.getLogger(__name__)

PAGE_TIMEOUT = 15.0  # seconds
MAX_FRAMES = 4
MAX_PAGE_BYTES = 500_000  # meta tags live in <head>

_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)

_FRAME_PROPERTIES = ("og:image", "og:image:url", "og:image:secure_url", "twitter:image")
_MEDIA_PROPERTIES = ("og:video", "og:video:url", "og:video:secure_url", "og:audio")


@dataclass
class VideoMedia:
    """What the vision and transcription calls are pointed at."""

    source_url: str
    frame_urls: list[str] = field(default_factory=list)
    audio_uri: str = ""

    @property
    def vision_inputs(self) -> list[str]:
        return self.frame_urls or [self.source_url]


def validate_video_url(url: str) -> str:
    url = url.strip()
    parsed = urlparse(url)
    if parsed.scheme == "gs" and parsed.netloc:
        return url
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInput("Invalid URL. Please provide a valid HTTP(S) or gs:// video URL.")
    return url


def _meta_content(soup: BeautifulSoup, prop: str) -> list[str]:
    values = []
    for tag in soup.find_all("meta", attrs={"property": prop}) + soup.find_all(
        "meta", attrs={"name": prop}
    ):
        content = (tag.get("content") or "").strip()
        if content:
            values.append(content)
    return values


def extract_media_from_html(html: str, base_url: str) -> VideoMedia:
    """Pick preview frames and a playable media URL out of a video page."""
    soup = BeautifulSoup(html, "lxml")

    frames: list[str] = []
    for prop in _FRAME_PROPERTIES:
        for value in _meta_content(soup, prop):
            absolute = urljoin(base_url, value)
            if absolute not in frames:
                frames.append(absolute)

    audio_uri = base_url
    for prop in _MEDIA_PROPERTIES:
        found = _meta_content(soup, prop)
        if found:
            audio_uri = urljoin(base_url, found[0])
            break

    return VideoMedia(source_url=base_url, frame_urls=frames[:MAX_FRAMES], audio_uri=audio_uri)


async def _fetch_page(client: httpx.AsyncClient, url: str) -> str:
    """Return the page HTML, or an empty string when ``url`` is not a web page."""
    async with client.stream(
        "GET",
        url,
        timeout=PAGE_TIMEOUT,
        follow_redirects=True,
        headers={"User-Agent": _USER_AGENT},
    ) as response:
        response.raise_for_status()
        if "html" not in response.headers.get("content-type", "text/html"):
            return ""
        chunks: list[bytes] = []
        size = 0
        async for chunk in response.aiter_bytes():
            chunks.append(chunk)
            size += len(chunk)
            if size >= MAX_PAGE_BYTES:
                break
        body = b"".join(chunks)[:MAX_PAGE_BYTES]
        return body.decode(response.encoding or "utf-8", errors="replace")


async def resolve_video_media(client: httpx.AsyncClient, url: str) -> VideoMedia:
    """Work out frame images and an audio source for ``url``.

    ``gs://`` objects and direct media links are handed to the models as-is.
    For web pages the Open Graph tags are read; if the page cannot be
    fetched the video URL itself is used for both calls.
    """
    url = validate_video_url(url)
    if url.startswith("gs://"):
        return VideoMedia(source_url=url, audio_uri=url)

    try:
        html = await _fetch_page(client, url)
    except httpx.HTTPError as exc:
        logger.warning("Could not fetch video page %s: %s", url, exc)
        return VideoMedia(source_url=url, audio_uri=url)

    if not html:
        return VideoMedia(source_url=url, audio_uri=url)

    media = extract_media_from_html(html, url)
    logger.info("Resolved %d preview frame(s) for %s", len(media.frame_urls), url)
    return media
