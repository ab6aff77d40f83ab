"""Video reference extraction from fetched HTML.

Four independent heuristics, run in a fixed order:

- media tags: ``<video src>``, nested ``<source>`` variants, lazy-load data
  attributes
- anchors: ``<a href>`` pointing at a video file extension
- raw-text regex: absolute video URLs anywhere in the markup (scripts, JSON)
- iframes: embeds from known video platforms

Results are merged by absolute URL, first occurrence wins, so the metadata a
media tag carries is never replaced by a bare regex hit on the same URL. A
heuristic that blows up is logged and skipped; the others still run.
"""

import html as html_entities
import logging
import re
from dataclasses import asdict, dataclass
from typing import Callable, Iterable
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag

from web2video.core.exceptions import ExtractionWarning
from web2video.core.metrics import videos_extracted_total
from web2video.core.runtime_config import get_config_store

logger = logging.getLogger(__name__)

KIND_VIDEO_TAG = "video-tag"
KIND_SOURCE_TAG = "source-tag"
KIND_DATA_ATTRIBUTE = "data-attribute"
KIND_LINK = "link"
KIND_REGEX_MATCH = "regex-match"
KIND_IFRAME = "iframe"

# Embeds from these hosts (or their subdomains) count as videos
_EMBED_PLATFORMS = (
    "youtube.com",
    "youtu.be",
    "vimeo.com",
    "dailymotion.com",
    "twitch.tv",
    "streamable.com",
)

_FAVICON_MARKERS = ("favicon", "favi")


@dataclass
class VideoReference:
    url: str
    kind: str
    poster: str | None = None
    title: str | None = None
    text: str | None = None
    quality: str | None = None
    format: str | None = None
    duration: str | None = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def resolve_url(url: str, base_url: str) -> str:
    """Resolve `url` against `base_url`; return it untouched if that fails."""
    try:
        return urljoin(base_url, url)
    except ValueError:
        return url


def _attr(el: Tag, *names: str) -> str | None:
    for name in names:
        value = el.get(name)
        if isinstance(value, list):
            value = " ".join(value)
        if value and value.strip():
            return value.strip()
    return None


def _normalize_extensions(extensions: Iterable[str]) -> list[str]:
    normalized = []
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        if not ext.startswith("."):
            ext = "." + ext
        if ext not in normalized:
            normalized.append(ext)
    return normalized


class _Filters:
    """Image/favicon exclusion shared by all heuristics."""

    def __init__(self, video_extensions: list[str], image_extensions: list[str]):
        self.video_extensions = video_extensions
        self.image_extensions = image_extensions

    def is_image(self, url: str) -> bool:
        lower = url.lower()
        return any(ext in lower for ext in self.image_extensions)

    def is_favicon_or_image(self, url: str) -> bool:
        lower = url.lower()
        return any(m in lower for m in _FAVICON_MARKERS) or self.is_image(url)

    def has_video_extension(self, url: str) -> bool:
        lower = url.lower()
        return any(ext in lower for ext in self.video_extensions)


def _is_embed_platform(url: str) -> bool:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return False
    return any(host == d or host.endswith("." + d) for d in _EMBED_PLATFORMS)


def build_video_url_pattern(extensions: Iterable[str]) -> re.Pattern | None:
    """Regex for absolute http(s) URLs ending in one of `extensions`."""
    escaped = [re.escape(ext.lstrip(".")) for ext in extensions if ext.lstrip(".")]
    if not escaped:
        return None
    return re.compile(
        r"https?://[^\s\"'<>]+\.(?:" + "|".join(escaped) + r")(?![a-z0-9])(?:\?[^\s\"'<>]*)?",
        re.IGNORECASE,
    )


# ---------------------------------------------------------------------------
# Heuristics. Each appends to `found` in detection order
# ---------------------------------------------------------------------------


def _from_media_tags(soup: BeautifulSoup, base_url: str, filters: _Filters, found: list) -> None:
    for video in soup.find_all("video"):
        try:
            title = _attr(video, "title", "alt", "data-title")
            main_src = _attr(video, "src")
            if main_src and not filters.is_image(main_src):
                poster = _attr(video, "poster")
                found.append(
                    VideoReference(
                        url=resolve_url(main_src, base_url),
                        kind=KIND_VIDEO_TAG,
                        poster=resolve_url(poster, base_url) if poster else None,
                        title=title,
                        duration=_attr(video, "duration"),
                    )
                )

            # Nested sources are read even when the video has its own src;
            # that is where the other quality variants live
            sources = video.find_all("source")
            for source in sources:
                source_src = _attr(source, "src", "data-src")
                if not source_src or filters.is_image(source_src):
                    continue
                mime = _attr(source, "type")
                found.append(
                    VideoReference(
                        url=resolve_url(source_src, base_url),
                        kind=KIND_SOURCE_TAG,
                        quality=_attr(source, "label", "data-quality", "size"),
                        format=mime.split("/")[1].split(";")[0].strip() if mime and "/" in mime else None,
                        title=title,
                    )
                )

            if not main_src and not sources:
                data_src = _attr(video, "data-src", "data-video-src")
                if data_src and not filters.is_image(data_src):
                    found.append(
                        VideoReference(
                            url=resolve_url(data_src, base_url),
                            kind=KIND_DATA_ATTRIBUTE,
                            title=title,
                        )
                    )
        except Exception as e:
            logger.warning(str(ExtractionWarning("media-tag", e)))


def _from_anchors(soup: BeautifulSoup, base_url: str, filters: _Filters, found: list) -> None:
    for anchor in soup.find_all("a", href=True):
        try:
            href = _attr(anchor, "href")
            if not href or not filters.has_video_extension(href):
                continue
            if filters.is_favicon_or_image(href):
                continue
            found.append(
                VideoReference(
                    url=resolve_url(href, base_url),
                    kind=KIND_LINK,
                    text=anchor.get_text(" ", strip=True) or None,
                    title=_attr(anchor, "title"),
                )
            )
        except Exception as e:
            logger.warning(str(ExtractionWarning("anchor", e)))


def _from_raw_text(html: str, filters: _Filters, found: list) -> None:
    pattern = build_video_url_pattern(filters.video_extensions)
    if pattern is None:
        return
    for raw in pattern.findall(html):
        # Parsed attributes come back entity-decoded; raw hits must match them
        match = html_entities.unescape(raw)
        if filters.is_favicon_or_image(match):
            continue
        found.append(VideoReference(url=match, kind=KIND_REGEX_MATCH))


def _from_iframes(soup: BeautifulSoup, base_url: str, found: list) -> None:
    for iframe in soup.find_all("iframe", src=True):
        try:
            src = _attr(iframe, "src")
            if not src:
                continue
            resolved = resolve_url(src, base_url)
            if _is_embed_platform(resolved):
                found.append(
                    VideoReference(url=resolved, kind=KIND_IFRAME, title=_attr(iframe, "title"))
                )
        except Exception as e:
            logger.warning(str(ExtractionWarning("iframe", e)))


def _run(name: str, fn: Callable, *args) -> None:
    try:
        fn(*args)
    except Exception as e:
        logger.warning(str(ExtractionWarning(name, e)))


def dedupe(references: Iterable[VideoReference]) -> list[VideoReference]:
    """Keep the first reference per URL, preserving order."""
    seen: set[str] = set()
    unique = []
    for ref in references:
        if ref.url in seen:
            continue
        seen.add(ref.url)
        unique.append(ref)
    return unique


def extract_videos(
    html: str,
    base_url: str,
    extensions: Iterable[str] | None = None,
    image_extensions: Iterable[str] | None = None,
) -> list[VideoReference]:
    """Find candidate video URLs in `html`, resolved against `base_url`.

    Extensions default to the current configuration snapshot.
    """
    if extensions is None or image_extensions is None:
        snapshot = get_config_store().current()
        if extensions is None:
            extensions = snapshot.video_extensions
        if image_extensions is None:
            image_extensions = snapshot.image_extensions

    filters = _Filters(
        _normalize_extensions(extensions), _normalize_extensions(image_extensions)
    )
    found: list[VideoReference] = []
    if not html:
        return found

    soup = BeautifulSoup(html, "lxml")
    _run("media-tag", _from_media_tags, soup, base_url, filters, found)
    _run("anchor", _from_anchors, soup, base_url, filters, found)
    _run("regex", _from_raw_text, html, filters, found)
    _run("iframe", _from_iframes, soup, base_url, found)

    videos = dedupe(found)
    for ref in videos:
        videos_extracted_total.labels(kind=ref.kind).inc()
    return videos
