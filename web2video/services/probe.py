"""Cheap metadata lookup for a video URL without downloading it."""

import logging
import posixpath
from urllib.parse import urlparse

from pydantic import BaseModel

from web2video.services.retrieval import RetrievalOrchestrator, Success

logger = logging.getLogger(__name__)

HEAD_TIMEOUT_MS = 10000
RANGE_TIMEOUT_MS = 5000
SNIFF_RANGE = "bytes=0-1024"

_EBML_MAGIC = b"\x1a\x45\xdf\xa3"


class VideoMetadata(BaseModel):
    url: str
    file_size: int | None = None
    format: str | None = None


def sniff_format(data: bytes) -> str | None:
    """Guess the container from the first bytes of a file."""
    if not data:
        return None
    if b"ftyp" in data[:64]:
        return "mp4"
    if data.startswith(_EBML_MAGIC):
        # Matroska and WebM share the EBML header; the doctype tells them apart
        return "webm" if b"webm" in data[:64] else "mkv"
    if data.startswith(b"RIFF") and data[8:12] == b"AVI ":
        return "avi"
    if data.startswith(b"FLV"):
        return "flv"
    if data.startswith(b"OggS"):
        return "ogg"
    return None


def _format_from_headers(url: str, headers: dict[str, str]) -> str | None:
    content_type = headers.get("content-type", "")
    if "/" in content_type:
        subtype = content_type.split("/", 1)[1].split(";")[0].strip()
        if subtype:
            return subtype
    ext = posixpath.splitext(urlparse(url).path)[1]
    return ext.lstrip(".").lower() or None


async def probe_video(url: str, orchestrator: RetrievalOrchestrator) -> VideoMetadata:
    head = await orchestrator.fetch(url, method="HEAD", timeout=HEAD_TIMEOUT_MS)
    if not isinstance(head, Success):
        logger.warning(f"Failed to get metadata for {url}: {head.message}")
        return VideoMetadata(url=url)

    length = head.headers.get("content-length", "")
    metadata = VideoMetadata(
        url=url,
        file_size=int(length) if length.isdigit() else None,
        format=_format_from_headers(url, head.headers),
    )

    partial = await orchestrator.fetch(
        url, headers={"Range": SNIFF_RANGE}, timeout=RANGE_TIMEOUT_MS
    )
    if isinstance(partial, Success):
        sniffed = sniff_format(partial.content)
        if sniffed:
            metadata.format = sniffed
    else:
        logger.debug(f"Range probe failed for {url}: {partial.message}")

    return metadata
