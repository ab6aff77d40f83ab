from pydantic import BaseModel

from web2video.core.exceptions import BadRequestError


def normalize_target_url(url: str | None) -> str:
    """Validate a user-supplied page URL and prepend https:// when the scheme is missing."""
    url = (url or "").strip()
    if not url:
        raise BadRequestError("URL is required")
    if url.startswith("/"):
        raise BadRequestError("Please provide a full URL with domain")
    if not url.startswith("http"):
        url = f"https://{url}"
    return url


class FetchVideosRequest(BaseModel):
    url: str | None = None


class VideoItem(BaseModel):
    url: str
    kind: str  # video-tag, source-tag, data-attribute, link, regex-match, iframe
    poster: str | None = None
    title: str | None = None
    text: str | None = None
    quality: str | None = None
    format: str | None = None
    duration: str | None = None


class FetchVideosResponse(BaseModel):
    success: bool
    url: str
    videos: list[VideoItem]
    count: int


class AttemptItem(BaseModel):
    tier: str
    attempt: int
    endpoint_index: int | None = None
    method: str | None = None
    error: str


class FetchFailedResponse(BaseModel):
    success: bool = False
    error: str
    attempts: list[AttemptItem] = []


class VideoMetadataItem(BaseModel):
    url: str
    file_size: int | None = None
    format: str | None = None


class VideoMetadataResponse(BaseModel):
    success: bool
    metadata: VideoMetadataItem
