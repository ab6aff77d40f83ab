import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from web2video.api.deps import get_orchestrator
from web2video.core.exceptions import BadRequestError
from web2video.schemas.videos import (
    FetchFailedResponse,
    FetchVideosRequest,
    FetchVideosResponse,
    VideoMetadataResponse,
    normalize_target_url,
)
from web2video.services.extractor import extract_videos
from web2video.services.probe import probe_video
from web2video.services.retrieval import RetrievalOrchestrator, Success

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/fetch-videos",
    response_model=FetchVideosResponse,
    response_model_exclude_none=True,
    responses={500: {"model": FetchFailedResponse}},
    summary="Fetch a page and list its videos",
    description="Retrieve the page through the bypass cascade (direct, challenge solver, header rotation) and return every video reference found in it. When all tiers fail the response carries the full attempt history.",
)
async def fetch_videos(
    request: FetchVideosRequest,
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    url = normalize_target_url(request.url)
    logger.info(f"Fetching: {url}")

    outcome = await orchestrator.fetch(url)
    if not isinstance(outcome, Success):
        logger.error(f"Error fetching videos: {outcome.message}")
        failed = FetchFailedResponse(
            error=outcome.message,
            attempts=[a.to_dict() for a in outcome.attempts],
        )
        return JSONResponse(status_code=500, content=failed.model_dump())

    videos = extract_videos(
        outcome.body,
        url,
        orchestrator.config.video_extensions,
        orchestrator.config.image_extensions,
    )
    return FetchVideosResponse(
        success=True,
        url=url,
        videos=[v.to_dict() for v in videos],
        count=len(videos),
    )


@router.get(
    "/video-metadata",
    response_model=VideoMetadataResponse,
    response_model_exclude_none=True,
    summary="Probe a video URL",
    description="Read size and container format of a video via a HEAD request and a 1 KB range request, without downloading the file.",
)
async def video_metadata(
    url: str | None = Query(default=None),
    orchestrator: RetrievalOrchestrator = Depends(get_orchestrator),
):
    if not url or not url.strip():
        raise BadRequestError("URL parameter is required")
    metadata = await probe_video(url.strip(), orchestrator)
    return VideoMetadataResponse(success=True, metadata=metadata.model_dump())
