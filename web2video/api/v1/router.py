from fastapi import APIRouter

from web2video.api.v1 import videos

api_router = APIRouter(prefix="/api")

api_router.include_router(videos.router, tags=["Videos"])
