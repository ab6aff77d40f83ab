import logging
from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import Response

from web2video.config import settings
from web2video.core.metrics import get_metrics, get_metrics_content_type
from web2video.core.runtime_config import get_config_store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get(
    "/api/health",
    summary="Liveness check",
    description="Returns HTTP 200 while the process is running, together with which retrieval tiers are switched on in the current configuration.",
)
async def health():
    """Liveness probe plus a summary of the enabled tiers."""
    config = get_config_store().current()
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "config": {
            "flaresolverr": config.solver_enabled,
            "proxy": config.proxy_enabled,
            "bypass": config.bypass_enabled,
        },
    }


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Exposes retrieval and extraction metrics in Prometheus text exposition format. Returns 404 if metrics are disabled via METRICS_ENABLED=false.",
    include_in_schema=False,
)
async def metrics():
    if not settings.METRICS_ENABLED:
        return Response(status_code=404)
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
