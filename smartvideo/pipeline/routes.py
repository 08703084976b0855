"""
FastAPI routes for the smart video pipeline.

Endpoints:
  POST /api/generate-video     — Run the full pipeline and wait for the result
  POST /pipeline/run           — Start a run in the background
  GET  /pipeline/status/{id}   — Get run status
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from .cache import build_prompt_cache
from .errors import JobTimeoutError
from .match import is_data_url, is_remote_url
from .models import PipelineRunRequest, PipelineStatusResponse
from .orchestrator import SmartVideoPipeline

logger = logging.getLogger(__name__)

# Lazily-built singleton; tests swap it via app.dependency_overrides.
_pipeline: Optional[SmartVideoPipeline] = None


def get_pipeline() -> SmartVideoPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = SmartVideoPipeline(cache=build_prompt_cache())
    return _pipeline


def non_url_error(request: PipelineRunRequest) -> Optional[str]:
    """Error message when an image field holds something other than an http(s) or data: URL. Local paths stay CLI-only."""
    refs = {
        "productImageUrl": request.product_image_url,
        "avatarImageUrl": request.avatar_image_url,
    }
    invalid = [
        field for field, ref in refs.items()
        if ref and ref.strip() and not (is_remote_url(ref.strip()) or is_data_url(ref.strip()))
    ]
    if not invalid:
        return None
    return " and ".join(invalid) + " must be an http(s) or data: URL."


# ═════════════════════════════════════════════════════════════════════════════
# Synchronous API: one request, one finished video
# ═════════════════════════════════════════════════════════════════════════════

api_router = APIRouter(prefix="/api", tags=["api"])


@api_router.post("/generate-video")
async def generate_video(
    request: PipelineRunRequest,
    pipeline: SmartVideoPipeline = Depends(get_pipeline),
):
    """
    Analyze → prompt → Sora-2 scenes → Shotstack render.

    Errors:
      - 400: productImageUrl / avatarImageUrl missing or not a URL
      - 504: a remote job timed out
      - 500: anything else
    """
    if not request.product_image_url or not request.avatar_image_url:
        return JSONResponse(
            status_code=400,
            content={"error": "productImageUrl and avatarImageUrl are required."},
        )
    error = non_url_error(request)
    if error:
        return JSONResponse(status_code=400, content={"error": error})

    result = await pipeline.run(request)
    if result.ok:
        return result.to_response()

    if result.error_code == "validation":
        status_code = 400
    elif result.error_code == JobTimeoutError.code:
        status_code = 504
    else:
        status_code = 500
    return JSONResponse(status_code=status_code, content=result.to_response())


# ═════════════════════════════════════════════════════════════════════════════
# Background runs
# ═════════════════════════════════════════════════════════════════════════════

pipeline_router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@pipeline_router.post("/run", response_model=PipelineStatusResponse)
async def run_pipeline(
    request: PipelineRunRequest,
    pipeline: SmartVideoPipeline = Depends(get_pipeline),
):
    """Start the pipeline (async). Poll /pipeline/status/{run_id}."""
    error = non_url_error(request)
    if error:
        raise HTTPException(status_code=400, detail=error)
    run_id = await pipeline.run_background(request)
    logger.info(f"[{run_id}] Pipeline run queued")
    return pipeline.get_status(run_id)


@pipeline_router.get("/status/{run_id}", response_model=PipelineStatusResponse)
async def get_pipeline_status(
    run_id: str,
    pipeline: SmartVideoPipeline = Depends(get_pipeline),
):
    """Get the current status of a pipeline run."""
    status = pipeline.get_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return status
