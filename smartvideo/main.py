import os
import time
import logging
from contextlib import asynccontextmanager

import uvicorn
from dotenv import load_dotenv
from fastapi import Depends, FastAPI
from fastapi.responses import JSONResponse

load_dotenv()

from . import metrics
from .pipeline import api_router, pipeline_router
from .pipeline.routes import get_pipeline
from .pipeline.orchestrator import SmartVideoPipeline

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Smart video service starting up...")
    metrics.set_gauge("start_time", time.time())
    yield
    logger.info("Smart video service shutting down...")


app = FastAPI(title="Smart Video Pipeline", lifespan=lifespan)
app.include_router(api_router)
app.include_router(pipeline_router)


@app.get("/health")
def health_check(pipeline: SmartVideoPipeline = Depends(get_pipeline)):
    """Report which remote services have credentials configured."""
    services = {
        "sora2": pipeline.scene_client.configured,
        "shotstack": pipeline.assembly_client.configured,
        "gemini": bool(getattr(pipeline.analyzer, "configured", True)),
    }
    ready = all(services.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ok" if ready else "degraded", "services": services},
    )


@app.get("/metrics")
def metrics_endpoint(pipeline: SmartVideoPipeline = Depends(get_pipeline)):
    """Return a snapshot of all pipeline metrics."""
    snapshot = metrics.get_snapshot()
    snapshot["prompt_cache"] = pipeline.cache.stats()
    return snapshot


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8080))
    uvicorn.run("smartvideo.main:app", host="0.0.0.0", port=port, reload=True)
