"""
Smart Video Pipeline

Product image + marketing angle → finished short-form ad:
  Vision analysis → Asset match → Prompt synthesis (cached)
  → Sora-2 scene clips (Vidgo) → Shotstack assembly
"""

from .orchestrator import SmartVideoPipeline
from .routes import api_router, pipeline_router
from .models import PipelineOptions, PipelineResult, PipelineRunRequest, PipelineStage
from .errors import PipelineError

__all__ = [
    "SmartVideoPipeline",
    "api_router",
    "pipeline_router",
    "PipelineOptions",
    "PipelineResult",
    "PipelineRunRequest",
    "PipelineStage",
    "PipelineError",
]
