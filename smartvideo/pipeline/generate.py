"""
Scene generation — Sora-2 via the Vidgo video-series API.

  POST {base}/generate        → { task_id | id }
  GET  {base}/status/{taskId} → { status, output_url | video_url | url }

image-to-video when the scene has a reference image, text-to-video otherwise.
"""

import os
import logging
from typing import Optional

import httpx

from .errors import ConfigError, RemoteSubmissionError, RemoteTransportError
from .jobs import BASE_DELAY, RemoteJobClient, request_with_backoff
from .models import JobState, RemoteJob, SceneSpec

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

SORA_2_API_KEY = os.getenv("SORA_2_API_KEY", "")
VIDGO_API_BASE = os.getenv("VIDGO_API_BASE", "https://api.vidgo.ai/v1/video-series")

DEFAULT_RESOLUTION = "1080p"   # 720p | 1080p
DEFAULT_ASPECT_RATIO = "16:9"  # 16:9 | 9:16 | 1:1
DEFAULT_DURATION = 8

SUBMIT_TIMEOUT = 30
POLL_TIMEOUT = 15

# Vidgo status strings → our job states. Anything else keeps polling.
STATUS_MAP = {
    "pending": JobState.SUBMITTED,
    "queued": JobState.SUBMITTED,
    "submitted": JobState.SUBMITTED,
    "processing": JobState.PROCESSING,
    "running": JobState.PROCESSING,
    "generating": JobState.PROCESSING,
    "finished": JobState.FINISHED,
    "completed": JobState.FINISHED,
    "success": JobState.FINISHED,
    "failed": JobState.FAILED,
    "error": JobState.FAILED,
}


def normalize_status(raw_status: str) -> JobState:
    return STATUS_MAP.get(raw_status.strip().lower(), JobState.PROCESSING)


class SceneGenerationClient(RemoteJobClient):
    """Submits one scene per job and reports its current status."""

    service = "vidgo"
    retry_base_delay = BASE_DELAY

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: str = VIDGO_API_BASE,
        resolution: str = DEFAULT_RESOLUTION,
        aspect_ratio: str = DEFAULT_ASPECT_RATIO,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.api_key = api_key if api_key is not None else SORA_2_API_KEY
        self.base_url = base_url.rstrip("/")
        self.resolution = resolution
        self.aspect_ratio = aspect_ratio
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    def build_payload(self, scene: SceneSpec, reference: Optional[str] = None) -> dict:
        return {
            "prompt": scene.prompt,
            "duration": scene.duration or DEFAULT_DURATION,
            "resolution": self.resolution,
            "aspect_ratio": self.aspect_ratio,
            "generation_type": "image-to-video" if reference else "text-to-video",
            "reference_images": [reference] if reference else [],
        }

    async def submit(self, scene: SceneSpec, reference: Optional[str] = None) -> RemoteJob:
        """
        Submit a scene for generation. No retries: a failed submission is
        terminal for this scene.

        Raises:
            ConfigError:           SORA_2_API_KEY is not set.
            RemoteSubmissionError: transport error, non-2xx, or no task id.
        """
        if not self.api_key:
            raise ConfigError("SORA_2_API_KEY environment variable is required.")

        payload = self.build_payload(scene, reference)
        try:
            async with self._client(SUBMIT_TIMEOUT) as client:
                resp = await client.post(
                    f"{self.base_url}/generate",
                    headers=self._headers(),
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise RemoteSubmissionError(
                f"Sora 2 create failed for {scene.scene_id}: "
                f"HTTP {e.response.status_code} {e.response.text[:300]}",
                service=self.service,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteSubmissionError(
                f"Sora 2 create failed for {scene.scene_id}: {e}",
                service=self.service,
            ) from e

        task_id = None
        if isinstance(data, dict):
            nested = data.get("data") if isinstance(data.get("data"), dict) else {}
            task_id = data.get("task_id") or data.get("id") or nested.get("task_id") or nested.get("id")
        if not task_id:
            raise RemoteSubmissionError(
                f"Vidgo API did not return a task ID for {scene.scene_id}: {str(data)[:300]}",
                service=self.service,
            )

        logger.info(
            f"Scene {scene.scene_id} submitted: task_id={task_id} "
            f"mode={payload['generation_type']} duration={payload['duration']}s"
        )
        return RemoteJob(job_id=str(task_id), state=JobState.SUBMITTED, raw_status="pending")

    async def poll(self, job_id: str) -> RemoteJob:
        try:
            async with self._client(POLL_TIMEOUT) as client:
                resp = await request_with_backoff(
                    client,
                    "GET",
                    f"{self.base_url}/status/{job_id}",
                    headers=self._headers(),
                    base_delay=self.retry_base_delay,
                )
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteTransportError(
                f"Sora 2 status poll failed for task {job_id}: {e}",
                service=self.service,
                job_id=job_id,
            ) from e

        record = data.get("data", data) if isinstance(data, dict) else {}
        if not isinstance(record, dict):
            record = {}

        raw_status = str(record.get("status") or "pending")
        state = normalize_status(raw_status)
        video_url = record.get("output_url") or record.get("video_url") or record.get("url")
        error = record.get("error") or record.get("message") or record.get("fail_reason")

        return RemoteJob(
            job_id=job_id,
            state=state,
            result_url=video_url if state == JobState.FINISHED else None,
            error=str(error) if state == JobState.FAILED and error else None,
            raw_status=raw_status,
        )
