"""
Video assembly — Shotstack Edit API.

  POST {base}/render      { timeline, output } → { response: { id } }
  GET  {base}/render/{id}                      → { response: { status, url } }

Shotstack statuses: queued, fetching, rendering, saving, done, failed.
"""

import os
import logging
from typing import Literal, Optional

import httpx
from pydantic import BaseModel

from .errors import ConfigError, RemoteSubmissionError, RemoteTransportError
from .jobs import BASE_DELAY, RemoteJobClient, request_with_backoff
from .models import JobState, RemoteJob, TimelineEntry, Transition

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

SHOTSTACK_API_KEY = os.getenv("SHOTSTACK_API_KEY", "")
SHOTSTACK_ENV = os.getenv("SHOTSTACK_ENV", "sandbox")
SHOTSTACK_PROD_URL = "https://api.shotstack.io/edit/v1"
SHOTSTACK_SANDBOX_URL = "https://api.shotstack.io/stage/v1"

SUBMIT_TIMEOUT = 30
POLL_TIMEOUT = 15
MAX_RENDER_WAIT = 900  # seconds

STATUS_MAP = {
    "queued": JobState.SUBMITTED,
    "fetching": JobState.PROCESSING,
    "rendering": JobState.PROCESSING,
    "saving": JobState.PROCESSING,
    "done": JobState.FINISHED,
    "failed": JobState.FAILED,
}


def normalize_status(raw_status: str) -> JobState:
    return STATUS_MAP.get(raw_status.strip().lower(), JobState.PROCESSING)


def base_url_for(env: str) -> str:
    return SHOTSTACK_PROD_URL if env == "production" else SHOTSTACK_SANDBOX_URL


class OutputOptions(BaseModel):
    format: Literal["mp4", "gif", "mp3"] = "mp4"
    resolution: Literal["preview", "mobile", "sd", "hd", "1080", "fhd"] = "sd"
    fps: Literal[25, 30] = 25
    quality: Optional[Literal["low", "medium", "high"]] = None

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)


FINAL_OUTPUT = OutputOptions(resolution="hd", fps=30, quality="high")
PREVIEW_OUTPUT = OutputOptions(resolution="sd", fps=25, quality="low")
PREVIEW_CLIP_SECONDS = 2


def build_render_timeline(entries: list[TimelineEntry], clip_urls: list[str]) -> dict:
    """
    Build a Shotstack timeline: one video clip per entry, in entry order.

    Each clip starts where the previous one ends; fade entries get a
    fade in/out transition.
    """
    if len(entries) != len(clip_urls):
        raise ValueError(
            f"Timeline has {len(entries)} entries but {len(clip_urls)} clip URLs"
        )

    clips = []
    start = 0
    for entry, url in zip(entries, clip_urls):
        if not url:
            raise ValueError(f"Missing video URL for scene {entry.scene_id}")
        clip = {
            "asset": {"type": "video", "src": url},
            "start": start,
            "length": entry.duration,
        }
        if entry.transition == Transition.FADE:
            clip["transition"] = {"in": "fade", "out": "fade"}
        clips.append(clip)
        start += entry.duration

    return {"tracks": [{"clips": clips}]}


class AssemblyClient(RemoteJobClient):
    """Submits render jobs and reports their current status."""

    service = "shotstack"
    retry_base_delay = BASE_DELAY

    def __init__(
        self,
        api_key: Optional[str] = None,
        env: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.api_key = api_key if api_key is not None else SHOTSTACK_API_KEY
        self.env = env or SHOTSTACK_ENV
        self.base_url = (base_url or base_url_for(self.env)).rstrip("/")
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> dict:
        return {
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def submit(self, timeline: dict, output: Optional[OutputOptions] = None) -> RemoteJob:
        """
        Submit a render. No retries.

        Raises:
            ConfigError:           SHOTSTACK_API_KEY is not set.
            RemoteSubmissionError: transport error, non-2xx, or no render id.
        """
        if not self.api_key:
            raise ConfigError("SHOTSTACK_API_KEY environment variable is required.")

        payload = {
            "timeline": timeline,
            "output": (output or OutputOptions()).to_payload(),
        }
        try:
            async with self._client(SUBMIT_TIMEOUT) as client:
                resp = await client.post(
                    f"{self.base_url}/render",
                    headers=self._headers(),
                    json=payload,
                )
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPStatusError as e:
            raise RemoteSubmissionError(
                f"Shotstack render create failed: HTTP {e.response.status_code} {e.response.text[:300]}",
                service=self.service,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteSubmissionError(
                f"Shotstack render create failed: {e}",
                service=self.service,
            ) from e

        response = data.get("response") if isinstance(data, dict) else None
        render_id = response.get("id") if isinstance(response, dict) else None
        if not render_id:
            raise RemoteSubmissionError(
                f"Shotstack did not return a render ID: {str(data)[:300]}",
                service=self.service,
            )

        clip_count = sum(len(t.get("clips", [])) for t in timeline.get("tracks", []))
        logger.info(f"Shotstack render submitted: render_id={render_id} clips={clip_count}")
        return RemoteJob(job_id=str(render_id), state=JobState.SUBMITTED, raw_status="queued")

    async def poll(self, job_id: str) -> RemoteJob:
        try:
            async with self._client(POLL_TIMEOUT) as client:
                resp = await request_with_backoff(
                    client,
                    "GET",
                    f"{self.base_url}/render/{job_id}",
                    headers=self._headers(),
                    base_delay=self.retry_base_delay,
                )
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteTransportError(
                f"Shotstack render poll failed for {job_id}: {e}",
                service=self.service,
                job_id=job_id,
            ) from e

        response = data.get("response") if isinstance(data, dict) else None
        if not isinstance(response, dict):
            response = {}

        raw_status = str(response.get("status") or "queued")
        state = normalize_status(raw_status)
        return RemoteJob(
            job_id=job_id,
            state=state,
            result_url=response.get("url") if state == JobState.FINISHED else None,
            error=str(response.get("error") or "render failed") if state == JobState.FAILED else None,
            raw_status=raw_status,
        )
