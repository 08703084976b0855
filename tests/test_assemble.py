"""
Tests for the Shotstack assembly client and timeline builder.
"""

import json

import httpx
import pytest
from pydantic import ValidationError

from smartvideo.pipeline.assemble import (
    SHOTSTACK_PROD_URL,
    SHOTSTACK_SANDBOX_URL,
    AssemblyClient,
    OutputOptions,
    base_url_for,
    build_render_timeline,
)
from smartvideo.pipeline.errors import ConfigError, RemoteSubmissionError
from smartvideo.pipeline.models import JobState, TimelineEntry, Transition


@pytest.fixture
def entries():
    return [
        TimelineEntry(scene_id="scene_01_intro", label="scene 01 intro", duration=4, transition=Transition.NONE),
        TimelineEntry(scene_id="scene_02_detail", label="scene 02 detail", duration=3),
        TimelineEntry(scene_id="scene_03_cta", label="scene 03 cta", duration=3),
    ]


def _client(handler, api_key="ss-test"):
    client = AssemblyClient(api_key=api_key, env="sandbox", transport=httpx.MockTransport(handler))
    client.retry_base_delay = 0
    return client


def test_timeline_clips_start_after_previous(entries):
    timeline = build_render_timeline(entries, ["https://c/1.mp4", "https://c/2.mp4", "https://c/3.mp4"])

    clips = timeline["tracks"][0]["clips"]
    assert [c["start"] for c in clips] == [0, 4, 7]
    assert [c["length"] for c in clips] == [4, 3, 3]
    assert clips[0]["asset"] == {"type": "video", "src": "https://c/1.mp4"}
    assert "transition" not in clips[0]
    assert clips[1]["transition"] == {"in": "fade", "out": "fade"}


def test_timeline_rejects_count_mismatch(entries):
    with pytest.raises(ValueError, match="3 entries but 2 clip URLs"):
        build_render_timeline(entries, ["https://c/1.mp4", "https://c/2.mp4"])


def test_timeline_rejects_missing_url(entries):
    with pytest.raises(ValueError, match="scene_02_detail"):
        build_render_timeline(entries, ["https://c/1.mp4", "", "https://c/3.mp4"])


def test_base_url_by_environment():
    assert base_url_for("production") == SHOTSTACK_PROD_URL
    assert base_url_for("sandbox") == SHOTSTACK_SANDBOX_URL
    assert base_url_for("anything-else") == SHOTSTACK_SANDBOX_URL


def test_output_options_payload():
    assert OutputOptions().to_payload() == {"format": "mp4", "resolution": "sd", "fps": 25}
    assert OutputOptions(resolution="hd", fps=30, quality="high").to_payload()["quality"] == "high"
    with pytest.raises(ValidationError):
        OutputOptions(fps=24)


@pytest.mark.asyncio
async def test_submit_render(entries):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(201, json={"success": True, "response": {"id": "r-1", "message": "Created"}})

    timeline = build_render_timeline(entries, ["https://c/1.mp4", "https://c/2.mp4", "https://c/3.mp4"])
    job = await _client(handler).submit(timeline)

    assert job.job_id == "r-1"
    assert job.state == JobState.SUBMITTED
    sent = requests[0]
    assert sent.url == f"{SHOTSTACK_SANDBOX_URL}/render"
    assert sent.headers["x-api-key"] == "ss-test"
    body = json.loads(sent.content)
    assert body["output"] == {"format": "mp4", "resolution": "sd", "fps": 25}
    assert len(body["timeline"]["tracks"][0]["clips"]) == 3


@pytest.mark.asyncio
async def test_submit_requires_api_key():
    with pytest.raises(ConfigError):
        await _client(lambda r: httpx.Response(200), api_key="").submit({"tracks": []})


@pytest.mark.asyncio
async def test_submit_without_render_id_fails():
    def handler(request):
        return httpx.Response(200, json={"success": False, "message": "Bad Request"})

    with pytest.raises(RemoteSubmissionError, match="render ID"):
        await _client(handler).submit({"tracks": []})


@pytest.mark.asyncio
async def test_poll_done_returns_url():
    def handler(request):
        assert request.url == f"{SHOTSTACK_SANDBOX_URL}/render/r-1"
        return httpx.Response(200, json={"response": {"status": "done", "url": "https://cdn.test/final.mp4"}})

    job = await _client(handler).poll("r-1")

    assert job.state == JobState.FINISHED
    assert job.result_url == "https://cdn.test/final.mp4"


@pytest.mark.asyncio
async def test_poll_rendering_is_in_progress():
    def handler(request):
        return httpx.Response(200, json={"response": {"status": "rendering"}})

    job = await _client(handler).poll("r-1")

    assert job.state == JobState.PROCESSING
    assert job.result_url is None


@pytest.mark.asyncio
async def test_poll_failed_carries_error():
    def handler(request):
        return httpx.Response(200, json={"response": {"status": "failed", "error": "asset not found"}})

    job = await _client(handler).poll("r-1")

    assert job.state == JobState.FAILED
    assert job.error == "asset not found"
