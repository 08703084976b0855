"""
Pytest configuration and fixtures.
"""

from typing import Optional
from unittest.mock import AsyncMock

import pytest

from smartvideo import metrics
from smartvideo.pipeline.analyze import VisionResult
from smartvideo.pipeline.assets import AssetResolver
from smartvideo.pipeline.cache import PromptCache
from smartvideo.pipeline.jobs import RemoteJobClient
from smartvideo.pipeline.models import JobState, ProductTruth, RemoteJob
from smartvideo.pipeline.orchestrator import SmartVideoPipeline


class FakeSceneClient(RemoteJobClient):
    """Scripted scene generator: one job per scene, job id = task-<scene_id>."""

    service = "fake-vidgo"

    def __init__(
        self,
        fail_scenes=(),
        stuck_scenes=(),
        pending_polls: Optional[dict] = None,
    ):
        super().__init__()
        self.configured = True
        self.fail_scenes = set(fail_scenes)
        self.stuck_scenes = set(stuck_scenes)
        self.pending_polls = pending_polls or {}
        self.submitted = []
        self.polls = []

    async def submit(self, scene, reference=None):
        self.submitted.append((scene, reference))
        return RemoteJob(job_id=f"task-{scene.scene_id}", state=JobState.SUBMITTED, raw_status="pending")

    async def poll(self, job_id):
        self.polls.append(job_id)
        scene_id = job_id.removeprefix("task-")
        if scene_id in self.stuck_scenes or self.polls.count(job_id) <= self.pending_polls.get(scene_id, 0):
            return RemoteJob(job_id=job_id, state=JobState.PROCESSING, raw_status="processing")
        if scene_id in self.fail_scenes:
            return RemoteJob(job_id=job_id, state=JobState.FAILED, error="content policy", raw_status="failed")
        return RemoteJob(
            job_id=job_id,
            state=JobState.FINISHED,
            result_url=f"https://cdn.test/{scene_id}.mp4",
            raw_status="finished",
        )


class FakeAssemblyClient(RemoteJobClient):
    """Scripted renderer: every render finishes on the first poll unless fail or stuck."""

    service = "fake-shotstack"

    def __init__(self, fail: bool = False, stuck: bool = False):
        super().__init__()
        self.configured = True
        self.fail = fail
        self.stuck = stuck
        self.submitted = []
        self.polls = []

    async def submit(self, timeline, output=None):
        self.submitted.append((timeline, output))
        return RemoteJob(job_id=f"render-{len(self.submitted)}", state=JobState.SUBMITTED, raw_status="queued")

    async def poll(self, job_id):
        self.polls.append(job_id)
        if self.stuck:
            return RemoteJob(job_id=job_id, state=JobState.PROCESSING, raw_status="rendering")
        if self.fail:
            return RemoteJob(job_id=job_id, state=JobState.FAILED, error="bad clip", raw_status="failed")
        return RemoteJob(
            job_id=job_id,
            state=JobState.FINISHED,
            result_url="https://cdn.test/final.mp4",
            raw_status="done",
        )


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def product_truth():
    return ProductTruth(
        object_form=["running shoe"],
        materials=["mesh", "rubber"],
        colors=["red"],
        visible_parts=["laces", "sole"],
        visual_constraints=["keep logo visible"],
    )


@pytest.fixture
def scene_client():
    return FakeSceneClient()


@pytest.fixture
def assembly_client():
    return FakeAssemblyClient()


@pytest.fixture
def analyzer(product_truth):
    analyzer = AsyncMock(return_value=VisionResult(truth=product_truth, confidence=0.85))
    analyzer.configured = True
    return analyzer


@pytest.fixture
def make_pipeline(tmp_path, scene_client, assembly_client, analyzer):
    """Build a SmartVideoPipeline wired to fakes; keyword args override."""

    def _make(**overrides) -> SmartVideoPipeline:
        kwargs = dict(
            scene_client=scene_client,
            assembly_client=assembly_client,
            analyzer=analyzer,
            resolver=AssetResolver(tmp_path),
            cache=PromptCache(),
            poll_interval=0,
            run_timeout=30,
        )
        kwargs.update(overrides)
        return SmartVideoPipeline(**kwargs)

    return _make
