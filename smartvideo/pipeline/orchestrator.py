"""
SmartVideoPipeline — Main pipeline orchestrator.

Chains every stage of a run, full asyncio:
  validating  → productImageUrl must be present and, unless local paths are
                allowed, an http(s) or data: URL (no remote calls otherwise)
  analyzing   → Gemini vision; failure falls back to a default ProductTruth
  matching    → ProductMatch from the supplied image reference
  prompting   → prompt synthesizer (memoized by the prompt cache)
  generating  → one Vidgo job per scene, concurrent, reassembled in order
                (only the first scene_limit scenes in a pre-test run)
  assembling  → one Shotstack render over the ordered scene clips
  done | failed
"""

import os
import time
import uuid
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .. import metrics
from .analyze import GeminiVisionAnalyzer, VisionResult
from .assemble import MAX_RENDER_WAIT, AssemblyClient, OutputOptions, build_render_timeline
from .assets import AssetResolver
from .cache import DEFAULT_TTL_SECONDS, PromptCache, cache_key, fingerprint
from .errors import AnalysisError, InputValidationError, PipelineError, PromptSynthesisError
from .generate import SceneGenerationClient
from .jobs import wait_for_job
from .match import is_data_url, is_remote_url, match_product_assets, split_references
from .models import (
    MarketInsight,
    PipelineOptions,
    PipelineResult,
    PipelineRunRequest,
    PipelineStage,
    PipelineStatusResponse,
    ProductMatch,
    ProductTruth,
    RemoteJob,
    SceneArtifact,
    SceneSpec,
    TimelineEntry,
)
from .prompts import AssetSelector, build_timeline, combined_prompt, first_compatible_asset, synthesize

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

POLL_INTERVAL = float(os.getenv("PIPELINE_POLL_INTERVAL", "5"))
RUN_TIMEOUT = float(os.getenv("PIPELINE_RUN_TIMEOUT", "1800"))
SCENE_CONCURRENCY = int(os.getenv("PIPELINE_SCENE_CONCURRENCY", "3"))
MAX_TRACKED_RUNS = 500

STAGE_PROGRESS = {
    PipelineStage.VALIDATING: 0,
    PipelineStage.ANALYZING: 10,
    PipelineStage.MATCHING: 20,
    PipelineStage.PROMPTING: 30,
    PipelineStage.GENERATING: 40,
    PipelineStage.ASSEMBLING: 80,
    PipelineStage.DONE: 100,
}

Analyzer = Callable[[str, str], Awaitable[VisionResult]]


class _RunContext:
    """Per-run bookkeeping. Never shared between runs."""

    def __init__(self, run_id: str, options: PipelineOptions):
        self.run_id = run_id
        self.options = options
        self.stage = PipelineStage.VALIDATING
        self.started = time.monotonic()
        self.stage_started = self.started
        self.trace: list[str] = []

    def step(self, message: str):
        self.trace.append(message)
        level = logging.INFO if self.options.log_steps else logging.DEBUG
        logger.log(level, f"[{self.run_id}] {message}")


class SmartVideoPipeline:
    """
    Production pipeline orchestrator.

    Usage:
        pipeline = SmartVideoPipeline()
        result = await pipeline.run(PipelineRunRequest(
            product_image_url="https://.../product.png",
            marketing_angle="Luxury reveal",
        ))

    Every collaborator can be injected; defaults read their config from the
    environment. The only state shared between runs is the prompt cache and
    the observational run-status map.

    allow_local_paths lets productImageUrl name a file on this machine; only
    the CLI turns it on. scene_limit > 0 generates that many scenes and skips
    assembly.
    """

    def __init__(
        self,
        scene_client: Optional[SceneGenerationClient] = None,
        assembly_client: Optional[AssemblyClient] = None,
        analyzer: Optional[Analyzer] = None,
        resolver: Optional[AssetResolver] = None,
        cache: Optional[PromptCache] = None,
        asset_selector: AssetSelector = first_compatible_asset,
        poll_interval: float = POLL_INTERVAL,
        run_timeout: float = RUN_TIMEOUT,
        scene_concurrency: int = SCENE_CONCURRENCY,
        output_options: Optional[OutputOptions] = None,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        allow_local_paths: bool = False,
        scene_limit: Optional[int] = None,
    ):
        self.scene_client = scene_client or SceneGenerationClient()
        self.assembly_client = assembly_client or AssemblyClient()
        self.analyzer = analyzer or GeminiVisionAnalyzer()
        self.resolver = resolver or AssetResolver()
        self.cache = cache if cache is not None else PromptCache()
        self.asset_selector = asset_selector
        self.poll_interval = poll_interval
        self.run_timeout = run_timeout
        self.scene_concurrency = max(1, scene_concurrency)
        self.output_options = output_options or OutputOptions()
        self.cache_ttl = cache_ttl
        self.allow_local_paths = allow_local_paths
        self.scene_limit = scene_limit
        self._runs: dict[str, PipelineStatusResponse] = {}
        self._background: set[asyncio.Task] = set()

    # ── Status tracking ──────────────────────────────────────────────────

    def get_status(self, run_id: str) -> Optional[PipelineStatusResponse]:
        """Current status of a run, or None if unknown."""
        return self._runs.get(run_id)

    def _update_status(
        self,
        run_id: str,
        stage: PipelineStage,
        step: str = "",
        result: Optional[PipelineResult] = None,
        error: Optional[str] = None,
    ):
        previous = self._runs.pop(run_id, None)
        progress = STAGE_PROGRESS.get(stage, previous.progress_pct if previous else 0)
        self._runs[run_id] = PipelineStatusResponse(
            run_id=run_id,
            stage=stage,
            current_step=step,
            progress_pct=progress,
            result=result,
            error=error,
        )
        while len(self._runs) > MAX_TRACKED_RUNS:
            self._runs.pop(next(iter(self._runs)))

    def _enter(self, ctx: _RunContext, stage: PipelineStage, step: str):
        now = time.monotonic()
        metrics.record_latency(f"stage.{ctx.stage.value}", (now - ctx.stage_started) * 1000)
        ctx.stage = stage
        ctx.stage_started = now
        self._update_status(ctx.run_id, stage, step)
        ctx.step(step)

    # ── Entry points ─────────────────────────────────────────────────────

    async def run(self, request: PipelineRunRequest, run_id: Optional[str] = None) -> PipelineResult:
        """
        Run the full pipeline once.

        Returns:
            PipelineResult.success with the video URL (when assembled), the
            combined scene prompts and an output bag; or PipelineResult.failure
            with one human-readable error. Never raises for pipeline errors.
        """
        run_id = run_id or uuid.uuid4().hex[:12]
        ctx = _RunContext(run_id, request.options)
        deadline = ctx.started + self.run_timeout

        metrics.inc_counter("pipeline.runs")
        metrics.add_gauge("active_runs", 1)
        self._update_status(run_id, PipelineStage.VALIDATING, "Validating inputs...")

        try:
            return await self._execute(request, ctx, deadline)
        except PipelineError as e:
            return self._fail(ctx, e.message, e.code)
        except asyncio.CancelledError:
            self._update_status(run_id, PipelineStage.FAILED, error="Run cancelled by caller.")
            metrics.inc_counter("pipeline.cancelled")
            raise
        except Exception as e:
            logger.error(f"[{run_id}] Pipeline failed unexpectedly: {e}", exc_info=True)
            return self._fail(ctx, str(e) or e.__class__.__name__, "internal")
        finally:
            metrics.add_gauge("active_runs", -1)
            metrics.record_latency("pipeline.run", (time.monotonic() - ctx.started) * 1000)

    async def run_background(self, request: PipelineRunRequest, run_id: Optional[str] = None) -> str:
        """Fire-and-forget wrapper for run(). Poll get_status() for progress."""
        run_id = run_id or uuid.uuid4().hex[:12]
        self._update_status(run_id, PipelineStage.VALIDATING, "Queued")
        task = asyncio.create_task(self.run(request, run_id))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return run_id

    # ── Stages ───────────────────────────────────────────────────────────

    async def _execute(
        self,
        request: PipelineRunRequest,
        ctx: _RunContext,
        deadline: float,
    ) -> PipelineResult:
        product_image = (request.product_image_url or "").strip()
        if not product_image:
            raise InputValidationError("productImageUrl is required.")
        if not self.allow_local_paths and not (is_remote_url(product_image) or is_data_url(product_image)):
            raise InputValidationError("productImageUrl must be an http(s) or data: URL.")

        truth, analysis = await self._analyze(ctx, product_image, request.product_name)

        self._enter(ctx, PipelineStage.MATCHING, "Matching assets...")
        match = self._match(product_image)
        ctx.step(match.justification)

        self._enter(ctx, PipelineStage.PROMPTING, "Orchestrating prompts...")
        market = MarketInsight.from_angle(request.marketing_angle)
        scenes, timeline, cache_hit = self._prompt(ctx, request.product_name, truth, market, match)
        prompt_text = combined_prompt(scenes)

        output = {
            "runId": ctx.run_id,
            "analysis": analysis,
            "match": match.model_dump(mode="json", by_alias=True),
            "options": request.options.model_dump(by_alias=True),
            "cacheHit": cache_hit,
            "timeline": [t.model_dump(mode="json", by_alias=True) for t in timeline],
        }
        if request.avatar_image_url:
            output["avatarImageUrl"] = request.avatar_image_url

        if not request.options.send_to_sora2:
            output["prompts"] = [s.model_dump(mode="json", by_alias=True) for s in scenes]
            output["traceability"] = ctx.trace
            return self._succeed(ctx, prompt_text, output)

        selected = scenes[: self.scene_limit] if self.scene_limit else scenes
        self._enter(ctx, PipelineStage.GENERATING, f"Generating {len(selected)} scene(s) via Sora-2...")
        artifacts = await self._generate(ctx, selected, deadline)
        output["scenes"] = [a.model_dump(mode="json", by_alias=True) for a in artifacts]
        output["jobIds"] = {a.scene_id: a.job_id for a in artifacts}

        if len(selected) < len(scenes):
            ctx.step(f"Pre-test run: stopped after {len(selected)} of {len(scenes)} scene(s).")

        if not request.options.enable_shotstack or len(selected) < len(scenes):
            output["traceability"] = ctx.trace
            return self._succeed(ctx, prompt_text, output)

        self._enter(ctx, PipelineStage.ASSEMBLING, "Assembling final video with Shotstack...")
        render = await self._assemble(ctx, timeline, artifacts, deadline)
        output["renderId"] = render.job_id
        output["traceability"] = ctx.trace
        return self._succeed(ctx, prompt_text, output, video_url=render.result_url)

    async def _analyze(
        self,
        ctx: _RunContext,
        product_image: str,
        product_name: str,
    ) -> tuple[ProductTruth, dict]:
        """Best-effort: an AnalysisError is logged and replaced by the default truth."""
        if not ctx.options.generate_prompt:
            self._enter(ctx, PipelineStage.ANALYZING, "Vision analysis disabled, using default product truth.")
            return ProductTruth.default(product_name), {"ok": False, "skipped": True}

        self._enter(ctx, PipelineStage.ANALYZING, "Analyzing product image...")
        try:
            vision = await self.analyzer(product_image, product_name)
        except AnalysisError as e:
            logger.warning(f"[{ctx.run_id}] Vision analysis failed: {e.message}")
            metrics.inc_counter("pipeline.analysis_fallbacks")
            ctx.step(f"Vision analysis failed, using defaults: {e.message}")
            return ProductTruth.default(product_name), {
                "ok": False,
                "confidence": e.confidence,
                "error": e.message,
            }

        ctx.step(f"Vision analysis complete. Confidence: {vision.confidence}")
        return vision.truth, {"ok": True, "confidence": vision.confidence}

    def _match(self, product_image: str) -> ProductMatch:
        paths, urls = split_references([product_image])
        return match_product_assets(paths, urls)

    def _prompt(
        self,
        ctx: _RunContext,
        product_name: str,
        truth: ProductTruth,
        market: MarketInsight,
        match: ProductMatch,
    ) -> tuple[list[SceneSpec], list[TimelineEntry], bool]:
        key = cache_key(product_name, fingerprint(truth, market, match))

        entry = None
        try:
            entry = self.cache.get(key)
        except Exception as e:
            logger.warning(f"[{ctx.run_id}] Prompt cache read failed, synthesizing: {e}")
        if entry is not None:
            ctx.step(f"Prompt cache hit: {key}")
            metrics.inc_counter("prompt_cache.hits")
            return list(entry.prompts), list(entry.timeline), True

        metrics.inc_counter("prompt_cache.misses")
        scenes = synthesize(product_name, truth, market, match, self.asset_selector)
        if not scenes:
            raise PromptSynthesisError("Prompt orchestration failed: no scenes produced.")
        timeline = build_timeline(scenes)

        try:
            self.cache.put(key, scenes, timeline, ttl=self.cache_ttl)
        except Exception as e:
            logger.warning(f"[{ctx.run_id}] Prompt cache write failed: {e}")
        return scenes, timeline, False

    async def _generate(
        self,
        ctx: _RunContext,
        scenes: list[SceneSpec],
        deadline: float,
    ) -> list[SceneArtifact]:
        """
        Generate every scene; the first failure cancels the rest.

        Results come back in SceneSpec order regardless of completion order.
        """
        semaphore = asyncio.Semaphore(self.scene_concurrency)
        tasks = [
            asyncio.create_task(self._generate_scene(ctx, scene, semaphore, deadline))
            for scene in scenes
        ]
        try:
            artifacts = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        if len(artifacts) != len(scenes):
            raise PipelineError(
                f"Generated {len(artifacts)} clip(s) for {len(scenes)} scene(s).",
                code="internal",
            )
        return list(artifacts)

    async def _generate_scene(
        self,
        ctx: _RunContext,
        scene: SceneSpec,
        semaphore: asyncio.Semaphore,
        deadline: float,
    ) -> SceneArtifact:
        async with semaphore:
            ctx.step(f"Generating scene: {scene.scene_id}...")
            reference = await asyncio.to_thread(self.resolver.resolve, scene.asset_ref, ctx.trace)

            job = await self.scene_client.submit(scene, reference)
            ctx.step(f"Scene {scene.scene_id} submitted as task {job.job_id}")

            metrics.add_gauge("remote_jobs_in_flight", 1)
            try:
                job = await wait_for_job(
                    self.scene_client,
                    job,
                    poll_interval=self.poll_interval,
                    deadline=deadline,
                    label=f"Scene {scene.scene_id}",
                )
            finally:
                metrics.add_gauge("remote_jobs_in_flight", -1)

        ctx.step(f"Scene {scene.scene_id} finished: {job.result_url}")
        return SceneArtifact(
            scene_id=scene.scene_id,
            job_id=job.job_id,
            video_url=job.result_url,
            duration=scene.duration,
            transition=scene.transition,
            prompt=scene.prompt,
            asset_ref=scene.asset_ref,
        )

    async def _assemble(
        self,
        ctx: _RunContext,
        timeline: list[TimelineEntry],
        artifacts: list[SceneArtifact],
        deadline: float,
    ) -> RemoteJob:
        render_timeline = build_render_timeline(timeline, [a.video_url for a in artifacts])
        job = await self.assembly_client.submit(render_timeline, self.output_options)
        ctx.step(f"Shotstack render submitted: {job.job_id}")

        return await wait_for_job(
            self.assembly_client,
            job,
            poll_interval=self.poll_interval,
            deadline=min(deadline, time.monotonic() + MAX_RENDER_WAIT),
            label="Video assembly",
        )

    # ── Terminal states ──────────────────────────────────────────────────

    def _succeed(
        self,
        ctx: _RunContext,
        prompt: str,
        output: dict,
        video_url: Optional[str] = None,
    ) -> PipelineResult:
        result = PipelineResult.success(prompt, output, video_url=video_url, run_id=ctx.run_id)
        self._enter(ctx, PipelineStage.DONE, "Pipeline complete!")
        self._update_status(ctx.run_id, PipelineStage.DONE, "Pipeline complete!", result=result)
        metrics.inc_counter("pipeline.succeeded")
        logger.info(f"[{ctx.run_id}] Pipeline complete. video_url={video_url}")
        return result

    def _fail(self, ctx: _RunContext, message: str, code: str) -> PipelineResult:
        failed_stage = ctx.stage
        logger.error(f"[{ctx.run_id}] Pipeline failed at {failed_stage.value} ({code}): {message}")
        metrics.inc_counter("pipeline.failed")
        metrics.inc_counter(f"pipeline.errors.{code}")
        metrics.record_error(failed_stage.value, code, message, ctx.run_id)

        result = PipelineResult.failure(message, failed_stage=failed_stage, code=code, run_id=ctx.run_id)
        self._update_status(ctx.run_id, PipelineStage.FAILED, result=result, error=message)
        return result
