"""
CLI entrypoint. Use from project root:
  python -m smartvideo run --product-image shoe.png --avatar-image host.png [--angle "Luxury reveal"]
  python -m smartvideo run --product-image shoe.png --avatar-image host.png --pretest
  python -m smartvideo preview --name "Trail Shoe" [--image https://.../shoe.png]

Unlike the HTTP API, the CLI accepts a local product image; its directory
becomes the asset directory for the run.
"""

import sys
import json
import time
import asyncio
import logging
import argparse
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

load_dotenv()

from .pipeline.assemble import (
    FINAL_OUTPUT,
    MAX_RENDER_WAIT,
    PREVIEW_CLIP_SECONDS,
    PREVIEW_OUTPUT,
    AssemblyClient,
    build_render_timeline,
)
from .pipeline.assets import AssetResolver
from .pipeline.cache import cache_key, fingerprint
from .pipeline.errors import ArtifactError, PipelineError
from .pipeline.jobs import request_with_backoff, wait_for_job
from .pipeline.match import is_data_url, is_remote_url, match_product_assets, split_references
from .pipeline.models import (
    MarketInsight,
    PipelineOptions,
    PipelineResult,
    PipelineRunRequest,
    ProductTruth,
    SceneArtifact,
    TimelineEntry,
    Transition,
)
from .pipeline.orchestrator import SmartVideoPipeline
from .pipeline.prompts import build_timeline, synthesize, timeline_duration

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 120
PRETEST_DIR = "pre_test"


def verify_file(path: Path, label: str) -> Path:
    """Raise ArtifactError unless path exists and holds at least one byte."""
    if not path.exists():
        raise ArtifactError(f"{label} not found at {path}")
    size = path.stat().st_size
    if size == 0:
        raise ArtifactError(f"{label} is empty at {path}")
    logger.info(f"{label} saved: {path} ({size / 1024 / 1024:.1f} MB)")
    return path


async def download_file(
    url: str,
    dest: Path,
    label: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Path:
    """Fetch url into dest, retrying 429 / 5xx with backoff, then verify it."""
    async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True, transport=transport) as client:
        resp = await request_with_backoff(client, "GET", url)
    dest.write_bytes(resp.content)
    return verify_file(dest, label)


async def render_preview(
    client: AssemblyClient,
    entries: list[TimelineEntry],
    clip_urls: list[str],
    label: str,
    poll_interval: float,
) -> str:
    """Low-quality render (sd / 25fps / low) for checking clips before the final cut."""
    job = await client.submit(build_render_timeline(entries, clip_urls), PREVIEW_OUTPUT)
    job = await wait_for_job(
        client,
        job,
        poll_interval=poll_interval,
        deadline=time.monotonic() + MAX_RENDER_WAIT,
        label=label,
    )
    return job.result_url


async def save_artifacts(
    pipeline: SmartVideoPipeline,
    result: PipelineResult,
    output_dir: Path,
    previews: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> list[Path]:
    """
    Download every scene clip, the optional previews and the final video.

    Files:
      <scene_id>.mp4           each generated scene
      <scene_id>_preview.mp4   first seconds of each scene (--previews)
      timeline_preview.mp4     all scenes at preview quality (--previews)
      video.mp4                the final render
    """
    scenes = [SceneArtifact(**s) for s in result.output.get("scenes", [])]
    timeline = [TimelineEntry(**t) for t in result.output.get("timeline", [])]
    saved = []

    for scene in scenes:
        saved.append(await download_file(
            scene.video_url, output_dir / f"{scene.scene_id}.mp4", f"Scene {scene.scene_id} video", transport,
        ))
        if not previews:
            continue
        entry = TimelineEntry(
            scene_id=scene.scene_id,
            label=scene.scene_id,
            duration=min(PREVIEW_CLIP_SECONDS, scene.duration),
            transition=Transition.NONE,
        )
        url = await render_preview(
            pipeline.assembly_client, [entry], [scene.video_url],
            f"Scene {scene.scene_id} preview", pipeline.poll_interval,
        )
        saved.append(await download_file(
            url, output_dir / f"{scene.scene_id}_preview.mp4", f"Scene {scene.scene_id} preview", transport,
        ))

    # A timeline preview needs a clip for every timeline entry; pre-test runs have one.
    if previews and scenes and len(scenes) == len(timeline):
        url = await render_preview(
            pipeline.assembly_client, timeline, [s.video_url for s in scenes],
            "Timeline preview", pipeline.poll_interval,
        )
        saved.append(await download_file(url, output_dir / "timeline_preview.mp4", "Timeline preview", transport))

    if result.video_url:
        saved.append(await download_file(result.video_url, output_dir / "video.mp4", "Final video", transport))
    return saved


def _write_outputs(result, output_dir: Path):
    output_dir.mkdir(parents=True, exist_ok=True)
    (output_dir / "result.json").write_text(
        json.dumps(result.model_dump(mode="json"), indent=2)
    )
    trace = result.output.get("traceability", []) if result.ok else [f"FAILED: {result.error}"]
    (output_dir / "traceability.log").write_text("\n".join(trace) + "\n")


def _append_trace(output_dir: Path, line: str):
    with open(output_dir / "traceability.log", "a") as f:
        f.write(line + "\n")


def _product_image(ref: str) -> tuple[str, Optional[AssetResolver]]:
    """A local product image is resolved to an absolute path and scopes the asset directory."""
    ref = (ref or "").strip()
    if not ref or is_remote_url(ref) or is_data_url(ref):
        return ref, None
    path = Path(ref).expanduser().resolve()
    return str(path), AssetResolver(path.parent)


async def _run(args, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    product_image, resolver = _product_image(args.product_image)
    request = PipelineRunRequest(
        product_image_url=product_image,
        avatar_image_url=args.avatar_image,
        marketing_angle=args.angle,
        product_name=args.name,
        options=PipelineOptions(
            generate_prompt=not args.skip_analysis,
            send_to_sora2=not args.prompts_only,
            enable_shotstack=not (args.skip_assembly or args.pretest),
            log_steps=args.verbose,
        ),
    )
    pipeline = SmartVideoPipeline(
        resolver=resolver,
        output_options=FINAL_OUTPUT if args.hd else None,
        allow_local_paths=True,
        scene_limit=1 if args.pretest else None,
    )
    result = await pipeline.run(request)

    output_dir = Path(args.output_dir) if args.output_dir else None
    if args.pretest:
        output_dir = (output_dir or Path("output")) / PRETEST_DIR

    if output_dir:
        _write_outputs(result, output_dir)
        if result.ok:
            try:
                await save_artifacts(pipeline, result, output_dir, previews=args.previews, transport=transport)
            except (httpx.HTTPError, PipelineError) as e:
                logger.error(f"Saving outputs failed: {e}")
                _append_trace(output_dir, f"ERROR: {e}")
                print(json.dumps(result.to_response(), indent=2))
                return 1

    print(json.dumps(result.to_response(), indent=2))
    return 0 if result.ok else 1


def _preview(args) -> int:
    truth = ProductTruth.default(args.name)
    market = MarketInsight.from_angle(args.angle)
    paths, urls = split_references([args.image] if args.image else [])
    match = match_product_assets(paths, urls)

    scenes = synthesize(args.name, truth, market, match)
    timeline = build_timeline(scenes)
    print(json.dumps({
        "cacheKey": cache_key(args.name, fingerprint(truth, market, match)),
        "prompts": [s.model_dump(mode="json", by_alias=True) for s in scenes],
        "timeline": [t.model_dump(mode="json", by_alias=True) for t in timeline],
        "totalDuration": timeline_duration(timeline),
    }, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="smartvideo",
        description="Generate a short product ad: vision analysis → Sora-2 scenes → Shotstack render",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run the full pipeline")
    run.add_argument("--product-image", required=True, help="Product image URL or local path")
    run.add_argument("--avatar-image", required=True, help="Avatar image URL or local path")
    run.add_argument("--angle", default="Product spotlight", help="Marketing angle")
    run.add_argument("--name", default="Product", help="Product name")
    run.add_argument("--skip-analysis", action="store_true", help="Use default product truth")
    run.add_argument("--prompts-only", action="store_true", help="Stop after prompt synthesis")
    run.add_argument("--skip-assembly", action="store_true", help="Stop after scene generation")
    run.add_argument("--pretest", action="store_true", help="Generate the first scene only, into <output-dir>/pre_test")
    run.add_argument("--previews", action="store_true", help="Also render sd / 25fps / low previews of each scene and the timeline")
    run.add_argument("--hd", action="store_true", help="Render at hd / 30fps / high quality")
    run.add_argument("--verbose", action="store_true", help="Log every pipeline step")
    run.add_argument("--output-dir", help="Write result.json, traceability.log and the downloaded clips here")

    preview = sub.add_parser("preview", help="Show scene prompts and timeline, no remote calls")
    preview.add_argument("--name", default="Product", help="Product name")
    preview.add_argument("--angle", default="Product spotlight", help="Marketing angle")
    preview.add_argument("--image", help="Product image URL or local path")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "preview":
        return _preview(args)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    sys.exit(main())
