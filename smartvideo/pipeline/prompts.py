"""
Prompt Synthesizer — product truth + market insight → ordered scene specs.

Pure, no I/O. The same input always yields the same scenes, which is what
makes the prompt cache sound.

Scenes today:
  scene_01_intro   (4s, no transition)  reveal
  scene_02_detail  (3s, fade)           macro detail
  scene_03_cta     (3s, fade)           call to action
"""

from typing import Callable

from .errors import PromptSynthesisError
from .models import (
    MarketInsight,
    ProductMatch,
    ProductTruth,
    SceneSpec,
    TimelineEntry,
    Transition,
)

# (scene_index, scene_id, match) -> asset reference
AssetSelector = Callable[[int, str, ProductMatch], str]

SCENE_PLAN = [
    ("scene_01_intro", 4),
    ("scene_02_detail", 3),
    ("scene_03_cta", 3),
]

PROMPT_SEPARATOR = "\n\n"


def first_compatible_asset(index: int, scene_id: str, match: ProductMatch) -> str:
    """Every scene references the first compatible asset (the product hero image).

    Likely a defect: scenes probably want scene-appropriate assets. Pass a
    different selector to synthesize() once that is confirmed.
    """
    if match.compatible_assets:
        return match.compatible_assets[0].url
    return ""


def _join(items: list[str], sep: str = ", ") -> str:
    return sep.join(i for i in items if i)


def _first(items: list[str], fallback: str) -> str:
    for item in items:
        if item:
            return item
    return fallback


def build_intro_prompt(name: str, truth: ProductTruth, market: MarketInsight) -> str:
    look = " ".join(
        part for part in (_join(truth.colors), _join(truth.materials), _join(truth.object_form) or name)
        if part
    )
    hook = _first(market.hooks, f"{name} reveal")
    prompt = (
        f"Cinematic product reveal: a {look}. {hook}. "
        f"Professional studio lighting, clean background, smooth camera dolly."
    )
    constraints = _join(truth.visual_constraints, ". ")
    if constraints:
        prompt += f" {constraints}."
    return prompt


def build_detail_prompt(name: str, truth: ProductTruth, market: MarketInsight) -> str:
    parts = _join(truth.visible_parts, " and ") or name
    pattern = _first(market.visual_patterns, "clean product spotlight")
    return (
        f"Extreme close-up macro shot of {parts}, revealing texture, quality, and craftsmanship. "
        f"{pattern}. Smooth camera movement with shallow depth of field."
    )


def build_cta_prompt(name: str, truth: ProductTruth, market: MarketInsight) -> str:
    cta = _first(market.cta_styles, f"{name} call-to-action")
    signals = _join(market.engagement_signals) or "quick reveal"
    return (
        f"{cta}. Product centered in frame, bold composition. "
        f"{signals}. Clean, minimal background."
    )


_BUILDERS = {
    "scene_01_intro": build_intro_prompt,
    "scene_02_detail": build_detail_prompt,
    "scene_03_cta": build_cta_prompt,
}


def synthesize(
    product_name: str,
    truth: ProductTruth,
    market: MarketInsight,
    match: ProductMatch,
    asset_selector: AssetSelector = first_compatible_asset,
) -> list[SceneSpec]:
    """
    Build the ordered scene list for one product.

    Args:
        product_name:   Display name, used where the truth record is empty.
        truth:          What the product looks like.
        market:         Hooks / CTAs / patterns used to flavor the prompts.
        match:          Verified assets; the selector picks each scene's assetRef.
        asset_selector: Per-scene asset selection strategy.

    Returns:
        SceneSpecs in timeline order. The first scene never has a transition.
    """
    name = (product_name or "").strip() or "Product"
    truth = truth or ProductTruth()
    market = market or MarketInsight()
    match = match or ProductMatch()

    scenes: list[SceneSpec] = []
    for index, (scene_id, duration) in enumerate(SCENE_PLAN):
        scenes.append(SceneSpec(
            scene_id=scene_id,
            prompt=_BUILDERS[scene_id](name, truth, market),
            duration=duration,
            transition=Transition.NONE if index == 0 else Transition.FADE,
            asset_ref=asset_selector(index, scene_id, match) or "",
        ))

    if not scenes:
        raise PromptSynthesisError("Prompt synthesis produced no scenes.")
    return scenes


def build_timeline(scenes: list[SceneSpec]) -> list[TimelineEntry]:
    """One timeline entry per scene, same order, same durations and transitions."""
    return [
        TimelineEntry(
            scene_id=scene.scene_id,
            label=scene.scene_id.replace("_", " "),
            duration=scene.duration,
            transition=scene.transition,
            asset_ref=scene.asset_ref,
        )
        for scene in scenes
    ]


def timeline_duration(entries: list[TimelineEntry]) -> int:
    return sum(entry.duration for entry in entries)


def combined_prompt(scenes: list[SceneSpec]) -> str:
    return PROMPT_SEPARATOR.join(scene.prompt for scene in scenes)
