"""
Tests for the prompt synthesizer and timeline.
"""

import pytest

from smartvideo.pipeline.match import match_product_assets
from smartvideo.pipeline.models import MarketInsight, ProductMatch, ProductTruth, Transition
from smartvideo.pipeline.prompts import (
    PROMPT_SEPARATOR,
    build_timeline,
    combined_prompt,
    synthesize,
    timeline_duration,
)


@pytest.fixture
def market():
    return MarketInsight.from_angle("Luxury reveal")


@pytest.fixture
def match():
    return match_product_assets(["assets/shoe.png"], ["https://x/p.png"])


def test_synthesis_is_deterministic(product_truth, market, match):
    first = synthesize("Trail Shoe", product_truth, market, match)
    second = synthesize("Trail Shoe", product_truth, market, match)

    assert [s.model_dump_json() for s in first] == [s.model_dump_json() for s in second]


def test_three_scenes_in_fixed_order(product_truth, market, match):
    scenes = synthesize("Trail Shoe", product_truth, market, match)

    assert [s.scene_id for s in scenes] == ["scene_01_intro", "scene_02_detail", "scene_03_cta"]
    assert [s.duration for s in scenes] == [4, 3, 3]
    assert scenes[0].transition == Transition.NONE
    assert all(s.transition == Transition.FADE for s in scenes[1:])


def test_timeline_mirrors_scenes(product_truth, market, match):
    scenes = synthesize("Trail Shoe", product_truth, market, match)
    timeline = build_timeline(scenes)

    assert len(timeline) == len(scenes)
    assert timeline_duration(timeline) == sum(s.duration for s in scenes) == 10
    assert [t.scene_id for t in timeline] == [s.scene_id for s in scenes]
    assert timeline[1].label == "scene 02 detail"


def test_prompts_use_truth_and_market(product_truth, market, match):
    intro, detail, cta = synthesize("Trail Shoe", product_truth, market, match)

    assert "red mesh, rubber running shoe" in intro.prompt
    assert "Luxury reveal" in intro.prompt
    assert "keep logo visible" in intro.prompt
    assert "laces and sole" in detail.prompt
    assert cta.prompt.startswith("Luxury reveal - call to action.")


def test_every_scene_references_first_compatible_asset(product_truth, market, match):
    scenes = synthesize("Trail Shoe", product_truth, market, match)

    assert {s.asset_ref for s in scenes} == {"assets/shoe.png"}


def test_no_assets_means_text_only_scenes(product_truth, market):
    scenes = synthesize("Trail Shoe", product_truth, market, ProductMatch())

    assert all(s.asset_ref == "" for s in scenes)


def test_custom_asset_selector(product_truth, market, match):
    def per_scene(index, scene_id, match):
        return match.compatible_assets[index % len(match.compatible_assets)].url

    scenes = synthesize("Trail Shoe", product_truth, market, match, asset_selector=per_scene)

    assert [s.asset_ref for s in scenes] == ["assets/shoe.png", "https://x/p.png", "assets/shoe.png"]


def test_empty_truth_falls_back_to_product_name(market):
    intro, detail, _ = synthesize("Desk Lamp", ProductTruth(), market, ProductMatch())

    assert "Desk Lamp" in intro.prompt
    assert "macro shot of Desk Lamp" in detail.prompt


def test_combined_prompt_joins_scenes(product_truth, market, match):
    scenes = synthesize("Trail Shoe", product_truth, market, match)

    assert combined_prompt(scenes).split(PROMPT_SEPARATOR) == [s.prompt for s in scenes]
