"""
Tests for Gemini vision analysis.
"""

import json
import base64

import httpx
import pytest

from smartvideo.pipeline.analyze import GeminiVisionAnalyzer, load_image, parse_json_response, response_text
from smartvideo.pipeline.assets import placeholder_png, to_data_url
from smartvideo.pipeline.errors import AnalysisError

PNG_DATA_URL = to_data_url(placeholder_png(), "image/png")

TRUTH_JSON = {
    "object_form": ["running shoe"],
    "materials": ["mesh"],
    "colors": ["red", "white"],
    "visible_parts": ["laces"],
    "visual_constraints": "keep logo visible",
}


def _gemini_reply(text):
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


SAFETY_BLOCKED = {"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]}


def test_parse_plain_json():
    assert parse_json_response('{"a": 1}') == {"a": 1}


def test_parse_fenced_json():
    assert parse_json_response('Here you go:\n```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}


def test_parse_garbage_raises():
    with pytest.raises(json.JSONDecodeError):
        parse_json_response("not json at all")


@pytest.mark.asyncio
async def test_load_image_from_data_url():
    data, mime = await load_image(PNG_DATA_URL)

    assert data == placeholder_png()
    assert mime == "image/png"


@pytest.mark.asyncio
async def test_load_image_from_local_path(tmp_path):
    path = tmp_path / "shoe.jpg"
    path.write_bytes(b"jpeg-bytes")

    data, mime = await load_image(str(path))

    assert data == b"jpeg-bytes"
    assert mime == "image/jpeg"


@pytest.mark.asyncio
async def test_load_image_from_url():
    def handler(request):
        return httpx.Response(200, content=b"webp-bytes", headers={"content-type": "image/webp"})

    data, mime = await load_image("https://x/p.webp", transport=httpx.MockTransport(handler))

    assert data == b"webp-bytes"
    assert mime == "image/webp"


@pytest.mark.asyncio
async def test_analyzer_returns_truth():
    requests = []

    def handler(request):
        requests.append(request)
        return _gemini_reply(json.dumps(TRUTH_JSON))

    analyzer = GeminiVisionAnalyzer(api_key="g-key", transport=httpx.MockTransport(handler))
    result = await analyzer(PNG_DATA_URL, "Trail Shoe")

    assert result.confidence == 0.85
    assert result.truth.colors == ["red", "white"]
    assert result.truth.visual_constraints == ["keep logo visible"]

    sent = requests[0]
    assert sent.url.params["key"] == "g-key"
    assert "gemini-2.0-flash:generateContent" in sent.url.path
    parts = json.loads(sent.content)["contents"][0]["parts"]
    assert parts[0]["inlineData"]["mimeType"] == "image/png"
    assert base64.b64decode(parts[0]["inlineData"]["data"]) == placeholder_png()
    assert "Trail Shoe" in parts[1]["text"]


@pytest.mark.asyncio
async def test_analyzer_without_key_fails():
    analyzer = GeminiVisionAnalyzer(api_key="")

    with pytest.raises(AnalysisError) as exc_info:
        await analyzer(PNG_DATA_URL, "Trail Shoe")

    assert exc_info.value.confidence == 0.0
    assert analyzer.configured is False


@pytest.mark.asyncio
async def test_analyzer_without_image_fails():
    with pytest.raises(AnalysisError, match="No image"):
        await GeminiVisionAnalyzer(api_key="g-key")("", "Trail Shoe")


@pytest.mark.asyncio
async def test_analyzer_http_error():
    def handler(request):
        return httpx.Response(500, text="internal")

    analyzer = GeminiVisionAnalyzer(api_key="g-key", transport=httpx.MockTransport(handler))

    with pytest.raises(AnalysisError, match="Gemini API error 500"):
        await analyzer(PNG_DATA_URL, "Trail Shoe")


@pytest.mark.asyncio
async def test_analyzer_no_candidates():
    analyzer = GeminiVisionAnalyzer(
        api_key="g-key",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"candidates": []})),
    )

    with pytest.raises(AnalysisError, match="no candidates"):
        await analyzer(PNG_DATA_URL, "Trail Shoe")


@pytest.mark.asyncio
async def test_analyzer_unparseable_reply():
    analyzer = GeminiVisionAnalyzer(
        api_key="g-key",
        transport=httpx.MockTransport(lambda r: _gemini_reply("I think it is a shoe")),
    )

    with pytest.raises(AnalysisError, match="Failed to parse"):
        await analyzer(PNG_DATA_URL, "Trail Shoe")


@pytest.mark.asyncio
async def test_analyzer_unreadable_local_image(tmp_path):
    analyzer = GeminiVisionAnalyzer(api_key="g-key")

    with pytest.raises(AnalysisError, match="Could not load"):
        await analyzer(str(tmp_path / "missing.png"), "Trail Shoe")


@pytest.mark.asyncio
async def test_analyzer_safety_blocked_reply():
    analyzer = GeminiVisionAnalyzer(
        api_key="g-key",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json=SAFETY_BLOCKED)),
    )

    with pytest.raises(AnalysisError, match="unexpected response shape") as exc_info:
        await analyzer(PNG_DATA_URL, "Trail Shoe")

    assert "SAFETY" in exc_info.value.message


@pytest.mark.parametrize("reply", [
    [],
    {"candidates": "nope"},
    {"candidates": [None]},
    {"candidates": [{"finishReason": "RECITATION"}]},
    {"candidates": [{"content": {"parts": None}}]},
    {"candidates": [{"content": {"parts": [{"inlineData": {}}]}}]},
    {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
])
def test_response_text_rejects_odd_shapes(reply):
    with pytest.raises(AnalysisError):
        response_text(reply)


def test_response_text_reads_first_part():
    reply = {"candidates": [{"content": {"parts": [{"text": "{}"}, {"text": "ignored"}]}}]}

    assert response_text(reply) == "{}"
