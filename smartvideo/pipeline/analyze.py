"""
Vision analysis — Gemini Flash (vision) via REST.

Extracts ProductTruth from the product image. Best-effort: any failure is
raised as AnalysisError and the orchestrator decides what to do with it.
"""

import os
import json
import base64
import logging
from pathlib import Path

import httpx
from pydantic import BaseModel, ValidationError

from .assets import guess_mime
from .errors import AnalysisError
from .match import is_data_url, is_remote_url
from .models import ProductTruth

logger = logging.getLogger(__name__)

# ── Config ───────────────────────────────────────────────────────────────────

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY", "")
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
VISION_MODEL = "gemini-2.0-flash"

ANALYSIS_CONFIDENCE = 0.85
DOWNLOAD_TIMEOUT = 30
ANALYSIS_TIMEOUT = 60

ANALYSIS_PROMPT = """Analyze this product image of "{product_name}".

Respond with ONLY a JSON object, no markdown, no explanation:
{{
  "object_form": ["..."],
  "materials": ["..."],
  "colors": ["..."],
  "visible_parts": ["..."],
  "visual_constraints": ["..."]
}}

Rules:
- object_form: short phrases describing the product shape/form
- materials: materials that are actually visible
- colors: dominant colors
- visible_parts: distinct visible components
- visual_constraints: things a video generator must keep true about this product
"""


class VisionResult(BaseModel):
    truth: ProductTruth
    confidence: float


def parse_json_response(text: str) -> dict:
    """Parse JSON from a model response, unwrapping ``` fences if present."""
    text = text.strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if "```" in text:
            block = text.split("```")[1]
            if block.startswith("json"):
                block = block[4:]
            return json.loads(block.strip())
        raise


def response_text(result) -> str:
    """
    Text of the first part of the first candidate.

    Blocked or truncated replies (finishReason SAFETY, RECITATION, ...) come
    back without content parts; those raise AnalysisError like any other
    shape we cannot read.
    """
    candidates = result.get("candidates") if isinstance(result, dict) else None
    if not candidates:
        raise AnalysisError("Gemini returned no candidates for product analysis.")

    candidate = candidates[0] if isinstance(candidates, list) else None
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    part = parts[0] if isinstance(parts, list) and parts else None
    text = part.get("text") if isinstance(part, dict) else None
    if not isinstance(text, str) or not text.strip():
        reason = candidate.get("finishReason") if isinstance(candidate, dict) else None
        raise AnalysisError(f"Gemini returned an unexpected response shape (finishReason={reason}).")
    return text


async def load_image(image_ref: str, transport: httpx.AsyncBaseTransport = None) -> tuple[bytes, str]:
    """Return (bytes, mime) for a remote URL, a data URL or a local path."""
    if is_data_url(image_ref):
        header, _, data = image_ref.partition(",")
        mime = header[5:].split(";", 1)[0] or "image/png"
        return base64.b64decode(data), mime

    if is_remote_url(image_ref):
        async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, transport=transport, follow_redirects=True) as client:
            resp = await client.get(image_ref)
            resp.raise_for_status()
            mime = resp.headers.get("content-type", "").split(";")[0] or guess_mime(image_ref.split("?")[0])
            return resp.content, mime

    path = Path(image_ref)
    return path.read_bytes(), guess_mime(path)


class GeminiVisionAnalyzer:
    """Callable analyzer: await analyzer(image_ref, product_name) -> VisionResult."""

    def __init__(
        self,
        api_key: str = None,
        model: str = VISION_MODEL,
        transport: httpx.AsyncBaseTransport = None,
    ):
        self.api_key = api_key if api_key is not None else GEMINI_API_KEY
        self.model = model
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _api_url(self) -> str:
        return f"{GEMINI_API_BASE}/models/{self.model}:generateContent"

    async def __call__(self, image_ref: str, product_name: str = "product") -> VisionResult:
        if not image_ref:
            raise AnalysisError("No image provided for vision analysis.")
        if not self.api_key:
            raise AnalysisError("GEMINI_API_KEY not set; skipping vision analysis.")

        try:
            image_bytes, mime = await load_image(image_ref, self._transport)
        except (httpx.HTTPError, OSError, ValueError) as e:
            raise AnalysisError(f"Could not load product image: {e}") from e

        request_body = {
            "contents": [
                {
                    "parts": [
                        {
                            "inlineData": {
                                "mimeType": mime,
                                "data": base64.b64encode(image_bytes).decode("utf-8"),
                            }
                        },
                        {"text": ANALYSIS_PROMPT.format(product_name=product_name)},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": 0.1,
                "responseMimeType": "application/json",
            },
        }

        try:
            async with httpx.AsyncClient(timeout=ANALYSIS_TIMEOUT, transport=self._transport) as client:
                response = await client.post(
                    self._api_url(),
                    params={"key": self.api_key},
                    json=request_body,
                )
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            raise AnalysisError(
                f"Gemini API error {e.response.status_code}: {e.response.text[:300]}"
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise AnalysisError(f"Gemini request failed: {e}") from e

        text = response_text(result)
        try:
            truth = ProductTruth(**parse_json_response(text))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise AnalysisError(f"Failed to parse analysis response: {e}") from e

        logger.info(
            f"Product analysis: form={truth.object_form} materials={truth.materials} "
            f"colors={truth.colors}"
        )
        return VisionResult(truth=truth, confidence=ANALYSIS_CONFIDENCE)
