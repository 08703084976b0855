"""
Pydantic models and enums for the smart video pipeline.
"""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Accepts both snake_case and camelCase; dumps camelCase with by_alias=True."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Pipeline Stage ───────────────────────────────────────────────────────────

class PipelineStage(str, Enum):
    VALIDATING = "validating"
    ANALYZING = "analyzing"
    MATCHING = "matching"
    PROMPTING = "prompting"
    GENERATING = "generating"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


# ── Remote Jobs ──────────────────────────────────────────────────────────────

class JobState(str, Enum):
    SUBMITTED = "submitted"
    PROCESSING = "processing"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.FINISHED, JobState.FAILED)

    @property
    def rank(self) -> int:
        """Terminality order: submitted < processing < finished/failed."""
        return {"submitted": 0, "processing": 1}.get(self.value, 2)


class RemoteJob(BaseModel):
    job_id: str
    state: JobState = JobState.SUBMITTED
    result_url: Optional[str] = None
    error: Optional[str] = None
    raw_status: str = ""


class Transition(str, Enum):
    FADE = "fade"
    NONE = "none"


# ── Product Truth / Market Insight ───────────────────────────────────────────

class ProductTruth(BaseModel):
    model_config = ConfigDict(frozen=True)

    object_form: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    colors: list[str] = Field(default_factory=list)
    visible_parts: list[str] = Field(default_factory=list)
    visual_constraints: list[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @classmethod
    def default(cls, product_name: str = "product") -> "ProductTruth":
        """Fallback truth used when analysis is skipped or fails."""
        return cls(
            object_form=[(product_name or "product").lower()],
            materials=["unknown"],
            colors=["unknown"],
            visible_parts=[],
            visual_constraints=["show product only"],
        )


class MarketInsight(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    hooks: list[str] = Field(default_factory=list)
    cta_styles: list[str] = Field(default_factory=list)
    visual_patterns: list[str] = Field(default_factory=list)
    engagement_signals: list[str] = Field(default_factory=list)

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @classmethod
    def from_angle(cls, marketing_angle: str) -> "MarketInsight":
        return cls(
            hooks=[marketing_angle],
            cta_styles=[f"{marketing_angle} - call to action"],
            visual_patterns=["clean product spotlight"],
            engagement_signals=["quick reveal", "macro detail"],
        )


# ── Assets ───────────────────────────────────────────────────────────────────

class VerifiedAsset(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    url: str
    type: str = "image"  # image, video, audio
    format: str = "png"
    tags: list[str] = Field(default_factory=list)
    source: str = "upload"
    verified: bool = True
    verified_at: str = ""
    quality_score: float = 0.0
    usable_for: list[str] = Field(default_factory=list)


class ProductMatch(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    compatible_assets: list[VerifiedAsset] = Field(default_factory=list)
    reuse_allowed: bool = False
    justification: str = ""


# ── Scenes & Timeline ────────────────────────────────────────────────────────

class SceneSpec(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    scene_id: str
    prompt: str
    duration: int = Field(..., gt=0)
    transition: Transition = Transition.FADE
    asset_ref: str = ""


class TimelineEntry(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    scene_id: str
    label: str
    duration: int = Field(..., gt=0)
    transition: Transition = Transition.FADE
    asset_ref: str = ""


class SceneArtifact(_CamelModel):
    """A finished scene: what was asked for and where the clip lives."""
    scene_id: str
    job_id: str
    video_url: str
    duration: int
    transition: Transition
    prompt: str = ""
    asset_ref: str = ""


# ── API Request Models ───────────────────────────────────────────────────────

class PipelineOptions(_CamelModel):
    generate_prompt: bool = True     # run vision analysis
    generate_script: bool = True     # informational only
    send_to_sora2: bool = Field(True, alias="sendToSora2")
    enable_shotstack: bool = True
    log_steps: bool = False


class PipelineRunRequest(_CamelModel):
    product_image_url: Optional[str] = None
    avatar_image_url: Optional[str] = None
    marketing_angle: str = "Product spotlight"
    product_name: str = "Product"
    options: PipelineOptions = Field(default_factory=PipelineOptions)

    @field_validator("marketing_angle", "product_name", mode="before")
    @classmethod
    def _blank_to_default(cls, value, info):
        if value is None or (isinstance(value, str) and not value.strip()):
            return cls.model_fields[info.field_name].default
        return value


# ── Results ──────────────────────────────────────────────────────────────────

class PipelineResult(BaseModel):
    """Terminal outcome of one run: success or failure, never both."""

    ok: bool
    stage: PipelineStage
    run_id: str = ""
    video_url: Optional[str] = None
    prompt: Optional[str] = None
    output: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    failed_stage: Optional[PipelineStage] = None

    @model_validator(mode="after")
    def _single_outcome(self):
        if self.ok and self.error is not None:
            raise ValueError("a successful result cannot carry an error")
        if not self.ok and (not self.error or self.video_url or self.output):
            raise ValueError("a failed result carries only an error")
        return self

    @classmethod
    def success(
        cls,
        prompt: str,
        output: dict[str, Any],
        video_url: Optional[str] = None,
        run_id: str = "",
    ) -> "PipelineResult":
        return cls(
            ok=True,
            stage=PipelineStage.DONE,
            run_id=run_id,
            video_url=video_url,
            prompt=prompt,
            output=output,
        )

    @classmethod
    def failure(
        cls,
        error: str,
        failed_stage: Optional[PipelineStage] = None,
        code: Optional[str] = None,
        run_id: str = "",
    ) -> "PipelineResult":
        return cls(
            ok=False,
            stage=PipelineStage.FAILED,
            run_id=run_id,
            error=error,
            error_code=code,
            failed_stage=failed_stage,
        )

    def to_response(self) -> dict[str, Any]:
        """HTTP body: {success, videoUrl, prompt, output} or {error, code}."""
        if not self.ok:
            return {
                "error": self.error,
                "code": self.error_code,
                "stage": self.failed_stage.value if self.failed_stage else None,
            }
        return {
            "success": True,
            "videoUrl": self.video_url,
            "prompt": self.prompt,
            "output": self.output,
        }


class PipelineStatusResponse(BaseModel):
    run_id: str
    stage: PipelineStage
    current_step: str = ""
    progress_pct: int = 0
    result: Optional[PipelineResult] = None
    error: Optional[str] = None
