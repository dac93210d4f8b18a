"""
Typed input payloads, one model per job type.

Jobs store their parameters as one JSON envelope; these models are the
tagged union over it. Submission validates against the model for the
job's type so malformed work never reaches the queue.
"""
from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from jobs.errors import JobValidationError
from models.job import JobType

WatermarkPosition = Literal["top-left", "top-right", "bottom-left", "bottom-right", "center"]


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class WatermarkOptions(_Payload):
    text: str = Field("Sample Watermark", alias="watermarkText")
    opacity: float = Field(0.3, ge=0.0, le=1.0, alias="watermarkOpacity")
    position: WatermarkPosition = Field("bottom-right", alias="watermarkPosition")
    kind: Literal["text", "logo"] = Field("text", alias="watermarkType")
    logo_url: str | None = Field(None, alias="watermarkLogoUrl")
    output_resolution: str = Field("original", alias="outputResolution")


class OneClickWorkflowInput(WatermarkOptions):
    image_url: str = Field(..., min_length=1, alias="imageUrl")
    reference_image_url: str | None = Field(None, alias="referenceImageUrl")
    x_scale: float = Field(2.0, gt=0, alias="xScale")
    y_scale: float = Field(2.0, gt=0, alias="yScale")
    upscale_factor: int = Field(2, ge=1, le=4, alias="upscaleFactor")
    enable_background_replace: bool = Field(True, alias="enableBackgroundReplace")
    enable_outpaint: bool = Field(True, alias="enableOutpaint")
    enable_upscale: bool = Field(True, alias="enableUpscale")
    enable_watermark: bool = Field(False, alias="enableWatermark")

    @model_validator(mode="after")
    def _reference_required(self) -> OneClickWorkflowInput:
        if self.enable_background_replace and not self.reference_image_url:
            raise ValueError("referenceImageUrl is required when background replacement is enabled")
        return self


class BackgroundReplaceInput(_Payload):
    image_url: str = Field(..., min_length=1, alias="imageUrl")
    reference_image_url: str = Field(..., min_length=1, alias="referenceImageUrl")
    prompt: str | None = None


class OutpaintInput(_Payload):
    image_url: str = Field(..., min_length=1, alias="imageUrl")
    x_scale: float = Field(2.0, gt=0, alias="xScale")
    y_scale: float = Field(2.0, gt=0, alias="yScale")


class UpscaleInput(_Payload):
    image_url: str = Field(..., min_length=1, alias="imageUrl")
    upscale_factor: int = Field(2, ge=1, le=4, alias="upscaleFactor")


JobInput = OneClickWorkflowInput | BackgroundReplaceInput | OutpaintInput | UpscaleInput

INPUT_MODELS: dict[JobType, type[_Payload]] = {
    JobType.ONE_CLICK_WORKFLOW: OneClickWorkflowInput,
    JobType.BACKGROUND_REPLACE: BackgroundReplaceInput,
    JobType.IMAGE_EXPANSION: OutpaintInput,
    JobType.IMAGE_UPSCALING: UpscaleInput,
}

# Default step counts when the submitter does not provide one
DEFAULT_TOTAL_STEPS: dict[JobType, int] = {
    JobType.ONE_CLICK_WORKFLOW: 4,
    JobType.BACKGROUND_REPLACE: 1,
    JobType.IMAGE_EXPANSION: 1,
    JobType.IMAGE_UPSCALING: 1,
}


def parse_job_type(value: str) -> JobType:
    try:
        return JobType(value)
    except ValueError:
        raise JobValidationError(f"Unsupported job type: {value}") from None


def parse_input(job_type: str, data: dict | None) -> JobInput:
    """Validate a raw input envelope against the model for its job type."""
    jt = parse_job_type(job_type)
    if not data:
        raise JobValidationError("Missing required field: inputData")
    try:
        return INPUT_MODELS[jt].model_validate(data)
    except ValidationError as exc:
        first = exc.errors()[0]
        loc = ".".join(str(p) for p in first.get("loc", ())) or "inputData"
        raise JobValidationError(f"Invalid inputData for {jt.value} ({loc}): {first['msg']}") from exc
