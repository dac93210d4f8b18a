# tests/test_payloads.py
from __future__ import annotations

import pytest

from jobs.errors import JobValidationError
from jobs.payloads import OneClickWorkflowInput, OutpaintInput, UpscaleInput, parse_input, parse_job_type
from models.job import JobType


def test_one_click_defaults_and_aliases():
    params = parse_input("ONE_CLICK_WORKFLOW", {
        "imageUrl": "https://img.example/a.png",
        "referenceImageUrl": "https://img.example/ref.png",
        "watermarkText": "ACME",
        "xScale": 1.5,
    })
    assert isinstance(params, OneClickWorkflowInput)
    assert params.x_scale == 1.5
    assert params.y_scale == 2.0
    assert params.text == "ACME"
    assert params.enable_background_replace is True
    assert params.enable_watermark is False


def test_reference_not_needed_without_background_replace():
    params = parse_input("ONE_CLICK_WORKFLOW", {
        "imageUrl": "https://img.example/a.png",
        "enableBackgroundReplace": False,
    })
    assert params.reference_image_url is None


def test_single_stage_models_by_type():
    assert isinstance(parse_input("IMAGE_EXPANSION", {"imageUrl": "a"}), OutpaintInput)
    assert isinstance(parse_input("IMAGE_UPSCALING", {"imageUrl": "a"}), UpscaleInput)


@pytest.mark.parametrize("data", [
    {},
    None,
    {"imageUrl": ""},
    {"imageUrl": "a", "upscaleFactor": 9},
])
def test_invalid_upscale_input(data):
    with pytest.raises(JobValidationError):
        parse_input("IMAGE_UPSCALING", data)


def test_unknown_type():
    with pytest.raises(JobValidationError, match="Unsupported job type"):
        parse_job_type("VIDEO_GENERATION")
    assert parse_job_type("BACKGROUND_REPLACE") is JobType.BACKGROUND_REPLACE
