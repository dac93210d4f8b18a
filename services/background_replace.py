from __future__ import annotations

import base64
import logging

import openai
from openai import AsyncOpenAI

from api.app.config import get_settings
from jobs.errors import ProviderThrottled, StageFailure
from services.images import sniff_mime

logger = logging.getLogger(__name__)

STAGE = "background_replace"


async def replace_background(
    image: bytes,
    reference: bytes,
    prompt: str | None = None,
) -> bytes:
    """
    Put the product from `image` into a scene styled like `reference`.

    Goes to the OpenAI image edit endpoint with both images. This call is
    concurrency limited upstream; callers must route it through the
    background-replace CallSerializer.
    """
    settings = get_settings()
    if not settings.openai_api_key:
        raise StageFailure(STAGE, "OpenAI API key is not configured")

    client = AsyncOpenAI(api_key=settings.openai_api_key, timeout=settings.submit_timeout_seconds)
    prompt = prompt or settings.background_replace_prompt

    logger.info("BG: editing %d + %d bytes with %s", len(image), len(reference), settings.openai_image_model)
    try:
        response = await client.images.edit(
            model=settings.openai_image_model,
            image=[
                ("original.png", image, sniff_mime(image)),
                ("reference.png", reference, sniff_mime(reference)),
            ],
            prompt=prompt,
            n=1,
            size=settings.openai_image_size,
        )
    except openai.RateLimitError as exc:
        raise ProviderThrottled(STAGE, str(exc)) from exc
    except openai.APIError as exc:
        raise StageFailure(STAGE, str(exc)) from exc

    if not response.data or not response.data[0].b64_json:
        raise StageFailure(STAGE, "no image in provider response")

    out = base64.b64decode(response.data[0].b64_json)
    logger.info("BG: got %d bytes", len(out))
    return out
