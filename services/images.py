"""
Image reference helpers: data URLs, remote URLs and raw bytes.
"""
from __future__ import annotations

import base64
import binascii
import io
import logging

import httpx
from PIL import Image

logger = logging.getLogger(__name__)


def is_data_url(ref: str) -> bool:
    return ref.startswith("data:")


def decode_data_url(ref: str) -> bytes:
    payload = ref.split(",", 1)[1] if is_data_url(ref) else ref
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 image data: {exc}") from exc


def sniff_mime(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"


def to_data_url(data: bytes, mime: str | None = None) -> str:
    mime = mime or sniff_mime(data)
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


async def load_image_bytes(ref: str, client: httpx.AsyncClient | None = None, timeout: float = 30.0) -> bytes:
    """Resolve a data URL or http(s) URL into raw image bytes."""
    if is_data_url(ref):
        return decode_data_url(ref)

    if client is None:
        async with httpx.AsyncClient(timeout=timeout) as own:
            resp = await own.get(ref)
    else:
        resp = await client.get(ref, timeout=timeout)
    resp.raise_for_status()
    logger.debug("Downloaded %d bytes from %s", len(resp.content), ref[:80])
    return resp.content


def crop_borders(data: bytes, ratio: float = 0.1) -> bytes:
    """Trim `ratio` off every edge (removes provider watermarks)."""
    with Image.open(io.BytesIO(data)) as img:
        w, h = img.size
        left, top = int(w * ratio), int(h * ratio)
        box = (left, top, left + int(w * (1 - 2 * ratio)), top + int(h * (1 - 2 * ratio)))
        out = io.BytesIO()
        img.crop(box).convert("RGB").save(out, format="JPEG", quality=95)
    return out.getvalue()
