"""
Local watermark compositing. Deterministic, no external calls.
"""
from __future__ import annotations

import io
import logging

from PIL import Image, ImageDraw, ImageFont

from jobs.payloads import WatermarkOptions
from services.images import decode_data_url

logger = logging.getLogger(__name__)

PADDING = 20
MAX_LOGO_FRACTION = 0.2


def _target_size(size: tuple[int, int], resolution: str) -> tuple[int, int]:
    """Fit inside `WxH` keeping aspect ratio; 'original' keeps the size."""
    if not resolution or resolution == "original":
        return size
    try:
        tw, th = (int(v) for v in resolution.lower().split("x"))
    except ValueError:
        logger.warning("Ignoring bad output resolution %r", resolution)
        return size

    w, h = size
    if w / h > tw / th:
        return tw, max(1, round(tw * h / w))
    return max(1, round(th * w / h)), th


def _anchor(position: str, canvas: tuple[int, int], mark: tuple[int, int]) -> tuple[int, int]:
    cw, ch = canvas
    mw, mh = mark
    if position == "top-left":
        return PADDING, PADDING
    if position == "top-right":
        return cw - mw - PADDING, PADDING
    if position == "bottom-left":
        return PADDING, ch - mh - PADDING
    if position == "center":
        return (cw - mw) // 2, (ch - mh) // 2
    return cw - mw - PADDING, ch - mh - PADDING


def _text_layer(canvas: Image.Image, opts: WatermarkOptions) -> Image.Image:
    layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    draw = ImageDraw.Draw(layer)
    font_size = max(12, canvas.width // 25)
    try:
        font = ImageFont.load_default(size=font_size)
    except TypeError:
        font = ImageFont.load_default()

    left, top, right, bottom = draw.textbbox((0, 0), opts.text, font=font)
    x, y = _anchor(opts.position, canvas.size, (right - left, bottom - top))
    draw.text((x - left, y - top), opts.text, font=font, fill=(255, 255, 255, round(255 * opts.opacity)))
    return layer


def _logo_layer(canvas: Image.Image, logo_bytes: bytes, opts: WatermarkOptions) -> Image.Image:
    layer = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    with Image.open(io.BytesIO(logo_bytes)) as src:
        logo = src.convert("RGBA")

    scale = min(canvas.width * MAX_LOGO_FRACTION / logo.width, 1.0)
    logo = logo.resize((max(1, round(logo.width * scale)), max(1, round(logo.height * scale))))

    if opts.opacity < 1:
        alpha = logo.getchannel("A").point(lambda a: round(a * opts.opacity))
        logo.putalpha(alpha)

    layer.paste(logo, _anchor(opts.position, canvas.size, logo.size), logo)
    return layer


def add_watermark(image: bytes, opts: WatermarkOptions) -> bytes:
    """Composite a text or logo watermark and return PNG bytes."""
    with Image.open(io.BytesIO(image)) as src:
        canvas = src.convert("RGBA")

    size = _target_size(canvas.size, opts.output_resolution)
    if size != canvas.size:
        canvas = canvas.resize(size, Image.Resampling.LANCZOS)

    if opts.kind == "logo" and opts.logo_url:
        layer = _logo_layer(canvas, decode_data_url(opts.logo_url), opts)
    else:
        layer = _text_layer(canvas, opts)

    out = io.BytesIO()
    Image.alpha_composite(canvas, layer).save(out, format="PNG")
    logger.info("Watermark (%s, %s) applied at %dx%d", opts.kind, opts.position, *size)
    return out.getvalue()
