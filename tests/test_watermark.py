# tests/test_watermark.py
from __future__ import annotations

import io

from PIL import Image

from jobs.payloads import WatermarkOptions
from services.images import to_data_url
from services.watermark import _anchor, _target_size, add_watermark


def _size(data: bytes) -> tuple[int, int]:
    with Image.open(io.BytesIO(data)) as img:
        return img.size


def test_text_watermark_keeps_size(png_bytes):
    out = add_watermark(png_bytes, WatermarkOptions(text="ACME", opacity=0.5))
    assert out.startswith(b"\x89PNG")
    assert _size(out) == (200, 100)
    assert out != png_bytes


def test_output_resolution_fits_inside_box(png_bytes):
    out = add_watermark(png_bytes, WatermarkOptions(output_resolution="100x100"))
    assert _size(out) == (100, 50)


def test_logo_watermark_from_data_url(png_bytes):
    buf = io.BytesIO()
    Image.new("RGBA", (80, 80), (255, 0, 0, 255)).save(buf, format="PNG")
    opts = WatermarkOptions(kind="logo", logo_url=to_data_url(buf.getvalue()), position="top-left", opacity=1.0)

    out = add_watermark(png_bytes, opts)

    with Image.open(io.BytesIO(out)) as img:
        # logo is scaled to 20% of the width and sits at the padded corner
        assert img.convert("RGB").getpixel((25, 25)) == (255, 0, 0)
        assert img.convert("RGB").getpixel((150, 80)) == (40, 90, 160)


def test_target_size_and_anchor():
    assert _target_size((400, 200), "original") == (400, 200)
    assert _target_size((400, 200), "bogus") == (400, 200)
    assert _target_size((200, 400), "100x100") == (50, 100)
    assert _anchor("bottom-right", (200, 100), (20, 10)) == (160, 70)
    assert _anchor("center", (200, 100), (20, 10)) == (90, 45)
