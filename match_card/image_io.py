"""Image decoding, deskew and re-encoding helpers."""

from __future__ import annotations

from io import BytesIO
from typing import cast

from PIL import Image

DEFAULT_JPEG_QUALITY = 80


def load_rgb_image(image_bytes: bytes) -> Image.Image:
    """Decode image bytes into an RGB PIL Image."""
    try:
        img = cast(Image.Image, Image.open(BytesIO(image_bytes)))
        img.load()
    except Exception as exc:
        raise ValueError("Invalid image bytes") from exc

    if img.mode != "RGB":
        img = img.convert("RGB")
    return img


def rotate_image(img: Image.Image, angle: float) -> Image.Image:
    """Rotate counter-clockwise by ``angle`` degrees, growing the canvas to fit."""
    if not angle:
        return img
    return img.rotate(angle, resample=Image.Resampling.BICUBIC, expand=True, fillcolor="white")


def encode_jpeg(img: Image.Image, *, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    buf = BytesIO()
    img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def deskew_image_bytes(
    image_bytes: bytes, angle: float, *, quality: int = DEFAULT_JPEG_QUALITY
) -> bytes:
    """Undo a skew of ``angle`` degrees and return JPEG bytes."""
    img = load_rgb_image(image_bytes)
    return encode_jpeg(rotate_image(img, angle), quality=quality)
