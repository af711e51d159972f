"""PNG handling for captured screenshots."""
import io
import os

from PIL import Image


def save_png(png_bytes: bytes, path: str) -> tuple:
    """
    Normalize a screenshot to RGBA and write it to `path`.
    Returns the (width, height) actually written.
    """
    img = Image.open(io.BytesIO(png_bytes))
    if img.mode != "RGBA":
        img = img.convert("RGBA")

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    img.save(path, format="PNG", optimize=True)
    return img.size


def size_mismatch(expected_w: float, expected_h: float, actual: tuple, tolerance: float = 1.0) -> bool:
    """True when a written image differs from the computed size by more than `tolerance` px."""
    w, h = actual
    return abs(w - expected_w) > tolerance or abs(h - expected_h) > tolerance
