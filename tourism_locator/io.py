from __future__ import annotations

import base64
import io
import json
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from .contracts import ColorShare

COLOR_STEP = 20
MAX_COLOR_SAMPLES = 1000
TOP_COLORS = 5
MAX_TONAL_SIDE = 256


def read_image_bytes(path: str) -> bytes:
    return Path(path).read_bytes()


def image_to_base64(image: bytes) -> str:
    return base64.b64encode(image).decode("ascii")


def _flatten_alpha_to_white(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        rgba = img.convert("RGBA")
        bg = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
        comp = Image.alpha_composite(bg, rgba)
        return comp.convert("RGB")
    return img.convert("RGB")


def decode_image(image: bytes) -> Optional[Image.Image]:
    """
    Best-effort decode of uploaded bytes; None when Pillow cannot read them.
    """
    if not image:
        return None
    try:
        img = Image.open(io.BytesIO(image))
        img.load()
    except (UnidentifiedImageError, OSError):
        return None
    return _flatten_alpha_to_white(img)


def pil_to_numpy_rgb(img: Image.Image) -> np.ndarray:
    img = _flatten_alpha_to_white(img)
    arr = np.array(img, dtype=np.uint8)
    if arr.ndim != 3 or arr.shape[2] != 3:
        raise ValueError(f"Expected RGB image array, got shape={arr.shape}")
    return arr


def dominant_colors(image: bytes, top: int = TOP_COLORS) -> List[ColorShare]:
    """
    Sample at most MAX_COLOR_SAMPLES pixels, quantize channels to COLOR_STEP
    buckets and return the most frequent colours with their share in percent.
    """
    img = decode_image(image)
    if img is None:
        return []
    pixels = pil_to_numpy_rgb(img).reshape(-1, 3)
    stride = max(1, len(pixels) // MAX_COLOR_SAMPLES)
    sampled = pixels[::stride] // COLOR_STEP
    counts = Counter(map(tuple, sampled.tolist()))
    total = len(sampled)
    out: List[ColorShare] = []
    for (r, g, b), count in counts.most_common(top):
        out.append(
            ColorShare(
                color=f"rgb({r * COLOR_STEP}, {g * COLOR_STEP}, {b * COLOR_STEP})",
                percentage=count / total * 100.0,
            )
        )
    return out


def tonal_profile(image: bytes) -> Optional[Tuple[float, float]]:
    """
    (contrast, symmetry) of the grayscale image, both in [0, 1].

    Contrast is RMS contrast scaled so a half-black, half-white frame scores
    1.0. Symmetry is one minus the mean absolute difference between the frame
    and its left-right mirror.
    """
    img = decode_image(image)
    if img is None:
        return None
    img.thumbnail((MAX_TONAL_SIDE, MAX_TONAL_SIDE))
    gray = np.asarray(img.convert("L"), dtype=np.float32) / 255.0
    contrast = min(float(gray.std()) * 2.0, 1.0)
    symmetry = 1.0 - float(np.abs(gray - gray[:, ::-1]).mean())
    return contrast, symmetry


def write_json(path: str, data: Dict[str, Any]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")


def safe_image_id_from_relpath(relpath: str) -> str:
    """
    Make a stable, filesystem-safe image_id from a relative path.
    Example: "foo/bar/img 1.png" -> "foo__bar__img_1"
    """
    p = Path(relpath)
    stem = p.with_suffix("").as_posix()
    stem = stem.replace("/", "__")
    stem = "".join(ch if ch.isalnum() or ch in ("_", "-", ".") else "_" for ch in stem)
    return stem
