# sampling.py — cover-fit rasterisation and the bleed/softness pass
# -----------------------------------------------------------------------------
# cover_fit(): fill a destination canvas from a source of any aspect ratio by
#   cropping the longer source side symmetrically (no letterbox, no stretch).
# bleed():     cheap dye-diffusion look. Each step draws the canvas onto itself
#   twice at 35% opacity, shifted by +0.5px and -0.5px, exactly like a 2D
#   canvas self-draw would. Not a Gaussian; the procedure is the definition.
# -----------------------------------------------------------------------------

from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from PIL import Image

from dyeing import as_bitmap, check_dimensions, to_image

__all__ = ["cover_rect", "cover_fit", "bleed", "BLEED_OPACITY", "BLEED_MAX_STEPS", "BAND_ROWS"]

BLEED_OPACITY = 0.35
BLEED_MAX_STEPS = 8
# Per-pixel float64 work is done this many rows at a time to bound memory.
BAND_ROWS = 128


# ============================ cover-fit ============================

def cover_rect(iw: int, ih: int, w: int, h: int) -> Tuple[float, float, float, float]:
    """Source rectangle (sx, sy, sw, sh) that fills a w x h destination."""
    iw, ih = check_dimensions(iw, ih, "source")
    w, h = check_dimensions(w, h, "destination")
    s = max(w / iw, h / ih)
    sw = w / s
    sh = h / s
    sx = (iw - sw) / 2
    sy = (ih - sh) / 2
    return sx, sy, sw, sh


def cover_fit(bitmap, width: int, height: int) -> np.ndarray:
    src = as_bitmap(bitmap)
    ih, iw = src.shape[:2]
    w, h = check_dimensions(width, height, "destination")
    sx, sy, sw, sh = cover_rect(iw, ih, w, h)
    # Pillow premultiplies RGBA internally for non-nearest filters
    out = to_image(src).resize((w, h), Image.Resampling.BILINEAR, box=(sx, sy, sx + sw, sy + sh))
    return as_bitmap(out)


# ============================ bleed ============================

def _axis_taps(n_out: int, n_src: int, d0: float, dn: float):
    """Bilinear taps and per-pixel coverage for drawing n_src pixels into [d0, d0+dn)."""
    px = np.arange(n_out, dtype=np.float64)
    u = (px + 0.5 - d0) * (n_src / dn) - 0.5
    i0 = np.floor(u)
    t = u - i0
    i0 = i0.astype(np.int64)
    i1 = np.clip(i0 + 1, 0, n_src - 1)
    i0 = np.clip(i0, 0, n_src - 1)
    cov = np.clip(np.minimum(px + 1.0, d0 + dn) - np.maximum(px, d0), 0.0, 1.0)
    return i0, i1, t, cov


def _premultiply(rows: np.ndarray) -> np.ndarray:
    a = rows[..., 3:4].astype(np.float64) / 255.0
    return np.concatenate([rows[..., :3].astype(np.float64) * a, a], axis=2)


def _self_draw(canvas: np.ndarray, dx: float, dy: float, dw: float, dh: float, opacity: float) -> np.ndarray:
    """Source-over draw of `canvas` into the rectangle (dx, dy, dw, dh) of itself."""
    H, W = canvas.shape[:2]
    if dw <= 0 or dh <= 0:
        return canvas

    xi0, xi1, xt, xcov = _axis_taps(W, W, dx, dw)
    yi0, yi1, yt, ycov = _axis_taps(H, H, dy, dh)
    out = np.empty_like(canvas)

    # every band reads the untouched `canvas`, so banding does not change the result
    for y0 in range(0, H, BAND_ROWS):
        band = slice(y0, min(H, y0 + BAND_ROWS))
        t = yt[band][:, None, None]
        rows = _premultiply(canvas[yi0[band]]) * (1.0 - t) + _premultiply(canvas[yi1[band]]) * t
        src = rows[:, xi0] * (1.0 - xt)[None, :, None] + rows[:, xi1] * xt[None, :, None]

        k = opacity * (ycov[band][:, None] * xcov[None, :])[..., None]
        src_p = src[..., :3] * k
        src_a = src[..., 3:4] * k

        dst = _premultiply(canvas[band])
        out_p = src_p + dst[..., :3] * (1.0 - src_a)
        out_a = src_a + dst[..., 3:4] * (1.0 - src_a)

        rgb = np.divide(out_p, out_a, out=np.zeros_like(out_p), where=out_a > 0)
        out[band, :, :3] = np.clip(np.rint(rgb), 0, 255).astype(np.uint8)
        out[band, :, 3] = np.clip(np.rint(out_a[..., 0] * 255.0), 0, 255).astype(np.uint8)
    return out


def bleed(bitmap, softness: float, *, opacity: float = BLEED_OPACITY) -> np.ndarray:
    """
    Soften dye edges with min(8, floor(softness)) double self-draws.

    The ±0.5px shift is in pixels regardless of resolution. Each step reads
    the buffer produced by the previous one, so steps run in order.
    """
    out = as_bitmap(bitmap)
    steps = min(BLEED_MAX_STEPS, int(math.floor(float(softness)))) if softness > 0 else 0
    H, W = out.shape[:2]
    for _ in range(steps):
        out = _self_draw(out, 0.5, 0.5, W - 1, H - 1, opacity)
        out = _self_draw(out, -0.5, -0.5, W + 1, H + 1, opacity)
    return out
