from __future__ import annotations

import logging
from typing import Optional, Tuple

import numpy as np

from dyeing import as_bitmap

__all__ = ["autocrop", "crop_box", "estimate_background", "DEFAULT_TOLERANCE", "MIN_KEEP_FRACTION"]

log = logging.getLogger("dyelab.autocrop")

DEFAULT_TOLERANCE = 18.0
# A crop that keeps less than this share of either side is treated as a misfire.
MIN_KEEP_FRACTION = 0.25
ALPHA_FLOOR = 10


def _sample_step(w: int, h: int) -> int:
    return max(1, min(w, h) // 60)


def estimate_background(arr: np.ndarray) -> np.ndarray:
    """Mean RGB of sparse samples along all four edges."""
    h, w = arr.shape[:2]
    step = _sample_step(w, h)
    rgb = arr[..., :3].astype(np.float64)
    xs = np.arange(0, w, step)
    ys = np.arange(0, h, step)
    samples = np.concatenate([rgb[0, xs], rgb[h - 1, xs], rgb[ys, 0], rgb[ys, w - 1]], axis=0)
    return samples.mean(axis=0)


def crop_box(bitmap, tolerance: float = DEFAULT_TOLERANCE) -> Optional[Tuple[int, int, int, int]]:
    """
    Inclusive (left, top, right, bottom) content box, or None when the crop
    would keep less than a quarter of the width or height.
    """
    arr = as_bitmap(bitmap)
    h, w = arr.shape[:2]
    if w == 0 or h == 0:
        return None
    step = _sample_step(w, h)
    bg = estimate_background(arr)

    dist = np.sqrt(((arr[..., :3].astype(np.float64) - bg) ** 2).sum(axis=2))
    differs = (arr[..., 3] > ALPHA_FLOOR) & (dist > float(tolerance))

    # only every step-th pixel along a row/column is inspected
    row_is_bg = ~differs[:, ::step].any(axis=1)
    col_is_bg = ~differs[::step, :].any(axis=0)

    top, bottom, left, right = 0, h - 1, 0, w - 1
    while top < bottom and row_is_bg[top]:
        top += 1
    while bottom > top and row_is_bg[bottom]:
        bottom -= 1
    while left < right and col_is_bg[left]:
        left += 1
    while right > left and col_is_bg[right]:
        right -= 1

    cw = max(1, right - left + 1)
    ch = max(1, bottom - top + 1)
    log.debug("Background %s, step %d, box [%d:%d, %d:%d]", np.round(bg, 1).tolist(), step,
              top, bottom + 1, left, right + 1)
    if cw < w * MIN_KEEP_FRACTION or ch < h * MIN_KEEP_FRACTION:
        return None
    return left, top, right, bottom


def autocrop(bitmap, tolerance: float = DEFAULT_TOLERANCE) -> np.ndarray:
    """
    Strip a uniform border so dye patterns land on the actual fabric.

    Never raises on odd input: if the crop would be too aggressive (less than
    25% of either side kept) the original image is returned unchanged.
    """
    arr = as_bitmap(bitmap)
    h, w = arr.shape[:2]
    box = crop_box(arr, tolerance)
    if box is None:
        log.info("Auto-crop skipped for %dx%d image (tolerance %.1f)", w, h, float(tolerance))
        return arr
    left, top, right, bottom = box
    if (left, top, right, bottom) == (0, 0, w - 1, h - 1):
        return arr
    out = arr[top:bottom + 1, left:right + 1].copy()
    log.info("Auto-cropped to [%d:%d, %d:%d] → %dx%d", top, bottom + 1, left, right + 1, out.shape[1], out.shape[0])
    return out
