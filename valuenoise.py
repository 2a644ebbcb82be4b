# valuenoise.py — seedable, stateless noise for fabric textures
# -----------------------------------------------------------------------------
# Two primitives, both pure functions of their integer/seed inputs:
#
#   value_noise(x, y, seed)     smooth 2D value noise on a unit lattice
#   stream_value(seed, index)   counter-based random stream (per-cell jitter)
#
# Everything works on numpy arrays (broadcast) as well as plain floats, so a
# whole block of pixels can be sampled in one call, and any pixel can be
# recomputed in isolation with the same result.
# -----------------------------------------------------------------------------

from __future__ import annotations

from typing import Iterator

import numpy as np

__all__ = ["value_noise", "hash32", "cell_seed", "stream_value", "seeded_stream", "wrap_seed"]

_M32 = np.uint64(0xFFFFFFFF)
_INV_2_32 = 1.0 / 4294967296.0


def wrap_seed(seed) -> int:
    return int(seed) & 0xFFFFFFFF


def _u32(v) -> np.ndarray:
    """Two's-complement wrap of any integer array into uint64 holding 32 bits."""
    return (np.asarray(v, dtype=np.int64) & 0xFFFFFFFF).astype(np.uint64)


def _lattice_hash(ix: np.ndarray, iy: np.ndarray, seed: int) -> np.ndarray:
    h = (_u32(ix) * np.uint64(374761393) + _u32(iy) * np.uint64(668265263)
         + np.uint64(wrap_seed(seed)) * np.uint64(69069)) & _M32
    h = ((h ^ (h >> np.uint64(13))) * np.uint64(1274126177)) & _M32
    h = h ^ (h >> np.uint64(16))
    return h.astype(np.float64) * _INV_2_32


def value_noise(x, y, seed: int):
    """Bilinear value noise with smoothstep (3t^2 - 2t^3) fade, in [0, 1)."""
    x = np.asarray(x, dtype=np.float64)
    y = np.asarray(y, dtype=np.float64)
    xi = np.floor(x)
    yi = np.floor(y)
    xf = x - xi
    yf = y - yi
    xi = xi.astype(np.int64)
    yi = yi.astype(np.int64)

    v00 = _lattice_hash(xi, yi, seed)
    v10 = _lattice_hash(xi + 1, yi, seed)
    v01 = _lattice_hash(xi, yi + 1, seed)
    v11 = _lattice_hash(xi + 1, yi + 1, seed)

    u = xf * xf * (3.0 - 2.0 * xf)
    v = yf * yf * (3.0 - 2.0 * yf)

    a = v00 * (1.0 - u) + v10 * u
    b = v01 * (1.0 - u) + v11 * u
    out = a * (1.0 - v) + b * v
    return float(out) if out.ndim == 0 else out


def _mix32(h: np.ndarray) -> np.ndarray:
    # lowbias32 finaliser
    h = h ^ (h >> np.uint64(16))
    h = (h * np.uint64(0x7FEB352D)) & _M32
    h = h ^ (h >> np.uint64(15))
    h = (h * np.uint64(0x846CA68B)) & _M32
    return h ^ (h >> np.uint64(16))


def hash32(value):
    """Mix a 32-bit integer (or array of them) into a well-scrambled 32-bit value."""
    out = _mix32(_u32(value))
    return int(out) if out.ndim == 0 else out


def cell_seed(cell_x, cell_y, seed: int):
    """Stable seed for one lattice cell; independent of evaluation order."""
    cx = _u32(cell_x)
    cy = _u32(cell_y)
    s = ((cx * np.uint64(73856093)) & _M32) ^ ((cy * np.uint64(19349663)) & _M32) ^ np.uint64(wrap_seed(int(seed) + 7))
    out = _mix32(s)
    return int(out) if out.ndim == 0 else out


def stream_value(seed, index: int):
    """The `index`-th value (0-based) of the counter-based stream for `seed`."""
    state = (_u32(seed) + np.uint64((int(index) + 1) * 0x9E3779B9 & 0xFFFFFFFF)) & _M32
    out = _mix32(state).astype(np.float64) * _INV_2_32
    return float(out) if out.ndim == 0 else out


def seeded_stream(seed: int) -> Iterator[float]:
    """Infinite iterator over stream_value(seed, 0), stream_value(seed, 1), ..."""
    index = 0
    while True:
        yield stream_value(wrap_seed(seed), index)
        index += 1
