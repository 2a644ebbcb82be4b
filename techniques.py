from __future__ import annotations

import math
from enum import Enum
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple

import numpy as np

from dyeing import UnknownTechnique, check_dimensions, clamp01
from valuenoise import cell_seed, stream_value, value_noise, wrap_seed

__all__ = [
    "Technique", "TECHNIQUES", "SCALE_MIN", "SCALE_MAX",
    "clamp_scale", "fabric_grain", "mask_field", "mask_at", "technique_seed",
]

TAU = 2.0 * math.pi

# Practical pattern-scale range; every mask evaluation clamps into it.
SCALE_MIN = 0.2
SCALE_MAX = 2.2


class Technique(str, Enum):
    OMBRE = "ombre"
    DIP_DYE = "dipDye"
    TIE_DYE_SPIRAL = "tieDyeSpiral"
    BANDHANI_DOTS = "bandhaniDots"
    LEHERIYA = "leheriya"
    SHIBORI_ITAJIME = "shiboriItajime"
    SHIBORI_ARASHI = "shiboriArashi"
    SHIBORI_KUMO = "shiboriKumo"
    SHIBORI_NUI = "shiboriNui"
    SHIBORI_KANOKO = "shiboriKanoko"
    BATIK_CRACKLE = "batikCrackle"
    BATIK_FLORAL = "batikFloral"
    IKAT_WARP = "ikatWarp"
    IKAT_WEFT = "ikatWeft"
    SPACE_DYE = "spaceDye"

    @property
    def label(self) -> str:
        return _LABELS[self]

    @classmethod
    def parse(cls, value) -> "Technique":
        """Accept a member, an exact key, or a key in any letter case."""
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        hit = _BY_LOWER.get(key.lower())
        if hit is None:
            raise UnknownTechnique(
                f"Unknown technique '{value}'. Available: {', '.join(t.value for t in cls)}"
            )
        return hit


_LABELS: Dict[Technique, str] = {
    Technique.OMBRE: "Ombre (Gradient Dye)",
    Technique.DIP_DYE: "Dip Dye (Hard Edge)",
    Technique.TIE_DYE_SPIRAL: "Tie & Dye — Spiral",
    Technique.BANDHANI_DOTS: "Bandhani — Dots",
    Technique.LEHERIYA: "Leheriya (Diagonal Waves)",
    Technique.SHIBORI_ITAJIME: "Shibori — Itajime (Fold Resist)",
    Technique.SHIBORI_ARASHI: "Shibori — Arashi (Pole Wrap)",
    Technique.SHIBORI_KUMO: "Shibori — Kumo (Spider)",
    Technique.SHIBORI_NUI: "Shibori — Nui (Stitched Resist)",
    Technique.SHIBORI_KANOKO: "Shibori — Kanoko (Spots)",
    Technique.BATIK_CRACKLE: "Batik — Crackle Wax",
    Technique.BATIK_FLORAL: "Batik — Floral Wax Motif",
    Technique.IKAT_WARP: "Ikat — Warp Blur",
    Technique.IKAT_WEFT: "Ikat — Weft Blur",
    Technique.SPACE_DYE: "Space Dye (Yarn Color Runs)",
}

_BY_LOWER: Dict[str, Technique] = {t.value.lower(): t for t in Technique}

# Ordered (key, label) pairs, as listed to users
TECHNIQUES: List[Tuple[str, str]] = [(t.value, t.label) for t in Technique]


def clamp_scale(scale: float) -> float:
    return float(min(SCALE_MAX, max(SCALE_MIN, float(scale))))


def technique_seed(technique, seed: int) -> int:
    """Per-technique seed so previews of one image don't share their noise."""
    t = Technique.parse(technique)
    return wrap_seed(int(seed) + len(t.value) * 991)


# ============================ fabric grain ============================

class Fiber(NamedTuple):
    fiber: np.ndarray
    fiber2: np.ndarray
    grain: np.ndarray


def fabric_grain(nx, ny, scale: float, seed: int) -> Fiber:
    """Fibre-level irregularity shared by every technique."""
    fiber = value_noise(nx * 60.0 * scale, ny * 60.0 * scale, wrap_seed(seed + 11))
    fiber2 = value_noise(nx * 140.0 * scale, ny * 140.0 * scale, wrap_seed(seed + 29))
    grain = 0.85 + 0.15 * (0.6 * fiber + 0.4 * fiber2)
    return Fiber(np.asarray(fiber), np.asarray(fiber2), np.asarray(grain))


# ============================ technique handlers ============================
# Each handler: (nx, ny, x, y, scale, seed, fb) -> strength array in [0, 1].
# nx/ny are normalised coordinates, x/y pixel coordinates.

def _ombre(nx, ny, x, y, scale, seed, fb):
    return clamp01(ny * fb.grain)


def _dip_dye(nx, ny, x, y, scale, seed, fb):
    edge = 0.55 + 0.06 * (fb.fiber - 0.5)
    v = (ny > edge).astype(np.float64)
    bleed = clamp01((ny - edge) * 10.0)
    return clamp01((0.2 * v + 0.8 * bleed) * fb.grain)


def _tie_dye_spiral(nx, ny, x, y, scale, seed, fb):
    dx = nx - 0.5
    dy = ny - 0.5
    r = np.sqrt(dx * dx + dy * dy)
    a = np.arctan2(dy, dx)
    ring = (np.sin(a * 3.0 + r * 18.0 * scale) + 1.0) / 2.0
    resist = np.where(ring > 0.72, 0.15, 1.0)
    return clamp01(resist * fb.grain)


def _bandhani_dots(nx, ny, x, y, scale, seed, fb):
    cell = max(18.0, 70.0 * (1.0 / max(0.25, scale)))
    gx = np.floor(x / cell).astype(np.int64)
    gy = np.floor(y / cell).astype(np.int64)

    # one small stream per cell: dot placement never depends on pixel order
    cs = cell_seed(gx, gy, seed)
    r1 = stream_value(cs, 0)
    r2 = stream_value(cs, 1)
    cx = (gx + 0.5) * cell + (r1 - 0.5) * cell * 0.35
    cy = (gy + 0.5) * cell + (r2 - 0.5) * cell * 0.35

    d = np.hypot(x - cx, y - cy)
    r0 = cell * 0.11
    halo = cell * 0.19
    return np.where(d < r0, 0.06, np.where(d < halo, 0.35, clamp01(fb.grain)))


def _leheriya(nx, ny, x, y, scale, seed, fb):
    freq = 14.0 * scale
    wave = (np.sin((nx + ny) * freq * TAU) + 1.0) / 2.0
    band = np.where(wave > 0.55, 1.0, 0.25)
    return clamp01(band * fb.grain)


def _shibori_itajime(nx, ny, x, y, scale, seed, fb):
    cell = max(26.0, 120.0 * (1.0 / max(0.25, scale)))
    u = np.mod(x, cell) / cell
    v = np.mod(y, cell) / cell
    d = np.minimum(np.minimum(u, v), np.minimum(1.0 - u, 1.0 - v))
    core = np.where(d > 0.22, 0.18, 1.0)
    edge_bleed = clamp01(1.0 - np.abs(d - 0.22) * 10.0)
    return clamp01((core + 0.15 * edge_bleed) * fb.grain)


def _shibori_arashi(nx, ny, x, y, scale, seed, fb):
    freq = 0.05 * scale
    t = x * freq + y * freq * 0.7
    stripe = (np.sin(t) + 1.0) / 2.0
    hard = np.where(stripe > 0.58, 1.0, 0.22)
    rough = 0.9 + 0.1 * (fb.fiber - 0.5)
    return clamp01(hard * rough * fb.grain)


def _shibori_kumo(nx, ny, x, y, scale, seed, fb):
    cx = 0.5 + 0.12 * (fb.fiber - 0.5)
    cy = 0.5 + 0.12 * (fb.fiber2 - 0.5)
    r = np.hypot(nx - cx, ny - cy)
    rings = np.sin(r * 40.0 * scale) * 0.5 + 0.5
    resist = np.where(rings > 0.72, 0.2, 1.0)
    return clamp01(resist * fb.grain)


def _shibori_nui(nx, ny, x, y, scale, seed, fb):
    line = np.sin((ny * 26.0 * scale + 0.2 * fb.fiber) * TAU) * 0.5 + 0.5
    resist = np.where(line > 0.62, 0.25, 1.0)
    return clamp01(resist * fb.grain)


def _shibori_kanoko(nx, ny, x, y, scale, seed, fb):
    n = value_noise(nx * 10.0 * scale, ny * 10.0 * scale, wrap_seed(seed + 99))
    spots = np.where(n > 0.62, 0.2, 1.0)
    bleed = 0.85 + 0.15 * fb.fiber
    return clamp01(spots * bleed * fb.grain)


def _batik_crackle(nx, ny, x, y, scale, seed, fb):
    n1 = value_noise(nx * 16.0 * scale, ny * 16.0 * scale, wrap_seed(seed + 123))
    n2 = value_noise(nx * 32.0 * scale, ny * 32.0 * scale, wrap_seed(seed + 321))
    n = 0.6 * n1 + 0.4 * n2
    vein = np.abs(n - 0.5)
    resist = np.where(vein < 0.04, 0.15, 1.0)
    return clamp01(resist * fb.grain)


def _batik_floral(nx, ny, x, y, scale, seed, fb):
    t = np.sin(nx * 10.0 * scale * TAU) * np.cos(ny * 8.0 * scale * TAU)
    resist = np.where(np.abs(t) > 0.72, 0.22, 1.0)
    return clamp01(resist * fb.grain)


def _ikat_warp(nx, ny, x, y, scale, seed, fb):
    band = np.sin(nx * 18.0 * scale * TAU) * 0.5 + 0.5
    soft = 0.35 + 0.65 * band
    fray = 0.9 + 0.1 * (fb.fiber - 0.5)
    return clamp01(soft * fray * fb.grain)


def _ikat_weft(nx, ny, x, y, scale, seed, fb):
    band = np.sin(ny * 16.0 * scale * TAU) * 0.5 + 0.5
    soft = 0.35 + 0.65 * band
    fray = 0.9 + 0.1 * (fb.fiber2 - 0.5)
    return clamp01(soft * fray * fb.grain)


def _space_dye(nx, ny, x, y, scale, seed, fb):
    t = (nx * 22.0 + ny * 10.0) * scale
    run = value_noise(t, ny * 6.0 * scale, wrap_seed(seed + 777))
    streak = clamp01(0.25 + 0.9 * run)
    return clamp01(streak * fb.grain)


_Handler = Callable[..., np.ndarray]

_HANDLERS: Dict[Technique, _Handler] = {
    Technique.OMBRE: _ombre,
    Technique.DIP_DYE: _dip_dye,
    Technique.TIE_DYE_SPIRAL: _tie_dye_spiral,
    Technique.BANDHANI_DOTS: _bandhani_dots,
    Technique.LEHERIYA: _leheriya,
    Technique.SHIBORI_ITAJIME: _shibori_itajime,
    Technique.SHIBORI_ARASHI: _shibori_arashi,
    Technique.SHIBORI_KUMO: _shibori_kumo,
    Technique.SHIBORI_NUI: _shibori_nui,
    Technique.SHIBORI_KANOKO: _shibori_kanoko,
    Technique.BATIK_CRACKLE: _batik_crackle,
    Technique.BATIK_FLORAL: _batik_floral,
    Technique.IKAT_WARP: _ikat_warp,
    Technique.IKAT_WEFT: _ikat_weft,
    Technique.SPACE_DYE: _space_dye,
}

_unhandled = set(Technique) - set(_HANDLERS)
if _unhandled:  # pragma: no cover
    raise RuntimeError(f"No mask handler for: {', '.join(sorted(t.value for t in _unhandled))}")


# ============================ evaluation ============================

def _evaluate(technique, x: np.ndarray, y: np.ndarray, width: int, height: int,
              scale: float, seed: int) -> np.ndarray:
    tech = Technique.parse(technique)
    w, h = check_dimensions(width, height, "mask")
    s = clamp_scale(scale)
    sd = wrap_seed(seed)
    x, y = np.broadcast_arrays(np.asarray(x, np.float64), np.asarray(y, np.float64))
    nx = x / max(1, w)
    ny = y / max(1, h)
    fb = fabric_grain(nx, ny, s, sd)
    out = _HANDLERS[tech](nx, ny, x, y, s, sd, fb)
    return np.clip(np.asarray(out, np.float64), 0.0, 1.0)


def mask_field(technique, width: int, height: int, scale: float, seed: int,
               y0: int = 0, y1: Optional[int] = None) -> np.ndarray:
    """
    Mask values for pixel rows [y0, y1) of a width x height canvas.

    Returns a (rows, width) float64 array in [0, 1]. Any row band gives the
    same values the full canvas would have at those rows.
    """
    w, h = check_dimensions(width, height, "mask")
    y1 = h if y1 is None else int(y1)
    y0 = max(0, int(y0))
    y1 = min(h, y1)
    ys = np.arange(y0, max(y0, y1), dtype=np.float64)[:, None]
    xs = np.arange(w, dtype=np.float64)[None, :]
    return _evaluate(technique, xs, ys, w, h, scale, seed)


def mask_at(technique, x: float, y: float, width: int, height: int, scale: float, seed: int) -> float:
    return float(_evaluate(technique, x, y, width, height, scale, seed))
