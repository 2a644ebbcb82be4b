"""
engine.py — render pipeline and registered generators.

What this does
--------------
• render_technique(): cover-fit → per-pixel mask + tint → optional bleed.
• render_gallery() / contact_sheet(): every technique for one image, the way
  the explorer grid shows them.
• Generators for the shared REGISTRY so pipelines like `autocrop|dye` work
  from the CLI and the explorer: autocrop, cover, dye, bleed.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from autocrop import DEFAULT_TOLERANCE, autocrop
from dyeing import (
    NEUTRAL_GRAY,
    REGISTRY,
    BaseGenerator,
    DyeColor,
    DyeError,
    InvalidColorFormat,
    as_bitmap,
    check_dimensions,
    composite,
    parse_hex_color,
    to_image,
)
from sampling import BAND_ROWS, BLEED_MAX_STEPS, bleed, cover_fit
from techniques import TECHNIQUES, Technique, clamp_scale, mask_field, technique_seed
from valuenoise import wrap_seed

__all__ = [
    "RenderParams", "render_technique", "render_gallery", "contact_sheet", "autocrop",
    "TECHNIQUES", "Technique",
    "AutocropGenerator", "CoverFitGenerator", "DyeGenerator", "BleedGenerator",
]

log = logging.getLogger("dyelab.engine")

# Explorer defaults
DEFAULT_DYE = "#8b1cf5"
DEFAULT_INTENSITY = 0.65
DEFAULT_SCALE = 1.0
DEFAULT_SOFTNESS = 3
DEFAULT_SEED = 2026
PREVIEW_SIZE = (640, 400)  # 16:10


@dataclass(frozen=True)
class RenderParams:
    """One technique render. Values are clamped/parsed on construction."""
    technique: Technique
    dye: DyeColor
    width: int
    height: int
    intensity: float = DEFAULT_INTENSITY
    scale: float = DEFAULT_SCALE
    softness: int = DEFAULT_SOFTNESS
    seed: int = DEFAULT_SEED

    def __post_init__(self) -> None:
        object.__setattr__(self, "technique", Technique.parse(self.technique))
        if not isinstance(self.dye, DyeColor):
            object.__setattr__(self, "dye", parse_hex_color(self.dye))
        w, h = check_dimensions(self.width, self.height)
        object.__setattr__(self, "width", w)
        object.__setattr__(self, "height", h)
        object.__setattr__(self, "intensity", float(np.clip(float(self.intensity), 0.0, 1.0)))
        object.__setattr__(self, "scale", clamp_scale(self.scale))
        object.__setattr__(self, "softness", int(min(BLEED_MAX_STEPS, max(0, int(np.floor(float(self.softness)))))))
        object.__setattr__(self, "seed", wrap_seed(self.seed))

    def with_technique(self, technique, seed: Optional[int] = None) -> "RenderParams":
        return RenderParams(
            technique=technique, dye=self.dye, width=self.width, height=self.height,
            intensity=self.intensity, scale=self.scale, softness=self.softness,
            seed=self.seed if seed is None else seed,
        )


def _row_bands(height: int, rows: int = BAND_ROWS) -> List[tuple]:
    return [(y0, min(height, y0 + rows)) for y0 in range(0, height, rows)]


def render_technique(source, params: RenderParams, *, workers: int = 1) -> np.ndarray:
    """
    Full pipeline for one technique; returns a new (h, w, 4) uint8 bitmap.

    Mask+tint always runs in bands of at most BAND_ROWS rows. With
    workers > 1 the bands go through a thread pool of that size; each band
    writes only its own rows, so the output is identical.
    """
    src = as_bitmap(source)
    ih, iw = src.shape[:2]
    check_dimensions(iw, ih, "source")
    w, h = params.width, params.height

    base = cover_fit(src, w, h)
    out = np.empty_like(base)

    def work(band: tuple) -> None:
        y0, y1 = band
        m = mask_field(params.technique, w, h, params.scale, params.seed, y0, y1)
        out[y0:y1] = composite(base[y0:y1], params.dye, m, params.intensity)

    bands = _row_bands(h)
    n = min(max(1, int(workers)), len(bands))
    if n == 1:
        for band in bands:
            work(band)
    else:
        with ThreadPoolExecutor(max_workers=n) as pool:
            list(pool.map(work, bands))

    if params.softness > 0:
        out = bleed(out, params.softness)
    log.debug("Rendered %s %dx%d seed=%d", params.technique.value, w, h, params.seed)
    return out


def render_gallery(source, params: RenderParams, techniques: Optional[Iterable] = None,
                   *, workers: int = 1) -> Dict[Technique, np.ndarray]:
    """Render several techniques (all by default), each with its own preview seed."""
    src = as_bitmap(source)
    chosen = list(techniques) if techniques is not None else [t for t in Technique]
    out: Dict[Technique, np.ndarray] = {}
    for t in chosen:
        try:
            tech = Technique.parse(t)
            p = params.with_technique(tech, seed=technique_seed(tech, params.seed))
            out[tech] = render_technique(src, p, workers=workers)
        except DyeError as e:
            log.warning("Skipping technique %s: %s", t, e)
    return out


def _latin1_label(text: str) -> str:
    # the bitmap fallback font only covers latin-1
    return text.replace("\u2014", "-").encode("latin-1", "replace").decode("latin-1")


def contact_sheet(renders: Dict[Technique, np.ndarray], columns: int = 2, *,
                  label: bool = True, gap: int = 12, background: str = "#ffffff") -> Image.Image:
    """Lay renders out in a grid with their labels, like the explorer page."""
    if not renders:
        raise ValueError("No renders to lay out.")
    items = list(renders.items())
    tw = max(a.shape[1] for _, a in items)
    th = max(a.shape[0] for _, a in items)
    font = ImageFont.load_default()
    label_h = 18 if label else 0
    cols = max(1, min(int(columns), len(items)))
    rows = (len(items) + cols - 1) // cols
    W = gap + cols * (tw + gap)
    H = gap + rows * (th + label_h + gap)
    sheet = Image.new("RGBA", (W, H), background)
    draw = ImageDraw.Draw(sheet)
    for i, (tech, arr) in enumerate(items):
        r, c = divmod(i, cols)
        x = gap + c * (tw + gap)
        y = gap + r * (th + label_h + gap)
        if label:
            draw.text((x, y + 2), _latin1_label(tech.label), fill=(40, 40, 40, 255), font=font)
        sheet.paste(to_image(arr), (x, y + label_h))
    return sheet


# ============================ Generators ============================

def _dye_from_kwargs(value: Any) -> DyeColor:
    if isinstance(value, DyeColor):
        return value
    try:
        return parse_hex_color(str(value))
    except InvalidColorFormat as e:
        log.warning("%s; falling back to %s", e, NEUTRAL_GRAY.hex)
        return NEUTRAL_GRAY


@dataclass
class AutocropGenerator(BaseGenerator):
    """Remove a uniform border/background before dyeing."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "tolerance", "type": float, "default": DEFAULT_TOLERANCE, "min": 5.0, "max": 60.0,
             "help": "Colour distance still counted as border. Raise if borders remain."},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        tolerance = float(kwargs.get("tolerance", DEFAULT_TOLERANCE))
        return to_image(autocrop(input_image, tolerance))


@dataclass
class CoverFitGenerator(BaseGenerator):
    """Fill width x height from the input, cropping the long side evenly."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "width", "type": int, "default": PREVIEW_SIZE[0], "min": 1, "max": 8192},
            {"name": "height", "type": int, "default": PREVIEW_SIZE[1], "min": 1, "max": 8192},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        w = int(kwargs.get("width", input_image.width))
        h = int(kwargs.get("height", input_image.height))
        return to_image(cover_fit(input_image, w, h))


@dataclass
class DyeGenerator(BaseGenerator):
    """
    Simulated dyeing with one technique.

    Parameters (extras)
    -------------------
    technique: str     = 'ombre'     # one of the 15 technique keys
    color: str         = '#8b1cf5'   # dye colour; bad input falls back to grey
    intensity: float   = 0.65        # 0..1
    scale: float       = 1.0         # pattern scale, 0.2..2.2
    softness: int      = 3           # bleed steps, 0..8
    width/height: int  = input size  # destination canvas
    seed: int          = 2026        # overrides the generator seed
    workers: int       = 1           # row-band threads
    """

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "technique", "type": str, "default": Technique.OMBRE.value,
             "choices": [k for k, _ in TECHNIQUES], "help": "Dyeing technique."},
            {"name": "color", "type": str, "default": DEFAULT_DYE, "help": "Dye colour (#RGB or #RRGGBB)."},
            {"name": "intensity", "type": float, "default": DEFAULT_INTENSITY, "min": 0.0, "max": 1.0,
             "help": "How strongly the dye replaces the base colour."},
            {"name": "scale", "type": float, "default": DEFAULT_SCALE, "min": 0.2, "max": 2.2,
             "help": "Pattern scale."},
            {"name": "softness", "type": int, "default": DEFAULT_SOFTNESS, "min": 0, "max": BLEED_MAX_STEPS,
             "help": "Bleed steps at dye edges."},
            {"name": "seed", "type": int, "default": DEFAULT_SEED, "min": 0, "max": 9999,
             "help": "Pattern seed."},
        ]

    def params_from(self, input_image: Image.Image, **kwargs) -> RenderParams:
        seed = kwargs.get("seed", self.seed if self.seed is not None else DEFAULT_SEED)
        return RenderParams(
            technique=kwargs.get("technique", Technique.OMBRE.value),
            dye=_dye_from_kwargs(kwargs.get("color", DEFAULT_DYE)),
            width=int(kwargs.get("width", input_image.width)),
            height=int(kwargs.get("height", input_image.height)),
            intensity=float(kwargs.get("intensity", DEFAULT_INTENSITY)),
            scale=float(kwargs.get("scale", DEFAULT_SCALE)),
            softness=kwargs.get("softness", DEFAULT_SOFTNESS),
            seed=int(seed),
        )

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        params = self.params_from(input_image, **kwargs)
        workers = max(1, int(kwargs.get("workers", 1)))
        return to_image(render_technique(input_image, params, workers=workers))


@dataclass
class BleedGenerator(BaseGenerator):
    """Standalone bleed/softness pass."""

    @staticmethod
    def get_params() -> List[Dict[str, Any]]:
        return [
            {"name": "softness", "type": int, "default": DEFAULT_SOFTNESS, "min": 0, "max": BLEED_MAX_STEPS},
        ]

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:
        return to_image(bleed(input_image, float(kwargs.get("softness", DEFAULT_SOFTNESS))))


REGISTRY.register("autocrop", AutocropGenerator)
REGISTRY.register("cover", CoverFitGenerator)
REGISTRY.register("dye", DyeGenerator)
REGISTRY.register("bleed", BleedGenerator)
