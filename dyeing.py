from __future__ import annotations

import string
from dataclasses import dataclass
from typing import Dict, Optional, Tuple, Union

import numpy as np
from PIL import Image


# =============== Errors ===============
class DyeError(Exception):
    """Base class for recoverable dye-engine errors."""


class InvalidColorFormat(DyeError, ValueError):
    pass


class InvalidDimensions(DyeError, ValueError):
    pass


class UnknownTechnique(DyeError, KeyError):
    def __str__(self) -> str:
        # KeyError quotes its argument; keep the message readable
        return str(self.args[0]) if self.args else ""


# =============== Registry ===============
class GeneratorRegistry:
    def __init__(self) -> None:
        self._by_name: Dict[str, type[BaseGenerator]] = {}

    def register(self, name: str, cls: type["BaseGenerator"]) -> None:
        key = name.strip().lower()
        self._by_name[key] = cls

    def names(self) -> list[str]:
        return sorted(self._by_name.keys())

    def get(self, name: str) -> Optional[type["BaseGenerator"]]:
        return self._by_name.get(name.strip().lower())

    def create(self, name: str, **kwargs) -> "BaseGenerator":
        key = name.strip().lower()
        if key not in self._by_name:
            raise KeyError(f"Unknown generator '{name}'. Available: {', '.join(self.names()) or '(none)'}")
        return self._by_name[key](**kwargs)


REGISTRY = GeneratorRegistry()


# =============== Base & common utils ===============
@dataclass
class BaseGenerator:
    seed: Optional[int] = None

    @staticmethod
    def get_params() -> list[dict]:
        return []

    def generate(self, input_image: Image.Image, **kwargs) -> Image.Image:  # pragma: no cover
        raise NotImplementedError


def as_bitmap(src: Union[Image.Image, np.ndarray]) -> np.ndarray:
    """Copy a Pillow image or array into a fresh (h, w, 4) uint8 RGBA bitmap."""
    if isinstance(src, Image.Image):
        return np.array(src.convert("RGBA"), dtype=np.uint8)
    arr = np.asarray(src)
    if arr.ndim == 2:
        arr = np.dstack([arr, arr, arr])
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise InvalidDimensions(f"Expected an HxW, HxWx3 or HxWx4 array, got shape {arr.shape}")
    arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.shape[2] == 3:
        alpha = np.full(arr.shape[:2] + (1,), 255, np.uint8)
        arr = np.concatenate([arr, alpha], axis=2)
    return arr.copy()


def to_image(bitmap: np.ndarray) -> Image.Image:
    return Image.fromarray(np.ascontiguousarray(bitmap, dtype=np.uint8), "RGBA")


def check_dimensions(width: int, height: int, what: str = "destination") -> Tuple[int, int]:
    w, h = int(width), int(height)
    if w <= 0 or h <= 0:
        raise InvalidDimensions(f"{what} size must be positive, got {width}x{height}")
    return w, h


def clamp01(x):
    return np.clip(x, 0.0, 1.0)


# =============== Dye colour ===============
@dataclass(frozen=True)
class DyeColor:
    r: int
    g: int
    b: int

    @classmethod
    def from_hex(cls, code: str) -> "DyeColor":
        return parse_hex_color(code)

    @property
    def hex(self) -> str:
        return f"#{self.r:02x}{self.g:02x}{self.b:02x}"

    def as_array(self) -> np.ndarray:
        return np.array([self.r, self.g, self.b], np.float64)


NEUTRAL_GRAY = DyeColor(128, 128, 128)

_HEX = set(string.hexdigits)


def parse_hex_color(code: str) -> DyeColor:
    """Parse '#RGB' / '#RRGGBB' (case-insensitive, '#' optional)."""
    if not isinstance(code, str):
        raise InvalidColorFormat(f"Expected a hex colour string, got {type(code).__name__}")
    s = code.strip()
    if s.startswith("#"):
        s = s[1:]
    if len(s) == 3:
        s = "".join([c * 2 for c in s])
    if len(s) != 6 or not set(s) <= _HEX:
        raise InvalidColorFormat(f"Invalid hex colour {code!r}; expected #RGB or #RRGGBB")
    r = int(s[0:2], 16); g = int(s[2:4], 16); b = int(s[4:6], 16)
    return DyeColor(r, g, b)


# =============== Tint & composite ===============
def luminance(rgb: np.ndarray) -> np.ndarray:
    """BT.709 relative luminance of (..., 3) RGB in 0..255, normalised to 0..1."""
    rgb = np.asarray(rgb, np.float64)
    return (0.2126 * rgb[..., 0] + 0.7152 * rgb[..., 1] + 0.0722 * rgb[..., 2]) / 255.0


def tint(base_rgb: np.ndarray, dye_rgb) -> np.ndarray:
    """Shade the dye colour by the base luminance so folds and shadows survive."""
    base_rgb = np.asarray(base_rgb, np.float64)
    dye = dye_rgb.as_array() if isinstance(dye_rgb, DyeColor) else np.asarray(dye_rgb, np.float64)
    shade = 0.35 + 0.65 * luminance(base_rgb)
    return np.clip(dye * shade[..., None], 0.0, 255.0)


def composite(base: np.ndarray, dye: DyeColor, mask: np.ndarray, intensity: float) -> np.ndarray:
    """
    Blend the tinted colour over `base` (h, w, 4) with per-pixel weight
    clamp01(intensity * mask). Alpha is copied through.
    """
    base = np.asarray(base)
    rgb = base[..., :3].astype(np.float64)
    mix = clamp01(float(intensity) * np.asarray(mask, np.float64))[..., None]
    dyed = tint(rgb, dye)
    out_rgb = rgb * (1.0 - mix) + dyed * mix
    out = np.empty(base.shape, np.uint8)
    out[..., :3] = np.clip(np.rint(out_rgb), 0, 255).astype(np.uint8)
    out[..., 3] = base[..., 3]
    return out
