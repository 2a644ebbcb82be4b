"""
dyelab: preview textile dyeing techniques on a photo from the command line.

    dyelab list
    dyelab run --url shirt.jpg --out shirt_kumo.png --technique shiboriKumo
    dyelab run --url https://.../scarf.png --out s.png --extra dye.color=#1f4fa0 autocrop.tolerance=30
    dyelab gallery --url scarf.png --out-dir previews --sheet previews/all.png
    dyelab autocrop --url scan.png --out scan_cropped.png

`--extra key=value` options go to every stage; `stage.key=value` only to the
named stage.
"""
from __future__ import annotations

import argparse
import hashlib
import io
import logging
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import unquote, urlparse

import requests
from PIL import Image, ImageOps

import engine  # registers the generators
from autocrop import DEFAULT_TOLERANCE, autocrop
from dyeing import REGISTRY, DyeError, to_image
from engine import RenderParams, contact_sheet, render_gallery, render_technique
from techniques import TECHNIQUES, Technique

try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
except ImportError:
    pass

log = logging.getLogger("dyelab")

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"
_LEVELS = (logging.WARNING, logging.INFO, logging.DEBUG)


def setup_logging(verbosity: int = 0) -> None:
    logging.basicConfig(level=_LEVELS[min(max(verbosity, 0), 2)], format=LOG_FORMAT, datefmt="%H:%M:%S")


# =============== Loading ===============
class SourceLoader:
    """
    Turn a local path, file:// URL or http(s) URL into an upright RGBA image.

    Downloads are kept in `cache_dir` keyed by URL, so re-rendering the same
    fabric photo with other techniques does not hit the network again.
    """

    def __init__(self, cache_dir: Optional[Path] = None, timeout: float = 20.0) -> None:
        self.cache_dir = cache_dir or Path(tempfile.gettempdir()) / "dyelab_cache"
        self.timeout = timeout
        self._session: Optional[requests.Session] = None

    def read_bytes(self, src: str) -> bytes:
        parsed = urlparse(src)
        if parsed.scheme in ("http", "https"):
            return self._download(src)
        path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(src)
        if not path.is_file():
            raise FileNotFoundError(f"Input image not found: {path}")
        return path.read_bytes()

    def _download(self, url: str) -> bytes:
        cached = self.cache_dir / f"{hashlib.sha256(url.encode('utf-8')).hexdigest()[:32]}.img"
        if cached.is_file():
            log.debug("Using cached download %s", cached.name)
            return cached.read_bytes()
        if self._session is None:
            self._session = requests.Session()
            self._session.headers["User-Agent"] = "dyelab/0.3"
        log.info("Downloading %s", url)
        resp = self._session.get(url, timeout=self.timeout)
        resp.raise_for_status()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        cached.write_bytes(resp.content)
        return resp.content

    def load(self, src: str, max_size: Optional[int] = None) -> Image.Image:
        raw = self.read_bytes(src)
        try:
            with Image.open(io.BytesIO(raw)) as im:
                # phone photos store rotation in EXIF; dye patterns must follow the upright image
                img = ImageOps.exif_transpose(im).convert("RGBA")
        except OSError as e:
            raise ValueError(f"Cannot decode {src}: {e}") from e
        if max_size:
            img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)
        log.info("Loaded %s (%dx%d)", src, img.width, img.height)
        return img


def load_source(src: str, max_size: Optional[int] = None) -> Image.Image:
    return SourceLoader().load(src, max_size=max_size)


_SAVE_FORMATS = {".jpg": "JPEG", ".jpeg": "JPEG", ".webp": "WEBP"}


def save_image(img: Image.Image, out: Path) -> None:
    fmt = _SAVE_FORMATS.get(out.suffix.lower(), "PNG")
    out.parent.mkdir(parents=True, exist_ok=True)
    # JPEG has no alpha channel
    (img.convert("RGB") if fmt == "JPEG" else img).save(out, format=fmt)
    log.info("Saved %s (%dx%d)", out, img.width, img.height)


# =============== Stage options ===============
def _coerce(text: str) -> Any:
    if text.lower() in ("true", "false"):
        return text.lower() == "true"
    for cast in (int, float):
        try:
            return cast(text)
        except ValueError:
            pass
    return text


def parse_extras(pairs: Optional[List[str]]) -> Tuple[Dict[str, Any], Dict[str, Dict[str, Any]]]:
    """Split `key=value` / `stage.key=value` pairs into shared and per-stage options."""
    shared: Dict[str, Any] = {}
    per_stage: Dict[str, Dict[str, Any]] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep:
            log.warning("Ignoring --extra %r (expected key=value)", pair)
            continue
        stage, dot, name = key.strip().rpartition(".")
        if dot:
            per_stage.setdefault(stage.lower(), {})[name] = _coerce(value.strip())
        else:
            shared[name] = _coerce(value.strip())
    return shared, per_stage


def stage_options(stage: str, shared: Dict[str, Any], per_stage: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    return {**shared, **per_stage.get(stage, {})}


DEFAULT_PIPELINE = "autocrop|dye"


def parse_pipeline(text: Optional[str]) -> List[str]:
    stages = [s.strip().lower() for s in (text or DEFAULT_PIPELINE).split("|") if s.strip()]
    if not stages:
        raise ValueError(f"Empty pipeline; try {DEFAULT_PIPELINE!r}")
    unknown = [s for s in stages if REGISTRY.get(s) is None]
    if unknown:
        raise ValueError(f"Unknown stage(s) {', '.join(unknown)}; available: {', '.join(REGISTRY.names())}")
    return stages


def _dye_params(img: Image.Image, options: Dict[str, Any], seed: Optional[int]) -> RenderParams:
    return engine.DyeGenerator(seed=seed).params_from(img, **options)


# =============== Commands ===============
def cmd_list(_args: argparse.Namespace) -> int:
    print("Stages:", ", ".join(REGISTRY.names()))
    print("Techniques:")
    for key, label in TECHNIQUES:
        print(f"  {key:<16} {label}")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    try:
        stages = parse_pipeline(args.pipeline)
        shared, per_stage = parse_extras(args.extra)
        if args.technique:
            per_stage.setdefault("dye", {})["technique"] = Technique.parse(args.technique).value

        img = load_source(args.url, max_size=args.max_size)
        for i, name in enumerate(stages, 1):
            options = stage_options(name, shared, per_stage)
            log.info("Stage %d/%d %s %s", i, len(stages), name, options)
            img = REGISTRY.create(name, seed=args.seed).generate(img, **options)
        save_image(img, args.out)
        return 0
    except (DyeError, ValueError) as e:
        log.error("Failed: %s", e)
        return 1
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1


def cmd_gallery(args: argparse.Namespace) -> int:
    try:
        img = load_source(args.url, max_size=args.max_size)
        if not args.no_autocrop:
            img = to_image(autocrop(img, args.tolerance))

        shared, per_stage = parse_extras(args.extra)
        options = {"width": engine.PREVIEW_SIZE[0], "height": engine.PREVIEW_SIZE[1]}
        options.update(stage_options("dye", shared, per_stage))
        params = _dye_params(img, options, args.seed)

        t0 = time.perf_counter()
        renders = render_gallery(img, params, workers=max(1, args.workers))
        log.info("Rendered %d techniques in %.1f ms", len(renders), (time.perf_counter() - t0) * 1000)

        for tech, arr in renders.items():
            save_image(to_image(arr), args.out_dir / f"{tech.value}.png")
        if args.sheet:
            save_image(contact_sheet(renders, columns=args.columns), args.sheet)
        print(f"Wrote {len(renders)} technique previews to {args.out_dir}")
        return 0
    except (DyeError, ValueError) as e:
        log.error("Failed: %s", e)
        return 1
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1


def cmd_autocrop(args: argparse.Namespace) -> int:
    try:
        img = load_source(args.url)
        out = to_image(autocrop(img, args.tolerance))
        save_image(out, args.out)
        print(f"{img.width}x{img.height} → {out.width}x{out.height}")
        return 0
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1


def cmd_bench(args: argparse.Namespace) -> int:
    try:
        img = load_source(args.url)
        shared, per_stage = parse_extras(args.extra)
        options = stage_options("dye", shared, per_stage)
        options["technique"] = args.technique
        params = _dye_params(img, options, seed=None)

        times = []
        for _ in range(max(1, args.runs)):
            t0 = time.perf_counter()
            render_technique(img, params, workers=max(1, args.workers))
            times.append(time.perf_counter() - t0)
        ms = [t * 1000 for t in times]
        print(f"{params.technique.value} {params.width}x{params.height}: {len(ms)} run(s) — "
              f"avg {sum(ms) / len(ms):.2f} ms, min {min(ms):.2f} ms, max {max(ms):.2f} ms")
        return 0
    except (DyeError, ValueError) as e:
        log.error("Bench failed: %s", e)
        return 1
    except Exception as e:
        log.exception("Bench failed: %s", e)
        return 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dyelab", description="Preview textile dyeing techniques on an image")
    p.add_argument("-v", "--verbose", action="count", default=0, help="-v for progress, -vv for debug.")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list", help="List stages and dyeing techniques.").set_defaults(func=cmd_list)

    rp = sub.add_parser("run", help=f"Run a stage pipeline (default {DEFAULT_PIPELINE}).")
    rp.add_argument("--url", required=True, help="Local path, file:// or http(s) URL.")
    rp.add_argument("--out", type=Path, required=True, help="Output file (.png, .jpg or .webp).")
    rp.add_argument("--pipeline", help="Stages joined by '|', e.g. 'autocrop|dye|bleed'.")
    rp.add_argument("--technique", help="Shortcut for dye.technique=KEY.")
    rp.add_argument("--seed", type=int, default=None)
    rp.add_argument("--max-size", type=int, default=None, help="Downscale the longest input side first.")
    rp.add_argument("--extra", nargs="*", help="key=value for all stages or stage.key=value, e.g. dye.color=#1f4fa0.")
    rp.set_defaults(func=cmd_run)

    gp = sub.add_parser("gallery", help="Render all 15 techniques for one image.")
    gp.add_argument("--url", required=True)
    gp.add_argument("--out-dir", type=Path, required=True, help="Directory for <technique>.png files.")
    gp.add_argument("--sheet", type=Path, default=None, help="Optional labelled contact sheet.")
    gp.add_argument("--columns", type=int, default=2)
    gp.add_argument("--no-autocrop", action="store_true", help="Keep the input borders.")
    gp.add_argument("--tolerance", type=float, default=DEFAULT_TOLERANCE)
    gp.add_argument("--seed", type=int, default=None)
    gp.add_argument("--max-size", type=int, default=None)
    gp.add_argument("--workers", type=int, default=1)
    gp.add_argument("--extra", nargs="*", help="Dye options: color, intensity, scale, softness, width, height.")
    gp.set_defaults(func=cmd_gallery)

    ap = sub.add_parser("autocrop", help="Only remove a uniform border.")
    ap.add_argument("--url", required=True)
    ap.add_argument("--out", type=Path, required=True)
    ap.add_argument("--tolerance", type=float, default=DEFAULT_TOLERANCE, help="Border colour tolerance (5-60).")
    ap.set_defaults(func=cmd_autocrop)

    bp = sub.add_parser("bench", help="Time one technique render.")
    bp.add_argument("--url", required=True)
    bp.add_argument("--technique", default=Technique.OMBRE.value)
    bp.add_argument("--runs", type=int, default=3)
    bp.add_argument("--workers", type=int, default=1)
    bp.add_argument("--extra", nargs="*")
    bp.set_defaults(func=cmd_bench)
    return p


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
