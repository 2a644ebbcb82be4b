import numpy as np
import pytest
from PIL import Image

import engine
from dyeing import REGISTRY, DyeColor, InvalidColorFormat, InvalidDimensions, UnknownTechnique
from engine import RenderParams, contact_sheet, render_gallery, render_technique
from techniques import Technique


def small(technique="ombre", **kw):
    opts = dict(technique=technique, dye="#ff0000", width=24, height=16, softness=0)
    opts.update(kw)
    return RenderParams(**opts)


class TestRenderParams:
    def test_parses_and_clamps(self):
        p = RenderParams(technique="LEHERIYA", dye="#0f0", width=10, height=5,
                         intensity=3.0, scale=9.0, softness=20, seed=-1)
        assert p.technique is Technique.LEHERIYA
        assert p.dye == DyeColor(0, 255, 0)
        assert p.intensity == 1.0
        assert p.scale == 2.2
        assert p.softness == 8
        assert p.seed == 0xFFFFFFFF

    def test_lower_clamps(self):
        p = small(intensity=-0.5, scale=0.0, softness=2.7)
        assert (p.intensity, p.scale, p.softness) == (0.0, 0.2, 2)
        assert small(softness=-3).softness == 0

    def test_rejects_bad_input(self):
        with pytest.raises(InvalidDimensions):
            small(width=0)
        with pytest.raises(InvalidColorFormat):
            small(dye="#12345")
        with pytest.raises(UnknownTechnique):
            small(technique="marbling")

    def test_with_technique(self):
        p = small(seed=5).with_technique("ikatWarp", seed=9)
        assert p.technique is Technique.IKAT_WARP
        assert p.seed == 9
        assert p.dye == DyeColor(255, 0, 0)


class TestRenderTechnique:
    def test_ombre_on_white(self, white):
        p = RenderParams(technique="ombre", dye="#ff0000", width=4, height=4,
                         intensity=1.0, scale=1.0, softness=0, seed=2026)
        out = render_technique(white, p)
        assert out.shape == (4, 4, 4)
        np.testing.assert_array_equal(out[0], white[0])
        bottom = out[3]
        assert (bottom[:, 0] == 255).all()
        assert ((bottom[:, 1] > 50) & (bottom[:, 1] < 100)).all()
        greens = out[:, 0, 1].astype(int)
        assert list(greens) == sorted(greens, reverse=True)
        assert (out[..., 3] == 255).all()

    def test_output_size_follows_params(self, gradient):
        out = render_technique(gradient, small("shiboriArashi", width=50, height=20))
        assert out.shape == (20, 50, 4)

    @pytest.mark.parametrize("tech", ["tieDyeSpiral", "bandhaniDots", "batikCrackle", "spaceDye"])
    def test_workers_do_not_change_result(self, gradient, tech):
        p = small(tech, width=64, height=48, softness=2, intensity=0.8)
        single = render_technique(gradient, p, workers=1)
        banded = render_technique(gradient, p, workers=4)
        np.testing.assert_array_equal(single, banded)

    def test_alpha_passthrough_without_softness(self, gradient):
        src = gradient.copy()
        src[..., 3] = 128
        out = render_technique(src, small("leheriya", width=64, height=48))
        assert (out[..., 3] == 128).all()

    def test_source_untouched(self, gradient):
        before = gradient.copy()
        render_technique(gradient, small("batikFloral", softness=3))
        np.testing.assert_array_equal(gradient, before)

    def test_rejects_empty_source(self):
        with pytest.raises(InvalidDimensions):
            render_technique(np.zeros((0, 4, 4), np.uint8), small())


class TestGallery:
    def test_every_technique(self, gradient):
        renders = render_gallery(gradient, small())
        assert list(renders) == [t for t in Technique]
        for arr in renders.values():
            assert arr.shape == (16, 24, 4)

    def test_unknown_entries_are_skipped(self, gradient):
        renders = render_gallery(gradient, small(), ["ombre", "marbling"])
        assert list(renders) == [Technique.OMBRE]

    def test_previews_use_their_own_seed(self, gradient):
        renders = render_gallery(gradient, small(), ["spaceDye"])
        direct = render_technique(gradient, small("spaceDye"))
        assert not np.array_equal(renders[Technique.SPACE_DYE], direct)

    def test_contact_sheet_layout(self, gradient):
        renders = render_gallery(gradient, small(), ["ombre", "dipDye", "ikatWeft"])
        sheet = contact_sheet(renders, columns=2)
        assert sheet.size == (12 + 2 * (24 + 12), 12 + 2 * (16 + 18 + 12))
        assert sheet.mode == "RGBA"

    def test_contact_sheet_needs_renders(self):
        with pytest.raises(ValueError):
            contact_sheet({})


class TestGenerators:
    def test_registered(self):
        for name in ("autocrop", "cover", "dye", "bleed"):
            assert name in REGISTRY.names()

    def test_dye_generator(self, gradient):
        img = Image.fromarray(gradient, "RGBA")
        out = REGISTRY.create("dye", seed=3).generate(
            img, technique="ikatWarp", color="#00ff00", width=32, height=20, softness=1
        )
        assert out.size == (32, 20)
        assert out.mode == "RGBA"

    def test_dye_generator_defaults_to_input_size(self, gradient):
        img = Image.fromarray(gradient, "RGBA")
        assert REGISTRY.create("dye").generate(img).size == img.size

    def test_bad_color_falls_back_to_gray(self, gradient):
        img = Image.fromarray(gradient, "RGBA")
        gen = engine.DyeGenerator(seed=1)
        a = gen.generate(img, color="not-a-colour", softness=0)
        b = gen.generate(img, color="#808080", softness=0)
        np.testing.assert_array_equal(np.asarray(a), np.asarray(b))

    def test_generator_seed_is_used(self, gradient):
        img = Image.fromarray(gradient, "RGBA")
        p = engine.DyeGenerator(seed=11).params_from(img, technique="spaceDye")
        assert p.seed == 11
        assert engine.DyeGenerator().params_from(img).seed == engine.DEFAULT_SEED
        assert engine.DyeGenerator(seed=11).params_from(img, seed=4).seed == 4

    def test_cover_and_bleed_generators(self, gradient):
        img = Image.fromarray(gradient, "RGBA")
        cover = REGISTRY.create("cover").generate(img, width=10, height=30)
        assert cover.size == (10, 30)
        soft = REGISTRY.create("bleed").generate(img, softness=0)
        np.testing.assert_array_equal(np.asarray(soft), gradient)

    def test_autocrop_generator(self):
        from conftest import bordered
        img = Image.fromarray(bordered(100, 10), "RGBA")
        assert REGISTRY.create("autocrop").generate(img, tolerance=18).size == (80, 80)

    def test_params_describe_controls(self):
        names = [p["name"] for p in engine.DyeGenerator.get_params()]
        assert names[:2] == ["technique", "color"]
        choices = engine.DyeGenerator.get_params()[0]["choices"]
        assert len(choices) == 15


class TestBands:
    def test_mask_is_built_in_bounded_bands(self, gradient, monkeypatch):
        seen = []
        real = engine.mask_field

        def recording(technique, width, height, scale, seed, y0=0, y1=None):
            seen.append((y0, y1))
            return real(technique, width, height, scale, seed, y0, y1)

        monkeypatch.setattr(engine, "mask_field", recording)
        p = small("bandhaniDots", width=40, height=300)
        out = render_technique(gradient, p)
        assert out.shape == (300, 40, 4)
        assert seen[0][0] == 0 and seen[-1][1] == 300
        assert all(0 < y1 - y0 <= engine.BAND_ROWS for y0, y1 in seen)

    def test_banded_output_matches_whole_canvas(self, gradient):
        from dyeing import composite
        from sampling import cover_fit
        from techniques import mask_field

        p = small("shiboriKumo", width=30, height=290, intensity=0.9)
        whole = composite(cover_fit(gradient, 30, 290), p.dye,
                          mask_field(p.technique, 30, 290, p.scale, p.seed), p.intensity)
        np.testing.assert_array_equal(render_technique(gradient, p), whole)
        np.testing.assert_array_equal(render_technique(gradient, p, workers=3), whole)

    def test_banded_bleed_matches_single_pass(self, monkeypatch):
        import sampling

        rng = np.random.default_rng(4)
        src = rng.integers(0, 256, size=(300, 24, 4), dtype=np.uint8)
        banded = sampling.bleed(src, 3)
        monkeypatch.setattr(sampling, "BAND_ROWS", 10_000)
        np.testing.assert_array_equal(banded, sampling.bleed(src, 3))
