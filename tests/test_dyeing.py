import numpy as np
import pytest
from PIL import Image

from dyeing import (
    NEUTRAL_GRAY,
    DyeColor,
    DyeError,
    GeneratorRegistry,
    InvalidColorFormat,
    InvalidDimensions,
    as_bitmap,
    check_dimensions,
    composite,
    luminance,
    parse_hex_color,
    tint,
    to_image,
)


class TestHexColor:
    def test_six_digit(self):
        assert parse_hex_color("#8b1cf5") == DyeColor(139, 28, 245)

    def test_short_form_expands(self):
        assert parse_hex_color("#ABC") == parse_hex_color("#aabbcc")

    def test_hash_optional_and_whitespace(self):
        assert parse_hex_color("  8B1CF5 ") == DyeColor(139, 28, 245)

    @pytest.mark.parametrize("bad", ["", "#", "#12", "#1234", "zzzzzz", "#1234567", "#12345g"])
    def test_invalid(self, bad):
        with pytest.raises(InvalidColorFormat):
            parse_hex_color(bad)

    def test_invalid_is_value_error(self):
        with pytest.raises(ValueError):
            parse_hex_color(123)
        assert issubclass(InvalidColorFormat, DyeError)

    def test_hex_property(self):
        assert DyeColor.from_hex("#0F0").hex == "#00ff00"
        assert NEUTRAL_GRAY.hex == "#808080"


class TestTint:
    def test_luminance_weights(self):
        assert luminance(np.array([255, 255, 255])) == pytest.approx(1.0)
        assert luminance(np.array([0, 0, 0])) == 0.0
        g = luminance(np.array([0, 255, 0]))
        r = luminance(np.array([255, 0, 0]))
        b = luminance(np.array([0, 0, 255]))
        assert g > r > b

    def test_white_base_gives_pure_dye(self):
        out = tint(np.array([255.0, 255.0, 255.0]), DyeColor(200, 100, 50))
        np.testing.assert_allclose(out, [200, 100, 50])

    def test_black_base_keeps_shadow_floor(self):
        out = tint(np.array([0.0, 0.0, 0.0]), DyeColor(200, 100, 50))
        np.testing.assert_allclose(out, [70, 35, 17.5])


def _base(rgb=(180, 150, 120), alpha=255, shape=(3, 5)):
    arr = np.zeros(shape + (4,), np.uint8)
    arr[..., :3] = rgb
    arr[..., 3] = alpha
    return arr


class TestComposite:
    def test_zero_intensity_is_identity(self):
        base = _base()
        out = composite(base, DyeColor(255, 0, 0), np.ones(base.shape[:2]), 0.0)
        np.testing.assert_array_equal(out, base)

    def test_zero_mask_is_identity(self):
        base = _base()
        out = composite(base, DyeColor(255, 0, 0), np.zeros(base.shape[:2]), 1.0)
        np.testing.assert_array_equal(out, base)

    def test_full_strength_equals_tint(self):
        base = _base()
        out = composite(base, DyeColor(255, 0, 0), np.ones(base.shape[:2]), 1.0)
        expected = np.rint(tint(base[..., :3].astype(float), DyeColor(255, 0, 0)))
        np.testing.assert_array_equal(out[..., :3], expected.astype(np.uint8))

    def test_weight_is_clamped(self):
        base = _base()
        dye = DyeColor(10, 200, 30)
        a = composite(base, dye, np.full(base.shape[:2], 5.0), 1.0)
        b = composite(base, dye, np.ones(base.shape[:2]), 1.0)
        np.testing.assert_array_equal(a, b)

    def test_moves_monotonically_toward_tint(self):
        base = _base()
        dye = DyeColor(0, 0, 255)
        mask = np.ones(base.shape[:2])
        reds = [int(composite(base, dye, mask, k)[0, 0, 0]) for k in (0.0, 0.25, 0.5, 0.75, 1.0)]
        assert reds == sorted(reds, reverse=True)

    def test_alpha_passthrough(self):
        base = _base(alpha=77)
        base[0, 0, 3] = 0
        out = composite(base, DyeColor(255, 0, 0), np.ones(base.shape[:2]), 1.0)
        np.testing.assert_array_equal(out[..., 3], base[..., 3])

    def test_darker_base_stays_darker(self):
        base = np.zeros((1, 2, 4), np.uint8)
        base[0, 0] = (60, 60, 60, 255)
        base[0, 1] = (200, 200, 200, 255)
        mask = np.ones((1, 2))
        for dye in (DyeColor(255, 0, 0), DyeColor(30, 140, 90)):
            for k in (0.2, 0.5, 0.8, 1.0):
                out = composite(base, dye, mask, k)
                dark, light = luminance(out[0, 0, :3]), luminance(out[0, 1, :3])
                assert dark < light, f"dye {dye.hex} at {k}: {out[0, :, :3].tolist()}"
        full = composite(base, DyeColor(255, 0, 0), mask, 1.0)
        assert full[0, :, :3].tolist() == [[128, 0, 0], [219, 0, 0]]

    def test_darker_base_stays_darker_under_a_pattern(self):
        from techniques import mask_field
        base = np.zeros((16, 16, 4), np.uint8)
        base[..., 3] = 255
        base[:, :8, :3] = 50
        base[:, 8:, :3] = 210
        m = mask_field("ikatWeft", 16, 16, 1.0, 7)
        m[:, 8:] = m[:, :8]
        out = composite(base, DyeColor(20, 60, 200), m, 0.65)
        lum = luminance(out[..., :3])
        assert (lum[:, :8] < lum[:, 8:]).all()

    def test_does_not_touch_input(self):
        base = _base()
        before = base.copy()
        composite(base, DyeColor(255, 0, 0), np.ones(base.shape[:2]), 1.0)
        np.testing.assert_array_equal(base, before)


class TestBitmaps:
    def test_gray_array_gets_opaque_alpha(self):
        arr = as_bitmap(np.full((2, 3), 9, np.uint8))
        assert arr.shape == (2, 3, 4)
        assert (arr[..., 3] == 255).all()
        assert (arr[..., :3] == 9).all()

    def test_image_roundtrip_is_a_copy(self):
        src = np.zeros((4, 4, 4), np.uint8)
        arr = as_bitmap(src)
        arr[0, 0, 0] = 200
        assert src[0, 0, 0] == 0
        assert to_image(arr).size == (4, 4)
        assert as_bitmap(Image.new("RGB", (3, 2), (1, 2, 3)))[1, 2].tolist() == [1, 2, 3, 255]

    def test_bad_shape(self):
        with pytest.raises(InvalidDimensions):
            as_bitmap(np.zeros((2, 2, 2)))

    def test_check_dimensions(self):
        assert check_dimensions(3, 4) == (3, 4)
        with pytest.raises(InvalidDimensions):
            check_dimensions(0, 4)
        with pytest.raises(InvalidDimensions):
            check_dimensions(4, -1)


class TestRegistry:
    def test_register_and_create(self):
        reg = GeneratorRegistry()

        class Dummy:
            def __init__(self, seed=None):
                self.seed = seed

        reg.register(" Dummy ", Dummy)
        assert reg.names() == ["dummy"]
        assert reg.get("DUMMY") is Dummy
        assert reg.create("dummy", seed=4).seed == 4

    def test_unknown_generator(self):
        reg = GeneratorRegistry()
        with pytest.raises(KeyError):
            reg.create("nope")
        assert reg.get("nope") is None
