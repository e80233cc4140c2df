import colorsys

import mixbox
import numpy as np
import pytest
import taichi as ti

from wetedge.brush.color import darken, hsl_to_rgb, lightness, mix, pigment_mix, rgb_to_hsl

YELLOW = (254.0, 236.0, 0.0)
BLUE = (25.0, 0.0, 89.0)


def colorsys_hsl(rgb):
    h, l, s = colorsys.rgb_to_hls(*(c / 255.0 for c in rgb))
    return h, s, l


class TestMix:
    def test_endpoints(self):
        a = (200.0, 120.0, 40.0)
        b = (30.0, 90.0, 220.0)
        assert mix(a, b, 0.0) == pytest.approx(a, abs=0.05)
        assert mix(a, b, 1.0) == pytest.approx(b, abs=0.05)

    def test_t_is_clamped(self):
        a = (200.0, 120.0, 40.0)
        b = (30.0, 90.0, 220.0)
        assert mix(a, b, -1.0) == pytest.approx(mix(a, b, 0.0))
        assert mix(a, b, 2.0) == pytest.approx(mix(a, b, 1.0))

    def test_matches_mixbox(self):
        expected = mixbox.lerp(tuple(int(c) for c in YELLOW), tuple(int(c) for c in BLUE), 0.5)
        assert mix(YELLOW, BLUE, 0.5) == pytest.approx(expected, abs=1.0)

    def test_yellow_and_blue_make_green(self):
        r, g, b = mix(YELLOW, BLUE, 0.5)
        assert g > r
        assert g > b

    def test_white_thins_paint(self):
        blue = (40.0, 60.0, 200.0)
        thinned = mix((255.0, 255.0, 255.0), blue, 0.5)
        assert sum(blue) < sum(thinned) < 3 * 255.0

    def test_same_color_is_stable(self):
        c = (90.0, 140.0, 30.0)
        assert mix(c, c, 0.37) == pytest.approx(c, abs=0.5)


class TestLightness:
    def test_matches_colorsys(self):
        for rgb in [(255, 0, 0), (12, 200, 90), (128, 128, 128), (250, 240, 10)]:
            assert lightness(rgb) == pytest.approx(colorsys_hsl(rgb)[2])

    def test_inputs_are_clamped(self):
        assert lightness((300, 300, 300)) == pytest.approx(1.0)
        assert lightness((-20, -20, -20)) == pytest.approx(0.0)


@pytest.fixture
def out_field():
    return ti.Vector.field(3, dtype=ti.f32, shape=())


@ti.kernel
def _mix_kernel(out: ti.template(), ar: ti.f32, ag: ti.f32, ab: ti.f32, br: ti.f32, bg: ti.f32, bb: ti.f32, t: ti.f32):
    out[None] = pigment_mix(ti.Vector([ar, ag, ab]), ti.Vector([br, bg, bb]), t)


@ti.kernel
def _hsl_round_trip_kernel(out: ti.template(), r: ti.f32, g: ti.f32, b: ti.f32):
    out[None] = hsl_to_rgb(rgb_to_hsl(ti.Vector([r, g, b])))


@ti.kernel
def _to_hsl_kernel(out: ti.template(), r: ti.f32, g: ti.f32, b: ti.f32):
    out[None] = rgb_to_hsl(ti.Vector([r, g, b]))


@ti.kernel
def _darken_kernel(out: ti.template(), r: ti.f32, g: ti.f32, b: ti.f32, amount: ti.f32, floor_l: ti.f32):
    out[None] = darken(ti.Vector([r, g, b]), amount, floor_l)


class TestKernels:
    def test_pigment_mix_follows_mixbox(self, out_field):
        pairs = [
            ((200.0, 120.0, 40.0), (30.0, 90.0, 220.0)),
            (YELLOW, BLUE),
            ((255.0, 0.0, 0.0), (0.0, 0.0, 255.0)),
        ]
        for a, b in pairs:
            for t in (0.0, 0.25, 0.5, 0.9, 1.0):
                _mix_kernel(out_field, *a, *b, t)
                np.testing.assert_allclose(out_field.to_numpy(), mix(a, b, t), atol=6.0)

    def test_pigment_mix_makes_green(self, out_field):
        _mix_kernel(out_field, *YELLOW, *BLUE, 0.5)
        r, g, b = out_field.to_numpy()
        assert g > r
        assert g > b

    def test_rgb_to_hsl_matches_colorsys(self, out_field):
        for rgb in [(255.0, 0.0, 0.0), (0.0, 0.0, 255.0), (12.0, 200.0, 90.0), (250.0, 240.0, 10.0), (111.0, 111.0, 111.0)]:
            _to_hsl_kernel(out_field, *rgb)
            np.testing.assert_allclose(out_field.to_numpy(), colorsys_hsl(rgb), atol=1e-4)

    def test_hsl_round_trip(self, out_field):
        for rgb in [(12.0, 200.0, 90.0), (111.0, 111.0, 111.0), (250.0, 240.0, 10.0)]:
            _hsl_round_trip_kernel(out_field, *rgb)
            np.testing.assert_allclose(out_field.to_numpy(), rgb, atol=0.05)

    def test_darken_lowers_lightness(self, out_field):
        rgb = (200.0, 30.0, 30.0)
        l = colorsys_hsl(rgb)[2]
        _darken_kernel(out_field, *rgb, 0.1, 0.0)
        out = out_field.to_numpy()
        h, s, new_l = colorsys_hsl(out)
        assert new_l == pytest.approx(l - 0.1, abs=1e-4)
        assert h == pytest.approx(colorsys_hsl(rgb)[0], abs=1e-3)

    def test_darken_stops_at_floor(self, out_field):
        rgb = (200.0, 30.0, 30.0)
        _darken_kernel(out_field, *rgb, 0.9, 0.3)
        assert colorsys_hsl(out_field.to_numpy())[2] == pytest.approx(0.3, abs=1e-4)

    def test_darken_never_brightens(self, out_field):
        rgb = (60.0, 20.0, 20.0)
        _darken_kernel(out_field, *rgb, 0.05, 0.5)
        np.testing.assert_allclose(out_field.to_numpy(), rgb, atol=0.05)
