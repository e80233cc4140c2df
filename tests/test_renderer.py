import colorsys

import numpy as np
import pytest

from wetedge.brush.renderer import RasterSurface


class TestRasterSurface:
    def test_starts_white_and_opaque(self):
        s = RasterSurface(8, 4)
        assert s.pixels.shape == (8 * 4 * 4,)
        assert np.all(s.pixels == 255)

    def test_pixel_layout_is_row_major(self):
        s = RasterSurface(8, 4)
        s.load_pixels()[(2 * 8 + 5) * 4] = 7
        assert s.pixel(5, 2)[0] == 7
        assert s.to_array()[2, 5, 0] == 7

    def test_update_notifies(self):
        seen = []
        s = RasterSurface(2, 2, on_update=seen.append)
        s.update_pixels()
        assert len(seen) == 1
        assert seen[0] is s.pixels

    def test_to_image(self):
        img = RasterSurface(6, 3).to_image()
        assert img.size == (6, 3)
        assert img.mode == "RGBA"


def _lightness(rgb):
    return colorsys.rgb_to_hls(*(c / 255.0 for c in rgb))[1]


class TestCompositor:
    def test_paints_brush_area_only(self, engine):
        engine.set_color(220, 40, 40)
        engine.on_press(50, 50)
        px = engine.surface.pixel(50, 50)
        assert px[0] > px[1]
        assert tuple(px[:3]) != (255, 255, 255)
        assert tuple(engine.surface.pixel(5, 5)) == (255, 255, 255, 255)

    def test_alpha_is_never_written(self, engine):
        engine.surface.pixels[3::4] = 9
        engine.on_press(50, 50)
        engine.render(full=True)
        assert np.all(engine.surface.pixels[3::4] == 9)

    def test_edges_only_darken(self, engine):
        engine.set_color(90, 160, 220)
        engine.on_press(50, 50)
        engine.on_drag(58, 52)
        engine.update_params(edge_darkening=0.0)
        plain = engine.render(full=True).reshape(-1, 4)[:, :3].copy()
        engine.update_params(edge_darkening=3.0)
        dark = engine.render(full=True).reshape(-1, 4)[:, :3].copy()

        changed = np.nonzero(np.any(plain != dark, axis=1))[0]
        assert len(changed) > 0
        for i in changed:
            assert _lightness(dark[i]) <= _lightness(plain[i]) + 1e-2

    def test_render_returns_surface_buffer(self, engine):
        assert engine.render() is engine.surface.pixels

    def test_clear_whitens_surface(self, engine):
        engine.on_press(50, 50)
        engine.clear_canvas()
        assert np.all(engine.surface.pixels == 255)
