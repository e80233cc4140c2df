import math
from typing import Callable, Optional

import numpy as np
import taichi as ti
from PIL import Image

from .color import hsl_to_rgb, pigment_mix, rgb_to_hsl
from .configs import SimParams
from .fields import FieldStore
from .region import Region

# Neighbor taps (dx, dy, 1 / distance) of the pre-render color smoothing.
SMOOTH_TAPS = tuple(
    (dx, dy, 1.0 / math.hypot(dx, dy))
    for dx in (-1, 0, 1)
    for dy in (-1, 0, 1)
    if (dx, dy) != (0, 0)
)
BOX_TAPS = tuple((dx, dy) for dx in (-1, 0, 1) for dy in (-1, 0, 1))


class RasterSurface:
    """Flat RGBA byte buffer (row-major, 4 bytes per pixel) shown to the user.

    `load_pixels()` hands out the buffer for writing, `update_pixels()`
    publishes it. The compositor only ever writes R, G and B.
    """

    def __init__(self, width: int, height: int, on_update: Optional[Callable[[np.ndarray], None]] = None):
        self.width = int(width)
        self.height = int(height)
        self.pixels = np.full(self.width * self.height * 4, 255, dtype=np.uint8)
        self.on_update = on_update
        self.updates = 0

    def load_pixels(self) -> np.ndarray:
        return self.pixels

    def update_pixels(self):
        self.updates += 1
        if self.on_update is not None:
            self.on_update(self.pixels)

    def clear(self):
        self.pixels.fill(255)

    def pixel(self, x: int, y: int) -> np.ndarray:
        i = (y * self.width + x) * 4
        return self.pixels[i:i + 4]

    def to_array(self) -> np.ndarray:
        """(height, width, 4) view of the buffer."""
        return self.pixels.reshape(self.height, self.width, 4)

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.to_array().copy(), mode="RGBA")


@ti.func
def _to_u8(v: ti.f32) -> ti.u8:
    return ti.cast(ti.min(255, ti.max(0, ti.cast(ti.floor(v + 0.5), ti.i32))), ti.u8)


@ti.data_oriented
class Compositor:
    """Composites the simulation fields into the raster surface.

    Per pixel: the smoothed committed color (or white paper), a light touch
    of the pure brush color while a stroke is in progress, and edge darkening
    applied as a lightness reduction that spares light colors.
    """

    def __init__(self, store: FieldStore, params: SimParams):
        self.store = store
        self.p = params
        self._set_params_fields()
        self.upload_params()

    def _set_params_fields(self):
        self._opacity_epsilon = ti.field(dtype=ti.f32, shape=())
        self._smoothing = ti.field(dtype=ti.f32, shape=())
        self._primitive_weight = ti.field(dtype=ti.f32, shape=())
        self._first_weight = ti.field(dtype=ti.f32, shape=())
        self._second_weight = ti.field(dtype=ti.f32, shape=())
        self._third_weight = ti.field(dtype=ti.f32, shape=())
        self._edge_darkening = ti.field(dtype=ti.f32, shape=())
        self._effect_threshold = ti.field(dtype=ti.f32, shape=())
        self._reduction_base = ti.field(dtype=ti.f32, shape=())
        self._reduction_highlight = ti.field(dtype=ti.f32, shape=())
        self._min_lightness = ti.field(dtype=ti.f32, shape=())

    def upload_params(self):
        self._opacity_epsilon[None] = float(self.p.opacity_epsilon)
        self._smoothing[None] = float(self.p.smoothing_neighbor_weight)
        self._primitive_weight[None] = float(self.p.render_primitive_weight)
        self._first_weight[None] = float(self.p.first_render_weight)
        self._second_weight[None] = float(self.p.second_render_weight)
        self._third_weight[None] = float(self.p.third_render_weight)
        self._edge_darkening[None] = float(self.p.edge_darkening)
        self._effect_threshold[None] = float(self.p.edge_effect_threshold)
        self._reduction_base[None] = float(self.p.lightness_reduction_base)
        self._reduction_highlight[None] = float(self.p.lightness_reduction_highlight)
        self._min_lightness[None] = float(self.p.min_lightness)

    def render(self, surface: RasterSurface, region: Region) -> int:
        """Redraws `region` into the surface. Returns the pigment pixel count."""
        if region.is_empty:
            return 0
        bounds = region.bounds()
        pixels = surface.load_pixels()
        self._collect(*bounds)
        count = int(self.store.render_count[None])
        if count > 0:
            self._smooth(count)
        self._composite(pixels, *bounds)
        surface.update_pixels()
        return count

    # ===============================
    # Taichi kernels
    # ===============================

    @ti.kernel
    def _collect(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        self.store.render_count[None] = 0
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            if self.store.committed[i, j] == 1 and self.store.opacity[i, j] > self._opacity_epsilon[None]:
                idx = ti.atomic_add(self.store.render_count[None], 1)
                self.store.render_list[idx] = ti.Vector([i, j])

    @ti.kernel
    def _smooth(self, count: ti.i32):
        w = self.store.width
        h = self.store.height
        for n in range(count):
            p = self.store.render_list[n]
            i = p.x
            j = p.y
            acc = self.store.color[i, j]
            total = 1.0
            for t in ti.static(SMOOTH_TAPS):
                ni = i + t[0]
                nj = j + t[1]
                if ni >= 0 and ni < w and nj >= 0 and nj < h:
                    if self.store.committed[ni, nj] == 1:
                        wt = self._smoothing[None] * t[2]
                        acc += self.store.color[ni, nj] * wt
                        total += wt
            self.store.display_color[i, j] = acc / total

    @ti.kernel
    def _composite(self, pixels: ti.types.ndarray(dtype=ti.u8, ndim=1), x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            committed = self.store.committed[i, j] == 1 and self.store.opacity[i, j] > self._opacity_epsilon[None]
            c = ti.Vector([255.0, 255.0, 255.0])
            if committed:
                c = self.store.display_color[i, j]
            if self.store.primitive[i, j] == 1:
                c = pigment_mix(c, self.store.primitive_color[i, j], self._primitive_weight[None])

            # Third layer is read through a 3x3 box average.
            third = 0.0
            for t in ti.static(BOX_TAPS):
                ni = ti.min(self.store.width - 1, ti.max(0, i + t[0]))
                nj = ti.min(self.store.height - 1, ti.max(0, j + t[1]))
                third += self.store.edge_third[ni, nj]
            third /= 9.0

            effect = (
                self._first_weight[None] * self.store.edge_first[i, j]
                + self._second_weight[None] * self.store.edge_second[i, j]
                + self._third_weight[None] * third
            ) * self._edge_darkening[None]

            if committed and effect > self._effect_threshold[None]:
                hsl = rgb_to_hsl(c)
                l = hsl.z
                reduction = effect * (self._reduction_base[None] - self._reduction_highlight[None] * ti.sqrt(l))
                new_l = ti.min(l, ti.max(self._min_lightness[None], l - reduction))
                c = hsl_to_rgb(ti.Vector([hsl.x, hsl.y, new_l]))

            base = (j * self.store.width + i) * 4
            pixels[base + 0] = _to_u8(c.x)
            pixels[base + 1] = _to_u8(c.y)
            pixels[base + 2] = _to_u8(c.z)
