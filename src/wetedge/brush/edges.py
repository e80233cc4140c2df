"""
Layered edge darkening.

Watercolor pigment piles up where a wet region meets drier paper. The engine
estimates that boundary from the wetness gradient around the brush and keeps
three layers of edge intensity:
- First: global and persistent; grows slowly with a resistance that shrinks
  as the layer saturates, and is partly covered by fresh paint
- Second: brush-local; cleared and rebuilt on every sample
- Third: drag-diffused; a small working grid that follows the brush, decays
  non-monotonically with distance from the center, is fed by Second and
  smeared along the drag direction before being mixed back into the canvas
  inside the brush disc
"""

import math
from typing import Tuple

import taichi as ti

from .configs import SimParams
from .fields import FieldStore, RelocatableGrid, temp_half_size
from .region import get_region

# Neighbor offsets for the 8-way diffusion pass.
NEIGHBORS = ((1, 0), (1, 1), (0, 1), (-1, 1), (-1, 0), (-1, -1), (0, -1), (1, -1))

# Center-weighted 3x3 blur taps (dx, dy, weight), weights sum to 16.
BLUR_TAPS = (
    (-1, -1, 1.0), (0, -1, 2.0), (1, -1, 1.0),
    (-1, 0, 2.0), (0, 0, 4.0), (1, 0, 2.0),
    (-1, 1, 1.0), (0, 1, 2.0), (1, 1, 1.0),
)


def direction_weights(direction: Tuple[float, float], forward: float, side: float, backward: float):
    """Normalized diffusion weight for each neighbor offset.

    With no drag direction every neighbor gets the same weight.
    """
    dx, dy = direction
    mag = math.hypot(dx, dy)
    weights = []
    for ox, oy in NEIGHBORS:
        if mag <= 0:
            w = side
        else:
            dot = (ox * dx + oy * dy) / (math.hypot(ox, oy) * mag)
            w = side + (forward - side) * max(0.0, dot) + (backward - side) * max(0.0, -dot)
        weights.append(max(0.0, w))
    total = sum(weights)
    if total <= 0:
        return [1.0 / len(NEIGHBORS)] * len(NEIGHBORS)
    return [w / total for w in weights]


@ti.func
def calculate_accumulation_resistance(v: ti.f32, max_v: ti.f32) -> ti.f32:
    """(1 - v/max)^2: full growth on clean paper, none at saturation."""
    x = ti.min(1.0, ti.max(0.0, v / ti.max(max_v, 1e-6)))
    return (1.0 - x) * (1.0 - x)


@ti.data_oriented
class EdgeEngine:
    def __init__(self, store: FieldStore, params: SimParams):
        self.store = store
        self.p = params
        self.temp = RelocatableGrid(channels=1)
        self._set_params_fields()
        self.upload_params()

    def _set_params_fields(self):
        self._grad_max = ti.field(dtype=ti.f32, shape=())
        self._dir_weights = ti.field(dtype=ti.f32, shape=len(NEIGHBORS))

        self._max_wet = ti.field(dtype=ti.f32, shape=())
        self._wet_penalty_threshold = ti.field(dtype=ti.f32, shape=())
        self._wet_penalty_strength = ti.field(dtype=ti.f32, shape=())
        self._first_cover_radius = ti.field(dtype=ti.f32, shape=())
        self._first_cover_strength = ti.field(dtype=ti.f32, shape=())
        self._second_clear_radius = ti.field(dtype=ti.f32, shape=())

        self._first_threshold = ti.field(dtype=ti.f32, shape=())
        self._first_exponent = ti.field(dtype=ti.f32, shape=())
        self._first_scale = ti.field(dtype=ti.f32, shape=())
        self._first_max = ti.field(dtype=ti.f32, shape=())

        self._second_assign_radius = ti.field(dtype=ti.f32, shape=())
        self._second_threshold = ti.field(dtype=ti.f32, shape=())
        self._second_exponent = ti.field(dtype=ti.f32, shape=())
        self._second_scale = ti.field(dtype=ti.f32, shape=())
        self._second_max = ti.field(dtype=ti.f32, shape=())

        self._third_max = ti.field(dtype=ti.f32, shape=())
        self._third_inject_gain = ti.field(dtype=ti.f32, shape=())
        self._third_fresh_trigger = ti.field(dtype=ti.i32, shape=())
        self._third_fresh_threshold = ti.field(dtype=ti.f32, shape=())
        self._third_decay_center = ti.field(dtype=ti.f32, shape=())
        self._third_decay_mid = ti.field(dtype=ti.f32, shape=())
        self._third_decay_rim = ti.field(dtype=ti.f32, shape=())
        self._third_spread = ti.field(dtype=ti.f32, shape=())
        self._third_retention_loss = ti.field(dtype=ti.f32, shape=())
        self._third_mix_ratio = ti.field(dtype=ti.f32, shape=())

    def upload_params(self):
        p = self.p
        self._max_wet[None] = float(p.max_wet_value)
        self._wet_penalty_threshold[None] = float(p.wet_penalty_threshold)
        self._wet_penalty_strength[None] = float(p.wet_penalty_strength)
        self._first_cover_radius[None] = float(p.first_cover_radius_factor)
        self._first_cover_strength[None] = float(p.first_cover_strength)
        self._second_clear_radius[None] = float(p.second_clear_radius_factor)

        self._first_threshold[None] = float(p.first_threshold)
        self._first_exponent[None] = float(p.first_exponent)
        self._first_scale[None] = float(p.first_scale)
        self._first_max[None] = float(p.first_max)

        self._second_assign_radius[None] = float(p.second_assign_radius_factor)
        self._second_threshold[None] = float(p.second_threshold)
        self._second_exponent[None] = float(p.second_exponent)
        self._second_scale[None] = float(p.second_scale)
        self._second_max[None] = float(p.second_max)

        self._third_max[None] = float(p.third_max)
        self._third_inject_gain[None] = float(p.third_inject_gain)
        self._third_fresh_trigger[None] = int(bool(p.third_fresh_trigger))
        self._third_fresh_threshold[None] = float(p.third_fresh_threshold)
        self._third_decay_center[None] = float(p.third_decay_center)
        self._third_decay_mid[None] = float(p.third_decay_mid)
        self._third_decay_rim[None] = float(p.third_decay_rim)
        self._third_spread[None] = float(p.third_spread)
        self._third_retention_loss[None] = float(p.third_retention_loss)
        self._third_mix_ratio[None] = float(p.third_mix_ratio)
        self.set_drag_direction((0.0, 0.0))

    def set_drag_direction(self, direction: Tuple[float, float]):
        weights = direction_weights(
            direction,
            self.p.third_forward_weight,
            self.p.third_side_weight,
            self.p.third_backward_weight,
        )
        for k, w in enumerate(weights):
            self._dir_weights[k] = w

    def update(self, cx: int, cy: int, radius: float, direction: Tuple[float, float] = (0.0, 0.0)) -> bool:
        """Recomputes all edge layers around the brush.

        Returns False when the region holds no gradient at all (only the
        brush-local layer is cleared then).
        """
        w, h = self.store.width, self.store.height
        r = float(radius)
        region = get_region(cx, cy, r * self.p.edge_detection_radius_factor, w, h)
        if region.is_empty:
            return False
        bounds = region.bounds()

        valid = region.shrink(1)
        self._zero_gradient(*bounds)
        if not valid.is_empty:
            self._gradient(*valid.bounds())
        self._cover(cx, cy, r, *bounds)

        gmax = float(self._grad_max[None])
        if gmax <= 0.0:
            self._zero_second(*bounds)
            return False

        self._accumulate(cx, cy, r, gmax, *bounds)
        self.set_drag_direction(direction)
        self.update_third(cx, cy, r)
        return True

    def update_third(self, cx: int, cy: int, radius: float):
        t = self.temp
        if t.ensure(cx, cy, temp_half_size(radius, self.p.third_temp_radius_factor)):
            print(f"[EdgeEngine] Working grid reallocated: {t.size}x{t.size}")
        self._third_copy_in(t.values, t.origin_x, t.origin_y, t.half)
        self._third_diffuse(t.values, t.scratch, t.half)
        # The grid reaches past the brush, but only the brush disc is written back.
        self._third_write_back(t.values, t.origin_x, t.origin_y, t.half, float(radius))

        w, h = self.store.width, self.store.height
        region = get_region(cx, cy, radius, w, h)
        if not region.is_empty:
            self._third_blur(cx, cy, float(radius), *region.bounds())

    def clear_third_at(self, cx: int, cy: int, radius: float):
        r = radius * self.p.third_temp_radius_factor
        region = get_region(cx, cy, r, self.store.width, self.store.height)
        if not region.is_empty:
            self._clear_third(cx, cy, r, *region.bounds())

    def reset_temp(self):
        self.temp.fill(0.0)

    # ===============================
    # Taichi kernels
    # ===============================

    @ti.kernel
    def _zero_gradient(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        self._grad_max[None] = 0.0
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            self.store.edge_grad[i, j] = 0.0

    @ti.kernel
    def _gradient(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        # Bounds are already shrunk so the 3x3 stencil stays inside the box.
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            if self.store.committed[i, j] == 1 or self.store.pending[i, j] == 1:
                w00 = self.store.wet[i - 1, j - 1]
                w10 = self.store.wet[i, j - 1]
                w20 = self.store.wet[i + 1, j - 1]
                w01 = self.store.wet[i - 1, j]
                w21 = self.store.wet[i + 1, j]
                w02 = self.store.wet[i - 1, j + 1]
                w12 = self.store.wet[i, j + 1]
                w22 = self.store.wet[i + 1, j + 1]
                gx = (w20 + 2.0 * w21 + w22) - (w00 + 2.0 * w01 + w02)
                gy = (w02 + 2.0 * w12 + w22) - (w00 + 2.0 * w10 + w20)
                g = ti.sqrt(gx * gx + gy * gy)

                wn = self.store.wet[i, j] / ti.max(self._max_wet[None], 1e-6)
                thr = self._wet_penalty_threshold[None]
                if wn > thr:
                    over = ti.min(1.0, (wn - thr) / ti.max(1.0 - thr, 1e-6))
                    g *= 1.0 - self._wet_penalty_strength[None] * over

                self.store.edge_grad[i, j] = g
                ti.atomic_max(self._grad_max[None], g)

    @ti.kernel
    def _cover(self, cx: ti.i32, cy: ti.i32, r: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        cover_r = ti.max(r * self._first_cover_radius[None], 1e-6)
        clear_r = r * self._second_clear_radius[None]
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            d = ti.sqrt(dx * dx + dy * dy)
            if d <= cover_r:
                self.store.edge_first[i, j] *= 1.0 - self._first_cover_strength[None] * (1.0 - d / cover_r)
            if d <= clear_r:
                self.store.edge_second[i, j] = 0.0
                self.store.pending_edge[i, j] = 0.0

    @ti.kernel
    def _zero_second(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            self.store.edge_second[i, j] = 0.0
            self.store.pending_edge[i, j] = 0.0

    @ti.kernel
    def _accumulate(self, cx: ti.i32, cy: ti.i32, r: ti.f32, gmax: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        assign_r = r * self._second_assign_radius[None]
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            g = self.store.edge_grad[i, j] / gmax
            if g > self._first_threshold[None]:
                cur = self.store.edge_first[i, j]
                fmax = self._first_max[None]
                grow = ti.pow(g, self._first_exponent[None]) * self._first_scale[None] * calculate_accumulation_resistance(cur, fmax)
                self.store.edge_first[i, j] = ti.min(fmax, cur + grow)

            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            if dx * dx + dy * dy <= assign_r * assign_r and g > self._second_threshold[None]:
                v = ti.min(self._second_max[None], ti.pow(g, self._second_exponent[None]) * self._second_scale[None])
                self.store.edge_second[i, j] = v
                self.store.pending_edge[i, j] = v

    @ti.kernel
    def _clear_third(self, cx: ti.i32, cy: ti.i32, r: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            if dx * dx + dy * dy <= r * r:
                self.store.edge_third[i, j] = 0.0

    @ti.func
    def _decay_rate(self, dn: ti.f32) -> ti.f32:
        # Slow at the center and the rim, fastest around mid radius.
        base = self._third_decay_center[None] + (self._third_decay_rim[None] - self._third_decay_center[None]) * dn
        s = ti.sin(math.pi * dn)
        return base + (self._third_decay_mid[None] - base) * s * s

    @ti.kernel
    def _third_copy_in(self, temp: ti.template(), ox: ti.i32, oy: ti.i32, half: ti.i32):
        hf = ti.cast(half, ti.f32)
        for a, b in temp:
            x = ox + a
            y = oy + b
            v = 0.0
            if x >= 0 and x < self.store.width and y >= 0 and y < self.store.height:
                v = self.store.edge_third[x, y]
                da = ti.cast(a - half, ti.f32)
                db = ti.cast(b - half, ti.f32)
                dn = ti.min(1.0, ti.sqrt(da * da + db * db) / hf)
                v *= 1.0 - self._decay_rate(dn)

                trigger = self.store.edge_second[x, y]
                if self._third_fresh_trigger[None] == 1 and self.store.pending[x, y] == 1:
                    if self.store.pending_opacity[x, y] > self._third_fresh_threshold[None]:
                        trigger = ti.max(trigger, self.store.pending_opacity[x, y])
                if trigger > 0.0:
                    v += self._third_inject_gain[None] * trigger
            temp[a, b] = ti.min(self._third_max[None], ti.max(0.0, v))

    @ti.kernel
    def _third_diffuse(self, temp: ti.template(), scratch: ti.template(), half: ti.i32):
        hf = ti.cast(half, ti.f32)
        size = 2 * half + 1
        for a, b in temp:
            acc = temp[a, b] * (1.0 - self._third_spread[None])
            for k in ti.static(range(len(NEIGHBORS))):
                # Neighbor that sends into (a, b) along offset k sits at (a, b) - offset.
                na = a - NEIGHBORS[k][0]
                nb = b - NEIGHBORS[k][1]
                if na >= 0 and na < size and nb >= 0 and nb < size:
                    da = ti.cast(na - half, ti.f32)
                    db = ti.cast(nb - half, ti.f32)
                    dn = ti.min(1.0, ti.sqrt(da * da + db * db) / hf)
                    keep = 1.0 - self._third_retention_loss[None] * dn
                    acc += temp[na, nb] * self._third_spread[None] * self._dir_weights[k] * keep
            scratch[a, b] = acc
        for a, b in temp:
            temp[a, b] = ti.min(self._third_max[None], ti.max(0.0, scratch[a, b]))

    @ti.kernel
    def _third_write_back(self, temp: ti.template(), ox: ti.i32, oy: ti.i32, half: ti.i32, rw: ti.f32):
        m = self._third_mix_ratio[None]
        for a, b in temp:
            x = ox + a
            y = oy + b
            da = ti.cast(a - half, ti.f32)
            db = ti.cast(b - half, ti.f32)
            inside = da * da + db * db <= rw * rw
            if inside and x >= 0 and x < self.store.width and y >= 0 and y < self.store.height:
                v = self.store.edge_third[x, y] * (1.0 - m) + temp[a, b] * m
                self.store.edge_third[x, y] = ti.min(self._third_max[None], ti.max(0.0, v))

    @ti.kernel
    def _third_blur(self, cx: ti.i32, cy: ti.i32, rw: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        w = self.store.width
        h = self.store.height
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            acc = 0.0
            for t in ti.static(BLUR_TAPS):
                ni = ti.min(w - 1, ti.max(0, i + t[0]))
                nj = ti.min(h - 1, ti.max(0, j + t[1]))
                acc += t[2] * self.store.edge_third[ni, nj]
            self.store.edge_scratch[i, j] = acc / 16.0
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            if dx * dx + dy * dy <= rw * rw:
                self.store.edge_third[i, j] = self.store.edge_scratch[i, j]
