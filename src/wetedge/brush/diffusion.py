"""
Pigment diffusion for a single brush sample.

Freshly applied (pending) pigment bleeds toward the committed pigment that
already lies on the paper, farther out from the brush center. This is the
wet-on-wet spreading that gives soft, feathered stroke borders.

Two strategies operate on the pending layer:
- directional: every pending pixel picks a random committed target farther
  from the center and scatters a few sub-points toward it
- ring: pending pixels in a thin annulus near the brush rim that sit on paper
  visited long ago (or settled by an earlier stroke) scatter radially outward

Both read the pending layer and write into scratch accumulators with atomic
adds, so the result does not depend on the order pixels are visited. Every
unit of pigment that leaves a source arrives at a target; undeliverable
shares stay at the source.
"""

import math

import taichi as ti

from .configs import SimParams, STEP_SENTINEL
from .fields import FieldStore, INF_DISTANCE
from .region import Region

DEG_TO_RAD = math.pi / 180.0


@ti.data_oriented
class PigmentDiffusion:
    def __init__(self, store: FieldStore, params: SimParams):
        self.store = store
        self.p = params
        self._set_params_fields()
        self.upload_params()

    def _set_params_fields(self):
        self._max_distance_factor = ti.field(dtype=ti.f32, shape=())
        self._target_ratio = ti.field(dtype=ti.f32, shape=())
        self._fresh_exponent = ti.field(dtype=ti.f32, shape=())
        self._angle_jitter = ti.field(dtype=ti.f32, shape=())
        self._point_falloff = ti.field(dtype=ti.f32, shape=())
        self._outward_center_ratio = ti.field(dtype=ti.f32, shape=())
        self._outward_overshoot = ti.field(dtype=ti.f32, shape=())
        self._opacity_epsilon = ti.field(dtype=ti.f32, shape=())

        self._ring_inner = ti.field(dtype=ti.f32, shape=())
        self._ring_outer = ti.field(dtype=ti.f32, shape=())
        self._ring_points = ti.field(dtype=ti.i32, shape=())
        self._ring_retained = ti.field(dtype=ti.f32, shape=())
        self._ring_jitter = ti.field(dtype=ti.f32, shape=())
        self._step_threshold = ti.field(dtype=ti.f32, shape=())

    def upload_params(self):
        self._max_distance_factor[None] = float(self.p.max_diffusion_distance_factor)
        self._target_ratio[None] = float(self.p.diffusion_target_ratio)
        self._fresh_exponent[None] = float(self.p.fresh_pigment_exponent)
        self._angle_jitter[None] = float(self.p.diffusion_angle_jitter) * DEG_TO_RAD
        self._point_falloff[None] = float(self.p.diffusion_point_falloff)
        self._outward_center_ratio[None] = float(self.p.outward_center_ratio)
        self._outward_overshoot[None] = float(self.p.outward_overshoot)
        self._opacity_epsilon[None] = float(self.p.opacity_epsilon)

        self._ring_inner[None] = float(self.p.ring_inner_radius_factor)
        self._ring_outer[None] = float(self.p.ring_outer_radius_factor)
        self._ring_points[None] = int(self.p.ring_diffusion_points)
        self._ring_retained[None] = float(self.p.ring_retained_fraction)
        self._ring_jitter[None] = float(self.p.ring_angle_jitter) * DEG_TO_RAD
        self._step_threshold[None] = float(self.p.step_threshold_factor)

    def search_reach(self, radius: float) -> float:
        return radius * (self.p.update_radius_factor - 1.0)

    def build_scratch(self, cx: int, cy: int, radius: float, search: Region):
        """Distance/direction scratch over the search box."""
        self._build_scratch(cx, cy, float(radius), self.search_reach(radius), *search.bounds())

    def diffuse(self, cx: int, cy: int, radius: float, search: Region, current_step: int, strategy: str = "combined"):
        if strategy not in ("directional", "ring", "combined"):
            raise ValueError(f"Unknown diffusion strategy: {strategy}")
        bounds = search.bounds()
        if strategy in ("directional", "combined"):
            self._init_scratch(*bounds)
            self._directional(cx, cy, float(radius), self.search_reach(radius), *bounds)
            self._copy_back(*bounds)
        if strategy in ("ring", "combined"):
            self._init_scratch(*bounds)
            self._ring(cx, cy, float(radius), int(current_step), *bounds)
            self._copy_back(*bounds)

    # ===============================
    # Taichi scope
    # ===============================

    @ti.func
    def _deliver(self, tx: ti.i32, ty: ti.i32, color, share: ti.f32):
        self.store.scratch_weighted[tx, ty] += color * share
        self.store.scratch_opacity[tx, ty] += share
        self.store.scratch_flag[tx, ty] = 1

    @ti.kernel
    def _build_scratch(self, cx: ti.i32, cy: ti.i32, r: ti.f32, reach: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            self.store.grad_x[i, j] = 0.0
            self.store.grad_y[i, j] = 0.0
            if self.store.committed[i, j] == 1:
                self.store.distance[i, j] = 0.0
                self.store.closest_x[i, j] = i
                self.store.closest_y[i, j] = j
            else:
                self.store.distance[i, j] = INF_DISTANCE
                self.store.closest_x[i, j] = -1
                self.store.closest_y[i, j] = -1

        reach_i = ti.cast(ti.ceil(reach), ti.i32)
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            if self.store.pending[i, j] == 1:
                pcx = ti.cast(i - cx, ti.f32)
                pcy = ti.cast(j - cy, ti.f32)
                own = ti.sqrt(pcx * pcx + pcy * pcy)
                qx0 = ti.max(x0, i - reach_i)
                qx1 = ti.min(x1, i + reach_i + 1)
                qy0 = ti.max(y0, j - reach_i)
                qy1 = ti.min(y1, j + reach_i + 1)

                count = 0
                for qx in range(qx0, qx1):
                    for qy in range(qy0, qy1):
                        if self.store.committed[qx, qy] == 1:
                            dqx = ti.cast(qx - cx, ti.f32)
                            dqy = ti.cast(qy - cy, ti.f32)
                            ex = ti.cast(qx - i, ti.f32)
                            ey = ti.cast(qy - j, ti.f32)
                            if dqx * dqx + dqy * dqy > own * own and ex * ex + ey * ey <= reach * reach:
                                count += 1

                if count > 0:
                    pick = ti.min(count - 1, ti.cast(ti.random(ti.f32) * count, ti.i32))
                    seen = 0
                    tx = -1
                    ty = -1
                    for qx in range(qx0, qx1):
                        for qy in range(qy0, qy1):
                            if self.store.committed[qx, qy] == 1:
                                dqx = ti.cast(qx - cx, ti.f32)
                                dqy = ti.cast(qy - cy, ti.f32)
                                ex = ti.cast(qx - i, ti.f32)
                                ey = ti.cast(qy - j, ti.f32)
                                if dqx * dqx + dqy * dqy > own * own and ex * ex + ey * ey <= reach * reach:
                                    if seen == pick:
                                        tx = qx
                                        ty = qy
                                    seen += 1
                    ex = ti.cast(tx - i, ti.f32)
                    ey = ti.cast(ty - j, ti.f32)
                    d = ti.sqrt(ex * ex + ey * ey)
                    self.store.distance[i, j] = d
                    self.store.closest_x[i, j] = tx
                    self.store.closest_y[i, j] = ty
                    self.store.grad_x[i, j] = ex / d
                    self.store.grad_y[i, j] = ey / d

    @ti.kernel
    def _init_scratch(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            self.store.scratch_flag[i, j] = 0
            if self.store.pending[i, j] == 1:
                o = self.store.pending_opacity[i, j]
                self.store.scratch_weighted[i, j] = self.store.pending_color[i, j] * o
                self.store.scratch_opacity[i, j] = o
            else:
                self.store.scratch_weighted[i, j] = ti.Vector([0.0, 0.0, 0.0])
                self.store.scratch_opacity[i, j] = 0.0

    @ti.kernel
    def _copy_back(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            if self.store.scratch_flag[i, j] == 1:
                o = ti.max(0.0, self.store.scratch_opacity[i, j])
                if o > 1e-6:
                    c = self.store.scratch_weighted[i, j] / o
                    self.store.pending[i, j] = 1
                    self.store.pending_color[i, j] = ti.min(255.0, ti.max(0.0, c))
                    self.store.pending_opacity[i, j] = o
                else:
                    self.store.pending[i, j] = 0
                    self.store.pending_opacity[i, j] = 0.0

    @ti.kernel
    def _directional(self, cx: ti.i32, cy: ti.i32, r: ti.f32, reach: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            conc = self.store.pending_opacity[i, j]
            d_target = self.store.distance[i, j]
            has_dir = self.store.closest_x[i, j] >= 0 and d_target > 0.0 and d_target < INF_DISTANCE
            if self.store.pending[i, j] == 1 and has_dir and conc >= self._opacity_epsilon[None]:
                ratio = ti.min(1.0, d_target / ti.max(reach, 1e-6))
                inv = 1.0
                if self.store.committed[i, j] == 0:
                    inv = ti.pow(1.0 - ratio, self._fresh_exponent[None])
                max_theoretical = ti.min(self._target_ratio[None] * d_target, r * self._max_distance_factor[None])
                max_allowed = max_theoretical * inv

                if max_allowed >= 1.0:
                    pcx = ti.cast(i - cx, ti.f32)
                    pcy = ti.cast(j - cy, ti.f32)
                    own = ti.sqrt(pcx * pcx + pcy * pcy)
                    cr = ti.min(1.0, own / r)
                    n = ti.max(2, ti.cast(ti.floor(2.0 + 3.0 * ti.pow(cr, 1.5) + 0.5), ti.i32))
                    total = conc * (0.3 + 0.5 * inv) * (0.7 + 0.3 * cr)

                    wsum = 0.0
                    for k in range(n):
                        wsum += 1.0 - self._point_falloff[None] * ti.cast(k, ti.f32) / ti.cast(n, ti.f32)

                    base = ti.atan2(self.store.grad_y[i, j], self.store.grad_x[i, j])
                    color = self.store.pending_color[i, j]
                    delivered = 0.0
                    for k in range(n):
                        w = 1.0 - self._point_falloff[None] * ti.cast(k, ti.f32) / ti.cast(n, ti.f32)
                        share = total * w / wsum
                        ang = base + self._angle_jitter[None] * (2.0 * ti.random(ti.f32) - 1.0)
                        dist = max_allowed * (0.7 + 0.3 * ti.random(ti.f32))
                        tx = ti.cast(ti.floor(ti.cast(i, ti.f32) + ti.cos(ang) * dist + 0.5), ti.i32)
                        ty = ti.cast(ti.floor(ti.cast(j, ti.f32) + ti.sin(ang) * dist + 0.5), ti.i32)
                        ok = tx >= x0 and tx < x1 and ty >= y0 and ty < y1
                        if ok and cr > self._outward_center_ratio[None]:
                            tcx = ti.cast(tx - cx, ti.f32)
                            tcy = ti.cast(ty - cy, ti.f32)
                            if ti.sqrt(tcx * tcx + tcy * tcy) > self._outward_overshoot[None] * own:
                                ok = False
                        if ok:
                            self._deliver(tx, ty, color, share)
                            delivered += share

                    if delivered > 0.0:
                        self._deliver(i, j, color, -delivered)

    @ti.kernel
    def _ring(self, cx: ti.i32, cy: ti.i32, r: ti.f32, current_step: ti.i32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        inner = r * self._ring_inner[None]
        outer = r * self._ring_outer[None]
        mid = 0.5 * (inner + outer)
        half = ti.max(0.5 * (outer - inner), 1e-6)
        threshold = r * self._step_threshold[None]
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            pcx = ti.cast(i - cx, ti.f32)
            pcy = ti.cast(j - cy, ti.f32)
            own = ti.sqrt(pcx * pcx + pcy * pcy)
            age = self.store.step[i, j]
            conc = self.store.pending_opacity[i, j]
            in_ring = own >= inner and own <= outer and own > 0.0
            old_paper = age != 0 and (age == STEP_SENTINEL or ti.abs(ti.cast(current_step - age, ti.f32)) > threshold)
            if self.store.pending[i, j] == 1 and in_ring and old_paper and conc >= self._opacity_epsilon[None]:
                strength = ti.max(0.0, 1.0 - ti.abs(own - mid) / half)
                n = self._ring_points[None]
                share = conc * (1.0 - self._ring_retained[None]) / ti.cast(n, ti.f32)
                base = ti.atan2(pcy, pcx)
                color = self.store.pending_color[i, j]
                delivered = 0.0
                for k in range(n):
                    ang = base + self._ring_jitter[None] * (2.0 * ti.random(ti.f32) - 1.0)
                    dist = r * self._max_distance_factor[None] * strength * (0.5 + 0.5 * ti.random(ti.f32))
                    tx = ti.cast(ti.floor(ti.cast(i, ti.f32) + ti.cos(ang) * dist + 0.5), ti.i32)
                    ty = ti.cast(ti.floor(ti.cast(j, ti.f32) + ti.sin(ang) * dist + 0.5), ti.i32)
                    if dist >= 1.0 and tx >= x0 and tx < x1 and ty >= y0 and ty < y1:
                        self._deliver(tx, ty, color, share)
                        delivered += share
                if delivered > 0.0:
                    self._deliver(i, j, color, -delivered)
