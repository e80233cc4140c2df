import time
from typing import Tuple

import taichi as ti

from .color import darken, hsl_to_rgb, lightness, pigment_mix, rgb_to_hsl
from .configs import BrushState, SimParams
from .diffusion import PigmentDiffusion
from .edges import EdgeEngine
from .fields import FieldStore, RelocatableGrid
from .region import footprint_in_canvas, get_region
from .step_tracking import StepTracker


@ti.data_oriented
class StrokePipeline:
    """Per-sample update: deposit, diffuse, smooth, commit, remember, track, edges.

    The brush memory is a (2r+1)^2 color grid indexed by offset from the
    brush center. After every commit it remembers what ended up on the paper
    under each part of the brush, so the next sample of the same stroke
    deposits that color instead of the pure brush color. This is how a
    stroke drags wet pigment along.
    """

    def __init__(self, store: FieldStore, params: SimParams, diffusion: PigmentDiffusion, steps: StepTracker, edges: EdgeEngine):
        self.store = store
        self.p = params
        self.diffusion = diffusion
        self.steps = steps
        self.edges = edges
        self.memory = RelocatableGrid(channels=3, with_scratch=False)
        self._memory_valid = False
        self.timing_mode = False
        self._update_count = 0
        self._set_params_fields()
        self.upload_params()

    def _set_params_fields(self):
        self._avg_sum = ti.Vector.field(3, dtype=ti.f32, shape=())
        self._avg_count = ti.field(dtype=ti.i32, shape=())

        self._wet_radius = ti.field(dtype=ti.f32, shape=())
        self._wet_inner = ti.field(dtype=ti.f32, shape=())
        self._max_wet = ti.field(dtype=ti.f32, shape=())
        self._wet_center = ti.field(dtype=ti.f32, shape=())
        self._wet_edge = ti.field(dtype=ti.f32, shape=())

        self._deposit_factor = ti.field(dtype=ti.f32, shape=())
        self._commit_gain = ti.field(dtype=ti.f32, shape=())
        self._merge_ratio = ti.field(dtype=ti.f32, shape=())
        self._opacity_epsilon = ti.field(dtype=ti.f32, shape=())

        self._memory_retention = ti.field(dtype=ti.f32, shape=())
        self._memory_protection = ti.field(dtype=ti.f32, shape=())
        self._memory_min_lightness = ti.field(dtype=ti.f32, shape=())

        self._smooth_center = ti.field(dtype=ti.f32, shape=())
        self._commit_edge_threshold = ti.field(dtype=ti.f32, shape=())
        self._commit_edge_darkening = ti.field(dtype=ti.f32, shape=())
        self._commit_reduction_base = ti.field(dtype=ti.f32, shape=())
        self._commit_reduction_highlight = ti.field(dtype=ti.f32, shape=())
        self._commit_min_lightness = ti.field(dtype=ti.f32, shape=())

        self._bake_weights = ti.Vector.field(3, dtype=ti.f32, shape=())
        self._bake_strength = ti.field(dtype=ti.f32, shape=())
        self._bake_threshold = ti.field(dtype=ti.f32, shape=())
        self._bake_reduction_base = ti.field(dtype=ti.f32, shape=())
        self._bake_reduction_highlight = ti.field(dtype=ti.f32, shape=())
        self._bake_min_lightness = ti.field(dtype=ti.f32, shape=())

    def upload_params(self):
        self._wet_radius[None] = float(self.p.wet_area_radius_factor)
        self._wet_inner[None] = float(self.p.wet_area_inner_radius_factor)
        self._max_wet[None] = float(self.p.max_wet_value)
        self._wet_center[None] = float(self.p.wet_area_center_value)
        self._wet_edge[None] = float(self.p.wet_area_edge_value)

        self._deposit_factor[None] = float(self.p.pigment_deposit_factor)
        self._commit_gain[None] = float(self.p.commit_opacity_gain)
        self._merge_ratio[None] = float(self.p.primitive_merge_ratio)
        self._opacity_epsilon[None] = float(self.p.opacity_epsilon)

        self._memory_retention[None] = float(self.p.memory_retention_ratio)
        self._memory_protection[None] = float(self.p.memory_lightness_protection)
        self._memory_min_lightness[None] = float(self.p.memory_min_lightness_ratio)

        self._smooth_center[None] = float(self.p.pending_smoothing_center_weight)
        self._commit_edge_threshold[None] = float(self.p.commit_edge_threshold)
        self._commit_edge_darkening[None] = float(self.p.commit_edge_darkening)
        self._commit_reduction_base[None] = float(self.p.commit_reduction_base)
        self._commit_reduction_highlight[None] = float(self.p.commit_reduction_highlight)
        self._commit_min_lightness[None] = float(self.p.commit_min_lightness_ratio)

        # Baking uses the render weights so the baked look matches the preview.
        self._bake_weights[None] = (float(self.p.first_render_weight), float(self.p.second_render_weight), float(self.p.third_render_weight))
        self._bake_strength[None] = float(self.p.bake_strength)
        self._bake_threshold[None] = float(self.p.edge_effect_threshold)
        self._bake_reduction_base[None] = float(self.p.bake_reduction_base)
        self._bake_reduction_highlight[None] = float(self.p.bake_reduction_highlight)
        self._bake_min_lightness[None] = float(self.p.min_lightness)

    def _reset_memory(self, cx: int, cy: int, brush: BrushState):
        r, g, b = (float(c) for c in brush.color)
        self.memory.ensure(cx, cy, int(round(brush.radius)))
        self._fill_memory(self.memory.values, r, g, b)

    def begin_stroke(self, cx: int, cy: int, brush: BrushState):
        """Starts a stroke with a clean brush memory."""
        self._reset_memory(cx, cy, brush)
        self._memory_valid = True

    def end_stroke(self):
        self._memory_valid = False

    def apply(self, cx: int, cy: int, brush: BrushState, continuation: bool = True, direction: Tuple[float, float] = (0.0, 0.0)) -> bool:
        """Runs one brush sample at (cx, cy).

        Returns False, changing nothing, when no pixel of the brush disc lies
        on the canvas, even if the wider search box still overlaps it.
        """
        cx, cy = int(cx), int(cy)
        r = float(brush.radius)
        w, h = self.store.width, self.store.height
        if not footprint_in_canvas(cx, cy, r, w, h):
            return False
        search = get_region(cx, cy, r * self.p.update_radius_factor, w, h)
        bounds = search.bounds()

        t0 = time.perf_counter() if self.timing_mode else 0

        half = int(round(r))
        if self.memory.half != max(1, half) or not self._memory_valid:
            # Brush size changed (or no stroke started): memory is stale.
            self._reset_memory(cx, cy, brush)
        else:
            self.memory.ensure(cx, cy, half)
        use_memory = 1 if (continuation and self._memory_valid) else 0

        cr, cg, cb = (float(c) for c in brush.color)
        self.store.clear_pending(*bounds)
        self._distribute(self.memory.values, self.memory.half, cx, cy, r, float(brush.opacity), cr, cg, cb, use_memory, *bounds)

        t1 = time.perf_counter() if self.timing_mode else 0

        self.diffusion.build_scratch(cx, cy, r, search)
        self.diffusion.diffuse(cx, cy, r, search, self.steps.current_step, self.p.diffusion_strategy)

        t2 = time.perf_counter() if self.timing_mode else 0

        if self.p.pending_smoothing:
            self._smooth_pending(*bounds)
        brush_l = lightness(brush.color)
        self._commit(brush_l, *bounds)
        self._capture(cx, cy, r, brush, brush_l, bounds)
        self.steps.record(cx, cy, r)

        t3 = time.perf_counter() if self.timing_mode else 0

        self.edges.update(cx, cy, r, direction)

        self._update_count += 1
        if self.timing_mode and self._update_count % 30 == 0:
            ti.sync()
            t4 = time.perf_counter()
            print(
                f"[Watercolor] Update: {(t1-t0)*1000:4.1f}ms (deposit) + {(t2-t1)*1000:4.1f}ms (diffuse) + "
                f"{(t3-t2)*1000:4.1f}ms (smooth+commit) + {(t4-t3)*1000:4.1f}ms (edges)"
            )
        return True

    def _capture(self, cx: int, cy: int, r: float, brush: BrushState, brush_l: float, bounds):
        self._average_inner(cx, cy, r, *bounds)
        count = int(self._avg_count[None])
        if count > 0:
            ar, ag, ab = (float(v) for v in self._avg_sum.to_numpy() / count)
        else:
            ar, ag, ab = (float(c) for c in brush.color)
        self._capture_memory(self.memory.values, self.memory.half, cx, cy, r, ar, ag, ab, brush_l)

    def merge_primitive(self):
        """Blends the pure brush color into the paper and clears it."""
        self._merge_primitive()

    def bake_edges(self):
        """Darkens committed pigment by the combined edge layers and clears the local layer.

        After baking, the edges live in the pigment itself, so smoothing and
        later mixing carry them along.
        """
        self._bake_edges()

    # ===============================
    # Taichi kernels
    # ===============================

    @ti.kernel
    def _fill_memory(self, mem: ti.template(), r: ti.f32, g: ti.f32, b: ti.f32):
        for a, c in mem:
            mem[a, c] = ti.Vector([r, g, b])

    @ti.kernel
    def _distribute(
        self,
        mem: ti.template(),
        half: ti.i32,
        cx: ti.i32,
        cy: ti.i32,
        r: ti.f32,
        opacity: ti.f32,
        cr: ti.f32,
        cg: ti.f32,
        cb: ti.f32,
        use_memory: ti.i32,
        x0: ti.i32,
        x1: ti.i32,
        y0: ti.i32,
        y1: ti.i32,
    ):
        wet_r = r * self._wet_radius[None]
        inner = wet_r * self._wet_inner[None]
        deposit = opacity * self._deposit_factor[None]
        size = 2 * half + 1
        brush = ti.Vector([cr, cg, cb])
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            d = ti.sqrt(dx * dx + dy * dy)

            if d <= wet_r:
                add = self._wet_center[None]
                if d > inner:
                    t = (d - inner) / ti.max(wet_r - inner, 1e-6)
                    add = self._wet_center[None] + (self._wet_edge[None] - self._wet_center[None]) * t
                self.store.wet[i, j] = ti.min(self._max_wet[None], self.store.wet[i, j] + add)

            if d <= r and deposit >= self._opacity_epsilon[None]:
                c = brush
                if use_memory == 1:
                    a = i - cx + half
                    b = j - cy + half
                    if a >= 0 and a < size and b >= 0 and b < size:
                        c = mem[a, b]
                self.store.pending[i, j] = 1
                self.store.pending_color[i, j] = c
                self.store.pending_opacity[i, j] = deposit

                self.store.primitive[i, j] = 1
                self.store.primitive_color[i, j] = brush
                self.store.primitive_opacity[i, j] = ti.max(self.store.primitive_opacity[i, j], opacity)

    @ti.kernel
    def _smooth_pending(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        # 3x3 average over pending neighbors only; the center counts double.
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            self.store.scratch_flag[i, j] = 0
            if self.store.pending[i, j] == 1:
                acc = ti.Vector([0.0, 0.0, 0.0])
                acc_o = 0.0
                total = 0.0
                for a, b in ti.static(ti.ndrange((-1, 2), (-1, 2))):
                    x = i + a
                    y = j + b
                    if x >= x0 and x < x1 and y >= y0 and y < y1:
                        if self.store.pending[x, y] == 1:
                            wgt = 1.0
                            if ti.static(a == 0 and b == 0):
                                wgt = self._smooth_center[None]
                            acc += self.store.pending_color[x, y] * wgt
                            acc_o += self.store.pending_opacity[x, y] * wgt
                            total += wgt
                self.store.scratch_flag[i, j] = 1
                self.store.scratch_weighted[i, j] = acc / total
                self.store.scratch_opacity[i, j] = acc_o / total
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            if self.store.scratch_flag[i, j] == 1:
                self.store.pending_color[i, j] = self.store.scratch_weighted[i, j]
                self.store.pending_opacity[i, j] = ti.min(1.0, self.store.scratch_opacity[i, j])
                self.store.scratch_flag[i, j] = 0

    @ti.kernel
    def _commit(self, brush_l: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        floor_l = brush_l * self._commit_min_lightness[None]
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            new = self.store.pending_opacity[i, j]
            if self.store.pending[i, j] == 1 and new >= self._opacity_epsilon[None]:
                old = self.store.opacity[i, j]
                c = self.store.pending_color[i, j]
                if self.store.committed[i, j] == 1 and old > 0.0:
                    t = ti.min(1.0, new / (new + old))
                    c = pigment_mix(self.store.color[i, j], c, t)
                    self.store.opacity[i, j] = ti.min(1.0, old + new * self._commit_gain[None])
                else:
                    self.store.opacity[i, j] = ti.min(1.0, new)
                e = self.store.edge_second[i, j]
                if e > self._commit_edge_threshold[None]:
                    l = rgb_to_hsl(c).z
                    amount = e * (self._commit_reduction_base[None] - self._commit_reduction_highlight[None] * ti.sqrt(l)) * self._commit_edge_darkening[None]
                    c = darken(c, amount, floor_l)
                self.store.color[i, j] = c
                self.store.committed[i, j] = 1

    @ti.kernel
    def _average_inner(self, cx: ti.i32, cy: ti.i32, r: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        self._avg_sum[None] = ti.Vector([0.0, 0.0, 0.0])
        self._avg_count[None] = 0
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            if dx * dx + dy * dy <= r * r and self.store.committed[i, j] == 1:
                self._avg_sum[None] += self.store.color[i, j]
                ti.atomic_add(self._avg_count[None], 1)

    @ti.kernel
    def _capture_memory(self, mem: ti.template(), half: ti.i32, cx: ti.i32, cy: ti.i32, r: ti.f32, ar: ti.f32, ag: ti.f32, ab: ti.f32, brush_l: ti.f32):
        avg = ti.Vector([ar, ag, ab])
        for a, b in mem:
            x = cx + a - half
            y = cy + b - half
            if x >= 0 and x < self.store.width and y >= 0 and y < self.store.height:
                if self.store.committed[x, y] == 1:
                    c = self.store.color[x, y]
                    da = ti.cast(a - half, ti.f32)
                    db = ti.cast(b - half, ti.f32)
                    if da * da + db * db <= r * r:
                        # Keep the remembered color from drifting far from the brush lightness.
                        hsl = rgb_to_hsl(c)
                        l = hsl.z + (brush_l - hsl.z) * self._memory_protection[None]
                        l = ti.max(l, brush_l * self._memory_min_lightness[None])
                        mem[a, b] = hsl_to_rgb(ti.Vector([hsl.x, hsl.y, ti.min(1.0, l)]))
                    else:
                        mem[a, b] = pigment_mix(c, avg, self._memory_retention[None])

    @ti.kernel
    def _merge_primitive(self):
        for i, j in self.store.primitive:
            if self.store.primitive[i, j] == 1:
                if self.store.committed[i, j] == 1:
                    self.store.color[i, j] = pigment_mix(self.store.color[i, j], self.store.primitive_color[i, j], self._merge_ratio[None])
                self.store.primitive[i, j] = 0
                self.store.primitive_color[i, j] = ti.Vector([255.0, 255.0, 255.0])
                self.store.primitive_opacity[i, j] = 0.0

    @ti.kernel
    def _bake_edges(self):
        wts = self._bake_weights[None]
        for i, j in self.store.committed:
            if self.store.committed[i, j] == 1:
                effect = wts.x * self.store.edge_first[i, j] + wts.y * self.store.edge_second[i, j] + wts.z * self.store.edge_third[i, j]
                if effect > self._bake_threshold[None]:
                    c = self.store.color[i, j]
                    l = rgb_to_hsl(c).z
                    amount = effect * (self._bake_reduction_base[None] - self._bake_reduction_highlight[None] * ti.sqrt(l)) * self._bake_strength[None]
                    self.store.color[i, j] = darken(c, amount, self._bake_min_lightness[None])
            self.store.edge_second[i, j] = 0.0
            self.store.pending_edge[i, j] = 0.0
