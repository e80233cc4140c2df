import math
import time
from collections import deque

import taichi as ti

from .configs import SimParams, STEP_SENTINEL
from .fields import FieldStore
from .region import get_region


@ti.data_oriented
class StepTracker:
    """Delayed wet-area stamping along the stroke path.

    Each processed sample increments the stroke step and pushes its center.
    Once the history is longer than its capacity (about one brush radius of
    samples), the oldest center is popped and its neighborhood is stamped with
    the current step and a little extra wetness. On release the remaining
    history is flushed and every visited cell is marked settled
    (STEP_SENTINEL). Settled cells are never stamped again.
    """

    def __init__(self, store: FieldStore, params: SimParams):
        self.store = store
        self.p = params
        self.active = False
        self.current_step = 0
        self.history = deque()
        self.timing_mode = False
        self._set_params_fields()
        self.upload_params()

    def _set_params_fields(self):
        self._max_wet = ti.field(dtype=ti.f32, shape=())
        self._wet_increment = ti.field(dtype=ti.f32, shape=())

    def upload_params(self):
        self._max_wet[None] = float(self.p.max_wet_value)
        self._wet_increment[None] = float(self.p.step_wetness_increment)

    def capacity(self, radius: float) -> int:
        return max(1, int(math.ceil(radius * self.p.step_history_depth_factor)))

    def begin_stroke(self, cx: int, cy: int, radius: float):
        self.active = True
        self.current_step = 0
        self.history.clear()
        r = radius * self.p.step_wet_area_radius_factor
        region = get_region(cx, cy, r, self.store.width, self.store.height)
        if not region.is_empty:
            self._reset_footprint(cx, cy, r, *region.bounds())

    def record(self, cx: int, cy: int, radius: float):
        if not self.active:
            return
        self.current_step += 1
        self.history.append((cx, cy))
        cap = self.capacity(radius)
        while len(self.history) > cap:
            x, y = self.history.popleft()
            self.stamp(x, y, radius)

    def stamp(self, cx: int, cy: int, radius: float):
        r = radius * self.p.step_wet_area_radius_factor
        region = get_region(cx, cy, r, self.store.width, self.store.height)
        if region.is_empty:
            return
        self._stamp(cx, cy, r, self.current_step, *region.bounds())

    def end_stroke(self, radius: float):
        """Flushes the history and settles every visited cell."""
        if not self.active:
            return
        t0 = time.perf_counter()
        while self.history:
            x, y = self.history.popleft()
            self.stamp(x, y, radius)
        self._settle()
        self.active = False
        if self.timing_mode:
            ti.sync()
            print(f"[StepTracker] Settle: {(time.perf_counter() - t0) * 1000:4.1f}ms at step {self.current_step}")

    def reset(self):
        self.active = False
        self.current_step = 0
        self.history.clear()

    # ===============================
    # Taichi kernels
    # ===============================

    @ti.kernel
    def _reset_footprint(self, cx: ti.i32, cy: ti.i32, r: ti.f32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            if dx * dx + dy * dy <= r * r:
                self.store.step[i, j] = 0

    @ti.kernel
    def _stamp(self, cx: ti.i32, cy: ti.i32, r: ti.f32, step: ti.i32, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            dx = ti.cast(i - cx, ti.f32)
            dy = ti.cast(j - cy, ti.f32)
            if dx * dx + dy * dy <= r * r and self.store.step[i, j] != STEP_SENTINEL:
                self.store.step[i, j] = step
                self.store.wet[i, j] = ti.min(self._max_wet[None], self.store.wet[i, j] + self._wet_increment[None])

    @ti.kernel
    def _settle(self):
        for i, j in self.store.step:
            if self.store.step[i, j] != 0:
                self.store.step[i, j] = STEP_SENTINEL
