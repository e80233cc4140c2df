"""
This engine is a pointer-driven, wet-on-wet watercolor simulator.

High-level approach:
- Every pointer sample is a discrete brush update, not a physics time step
- Fresh pigment is held apart from the paper (pending) and bleeds toward
  committed pigment before being blended in with a subtractive mix
- Wetness accumulates along the stroke; its gradient drives three layers of
  edge darkening (persistent, brush-local and drag-diffused)
- A delayed step field marks where the stroke has been, so revisiting old
  paper triggers a ring-shaped backrun at the brush rim
- Pointer motion is rasterized into a bounded queue and drained a few
  samples per frame; stroke cleanup waits for the queue to empty
"""


import dataclasses
import time
from typing import Callable, List, Optional, Tuple

import numpy as np
import taichi as ti

from .color import load_mixing_tables
from .configs import BrushState, SimParams, DIFFUSION_STRATEGIES, STEP_SENTINEL
from .diffusion import PigmentDiffusion
from .edges import EdgeEngine
from .fields import FieldStore
from .pipeline import StrokePipeline
from .region import Region, get_region
from .renderer import Compositor, RasterSurface
from .step_tracking import StepTracker
from .strokes import DragDirectionTracker, PendingPointQueue

_GLOBAL_TAICHI_INITIALIZED = False

def _initialize_taichi_backend(arch: str, seed: int = 0, use_profiler: bool = False):
    """Initializes the Taichi runtime with the best available backend."""
    global _GLOBAL_TAICHI_INITIALIZED
    if _GLOBAL_TAICHI_INITIALIZED:
        return

    init_kwargs = {
        "offline_cache": True,
        "kernel_profiler": use_profiler,
        "random_seed": int(seed),
    }

    # Strategy for selecting backend
    ti_arch = ti.cpu
    if arch == "gpu":
        if ti.core.with_cuda():
            ti_arch = ti.cuda
        elif ti.core.with_metal():
            ti_arch = ti.metal
        elif ti.core.with_vulkan():
            ti_arch = ti.vulkan
        else:
            ti_arch = ti.cpu
    elif arch == "vulkan":
        ti_arch = ti.vulkan
    elif arch == "metal":
        ti_arch = ti.metal
    elif arch == "cuda":
        ti_arch = ti.cuda

    print(f"[WatercolorEngine] Initializing Taichi with backend: {ti_arch}")
    ti.init(arch=ti_arch, **init_kwargs)

    print(f"[WatercolorEngine] Taichi initialized. Backend: {ti.cfg.arch} | Seed: {seed}")
    load_mixing_tables()
    _GLOBAL_TAICHI_INITIALIZED = True


def _clamp_to_metadata(cls, name: str, value):
    meta = cls.__dataclass_fields__[name].metadata
    lo = meta.get("min")
    hi = meta.get("max")
    if lo is not None:
        value = max(lo, value)
    if hi is not None:
        value = min(hi, value)
    return value


class WatercolorEngine:
    """Wet-on-wet watercolor canvas driven by pointer events.

    Owns the field store and the simulation modules built on it:
    - pipeline: per-sample deposit / diffuse / commit
    - diffusion: directional and ring pigment bleeding
    - steps: delayed wet-area step tracking
    - edges: three-layer edge darkening
    - compositor: writes the fields into `surface`, an RGBA byte buffer

    Host adapters call on_press / on_drag / on_release with canvas pixel
    coordinates (origin top-left) and tick() once per frame.
    """

    def __init__(
        self,
        width: int = 512,
        height: int = 512,
        arch: str = "cpu",
        seed: int = 0,
        params: Optional[SimParams] = None,
        brush: Optional[BrushState] = None,
        timing_mode: bool = False,
        use_profiler: bool = False,
        warmup: bool = False,
        on_update: Optional[Callable[[np.ndarray], None]] = None,
    ):
        try:
            _initialize_taichi_backend(arch, seed=seed, use_profiler=use_profiler)
        except Exception as e:
            print(f"[WatercolorEngine] GPU Init failed: {e}. Falling back to CPU.")
            _initialize_taichi_backend("cpu", seed=seed, use_profiler=use_profiler)

        if int(width) < 1 or int(height) < 1:
            raise ValueError(f"Canvas size must be positive, got {width}x{height}")

        self.p = params if params is not None else SimParams()
        self.brush = brush if brush is not None else BrushState()
        self.timing_mode = bool(timing_mode)
        self.on_update = on_update

        self.queue = PendingPointQueue(self.p.max_queue_size)
        self.drag = DragDirectionTracker(self.p.drag_direction_weights, self.p.drag_direction_threshold)

        self.is_drawing = False
        self._processing = False
        self._drain_callbacks: List[Callable[[], None]] = []
        self._last_point: Optional[Tuple[int, int]] = None
        self._last_center: Optional[Tuple[int, int]] = None
        self._sample_count = 0

        self._build(width, height)
        if warmup:
            self.warmup()

    def _build(self, width: int, height: int):
        """(Re)allocates every field and module at the given canvas size."""
        self.width = int(width)
        self.height = int(height)
        self.store = FieldStore(self.width, self.height)
        self.diffusion = PigmentDiffusion(self.store, self.p)
        self.steps = StepTracker(self.store, self.p)
        self.edges = EdgeEngine(self.store, self.p)
        self.pipeline = StrokePipeline(self.store, self.p, self.diffusion, self.steps, self.edges)
        self.compositor = Compositor(self.store, self.p)
        self.surface = RasterSurface(self.width, self.height, on_update=self.on_update)
        self._set_timing_mode(self.timing_mode)

    def _set_timing_mode(self, enabled: bool):
        self.timing_mode = bool(enabled)
        self.steps.timing_mode = self.timing_mode
        self.pipeline.timing_mode = self.timing_mode

    # ===============================
    # Parameters & brush
    # ===============================

    def set_params(self, params: SimParams):
        self.p = params
        for module in (self.diffusion, self.steps, self.edges, self.pipeline, self.compositor):
            module.p = params
        self._upload_params()

    def update_params(self, **kwargs):
        for k, v in kwargs.items():
            if k == "diffusion_strategy" and v not in DIFFUSION_STRATEGIES:
                print(f"[WatercolorEngine] Unknown diffusion strategy '{v}', keeping '{self.p.diffusion_strategy}'.")
                continue
            if hasattr(self.p, k):
                setattr(self.p, k, v)
        self._upload_params()

    def _upload_params(self):
        """Synchronizes Python-side parameters to every module's Taichi fields."""
        self.diffusion.upload_params()
        self.steps.upload_params()
        self.edges.upload_params()
        self.pipeline.upload_params()
        self.compositor.upload_params()
        self.queue.max_size = int(self.p.max_queue_size)
        self.drag.weights = tuple(float(w) for w in self.p.drag_direction_weights)
        self.drag.threshold = float(self.p.drag_direction_threshold)

    def set_color(self, r, g, b):
        """Sets the brush color (RGB 0-255, clamped)."""
        self.brush.color = tuple(int(min(255, max(0, round(c)))) for c in (r, g, b))

    def set_opacity(self, opacity: float):
        self.brush.opacity = float(_clamp_to_metadata(BrushState, "opacity", float(opacity)))

    def set_size(self, radius):
        self.brush.radius = int(_clamp_to_metadata(BrushState, "radius", int(round(radius))))

    # ===============================
    # Host events
    # ===============================

    def in_canvas(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def on_press(self, x, y) -> bool:
        """Starts a stroke. Presses outside the canvas are ignored."""
        x, y = int(round(x)), int(round(y))
        if not self.in_canvas(x, y):
            return False
        if self.queue or self._drain_callbacks:
            self.flush()

        r = float(self.brush.radius)
        self.edges.clear_third_at(x, y, r)
        self.steps.begin_stroke(x, y, r)
        self.pipeline.begin_stroke(x, y, self.brush)
        self.drag.reset()
        self.drag.update(x, y)
        self.edges.set_drag_direction((0.0, 0.0))

        self.pipeline.apply(x, y, self.brush, continuation=False)
        self._last_center = (x, y)
        self._sample_count += 1
        self.render()

        self.is_drawing = True
        self._last_point = (x, y)
        return True

    def on_drag(self, x, y) -> int:
        """Queues the motion since the last pointer position and drains a batch.

        Returns the number of samples queued.
        """
        if not self.is_drawing:
            return 0
        x, y = int(round(x)), int(round(y))
        if not self.in_canvas(x, y) or (x, y) == self._last_point:
            return 0
        lx, ly = self._last_point
        added = self.queue.add_line(lx, ly, x, y)
        self._last_point = (x, y)
        self.process_pending()
        return added

    def on_release(self):
        """Ends the stroke once every queued sample has been simulated."""
        if not self.is_drawing:
            return
        self.is_drawing = False
        self._last_point = None
        self.when_drained(self._finish_stroke)

    def when_drained(self, callback: Callable[[], None]):
        """Runs `callback` now if the queue is idle, otherwise after it drains."""
        if not self.queue and not self._processing:
            callback()
        else:
            self._drain_callbacks.append(callback)

    def tick(self) -> int:
        """Per-frame hook: drains the next batch. Returns samples still queued."""
        self.process_pending()
        return len(self.queue)

    def flush(self):
        """Drains the whole queue synchronously."""
        if self._processing:
            return
        while self.queue:
            self.process_pending()
        self._run_drain_callbacks()

    def process_pending(self, limit: Optional[int] = None) -> int:
        """Simulates up to `limit` queued samples (default: max_points_per_frame)."""
        if self._processing:
            return 0
        n = int(limit) if limit is not None else int(self.p.max_points_per_frame)
        self._processing = True
        try:
            batch = self.queue.take(n)
            for x, y in batch:
                self._process_sample(x, y)
        finally:
            self._processing = False
        if not self.queue:
            self._run_drain_callbacks()
        return len(batch)

    def _process_sample(self, x: int, y: int):
        direction = self.drag.update(x, y)
        if self.pipeline.apply(x, y, self.brush, continuation=True, direction=direction):
            self._last_center = (x, y)
            self._sample_count += 1
            self.render()

    def _run_drain_callbacks(self):
        callbacks = self._drain_callbacks
        self._drain_callbacks = []
        for cb in callbacks:
            cb()

    def _finish_stroke(self):
        r = float(self.brush.radius)
        self.steps.end_stroke(r)
        self.pipeline.merge_primitive()
        self.pipeline.end_stroke()
        self.drag.reset()
        self.edges.set_drag_direction((0.0, 0.0))
        self.edges.reset_temp()
        self.render(full=True)

    def cancel_pending(self) -> int:
        """Drops every queued sample. Pending stroke cleanup still runs."""
        dropped = len(self.queue)
        self.queue.clear()
        if not self._processing:
            self._run_drain_callbacks()
        return dropped

    # ===============================
    # Direct stroke API
    # ===============================

    def apply_stroke(self, x, y, radius: Optional[float] = None, continuation: bool = True) -> bool:
        """Runs a single brush sample outside of the pointer event flow."""
        brush = self.brush if radius is None else dataclasses.replace(self.brush, radius=int(round(radius)))
        applied = self.pipeline.apply(int(round(x)), int(round(y)), brush, continuation=continuation)
        if applied:
            self._last_center = (int(round(x)), int(round(y)))
            self._sample_count += 1
            self.render()
        return applied

    # ===============================
    # Canvas
    # ===============================

    def clear_canvas(self):
        """Resets every field, the surface and the queue."""
        self.queue.clear()
        self._drain_callbacks = []
        self.is_drawing = False
        self._last_point = None
        self._last_center = None
        self.store.clear()
        self.steps.reset()
        self.pipeline.end_stroke()
        self.drag.reset()
        self.edges.set_drag_direction((0.0, 0.0))
        self.edges.reset_temp()
        self.surface.clear()
        self.surface.update_pixels()

    def bake_edges(self):
        """Moves the current edge darkening into the pigment itself and redraws."""
        self.pipeline.bake_edges()
        self.render(full=True)
        print("[WatercolorEngine] Edges baked into pigment.")

    def resize_canvas(self, width: int, height: int) -> bool:
        width, height = int(width), int(height)
        if width < 1 or height < 1:
            print(f"[WatercolorEngine] Ignoring invalid canvas size {width}x{height}.")
            return False
        if (width, height) == (self.width, self.height):
            return False
        self.queue.clear()
        self._drain_callbacks = []
        self.is_drawing = False
        self._last_point = None
        self._last_center = None
        self.drag.reset()
        self._build(width, height)
        self.surface.update_pixels()
        print(f"[WatercolorEngine] Canvas resized to {width}x{height}.")
        return True

    def update_region(self) -> Region:
        if self._last_center is None:
            return Region(0, self.width - 1, 0, self.height - 1)
        cx, cy = self._last_center
        return get_region(cx, cy, self.brush.radius * self.p.update_radius_factor, self.width, self.height)

    def render(self, full: bool = False) -> np.ndarray:
        """Composites the canvas into the surface and returns its pixel buffer."""
        t0 = time.perf_counter() if self.timing_mode else 0
        region = Region(0, self.width - 1, 0, self.height - 1) if full else self.update_region()
        self.compositor.render(self.surface, region)
        if self.timing_mode and (full or self._sample_count % 30 == 0):
            ti.sync()
            print(f"[Watercolor] Render: {(time.perf_counter()-t0)*1000:4.1f}ms ({region.width}x{region.height})")
        return self.surface.pixels

    def snapshot(self):
        return self.store.snapshot()

    def to_image(self):
        return self.surface.to_image()

    # ===============================
    # Diagnostics
    # ===============================

    def warmup(self):
        """Trigger JIT compilation of all kernels with a short dummy stroke."""
        cx, cy = self.width // 2, self.height // 2
        r = max(1, min(self.brush.radius, self.width // 4, self.height // 4))
        saved = self.brush.radius
        self.brush.radius = r
        self.on_press(cx, cy)
        self.on_drag(min(self.width - 1, cx + r), cy)
        self.on_release()
        self.flush()
        self.brush.radius = saved
        self.clear_canvas()
        ti.sync()
        print(f"[WatercolorEngine] Warmup complete.")

    def check_integrity(self) -> List[str]:
        """Verifies simulation state for stability (NaN and range checks)."""
        s = self.store.snapshot()
        problems = []

        for name in ("color", "opacity", "pending_opacity", "wet", "edge_first", "edge_second", "edge_third"):
            if np.any(np.isnan(s[name])):
                problems.append(f"NaN detected in {name} field")

        tol = 1e-5
        checks = (
            ("opacity", 0.0, 1.0),
            ("wet", 0.0, self.p.max_wet_value),
            ("edge_first", 0.0, self.p.first_max),
            ("edge_second", 0.0, self.p.second_max),
            ("edge_third", 0.0, self.p.third_max),
            ("color", 0.0, 255.0),
        )
        for name, lo, hi in checks:
            v = s[name]
            if np.any((v < lo - tol) | (v > hi + tol)):
                problems.append(f"{name} out of range: [{np.nanmin(v)}, {np.nanmax(v)}]")

        step = s["step"]
        if np.any(step < STEP_SENTINEL):
            problems.append(f"step field holds invalid values: min {step.min()}")
        if np.any((s["committed"] == 0) & (s["opacity"] > tol)):
            problems.append("opacity found on uncommitted pixels")

        for p in problems:
            print(f"[WatercolorEngine] INTEGRITY ERROR: {p}")
        if not problems:
            print("[WatercolorEngine] Integrity test passed.")
        return problems
