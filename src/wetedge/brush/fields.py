import math
from typing import Dict

import numpy as np
import taichi as ti

# Distance marker for pixels without a committed neighbor.
INF_DISTANCE = 1e10


@ti.data_oriented
class FieldStore:
    """Owns every whole-canvas array of the simulation.

    Fields are indexed [x, y]:
    - committed / color / opacity: CommittedPigment
    - pending / pending_color / pending_opacity / pending_edge: PendingPigment
    - primitive / primitive_color / primitive_opacity: PrimitiveLayer
    - wet: Wetness
    - distance / closest_x / closest_y / grad_x / grad_y: per-update scratch
    - step: StepField
    - edge_first / edge_second / edge_third: edge layers (third = persistent)
    - scratch_*: diffusion write buffers, edge_grad / edge_scratch: edge scratch
    - display_color / render_list / render_count: compositor scratch

    A store never changes size; resizing the canvas builds a new store.
    """

    def __init__(self, width: int, height: int):
        self.width = int(width)
        self.height = int(height)
        shape = (self.width, self.height)

        self.committed = ti.field(dtype=ti.i32, shape=shape)
        self.color = ti.Vector.field(3, dtype=ti.f32, shape=shape)
        self.opacity = ti.field(dtype=ti.f32, shape=shape)

        self.pending = ti.field(dtype=ti.i32, shape=shape)
        self.pending_color = ti.Vector.field(3, dtype=ti.f32, shape=shape)
        self.pending_opacity = ti.field(dtype=ti.f32, shape=shape)
        self.pending_edge = ti.field(dtype=ti.f32, shape=shape)

        self.primitive = ti.field(dtype=ti.i32, shape=shape)
        self.primitive_color = ti.Vector.field(3, dtype=ti.f32, shape=shape)
        self.primitive_opacity = ti.field(dtype=ti.f32, shape=shape)

        self.wet = ti.field(dtype=ti.f32, shape=shape)

        self.distance = ti.field(dtype=ti.f32, shape=shape)
        self.closest_x = ti.field(dtype=ti.i32, shape=shape)
        self.closest_y = ti.field(dtype=ti.i32, shape=shape)
        self.grad_x = ti.field(dtype=ti.f32, shape=shape)
        self.grad_y = ti.field(dtype=ti.f32, shape=shape)

        self.step = ti.field(dtype=ti.i32, shape=shape)

        self.edge_first = ti.field(dtype=ti.f32, shape=shape)
        self.edge_second = ti.field(dtype=ti.f32, shape=shape)
        self.edge_third = ti.field(dtype=ti.f32, shape=shape)

        self.scratch_flag = ti.field(dtype=ti.i32, shape=shape)
        self.scratch_weighted = ti.Vector.field(3, dtype=ti.f32, shape=shape)
        self.scratch_opacity = ti.field(dtype=ti.f32, shape=shape)
        self.edge_grad = ti.field(dtype=ti.f32, shape=shape)
        self.edge_scratch = ti.field(dtype=ti.f32, shape=shape)

        self.display_color = ti.Vector.field(3, dtype=ti.f32, shape=shape)
        self.render_list = ti.Vector.field(2, dtype=ti.i32, shape=self.width * self.height)
        self.render_count = ti.field(dtype=ti.i32, shape=())

        self.clear()

    def in_canvas(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    @ti.kernel
    def clear(self):
        """Resets every field to a blank, dry, uncommitted canvas."""
        for i, j in self.committed:
            self.committed[i, j] = 0
            self.color[i, j] = ti.Vector([255.0, 255.0, 255.0])
            self.opacity[i, j] = 0.0
            self.pending[i, j] = 0
            self.pending_color[i, j] = ti.Vector([255.0, 255.0, 255.0])
            self.pending_opacity[i, j] = 0.0
            self.pending_edge[i, j] = 0.0
            self.primitive[i, j] = 0
            self.primitive_color[i, j] = ti.Vector([255.0, 255.0, 255.0])
            self.primitive_opacity[i, j] = 0.0
            self.wet[i, j] = 0.0
            self.distance[i, j] = INF_DISTANCE
            self.closest_x[i, j] = -1
            self.closest_y[i, j] = -1
            self.grad_x[i, j] = 0.0
            self.grad_y[i, j] = 0.0
            self.step[i, j] = 0
            self.edge_first[i, j] = 0.0
            self.edge_second[i, j] = 0.0
            self.edge_third[i, j] = 0.0
            self.scratch_flag[i, j] = 0
            self.scratch_weighted[i, j] = ti.Vector([0.0, 0.0, 0.0])
            self.scratch_opacity[i, j] = 0.0
            self.edge_grad[i, j] = 0.0
            self.edge_scratch[i, j] = 0.0
            self.display_color[i, j] = ti.Vector([255.0, 255.0, 255.0])
        self.render_count[None] = 0

    @ti.kernel
    def clear_pending(self, x0: ti.i32, x1: ti.i32, y0: ti.i32, y1: ti.i32):
        """Empties PendingPigment inside [x0, x1) x [y0, y1)."""
        for i, j in ti.ndrange((x0, x1), (y0, y1)):
            self.pending[i, j] = 0
            self.pending_color[i, j] = ti.Vector([255.0, 255.0, 255.0])
            self.pending_opacity[i, j] = 0.0
            self.pending_edge[i, j] = 0.0

    def snapshot(self) -> Dict[str, np.ndarray]:
        """Copies every persistent and per-update field to numpy."""
        names = (
            "committed", "color", "opacity",
            "pending", "pending_color", "pending_opacity", "pending_edge",
            "primitive", "primitive_color", "primitive_opacity",
            "wet", "distance", "closest_x", "closest_y", "grad_x", "grad_y",
            "step", "edge_first", "edge_second", "edge_third",
        )
        return {name: getattr(self, name).to_numpy() for name in names}


class RelocatableGrid:
    """Small square working grid recentered on the brush every update.

    The grid spans [cx - half, cx + half] in both axes; `origin_x/origin_y`
    is the canvas coordinate of cell (0, 0). Fields are reallocated only when
    the half-size changes, so kernels receive them as template arguments.
    """

    def __init__(self, channels: int = 1, with_scratch: bool = True):
        self.channels = channels
        self.with_scratch = with_scratch
        self.half = -1
        self.size = 0
        self.origin_x = 0
        self.origin_y = 0
        self.center_x = 0
        self.center_y = 0
        self.values = None
        self.scratch = None
        self.reallocations = 0

    def _new_field(self):
        shape = (self.size, self.size)
        if self.channels == 1:
            return ti.field(dtype=ti.f32, shape=shape)
        return ti.Vector.field(self.channels, dtype=ti.f32, shape=shape)

    def ensure(self, cx: int, cy: int, half: int) -> bool:
        """Recenters the grid, reallocating when the size changed.

        Returns True when new (zeroed) storage was allocated.
        """
        half = max(1, int(half))
        reallocated = False
        if half != self.half or self.values is None:
            self.half = half
            self.size = 2 * half + 1
            self.values = self._new_field()
            self.scratch = self._new_field() if self.with_scratch else None
            self.reallocations += 1
            reallocated = True
        self.center_x = int(cx)
        self.center_y = int(cy)
        self.origin_x = self.center_x - self.half
        self.origin_y = self.center_y - self.half
        return reallocated

    def fill(self, value):
        if self.values is not None:
            self.values.fill(value)


def temp_half_size(radius: float, factor: float) -> int:
    return max(1, int(math.ceil(radius * factor)))
