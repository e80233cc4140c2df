import math
from typing import NamedTuple, Tuple


class Region(NamedTuple):
    """Inclusive pixel bounding box, already clamped to the canvas."""

    left: int
    right: int
    top: int
    bottom: int

    @property
    def is_empty(self) -> bool:
        return self.left > self.right or self.top > self.bottom

    @property
    def width(self) -> int:
        return max(0, self.right - self.left + 1)

    @property
    def height(self) -> int:
        return max(0, self.bottom - self.top + 1)

    def shrink(self, n: int = 1) -> "Region":
        return Region(self.left + n, self.right - n, self.top + n, self.bottom - n)

    def bounds(self) -> Tuple[int, int, int, int]:
        """Exclusive-end ranges (x0, x1, y0, y1) for kernel ndrange loops."""
        return self.left, self.right + 1, self.top, self.bottom + 1


def get_region(cx: float, cy: float, radius: float, width: int, height: int) -> Region:
    """Clamps the bounding box of a circular footprint to the canvas."""
    return Region(
        max(0, int(math.floor(cx - radius))),
        min(width - 1, int(math.ceil(cx + radius))),
        max(0, int(math.floor(cy - radius))),
        min(height - 1, int(math.ceil(cy + radius))),
    )


def footprint_in_canvas(cx: float, cy: float, radius: float, width: int, height: int) -> bool:
    """True when at least one pixel center lies within `radius` of (cx, cy)."""
    nx = min(max(cx, 0), width - 1)
    ny = min(max(cy, 0), height - 1)
    return (nx - cx) ** 2 + (ny - cy) ** 2 <= radius * radius
