import math
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

Point = Tuple[int, int]


def line_points(x0: int, y0: int, x1: int, y1: int, include_start: bool = False) -> List[Point]:
    """Bresenham rasterization of the segment (x0, y0) -> (x1, y1).

    The start point is normally skipped because it was already processed as
    the end of the previous segment.
    """
    x0, y0, x1, y1 = int(x0), int(y0), int(x1), int(y1)
    dx = abs(x1 - x0)
    dy = -abs(y1 - y0)
    sx = 1 if x0 < x1 else -1
    sy = 1 if y0 < y1 else -1
    err = dx + dy

    points = []
    x, y = x0, y0
    while True:
        if include_start or (x, y) != (x0, y0):
            points.append((x, y))
        if x == x1 and y == y1:
            break
        e2 = 2 * err
        if e2 >= dy:
            err += dy
            x += sx
        if e2 <= dx:
            err += dx
            y += sy
    return points


class PendingPointQueue:
    """Bounded FIFO of brush samples waiting to be simulated.

    When full, the oldest samples are dropped so the brush never lags far
    behind the pointer.
    """

    def __init__(self, max_size: int = 200):
        self.max_size = int(max_size)
        self._points: Deque[Point] = deque()
        self.dropped = 0

    def __len__(self):
        return len(self._points)

    def __bool__(self):
        return bool(self._points)

    def add_line(self, x0: int, y0: int, x1: int, y1: int) -> int:
        """Queues the rasterized segment. Returns the number of samples added."""
        pts = line_points(x0, y0, x1, y1)
        self._points.extend(pts)
        overflow = len(self._points) - self.max_size
        if overflow > 0:
            for _ in range(overflow):
                self._points.popleft()
            self.dropped += overflow
            print(f"[StrokeQueue] Queue full, dropped {overflow} oldest samples.")
        return len(pts)

    def pop(self) -> Optional[Point]:
        if not self._points:
            return None
        return self._points.popleft()

    def take(self, n: int) -> List[Point]:
        out = []
        while self._points and len(out) < n:
            out.append(self._points.popleft())
        return out

    def clear(self):
        self._points.clear()

    def snapshot(self) -> List[Point]:
        return list(self._points)


class DragDirectionTracker:
    """Smoothed unit direction of the brush motion.

    Keeps the last few normalized motion deltas and averages them with
    `weights` (newest first). The average is adopted as the drag direction
    only once its magnitude exceeds `threshold`; until then the previous
    direction stays in effect.
    """

    def __init__(self, weights: Sequence[float] = (0.4, 0.3, 0.2, 0.1), threshold: float = 0.1):
        self.weights = tuple(float(w) for w in weights)
        self.threshold = float(threshold)
        self._deltas: Deque[Tuple[float, float]] = deque(maxlen=len(self.weights))
        self._last: Optional[Tuple[float, float]] = None
        self.direction = (0.0, 0.0)

    def update(self, x: float, y: float) -> Tuple[float, float]:
        if self._last is not None:
            dx = x - self._last[0]
            dy = y - self._last[1]
            length = math.hypot(dx, dy)
            if length > 0:
                self._deltas.appendleft((dx / length, dy / length))
                ax = sum(w * d[0] for w, d in zip(self.weights, self._deltas))
                ay = sum(w * d[1] for w, d in zip(self.weights, self._deltas))
                mag = math.hypot(ax, ay)
                if mag > self.threshold:
                    self.direction = (ax / mag, ay / mag)
        self._last = (x, y)
        return self.direction

    @property
    def has_direction(self) -> bool:
        return self.direction != (0.0, 0.0)

    def reset(self):
        self._deltas.clear()
        self._last = None
        self.direction = (0.0, 0.0)
