import pytest

from wetedge.brush.strokes import DragDirectionTracker, PendingPointQueue, line_points


class TestLinePoints:
    def test_vertical_line_skips_start(self):
        pts = line_points(10, 10, 10, 30)
        assert len(pts) == 20
        assert pts == [(10, y) for y in range(11, 31)]

    def test_include_start(self):
        pts = line_points(3, 4, 6, 4, include_start=True)
        assert pts == [(3, 4), (4, 4), (5, 4), (6, 4)]

    def test_diagonal(self):
        assert line_points(0, 0, 5, 5) == [(i, i) for i in range(1, 6)]

    def test_reverse_direction(self):
        assert line_points(5, 0, 0, 0) == [(4, 0), (3, 0), (2, 0), (1, 0), (0, 0)]

    def test_shallow_line_is_connected(self):
        pts = line_points(0, 0, 7, 3)
        assert len(pts) == 7
        assert pts[-1] == (7, 3)
        prev = (0, 0)
        for p in pts:
            assert max(abs(p[0] - prev[0]), abs(p[1] - prev[1])) == 1
            prev = p

    def test_same_point_is_empty(self):
        assert line_points(4, 4, 4, 4) == []


class TestPendingPointQueue:
    def test_fifo(self):
        q = PendingPointQueue(200)
        assert q.add_line(0, 0, 3, 0) == 3
        assert q.pop() == (1, 0)
        assert q.take(5) == [(2, 0), (3, 0)]
        assert q.pop() is None
        assert not q

    def test_overflow_drops_oldest(self, capsys):
        q = PendingPointQueue(200)
        q.add_line(0, 0, 300, 0)
        pts = q.snapshot()
        assert len(q) == 200
        assert pts[0] == (101, 0)
        assert pts[-1] == (300, 0)
        assert q.dropped == 100
        assert "[StrokeQueue]" in capsys.readouterr().out

    def test_clear(self):
        q = PendingPointQueue(10)
        q.add_line(0, 0, 5, 5)
        q.clear()
        assert len(q) == 0


class TestDragDirectionTracker:
    def test_first_point_has_no_direction(self):
        t = DragDirectionTracker()
        assert t.update(10, 10) == (0.0, 0.0)
        assert not t.has_direction

    def test_adopts_direction(self):
        t = DragDirectionTracker()
        t.update(0, 0)
        assert t.update(10, 0) == pytest.approx((1.0, 0.0))
        assert t.has_direction

    def test_weighted_toward_recent_motion(self):
        t = DragDirectionTracker()
        t.update(0, 0)
        t.update(5, 0)
        dx, dy = t.update(5, 5)
        # Newest delta (0, 1) weighs 0.4, previous (1, 0) weighs 0.3.
        assert dy > dx > 0
        assert dx * dx + dy * dy == pytest.approx(1.0)

    def test_weak_average_keeps_previous_direction(self):
        t = DragDirectionTracker(threshold=0.5)
        t.update(0, 0)
        assert t.update(4, 0) == (0.0, 0.0)

    def test_reset(self):
        t = DragDirectionTracker()
        t.update(0, 0)
        t.update(0, 3)
        t.reset()
        assert t.direction == (0.0, 0.0)
        assert t.update(1, 1) == (0.0, 0.0)
