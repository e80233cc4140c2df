import numpy as np
import pytest
import taichi as ti

from wetedge.brush.edges import NEIGHBORS, calculate_accumulation_resistance, direction_weights


@ti.kernel
def _resistance_grid(values: ti.template(), out: ti.template(), max_v: ti.f32):
    for k in values:
        out[k] = calculate_accumulation_resistance(values[k], max_v)


def resistance(vals, max_v=1.0):
    values = ti.field(dtype=ti.f32, shape=len(vals))
    out = ti.field(dtype=ti.f32, shape=len(vals))
    values.from_numpy(np.asarray(vals, dtype=np.float32))
    _resistance_grid(values, out, max_v)
    return out.to_numpy()


class TestAccumulationResistance:
    def test_limits(self):
        r = resistance([0.0, 1.0, 0.5])
        assert r[0] == pytest.approx(1.0)
        assert r[1] == pytest.approx(0.0)
        assert r[2] == pytest.approx(0.25)

    def test_strictly_decreasing(self):
        r = resistance(np.linspace(0.0, 1.0, 50))
        assert np.all(np.diff(r) < 0.0)

    def test_out_of_range_values_are_clamped(self):
        r = resistance([2.0, -1.0])
        assert r[0] == pytest.approx(0.0)
        assert r[1] == pytest.approx(1.0)
        assert resistance([0.3], max_v=0.0)[0] == pytest.approx(0.0)

    def test_first_layer_growth_slows_down(self, engine):
        p = engine.p
        engine.store.edge_grad[50, 50] = 1.0
        values = [0.0]
        for _ in range(25):
            engine.edges._accumulate(50, 50, 10.0, 1.0, 50, 51, 50, 51)
            values.append(float(engine.store.edge_first[50, 50]))
        steps = np.diff(values)
        assert np.all(steps > 0.0)
        assert np.all(np.diff(steps) < 0.0)
        assert max(values) <= p.first_max + 1e-6

        expected = 0.0
        for v in values[1:]:
            expected = min(p.first_max, expected + p.first_scale * (1.0 - expected / p.first_max) ** 2)
            assert v == pytest.approx(expected, rel=1e-4)

    def test_weak_gradient_does_not_accumulate(self, engine):
        engine.store.edge_grad[50, 50] = 0.5 * engine.p.first_threshold
        engine.edges._accumulate(50, 50, 10.0, 1.0, 50, 51, 50, 51)
        assert engine.store.edge_first[50, 50] == 0.0


class TestDirectionWeights:
    def test_uniform_without_drag(self):
        w = direction_weights((0.0, 0.0), 1.5, 0.6, 0.15)
        assert w == pytest.approx([1.0 / 8.0] * 8)

    def test_forward_dominates(self):
        w = direction_weights((1.0, 0.0), 1.5, 0.6, 0.15)
        assert sum(w) == pytest.approx(1.0)
        forward = w[NEIGHBORS.index((1, 0))]
        backward = w[NEIGHBORS.index((-1, 0))]
        side = w[NEIGHBORS.index((0, 1))]
        assert forward == max(w)
        assert backward == min(w)
        assert backward < side < forward


class TestEdgeEngine:
    def test_press_builds_local_edges_inside_assign_radius(self, engine, distances):
        engine.set_size(10)
        engine.on_press(50, 50)
        s = engine.snapshot()
        second = s["edge_second"]
        assert second.max() > 0.0
        assert np.all(distances[second > 0] <= 10.0 * engine.p.second_assign_radius_factor + 1e-6)
        np.testing.assert_array_equal(s["pending_edge"], second)

    def test_layers_stay_in_bounds(self, engine):
        engine.set_size(8)
        engine.on_press(30, 30)
        for x in range(32, 70, 3):
            engine.on_drag(x, 30 + (x % 7))
        engine.on_release()
        engine.flush()
        s = engine.snapshot()
        for name, cap in (("edge_first", engine.p.first_max), ("edge_second", engine.p.second_max), ("edge_third", engine.p.third_max)):
            assert s[name].min() >= 0.0
            assert s[name].max() <= cap + 1e-6
        assert s["edge_first"].max() > 0.0
        assert s["edge_third"].max() > 0.0

    def test_no_gradient_clears_local_layer(self, engine):
        engine.store.edge_second.fill(0.5)
        engine.store.pending_edge.fill(0.5)
        assert not engine.edges.update(50, 50, 10)
        s = engine.snapshot()
        assert s["edge_second"][50, 50] == 0.0
        assert s["pending_edge"][50, 50] == 0.0
        assert s["edge_second"][5, 5] == pytest.approx(0.5)

    def test_working_grid_follows_brush_size(self, engine):
        temp = engine.edges.temp
        engine.set_size(10)
        engine.on_press(50, 50)
        assert temp.half == 12
        assert temp.size == 25
        count = temp.reallocations
        engine.on_release()

        engine.on_press(40, 40)
        assert temp.reallocations == count
        assert (temp.origin_x, temp.origin_y) == (28, 28)
        engine.on_release()

        engine.set_size(20)
        engine.on_press(50, 50)
        assert temp.half == 24
        assert temp.reallocations == count + 1

    def test_press_clears_third_layer_around_point(self, engine, distances):
        engine.store.edge_third.fill(0.4)
        engine.edges.clear_third_at(50, 50, 10)
        third = engine.store.edge_third.to_numpy()
        assert np.all(third[distances <= 12.0] == 0.0)
        assert third[0, 0] == pytest.approx(0.4)

    def test_press_keeps_edges_inside_brush(self, engine, distances):
        engine.set_size(10)
        engine.on_press(50, 50)
        s = engine.snapshot()
        outside = distances > 10.0
        assert s["edge_third"].max() > 0.0
        for name in ("edge_first", "edge_second", "edge_third"):
            assert np.all(s[name][outside] == 0.0), name


class TestThirdLayer:
    def test_decay_is_fastest_at_mid_radius(self, engine):
        t = engine.edges.temp
        t.ensure(50, 50, 10)
        engine.store.edge_third.fill(0.5)
        engine.edges._third_copy_in(t.values, t.origin_x, t.origin_y, t.half)
        temp = t.values.to_numpy()
        center = temp[10, 10]
        mid = temp[15, 10]
        rim = temp[20, 10]
        assert mid < center
        assert mid < rim
        assert center == pytest.approx(0.5 * (1.0 - engine.p.third_decay_center), rel=1e-4)
        assert mid == pytest.approx(0.5 * (1.0 - engine.p.third_decay_mid), rel=1e-4)

    def test_spread_follows_drag_direction(self, engine):
        engine.store.edge_third[50, 50] = 0.8
        engine.edges.set_drag_direction((1.0, 0.0))
        engine.edges.update_third(50, 50, 10)
        third = engine.store.edge_third.to_numpy()
        assert third[51, 50] > third[49, 50]
        assert third[51, 50] > 0.0

    def test_write_back_mixes_into_canvas(self, engine):
        m = engine.p.third_mix_ratio
        t = engine.edges.temp
        t.ensure(50, 50, 8)
        t.values.fill(0.8)
        engine.store.edge_third.fill(0.2)
        engine.edges._third_write_back(t.values, t.origin_x, t.origin_y, t.half, 5.0)
        third = engine.store.edge_third.to_numpy()
        assert third[50, 50] == pytest.approx((1.0 - m) * 0.2 + m * 0.8, rel=1e-5)
        assert third[53, 54] == pytest.approx((1.0 - m) * 0.2 + m * 0.8, rel=1e-5)
        # Inside the grid but outside the write-back circle.
        assert third[55, 55] == pytest.approx(0.2)
        assert third[58, 50] == pytest.approx(0.2)
