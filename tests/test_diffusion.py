import numpy as np
import pytest

from wetedge.brush.configs import STEP_SENTINEL
from wetedge.brush.region import get_region

RADIUS = 10


def _seed_state(engine, distances, committed_radius=None, pending_radius=RADIUS):
    """Pending pigment in a disc at (50, 50), optionally over committed paint."""
    store = engine.store
    n = store.width
    pending = (distances <= pending_radius).astype(np.int32)
    pending_color = np.zeros((n, n, 3), dtype=np.float32)
    pending_color[...] = (200.0, 40.0, 40.0)
    store.pending.from_numpy(pending)
    store.pending_color.from_numpy(pending_color)
    store.pending_opacity.from_numpy(pending.astype(np.float32) * 0.5)
    if committed_radius is not None:
        committed = (distances <= committed_radius).astype(np.int32)
        color = np.zeros((n, n, 3), dtype=np.float32)
        color[...] = (40.0, 40.0, 200.0)
        store.committed.from_numpy(committed)
        store.color.from_numpy(color)
        store.opacity.from_numpy(committed.astype(np.float32) * 0.5)


def _search(engine):
    return get_region(50, 50, RADIUS * engine.p.update_radius_factor, engine.width, engine.height)


class TestDistanceScratch:
    def test_committed_pixels_reference_themselves(self, engine, distances):
        _seed_state(engine, distances, committed_radius=16, pending_radius=0)
        engine.diffusion.build_scratch(50, 50, RADIUS, _search(engine))
        s = engine.snapshot()
        assert s["distance"][60, 50] == 0.0
        assert s["closest_x"][60, 50] == 60
        assert s["closest_y"][60, 50] == 50

    def test_without_committed_pigment_nothing_is_eligible(self, engine, distances):
        _seed_state(engine, distances)
        engine.diffusion.build_scratch(50, 50, RADIUS, _search(engine))
        s = engine.snapshot()
        assert np.all(s["closest_x"][35:66, 35:66] == -1)
        assert np.all(s["distance"][35:66, 35:66] > 1e9)

    def test_candidates_lie_farther_out_and_within_reach(self, engine, distances):
        _seed_state(engine, distances, committed_radius=16)
        engine.diffusion.build_scratch(50, 50, RADIUS, _search(engine))
        s = engine.snapshot()
        reach = engine.diffusion.search_reach(RADIUS)
        xs, ys = np.nonzero((s["pending"] == 1) & (s["distance"] > 0) & (s["distance"] < 1e9))
        assert len(xs) > 0
        for x, y in zip(xs, ys):
            tx, ty = s["closest_x"][x, y], s["closest_y"][x, y]
            assert s["committed"][tx, ty] == 1
            assert distances[tx, ty] > distances[x, y]
            assert np.hypot(tx - x, ty - y) <= reach + 1e-4
            assert np.hypot(s["grad_x"][x, y], s["grad_y"][x, y]) == pytest.approx(1.0, abs=1e-4)


class TestDirectionalDiffusion:
    def test_conserves_pigment(self, engine, distances):
        _seed_state(engine, distances, committed_radius=16)
        search = _search(engine)
        engine.diffusion.build_scratch(50, 50, RADIUS, search)
        before = engine.store.pending_opacity.to_numpy().sum(dtype=np.float64)
        engine.diffusion.diffuse(50, 50, RADIUS, search, 0, "directional")
        s = engine.snapshot()
        after = s["pending_opacity"].sum(dtype=np.float64)
        assert after == pytest.approx(before, rel=1e-3)
        assert np.all(s["pending_opacity"] >= 0.0)
        # Some pigment bled past the brush footprint toward the committed paint.
        assert np.any((s["pending"] == 1) & (distances > RADIUS + 0.5))

    def test_fresh_pigment_on_blank_paper_stays(self, engine, distances):
        _seed_state(engine, distances)
        search = _search(engine)
        before = engine.store.pending_opacity.to_numpy()
        engine.diffusion.build_scratch(50, 50, RADIUS, search)
        engine.diffusion.diffuse(50, 50, RADIUS, search, 0, "directional")
        np.testing.assert_array_equal(engine.store.pending_opacity.to_numpy(), before)

    def test_unknown_strategy(self, engine):
        with pytest.raises(ValueError):
            engine.diffusion.diffuse(50, 50, RADIUS, _search(engine), 0, "sideways")


class TestRingDiffusion:
    def _run(self, engine, distances, step_value, current_step):
        _seed_state(engine, distances)
        engine.store.step.fill(step_value)
        search = _search(engine)
        before = engine.store.pending_opacity.to_numpy()
        engine.diffusion.diffuse(50, 50, RADIUS, search, current_step, "ring")
        return before, engine.snapshot()

    def test_untouched_paper_does_not_trigger(self, engine, distances):
        before, s = self._run(engine, distances, 0, 5)
        np.testing.assert_array_equal(s["pending_opacity"], before)

    def test_recent_steps_do_not_trigger(self, engine, distances):
        before, s = self._run(engine, distances, 5, 5)
        np.testing.assert_array_equal(s["pending_opacity"], before)

    def test_settled_paper_spreads_outward(self, engine, distances):
        before, s = self._run(engine, distances, STEP_SENTINEL, 5)
        assert s["pending_opacity"].sum(dtype=np.float64) == pytest.approx(before.sum(dtype=np.float64), rel=1e-3)
        assert np.any((s["pending"] == 1) & (distances > RADIUS + 0.5))
        # The core is outside the ring and keeps its pigment.
        assert s["pending_opacity"][50, 50] == pytest.approx(0.5)

    def test_old_steps_trigger(self, engine, distances):
        before, s = self._run(engine, distances, 5, 5 + 3 * RADIUS + 1)
        assert np.any((s["pending"] == 1) & (distances > RADIUS + 0.5))
