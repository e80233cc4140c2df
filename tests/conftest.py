import numpy as np
import pytest

from wetedge.brush.configs import BrushState, SimParams
from wetedge.brush.watercolor_engine import WatercolorEngine, _initialize_taichi_backend

CANVAS = 100


@pytest.fixture(scope="session", autouse=True)
def ti_backend():
    """Initializes Taichi on the CPU once for the whole test session."""
    _initialize_taichi_backend("cpu", seed=0)


@pytest.fixture(scope="session")
def shared_engine(ti_backend):
    return WatercolorEngine(width=CANVAS, height=CANVAS, arch="cpu")


@pytest.fixture
def engine(shared_engine):
    """A blank 100x100 canvas with default params and brush."""
    shared_engine.clear_canvas()
    shared_engine.set_params(SimParams())
    shared_engine.brush = BrushState()
    shared_engine.on_update = None
    shared_engine.surface.on_update = None
    return shared_engine


@pytest.fixture
def distances():
    """Distance of every [x, y] cell from the canvas center (50, 50)."""
    xs, ys = np.meshgrid(np.arange(CANVAS), np.arange(CANVAS), indexing="ij")
    return np.sqrt((xs - 50) ** 2 + (ys - 50) ** 2)


@pytest.fixture
def drain():
    """Ticks an engine until its queue and cleanup callbacks are done."""

    def _drain(eng, limit=100):
        for _ in range(limit):
            if eng.tick() == 0 and not eng._drain_callbacks:
                return
        raise AssertionError("queue did not drain")

    return _drain
