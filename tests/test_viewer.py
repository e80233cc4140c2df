import numpy as np
import pytest

from wetedge.brush.configs import SimParams
from wetedge.viewer import build_arg_parser, params_from_args, surface_to_canvas


def test_parser_defaults():
    args = build_arg_parser().parse_args([])
    assert args.width == 800
    assert args.height == 600
    assert args.arch == "gpu"
    assert args.max_points_per_frame == SimParams().max_points_per_frame
    assert args.diffusion_strategy == "combined"
    assert not hasattr(args, "drag_direction_weights")


def test_parser_params():
    args = build_arg_parser().parse_args(
        ["--max-points-per-frame", "5", "--diffusion-strategy", "ring", "--third-fresh-trigger", "true", "--edge-darkening", "2.5"]
    )
    assert args.max_points_per_frame == 5
    assert args.diffusion_strategy == "ring"
    assert args.third_fresh_trigger is True
    assert args.edge_darkening == pytest.approx(2.5)


def test_parser_rejects_unknown_strategy():
    with pytest.raises(SystemExit):
        build_arg_parser().parse_args(["--diffusion-strategy", "sideways"])


def test_params_from_args():
    args = build_arg_parser().parse_args(["--width", "320"])
    params = params_from_args(args)
    assert "width" not in params
    assert params["max_queue_size"] == SimParams().max_queue_size
    assert "drag_direction_weights" not in params
    SimParams(**params)


def test_surface_to_canvas_orientation():
    w, h = 4, 3
    pixels = np.full(w * h * 4, 255, dtype=np.uint8)
    pixels[0:3] = (10, 20, 30)  # top-left
    canvas = surface_to_canvas(pixels, w, h)
    assert canvas.shape == (w, h, 3)
    assert tuple(canvas[0, h - 1]) == (10, 20, 30)
    assert tuple(canvas[0, 0]) == (255, 255, 255)
