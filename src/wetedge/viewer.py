"""
Wet-Edge Watercolor.

Copyright (c) 2026 Shuoqi Chen
SPDX-License-Identifier: MIT OR Apache-2.0
"""
import argparse
import time
from dataclasses import fields

import numpy as np
import taichi as ti

from .brush import WatercolorEngine, SimParams
from .brush.configs import BrushState, DIFFUSION_STRATEGIES


def _str2bool(v):
    if isinstance(v, bool):
        return v
    return str(v).lower() in ("1", "true", "yes", "on")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Wet-Edge Watercolor: interactive canvas")
    parser.add_argument("--width", type=int, default=800, help="Canvas width in pixels (default: 800)")
    parser.add_argument("--height", type=int, default=600, help="Canvas height in pixels (default: 600)")
    parser.add_argument("-a", "--arch", type=str, default="gpu", help="Taichi backend: gpu, cpu, cuda, metal, vulkan (default: gpu)")
    parser.add_argument("-f", "--fps", type=int, default=60, help="Target FPS cap (default: 60)")
    parser.add_argument("--seed", type=int, default=0, help="Random seed for diffusion jitter (default: 0)")
    parser.add_argument("--timing", action="store_true", help="Print per-stage timings")

    # Add SimParams as arguments automatically
    for f in fields(SimParams):
        if isinstance(f.default, tuple):
            continue  # Skip complex types for CLI
        arg_name = f.name.replace("_", "-")
        kwargs = {"default": f.default, "help": f.metadata.get("help", "")}
        if isinstance(f.default, bool):
            kwargs["type"] = _str2bool
        else:
            kwargs["type"] = type(f.default)
        if "choices" in f.metadata:
            kwargs["choices"] = f.metadata["choices"]
        parser.add_argument(f"--{arg_name}", **kwargs)
    return parser


def params_from_args(args) -> dict:
    return {f.name: getattr(args, f.name) for f in fields(SimParams) if hasattr(args, f.name)}


def surface_to_canvas(pixels: np.ndarray, width: int, height: int) -> np.ndarray:
    """Row-major RGBA (origin top-left) to a GGUI image (x-major, origin bottom-left)."""
    rgb = pixels.reshape(height, width, 4)[:, :, :3]
    return np.ascontiguousarray(np.flipud(rgb).transpose(1, 0, 2))


def _param_sliders(gui, engine, category):
    changes = {}
    for f in fields(SimParams):
        if f.metadata.get("category") != category or "min" not in f.metadata:
            continue
        display_name = f.name.replace("_", " ").title()
        val = getattr(engine.p, f.name)
        if isinstance(f.default, int) and not isinstance(f.default, bool):
            new_val = gui.slider_int(display_name, int(val), int(f.metadata["min"]), int(f.metadata["max"]))
        else:
            new_val = gui.slider_float(display_name, float(val), float(f.metadata["min"]), float(f.metadata["max"]))
        if new_val != val:
            changes[f.name] = new_val
    return changes


def launch_viewer(argv=None):
    args = build_arg_parser().parse_args(argv)
    W, H = args.width, args.height

    print(f"\n[Watercolor] Starting Wet-Edge Watercolor")
    print(f" - Canvas:     {W}x{H}")
    print(f" - Backend:    {args.arch.upper()}")
    print(f" - FPS Cap:    {args.fps}")
    print(f"--------------------------------")

    engine = WatercolorEngine(width=W, height=H, arch=args.arch, seed=args.seed, timing_mode=args.timing, warmup=True)
    engine.update_params(**params_from_args(args))

    window = ti.ui.Window("Wet-Edge Watercolor", (W, H))
    canvas = window.get_canvas()
    gui = window.get_gui()

    print("\n[Controls]")
    print(" - Mouse Left (LMB): Paint")
    print(" - Space: Clear Canvas")
    print(" - S: Save Screenshot")
    print(" - B: Bake Edges into Pigment")
    print(" - Shortcuts: [ / ] for Size")
    print(" - Tab: Toggle UI, hold Shift to move the cursor without painting")

    color = tuple(c / 255.0 for c in engine.brush.color)
    strategy_idx = DIFFUSION_STRATEGIES.index(engine.p.diffusion_strategy)
    radius_meta = BrushState.__dataclass_fields__["radius"].metadata
    show_ui = True
    show_advanced = False
    was_pressed = False

    samples = 0
    last_stat_time = time.time()
    fps_limit = args.fps

    while window.running:
        frame_start = time.time()

        for e in window.get_events(ti.ui.PRESS):
            if e.key == ti.ui.SPACE:
                engine.clear_canvas()
            elif e.key == "[":
                engine.set_size(max(radius_meta["min"], engine.brush.radius - 2))
            elif e.key == "]":
                engine.set_size(min(radius_meta["max"], engine.brush.radius + 2))
            elif e.key == "b":
                engine.bake_edges()
            elif e.key == "s":
                path = f"render_{int(time.time())}.png"
                engine.render(full=True)
                engine.to_image().save(path)
                print(f"[Watercolor] Saved screenshot: {path}")
            elif e.key == ti.ui.TAB:
                show_ui = not show_ui
            elif e.key == ti.ui.ESCAPE:
                window.running = False

        # ti.ui.Window (GGUI) uses [0,1] with origin at BOTTOM-LEFT.
        pressed = window.is_pressed(ti.ui.LMB) and not window.is_pressed(ti.ui.SHIFT)
        mx, my = window.get_cursor_pos()
        px, py = mx * W, (1.0 - my) * H
        if pressed and not was_pressed:
            engine.on_press(px, py)
            samples += 1
        elif pressed:
            samples += engine.on_drag(px, py)
        elif was_pressed:
            engine.on_release()
        was_pressed = pressed

        engine.tick()

        if show_ui:
            changes = {}
            with gui.sub_window("Controls", 0.02, 0.02, 0.3, 0.6):
                gui.text(f"Queued samples: {len(engine.queue)}")
                if gui.button("Clear Canvas"):
                    engine.clear_canvas()

                gui.text("--- Brush ---")
                new_color = gui.color_edit_3("Color", color)
                if tuple(new_color) != tuple(color):
                    color = tuple(new_color)
                    engine.set_color(*(c * 255.0 for c in color))
                engine.set_opacity(gui.slider_float("Opacity", engine.brush.opacity, 0.0, 1.0))
                engine.set_size(gui.slider_int("Size", engine.brush.radius, radius_meta["min"], radius_meta["max"]))

                gui.text("--- Simulation ---")
                new_idx = gui.slider_int("Diffusion (dir/ring/both)", strategy_idx, 0, len(DIFFUSION_STRATEGIES) - 1)
                if new_idx != strategy_idx:
                    strategy_idx = new_idx
                    changes["diffusion_strategy"] = DIFFUSION_STRATEGIES[new_idx]
                changes.update(_param_sliders(gui, engine, "Normal"))

                show_advanced = gui.checkbox("Advanced Settings", show_advanced)
                if show_advanced:
                    changes.update(_param_sliders(gui, engine, "Advanced"))
            if changes:
                engine.update_params(**changes)

        now = time.time()
        if now - last_stat_time > 2.0:
            print(f"[Stats] Samples/sec: {samples / (now - last_stat_time):.1f} | Queue: {len(engine.queue)} | Dropped: {engine.queue.dropped}")
            samples = 0
            last_stat_time = now

        canvas.set_image(surface_to_canvas(engine.surface.pixels, engine.width, engine.height))
        window.show()

        # Enforce FPS cap to prevent resource hogging
        elapsed = time.time() - frame_start
        if elapsed < 1.0 / fps_limit:
            time.sleep(1.0 / fps_limit - elapsed)


if __name__ == "__main__":
    launch_viewer()
