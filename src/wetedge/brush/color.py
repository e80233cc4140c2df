"""
Color math shared by the pipeline and the compositor.

- RGB <-> HSL conversion (RGB in 0..255, HSL in 0..1)
- Subtractive pigment blend through Mixbox: colors are mapped to a latent
  space of four pigment concentrations plus an RGB residual, interpolated
  there, and mapped back. Blue and yellow give green, like paint.

Host code calls mixbox directly. Kernels cannot, so `load_mixing_tables()`
samples mixbox once into two lookup tables held in Taichi fields:
- latent table: RGB grid -> latent vector
- mix table: concentration grid (c0, c1, c2) -> pigment RGB, unclamped
and the @ti.func versions interpolate them trilinearly.
"""

import colorsys
import time
from typing import Tuple

import mixbox
import numpy as np
import taichi as ti

MIX_LUT_SIZE = 33

_LATENT_LUT = None
_MIX_LUT = None


# ===============================
# Python scope
# ===============================

def _clamp(x: float, lo: float, hi: float) -> float:
    return min(hi, max(lo, x))


def mix(a, b, t: float) -> Tuple[float, float, float]:
    """Subtractive pigment blend of two RGB (0..255) colors; t=0 gives a."""
    t = _clamp(t, 0.0, 1.0)
    fa = tuple(_clamp(c / 255.0, 0.0, 1.0) for c in a)
    fb = tuple(_clamp(c / 255.0, 0.0, 1.0) for c in b)
    return tuple(c * 255.0 for c in mixbox.lerp_float(fa, fb, t))


def lightness(rgb) -> float:
    """HSL lightness (0..1) of an RGB (0..255) color."""
    r, g, b = (_clamp(c / 255.0, 0.0, 1.0) for c in rgb)
    return colorsys.rgb_to_hls(r, g, b)[1]


def _build_latent_table(n: int) -> np.ndarray:
    axis = np.linspace(0.0, 1.0, n)
    table = np.empty((n, n, n, mixbox.LATENT_SIZE), dtype=np.float32)
    for i, r in enumerate(axis):
        for j, g in enumerate(axis):
            for k, b in enumerate(axis):
                table[i, j, k] = mixbox.float_rgb_to_latent((r, g, b))
    return table


def _pigment_rgb(c0: float, c1: float, c2: float):
    # mixbox clamps its output; shifting the residual by -/+0.5 recovers the
    # unclamped pigment color on [-0.5, 1.5].
    c3 = 1.0 - c0 - c1 - c2
    hi = mixbox.latent_to_float_rgb((c0, c1, c2, c3, -0.5, -0.5, -0.5))
    lo = mixbox.latent_to_float_rgb((c0, c1, c2, c3, 0.5, 0.5, 0.5))
    return [h + 0.5 if 0.0 < h < 1.0 else l - 0.5 for h, l in zip(hi, lo)]


def _build_mix_table(n: int) -> np.ndarray:
    axis = np.linspace(0.0, 1.0, n)
    table = np.empty((n, n, n, 3), dtype=np.float32)
    for i, c0 in enumerate(axis):
        for j, c1 in enumerate(axis):
            for k, c2 in enumerate(axis):
                table[i, j, k] = _pigment_rgb(c0, c1, c2)
    return table


def load_mixing_tables(size: int = MIX_LUT_SIZE):
    """Samples mixbox into Taichi fields. Must run after ti.init, once."""
    global _LATENT_LUT, _MIX_LUT
    if _LATENT_LUT is not None:
        return
    t0 = time.perf_counter()
    latent = _build_latent_table(size)
    pigment = _build_mix_table(size)

    shape = (size, size, size)
    _LATENT_LUT = ti.Vector.field(mixbox.LATENT_SIZE, dtype=ti.f32, shape=shape)
    _LATENT_LUT.from_numpy(latent)
    _MIX_LUT = ti.Vector.field(3, dtype=ti.f32, shape=shape)
    _MIX_LUT.from_numpy(pigment)
    print(f"[PigmentMix] Mixing tables ready ({size}^3) in {time.perf_counter() - t0:.2f}s")


# ===============================
# Taichi scope
# ===============================

@ti.func
def _trilinear(table: ti.template(), p):
    n = table.shape[0]
    q = ti.min(1.0, ti.max(0.0, p)) * (n - 1)
    i = ti.min(ti.cast(ti.floor(q), ti.i32), n - 2)
    f = q - i
    c00 = table[i.x, i.y, i.z] * (1.0 - f.x) + table[i.x + 1, i.y, i.z] * f.x
    c10 = table[i.x, i.y + 1, i.z] * (1.0 - f.x) + table[i.x + 1, i.y + 1, i.z] * f.x
    c01 = table[i.x, i.y, i.z + 1] * (1.0 - f.x) + table[i.x + 1, i.y, i.z + 1] * f.x
    c11 = table[i.x, i.y + 1, i.z + 1] * (1.0 - f.x) + table[i.x + 1, i.y + 1, i.z + 1] * f.x
    c0 = c00 * (1.0 - f.y) + c10 * f.y
    c1 = c01 * (1.0 - f.y) + c11 * f.y
    return c0 * (1.0 - f.z) + c1 * f.z


@ti.func
def rgb_to_latent(c):
    return _trilinear(_LATENT_LUT, c / 255.0)


@ti.func
def latent_to_rgb(z):
    base = _trilinear(_MIX_LUT, ti.Vector([z[0], z[1], z[2]]))
    rgb = base + ti.Vector([z[4], z[5], z[6]])
    return ti.min(255.0, ti.max(0.0, rgb * 255.0))


@ti.func
def pigment_mix(a, b, t):
    """Blends two RGB (0..255) vectors; t=0 gives a, t=1 gives b."""
    tt = ti.min(1.0, ti.max(0.0, t))
    z = (1.0 - tt) * rgb_to_latent(a) + tt * rgb_to_latent(b)
    return latent_to_rgb(z)


@ti.func
def rgb_to_hsl(c):
    rgb = ti.min(1.0, ti.max(0.0, c / 255.0))
    mx = ti.max(rgb.x, ti.max(rgb.y, rgb.z))
    mn = ti.min(rgb.x, ti.min(rgb.y, rgb.z))
    l = (mx + mn) * 0.5
    h = 0.0
    s = 0.0
    d = mx - mn
    if d > 1e-6:
        if l > 0.5:
            s = d / (2.0 - mx - mn)
        else:
            s = d / (mx + mn)
        if mx == rgb.x:
            h = (rgb.y - rgb.z) / d
            if rgb.y < rgb.z:
                h += 6.0
        elif mx == rgb.y:
            h = (rgb.z - rgb.x) / d + 2.0
        else:
            h = (rgb.x - rgb.y) / d + 4.0
        h = h / 6.0
    return ti.Vector([ti.min(1.0, ti.max(0.0, h)), ti.min(1.0, ti.max(0.0, s)), ti.min(1.0, ti.max(0.0, l))])


@ti.func
def _hue_to_rgb(p, q, t):
    tt = t
    if tt < 0.0:
        tt += 1.0
    if tt > 1.0:
        tt -= 1.0
    v = p
    if tt < 1.0 / 6.0:
        v = p + (q - p) * 6.0 * tt
    elif tt < 0.5:
        v = q
    elif tt < 2.0 / 3.0:
        v = p + (q - p) * (2.0 / 3.0 - tt) * 6.0
    return v


@ti.func
def hsl_to_rgb(hsl):
    h = ti.min(1.0, ti.max(0.0, hsl.x))
    s = ti.min(1.0, ti.max(0.0, hsl.y))
    l = ti.min(1.0, ti.max(0.0, hsl.z))
    rgb = ti.Vector([l, l, l])
    if s > 0.0:
        q = l + s - l * s
        if l < 0.5:
            q = l * (1.0 + s)
        p = 2.0 * l - q
        rgb = ti.Vector([_hue_to_rgb(p, q, h + 1.0 / 3.0), _hue_to_rgb(p, q, h), _hue_to_rgb(p, q, h - 1.0 / 3.0)])
    return ti.min(255.0, ti.max(0.0, rgb * 255.0))


@ti.func
def darken(c, amount, floor_l):
    """Lowers the HSL lightness of c by amount, never below floor_l or above its own."""
    hsl = rgb_to_hsl(c)
    l = hsl.z
    new_l = ti.min(l, ti.max(floor_l, l - amount))
    return hsl_to_rgb(ti.Vector([hsl.x, hsl.y, new_l]))
