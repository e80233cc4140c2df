"""Wet-on-wet watercolor brush engine."""
from .watercolor_engine import WatercolorEngine
from .configs import SimParams, BrushState
from .renderer import RasterSurface

__all__ = ["WatercolorEngine", "SimParams", "BrushState", "RasterSurface"]
