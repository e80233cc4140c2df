from dataclasses import dataclass, field
from typing import Tuple

# StepField marker for cells that have fully settled after a stroke.
STEP_SENTINEL = -1

DIFFUSION_STRATEGIES = ("directional", "ring", "combined")


@dataclass
class BrushState:
    """The brush as set by the host. Read-only to the simulation."""

    color: Tuple[int, int, int] = field(default=(111, 111, 111), metadata={"help": "Brush color (RGB 0-255)."})
    opacity: float = field(default=1.0, metadata={"help": "Brush opacity.", "min": 0.0, "max": 1.0})
    radius: int = field(default=10, metadata={"help": "Brush radius in pixels.", "min": 1, "max": 200})


@dataclass
class SimParams:
    """User-adjustable parameters for the watercolor simulation."""

    # --- [NORMAL] Stroke Handling ---
    diffusion_strategy: str = field(default="combined", metadata={"help": "Pigment diffusion strategy: directional, ring or combined.", "category": "Normal", "choices": DIFFUSION_STRATEGIES})
    max_points_per_frame: int = field(default=20, metadata={"help": "Queued brush samples processed per frame.", "category": "Normal", "min": 1, "max": 200})
    max_queue_size: int = field(default=200, metadata={"help": "Maximum number of pending brush samples.", "category": "Normal", "min": 10, "max": 2000})

    # --- [NORMAL] Wet Area ---
    update_radius_factor: float = field(default=1.6, metadata={"help": "Search/update box as a multiple of the brush radius.", "category": "Normal", "min": 1.1, "max": 3.0})
    wet_area_radius_factor: float = field(default=1.0, metadata={"help": "Wet area radius as a multiple of the brush radius.", "category": "Normal", "min": 0.5, "max": 2.0})
    wet_area_inner_radius_factor: float = field(default=0.8, metadata={"help": "Radius of the uniformly wet core.", "category": "Normal", "min": 0.0, "max": 1.0})
    max_wet_value: float = field(default=1.0, metadata={"help": "Wetness saturation value.", "category": "Normal", "min": 0.1, "max": 4.0})
    wet_area_center_value: float = field(default=0.25, metadata={"help": "Wetness added at the brush core per sample.", "category": "Normal", "min": 0.0, "max": 1.0})
    wet_area_edge_value: float = field(default=0.01, metadata={"help": "Wetness added at the wet area rim per sample.", "category": "Normal", "min": 0.0, "max": 1.0})

    # --- [NORMAL] Pigment ---
    pigment_deposit_factor: float = field(default=0.5, metadata={"help": "Fraction of brush opacity deposited per sample.", "category": "Normal", "min": 0.01, "max": 1.0})
    commit_opacity_gain: float = field(default=0.8, metadata={"help": "How much new pigment adds to committed opacity.", "category": "Normal", "min": 0.0, "max": 1.0})
    primitive_merge_ratio: float = field(default=0.1, metadata={"help": "Pure brush color blended in when a stroke ends.", "category": "Normal", "min": 0.0, "max": 1.0})
    edge_darkening: float = field(default=1.0, metadata={"help": "Overall strength of the rendered edge darkening.", "category": "Normal", "min": 0.0, "max": 3.0})

    # --- [ADVANCED] Pigment Bookkeeping ---
    opacity_epsilon: float = field(default=0.01, metadata={"help": "Opacity below which a pixel counts as empty.", "category": "Advanced", "min": 0.0, "max": 0.1})
    memory_retention_ratio: float = field(default=0.03, metadata={"help": "Share of the inner average color kept in the brush memory rim.", "category": "Advanced", "min": 0.0, "max": 1.0})
    memory_lightness_protection: float = field(default=0.1, metadata={"help": "Pull of remembered lightness toward the brush lightness.", "category": "Advanced", "min": 0.0, "max": 1.0})
    memory_min_lightness_ratio: float = field(default=0.8, metadata={"help": "Remembered lightness floor relative to the brush lightness.", "category": "Advanced", "min": 0.0, "max": 1.0})

    # --- [ADVANCED] Pigment Finishing ---
    pending_smoothing: bool = field(default=True, metadata={"help": "Smooth fresh pigment with a 3x3 kernel before it is committed.", "category": "Advanced"})
    pending_smoothing_center_weight: float = field(default=2.0, metadata={"help": "Weight of the center tap of the fresh pigment smoothing.", "category": "Advanced", "min": 1.0, "max": 8.0})
    commit_edge_threshold: float = field(default=0.01, metadata={"help": "Local edge intensity needed to darken pigment as it is committed.", "category": "Advanced", "min": 0.0, "max": 0.5})
    commit_edge_darkening: float = field(default=0.1, metadata={"help": "Strength of the darkening applied while committing.", "category": "Advanced", "min": 0.0, "max": 5.0})
    commit_reduction_base: float = field(default=0.3, metadata={"help": "Commit-time lightness reduction for dark colors.", "category": "Advanced", "min": 0.0, "max": 1.0})
    commit_reduction_highlight: float = field(default=0.2, metadata={"help": "Commit-time reduction withheld from light colors.", "category": "Advanced", "min": 0.0, "max": 1.0})
    commit_min_lightness_ratio: float = field(default=0.5, metadata={"help": "Commit-time lightness floor relative to the brush lightness.", "category": "Advanced", "min": 0.0, "max": 1.0})
    bake_strength: float = field(default=0.2, metadata={"help": "Strength of baking the edge layers into the pigment.", "category": "Advanced", "min": 0.0, "max": 1.0})
    bake_reduction_base: float = field(default=0.25, metadata={"help": "Baked lightness reduction for dark colors.", "category": "Advanced", "min": 0.0, "max": 1.0})
    bake_reduction_highlight: float = field(default=0.15, metadata={"help": "Baked reduction withheld from light colors.", "category": "Advanced", "min": 0.0, "max": 1.0})

    # --- [ADVANCED] Directional Diffusion ---
    max_diffusion_distance_factor: float = field(default=0.6, metadata={"help": "Largest diffusion reach as a multiple of the radius.", "category": "Advanced", "min": 0.0, "max": 2.0})
    diffusion_target_ratio: float = field(default=0.8, metadata={"help": "Largest reach as a fraction of the distance to the target pigment.", "category": "Advanced", "min": 0.0, "max": 1.0})
    fresh_pigment_exponent: float = field(default=1.5, metadata={"help": "Falloff exponent limiting spread of freshly added pigment.", "category": "Advanced", "min": 0.1, "max": 5.0})
    diffusion_angle_jitter: float = field(default=3.0, metadata={"help": "Angular jitter of diffusion sub-points (degrees).", "category": "Advanced", "min": 0.0, "max": 45.0})
    diffusion_point_falloff: float = field(default=0.3, metadata={"help": "Share falloff across successive sub-points.", "category": "Advanced", "min": 0.0, "max": 0.9})
    outward_center_ratio: float = field(default=0.7, metadata={"help": "Center ratio beyond which overshooting sub-points are dropped.", "category": "Advanced", "min": 0.0, "max": 1.0})
    outward_overshoot: float = field(default=1.5, metadata={"help": "Allowed overshoot of a sub-point relative to its source.", "category": "Advanced", "min": 1.0, "max": 3.0})

    # --- [ADVANCED] Ring Diffusion ---
    ring_inner_radius_factor: float = field(default=0.9, metadata={"help": "Inner edge of the diffusion ring.", "category": "Advanced", "min": 0.0, "max": 1.0})
    ring_outer_radius_factor: float = field(default=1.0, metadata={"help": "Outer edge of the diffusion ring.", "category": "Advanced", "min": 0.1, "max": 1.5})
    ring_diffusion_points: int = field(default=8, metadata={"help": "Sub-points emitted per ring source.", "category": "Advanced", "min": 1, "max": 32})
    ring_retained_fraction: float = field(default=0.7, metadata={"help": "Share of a ring source's pigment that stays in place.", "category": "Advanced", "min": 0.0, "max": 1.0})
    ring_angle_jitter: float = field(default=6.0, metadata={"help": "Angular jitter of ring sub-points (degrees).", "category": "Advanced", "min": 0.0, "max": 45.0})

    # --- [ADVANCED] Step Tracking ---
    step_history_depth_factor: float = field(default=1.0, metadata={"help": "Coordinate history length as a multiple of the radius.", "category": "Advanced", "min": 0.1, "max": 8.0})
    step_threshold_factor: float = field(default=3.0, metadata={"help": "Step age gap (times the radius) that re-enables ring diffusion.", "category": "Advanced", "min": 0.0, "max": 10.0})
    step_wet_area_radius_factor: float = field(default=1.4, metadata={"help": "Radius stamped around each delayed position.", "category": "Advanced", "min": 0.1, "max": 3.0})
    step_wetness_increment: float = field(default=0.02, metadata={"help": "Wetness added by each delayed stamp.", "category": "Advanced", "min": 0.0, "max": 1.0})

    # --- [ADVANCED] Edge Detection ---
    edge_detection_radius_factor: float = field(default=1.3, metadata={"help": "Edge detection box as a multiple of the radius.", "category": "Advanced", "min": 1.0, "max": 3.0})
    wet_penalty_threshold: float = field(default=0.7, metadata={"help": "Wetness above which edge gradients are damped.", "category": "Advanced", "min": 0.0, "max": 1.0})
    wet_penalty_strength: float = field(default=0.5, metadata={"help": "Damping applied at full wetness.", "category": "Advanced", "min": 0.0, "max": 1.0})
    first_cover_radius_factor: float = field(default=1.0, metadata={"help": "Radius over which persistent edges are attenuated.", "category": "Advanced", "min": 0.0, "max": 2.0})
    first_cover_strength: float = field(default=0.5, metadata={"help": "Attenuation of persistent edges at the brush center.", "category": "Advanced", "min": 0.0, "max": 1.0})
    second_clear_radius_factor: float = field(default=1.1, metadata={"help": "Radius over which local edges are cleared.", "category": "Advanced", "min": 0.0, "max": 2.0})

    # --- [ADVANCED] First Layer ---
    first_threshold: float = field(default=0.05, metadata={"help": "Gradient needed to grow persistent edges.", "category": "Advanced", "min": 0.0, "max": 1.0})
    first_exponent: float = field(default=0.8, metadata={"help": "Gradient response exponent for persistent edges.", "category": "Advanced", "min": 0.1, "max": 3.0})
    first_scale: float = field(default=0.06, metadata={"help": "Growth per update of persistent edges.", "category": "Advanced", "min": 0.0, "max": 1.0})
    first_max: float = field(default=1.0, metadata={"help": "Cap of persistent edges.", "category": "Advanced", "min": 0.01, "max": 2.0})

    # --- [ADVANCED] Second Layer ---
    second_assign_radius_factor: float = field(default=1.0, metadata={"help": "Radius over which local edges are assigned.", "category": "Advanced", "min": 0.0, "max": 2.0})
    second_threshold: float = field(default=0.1, metadata={"help": "Gradient needed to assign local edges.", "category": "Advanced", "min": 0.0, "max": 1.0})
    second_exponent: float = field(default=0.65, metadata={"help": "Gradient response exponent for local edges.", "category": "Advanced", "min": 0.1, "max": 3.0})
    second_scale: float = field(default=1.0, metadata={"help": "Scale of local edges.", "category": "Advanced", "min": 0.0, "max": 2.0})
    second_max: float = field(default=1.0, metadata={"help": "Cap of local edges.", "category": "Advanced", "min": 0.01, "max": 2.0})

    # --- [ADVANCED] Third Layer ---
    third_temp_radius_factor: float = field(default=1.2, metadata={"help": "Half-size of the relocatable working grid.", "category": "Advanced", "min": 1.0, "max": 3.0})
    third_max: float = field(default=1.0, metadata={"help": "Cap of drag-diffused edges.", "category": "Advanced", "min": 0.01, "max": 2.0})
    third_inject_gain: float = field(default=0.35, metadata={"help": "Intensity injected at trigger points.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_fresh_trigger: bool = field(default=False, metadata={"help": "Also trigger on strong fresh pigment.", "category": "Advanced"})
    third_fresh_threshold: float = field(default=0.4, metadata={"help": "Pending opacity that counts as strong fresh pigment.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_decay_center: float = field(default=0.02, metadata={"help": "Decay rate near the grid center.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_decay_mid: float = field(default=0.12, metadata={"help": "Decay rate at mid radius.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_decay_rim: float = field(default=0.03, metadata={"help": "Decay rate at the grid rim.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_spread: float = field(default=0.2, metadata={"help": "Share of each cell handed to its neighbors per pass.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_retention_loss: float = field(default=0.1, metadata={"help": "Retention loss at the grid rim.", "category": "Advanced", "min": 0.0, "max": 1.0})
    third_forward_weight: float = field(default=1.5, metadata={"help": "Diffusion weight along the drag direction.", "category": "Advanced", "min": 0.0, "max": 5.0})
    third_side_weight: float = field(default=0.6, metadata={"help": "Diffusion weight across the drag direction.", "category": "Advanced", "min": 0.0, "max": 5.0})
    third_backward_weight: float = field(default=0.15, metadata={"help": "Diffusion weight against the drag direction.", "category": "Advanced", "min": 0.0, "max": 5.0})
    third_mix_ratio: float = field(default=0.97, metadata={"help": "How much of the working grid replaces the persistent layer.", "category": "Advanced", "min": 0.0, "max": 1.0})
    drag_direction_threshold: float = field(default=0.1, metadata={"help": "Averaged direction magnitude needed to adopt a drag direction.", "category": "Advanced", "min": 0.0, "max": 1.0})
    drag_direction_weights: Tuple[float, ...] = field(default=(0.4, 0.3, 0.2, 0.1), metadata={"help": "Weights of recent motion deltas, newest first.", "category": "Advanced"})

    # --- [ADVANCED] Rendering ---
    render_primitive_weight: float = field(default=0.1, metadata={"help": "Share of the pure brush color shown while painting.", "category": "Advanced", "min": 0.0, "max": 1.0})
    first_render_weight: float = field(default=0.25, metadata={"help": "Weight of persistent edges in the rendered effect.", "category": "Advanced", "min": 0.0, "max": 2.0})
    second_render_weight: float = field(default=0.75, metadata={"help": "Weight of local edges in the rendered effect.", "category": "Advanced", "min": 0.0, "max": 2.0})
    third_render_weight: float = field(default=0.5, metadata={"help": "Weight of drag-diffused edges in the rendered effect.", "category": "Advanced", "min": 0.0, "max": 2.0})
    edge_effect_threshold: float = field(default=0.01, metadata={"help": "Effect below which a pixel is drawn unchanged.", "category": "Advanced", "min": 0.0, "max": 0.5})
    lightness_reduction_base: float = field(default=0.4, metadata={"help": "Lightness reduction for dark colors.", "category": "Advanced", "min": 0.0, "max": 1.0})
    lightness_reduction_highlight: float = field(default=0.3, metadata={"help": "Reduction withheld from light colors.", "category": "Advanced", "min": 0.0, "max": 1.0})
    min_lightness: float = field(default=0.2, metadata={"help": "Lightness floor for darkened edges.", "category": "Advanced", "min": 0.0, "max": 1.0})
    smoothing_neighbor_weight: float = field(default=0.15, metadata={"help": "Neighbor weight of the pre-render color smoothing.", "category": "Advanced", "min": 0.0, "max": 1.0})
