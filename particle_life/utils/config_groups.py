"""
Parameter groups for the particle-life engine.

Classifies ``EngineParams`` keys so callers applying a config change know
whether it can be applied live or needs a full reset.
"""

from __future__ import annotations


# =============================================================================
# Parameter Reset Keys - Changes that require simulation reset
# =============================================================================

RESET_KEYS = {
    "max_particles",
    "type_count",
    "particle_count",
    "default_size",
    "world_x",
    "world_y",
    "world_width",
    "world_height",
    "preset",
    "seed",
    "use_worker",
}


# =============================================================================
# Parameter Categories
# =============================================================================

INTEGRATOR_KEYS = {
    "integration",
    "boundary",
    "damping",
    "elasticity",
    "sub_steps",
    "constraint_iterations",
    "collisions",
    "max_velocity",
    "boundary_strength",
}

CLOCK_KEYS = {
    "fixed_step",
    "time_scale",
    "max_steps_per_frame",
    "max_frame_delta",
    "worker_max_in_flight",
    "metrics_interval",
}

SPATIAL_KEYS = {
    "quadtree_capacity",
    "quadtree_max_depth",
}

GLOBAL_FORCE_KEYS = {
    "gravity_enabled",
    "gravity_x",
    "gravity_y",
    "drag",
    "central_enabled",
    "central_x",
    "central_y",
    "central_strength",
    "vortex_enabled",
    "vortex_x",
    "vortex_y",
    "vortex_strength",
}


# =============================================================================
# Parameter Hints
# =============================================================================

PARAM_HINTS = {
    "max_particles": "Slot capacity of the particle store.",
    "type_count": "Number of particle types (rule matrix is type_count x type_count).",
    "particle_count": "Particles spawned with uniform random positions on reset.",
    "fixed_step": "Physics step length in ms.",
    "time_scale": "Simulated time multiplier (0 pauses).",
    "max_steps_per_frame": "Catch-up cap; extra accumulated time is discarded.",
    "max_frame_delta": "Frame deltas are clamped to this many ms.",
    "use_worker": "Run physics steps on a background executor.",
    "worker_max_in_flight": "Batches allowed in flight before requests queue (1-2).",
    "integration": "Integration scheme: euler, verlet or rk4.",
    "boundary": "Boundary policy: none, reflect, wrap, absorb or attract.",
    "damping": "Velocity multiplier per step (1 = no loss).",
    "elasticity": "Energy kept on a boundary bounce or collision.",
    "sub_steps": "Integration slices per physics step.",
    "constraint_iterations": "Collision passes per slice (needs collisions).",
    "collisions": "Resolve overlapping particles as elastic discs.",
    "max_velocity": "Speed cap (0 = uncapped).",
    "boundary_strength": "Spring constant of the attract boundary.",
    "quadtree_capacity": "Points per quadtree leaf before it splits.",
    "quadtree_max_depth": "Depth at which quadtree leaves stop splitting.",
    "drag": "Velocity-proportional drag coefficient.",
    "preset": "Rule preset applied on reset.",
    "seed": "Random seed for the initial layout.",
}


def get_param_hint(key: str) -> str:
    """
    Get the hint/description for a parameter.

    Args:
        key: Parameter key name

    Returns:
        Hint text or empty string
    """
    return PARAM_HINTS.get(key, "")


def is_reset_required(key: str) -> bool:
    """Check if changing this parameter requires a simulation reset."""
    return key in RESET_KEYS


def is_integrator_related(key: str) -> bool:
    return key in INTEGRATOR_KEYS


def is_clock_related(key: str) -> bool:
    return key in CLOCK_KEYS


def is_spatial_related(key: str) -> bool:
    return key in SPATIAL_KEYS


def is_global_force_related(key: str) -> bool:
    return key in GLOBAL_FORCE_KEYS
