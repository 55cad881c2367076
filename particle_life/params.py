from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any


INTEGRATION_METHODS = {"euler", "verlet", "rk4"}
BOUNDARY_MODES = {"none", "reflect", "wrap", "absorb", "attract"}
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(slots=True)
class EngineParams:
    max_particles: int = 10000
    type_count: int = 10
    particle_count: int = 1000  # spawned by populate()
    default_size: float = 5.0

    world_x: float = 0.0
    world_y: float = 0.0
    world_width: float = 2000.0
    world_height: float = 2000.0

    fixed_step: float = 16.0  # ms
    time_scale: float = 1.0
    max_steps_per_frame: int = 5
    max_frame_delta: float = 100.0  # ms
    use_worker: bool = False
    worker_max_in_flight: int = 1

    integration: str = "verlet"  # euler | verlet | rk4
    boundary: str = "none"  # none | reflect | wrap | absorb | attract
    damping: float = 0.999
    elasticity: float = 0.8
    sub_steps: int = 1
    constraint_iterations: int = 1
    collisions: bool = False
    max_velocity: float = 1000.0
    boundary_strength: float = 0.1

    quadtree_capacity: int = 8
    quadtree_max_depth: int = 8

    gravity_enabled: bool = False
    gravity_x: float = 0.0
    gravity_y: float = 0.0
    drag: float = 0.0
    central_enabled: bool = False
    central_x: float = 1000.0
    central_y: float = 1000.0
    central_strength: float = 0.0
    vortex_enabled: bool = False
    vortex_x: float = 1000.0
    vortex_y: float = 1000.0
    vortex_strength: float = 0.0

    preset: str = ""
    seed: int = 1
    metrics_interval: float = 1000.0  # ms
    log_level: str = "INFO"

    def clamp(self) -> "EngineParams":
        self.max_particles = max(1, int(self.max_particles))
        self.type_count = max(1, min(256, int(self.type_count)))
        self.particle_count = max(0, min(self.max_particles, int(self.particle_count)))
        self.default_size = max(0.0, float(self.default_size))

        self.world_x = float(self.world_x)
        self.world_y = float(self.world_y)
        self.world_width = max(1.0, float(self.world_width))
        self.world_height = max(1.0, float(self.world_height))

        self.fixed_step = max(1.0, min(1000.0, float(self.fixed_step)))
        self.time_scale = max(0.0, float(self.time_scale))
        self.max_steps_per_frame = max(1, int(self.max_steps_per_frame))
        self.max_frame_delta = max(0.0, float(self.max_frame_delta))
        self.use_worker = bool(self.use_worker)
        self.worker_max_in_flight = max(1, min(2, int(self.worker_max_in_flight)))

        self.integration = str(self.integration or "verlet").strip().lower()
        if self.integration not in INTEGRATION_METHODS:
            self.integration = "verlet"
        self.boundary = str(self.boundary or "none").strip().lower()
        if self.boundary == "infinite":
            self.boundary = "none"
        if self.boundary not in BOUNDARY_MODES:
            self.boundary = "none"
        self.damping = min(1.0, max(1e-6, float(self.damping)))
        self.elasticity = min(1.0, max(0.0, float(self.elasticity)))
        self.sub_steps = max(1, min(16, int(self.sub_steps)))
        self.constraint_iterations = max(0, min(16, int(self.constraint_iterations)))
        self.collisions = bool(self.collisions)
        self.max_velocity = max(0.0, float(self.max_velocity))
        self.boundary_strength = max(0.0, float(self.boundary_strength))

        self.quadtree_capacity = max(1, int(self.quadtree_capacity))
        self.quadtree_max_depth = max(0, min(32, int(self.quadtree_max_depth)))

        self.gravity_enabled = bool(self.gravity_enabled)
        self.gravity_x = float(self.gravity_x)
        self.gravity_y = float(self.gravity_y)
        self.drag = max(0.0, float(self.drag))
        self.central_enabled = bool(self.central_enabled)
        self.central_x = float(self.central_x)
        self.central_y = float(self.central_y)
        self.central_strength = float(self.central_strength)
        self.vortex_enabled = bool(self.vortex_enabled)
        self.vortex_x = float(self.vortex_x)
        self.vortex_y = float(self.vortex_y)
        self.vortex_strength = float(self.vortex_strength)

        self.preset = str(self.preset or "").strip().lower()
        self.seed = int(self.seed)
        self.metrics_interval = max(1.0, float(self.metrics_interval))
        self.log_level = str(self.log_level or "INFO").strip().upper()
        if self.log_level not in LOG_LEVELS:
            self.log_level = "INFO"
        return self

    def validate(self) -> list[str]:
        warnings: list[str] = []

        if self.particle_count >= self.max_particles:
            warnings.append("particle_count fills max_particles: no free slots left for spawning.")
        if self.collisions and self.constraint_iterations == 0:
            warnings.append("collisions need constraint_iterations > 0.")
        if self.integration == "rk4" and self.sub_steps == 1:
            warnings.append("integration=rk4 holds acceleration constant within a step; consider sub_steps > 1.")
        if not self.use_worker and self.worker_max_in_flight > 1:
            warnings.append("worker_max_in_flight ignored while use_worker is false.")
        if self.time_scale == 0.0:
            warnings.append("time_scale=0 pauses the simulation.")
        if self.max_frame_delta < self.fixed_step:
            warnings.append("max_frame_delta below fixed_step: at most one step can run per frame.")
        if not self.gravity_enabled and (abs(self.gravity_x) > 0.0 or abs(self.gravity_y) > 0.0):
            warnings.append("gravity_x/gravity_y ignored while gravity_enabled is false.")
        if not self.central_enabled and abs(self.central_strength) > 0.0:
            warnings.append("central_strength ignored while central_enabled is false.")
        if not self.vortex_enabled and abs(self.vortex_strength) > 0.0:
            warnings.append("vortex_strength ignored while vortex_enabled is false.")
        return warnings

    @classmethod
    def load(cls, path: str | Path) -> "EngineParams":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Parameter file must contain a JSON object.")
        # camelCase keys from older config files.
        aliases = {
            "fixedTimeStep": "fixed_step",
            "timeScale": "time_scale",
            "maxParticles": "max_particles",
            "typeCount": "type_count",
            "boundaryHandling": "boundary",
            "method": "integration",
            "subSteps": "sub_steps",
            "maxVelocity": "max_velocity",
            "constraintIterations": "constraint_iterations",
            "useWorker": "use_worker",
        }
        for old, new in aliases.items():
            if old in data and new not in data:
                data[new] = data.pop(old)
        filtered: dict[str, Any] = {k: v for k, v in data.items() if k in cls.__annotations__}
        return cls(**filtered).clamp()

    def save(self, path: str | Path) -> None:
        data = asdict(self)
        Path(path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
