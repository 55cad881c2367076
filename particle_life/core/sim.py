from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict
from typing import Any, Callable, Mapping

import numpy as np

from particle_life.core.particles import ParticleParams, ParticleState, ParticleStore
from particle_life.core.rules import InteractionRuleTable
from particle_life.params import EngineParams
from particle_life.physics.forces import (
    GlobalForces,
    LocalForce,
    PointForce,
    QuadtreeForceSolver,
    apply_global_forces,
    apply_local_force,
)
from particle_life.physics.integrator import Integrator, IntegratorOptions
from particle_life.physics.quadtree import QuadPoint, Quadtree, Rect
from particle_life.utils.config_groups import (
    is_global_force_related,
    is_integrator_related,
    is_reset_required,
    is_spatial_related,
)

log = logging.getLogger("particle_life")


def world_bounds(p: EngineParams) -> Rect:
    return Rect(p.world_x, p.world_y, p.world_width, p.world_height)


def integrator_options(p: EngineParams) -> IntegratorOptions:
    return IntegratorOptions(
        scheme=p.integration,
        boundary=p.boundary,
        damping=p.damping,
        elasticity=p.elasticity,
        sub_steps=p.sub_steps,
        constraint_iterations=p.constraint_iterations,
        max_velocity=p.max_velocity,
        boundary_strength=p.boundary_strength,
        collisions=p.collisions,
    )


def global_forces(p: EngineParams) -> GlobalForces:
    return GlobalForces(
        gravity=(p.gravity_x, p.gravity_y) if p.gravity_enabled else None,
        drag=p.drag if p.drag > 0.0 else None,
        central=PointForce(p.central_x, p.central_y, p.central_strength) if p.central_enabled else None,
        vortex=PointForce(p.vortex_x, p.vortex_y, p.vortex_strength) if p.vortex_enabled else None,
    )


class ParticleLifeSim:
    """
    One physics pipeline: rebuild quadtree, solve forces, integrate.

    Owns the particle store, rule table and every per-step system. The clock
    drives ``step`` at a fixed rate; the offload worker runs its own instance.
    """

    def __init__(self, params: EngineParams, *, populate: bool = True) -> None:
        self.params = params.clamp()
        p = self.params
        self._rng = random.Random(p.seed)
        self.bounds = world_bounds(p)
        self.store = ParticleStore(p.max_particles, type_count=p.type_count)
        self.rules = InteractionRuleTable(p.type_count)
        self.quadtree = Quadtree(self.bounds, capacity=p.quadtree_capacity, max_depth=p.quadtree_max_depth)
        self.solver = QuadtreeForceSolver(self.rules)
        self.integrator = Integrator(self.bounds, integrator_options(p))
        self.global_forces = global_forces(p)
        self._impulses: list[LocalForce] = []
        self._params_listeners: list[Callable[[EngineParams, set[str]], None]] = []
        # Bumped by every reset; offloaded results from an older epoch are stale.
        self.epoch = 0
        self.params_revision = 0

        self.step_count = 0
        self.last_rebuild_ms: float | None = None
        self.last_force_ms: float | None = None
        self.last_integration_ms: float | None = None
        self.last_step_ms: float | None = None

        self.reset(populate=populate)

    def reset(self, *, populate: bool = True) -> None:
        p = self.params
        self._rng = random.Random(p.seed)
        self.bounds = world_bounds(p)
        self.store.reset(p.max_particles)
        self.store.type_count = p.type_count
        self.rules.reset(p.type_count)
        if p.preset and not self.rules.apply_preset(p.preset):
            log.warning("[sim] preset %r not applied", p.preset)
        self.quadtree = Quadtree(self.bounds, capacity=p.quadtree_capacity, max_depth=p.quadtree_max_depth)
        self.integrator.set_bounds(self.bounds).set_options(integrator_options(p))
        self.global_forces = global_forces(p)
        self._impulses.clear()
        self.step_count = 0
        self.epoch += 1
        if populate and p.particle_count > 0:
            self.populate(p.particle_count)

    def populate(self, n: int) -> list[int]:
        """Spawn ``n`` particles at rest, uniformly placed inside the world with random types."""
        p = self.params
        b = self.bounds
        margin = min(p.default_size, 0.5 * b.width, 0.5 * b.height)
        rng = self._rng

        def make(i: int, count: int) -> ParticleParams:
            return ParticleParams(
                x=rng.uniform(b.x + margin, b.x + b.width - margin),
                y=rng.uniform(b.y + margin, b.y + b.height - margin),
                size=p.default_size,
                type=rng.randrange(p.type_count),
            )

        created = self.store.create_batch(n, make)
        if len(created) < n:
            log.warning("[sim] populate created %d of %d particles", len(created), n)
        return created

    def add_impulse(self, force: LocalForce) -> None:
        """Queue a local force; it is applied once, during the next step."""
        self._impulses.append(force)

    def take_impulses(self) -> list[LocalForce]:
        """Hand queued impulses to another pipeline (the offload worker)."""
        taken = list(self._impulses)
        self._impulses.clear()
        return taken

    def add_params_listener(self, listener: Callable[[EngineParams, set[str]], None]) -> None:
        """Call ``listener(params, changed_keys)`` after every effective ``apply_params``."""
        self._params_listeners.append(listener)

    def remove_params_listener(self, listener: Callable[[EngineParams, set[str]], None]) -> None:
        if listener in self._params_listeners:
            self._params_listeners.remove(listener)

    def _index_bounds(self, idx: np.ndarray) -> Rect:
        b = self.bounds
        if idx.size == 0:
            return b
        pos = self.store.positions[idx]
        lo = pos.min(axis=0)
        hi = pos.max(axis=0)
        x0 = min(b.x, float(lo[0]))
        y0 = min(b.y, float(lo[1]))
        x1 = max(b.x + b.width, float(hi[0]) + 1.0)
        y1 = max(b.y + b.height, float(hi[1]) + 1.0)
        return Rect(x0, y0, x1 - x0, y1 - y0)

    def rebuild_index(self) -> int:
        """Rebuild the quadtree from active particles; the root grows to cover strays."""
        idx = self.store.active_indices()
        root = self._index_bounds(idx)
        if root != self.quadtree.bounds:
            self.quadtree.bounds = root
        xs = self.store.positions[idx, 0].tolist()
        ys = self.store.positions[idx, 1].tolist()
        return self.quadtree.rebuild(QuadPoint(i, x, y) for i, x, y in zip(idx.tolist(), xs, ys))

    def step(self, dt: float) -> None:
        """
        Advance the simulation by one fixed step.

        Args:
            dt: Step length in seconds.
        """
        t_start = time.perf_counter()

        t0 = time.perf_counter()
        self.rebuild_index()
        self.last_rebuild_ms = (time.perf_counter() - t0) * 1000.0

        self.solver.solve(self.store, self.quadtree, dt)
        apply_global_forces(self.store, self.global_forces)
        if self._impulses:
            for force in self._impulses:
                apply_local_force(self.store, force)
            self._impulses.clear()
        self.last_force_ms = self.solver.last_calculation_ms

        self.integrator.integrate(self.store, dt)
        self.last_integration_ms = self.integrator.last_integration_ms

        self.store.update_lifespans(dt)
        self.step_count += 1
        self.last_step_ms = (time.perf_counter() - t_start) * 1000.0

    def run_steps(self, steps: int, step_ms: float) -> None:
        for _ in range(int(steps)):
            self.step(step_ms * 0.001)

    def load_state(self, particles: ParticleState, rules: Mapping[str, Any]) -> None:
        self.store.deserialize(particles)
        self.rules.deserialize(rules)

    def apply_params(self, params: EngineParams) -> bool:
        """
        Switch to ``params``; returns True when the change forced a reset.

        Integrator, spatial and global-force keys are applied live; clock keys
        are left to the registered params listeners.
        """
        params = params.clamp()
        old = asdict(self.params)
        changed = {k for k, v in asdict(params).items() if old.get(k) != v}
        self.params = params
        if not changed:
            return False
        self.params_revision += 1
        reset = any(is_reset_required(k) for k in changed)
        if reset:
            if self.store.max_particles != params.max_particles or self.store.type_count != params.type_count:
                self.store = ParticleStore(params.max_particles, type_count=params.type_count)
            self.reset()
            log.info("[sim] reset after changing %s", ", ".join(sorted(changed)))
        else:
            self._apply_live(params, changed)
        for listener in list(self._params_listeners):
            listener(params, changed)
        return reset

    def _apply_live(self, params: EngineParams, changed: set[str]) -> None:
        if any(is_integrator_related(k) for k in changed):
            self.integrator.set_options(integrator_options(params))
        if any(is_spatial_related(k) for k in changed):
            self.quadtree = Quadtree(
                self.bounds, capacity=params.quadtree_capacity, max_depth=params.quadtree_max_depth
            )
        if any(is_global_force_related(k) for k in changed):
            self.global_forces = global_forces(params)

    def validate_state(self) -> list[str]:
        issues: list[str] = []
        store = self.store
        idx = store.active_indices()
        finite = np.isfinite(store.positions[idx]).all(axis=1) & np.isfinite(store.velocities[idx]).all(axis=1)
        for i in idx[~finite]:
            issues.append(f"particle {int(i)} has non-finite position/velocity")
        for i in idx[store.masses[idx] <= 0.0]:
            issues.append(f"particle {int(i)} has non-positive mass")
        for i in idx[store.types[idx] >= store.type_count]:
            issues.append(f"particle {int(i)} has out-of-range type")

        if self.params.boundary in {"reflect", "absorb"}:
            b = self.bounds
            eps = 1e-3
            pos = store.positions[idx].astype(np.float64)
            outside = (
                (pos[:, 0] < b.x - eps)
                | (pos[:, 0] > b.x + b.width + eps)
                | (pos[:, 1] < b.y - eps)
                | (pos[:, 1] > b.y + b.height + eps)
            )
            for i in idx[outside & finite]:
                issues.append(f"particle {int(i)} out of world bounds")

        if store.count > store.max_particles:
            issues.append("count exceeds max_particles")
        free = store.free_indices
        if len(set(free)) != len(free):
            issues.append("free list has duplicates")
        if any(store.active[i] for i in free):
            issues.append("free list holds an active slot")
        return issues

    def kinetic_energy(self) -> float:
        return self.integrator.system_energy(self.store)

    def total_momentum(self) -> tuple[float, float]:
        idx = self.store.active_indices()
        p = self.store.velocities[idx].astype(np.float64) * self.store.masses[idx, None]
        total = p.sum(axis=0) if idx.size else np.zeros(2)
        return float(total[0]), float(total[1])

    def force_momentum(self) -> tuple[float, float]:
        """Sum of mass x acceleration; zero when every active rule is Newton-symmetric."""
        idx = self.store.active_indices()
        f = self.store.accelerations[idx].astype(np.float64) * self.store.masses[idx, None]
        total = f.sum(axis=0) if idx.size else np.zeros(2)
        return float(total[0]), float(total[1])

    def mean_speed(self) -> float:
        idx = self.store.active_indices()
        if idx.size == 0:
            return 0.0
        v = self.store.velocities[idx].astype(np.float64)
        return float(np.mean(np.sqrt(np.einsum("ij,ij->i", v, v))))
