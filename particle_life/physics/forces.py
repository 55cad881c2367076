"""
Force solvers for typed particle interactions.

Two backends share the same per-pair policy:
- Quadtree: neighbours come from the spatial index (production path)
- Direct: O(N^2) scan over all active particles (reference for tests and benchmarks)

Per pair (i, j) the source particle ``i`` always receives
``force * unit(i -> j) / m_i``. The neighbour ``j`` receives the opposite
force scaled by the rule's ``asymmetry`` (0 = nothing, 1 = Newton's third
law). Source particles are processed in index order, so results are
deterministic for a fixed neighbour ordering.

Global forces (gravity, drag, central attraction, vortex) and local impulses
are separate additive passes applied after the pairwise pass.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable

import numpy as np

from particle_life.core.rules import evaluate_falloff
from particle_life.physics.quadtree import Circle

if TYPE_CHECKING:
    from particle_life.core.particles import ParticleStore
    from particle_life.core.rules import InteractionRuleTable
    from particle_life.physics.quadtree import Quadtree

MIN_DIST_SQ = 1e-4
MIN_FORCE = 1e-4


class ForceSolver:
    """
    Base pairwise solver.

    Subclasses only decide which neighbours are visited for a source particle.
    """

    def __init__(self, rules: "InteractionRuleTable") -> None:
        self.rules = rules
        self.last_calculation_ms: float | None = None
        self.particle_interactions = 0
        self.forces_calculated = 0

    def set_rules(self, rules: "InteractionRuleTable") -> None:
        self.rules = rules

    def _neighbours(self, i: int, x: float, y: float, radius: float) -> Iterable[int]:
        raise NotImplementedError

    def _prepare(self, store: "ParticleStore", index: "Quadtree | None") -> None:
        pass

    def solve(self, store: "ParticleStore", index: "Quadtree | None", dt: float) -> int:
        """
        Recompute every particle's acceleration from pairwise interactions.

        Returns the number of pairs that produced a non-negligible force.
        """
        t0 = time.perf_counter()
        rules = self.rules
        n = store.count
        self.particle_interactions = 0
        self.forces_calculated = 0

        store.accelerations.fill(0.0)
        if n == 0:
            self.last_calculation_ms = (time.perf_counter() - t0) * 1000.0
            return 0

        self._prepare(store, index)
        xs = store.positions[:n, 0].tolist()
        ys = store.positions[:n, 1].tolist()
        masses = store.masses[:n].tolist()
        types = store.types[:n].tolist()
        active = store.active[:n].tolist()
        ax = [0.0] * n
        ay = [0.0] * n

        interactions = 0
        calculated = 0
        for i in range(n):
            if not active[i]:
                continue
            ti = types[i]
            if not rules.has_any_interaction(ti):
                continue
            max_distance = rules.get_max_interaction_distance(ti)
            if max_distance <= 0.0:
                continue

            xi = xs[i]
            yi = ys[i]
            mi = masses[i]
            for j in self._neighbours(i, xi, yi, max_distance):
                if j == i or j >= n or not active[j]:
                    continue
                interactions += 1
                rule = rules.get_rule(ti, types[j])
                if rule is None or not rule.active:
                    continue
                dx = xs[j] - xi
                dy = ys[j] - yi
                dist_sq = dx * dx + dy * dy
                if dist_sq < MIN_DIST_SQ:
                    continue
                dist = math.sqrt(dist_sq)
                if dist > rule.activation_distance:
                    continue
                force = evaluate_falloff(rule, dist)
                if abs(force) < MIN_FORCE:
                    continue
                calculated += 1

                fx = dx / dist * force
                fy = dy / dist * force
                ax[i] += fx / mi
                ay[i] += fy / mi
                if rule.asymmetry > 0.0:
                    mj = masses[j]
                    ax[j] -= fx / mj * rule.asymmetry
                    ay[j] -= fy / mj * rule.asymmetry

        store.accelerations[:n, 0] = ax
        store.accelerations[:n, 1] = ay
        self.particle_interactions = interactions
        self.forces_calculated = calculated
        self.last_calculation_ms = (time.perf_counter() - t0) * 1000.0
        return calculated

    def metrics(self) -> dict[str, float | int | None]:
        ms = self.last_calculation_ms
        return {
            "calculation_ms": ms,
            "particle_interactions": self.particle_interactions,
            "forces_calculated": self.forces_calculated,
            "interactions_per_ms": (self.particle_interactions / ms) if ms else 0.0,
        }


class QuadtreeForceSolver(ForceSolver):
    def __init__(self, rules: "InteractionRuleTable") -> None:
        super().__init__(rules)
        self._index: "Quadtree | None" = None

    def _prepare(self, store: "ParticleStore", index: "Quadtree | None") -> None:
        if index is None:
            raise ValueError("QuadtreeForceSolver needs a spatial index")
        self._index = index

    def _neighbours(self, i: int, x: float, y: float, radius: float) -> Iterable[int]:
        assert self._index is not None
        return [p.index for p in self._index.query(Circle(x, y, radius))]


class DirectForceSolver(ForceSolver):
    """O(N^2) reference: visits every active particle within the radius in index order."""

    def __init__(self, rules: "InteractionRuleTable") -> None:
        super().__init__(rules)
        self._pos: np.ndarray | None = None
        self._ids: np.ndarray | None = None

    def _prepare(self, store: "ParticleStore", index: "Quadtree | None") -> None:
        self._ids = store.active_indices()
        self._pos = store.positions[self._ids].astype(np.float64)

    def _neighbours(self, i: int, x: float, y: float, radius: float) -> Iterable[int]:
        assert self._pos is not None and self._ids is not None
        d = self._pos - (x, y)
        mask = np.einsum("ij,ij->i", d, d) <= radius * radius
        return self._ids[mask].tolist()


@dataclass(slots=True)
class PointForce:
    x: float
    y: float
    strength: float


@dataclass(slots=True)
class GlobalForces:
    """Field-wide forces; a ``None`` field is switched off."""

    gravity: tuple[float, float] | None = None
    drag: float | None = None
    central: PointForce | None = None
    vortex: PointForce | None = None

    def any_enabled(self) -> bool:
        return any(f is not None for f in (self.gravity, self.drag, self.central, self.vortex))


@dataclass(slots=True)
class LocalForce:
    """
    Impulse inside a circle, fading linearly to zero at ``radius``.

    Pushes along ``direction`` when given, otherwise radially (outward for a
    positive ``strength``).
    """

    x: float
    y: float
    radius: float
    strength: float
    direction: tuple[float, float] | None = None


def apply_global_forces(store: "ParticleStore", forces: GlobalForces) -> None:
    idx = store.active_indices()
    if idx.size == 0 or not forces.any_enabled():
        return
    pos = store.positions[idx].astype(np.float64)
    acc = store.accelerations[idx].astype(np.float64)
    mass = store.masses[idx].astype(np.float64)

    if forces.gravity is not None:
        acc += forces.gravity

    if forces.drag:
        vel = store.velocities[idx].astype(np.float64)
        acc -= vel * (forces.drag / mass)[:, None]

    if forces.central is not None:
        d = np.array((forces.central.x, forces.central.y)) - pos
        d2 = np.einsum("ij,ij->i", d, d)
        ok = d2 > MIN_DIST_SQ
        dist = np.sqrt(d2[ok])
        mag = forces.central.strength / (d2[ok] * mass[ok])
        acc[ok] += d[ok] / dist[:, None] * mag[:, None]

    if forces.vortex is not None:
        d = pos - (forces.vortex.x, forces.vortex.y)
        d2 = np.einsum("ij,ij->i", d, d)
        ok = d2 > MIN_DIST_SQ
        dist = np.sqrt(d2[ok])
        mag = forces.vortex.strength / (dist * mass[ok])
        perp = np.stack((-d[ok, 1], d[ok, 0]), axis=1)
        acc[ok] += perp / dist[:, None] * mag[:, None]

    store.accelerations[idx] = acc


def apply_local_force(store: "ParticleStore", force: LocalForce) -> int:
    idx = store.active_indices()
    if idx.size == 0 or force.radius <= 0.0:
        return 0
    d = store.positions[idx].astype(np.float64) - (force.x, force.y)
    d2 = np.einsum("ij,ij->i", d, d)
    inside = d2 <= force.radius * force.radius
    hits = idx[inside]
    if hits.size == 0:
        return 0
    d = d[inside]
    d2 = d2[inside]
    dist = np.sqrt(d2)
    far = d2 > MIN_DIST_SQ

    mag = force.strength / store.masses[hits].astype(np.float64)
    mag = np.where(far, mag * (1.0 - dist / force.radius), mag)

    acc = store.accelerations[hits].astype(np.float64)
    if force.direction is not None:
        dx, dy = force.direction
        length = math.hypot(dx, dy)
        if length > MIN_DIST_SQ:
            acc += np.outer(mag, (dx / length, dy / length))
    else:
        unit = np.zeros_like(d)
        unit[far] = d[far] / dist[far, None]
        acc += unit * mag[:, None]
    store.accelerations[hits] = acc
    return int(hits.size)
