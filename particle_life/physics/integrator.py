"""
Time integration and boundary handling.

``Integrator.integrate(store, dt)`` splits ``dt`` into ``sub_steps`` equal
slices. Each slice runs, in this order:

1. attract boundary: restoring acceleration from the pre-slice position
2. scheme advance (euler | verlet | rk4), then damping and velocity cap
3. constraints: ``constraint_iterations`` rounds of collision resolution
   (only when ``collisions`` is on)
4. reflect | wrap | absorb boundaries

Accelerations are read from the store and never written, so the force pass
result survives every sub-step. Verlet keeps ``prev_positions`` coherent:
any particle whose state was changed outside the scheme (creation, update,
reflection, wrap, collision, another scheme) gets ``prev = x - v * dt``
rebuilt before its next Verlet slice.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

import numpy as np

from particle_life.physics.quadtree import QuadPoint, Quadtree, Rect

if TYPE_CHECKING:
    from particle_life.core.particles import ParticleStore

SCHEMES = ("euler", "verlet", "rk4")
BOUNDARIES = ("none", "reflect", "wrap", "absorb", "attract")
COLLISION_MIN_DIST_SQ = 1e-4


@dataclass(slots=True)
class IntegratorOptions:
    scheme: str = "verlet"
    boundary: str = "none"
    damping: float = 0.999
    elasticity: float = 0.8
    sub_steps: int = 1
    constraint_iterations: int = 1
    max_velocity: float = 1000.0  # <= 0 disables the cap
    boundary_strength: float = 0.1
    collisions: bool = False

    def normalized(self) -> "IntegratorOptions":
        scheme = str(self.scheme).strip().lower()
        boundary = str(self.boundary).strip().lower()
        if boundary == "infinite":
            boundary = "none"
        return replace(
            self,
            scheme=scheme if scheme in SCHEMES else "verlet",
            boundary=boundary if boundary in BOUNDARIES else "none",
            damping=min(1.0, max(1e-6, float(self.damping))),
            elasticity=min(1.0, max(0.0, float(self.elasticity))),
            sub_steps=max(1, int(self.sub_steps)),
            constraint_iterations=max(0, int(self.constraint_iterations)),
            max_velocity=float(self.max_velocity),
            boundary_strength=max(0.0, float(self.boundary_strength)),
            collisions=bool(self.collisions),
        )


class Integrator:
    def __init__(self, bounds: Rect, options: IntegratorOptions | None = None) -> None:
        self.bounds = bounds
        self.options = (options or IntegratorOptions()).normalized()
        self.last_integration_ms: float | None = None
        self.collisions_resolved = 0
        self.removed_last_step = 0
        self._verlet_dt: float | None = None

    def set_bounds(self, bounds: Rect) -> "Integrator":
        self.bounds = bounds
        return self

    def set_options(self, options: IntegratorOptions) -> "Integrator":
        self.options = options.normalized()
        return self

    def integrate(self, store: "ParticleStore", dt: float) -> int:
        """
        Advance every active particle by ``dt`` seconds.

        Returns the number of particles removed by an absorb boundary.
        """
        t0 = time.perf_counter()
        opts = self.options
        sub_dt = dt / opts.sub_steps
        self.collisions_resolved = 0
        removed = 0
        if sub_dt > 0.0:
            for _ in range(opts.sub_steps):
                idx = store.active_indices()
                if idx.size == 0:
                    break
                extra = self._attract_acceleration(store, idx)
                if opts.scheme == "euler":
                    self._euler(store, idx, sub_dt, extra)
                elif opts.scheme == "rk4":
                    self._rk4(store, idx, sub_dt, extra)
                else:
                    self._verlet(store, idx, sub_dt, extra)
                if opts.collisions:
                    for _ in range(opts.constraint_iterations):
                        self.collisions_resolved += self._resolve_collisions(store)
                removed += self._apply_boundaries(store)
        self.removed_last_step = removed
        self.last_integration_ms = (time.perf_counter() - t0) * 1000.0
        return removed

    def _cap(self, vel: np.ndarray) -> np.ndarray:
        """Scale rows of ``vel`` above max_velocity back onto it; returns the capped-row mask."""
        vmax = self.options.max_velocity
        if vmax <= 0.0:
            return np.zeros(vel.shape[0], dtype=bool)
        speed2 = np.einsum("ij,ij->i", vel, vel)
        fast = speed2 > vmax * vmax
        if np.any(fast):
            vel[fast] *= (vmax / np.sqrt(speed2[fast]))[:, None]
        return fast

    def _euler(self, store: "ParticleStore", idx: np.ndarray, dt: float, extra: np.ndarray | None) -> None:
        acc = store.accelerations[idx].astype(np.float64)
        if extra is not None:
            acc += extra
        vel = store.velocities[idx].astype(np.float64)
        vel += acc * dt
        vel *= self.options.damping
        self._cap(vel)
        pos = store.positions[idx].astype(np.float64) + vel * dt
        store.velocities[idx] = vel
        store.positions[idx] = pos
        store.prev_valid[idx] = False

    def _rk4(self, store: "ParticleStore", idx: np.ndarray, dt: float, extra: np.ndarray | None) -> None:
        # Acceleration is held constant across the four stages.
        acc = store.accelerations[idx].astype(np.float64)
        if extra is not None:
            acc += extra
        vel = store.velocities[idx].astype(np.float64)
        pos = store.positions[idx].astype(np.float64)

        dv = acc * dt
        k1p = vel * dt
        k2p = (vel + dv * 0.5) * dt
        k3p = (vel + dv * 0.5) * dt
        k4p = (vel + dv) * dt
        pos += (k1p + 2.0 * k2p + 2.0 * k3p + k4p) / 6.0

        vel += dv
        vel *= self.options.damping
        self._cap(vel)
        store.velocities[idx] = vel
        store.positions[idx] = pos
        store.prev_valid[idx] = False

    def _verlet(self, store: "ParticleStore", idx: np.ndarray, dt: float, extra: np.ndarray | None) -> None:
        if self._verlet_dt is None or abs(self._verlet_dt - dt) > 1e-12:
            store.prev_valid[: store.count] = False
            self._verlet_dt = dt

        pos = store.positions[idx].astype(np.float64)
        vel = store.velocities[idx].astype(np.float64)
        prev = store.prev_positions[idx].astype(np.float64)
        stale = ~store.prev_valid[idx]
        if np.any(stale):
            prev[stale] = pos[stale] - vel[stale] * dt

        acc = store.accelerations[idx].astype(np.float64)
        if extra is not None:
            acc += extra

        new = 2.0 * pos - prev + acc * (dt * dt)
        new = pos + (new - pos) * self.options.damping
        vel = (new - pos) / dt
        fast = self._cap(vel)
        if np.any(fast):
            new[fast] = pos[fast] + vel[fast] * dt

        store.prev_positions[idx] = pos
        store.positions[idx] = new
        store.velocities[idx] = vel
        store.prev_valid[idx] = True

    def _margins(self, store: "ParticleStore", idx: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        b = self.bounds
        margin = store.sizes[idx].astype(np.float64)
        return b.x + margin, b.x + b.width - margin, b.y + margin, b.y + b.height - margin

    def _attract_acceleration(self, store: "ParticleStore", idx: np.ndarray) -> np.ndarray | None:
        if self.options.boundary != "attract":
            return None
        k = self.options.boundary_strength
        pos = store.positions[idx].astype(np.float64)
        left, right, top, bottom = self._margins(store, idx)
        extra = np.zeros_like(pos)
        x = pos[:, 0]
        y = pos[:, 1]
        extra[:, 0] = np.where(x < left, k * (left - x), np.where(x > right, -k * (x - right), 0.0))
        extra[:, 1] = np.where(y < top, k * (top - y), np.where(y > bottom, -k * (y - bottom), 0.0))
        return extra

    def _apply_boundaries(self, store: "ParticleStore") -> int:
        mode = self.options.boundary
        if mode in ("none", "attract"):
            return 0
        idx = store.active_indices()
        if idx.size == 0:
            return 0
        b = self.bounds
        pos = store.positions[idx].astype(np.float64)
        x = pos[:, 0]
        y = pos[:, 1]

        if mode == "absorb":
            out = (x < b.x) | (x > b.x + b.width) | (y < b.y) | (y > b.y + b.height)
            removed = 0
            for i in idx[out]:
                if store.remove(int(i)):
                    removed += 1
            return removed

        vel = store.velocities[idx].astype(np.float64)
        if mode == "reflect":
            e = self.options.elasticity
            left, right, top, bottom = self._margins(store, idx)
            lo_x = x < left
            hi_x = ~lo_x & (x > right)
            lo_y = y < top
            hi_y = ~lo_y & (y > bottom)
            x[lo_x] = left[lo_x] + (left[lo_x] - x[lo_x]) * e
            x[hi_x] = right[hi_x] - (x[hi_x] - right[hi_x]) * e
            y[lo_y] = top[lo_y] + (top[lo_y] - y[lo_y]) * e
            y[hi_y] = bottom[hi_y] - (y[hi_y] - bottom[hi_y]) * e
            hit_x = lo_x | hi_x
            hit_y = lo_y | hi_y
            vel[hit_x, 0] *= -e
            vel[hit_y, 1] *= -e
            touched = hit_x | hit_y
        else:
            margin = store.sizes[idx].astype(np.float64)
            lo_x = x < b.x
            hi_x = x > b.x + b.width
            lo_y = y < b.y
            hi_y = y > b.y + b.height
            x[lo_x] = b.x + b.width - margin[lo_x]
            x[hi_x] = b.x + margin[hi_x]
            y[lo_y] = b.y + b.height - margin[lo_y]
            y[hi_y] = b.y + margin[hi_y]
            touched = lo_x | hi_x | lo_y | hi_y

        if np.any(touched):
            hits = idx[touched]
            store.positions[hits] = pos[touched]
            store.velocities[hits] = vel[touched]
            store.prev_valid[hits] = False
        return 0

    def _resolve_collisions(self, store: "ParticleStore") -> int:
        """Separate overlapping discs and exchange normal momentum; returns pairs resolved."""
        idx = store.active_indices()
        if idx.size < 2:
            return 0
        n = store.count
        xs = store.positions[:n, 0].astype(np.float64).tolist()
        ys = store.positions[:n, 1].astype(np.float64).tolist()
        vxs = store.velocities[:n, 0].astype(np.float64).tolist()
        vys = store.velocities[:n, 1].astype(np.float64).tolist()
        sizes = store.sizes[:n].tolist()
        masses = store.masses[:n].tolist()
        e = self.options.elasticity

        pos = store.positions[idx]
        lo = pos.min(axis=0).astype(np.float64)
        hi = pos.max(axis=0).astype(np.float64)
        tree = Quadtree(Rect(float(lo[0]), float(lo[1]), float(hi[0] - lo[0]) + 1.0, float(hi[1] - lo[1]) + 1.0))
        for i in idx.tolist():
            tree.insert(QuadPoint(i, xs[i], ys[i]))
        max_size = float(store.sizes[idx].max())

        resolved = 0
        touched: set[int] = set()
        for i in idx.tolist():
            ri = sizes[i]
            reach = ri + max_size
            for p in tree.query(Rect(xs[i] - reach, ys[i] - reach, 2.0 * reach, 2.0 * reach)):
                j = p.index
                if j <= i:
                    continue
                dx = xs[j] - xs[i]
                dy = ys[j] - ys[i]
                dist_sq = dx * dx + dy * dy
                contact = ri + sizes[j]
                if dist_sq >= contact * contact or dist_sq <= COLLISION_MIN_DIST_SQ:
                    continue
                dist = math.sqrt(dist_sq)
                overlap = contact - dist
                nx = dx / dist
                ny = dy / dist
                mi = masses[i]
                mj = masses[j]
                total = mi + mj
                share_i = mj / total
                share_j = mi / total
                xs[i] -= nx * overlap * share_i
                ys[i] -= ny * overlap * share_i
                xs[j] += nx * overlap * share_j
                ys[j] += ny * overlap * share_j
                touched.add(i)
                touched.add(j)
                resolved += 1

                vni = vxs[i] * nx + vys[i] * ny
                vnj = vxs[j] * nx + vys[j] * ny
                if vni - vnj <= 0.0:
                    continue
                new_i = (vni * (mi - mj) + 2.0 * mj * vnj) / total
                new_j = (vnj * (mj - mi) + 2.0 * mi * vni) / total
                di = (new_i - vni) * e
                dj = (new_j - vnj) * e
                vxs[i] += di * nx
                vys[i] += di * ny
                vxs[j] += dj * nx
                vys[j] += dj * ny

        if touched:
            hits = np.fromiter(sorted(touched), dtype=np.int64)
            store.positions[hits, 0] = np.take(xs, hits)
            store.positions[hits, 1] = np.take(ys, hits)
            store.velocities[hits, 0] = np.take(vxs, hits)
            store.velocities[hits, 1] = np.take(vys, hits)
            store.prev_valid[hits] = False
        return resolved

    def system_energy(self, store: "ParticleStore") -> float:
        """Total kinetic energy of the active particles."""
        return store.kinetic_energy()
