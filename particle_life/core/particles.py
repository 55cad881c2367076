"""
Struct-of-arrays particle storage.

Every particle is a row across parallel numpy arrays indexed ``0..max_particles``.
Slots are recycled through a LIFO free list; ``count`` is the high-water mark
of slots ever handed out, not the number of live particles.

Example:
    >>> store = ParticleStore(2)
    >>> store.create(ParticleParams(x=1.0, y=2.0))
    0
    >>> store.create(ParticleParams())
    1
    >>> store.create(ParticleParams())
    -1
    >>> store.remove(0)
    True
    >>> store.create(ParticleParams())
    0
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

import numpy as np

log = logging.getLogger("particle_life")

NO_SLOT = -1
PROPERTY_COUNT = 4
MAX_TYPE_COUNT = 256

DEFAULT_MASS = 1.0
DEFAULT_SIZE = 5.0
DEFAULT_TYPE = 0
DEFAULT_LIFESPAN = math.inf


@dataclass(slots=True)
class ParticleParams:
    """Creation parameters; ``None`` fields take the store defaults."""

    x: float = 0.0
    y: float = 0.0
    vx: float = 0.0
    vy: float = 0.0
    mass: float | None = None
    size: float | None = None
    type: int | None = None
    lifespan: float | None = None
    properties: Sequence[float] | None = None


@dataclass(slots=True)
class ParticleUpdate:
    """Partial update: only fields that are not ``None`` are written."""

    x: float | None = None
    y: float | None = None
    vx: float | None = None
    vy: float | None = None
    mass: float | None = None
    size: float | None = None
    type: int | None = None
    lifespan: float | None = None
    properties: Sequence[float] | None = None


@dataclass(frozen=True, slots=True)
class ParticleSnapshot:
    index: int
    x: float
    y: float
    vx: float
    vy: float
    ax: float
    ay: float
    mass: float
    size: float
    type: int
    lifespan: float
    properties: tuple[float, float, float, float]


@dataclass(slots=True)
class ParticleState:
    """Field-for-field copy of a store, used to hand state across the worker boundary."""

    max_particles: int
    type_count: int
    count: int
    free_indices: list[int]
    positions: np.ndarray
    velocities: np.ndarray
    accelerations: np.ndarray
    masses: np.ndarray
    sizes: np.ndarray
    types: np.ndarray
    active: np.ndarray
    lifespans: np.ndarray
    properties: np.ndarray
    prev_positions: np.ndarray
    prev_valid: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=bool))


_ARRAY_FIELDS = (
    "positions",
    "velocities",
    "accelerations",
    "masses",
    "sizes",
    "types",
    "active",
    "lifespans",
    "properties",
    "prev_positions",
    "prev_valid",
)


class ParticleStore:
    def __init__(self, max_particles: int, *, type_count: int = MAX_TYPE_COUNT) -> None:
        if int(max_particles) <= 0:
            raise ValueError(f"max_particles must be positive, got {max_particles}")
        if not (0 < int(type_count) <= MAX_TYPE_COUNT):
            raise ValueError(f"type_count must be in 1..{MAX_TYPE_COUNT}, got {type_count}")
        self.max_particles = int(max_particles)
        self.type_count = int(type_count)
        self.count = 0
        self.free_indices: list[int] = []
        self.revision = 0
        self.detached = False
        self.last_create_ms: float | None = None
        self.last_lifespan_ms: float | None = None
        self._allocate(self.max_particles)

    def _allocate(self, n: int) -> None:
        self.positions = np.zeros((n, 2), dtype=np.float32)
        self.velocities = np.zeros((n, 2), dtype=np.float32)
        self.accelerations = np.zeros((n, 2), dtype=np.float32)
        self.masses = np.zeros(n, dtype=np.float32)
        self.sizes = np.zeros(n, dtype=np.float32)
        self.types = np.zeros(n, dtype=np.uint8)
        self.active = np.zeros(n, dtype=bool)
        self.lifespans = np.zeros(n, dtype=np.float32)
        self.properties = np.zeros((n, PROPERTY_COUNT), dtype=np.float32)
        self.prev_positions = np.zeros((n, 2), dtype=np.float32)
        self.prev_valid = np.zeros(n, dtype=bool)

    def _writable(self, op: str) -> bool:
        if self.detached:
            log.debug("[particles] %s ignored: store is detached for an offloaded batch", op)
            return False
        return True

    def _valid(self, index: int) -> bool:
        return 0 <= index < self.max_particles and bool(self.active[index])

    def _check_mass(self, mass: float) -> float:
        mass = float(mass)
        if not mass > 0.0:
            raise ValueError(f"particle mass must be > 0, got {mass}")
        return mass

    def _check_type(self, ptype: int) -> int:
        ptype = int(ptype)
        if not (0 <= ptype < self.type_count):
            raise ValueError(f"particle type must be in 0..{self.type_count - 1}, got {ptype}")
        return ptype

    def reset(self, max_particles: int | None = None) -> None:
        """Clear every slot; reallocates when the capacity changes."""
        if max_particles is not None and int(max_particles) <= 0:
            raise ValueError(f"max_particles must be positive, got {max_particles}")
        n = self.max_particles if max_particles is None else int(max_particles)
        if n != self.max_particles:
            self.max_particles = n
            self._allocate(n)
        else:
            for name in _ARRAY_FIELDS:
                getattr(self, name).fill(0)
        self.count = 0
        self.free_indices = []
        self.detached = False
        self.revision += 1

    def detach(self) -> None:
        self.detached = True

    def attach(self) -> None:
        self.detached = False

    def create(self, params: ParticleParams | None = None) -> int:
        if not self._writable("create"):
            return NO_SLOT
        if self.count >= self.max_particles and not self.free_indices:
            log.warning("[particles] capacity reached (%d), particle not created", self.max_particles)
            return NO_SLOT

        p = params if params is not None else ParticleParams()
        mass = self._check_mass(DEFAULT_MASS if p.mass is None else p.mass)
        ptype = self._check_type(DEFAULT_TYPE if p.type is None else p.type)

        t0 = time.perf_counter()
        if self.free_indices:
            index = self.free_indices.pop()
        else:
            index = self.count
            self.count += 1

        self.positions[index] = (p.x, p.y)
        self.velocities[index] = (p.vx, p.vy)
        self.accelerations[index] = 0.0
        self.masses[index] = mass
        self.sizes[index] = DEFAULT_SIZE if p.size is None else float(p.size)
        self.types[index] = ptype
        self.active[index] = True
        self.lifespans[index] = DEFAULT_LIFESPAN if p.lifespan is None else float(p.lifespan)
        self.properties[index] = 0.0
        if p.properties is not None:
            values = list(p.properties)[:PROPERTY_COUNT]
            self.properties[index, : len(values)] = values
        # Rebuilt by the integrator once the step size is known.
        self.prev_positions[index] = self.positions[index]
        self.prev_valid[index] = False

        self.revision += 1
        self.last_create_ms = (time.perf_counter() - t0) * 1000.0
        return index

    def create_batch(
        self,
        n: int,
        generator: ParticleParams | Callable[[int, int], ParticleParams] | None = None,
    ) -> list[int]:
        indices: list[int] = []
        for i in range(int(n)):
            params = generator(i, n) if callable(generator) else generator
            index = self.create(params)
            if index == NO_SLOT:
                break
            indices.append(index)
        return indices

    def remove(self, index: int) -> bool:
        if not self._writable("remove"):
            return False
        if not self._valid(index):
            return False
        self.active[index] = False
        self.free_indices.append(int(index))
        self.revision += 1
        return True

    def update_particle(self, index: int, update: ParticleUpdate) -> bool:
        if not self._writable("update_particle"):
            return False
        if not self._valid(index):
            return False
        # Validate before touching any field so a rejected update changes nothing.
        mass = None if update.mass is None else self._check_mass(update.mass)
        ptype = None if update.type is None else self._check_type(update.type)
        moved = False
        if update.x is not None:
            self.positions[index, 0] = update.x
            moved = True
        if update.y is not None:
            self.positions[index, 1] = update.y
            moved = True
        if update.vx is not None:
            self.velocities[index, 0] = update.vx
            moved = True
        if update.vy is not None:
            self.velocities[index, 1] = update.vy
            moved = True
        if mass is not None:
            self.masses[index] = mass
        if update.size is not None:
            self.sizes[index] = update.size
        if ptype is not None:
            self.types[index] = ptype
        if update.lifespan is not None:
            self.lifespans[index] = update.lifespan
        if update.properties is not None:
            values = list(update.properties)[:PROPERTY_COUNT]
            self.properties[index, : len(values)] = values
        if moved:
            self.prev_valid[index] = False
        self.revision += 1
        return True

    def get_particle(self, index: int) -> ParticleSnapshot | None:
        if not self._valid(index):
            return None
        props = self.properties[index]
        return ParticleSnapshot(
            index=int(index),
            x=float(self.positions[index, 0]),
            y=float(self.positions[index, 1]),
            vx=float(self.velocities[index, 0]),
            vy=float(self.velocities[index, 1]),
            ax=float(self.accelerations[index, 0]),
            ay=float(self.accelerations[index, 1]),
            mass=float(self.masses[index]),
            size=float(self.sizes[index]),
            type=int(self.types[index]),
            lifespan=float(self.lifespans[index]),
            properties=(float(props[0]), float(props[1]), float(props[2]), float(props[3])),
        )

    def active_indices(self) -> np.ndarray:
        return np.flatnonzero(self.active[: self.count])

    def get_active_count(self) -> int:
        return int(np.count_nonzero(self.active[: self.count]))

    def remove_by_type(self, ptype: int) -> int:
        if not self._writable("remove_by_type"):
            return 0
        hits = np.flatnonzero(self.active[: self.count] & (self.types[: self.count] == ptype))
        for index in hits:
            self.remove(int(index))
        return int(hits.size)

    def _in_radius_mask(self, x: float, y: float, radius: float, type_filter: int | None) -> tuple[np.ndarray, np.ndarray]:
        n = self.count
        d = self.positions[:n].astype(np.float64) - (x, y)
        dist2 = np.einsum("ij,ij->i", d, d)
        mask = self.active[:n] & (dist2 <= radius * radius)
        if type_filter is not None:
            mask &= self.types[:n] == type_filter
        return mask, dist2

    def find_in_radius(self, x: float, y: float, radius: float, type_filter: int | None = None) -> list[int]:
        """Linear scan; meant for ad-hoc queries, not the force loop."""
        mask, _ = self._in_radius_mask(x, y, radius, type_filter)
        return [int(i) for i in np.flatnonzero(mask)]

    def apply_force(self, index: int, fx: float, fy: float) -> bool:
        if not self._writable("apply_force"):
            return False
        if not self._valid(index):
            return False
        m = float(self.masses[index])
        self.accelerations[index, 0] += fx / m
        self.accelerations[index, 1] += fy / m
        return True

    def apply_radial_force(
        self,
        x: float,
        y: float,
        radius: float,
        fx: float,
        fy: float,
        *,
        falloff: str = "linear",
        type_filter: int | None = None,
    ) -> int:
        """Apply ``(fx, fy)`` to every particle within ``radius``, scaled by falloff."""
        if not self._writable("apply_radial_force") or radius <= 0.0:
            return 0
        mask, dist2 = self._in_radius_mask(x, y, radius, type_filter)
        mask &= dist2 > 0.0
        hits = np.flatnonzero(mask)
        if hits.size == 0:
            return 0
        d2 = dist2[hits]
        if falloff == "linear":
            mult = 1.0 - np.sqrt(d2) / radius
        elif falloff == "quadratic":
            mult = 1.0 - d2 / (radius * radius)
        else:
            mult = np.ones_like(d2)
        inv_m = 1.0 / self.masses[hits].astype(np.float64)
        self.accelerations[hits, 0] += (fx * mult * inv_m).astype(np.float32)
        self.accelerations[hits, 1] += (fy * mult * inv_m).astype(np.float32)
        return int(hits.size)

    def update_lifespans(self, dt: float) -> int:
        if not self._writable("update_lifespans"):
            return 0
        t0 = time.perf_counter()
        n = self.count
        finite = self.active[:n] & np.isfinite(self.lifespans[:n])
        idx = np.flatnonzero(finite)
        removed = 0
        if idx.size:
            self.lifespans[idx] -= np.float32(dt)
            for index in idx[self.lifespans[idx] <= 0.0]:
                self.remove(int(index))
                removed += 1
        self.last_lifespan_ms = (time.perf_counter() - t0) * 1000.0
        return removed

    def serialize(self) -> ParticleState:
        return ParticleState(
            max_particles=self.max_particles,
            type_count=self.type_count,
            count=self.count,
            free_indices=list(self.free_indices),
            **{name: getattr(self, name).copy() for name in _ARRAY_FIELDS},
        )

    def deserialize(self, state: ParticleState) -> None:
        """Replace the whole store with ``state`` (arrays are copied in)."""
        self.max_particles = int(state.max_particles)
        self.type_count = int(state.type_count)
        self.count = int(state.count)
        self.free_indices = list(state.free_indices)
        for name in _ARRAY_FIELDS:
            setattr(self, name, np.array(getattr(state, name), copy=True))
        if self.prev_valid.shape[0] != self.max_particles:
            self.prev_valid = np.zeros(self.max_particles, dtype=bool)
        self.revision += 1

    def kinetic_energy(self) -> float:
        idx = self.active_indices()
        v = self.velocities[idx].astype(np.float64)
        return float(0.5 * np.sum(self.masses[idx] * np.einsum("ij,ij->i", v, v)))
