"""
Type-by-type interaction rules.

The table holds one ``InteractionRule`` per ordered type pair ``(a, b)``: the
force that a particle of type ``a`` feels from a neighbour of type ``b``.
``asymmetry`` controls how much of the opposite force the neighbour receives
(0 = one-way, 1 = Newton's third law), so the same table can express both
predator/prey chases and ordinary mutual attraction.

Rules live in a flat list indexed ``a * type_count + b``. A per-type maximum
activation distance is cached and rebuilt lazily after any mutation; the
force solver sizes its neighbour query with it.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Iterable, Mapping

log = logging.getLogger("particle_life")

FALLOFF_INVERSE_SQUARE = "inverse_square"
FALLOFF_LINEAR = "linear"
FALLOFF_CONSTANT = "constant"
FALLOFF_EXPONENTIAL = "exponential"
FALLOFF_SIGMOID = "sigmoid"
FALLOFFS = (
    FALLOFF_INVERSE_SQUARE,
    FALLOFF_LINEAR,
    FALLOFF_CONSTANT,
    FALLOFF_EXPONENTIAL,
    FALLOFF_SIGMOID,
)

ACTIVE_EPSILON = 1e-4
MIN_DISTANCE_FLOOR = 0.1
# User rules are one-way unless asked otherwise; presets set it explicitly.
DEFAULT_ASYMMETRY = 0.0


@dataclass(frozen=True, slots=True)
class InteractionRule:
    attraction_strength: float = 0.0
    repulsion_strength: float = 0.0
    activation_distance: float = 100.0
    min_distance: float = 1.0
    force_falloff: str = FALLOFF_INVERSE_SQUARE
    asymmetry: float = DEFAULT_ASYMMETRY
    active: bool = False


def make_default_rule() -> InteractionRule:
    return InteractionRule()


@dataclass(slots=True)
class RuleUpdate:
    """Partial rule: ``None`` fields keep the current value."""

    attraction_strength: float | None = None
    repulsion_strength: float | None = None
    activation_distance: float | None = None
    min_distance: float | None = None
    force_falloff: str | None = None
    asymmetry: float | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RuleUpdate":
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(slots=True)
class RuleSpec:
    type_a: int
    type_b: int
    update: RuleUpdate
    symmetric: bool = False


def _merge(rule: InteractionRule, update: RuleUpdate) -> InteractionRule:
    changes: dict[str, Any] = {}
    for f in fields(RuleUpdate):
        value = getattr(update, f.name)
        if value is not None:
            changes[f.name] = value
    merged = replace(rule, **changes)
    attraction = float(merged.attraction_strength)
    repulsion = float(merged.repulsion_strength)
    return replace(
        merged,
        attraction_strength=attraction,
        repulsion_strength=repulsion,
        activation_distance=max(0.0, float(merged.activation_distance)),
        min_distance=max(MIN_DISTANCE_FLOOR, float(merged.min_distance)),
        force_falloff=str(merged.force_falloff),
        asymmetry=min(1.0, max(0.0, float(merged.asymmetry))),
        active=abs(attraction) > ACTIVE_EPSILON or abs(repulsion) > ACTIVE_EPSILON,
    )


class InteractionRuleTable:
    def __init__(self, type_count: int) -> None:
        if int(type_count) <= 0:
            raise ValueError(f"type_count must be positive, got {type_count}")
        self.type_count = int(type_count)
        self.revision = 0
        self._rules: list[InteractionRule] = []
        self._has_interaction: list[bool] = []
        self._max_distance: list[float] = []
        self.cache_valid = False
        self.reset()

    def reset(self, type_count: int | None = None) -> None:
        if type_count is not None:
            if int(type_count) <= 0:
                raise ValueError(f"type_count must be positive, got {type_count}")
            self.type_count = int(type_count)
        n = self.type_count
        self._rules = [make_default_rule() for _ in range(n * n)]
        self._has_interaction = [False] * (n * n)
        self._max_distance = [0.0] * n
        self.cache_valid = False
        self.revision += 1

    def _valid_type(self, t: int) -> bool:
        return 0 <= t < self.type_count

    def set_rule(self, type_a: int, type_b: int, update: RuleUpdate, *, symmetric: bool = False) -> bool:
        if not (self._valid_type(type_a) and self._valid_type(type_b)):
            log.error("[rules] invalid type indices: %s, %s", type_a, type_b)
            return False

        k = type_a * self.type_count + type_b
        rule = _merge(self._rules[k], update)
        self._rules[k] = rule
        self._has_interaction[k] = rule.active
        self.cache_valid = False
        self.revision += 1

        if symmetric and type_a != type_b:
            mirror = replace(update, asymmetry=rule.asymmetry)
            self.set_rule(type_b, type_a, mirror, symmetric=False)
        return True

    def get_rule(self, type_a: int, type_b: int) -> InteractionRule | None:
        if not (self._valid_type(type_a) and self._valid_type(type_b)):
            return None
        return self._rules[type_a * self.type_count + type_b]

    def has_interaction(self, type_a: int, type_b: int) -> bool:
        if not (self._valid_type(type_a) and self._valid_type(type_b)):
            return False
        return self._has_interaction[type_a * self.type_count + type_b]

    def has_any_interaction(self, type_a: int) -> bool:
        if not self._valid_type(type_a):
            return False
        start = type_a * self.type_count
        return any(self._has_interaction[start : start + self.type_count])

    def calculate_force(self, type_a: int, type_b: int, distance: float) -> float:
        if not (self._valid_type(type_a) and self._valid_type(type_b)):
            return 0.0
        rule = self._rules[type_a * self.type_count + type_b]
        if not rule.active or distance > rule.activation_distance:
            return 0.0
        return evaluate_falloff(rule, distance)

    def get_max_interaction_distance(self, type_a: int) -> float:
        if not self._valid_type(type_a):
            return 0.0
        if not self.cache_valid:
            self._rebuild_max_distance()
        return self._max_distance[type_a]

    def _rebuild_max_distance(self) -> None:
        n = self.type_count
        out = [0.0] * n
        for a in range(n):
            row = self._rules[a * n : (a + 1) * n]
            for rule in row:
                if rule.active and rule.activation_distance > out[a]:
                    out[a] = rule.activation_distance
        self._max_distance = out
        self.cache_valid = True

    def apply_preset(self, name: str) -> bool:
        from particle_life.core.presets import PRESETS, resolve_preset_name

        key = resolve_preset_name(name)
        if key is None:
            log.error("[rules] unknown preset: %s", name)
            return False
        self.reset()
        for spec in PRESETS[key](self.type_count):
            self.set_rule(spec.type_a, spec.type_b, spec.update, symmetric=spec.symmetric)
        return True

    def create_custom_preset(self, rules: Iterable[RuleSpec | Mapping[str, Any]]) -> bool:
        """Reset the table and apply ``rules``; entries without type indices are skipped."""
        self.reset()
        for entry in rules:
            if isinstance(entry, RuleSpec):
                spec = entry
            else:
                if entry.get("type_a") is None or entry.get("type_b") is None:
                    log.error("[rules] rule missing type indices: %r", dict(entry))
                    continue
                spec = RuleSpec(
                    type_a=int(entry["type_a"]),
                    type_b=int(entry["type_b"]),
                    update=RuleUpdate.from_mapping(entry),
                    symmetric=bool(entry.get("symmetric", False)),
                )
            self.set_rule(spec.type_a, spec.type_b, spec.update, symmetric=spec.symmetric)
        return True

    def clone(self) -> "InteractionRuleTable":
        other = InteractionRuleTable(self.type_count)
        # Rules are immutable values, so sharing them between tables is safe.
        other._rules = list(self._rules)
        other._has_interaction = list(self._has_interaction)
        other._max_distance = list(self._max_distance)
        other.cache_valid = self.cache_valid
        return other

    def serialize(self) -> dict[str, Any]:
        return {
            "type_count": self.type_count,
            "rules": [asdict(r) for r in self._rules],
        }

    def deserialize(self, data: Mapping[str, Any]) -> None:
        n = int(data["type_count"])
        raw = list(data["rules"])
        if len(raw) != n * n:
            raise ValueError(f"expected {n * n} rules for type_count={n}, got {len(raw)}")
        self.type_count = n
        self._rules = [_merge(make_default_rule(), RuleUpdate.from_mapping(r)) for r in raw]
        self._has_interaction = [r.active for r in self._rules]
        self._max_distance = [0.0] * n
        self.cache_valid = False
        self.revision += 1


def evaluate_falloff(rule: InteractionRule, distance: float) -> float:
    """Signed force magnitude for ``rule`` at ``distance`` (positive attracts)."""
    act = rule.activation_distance
    d = max(rule.min_distance, distance)
    a = rule.attraction_strength
    r = rule.repulsion_strength
    falloff = rule.force_falloff

    if falloff == FALLOFF_INVERSE_SQUARE:
        force = a / (d * d)
        if r > 0.0:
            force -= (r * (act / d) ** 2) / (d * d)
        return force
    if falloff == FALLOFF_CONSTANT:
        return a - r if r > 0.0 else a
    if act <= 0.0:
        return 0.0
    if falloff == FALLOFF_LINEAR:
        t = 1.0 - d / act
        force = a * t
        if r > 0.0:
            force -= r * t
        return force
    if falloff == FALLOFF_EXPONENTIAL:
        force = a * math.exp(-d / (act * 0.5))
        if r > 0.0:
            force -= r * math.exp(-d / (act * 0.2))
        return force
    if falloff == FALLOFF_SIGMOID:
        n = d / act
        force = a / (1.0 + math.exp(10.0 * (n - 0.5)))
        if r > 0.0:
            force -= r / (1.0 + math.exp(15.0 * (n - 0.3)))
        return force

    force = a / (d * d)
    if r > 0.0:
        force -= r / (d * d)
    return force
