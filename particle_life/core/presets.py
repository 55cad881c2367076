"""
Named rule presets.

Each preset is a function ``(type_count) -> list[RuleSpec]``; the rule table
resets itself and applies the returned specs in order. Pairs that reference a
type outside ``type_count`` are left out.
"""

from __future__ import annotations

from typing import Callable

from particle_life.core.rules import (
    FALLOFF_EXPONENTIAL,
    FALLOFF_INVERSE_SQUARE,
    FALLOFF_LINEAR,
    FALLOFF_SIGMOID,
    RuleSpec,
    RuleUpdate,
)


def _rule(
    a: int,
    b: int,
    attraction: float,
    repulsion: float,
    activation: float,
    min_distance: float,
    falloff: str = FALLOFF_INVERSE_SQUARE,
    asymmetry: float = 1.0,
) -> RuleSpec:
    return RuleSpec(
        type_a=a,
        type_b=b,
        update=RuleUpdate(
            attraction_strength=attraction,
            repulsion_strength=repulsion,
            activation_distance=activation,
            min_distance=min_distance,
            force_falloff=falloff,
            asymmetry=asymmetry,
        ),
    )


def _fits(specs: list[RuleSpec], type_count: int) -> list[RuleSpec]:
    return [s for s in specs if s.type_a < type_count and s.type_b < type_count]


def basic_attraction(type_count: int) -> list[RuleSpec]:
    """Up to three types: different types attract, same type pushes apart."""
    n = min(type_count, 3)
    specs: list[RuleSpec] = []
    for i in range(n):
        for j in range(n):
            if i == j:
                specs.append(_rule(i, j, 0.0, 0.5, 50.0, 5.0))
            else:
                specs.append(_rule(i, j, 1.0, 0.3, 100.0, 5.0))
    return specs


def orbital(type_count: int) -> list[RuleSpec]:
    # 0: central bodies, 1: orbiters, 2: disruptors
    return _fits(
        [
            _rule(0, 1, 3.0, 0.1, 200.0, 10.0, asymmetry=1.0),
            _rule(1, 0, 0.1, 0.0, 200.0, 10.0),
            _rule(1, 1, 0.0, 0.5, 50.0, 5.0),
            _rule(2, 1, 0.0, 2.0, 100.0, 5.0, asymmetry=0.2),
            _rule(0, 0, 1.0, 5.0, 150.0, 20.0),
        ],
        type_count,
    )


def segregation(type_count: int) -> list[RuleSpec]:
    """Up to four types: each clusters with its own kind and avoids the rest."""
    n = min(type_count, 4)
    specs: list[RuleSpec] = []
    for i in range(n):
        for j in range(n):
            if i == j:
                specs.append(_rule(i, j, 1.0, 3.0, 100.0, 5.0))
            else:
                specs.append(_rule(i, j, 0.0, 2.0, 80.0, 5.0))
    return specs


def food_chain(type_count: int) -> list[RuleSpec]:
    # 0: plants, 1: herbivores, 2: carnivores, 3: apex predators.
    # Chasers pull one-way; prey flee through negative attraction.
    return _fits(
        [
            _rule(0, 0, 0.2, 0.5, 50.0, 5.0),
            _rule(1, 0, 2.0, 0.0, 100.0, 5.0, asymmetry=0.0),
            _rule(0, 1, 0.0, 0.0, 0.0, 5.0),
            _rule(1, 1, 0.3, 0.8, 60.0, 10.0),
            _rule(2, 1, 2.5, 0.0, 150.0, 5.0, FALLOFF_LINEAR, asymmetry=0.0),
            _rule(1, 2, -2.0, 0.0, 120.0, 5.0, FALLOFF_EXPONENTIAL),
            _rule(2, 2, 0.1, 1.0, 80.0, 15.0),
            _rule(3, 2, 3.0, 0.0, 200.0, 5.0, FALLOFF_LINEAR, asymmetry=0.0),
            _rule(2, 3, -2.5, 0.0, 150.0, 5.0, FALLOFF_EXPONENTIAL),
            _rule(3, 3, 0.0, 3.0, 150.0, 20.0),
        ],
        type_count,
    )


def crystal_formation(type_count: int) -> list[RuleSpec]:
    # 0: core, 1: branches, 2: outer shell
    return _fits(
        [
            _rule(0, 0, 2.0, 4.0, 50.0, 10.0, FALLOFF_SIGMOID),
            _rule(1, 0, 2.5, 0.5, 100.0, 5.0, asymmetry=0.5),
            _rule(0, 1, 1.0, 0.2, 80.0, 5.0),
            _rule(1, 1, 1.0, 2.0, 40.0, 5.0, FALLOFF_SIGMOID),
            _rule(2, 1, 2.0, 0.3, 60.0, 5.0, asymmetry=0.2),
            _rule(1, 2, 0.4, 0.1, 50.0, 5.0),
            _rule(2, 2, 0.5, 1.0, 30.0, 5.0, FALLOFF_SIGMOID),
        ],
        type_count,
    )


PRESETS: dict[str, Callable[[int], list[RuleSpec]]] = {
    "basic_attraction": basic_attraction,
    "orbital": orbital,
    "segregation": segregation,
    "food_chain": food_chain,
    "crystal_formation": crystal_formation,
}

PRESET_ALIASES = {
    "crystal_growth": "crystal_formation",
    "crystal": "crystal_formation",
}


def resolve_preset_name(name: str) -> str | None:
    key = str(name or "").strip().lower()
    key = PRESET_ALIASES.get(key, key)
    return key if key in PRESETS else None
