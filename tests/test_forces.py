"""Tests for the pairwise force solvers and the global/local force passes."""

import random
import unittest

import numpy as np

from particle_life.core.particles import ParticleParams, ParticleStore
from particle_life.core.rules import FALLOFF_CONSTANT, InteractionRuleTable, RuleUpdate
from particle_life.physics.forces import (
    DirectForceSolver,
    GlobalForces,
    LocalForce,
    PointForce,
    QuadtreeForceSolver,
    apply_global_forces,
    apply_local_force,
)
from particle_life.physics.quadtree import QuadPoint, Quadtree, Rect


def _index_for(store: ParticleStore, size: float = 1000.0) -> Quadtree:
    tree = Quadtree(Rect(-size, -size, 2.0 * size, 2.0 * size))
    tree.rebuild(QuadPoint(int(i), float(store.positions[i, 0]), float(store.positions[i, 1])) for i in store.active_indices())
    return tree


def _pair(asymmetry: float) -> tuple[ParticleStore, InteractionRuleTable]:
    store = ParticleStore(4, type_count=2)
    store.create(ParticleParams(x=0.0, y=0.0, type=0))
    store.create(ParticleParams(x=10.0, y=0.0, type=1))
    rules = InteractionRuleTable(2)
    rules.set_rule(
        0,
        1,
        RuleUpdate(attraction_strength=1.0, activation_distance=50.0, force_falloff=FALLOFF_CONSTANT, asymmetry=asymmetry),
    )
    return store, rules


class TestPairwiseForces(unittest.TestCase):
    def test_one_way_rule_leaves_neighbour_alone(self) -> None:
        store, rules = _pair(0.0)
        solver = QuadtreeForceSolver(rules)
        self.assertEqual(solver.solve(store, _index_for(store), 0.016), 1)
        np.testing.assert_allclose(store.accelerations[0], (1.0, 0.0))
        np.testing.assert_allclose(store.accelerations[1], (0.0, 0.0))

    def test_full_asymmetry_is_newtonian(self) -> None:
        store, rules = _pair(1.0)
        QuadtreeForceSolver(rules).solve(store, _index_for(store), 0.016)
        np.testing.assert_allclose(store.accelerations[0], (1.0, 0.0))
        np.testing.assert_allclose(store.accelerations[1], (-1.0, 0.0))

    def test_reaction_scales_with_mass(self) -> None:
        store, rules = _pair(0.5)
        store.masses[1] = 2.0
        QuadtreeForceSolver(rules).solve(store, _index_for(store), 0.016)
        np.testing.assert_allclose(store.accelerations[1], (-0.25, 0.0))

    def test_out_of_range_and_coincident_pairs_skipped(self) -> None:
        store, rules = _pair(1.0)
        store.positions[1] = (60.0, 0.0)
        solver = DirectForceSolver(rules)
        self.assertEqual(solver.solve(store, None, 0.016), 0)
        store.positions[1] = (0.001, 0.0)
        self.assertEqual(solver.solve(store, None, 0.016), 0)
        self.assertFalse(store.accelerations.any())

    def test_inactive_particles_ignored(self) -> None:
        store, rules = _pair(1.0)
        store.remove(1)
        DirectForceSolver(rules).solve(store, None, 0.016)
        self.assertFalse(store.accelerations.any())

    def test_solve_resets_previous_accelerations(self) -> None:
        store, rules = _pair(0.0)
        store.accelerations[1] = (5.0, 5.0)
        DirectForceSolver(rules).solve(store, None, 0.016)
        np.testing.assert_allclose(store.accelerations[1], (0.0, 0.0))

    def test_quadtree_solver_requires_index(self) -> None:
        store, rules = _pair(0.0)
        with self.assertRaises(ValueError):
            QuadtreeForceSolver(rules).solve(store, None, 0.016)

    def test_newton_symmetric_rules_conserve_momentum(self) -> None:
        rng = random.Random(3)
        store = ParticleStore(200, type_count=3)
        for _ in range(150):
            store.create(
                ParticleParams(
                    x=rng.uniform(0.0, 300.0),
                    y=rng.uniform(0.0, 300.0),
                    mass=rng.uniform(0.5, 2.0),
                    type=rng.randrange(3),
                )
            )
        rules = InteractionRuleTable(3)
        rules.apply_preset("segregation")  # every rule uses asymmetry 1
        QuadtreeForceSolver(rules).solve(store, _index_for(store), 0.016)
        momentum = (store.accelerations[: store.count] * store.masses[: store.count, None]).sum(axis=0)
        np.testing.assert_allclose(momentum, (0.0, 0.0), atol=1e-2)

    def test_quadtree_matches_direct(self) -> None:
        rng = random.Random(11)
        store = ParticleStore(300, type_count=4)
        for _ in range(250):
            store.create(ParticleParams(x=rng.uniform(-400.0, 400.0), y=rng.uniform(-400.0, 400.0), type=rng.randrange(4)))
        for i in range(0, 250, 7):
            store.remove(i)
        rules = InteractionRuleTable(4)
        rules.apply_preset("food_chain")

        direct = DirectForceSolver(rules)
        direct.solve(store, None, 0.016)
        expected = store.accelerations.copy()

        quad = QuadtreeForceSolver(rules)
        quad.solve(store, _index_for(store), 0.016)
        np.testing.assert_allclose(store.accelerations, expected, rtol=1e-4, atol=1e-5)
        self.assertEqual(quad.forces_calculated, direct.forces_calculated)

    def test_metrics(self) -> None:
        store, rules = _pair(0.0)
        solver = DirectForceSolver(rules)
        solver.solve(store, None, 0.016)
        m = solver.metrics()
        self.assertEqual(m["forces_calculated"], 1)
        self.assertGreaterEqual(m["particle_interactions"], 1)
        self.assertIsNotNone(m["calculation_ms"])


class TestGlobalForces(unittest.TestCase):
    def _store(self, **kwargs: float) -> ParticleStore:
        store = ParticleStore(2)
        store.create(ParticleParams(**kwargs))
        return store

    def test_nothing_enabled_is_noop(self) -> None:
        store = self._store(x=1.0)
        self.assertFalse(GlobalForces().any_enabled())
        apply_global_forces(store, GlobalForces())
        self.assertFalse(store.accelerations.any())

    def test_gravity_and_drag(self) -> None:
        store = self._store(vx=2.0)
        apply_global_forces(store, GlobalForces(gravity=(0.0, 9.8), drag=0.5))
        np.testing.assert_allclose(store.accelerations[0], (-1.0, 9.8), rtol=1e-6)

    def test_central_attraction(self) -> None:
        store = self._store(x=0.0, y=0.0)
        apply_global_forces(store, GlobalForces(central=PointForce(10.0, 0.0, 100.0)))
        np.testing.assert_allclose(store.accelerations[0], (1.0, 0.0), rtol=1e-6)

    def test_vortex_is_tangential(self) -> None:
        store = self._store(x=3.0, y=0.0)
        apply_global_forces(store, GlobalForces(vortex=PointForce(0.0, 0.0, 2.0)))
        np.testing.assert_allclose(store.accelerations[0], (0.0, 2.0 / 3.0), rtol=1e-6, atol=1e-7)


class TestLocalForce(unittest.TestCase):
    def test_radial_push_fades_with_distance(self) -> None:
        store = ParticleStore(3)
        store.create(ParticleParams(x=5.0, y=0.0, mass=2.0))
        store.create(ParticleParams(x=20.0, y=0.0))
        self.assertEqual(apply_local_force(store, LocalForce(0.0, 0.0, 10.0, 4.0)), 1)
        np.testing.assert_allclose(store.accelerations[0], (1.0, 0.0), rtol=1e-6)
        np.testing.assert_allclose(store.accelerations[1], (0.0, 0.0))

    def test_directional_push(self) -> None:
        store = ParticleStore(2)
        store.create(ParticleParams(x=5.0, y=0.0, mass=2.0))
        apply_local_force(store, LocalForce(0.0, 0.0, 10.0, 4.0, direction=(0.0, 2.0)))
        np.testing.assert_allclose(store.accelerations[0], (0.0, 1.0), rtol=1e-6, atol=1e-7)

    def test_zero_radius(self) -> None:
        store = ParticleStore(2)
        store.create()
        self.assertEqual(apply_local_force(store, LocalForce(0.0, 0.0, 0.0, 4.0)), 0)


if __name__ == "__main__":
    unittest.main()
