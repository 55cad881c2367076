"""Tests for integration schemes, constraints and boundary handling."""

import unittest

import numpy as np

from particle_life.core.particles import ParticleParams, ParticleStore, ParticleUpdate
from particle_life.physics.integrator import Integrator, IntegratorOptions
from particle_life.physics.quadtree import Rect

WORLD = Rect(0.0, 0.0, 100.0, 100.0)


def _store(*particles: ParticleParams) -> ParticleStore:
    store = ParticleStore(8)
    for p in particles:
        store.create(p)
    return store


def _opts(**kwargs: object) -> IntegratorOptions:
    base = dict(damping=1.0, max_velocity=0.0)
    base.update(kwargs)
    return IntegratorOptions(**base)


class TestSchemes(unittest.TestCase):
    def test_euler_semi_implicit(self) -> None:
        store = _store(ParticleParams(x=10.0, y=10.0, vx=1.0))
        store.accelerations[0] = (2.0, 0.0)
        Integrator(WORLD, _opts(scheme="euler")).integrate(store, 0.5)
        np.testing.assert_allclose(store.velocities[0], (2.0, 0.0))
        np.testing.assert_allclose(store.positions[0], (11.0, 10.0))

    def test_rk4_constant_acceleration(self) -> None:
        store = _store(ParticleParams(x=10.0, y=10.0, vx=1.0))
        store.accelerations[0] = (2.0, 0.0)
        Integrator(WORLD, _opts(scheme="rk4")).integrate(store, 0.5)
        np.testing.assert_allclose(store.positions[0], (10.75, 10.0))
        np.testing.assert_allclose(store.velocities[0], (2.0, 0.0))

    def test_verlet_rebuilds_previous_position(self) -> None:
        store = _store(ParticleParams(x=10.0, y=10.0, vx=1.0))
        integrator = Integrator(WORLD, _opts(scheme="verlet"))
        integrator.integrate(store, 0.5)
        np.testing.assert_allclose(store.positions[0], (10.5, 10.0), rtol=1e-6)
        self.assertTrue(store.prev_valid[0])
        integrator.integrate(store, 0.5)
        np.testing.assert_allclose(store.positions[0], (11.0, 10.0), rtol=1e-6)
        np.testing.assert_allclose(store.velocities[0], (1.0, 0.0), rtol=1e-5)

    def test_verlet_after_external_velocity_change(self) -> None:
        """A velocity written between steps is honoured on the next step."""
        store = _store(ParticleParams(x=10.0, y=10.0, vx=1.0))
        integrator = Integrator(WORLD, _opts(scheme="verlet"))
        integrator.integrate(store, 0.5)
        store.update_particle(0, ParticleUpdate(vx=0.0, vy=2.0))
        integrator.integrate(store, 0.5)
        np.testing.assert_allclose(store.positions[0], (10.5, 11.0), rtol=1e-6)

    def test_damping(self) -> None:
        store = _store(ParticleParams(x=10.0, y=10.0, vx=10.0))
        Integrator(WORLD, _opts(scheme="euler", damping=0.5)).integrate(store, 0.1)
        np.testing.assert_allclose(store.velocities[0], (5.0, 0.0))

    def test_velocity_cap(self) -> None:
        store = _store(ParticleParams(x=50.0, y=50.0, vx=60.0, vy=80.0))
        Integrator(WORLD, _opts(scheme="euler", max_velocity=10.0)).integrate(store, 0.01)
        np.testing.assert_allclose(store.velocities[0], (6.0, 8.0), rtol=1e-5)

    def test_sub_steps(self) -> None:
        store = _store(ParticleParams(x=10.0, y=10.0))
        store.accelerations[0] = (1.0, 0.0)
        Integrator(WORLD, _opts(scheme="euler", sub_steps=4)).integrate(store, 1.0)
        np.testing.assert_allclose(store.positions[0], (10.625, 10.0), rtol=1e-6)
        np.testing.assert_allclose(store.velocities[0], (1.0, 0.0), rtol=1e-6)
        # The force pass result is left untouched.
        np.testing.assert_allclose(store.accelerations[0], (1.0, 0.0))

    def test_unknown_scheme_falls_back_to_verlet(self) -> None:
        opts = IntegratorOptions(scheme="leapfrog", boundary="infinite").normalized()
        self.assertEqual(opts.scheme, "verlet")
        self.assertEqual(opts.boundary, "none")

    def test_inactive_particles_untouched(self) -> None:
        store = _store(ParticleParams(x=10.0, y=10.0, vx=5.0), ParticleParams(x=20.0, y=20.0, vx=5.0))
        store.remove(1)
        Integrator(WORLD, _opts(scheme="euler")).integrate(store, 1.0)
        np.testing.assert_allclose(store.positions[1], (20.0, 20.0))


class TestBoundaries(unittest.TestCase):
    def test_reflect(self) -> None:
        store = _store(ParticleParams(x=98.0, y=50.0, vx=10.0, size=5.0))
        Integrator(WORLD, _opts(scheme="euler", boundary="reflect", elasticity=0.8)).integrate(store, 0.1)
        np.testing.assert_allclose(store.positions[0], (91.8, 50.0), rtol=1e-5)
        np.testing.assert_allclose(store.velocities[0], (-8.0, 0.0), rtol=1e-5)
        self.assertFalse(store.prev_valid[0])

    def test_reflect_low_edge(self) -> None:
        store = _store(ParticleParams(x=50.0, y=6.0, vy=-20.0, size=5.0))
        Integrator(WORLD, _opts(scheme="euler", boundary="reflect", elasticity=1.0)).integrate(store, 0.1)
        np.testing.assert_allclose(store.positions[0], (50.0, 6.0), rtol=1e-5)
        np.testing.assert_allclose(store.velocities[0], (0.0, 20.0), rtol=1e-5)

    def test_wrap(self) -> None:
        store = _store(ParticleParams(x=99.0, y=50.0, vx=20.0, size=5.0))
        Integrator(WORLD, _opts(scheme="euler", boundary="wrap")).integrate(store, 0.1)
        np.testing.assert_allclose(store.positions[0], (5.0, 50.0))
        np.testing.assert_allclose(store.velocities[0], (20.0, 0.0))

    def test_absorb_removes(self) -> None:
        store = _store(ParticleParams(x=99.0, y=50.0, vx=20.0), ParticleParams(x=50.0, y=50.0))
        integrator = Integrator(WORLD, _opts(scheme="euler", boundary="absorb"))
        self.assertEqual(integrator.integrate(store, 0.1), 1)
        self.assertEqual(store.get_active_count(), 1)
        self.assertIsNone(store.get_particle(0))
        self.assertEqual(integrator.removed_last_step, 1)

    def test_attract_pulls_back(self) -> None:
        store = _store(ParticleParams(x=-10.0, y=50.0, size=5.0))
        Integrator(WORLD, _opts(scheme="euler", boundary="attract", boundary_strength=0.1)).integrate(store, 1.0)
        np.testing.assert_allclose(store.velocities[0], (1.5, 0.0), rtol=1e-6)
        np.testing.assert_allclose(store.positions[0], (-8.5, 50.0), rtol=1e-6)
        self.assertFalse(store.accelerations.any())

    def test_none_leaves_particles_outside(self) -> None:
        store = _store(ParticleParams(x=150.0, y=-40.0, vx=1.0))
        Integrator(WORLD, _opts(scheme="euler", boundary="none")).integrate(store, 1.0)
        np.testing.assert_allclose(store.positions[0], (151.0, -40.0))


class TestCollisions(unittest.TestCase):
    def test_overlap_separated_and_bounced(self) -> None:
        store = _store(
            ParticleParams(x=50.0, y=50.0, vx=1.0, size=5.0),
            ParticleParams(x=56.0, y=50.0, vx=-1.0, size=5.0),
        )
        integrator = Integrator(WORLD, _opts(scheme="euler", collisions=True, elasticity=1.0))
        integrator.integrate(store, 0.001)
        gap = float(store.positions[1, 0] - store.positions[0, 0])
        self.assertAlmostEqual(gap, 10.0, places=4)
        np.testing.assert_allclose(store.velocities[0], (-1.0, 0.0), rtol=1e-5)
        np.testing.assert_allclose(store.velocities[1], (1.0, 0.0), rtol=1e-5)
        self.assertEqual(integrator.collisions_resolved, 1)

    def test_disabled_by_default(self) -> None:
        store = _store(
            ParticleParams(x=50.0, y=50.0, size=5.0),
            ParticleParams(x=52.0, y=50.0, size=5.0),
        )
        Integrator(WORLD, _opts(scheme="euler")).integrate(store, 0.01)
        self.assertAlmostEqual(float(store.positions[1, 0] - store.positions[0, 0]), 2.0, places=5)

    def test_zero_constraint_iterations(self) -> None:
        store = _store(
            ParticleParams(x=50.0, y=50.0, size=5.0),
            ParticleParams(x=52.0, y=50.0, size=5.0),
        )
        Integrator(WORLD, _opts(scheme="euler", collisions=True, constraint_iterations=0)).integrate(store, 0.01)
        self.assertAlmostEqual(float(store.positions[1, 0] - store.positions[0, 0]), 2.0, places=5)

    def test_heavier_particle_moves_less(self) -> None:
        store = _store(
            ParticleParams(x=50.0, y=50.0, size=5.0, mass=3.0),
            ParticleParams(x=54.0, y=50.0, size=5.0, mass=1.0),
        )
        Integrator(WORLD, _opts(scheme="euler", collisions=True)).integrate(store, 1e-6)
        moved_heavy = abs(float(store.positions[0, 0]) - 50.0)
        moved_light = abs(float(store.positions[1, 0]) - 54.0)
        self.assertAlmostEqual(moved_heavy, 1.5, places=3)
        self.assertAlmostEqual(moved_light, 4.5, places=3)


if __name__ == "__main__":
    unittest.main()
