import unittest

import numpy as np

from particle_life.core.particles import ParticleParams
from particle_life.core.rules import FALLOFF_CONSTANT, RuleUpdate
from particle_life.core.sim import ParticleLifeSim
from particle_life.params import EngineParams
from particle_life.physics.forces import LocalForce


def _params(**kwargs: object) -> EngineParams:
    base = dict(
        max_particles=200,
        particle_count=100,
        type_count=4,
        world_width=400.0,
        world_height=400.0,
        preset="segregation",
        seed=5,
    )
    base.update(kwargs)
    return EngineParams(**base).clamp()


class TestSim(unittest.TestCase):
    def test_populate_inside_world(self) -> None:
        sim = ParticleLifeSim(_params())
        self.assertEqual(sim.store.get_active_count(), 100)
        pos = sim.store.positions[: sim.store.count]
        self.assertTrue(np.all(pos >= 0.0))
        self.assertTrue(np.all(pos <= 400.0))
        self.assertTrue(np.all(sim.store.types[: sim.store.count] < 4))
        self.assertTrue(sim.rules.has_any_interaction(0))

    def test_same_seed_same_layout(self) -> None:
        a = ParticleLifeSim(_params())
        b = ParticleLifeSim(_params())
        np.testing.assert_array_equal(a.store.positions, b.store.positions)
        np.testing.assert_array_equal(a.store.types, b.store.types)

    def test_populate_false(self) -> None:
        sim = ParticleLifeSim(_params(), populate=False)
        self.assertEqual(sim.store.count, 0)

    def test_unknown_preset_warns(self) -> None:
        with self.assertLogs("particle_life", level="WARNING"):
            sim = ParticleLifeSim(_params(preset="nonexistent"))
        self.assertFalse(sim.rules.has_any_interaction(0))

    def test_step_moves_attracted_pair(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=0, preset="", integration="euler", damping=1.0))
        sim.store.create(ParticleParams(x=100.0, y=100.0, type=0))
        sim.store.create(ParticleParams(x=120.0, y=100.0, type=1))
        sim.rules.set_rule(
            0,
            1,
            RuleUpdate(attraction_strength=10.0, activation_distance=50.0, force_falloff=FALLOFF_CONSTANT, asymmetry=1.0),
            symmetric=True,
        )
        sim.step(0.1)
        self.assertGreater(sim.store.positions[0, 0], 100.0)
        self.assertLess(sim.store.positions[1, 0], 120.0)
        self.assertEqual(sim.step_count, 1)
        self.assertIsNotNone(sim.last_rebuild_ms)
        self.assertIsNotNone(sim.last_force_ms)
        self.assertIsNotNone(sim.last_integration_ms)

    def test_newton_symmetric_force_momentum(self) -> None:
        sim = ParticleLifeSim(_params(preset="basic_attraction", type_count=3))
        sim.step(0.016)
        fx, fy = sim.force_momentum()
        self.assertAlmostEqual(fx, 0.0, places=2)
        self.assertAlmostEqual(fy, 0.0, places=2)

    def test_index_covers_stray_particles(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=0, preset=""))
        sim.store.create(ParticleParams(x=-500.0, y=900.0))
        sim.store.create(ParticleParams(x=10.0, y=10.0))
        self.assertEqual(sim.rebuild_index(), 2)
        self.assertEqual(sim.quadtree.size(), 2)

    def test_impulse_applied_once(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=0, preset="", integration="euler", damping=1.0))
        sim.store.create(ParticleParams(x=105.0, y=100.0))
        sim.add_impulse(LocalForce(100.0, 100.0, 10.0, 20.0))
        sim.step(0.1)
        vx = float(sim.store.velocities[0, 0])
        self.assertAlmostEqual(vx, 1.0, places=5)
        sim.step(0.1)
        self.assertAlmostEqual(float(sim.store.velocities[0, 0]), vx, places=5)

    def test_gravity_param(self) -> None:
        sim = ParticleLifeSim(
            _params(particle_count=0, preset="", integration="euler", damping=1.0, gravity_enabled=True, gravity_y=10.0)
        )
        sim.store.create(ParticleParams(x=100.0, y=100.0))
        sim.step(0.1)
        self.assertAlmostEqual(float(sim.store.velocities[0, 1]), 1.0, places=5)

    def test_lifespans_expire_during_step(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=0, preset=""))
        sim.store.create(ParticleParams(x=100.0, y=100.0, lifespan=0.05))
        sim.run_steps(4, 16.0)
        self.assertEqual(sim.store.get_active_count(), 0)

    def test_apply_params_live_vs_reset(self) -> None:
        sim = ParticleLifeSim(_params())
        sim.step(0.016)
        live = _params(damping=0.5, boundary="reflect")
        self.assertFalse(sim.apply_params(live))
        self.assertEqual(sim.integrator.options.damping, 0.5)
        self.assertEqual(sim.integrator.options.boundary, "reflect")
        self.assertEqual(sim.step_count, 1)

        with self.assertLogs("particle_life", level="INFO"):
            self.assertTrue(sim.apply_params(_params(damping=0.5, boundary="reflect", max_particles=50, particle_count=20)))
        self.assertEqual(sim.store.max_particles, 50)
        self.assertEqual(sim.store.get_active_count(), 20)
        self.assertEqual(sim.step_count, 0)

    def test_apply_params_unchanged(self) -> None:
        sim = ParticleLifeSim(_params())
        self.assertFalse(sim.apply_params(_params()))

    def test_load_state_round_trip(self) -> None:
        src = ParticleLifeSim(_params())
        src.run_steps(3, 16.0)
        dst = ParticleLifeSim(_params(preset="orbital", seed=9), populate=False)
        dst.load_state(src.store.serialize(), src.rules.serialize())
        np.testing.assert_array_equal(dst.store.positions, src.store.positions)
        self.assertEqual(dst.rules.get_rule(0, 0), src.rules.get_rule(0, 0))

    def test_validate_state_flags_nan(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=3))
        self.assertEqual(sim.validate_state(), [])
        sim.store.positions[0, 0] = float("nan")
        issues = sim.validate_state()
        self.assertTrue(any("non-finite" in issue for issue in issues))

    def test_validate_state_flags_out_of_bounds(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=3, boundary="reflect"))
        sim.store.positions[1] = (-50.0, 10.0)
        self.assertTrue(any("out of world bounds" in issue for issue in sim.validate_state()))

    def test_reflect_keeps_particles_inside(self) -> None:
        sim = ParticleLifeSim(_params(boundary="reflect", preset="basic_attraction", type_count=3))
        sim.run_steps(30, 16.0)
        self.assertEqual(sim.validate_state(), [])

    def test_energy_and_momentum_helpers(self) -> None:
        sim = ParticleLifeSim(_params(particle_count=0, preset=""))
        sim.store.create(ParticleParams(vx=3.0, vy=4.0, mass=2.0))
        self.assertAlmostEqual(sim.kinetic_energy(), 25.0)
        self.assertEqual(sim.total_momentum(), (6.0, 8.0))
        self.assertAlmostEqual(sim.mean_speed(), 5.0)


if __name__ == "__main__":
    unittest.main()
