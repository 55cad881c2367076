#!/usr/bin/env python3
"""
Performance benchmark for the particle-life engine.

Compares the force solvers and times a full physics step:
- Quadtree solver (neighbour queries bounded by the rule radius)
- Direct solver (O(N^2) scan)
- Full step (quadtree rebuild + forces + integration)

Usage:
    python -m particle_life.utils.benchmark [--particles 1000] [--iterations 10] [--preset segregation]
"""

from __future__ import annotations

import argparse
import sys
import time
from typing import Callable

import numpy as np

from particle_life.core.sim import ParticleLifeSim
from particle_life.params import EngineParams
from particle_life.physics.forces import DirectForceSolver, QuadtreeForceSolver
from particle_life.utils.logger_setup import setup_logging


def make_sim(n: int, *, preset: str = "segregation", seed: int = 42, world: float = 2000.0) -> ParticleLifeSim:
    """Build a populated simulation with ``n`` particles."""
    params = EngineParams(
        max_particles=max(1, n),
        particle_count=n,
        type_count=4,
        world_width=world,
        world_height=world,
        preset=preset,
        seed=seed,
    ).clamp()
    return ParticleLifeSim(params)


def time_calls(fn: Callable[[], object], iterations: int) -> tuple[float, float]:
    """Return (mean_ms, std_ms) over ``iterations`` calls."""
    times = []
    for _ in range(max(1, iterations)):
        t0 = time.perf_counter()
        fn()
        times.append((time.perf_counter() - t0) * 1000.0)
    arr = np.array(times)
    return float(arr.mean()), float(arr.std())


def benchmark_quadtree(sim: ParticleLifeSim, iterations: int = 10) -> tuple[float, float]:
    solver = QuadtreeForceSolver(sim.rules)
    sim.rebuild_index()
    return time_calls(lambda: solver.solve(sim.store, sim.quadtree, 0.016), iterations)


def benchmark_direct(sim: ParticleLifeSim, iterations: int = 10) -> tuple[float, float]:
    solver = DirectForceSolver(sim.rules)
    return time_calls(lambda: solver.solve(sim.store, None, 0.016), iterations)


def benchmark_step(sim: ParticleLifeSim, iterations: int = 10) -> tuple[float, float]:
    return time_calls(lambda: sim.step(0.016), iterations)


def run_benchmark(n_particles: int, iterations: int, *, preset: str = "segregation") -> dict[str, float]:
    """Run full benchmark suite."""
    print(f"\n{'=' * 60}")
    print(f"Benchmark: {n_particles} particles, {iterations} iterations, preset={preset}")
    print(f"{'=' * 60}")

    results: dict[str, float] = {}

    print("Quadtree solver...", end=" ", flush=True)
    mean, std = benchmark_quadtree(make_sim(n_particles, preset=preset), iterations)
    print(f"{mean:.2f} ± {std:.2f} ms")
    results["quadtree"] = mean

    print("Direct solver...", end=" ", flush=True)
    mean, std = benchmark_direct(make_sim(n_particles, preset=preset), iterations)
    print(f"{mean:.2f} ± {std:.2f} ms")
    results["direct"] = mean

    print("Full step...", end=" ", flush=True)
    mean, std = benchmark_step(make_sim(n_particles, preset=preset), iterations)
    print(f"{mean:.2f} ± {std:.2f} ms")
    results["step"] = mean

    print(f"\n{'=' * 60}")
    print("Summary:")
    print(f"  Quadtree: {results['quadtree']:.2f} ms")
    if results["quadtree"] > 0.0:
        ratio = results["direct"] / results["quadtree"]
        print(f"  Direct: {results['direct']:.2f} ms ({ratio:.1f}x the quadtree time)")
    print(f"  Full step: {results['step']:.2f} ms")
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Benchmark particle-life force solvers")
    parser.add_argument("--particles", "-n", type=int, default=1000, help="Number of particles")
    parser.add_argument("--iterations", "-i", type=int, default=10, help="Benchmark iterations")
    parser.add_argument("--preset", default="segregation", help="Rule preset")
    parser.add_argument("--sweep", action="store_true", help="Run sweep over particle counts")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    print("Particle-life Performance Benchmark")
    print(f"Platform: {sys.platform}")
    print(f"NumPy: {np.__version__}")

    if args.sweep:
        for n in (100, 500, 1000, 2000, 5000):
            run_benchmark(n, args.iterations, preset=args.preset)
    else:
        run_benchmark(args.particles, args.iterations, preset=args.preset)
    return 0


if __name__ == "__main__":
    sys.exit(main())
