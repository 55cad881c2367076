"""
Headless runner: drives the clock with synthetic frame timestamps.

Usage:
    python -m particle_life.cli --config params.json --frames 600 [--fps 60] [--log-file runs/sim.log]
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from particle_life.core.clock import SimulationClock
from particle_life.core.sim import ParticleLifeSim
from particle_life.params import EngineParams
from particle_life.utils.logger_setup import setup_logging

log = logging.getLogger("particle_life")


def run(params: EngineParams, *, frames: int, fps: float) -> SimulationClock:
    sim = ParticleLifeSim(params)
    clock = SimulationClock(sim)
    frame_ms = 1000.0 / max(1.0, fps)
    clock.start()
    try:
        for frame in range(frames):
            clock.tick(frame * frame_ms)
        clock.wait_for_worker()
    finally:
        clock.dispose()
    return clock


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the particle-life engine without a renderer")
    parser.add_argument("--config", type=Path, default=None, help="JSON parameter file")
    parser.add_argument("--frames", type=int, default=600, help="Frames to simulate")
    parser.add_argument("--fps", type=float, default=60.0, help="Synthetic frame rate")
    parser.add_argument("--preset", default=None, help="Override the rule preset")
    parser.add_argument("--log-file", type=Path, default=None, help="Also log to this file")
    parser.add_argument("--save-config", type=Path, default=None, help="Write the effective parameters here")
    args = parser.parse_args(argv)

    params = EngineParams.load(args.config) if args.config else EngineParams().clamp()
    if args.preset is not None:
        params.preset = args.preset
        params.clamp()
    setup_logging(params.log_level, log_file=args.log_file)
    for warning in params.validate():
        log.warning("[params] %s", warning)
    if args.save_config is not None:
        params.save(args.save_config)

    clock = run(params, frames=max(0, args.frames), fps=args.fps)
    sim = clock.sim
    log.info(
        "[run] %d steps, %d active particles, kinetic energy %.3f, %d backlog event(s)",
        clock.total_steps,
        sim.store.get_active_count(),
        sim.kinetic_energy(),
        clock.backlog_events,
    )
    for issue in sim.validate_state():
        log.warning("[run] %s", issue)
    return 0


if __name__ == "__main__":
    sys.exit(main())
