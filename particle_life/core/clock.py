"""
Fixed-timestep scheduler.

The host calls ``tick(timestamp_ms)`` (or ``update(delta_ms)``) once per
frame. Elapsed time is clamped, scaled by ``time_scale`` and accumulated;
whole ``fixed_step`` slices are then consumed either in-process (at most
``max_steps_per_frame`` per frame) or by posting a batch to the offload
channel. Leftover time becomes ``interpolation_alpha`` for the renderer.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import replace
from enum import Enum
from typing import Callable, Protocol

from particle_life.core.sim import ParticleLifeSim
from particle_life.core.worker import InitRequest, PhysicsChannel, StepResponse
from particle_life.params import EngineParams
from particle_life.utils.config_groups import is_clock_related
from particle_life.utils.metrics import MetricsTracker

log = logging.getLogger("particle_life")


class ClockState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class Renderer(Protocol):
    def render(self, alpha: float) -> None: ...


class SimulationClock:
    def __init__(
        self,
        sim: ParticleLifeSim,
        *,
        channel: PhysicsChannel | None = None,
        on_backlog: Callable[[float], None] | None = None,
    ) -> None:
        p = sim.params
        self.sim = sim
        self.fixed_step = float(p.fixed_step)
        self.max_steps_per_frame = int(p.max_steps_per_frame)
        self.max_frame_delta = float(p.max_frame_delta)
        self.time_scale = float(p.time_scale)
        self.use_worker = bool(p.use_worker)
        self.on_backlog = on_backlog

        self.state = ClockState.STOPPED
        self.accumulated = 0.0
        self.interpolation_alpha = 0.0
        self.total_steps = 0
        self.backlog_events = 0
        self.worker_failures = 0
        self.disposed = False
        self.metrics = MetricsTracker(p.metrics_interval)
        self._last_timestamp: float | None = None

        self.channel = channel
        if self.use_worker and self.channel is None:
            self.channel = PhysicsChannel(p, max_in_flight=p.worker_max_in_flight)
        self._synced_epoch: int | None = None
        self._synced_store_revision: int | None = None
        self._synced_rules_revision: int | None = None
        self._synced_params_revision: int | None = None
        self._channel_failures_seen = 0
        sim.add_params_listener(self._on_params_changed)

    @property
    def running(self) -> bool:
        return self.state is ClockState.RUNNING

    def start(self) -> "SimulationClock":
        if self.running or self.disposed:
            return self
        self.state = ClockState.RUNNING
        self._last_timestamp = None
        log.debug("[clock] started")
        return self

    def stop(self) -> "SimulationClock":
        if self.running:
            log.debug("[clock] stopped")
        self.state = ClockState.STOPPED
        return self

    def set_time_scale(self, scale: float) -> "SimulationClock":
        self.time_scale = max(0.0, float(scale))
        return self

    def _on_params_changed(self, params: EngineParams, changed: set[str]) -> None:
        keys = {k for k in changed if is_clock_related(k)}
        if not keys:
            return
        if "fixed_step" in keys:
            self.fixed_step = float(params.fixed_step)
        if "time_scale" in keys:
            self.set_time_scale(params.time_scale)
        if "max_steps_per_frame" in keys:
            self.max_steps_per_frame = int(params.max_steps_per_frame)
        if "max_frame_delta" in keys:
            self.max_frame_delta = float(params.max_frame_delta)
        if "metrics_interval" in keys:
            self.metrics.interval_ms = max(1.0, float(params.metrics_interval))
        if "worker_max_in_flight" in keys and self.channel is not None:
            self.channel.set_max_in_flight(params.worker_max_in_flight)
        log.debug("[clock] applied %s", ", ".join(sorted(keys)))

    def update(self, delta_ms: float) -> int:
        """
        Advance by one frame of ``delta_ms`` wall-clock milliseconds.

        Returns the number of physics steps run in-process, or dispatched to
        the worker in offload mode.
        """
        if self.disposed:
            return 0
        delta = min(max(float(delta_ms), 0.0), self.max_frame_delta)

        if self.use_worker:
            self._apply_worker_responses()
        if not self.running:
            self.interpolation_alpha = 0.0 if self.use_worker else self.accumulated / self.fixed_step
            return 0

        t0 = time.perf_counter()
        self.accumulated += delta * self.time_scale
        if self.use_worker:
            steps = self._update_worker()
            self.interpolation_alpha = 0.0
        else:
            steps = self._update_local()
            self.interpolation_alpha = self.accumulated / self.fixed_step
        self.total_steps += steps

        self.metrics.record(
            update_ms=(time.perf_counter() - t0) * 1000.0,
            steps=steps,
            active_particles=self.sim.store.get_active_count(),
            backlog_events=self.backlog_events,
            worker_failures=self.worker_failures,
        )
        if not self.use_worker and steps:
            self.metrics.record(
                spatial_rebuild_ms=self.sim.last_rebuild_ms or 0.0,
                force_solve_ms=self.sim.last_force_ms or 0.0,
                integration_ms=self.sim.last_integration_ms or 0.0,
            )
        return steps

    def _update_local(self) -> int:
        fixed = self.fixed_step
        dt = fixed * 0.001
        steps = 0
        while self.accumulated >= fixed and steps < self.max_steps_per_frame:
            self.sim.step(dt)
            self.accumulated -= fixed
            steps += 1
        if steps >= self.max_steps_per_frame and self.accumulated >= fixed:
            discarded = self.accumulated
            self.accumulated = 0.0
            self.backlog_events += 1
            log.warning("[clock] physics falling behind, discarding %.1f ms", discarded)
            if self.on_backlog is not None:
                self.on_backlog(discarded)
        return steps

    def _update_worker(self) -> int:
        fixed = self.fixed_step
        steps = int(math.floor(self.accumulated / fixed))
        if steps <= 0:
            return 0
        self.accumulated -= steps * fixed

        channel = self.channel
        if channel is None or not channel.available:
            self.worker_failures += 1
            log.debug("[clock] worker unavailable, dropping %d step(s)", steps)
            return 0

        self._sync_worker(channel)
        channel.request(steps, fixed, epoch=self.sim.epoch)
        self.sim.store.detach()
        return steps

    def _sync_worker(self, channel: PhysicsChannel) -> None:
        sim = self.sim
        if sim.epoch != self._synced_epoch:
            # A reset (possibly with a new store object) invalidates every synced revision.
            self._synced_store_revision = None
            self._synced_rules_revision = None
            self._synced_params_revision = None
            self._synced_epoch = sim.epoch
        request = InitRequest(impulses=sim.take_impulses())
        if sim.params_revision != self._synced_params_revision:
            request.params = replace(sim.params)
            self._synced_params_revision = sim.params_revision
        if sim.store.revision != self._synced_store_revision:
            request.particles = sim.store.serialize()
            self._synced_store_revision = sim.store.revision
        if sim.rules.revision != self._synced_rules_revision:
            request.rules = sim.rules.serialize()
            self._synced_rules_revision = sim.rules.revision
        if (
            request.params is not None
            or request.particles is not None
            or request.rules is not None
            or request.impulses
        ):
            channel.init(request)

    def _apply_worker_responses(self) -> None:
        if self.channel is not None:
            self._apply_responses(self.channel.poll())

    def _apply_responses(self, responses: list[StepResponse]) -> None:
        channel = self.channel
        if channel is None:
            return
        store = self.sim.store
        for response in responses:
            if response.epoch != self.sim.epoch:
                log.debug("[clock] discarding batch %d from before a reset", response.seq)
                continue
            store.attach()
            store.deserialize(response.particles)
            self._synced_store_revision = store.revision
            self.metrics.record(
                spatial_rebuild_ms=response.timings.get("spatial_rebuild_ms") or 0.0,
                force_solve_ms=response.timings.get("force_solve_ms") or 0.0,
                integration_ms=response.timings.get("integration_ms") or 0.0,
            )
        if channel.failures > self._channel_failures_seen:
            self.worker_failures += channel.failures - self._channel_failures_seen
            self._channel_failures_seen = channel.failures
        if channel.busy:
            store.detach()
        else:
            store.attach()

    def wait_for_worker(self, timeout: float | None = None) -> None:
        """Block until offloaded batches finish and apply their results."""
        if self.channel is None or self.disposed:
            return
        self._apply_responses(self.channel.drain(timeout))

    def tick(self, timestamp_ms: float, renderer: Renderer | None = None) -> int:
        raw = 0.0 if self._last_timestamp is None else float(timestamp_ms) - self._last_timestamp
        self._last_timestamp = float(timestamp_ms)
        self.metrics.frame(raw)

        steps = self.update(raw)

        if renderer is not None:
            t0 = time.perf_counter()
            renderer.render(self.interpolation_alpha)
            self.metrics.record(render_ms=(time.perf_counter() - t0) * 1000.0)
        self.metrics.maybe_publish(float(timestamp_ms))
        return steps

    def reset(self) -> None:
        """Drop accumulated time and counters; the simulation state is left alone."""
        was_running = self.running
        self.stop()
        self.accumulated = 0.0
        self.interpolation_alpha = 0.0
        self.total_steps = 0
        self.metrics.reset()
        if was_running:
            self.start()

    def dispose(self) -> None:
        if self.disposed:
            return
        self.stop()
        self.disposed = True
        if self.channel is not None:
            self.channel.dispose()
        self.sim.remove_params_listener(self._on_params_changed)
        self.sim.store.attach()
        log.debug("[clock] disposed")
