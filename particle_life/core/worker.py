"""
Off-thread physics execution.

The host never shares live arrays with the executor: ``InitRequest`` carries
serialized copies into the worker's private ``ParticleLifeSim``, and every
``StepResponse`` carries a serialized copy back. ``PhysicsChannel`` is the
request/response queue in between: FIFO, bounded by ``max_in_flight``
dispatched batches, with excess requests queued (never dropped).

The executor is a single-thread ``ThreadPoolExecutor``, so dispatched work
runs strictly in submission order.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from typing import Any

from particle_life.core.particles import ParticleState
from particle_life.core.sim import ParticleLifeSim
from particle_life.params import EngineParams
from particle_life.physics.forces import LocalForce

log = logging.getLogger("particle_life")

MAX_IN_FLIGHT_LIMIT = 2


@dataclass(slots=True)
class StepRequest:
    steps: int
    fixed_step: float  # ms
    seq: int = 0
    epoch: int = 0


@dataclass(slots=True)
class InitRequest:
    particles: ParticleState | None = None
    rules: dict[str, Any] | None = None
    params: EngineParams | None = None
    impulses: list[LocalForce] = field(default_factory=list)


@dataclass(slots=True)
class StepResponse:
    seq: int
    steps: int
    particles: ParticleState
    elapsed_ms: float
    timings: dict[str, float | None] = field(default_factory=dict)
    epoch: int = 0


class PhysicsWorker:
    """Executor-side state; only ever touched from the executor thread."""

    def __init__(self, params: EngineParams) -> None:
        self.sim = ParticleLifeSim(replace(params), populate=False)

    def handle_init(self, request: InitRequest) -> None:
        if request.params is not None:
            self.sim.apply_params(replace(request.params))
        if request.particles is not None:
            self.sim.store.deserialize(request.particles)
        if request.rules is not None:
            self.sim.rules.deserialize(request.rules)
        for force in request.impulses:
            self.sim.add_impulse(force)

    def handle_step(self, request: StepRequest) -> StepResponse:
        t0 = time.perf_counter()
        self.sim.run_steps(request.steps, request.fixed_step)
        return StepResponse(
            seq=request.seq,
            epoch=request.epoch,
            steps=request.steps,
            particles=self.sim.store.serialize(),
            elapsed_ms=(time.perf_counter() - t0) * 1000.0,
            timings={
                "spatial_rebuild_ms": self.sim.last_rebuild_ms,
                "force_solve_ms": self.sim.last_force_ms,
                "integration_ms": self.sim.last_integration_ms,
            },
        )


class PhysicsChannel:
    def __init__(
        self,
        params: EngineParams,
        *,
        max_in_flight: int = 1,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self.max_in_flight = max(1, min(MAX_IN_FLIGHT_LIMIT, int(max_in_flight)))
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix="physics")
        self._worker = PhysicsWorker(params)
        # Init and step messages share one outgoing queue so they reach the worker in order.
        self._queue: deque[InitRequest | StepRequest] = deque()
        self._in_flight: deque[Future[StepResponse]] = deque()
        self._syncs: deque[Future[None]] = deque()
        self._seq = 0
        self.disposed = False
        self.failures = 0
        self.dispatched = 0

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def queued(self) -> int:
        return sum(1 for r in self._queue if isinstance(r, StepRequest))

    @property
    def busy(self) -> bool:
        return bool(self._in_flight or self._queue)

    @property
    def available(self) -> bool:
        return not self.disposed

    def set_max_in_flight(self, max_in_flight: int) -> None:
        self.max_in_flight = max(1, min(MAX_IN_FLIGHT_LIMIT, int(max_in_flight)))
        if not self.disposed:
            self._pump()

    def init(self, request: InitRequest) -> bool:
        """Queue a state sync; it runs after every message queued before it."""
        if self.disposed:
            return False
        self._queue.append(request)
        self._pump()
        return True

    def request(self, steps: int, fixed_step: float, epoch: int = 0) -> bool:
        if self.disposed:
            return False
        self._seq += 1
        self._queue.append(StepRequest(steps=int(steps), fixed_step=float(fixed_step), seq=self._seq, epoch=epoch))
        self._pump()
        return True

    def _pump(self) -> None:
        while self._queue:
            request = self._queue[0]
            if isinstance(request, InitRequest):
                self._queue.popleft()
                self._syncs.append(self._executor.submit(self._worker.handle_init, request))
                continue
            if len(self._in_flight) >= self.max_in_flight:
                break
            self._queue.popleft()
            self._in_flight.append(self._executor.submit(self._worker.handle_step, request))
            self.dispatched += 1

    def _collect_syncs(self) -> None:
        while self._syncs and self._syncs[0].done():
            exc = self._syncs.popleft().exception()
            if exc is not None:
                self.failures += 1
                log.error("[worker] state sync failed: %s", exc, exc_info=exc)

    def poll(self) -> list[StepResponse]:
        """Collect finished batches in submission order and dispatch queued ones."""
        responses: list[StepResponse] = []
        if self.disposed:
            return responses
        self._collect_syncs()
        while self._in_flight and self._in_flight[0].done():
            future = self._in_flight.popleft()
            exc = future.exception()
            if exc is not None:
                self.failures += 1
                log.error("[worker] physics batch failed: %s", exc, exc_info=exc)
            else:
                responses.append(future.result())
            self._pump()
            self._collect_syncs()
        return responses

    def drain(self, timeout: float | None = None) -> list[StepResponse]:
        """Block until every queued sync and batch has finished."""
        responses: list[StepResponse] = []
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.disposed and (self.busy or self._syncs):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if self._in_flight:
                wait([self._in_flight[0]], timeout=remaining)
            elif self._syncs:
                wait([self._syncs[0]], timeout=remaining)
            responses.extend(self.poll())
            if deadline is not None and time.monotonic() >= deadline:
                break
        return responses

    def dispose(self) -> None:
        if self.disposed:
            return
        self.disposed = True
        self._queue.clear()
        self._in_flight.clear()
        self._syncs.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        log.debug("[worker] channel disposed")
