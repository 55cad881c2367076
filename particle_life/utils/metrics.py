"""
Per-phase timings published at a fixed interval.

``MetricsTracker`` collects the latest value for every phase on each frame and
copies them into ``published`` once per ``interval_ms``; displays read only
the published snapshot so numbers do not flicker every frame.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields, replace

log = logging.getLogger("particle_life")


@dataclass(slots=True)
class PhaseMetrics:
    spatial_rebuild_ms: float = 0.0
    force_solve_ms: float = 0.0
    integration_ms: float = 0.0
    render_ms: float = 0.0
    update_ms: float = 0.0
    fps: int = 0
    steps: int = 0
    active_particles: int = 0
    backlog_events: int = 0
    worker_failures: int = 0

    def as_dict(self) -> dict[str, float | int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class MetricsTracker:
    def __init__(self, interval_ms: float = 1000.0) -> None:
        self.interval_ms = max(1.0, float(interval_ms))
        self.current = PhaseMetrics()
        self.published = PhaseMetrics()
        self.publish_count = 0
        self._last_publish_ms: float | None = None
        self._frame_count = 0
        self._frame_time_ms = 0.0

    def record(self, **values: float | int) -> None:
        for name, value in values.items():
            setattr(self.current, name, value)

    def add(self, name: str, amount: int = 1) -> None:
        setattr(self.current, name, getattr(self.current, name) + amount)

    def frame(self, raw_delta_ms: float) -> None:
        """Count one frame; FPS is refreshed every second of accumulated frame time."""
        self._frame_count += 1
        self._frame_time_ms += max(0.0, float(raw_delta_ms))
        if self._frame_time_ms >= 1000.0:
            self.current.fps = round(self._frame_count * 1000.0 / self._frame_time_ms)
            self._frame_count = 0
            self._frame_time_ms = 0.0

    def maybe_publish(self, now_ms: float) -> bool:
        if self._last_publish_ms is None:
            self._last_publish_ms = now_ms
            return False
        if now_ms - self._last_publish_ms < self.interval_ms:
            return False
        self.published = replace(self.current)
        self._last_publish_ms = now_ms
        self.publish_count += 1
        m = self.published
        log.debug(
            "[metrics] fps=%d update=%.2fms render=%.2fms quadtree=%.2fms forces=%.2fms integrate=%.2fms",
            m.fps,
            m.update_ms,
            m.render_ms,
            m.spatial_rebuild_ms,
            m.force_solve_ms,
            m.integration_ms,
        )
        return True

    def reset(self) -> None:
        self.current = PhaseMetrics()
        self.published = PhaseMetrics()
        self._last_publish_ms = None
        self._frame_count = 0
        self._frame_time_ms = 0.0
