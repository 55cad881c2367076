"""
Quadtree spatial index for neighbour queries.

The tree is rebuilt from scratch every physics step. Nodes live in an arena
of parallel lists indexed by node id, so ``clear()`` only resets the arena
length and keeps the allocated lists around for the next rebuild.

A node is either a leaf holding up to ``capacity`` points or an internal node
with exactly four children stored at consecutive ids in the order NW, NE, SW,
SE (y grows downward). Rectangles are half-open (``x <= px < x + w``), so a
point on a midline belongs to the east/south child and never to two.

Constants:
    DEFAULT_CAPACITY: points per leaf before it splits
    DEFAULT_MAX_DEPTH: leaves at this depth accept any number of points

Example:
    >>> tree = Quadtree(Rect(0.0, 0.0, 100.0, 100.0))
    >>> tree.insert(QuadPoint(0, 10.0, 10.0))
    True
    >>> [p.index for p in tree.query(Circle(12.0, 10.0, 5.0))]
    [0]
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Iterable, Protocol

DEFAULT_CAPACITY = 8
DEFAULT_MAX_DEPTH = 8
NO_CHILD = -1
NEAREST_START_RADIUS = 10.0


@dataclass(slots=True)
class QuadPoint:
    index: int
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class Rect:
    x: float
    y: float
    width: float
    height: float

    @property
    def bounds(self) -> "Rect":
        return self

    def contains(self, point: QuadPoint) -> bool:
        return self.x <= point.x < self.x + self.width and self.y <= point.y < self.y + self.height

    def intersects(self, other: "Rect") -> bool:
        return not (
            other.x > self.x + self.width
            or other.x + other.width < self.x
            or other.y > self.y + self.height
            or other.y + other.height < self.y
        )


@dataclass(frozen=True, slots=True)
class Circle:
    x: float
    y: float
    radius: float

    @property
    def bounds(self) -> Rect:
        r = self.radius
        return Rect(self.x - r, self.y - r, 2.0 * r, 2.0 * r)

    def contains(self, point: QuadPoint) -> bool:
        dx = point.x - self.x
        dy = point.y - self.y
        return dx * dx + dy * dy <= self.radius * self.radius


class Region(Protocol):
    @property
    def bounds(self) -> Rect: ...

    def contains(self, point: QuadPoint) -> bool: ...


class Quadtree:
    def __init__(
        self,
        bounds: Rect,
        *,
        capacity: int = DEFAULT_CAPACITY,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.bounds = bounds
        self.capacity = int(capacity)
        self.max_depth = max(0, int(max_depth))

        # Node arena: parallel lists, live prefix is [0, node_count).
        self._nx: list[float] = []
        self._ny: list[float] = []
        self._nw: list[float] = []
        self._nh: list[float] = []
        self._depth: list[int] = []
        self._child: list[int] = []
        self._points: list[list[QuadPoint]] = []
        self.node_count = 0

        self._size = 0
        self.deepest = 0
        self.insert_count = 0
        self.query_count = 0
        self.rebuild_count = 0
        self.last_rebuild_ms: float | None = None
        self.clear()

    def _alloc(self, x: float, y: float, w: float, h: float, depth: int) -> int:
        node = self.node_count
        if node < len(self._nx):
            self._nx[node] = x
            self._ny[node] = y
            self._nw[node] = w
            self._nh[node] = h
            self._depth[node] = depth
            self._child[node] = NO_CHILD
            self._points[node].clear()
        else:
            self._nx.append(x)
            self._ny.append(y)
            self._nw.append(w)
            self._nh.append(h)
            self._depth.append(depth)
            self._child.append(NO_CHILD)
            self._points.append([])
        self.node_count += 1
        return node

    def clear(self) -> None:
        self.node_count = 0
        self._size = 0
        self.deepest = 0
        b = self.bounds
        self._alloc(b.x, b.y, b.width, b.height, 0)

    def set_bounds(self, bounds: Rect) -> None:
        self.bounds = bounds
        self.clear()

    def _quadrant(self, node: int, x: float, y: float) -> int:
        east = 1 if x >= self._nx[node] + self._nw[node] * 0.5 else 0
        south = 2 if y >= self._ny[node] + self._nh[node] * 0.5 else 0
        return east + south

    def _subdivide(self, node: int) -> None:
        x = self._nx[node]
        y = self._ny[node]
        hw = self._nw[node] * 0.5
        hh = self._nh[node] * 0.5
        depth = self._depth[node] + 1
        first = self._alloc(x, y, hw, hh, depth)
        self._alloc(x + hw, y, hw, hh, depth)
        self._alloc(x, y + hh, hw, hh, depth)
        self._alloc(x + hw, y + hh, hw, hh, depth)
        self._child[node] = first
        if depth > self.deepest:
            self.deepest = depth

        bucket = self._points[node]
        moved = list(bucket)
        bucket.clear()
        for p in moved:
            self._points[first + self._quadrant(node, p.x, p.y)].append(p)

    def insert(self, point: QuadPoint) -> bool:
        if not self.bounds.contains(point):
            return False
        node = 0
        while True:
            child = self._child[node]
            if child != NO_CHILD:
                node = child + self._quadrant(node, point.x, point.y)
                continue
            bucket = self._points[node]
            if len(bucket) < self.capacity or self._depth[node] >= self.max_depth:
                bucket.append(point)
                self._size += 1
                self.insert_count += 1
                return True
            self._subdivide(node)

    def insert_all(self, points: Iterable[QuadPoint]) -> int:
        inserted = 0
        for p in points:
            if self.insert(p):
                inserted += 1
        return inserted

    def rebuild(self, points: Iterable[QuadPoint]) -> int:
        t0 = time.perf_counter()
        self.clear()
        inserted = self.insert_all(points)
        self.rebuild_count += 1
        self.last_rebuild_ms = (time.perf_counter() - t0) * 1000.0
        return inserted

    def query(self, region: Region) -> list[QuadPoint]:
        self.query_count += 1
        found: list[QuadPoint] = []
        if self._size == 0:
            return found
        rb = region.bounds
        rx0 = rb.x
        ry0 = rb.y
        rx1 = rb.x + rb.width
        ry1 = rb.y + rb.height
        nx = self._nx
        ny = self._ny
        nw = self._nw
        nh = self._nh
        child = self._child
        stack = [0]
        while stack:
            node = stack.pop()
            x = nx[node]
            y = ny[node]
            if rx0 > x + nw[node] or rx1 < x or ry0 > y + nh[node] or ry1 < y:
                continue
            first = child[node]
            if first != NO_CHILD:
                stack.extend((first, first + 1, first + 2, first + 3))
                continue
            for p in self._points[node]:
                if region.contains(p):
                    found.append(p)
        return found

    def query_circle(self, x: float, y: float, radius: float) -> list[QuadPoint]:
        return self.query(Circle(x, y, radius))

    def find_nearest_neighbors(
        self,
        x: float,
        y: float,
        k: int,
        *,
        max_distance: float = math.inf,
    ) -> list[QuadPoint]:
        """
        Return up to ``k`` points closest to ``(x, y)``, nearest first.

        The search radius starts small and doubles until enough points are
        found, ``max_distance`` is reached, or the whole tree is covered.
        """
        if k <= 0 or self._size == 0:
            return []
        b = self.bounds
        cover = math.hypot(b.width, b.height) + math.hypot(x - b.x, y - b.y)
        limit = min(max_distance, cover)
        radius = min(NEAREST_START_RADIUS, limit)
        while True:
            found = self.query(Circle(x, y, radius))
            if len(found) >= k or radius >= limit:
                break
            radius = min(radius * 2.0, limit)
        found.sort(key=lambda p: (p.x - x) ** 2 + (p.y - y) ** 2)
        return found[:k]

    def size(self) -> int:
        return self._size

    def all_points(self) -> list[QuadPoint]:
        out: list[QuadPoint] = []
        for node in range(self.node_count):
            if self._child[node] == NO_CHILD:
                out.extend(self._points[node])
        return out

    def metrics(self) -> dict[str, float | int | None]:
        return {
            "nodes": self.node_count,
            "points": self._size,
            "depth": self.deepest,
            "inserts": self.insert_count,
            "queries": self.query_count,
            "rebuilds": self.rebuild_count,
            "last_rebuild_ms": self.last_rebuild_ms,
        }
