# quadtree.py

import numpy as np
from collections import namedtuple
import logging
import numba

from particle import Particle

logger = logging.getLogger("particle_life")

# Columns of node_points: first slot, last slot, number of slots in the node's list.
HEAD, TAIL, COUNT = 0, 1, 2


class BoundingBox(namedtuple('BoundingBox', ['x', 'y', 'width', 'height'])):
    """Axis-aligned rectangle. Both edges are inclusive."""
    __slots__ = ()

    def __new__(cls, x, y, width, height):
        if width < 0 or height < 0:
            raise ValueError(f"BoundingBox size must be non-negative, got {width}x{height}")
        return super().__new__(cls, float(x), float(y), float(width), float(height))

    def contains(self, px, py):
        return self.x <= px <= self.x + self.width and self.y <= py <= self.y + self.height

    def intersects(self, other):
        return not (other.x > self.x + self.width or other.x + other.width < self.x or
                    other.y > self.y + self.height or other.y + other.height < self.y)

    def corners(self):
        return self.x, self.y, self.x + self.width, self.y + self.height


# --- JIT-Compiled Tree Kernels ---
# The tree lives in the arrays packed by QuadTree.state(). Node bounds are kept
# as corners (x0, y0, x1, y1) so that children reuse the parent's exact edges.

@numba.jit(nopython=True)
def _box_contains(x0, y0, x1, y1, px, py):
    return x0 <= px and px <= x1 and y0 <= py and py <= y1


@numba.jit(nopython=True)
def _boxes_overlap(ax0, ay0, ax1, ay1, bx0, by0, bx1, by1):
    return not (bx0 > ax1 or bx1 < ax0 or by0 > ay1 or by1 < ay0)


@numba.jit(nopython=True)
def _child_for_point(node_idx, px, py, node_bounds, node_children):
    """First child (NW, NE, SW, SE) whose bounds contain the point, or -1."""
    for k in range(4):
        child = node_children[node_idx, k]
        if _box_contains(node_bounds[child, 0], node_bounds[child, 1],
                         node_bounds[child, 2], node_bounds[child, 3], px, py):
            return child
    return -1


@numba.jit(nopython=True)
def _append_point(node_idx, slot, node_points, point_next):
    point_next[slot] = -1
    if node_points[node_idx, HEAD] == -1:
        node_points[node_idx, HEAD] = slot
    else:
        point_next[node_points[node_idx, TAIL]] = slot
    node_points[node_idx, TAIL] = slot
    node_points[node_idx, COUNT] += 1


@numba.jit(nopython=True)
def _set_node(child, x0, y0, x1, y1, depth, node_bounds, node_children, node_divided, node_points, node_depth):
    node_bounds[child, 0] = x0
    node_bounds[child, 1] = y0
    node_bounds[child, 2] = x1
    node_bounds[child, 3] = y1
    for k in range(4):
        node_children[child, k] = -1
    node_divided[child] = False
    node_points[child, HEAD] = -1
    node_points[child, TAIL] = -1
    node_points[child, COUNT] = 0
    node_depth[child] = depth


@numba.jit(nopython=True)
def subdivide_jit(state, node_idx):
    """
    Splits a node into four quadrants taken from the node pool and pushes its
    points down into them. Children share the parent's corners and centre, so
    they tile the parent with no gap and no overlap.
    """
    (node_bounds, node_children, node_divided, node_points, node_depth,
     point_x, point_y, point_vx, point_vy, point_radius, point_color,
     point_owner, point_next, latest_slot, counters) = state

    x0 = node_bounds[node_idx, 0]
    y0 = node_bounds[node_idx, 1]
    x1 = node_bounds[node_idx, 2]
    y1 = node_bounds[node_idx, 3]
    cx = (x0 + x1) / 2
    cy = (y0 + y1) / 2
    depth = node_depth[node_idx] + 1

    nw_idx = counters[0]
    ne_idx, sw_idx, se_idx = nw_idx + 1, nw_idx + 2, nw_idx + 3
    counters[0] = nw_idx + 4
    _set_node(nw_idx, x0, y0, cx, cy, depth, node_bounds, node_children, node_divided, node_points, node_depth)
    _set_node(ne_idx, cx, y0, x1, cy, depth, node_bounds, node_children, node_divided, node_points, node_depth)
    _set_node(sw_idx, x0, cy, cx, y1, depth, node_bounds, node_children, node_divided, node_points, node_depth)
    _set_node(se_idx, cx, cy, x1, y1, depth, node_bounds, node_children, node_divided, node_points, node_depth)
    node_children[node_idx, 0] = nw_idx
    node_children[node_idx, 1] = ne_idx
    node_children[node_idx, 2] = sw_idx
    node_children[node_idx, 3] = se_idx
    node_divided[node_idx] = True

    # Hand the node's existing points down to the new children
    slot = node_points[node_idx, HEAD]
    node_points[node_idx, HEAD] = -1
    node_points[node_idx, TAIL] = -1
    node_points[node_idx, COUNT] = 0
    while slot != -1:
        following = point_next[slot]
        child = _child_for_point(node_idx, point_x[slot], point_y[slot], node_bounds, node_children)
        if child != -1:
            _append_point(child, slot, node_points, point_next)
        slot = following


@numba.jit(nopython=True)
def _insert_slot_jit(state, slot, capacity, max_depth):
    """Places a stored point slot into the tree. Returns False if it lies outside the root."""
    (node_bounds, node_children, node_divided, node_points, node_depth,
     point_x, point_y, point_vx, point_vy, point_radius, point_color,
     point_owner, point_next, latest_slot, counters) = state
    px = point_x[slot]
    py = point_y[slot]

    if not _box_contains(node_bounds[0, 0], node_bounds[0, 1], node_bounds[0, 2], node_bounds[0, 3], px, py):
        return False

    node_idx = 0
    # Loop to avoid deep recursion stacks
    while True:
        if node_divided[node_idx]:
            node_idx = _child_for_point(node_idx, px, py, node_bounds, node_children)
            if node_idx == -1:
                return False
            continue

        pool_exhausted = counters[0] + 4 > node_bounds.shape[0]
        if node_points[node_idx, COUNT] < capacity or node_depth[node_idx] >= max_depth or pool_exhausted:
            _append_point(node_idx, slot, node_points, point_next)
            latest_slot[point_owner[slot]] = slot
            return True

        subdivide_jit(state, node_idx)


@numba.jit(nopython=True)
def insert_particle_jit(state, owner, x, y, vx, vy, radius, color, capacity, max_depth):
    """Copies a particle into the next free point slot and inserts it. False if it was not placed."""
    (node_bounds, node_children, node_divided, node_points, node_depth,
     point_x, point_y, point_vx, point_vy, point_radius, point_color,
     point_owner, point_next, latest_slot, counters) = state

    if not _box_contains(node_bounds[0, 0], node_bounds[0, 1], node_bounds[0, 2], node_bounds[0, 3], x, y):
        # An earlier copy of this particle must not outlive a rejected move
        if owner < latest_slot.shape[0]:
            latest_slot[owner] = -1
        return False
    slot = counters[1]
    if slot >= point_x.shape[0]:
        if owner < latest_slot.shape[0]:
            latest_slot[owner] = -1
        return False
    counters[1] = slot + 1
    point_x[slot] = x
    point_y[slot] = y
    point_vx[slot] = vx
    point_vy[slot] = vy
    point_radius[slot] = radius
    point_color[slot] = color
    point_owner[slot] = owner
    point_next[slot] = -1
    return _insert_slot_jit(state, slot, capacity, max_depth)


@numba.jit(nopython=True)
def build_tree_jit(state, positions, velocities, radii, colors, capacity, max_depth):
    """Inserts every particle of the store. Returns how many fell outside the root."""
    dropped = 0
    for i in range(positions.shape[0]):
        if not insert_particle_jit(state, i, positions[i, 0], positions[i, 1], velocities[i, 0],
                                   velocities[i, 1], radii[i], colors[i], capacity, max_depth):
            dropped += 1
    return dropped


@numba.jit(nopython=True)
def query_jit(state, rx0, ry0, rx1, ry1, stack, found):
    """
    Collects the slots of all current points inside the inclusive range into
    `found`, visiting only nodes that overlap it. Superseded copies of a
    re-inserted particle are skipped. Returns the number of slots written.
    """
    (node_bounds, node_children, node_divided, node_points, node_depth,
     point_x, point_y, point_vx, point_vy, point_radius, point_color,
     point_owner, point_next, latest_slot, counters) = state

    count = 0
    stack[0] = 0
    top = 1
    while top > 0:
        top -= 1
        node_idx = stack[top]
        if not _boxes_overlap(node_bounds[node_idx, 0], node_bounds[node_idx, 1],
                              node_bounds[node_idx, 2], node_bounds[node_idx, 3], rx0, ry0, rx1, ry1):
            continue
        if node_divided[node_idx]:
            # Pushed in reverse so NW is visited first
            for k in range(3, -1, -1):
                stack[top] = node_children[node_idx, k]
                top += 1
            continue
        slot = node_points[node_idx, HEAD]
        while slot != -1:
            if latest_slot[point_owner[slot]] == slot and _box_contains(rx0, ry0, rx1, ry1, point_x[slot], point_y[slot]):
                found[count] = slot
                count += 1
            slot = point_next[slot]
    return count


def _grown(array, size, fill):
    """Returns `array` extended along its first axis to `size` rows, new rows set to `fill`."""
    if array.shape[0] >= size:
        return array
    grown = np.full((size,) + array.shape[1:], fill, dtype=array.dtype)
    grown[:array.shape[0]] = array
    return grown


class QuadTree:
    """
    Region quadtree over copies of particles, stored as a pool of nodes in
    NumPy arrays so that the insert/query kernels can run under Numba.

    Data Contract:
    - Inputs:
        - boundary (BoundingBox): Root territory. Must enclose the simulation domain.
        - capacity (int): Points a leaf holds before it subdivides (>= 1).
        - max_depth (int): Depth at which leaves stop subdividing (>= 1).
        - max_particles (int): Initial pool size hint.
    - Invariants:
        - A node holds points only while it is not divided.
        - The four children of a divided node tile it exactly (NW, NE, SW, SE).
        - Points are copies; the tree never references the particle store.
        - Re-inserting a particle index supersedes its previous copy.
    """
    def __init__(self, boundary: BoundingBox, capacity: int = 4, max_depth: int = 16, max_particles: int = 0):
        if capacity < 1:
            raise ValueError(f"QuadTree capacity must be at least 1, got {capacity}")
        if max_depth < 1:
            raise ValueError(f"QuadTree max_depth must be at least 1, got {max_depth}")
        self.boundary = boundary
        self.capacity = int(capacity)
        self.max_depth = int(max_depth)

        self.node_bounds = np.zeros((0, 4), dtype=np.float64)
        self.node_children = np.full((0, 4), -1, dtype=np.int32)
        self.node_divided = np.zeros(0, dtype=np.bool_)
        self.node_points = np.full((0, 3), -1, dtype=np.int32)
        self.node_depth = np.zeros(0, dtype=np.int32)

        self.point_x = np.zeros(0, dtype=np.float64)
        self.point_y = np.zeros(0, dtype=np.float64)
        self.point_vx = np.zeros(0, dtype=np.float64)
        self.point_vy = np.zeros(0, dtype=np.float64)
        self.point_radius = np.zeros(0, dtype=np.float64)
        self.point_color = np.zeros(0, dtype=np.int32)
        self.point_owner = np.zeros(0, dtype=np.int32)
        self.point_next = np.full(0, -1, dtype=np.int32)
        self.latest_slot = np.full(0, -1, dtype=np.int32)

        self.counters = np.zeros(2, dtype=np.int64)  # [active nodes, stored points]
        self.stack = np.zeros(4 * (self.max_depth + 2), dtype=np.int32)
        self.found = np.zeros(0, dtype=np.int32)

        self.reserve(max(max_particles, 1), max(max_particles, 1))
        self.clear()

    @property
    def num_nodes(self):
        return int(self.counters[0])

    @property
    def num_points(self):
        return int(self.counters[1])

    def _max_nodes_for(self, num_points):
        # A split needs capacity + 1 points inside its node, and nodes at one
        # depth are disjoint, so each depth level splits at most
        # num_points / (capacity + 1) times.
        splits_per_level = -(-num_points // (self.capacity + 1))
        return 1 + 4 * self.max_depth * splits_per_level

    def _reserve_nodes(self, max_nodes):
        if max_nodes > self.node_bounds.shape[0]:
            self.node_bounds = _grown(self.node_bounds, max_nodes, 0.0)
            self.node_children = _grown(self.node_children, max_nodes, -1)
            self.node_divided = _grown(self.node_divided, max_nodes, False)
            self.node_points = _grown(self.node_points, max_nodes, -1)
            self.node_depth = _grown(self.node_depth, max_nodes, 0)

    def reserve(self, num_points: int, num_owners: int):
        """Ensure the pools can hold `num_points` copies of up to `num_owners` particle indices."""
        if num_points > self.point_x.shape[0]:
            size = max(num_points, 2 * self.point_x.shape[0])
            self.point_x = _grown(self.point_x, size, 0.0)
            self.point_y = _grown(self.point_y, size, 0.0)
            self.point_vx = _grown(self.point_vx, size, 0.0)
            self.point_vy = _grown(self.point_vy, size, 0.0)
            self.point_radius = _grown(self.point_radius, size, 0.0)
            self.point_color = _grown(self.point_color, size, 0)
            self.point_owner = _grown(self.point_owner, size, 0)
            self.point_next = _grown(self.point_next, size, -1)
            self.found = np.zeros(size, dtype=np.int32)
            self._reserve_nodes(self._max_nodes_for(size))
            logger.debug(f"QuadTree pools grown to {size} points and {self.node_bounds.shape[0]} nodes.")

        if num_owners > self.latest_slot.shape[0]:
            self.latest_slot = _grown(self.latest_slot, max(num_owners, 2 * self.latest_slot.shape[0]), -1)

    def state(self):
        """The tree arrays packed in the order the Numba kernels unpack them."""
        return (
            self.node_bounds, self.node_children, self.node_divided, self.node_points, self.node_depth,
            self.point_x, self.point_y, self.point_vx, self.point_vy, self.point_radius,
            self.point_color, self.point_owner, self.point_next, self.latest_slot, self.counters,
        )

    def clear(self):
        """Drops every node and point, leaving a single empty undivided root."""
        self.counters[0] = 1
        self.counters[1] = 0
        self.node_bounds[0] = self.boundary.corners()
        self.node_children[0] = -1
        self.node_divided[0] = False
        self.node_points[0] = (-1, -1, 0)
        self.node_depth[0] = 0
        self.latest_slot.fill(-1)

    def build(self, positions: np.ndarray, velocities: np.ndarray, radii: np.ndarray, colors: np.ndarray):
        """Clears the tree and inserts every particle. Returns the number dropped as out of bounds."""
        num_particles = len(positions)
        # Room for a second copy of every particle for same-frame re-insertion.
        self.reserve(2 * num_particles, num_particles)
        self.clear()
        if num_particles == 0:
            return 0
        return build_tree_jit(self.state(), positions, velocities, radii, colors, self.capacity, self.max_depth)

    def insert(self, particle: Particle, index: int) -> bool:
        """Inserts a copy of `particle` under `index`. Returns False if it lies outside the root."""
        self.reserve(self.num_points + 1, index + 1)
        x, y = particle.position
        vx, vy = particle.velocity
        return bool(insert_particle_jit(self.state(), index, float(x), float(y), float(vx), float(vy),
                                        float(particle.radius or 0.0), int(particle.color), self.capacity, self.max_depth))

    def subdivide(self, node_idx: int = 0):
        if node_idx >= self.num_nodes:
            raise IndexError(f"Node {node_idx} does not exist")
        if self.node_divided[node_idx]:
            raise RuntimeError(f"Node {node_idx} is already divided")
        if self.node_depth[node_idx] >= self.max_depth:
            raise RuntimeError(f"Node {node_idx} is at the maximum depth {self.max_depth}")
        self._reserve_nodes(self.num_nodes + 4)
        subdivide_jit(self.state(), node_idx)

    def _query_slots(self, range_box: BoundingBox):
        x0, y0, x1, y1 = range_box.corners()
        count = query_jit(self.state(), x0, y0, x1, y1, self.stack, self.found)
        return self.found[:count].copy()

    def query_indices(self, range_box: BoundingBox) -> np.ndarray:
        """Particle indices of every current point inside `range_box`."""
        return self.point_owner[self._query_slots(range_box)]

    def query(self, range_box: BoundingBox):
        """Copies of every current point inside `range_box`."""
        return [
            Particle(
                position=np.array([self.point_x[s], self.point_y[s]]),
                velocity=np.array([self.point_vx[s], self.point_vy[s]]),
                color=int(self.point_color[s]),
                radius=float(self.point_radius[s]),
            )
            for s in self._query_slots(range_box)
        ]

    def is_divided(self, node_idx: int = 0) -> bool:
        return bool(self.node_divided[node_idx])

    def point_count(self, node_idx: int = 0) -> int:
        """Raw points held directly by a node (0 once divided)."""
        return int(self.node_points[node_idx, COUNT])

    def node_boundary(self, node_idx: int = 0) -> BoundingBox:
        x0, y0, x1, y1 = self.node_bounds[node_idx]
        return BoundingBox(x0, y0, x1 - x0, y1 - y0)

    def children(self, node_idx: int = 0):
        """Child handles in NW, NE, SW, SE order, or an empty list for a leaf."""
        if not self.node_divided[node_idx]:
            return []
        return [int(c) for c in self.node_children[node_idx]]

    def node_boundaries(self):
        """Boundaries of every active node, for a debug overlay."""
        return [self.node_boundary(i) for i in range(self.num_nodes)]
