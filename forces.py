# forces.py

"""
Pairwise interaction rules evaluated against a particle's neighbourhood.

Neighbours are given as slots into the point arrays of a QuadTree (or any
arrays laid out the same way). A neighbour is skipped when its owner index is
the particle itself, never by comparing coordinates.
"""

import numpy as np
import numba

from constants import REPULSION_CORE, ACCELERATION_GAIN, MIN_DISTANCE


@numba.jit(nopython=True)
def force_kernel(r, attraction_factor):
    """
    Piecewise force at normalized distance r (distance / interaction radius).
    Universal repulsion below the core, a triangular attraction bump scaled by
    the colour-pair factor up to r = 1, nothing beyond.
    """
    if r < REPULSION_CORE:
        return r / REPULSION_CORE - 1.0
    elif r < 1.0:
        return (1.0 - abs(2.0 * r - REPULSION_CORE - 1.0) / (1.0 - REPULSION_CORE)) * attraction_factor
    return 0.0


@numba.jit(nopython=True)
def get_force(r, color_a, color_b, matrix):
    return force_kernel(r, matrix[color_a, color_b])


@numba.jit(nopython=True)
def accumulate_force(i, x, y, color, found, count, point_x, point_y, point_color, point_owner,
                     matrix, interaction_radius):
    """
    Sums unit(self -> neighbour) * force over the first `count` slots of
    `found` and returns the resulting acceleration (ax, ay).
    """
    fx = 0.0
    fy = 0.0
    for k in range(count):
        slot = found[k]
        if point_owner[slot] == i:
            continue
        dx = point_x[slot] - x
        dy = point_y[slot] - y
        distance = np.sqrt(dx * dx + dy * dy)
        if distance < MIN_DISTANCE:
            continue
        f = get_force(distance / interaction_radius, color, point_color[slot], matrix)
        fx += dx / distance * f
        fy += dy / distance * f
    gain = ACCELERATION_GAIN * interaction_radius
    return fx * gain, fy * gain


@numba.jit(nopython=True)
def collision_response(i, x, y, vx, vy, radius, found, count, point_x, point_y, point_vx, point_vy,
                       point_radius, point_owner, restitution):
    """
    Resolves overlaps between particle i and its neighbours from i's side only.
    Mass is taken as radius squared. Returns the position correction and the
    velocity change (dx, dy, dvx, dvy) for particle i.
    """
    corr_x = 0.0
    corr_y = 0.0
    dvx = 0.0
    dvy = 0.0
    m_i = radius * radius
    for k in range(count):
        slot = found[k]
        if point_owner[slot] == i:
            continue
        diff_x = point_x[slot] - x
        diff_y = point_y[slot] - y
        distance = np.sqrt(diff_x * diff_x + diff_y * diff_y)
        min_distance = radius + point_radius[slot]
        if distance >= min_distance or distance < MIN_DISTANCE:
            continue

        m_j = point_radius[slot] * point_radius[slot]
        share = m_j / (m_i + m_j) if m_i + m_j > 0 else 0.5
        nx = diff_x / distance
        ny = diff_y / distance

        # 1. Resolve overlap, i takes its mass-weighted share of the push
        overlap = min_distance - distance
        corr_x -= share * overlap * nx
        corr_y -= share * overlap * ny

        # 2. Inelastic response, only while the pair is approaching
        v_rel_dot_normal = (point_vx[slot] - vx) * nx + (point_vy[slot] - vy) * ny
        if v_rel_dot_normal < 0:
            impulse = (1.0 + restitution) * share * v_rel_dot_normal
            dvx += impulse * nx
            dvy += impulse * ny
    return corr_x, corr_y, dvx, dvy
