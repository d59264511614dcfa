# particle_system.py

import numpy as np
import logging
import numba
from collections import namedtuple

import constants
from attraction import random_attraction_matrix, schedule_update, scheduled_entry
from forces import accumulate_force, collision_response
from integrator import (KINEMATICS_POLICIES, KINEMATICS_DECAY_WRAP, decay_factor,
                        step_decay_wrap, step_gravity_bounce)
from particle import ParticleStore
from quadtree import QuadTree, BoundingBox, query_jit, insert_particle_jit

logger = logging.getLogger("particle_life")

INTERACTION_ATTRACTION = 0
INTERACTION_COLLISION = 1

INTERACTION_RULES = {
    "attraction": INTERACTION_ATTRACTION,
    "collision": INTERACTION_COLLISION,
}
UPDATE_ORDERS = ("sequential", "simultaneous")

# Frame index and accumulated simulated time, threaded through ParticleSystem.step.
SimulationClock = namedtuple('SimulationClock', ['frame_index', 'sim_time'])


def start_clock():
    return SimulationClock(frame_index=0, sim_time=0.0)


# --- JIT-Compiled Simulation Pass ---
# One kernel walks the particles in store order. Per particle it queries the
# tree, evaluates the interaction rule and, in sequential mode, integrates the
# particle and re-inserts it at once so later particles see the new position.

@numba.jit(nopython=True)
def _interact_jit(i, positions, velocities, colors, radii, tree_state, stack, found,
                  interaction, matrix, interaction_radius, max_radius, restitution,
                  accelerations, corrections):
    x = positions[i, 0]
    y = positions[i, 1]
    if interaction == INTERACTION_ATTRACTION:
        reach = interaction_radius
    else:
        reach = radii[i] + max_radius
    count = query_jit(tree_state, x - reach, y - reach, x + reach, y + reach, stack, found)

    (node_bounds, node_children, node_divided, node_points, node_depth,
     point_x, point_y, point_vx, point_vy, point_radius, point_color,
     point_owner, point_next, latest_slot, counters) = tree_state

    if interaction == INTERACTION_ATTRACTION:
        ax, ay = accumulate_force(i, x, y, colors[i], found, count, point_x, point_y, point_color,
                                  point_owner, matrix, interaction_radius)
        accelerations[i, 0] = ax
        accelerations[i, 1] = ay
        corrections[i, :] = 0.0
    else:
        dx, dy, dvx, dvy = collision_response(i, x, y, velocities[i, 0], velocities[i, 1], radii[i],
                                              found, count, point_x, point_y, point_vx, point_vy,
                                              point_radius, point_owner, restitution)
        accelerations[i, :] = 0.0
        corrections[i, 0] = dx
        corrections[i, 1] = dy
        corrections[i, 2] = dvx
        corrections[i, 3] = dvy


@numba.jit(nopython=True)
def _advance_jit(i, positions, velocities, radii, accelerations, corrections, kinematics,
                 dt, decay, gravity, restitution, rest_speed, width, height):
    x = positions[i, 0] + corrections[i, 0]
    y = positions[i, 1] + corrections[i, 1]
    vx = velocities[i, 0] + corrections[i, 2]
    vy = velocities[i, 1] + corrections[i, 3]
    if kinematics == KINEMATICS_DECAY_WRAP:
        x, y, vx, vy = step_decay_wrap(x, y, vx, vy, accelerations[i, 0], accelerations[i, 1],
                                       dt, decay, radii[i], width, height)
    else:
        x, y, vx, vy = step_gravity_bounce(x, y, vx, vy, accelerations[i, 0], accelerations[i, 1],
                                           dt, gravity, restitution, rest_speed, radii[i], width, height)
    positions[i, 0] = x
    positions[i, 1] = y
    velocities[i, 0] = vx
    velocities[i, 1] = vy


@numba.jit(nopython=True)
def _simulation_pass_jit(positions, velocities, colors, radii, tree_state, stack, found,
                         capacity, max_depth, sequential, interaction, kinematics, matrix,
                         interaction_radius, max_radius, dt, decay, gravity, restitution,
                         rest_speed, width, height, accelerations, corrections):
    """Runs one frame over every particle. Returns how many re-insertions fell outside the tree."""
    num_particles = positions.shape[0]
    dropped = 0
    for i in range(num_particles):
        _interact_jit(i, positions, velocities, colors, radii, tree_state, stack, found,
                      interaction, matrix, interaction_radius, max_radius, restitution,
                      accelerations, corrections)
        if sequential:
            _advance_jit(i, positions, velocities, radii, accelerations, corrections, kinematics,
                         dt, decay, gravity, restitution, rest_speed, width, height)
            if not insert_particle_jit(tree_state, i, positions[i, 0], positions[i, 1], velocities[i, 0],
                                       velocities[i, 1], radii[i], colors[i], capacity, max_depth):
                dropped += 1

    if not sequential:
        for i in range(num_particles):
            _advance_jit(i, positions, velocities, radii, accelerations, corrections, kinematics,
                         dt, decay, gravity, restitution, rest_speed, width, height)
    return dropped


class ParticleSystem:
    """
    Drives the particle simulation one frame at a time.

    Data Contract:
    - Inputs:
        - config (dict): The 'simulation' section of the config file.
        - rng (np.random.Generator): The master seeded random number generator.
        - bounds (tuple): The (width, height) of the simulation area.
    - Outputs: None. This class modifies its internal state.
    - Side Effects: Owns the particle store, the attraction matrix and the QuadTree.
    - Invariants: The number of particles is constant throughout a run.
      The QuadTree only ever holds copies and is rebuilt at the start of every frame.
    """
    def __init__(self, config: dict, rng: np.random.Generator, bounds: tuple):
        self.config = config
        self.rng = rng
        self.bounds = bounds
        width, height = bounds
        if width < 0 or height < 0:
            raise ValueError(f"Domain size must be non-negative, got {width}x{height}")

        self.num_particles = config['particle_count']
        if self.num_particles < 0:
            raise ValueError(f"particle_count must be non-negative, got {self.num_particles}")
        self.color_count = config['color_count']
        if not 1 <= self.color_count <= len(constants.PALETTE):
            raise ValueError(f"color_count must be between 1 and {len(constants.PALETTE)}, got {self.color_count}")

        interaction = config.get('interaction', 'attraction')
        kinematics = config.get('kinematics', 'decay_wrap')
        self.update_order = config.get('update_order', 'sequential')
        if interaction not in INTERACTION_RULES:
            raise ValueError(f"Unknown interaction rule '{interaction}', expected one of {sorted(INTERACTION_RULES)}")
        if kinematics not in KINEMATICS_POLICIES:
            raise ValueError(f"Unknown kinematics policy '{kinematics}', expected one of {sorted(KINEMATICS_POLICIES)}")
        if self.update_order not in UPDATE_ORDERS:
            raise ValueError(f"Unknown update order '{self.update_order}', expected one of {UPDATE_ORDERS}")
        self.interaction = INTERACTION_RULES[interaction]
        self.kinematics = KINEMATICS_POLICIES[kinematics]

        self.interaction_radius = config['interaction_radius']
        self.speed = config.get('speed', 1.0)
        self.max_time_step = config.get('max_time_step', 0.05)
        self.velocity_half_life = config.get('velocity_half_life', constants.VELOCITY_HALF_LIFE)
        self.min_radius = config.get('min_radius', 2.0)
        self.max_radius = config.get('max_radius', self.min_radius)
        self.initial_speed = config.get('initial_speed', 0.0)
        self.gravity = config.get('gravity', 0.0)
        self.restitution = config.get('coefficient_of_restitution', 0.8)
        self.rest_speed = config.get('rest_speed', 1.0)
        self.log_interval = config.get('log_interval', 100)
        for name in ('interaction_radius', 'speed', 'max_time_step', 'velocity_half_life'):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.min_radius < 0 or self.max_radius < self.min_radius:
            raise ValueError(f"Invalid radius range [{self.min_radius}, {self.max_radius}]")
        if min(width, height) <= 2 * self.max_radius:
            raise ValueError(f"Domain {width}x{height} is too small for particles of radius {self.max_radius}")
        if not 0.0 <= self.restitution <= 1.0:
            raise ValueError(f"coefficient_of_restitution must be within [0, 1], got {self.restitution}")

        schedule = config.get('schedule', {})
        self.schedule_enabled = schedule.get('enabled', False)
        self.schedule_interval = schedule.get('interval', 120)
        self.schedule_delta = schedule.get('delta', 0.1)
        if self.schedule_interval < 1:
            raise ValueError(f"Schedule interval must be at least 1, got {self.schedule_interval}")

        # --- QuadTree over the whole domain, rebuilt every frame ---
        qtree_boundary = BoundingBox(x=0, y=0, width=width, height=height)
        self.qtree = QuadTree(qtree_boundary, capacity=config.get('quadtree_capacity', 4),
                              max_depth=config.get('quadtree_max_depth', 16),
                              max_particles=2 * self.num_particles)

        self.reset()

        logger.info(f"ParticleSystem created for {self.num_particles} particles "
                    f"({interaction}, {kinematics}, {self.update_order}).")
        logger.info(f"QuadTree initialized with boundary: {qtree_boundary}")

    def reset(self):
        """Restarts the run with freshly randomised particles and attraction matrix."""
        self.store = ParticleStore.random(
            self.rng, self.num_particles, self.bounds, self.color_count,
            self.min_radius, self.max_radius, self.initial_speed,
        )
        self.attraction = random_attraction_matrix(self.rng, self.color_count)
        self.accelerations = np.zeros((self.num_particles, 2), dtype=np.float64)
        self.corrections = np.zeros((self.num_particles, 4), dtype=np.float64)
        self.qtree.clear()
        logger.info(f"Simulation reset. Attraction matrix:\n{self.attraction}")

    def _advance_schedule(self, frame_index: int):
        if not self.schedule_enabled:
            return
        updated = schedule_update(self.attraction, frame_index, self.schedule_interval, self.schedule_delta)
        if updated is not self.attraction:
            row, col = scheduled_entry(frame_index, self.schedule_interval, self.color_count)
            logger.debug(f"Frame {frame_index}: attraction[{row}, {col}] "
                         f"{self.attraction[row, col]:+.2f} -> {updated[row, col]:+.2f}")
            self.attraction = updated

    def step(self, clock: SimulationClock, elapsed_time: float) -> SimulationClock:
        """
        Advances the simulation by one frame and returns the advanced clock.

        `elapsed_time` is the wall-clock time since the previous frame, as
        reported by the frame provider. It is scaled by the configured speed
        and clamped so a stalled frame cannot blow up the integration.
        """
        dt = min(elapsed_time * self.speed, self.max_time_step)

        # --- 1. Evolve the force law itself ---
        self._advance_schedule(clock.frame_index)

        # --- 2. Rebuild the spatial index from the current snapshot ---
        store = self.store
        dropped = self.qtree.build(store.positions, store.velocities, store.radii, store.colors)

        # --- 3. Interact, integrate and re-insert, particle by particle ---
        if self.num_particles > 0:
            dropped += _simulation_pass_jit(
                store.positions, store.velocities, store.colors, store.radii,
                self.qtree.state(), self.qtree.stack, self.qtree.found,
                self.qtree.capacity, self.qtree.max_depth,
                self.update_order == "sequential", self.interaction, self.kinematics, self.attraction,
                float(self.interaction_radius), float(self.max_radius), dt,
                decay_factor(dt, self.velocity_half_life), float(self.gravity), float(self.restitution),
                float(self.rest_speed), float(self.bounds[0]), float(self.bounds[1]),
                self.accelerations, self.corrections,
            )

        if dropped:
            logger.warning(f"Frame {clock.frame_index}: {dropped} particle(s) fell outside the "
                           f"QuadTree boundary and were left out of the index.")

        if clock.frame_index % self.log_interval == 0:
            logger.debug(
                f"Frame={clock.frame_index}, "
                f"dt={dt:.4f}, "
                f"Nodes={self.qtree.num_nodes}, "
                f"Kinetic={self.get_total_kinetic_energy():.2f}"
            )

        return SimulationClock(frame_index=clock.frame_index + 1, sim_time=clock.sim_time + dt)

    def get_draw_data(self):
        """Per-particle (x, y, radius, rgb) for the renderer."""
        return self.store.draw_data(constants.PALETTE)

    def get_node_boundaries(self):
        """QuadTree node boundaries of the last frame, for a debug overlay."""
        return self.qtree.node_boundaries()

    def get_total_kinetic_energy(self):
        """
        Calculates the total kinetic energy of the system, taking each
        particle's mass as its radius squared.
        KE = sum(0.5 * m * v^2)
        """
        vel_sq = np.sum(self.store.velocities ** 2, axis=1)
        return float(np.sum(0.5 * self.store.radii ** 2 * vel_sq))
