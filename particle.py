# particle.py

import logging
import numpy as np
from collections import namedtuple

logger = logging.getLogger("particle_life")

# A copy of one particle's state. The store never hands out references to its arrays.
Particle = namedtuple('Particle', ['position', 'velocity', 'color', 'radius'])


class ParticleStore:
    """
    Flat collection of particle state, held as a structure of NumPy arrays.

    Data Contract:
    - Inputs:
        - positions (ndarray, (n, 2)): Particle centres.
        - velocities (ndarray, (n, 2)): Rate of positional change per unit of simulated time.
        - colors (ndarray, (n,)): Colour tags, indices into the attraction matrix and palette.
        - radii (ndarray, (n,)): Particle radii.
    - Invariants: The number of particles is fixed; all arrays share length n.
    """
    def __init__(self, positions: np.ndarray, velocities: np.ndarray, colors: np.ndarray, radii: np.ndarray):
        self.positions = np.ascontiguousarray(positions, dtype=np.float64).reshape(-1, 2)
        self.velocities = np.ascontiguousarray(velocities, dtype=np.float64).reshape(-1, 2)
        self.colors = np.ascontiguousarray(colors, dtype=np.int32)
        self.radii = np.ascontiguousarray(radii, dtype=np.float64)

        n = len(self.positions)
        if not (len(self.velocities) == len(self.colors) == len(self.radii) == n):
            raise ValueError("Particle arrays must all have the same length")

    @classmethod
    def random(cls, rng: np.random.Generator, count: int, bounds: tuple, color_count: int,
               min_radius: float, max_radius: float, initial_speed: float = 0.0):
        """
        Places `count` particles uniformly inside `bounds`, keeping each one a
        full radius away from the edges.
        """
        width, height = bounds
        radii = rng.uniform(min_radius, max_radius, count) if max_radius > min_radius else np.full(count, float(min_radius))
        positions = np.empty((count, 2), dtype=np.float64)
        positions[:, 0] = rng.uniform(radii, width - radii)
        positions[:, 1] = rng.uniform(radii, height - radii)
        velocities = rng.uniform(-initial_speed, initial_speed, (count, 2))
        colors = rng.integers(0, color_count, count)
        logger.debug(f"Created {count} particles with {color_count} colours in a {width}x{height} domain.")
        return cls(positions, velocities, colors, radii)

    def __len__(self):
        return len(self.positions)

    def __getitem__(self, index: int) -> Particle:
        return Particle(
            position=self.positions[index].copy(),
            velocity=self.velocities[index].copy(),
            color=int(self.colors[index]),
            radius=float(self.radii[index]),
        )

    def draw_data(self, palette):
        """Per-particle (x, y, radius, rgb) tuples for a renderer."""
        return [
            (float(x), float(y), float(r), palette[c])
            for (x, y), r, c in zip(self.positions, self.radii, self.colors)
        ]
