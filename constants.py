# constants.py

"""
Application Constants

This module defines static configuration values for the application's framework
and the fixed constants of the force law and integrator.
These are not expected to change between simulation runs.

Data Contract:
- All values are immutable constants.
- Units are specified in comments where applicable.
"""

# Screen dimensions
WIDTH = 1600  # Pixels
HEIGHT = 900  # Pixels

# Framerate
FPS = 60  # Frames per second

# Window Title
TITLE = "Particle Life"

# Colour tags index into this palette. Its length caps the number of colours.
PALETTE = [
    (247, 52, 106),   # Red
    (19, 220, 213),   # Green
    (70, 48, 237),    # Blue
    (248, 209, 36),   # Yellow
    (203, 91, 204),   # Magenta
    (58, 216, 253),   # Cyan
    (249, 103, 51),   # Orange
    (8, 207, 165),    # Teal
]

# Visual Effects
TRAIL_EFFECT_COLOR = (0, 0, 0, 60)  # RGBA. Alpha controls trail length (lower = longer).
QUADTREE_OVERLAY_COLOR = (60, 60, 60)  # Outline colour of the debug quadtree overlay.

# Force Law
REPULSION_CORE = 0.3  # Beta: normalized distance below which every pair repels.
ACCELERATION_GAIN = 2.0  # Acceleration = force * gain * interaction radius.
MIN_DISTANCE = 1e-9  # Pairs closer than this contribute nothing.

# Integrator
VELOCITY_HALF_LIFE = 0.02  # Seconds of simulated time for velocity to halve.
