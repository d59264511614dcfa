# attraction.py

"""
The colour attraction matrix and the schedule that evolves it during a run.

matrix[a, b] is the signed factor by which colour `a` is drawn towards
(positive) or pushed from (negative) colour `b` inside the attraction band.
"""

import numpy as np


def random_attraction_matrix(rng: np.random.Generator, color_count: int) -> np.ndarray:
    """Uniform factors in [-1, 1], rounded to one decimal so they read cleanly in logs."""
    if color_count < 1:
        raise ValueError(f"color_count must be at least 1, got {color_count}")
    return np.round(rng.uniform(-1.0, 1.0, size=(color_count, color_count)), 1)


def scheduled_entry(frame_index: int, interval: int, color_count: int):
    """
    The (row, col) entry adjusted on `frame_index`, or None when the schedule
    does not fire. Entries are visited row by row, one per firing.
    """
    if frame_index <= 0 or frame_index % interval != 0:
        return None
    firing = frame_index // interval - 1
    cell = firing % (color_count * color_count)
    return divmod(cell, color_count)


def schedule_update(matrix: np.ndarray, frame_index: int, interval: int, delta: float) -> np.ndarray:
    """
    Returns the matrix to use on `frame_index`. Every `interval` frames one
    entry is shifted by `delta` and wrapped back into [-1, 1]. The input is
    never modified; when nothing fires it is returned as is.
    """
    if interval < 1:
        raise ValueError(f"Schedule interval must be at least 1, got {interval}")
    entry = scheduled_entry(frame_index, interval, matrix.shape[0])
    if entry is None:
        return matrix

    updated = matrix.copy()
    value = updated[entry] + delta
    # Wrap into [-1, 1] so the entry keeps cycling through attraction and repulsion
    updated[entry] = (value + 1.0) % 2.0 - 1.0 if abs(value) > 1.0 else value
    return updated
