# integrator.py

"""
Kinematics policies that advance a single particle by one time step.

- decay_wrap: frame-rate independent exponential velocity decay, with the
  domain wrapping around on every axis.
- gravity_bounce: constant downward gravity with walls, ceiling and a floor
  that reflect the velocity scaled by the restitution coefficient.
"""

import numba

KINEMATICS_DECAY_WRAP = 0
KINEMATICS_GRAVITY_BOUNCE = 1

KINEMATICS_POLICIES = {
    "decay_wrap": KINEMATICS_DECAY_WRAP,
    "gravity_bounce": KINEMATICS_GRAVITY_BOUNCE,
}


def decay_factor(dt: float, half_life: float) -> float:
    """Velocity retained after dt: 0.5 ** (dt / half_life)."""
    return 0.5 ** (dt / half_life)


@numba.jit(nopython=True)
def wrap_coordinate(value, radius, extent):
    """
    Folds a centre coordinate back into [radius, extent - radius]. Only steps
    longer than the band itself need this after the edge teleport.
    """
    low = radius
    high = extent - radius
    if value < low or value > high:
        return low + (value - low) % (high - low)
    return value


@numba.jit(nopython=True)
def teleport_coordinate(value, velocity, dt, radius, extent):
    """
    Moves a coordinate whose next position would leave [radius, extent - radius]
    to the opposite edge, tested before the velocity is applied.
    """
    predicted = value + velocity * dt
    if predicted > extent - radius:
        return radius
    if predicted < radius:
        return extent - radius
    return value


@numba.jit(nopython=True)
def step_decay_wrap(x, y, vx, vy, ax, ay, dt, decay, radius, width, height):
    """
    Returns the new (x, y, vx, vy). A particle about to cross an edge is
    moved to the opposite edge first and then advanced, all in one step.
    """
    vx = vx * decay + ax * dt
    vy = vy * decay + ay * dt
    x = teleport_coordinate(x, vx, dt, radius, width)
    y = teleport_coordinate(y, vy, dt, radius, height)
    x = wrap_coordinate(x + vx * dt, radius, width)
    y = wrap_coordinate(y + vy * dt, radius, height)
    return x, y, vx, vy


@numba.jit(nopython=True)
def step_gravity_bounce(x, y, vx, vy, ax, ay, dt, gravity, restitution, rest_speed, radius, width, height):
    """
    Returns the new (x, y, vx, vy). y grows downwards, so the floor is at
    `height`. Vertical speed left after a floor bounce below `rest_speed` is
    zeroed so a resting particle does not bounce forever.
    """
    vx += ax * dt
    vy += ay * dt
    x += vx * dt
    y += vy * dt + 0.5 * gravity * dt * dt
    vy += gravity * dt

    # Left / right walls. Only velocity heading into a wall is reflected.
    if x - radius < 0:
        x = radius
        if vx < 0:
            vx = -vx * restitution
    elif x + radius > width:
        x = width - radius
        if vx > 0:
            vx = -vx * restitution

    # Ceiling / floor
    if y - radius < 0:
        y = radius
        if vy < 0:
            vy = -vy * restitution
    elif y + radius >= height:
        y = height - radius
        if vy > 0:
            vy = -vy * restitution
        if abs(vy) < rest_speed:
            vy = 0.0
    return x, y, vx, vy
