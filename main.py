# main.py

import pygame
import constants
import json
import logging
import logger_setup
import numpy as np
from particle_system import ParticleSystem, start_clock

# Get the application's dedicated logger
logger = logging.getLogger("particle_life")


def draw_frame(screen, trail_surface, particle_system, show_quadtree):
    """Paints one frame: fading trail, optional quadtree overlay, then the particles."""
    trail_surface.fill(constants.TRAIL_EFFECT_COLOR)
    screen.blit(trail_surface, (0, 0))

    if show_quadtree:
        for box in particle_system.get_node_boundaries():
            pygame.draw.rect(screen, constants.QUADTREE_OVERLAY_COLOR,
                             pygame.Rect(int(box.x), int(box.y), int(box.width), int(box.height)), 1)

    for x, y, radius, color in particle_system.get_draw_data():
        pygame.draw.circle(screen, color, (int(x), int(y)), max(1, int(radius)))

    pygame.display.flip()


def run_simulation_loop(particle_system, screen, clock):
    """
    The main loop. pygame's clock is the frame provider: each tick yields
    control until the next frame and reports the elapsed milliseconds.
    """
    trail_surface = pygame.Surface(screen.get_size(), pygame.SRCALPHA)
    sim_clock = start_clock()
    running = True
    paused = False
    show_quadtree = False

    while running:
        # Event handling
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                running = False
            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_ESCAPE:
                    running = False
                elif event.key == pygame.K_r:
                    particle_system.reset()
                    sim_clock = start_clock()
                elif event.key == pygame.K_q:
                    show_quadtree = not show_quadtree
                elif event.key == pygame.K_SPACE:
                    paused = not paused
                    logger.info("Simulation paused." if paused else "Simulation resumed.")

        elapsed = clock.tick(constants.FPS) / 1000

        # --- Physics & Logic Update ---
        if not paused:
            sim_clock = particle_system.step(sim_clock, elapsed)

        # --- Drawing ---
        draw_frame(screen, trail_surface, particle_system, show_quadtree)

    logger.info(f"Loop stopped after {sim_clock.frame_index} frames "
                f"({sim_clock.sim_time:.2f}s simulated).")


def main():
    """
    Main function to initialize and run the particle simulation.
    """
    # --- Setup ---
    logger_setup.setup_logging()

    with open('config.json', 'r') as f:
        config = json.load(f)
    sim_config = config['simulation']

    logger.info("Application starting...")
    logger.info(f"Loaded configuration: {config}")

    # Initialize the master random number generator (RNG)
    rng = np.random.default_rng(config['master_seed'])
    logger.info(f"Master RNG initialized with seed: {config['master_seed']}")

    # --- Initialization ---
    pygame.init()
    screen = pygame.display.set_mode((constants.WIDTH, constants.HEIGHT))
    pygame.display.set_caption(constants.TITLE)
    clock = pygame.time.Clock()

    particle_system = ParticleSystem(
        config=sim_config,
        rng=rng,
        bounds=screen.get_size()
    )

    run_simulation_loop(particle_system, screen, clock)

    logger.info("Application shutting down.")
    pygame.quit()


if __name__ == "__main__":
    main()
