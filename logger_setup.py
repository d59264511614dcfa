# logger_setup.py

import logging
import os
import json

def setup_logging(config_path='config.json', runs_dir='runs'):
    """
    Configures the "particle_life" logger for one simulation run.

    The run id and the logging level/format come from the JSON config. Records
    go to the console and to <runs_dir>/<run_id>/simulation.log. The logger does
    not propagate, so Numba compilation chatter and pygame's own output stay out
    of the run log. Calling this again (a new run, a test) replaces the
    handlers of the previous call instead of stacking them.

    Data Contract:
    - Inputs:
        - config_path (str) - JSON file with 'run_id' and a 'logging' dict
          holding 'level' and 'format'.
        - runs_dir (str) - Parent directory of the per-run log directories.
    - Outputs: logging.Logger - the configured "particle_life" logger.
    - Side Effects: creates the run directory and opens its log file.
    """
    with open(config_path, 'r') as f:
        config = json.load(f)

    run_id = config['run_id']
    log_settings = config['logging']

    logger = logging.getLogger("particle_life")
    logger.setLevel(log_settings['level'])
    logger.propagate = False

    run_dir = os.path.join(runs_dir, run_id)
    os.makedirs(run_dir, exist_ok=True)
    log_path = os.path.join(run_dir, 'simulation.log')

    formatter = logging.Formatter(log_settings['format'])
    run_file = logging.FileHandler(log_path)
    console = logging.StreamHandler()
    for handler in (run_file, console):
        handler.setFormatter(formatter)

    # Handlers of a previous run still hold its log file open
    for old in list(logger.handlers):
        old.close()
        logger.removeHandler(old)
    logger.addHandler(run_file)
    logger.addHandler(console)

    logger.info(f"Logging to {log_path} for run '{run_id}'.")
    return logger
