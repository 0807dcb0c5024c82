"""
Power injection: 1 kg/(m²·s) of air pushed into a water saturated column.

Run with `python scenarios/power_injection.py [config.yaml] [--restart-time T]`.
VTK files and restart files are written to the configured output directory.
"""

import argparse
import logging
import sys

import numpy as np

import porousflow
from porousflow.problems import PowerInjectionProblem, power_injection_grid

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("power_injection")

np.set_printoptions(precision=6)
porousflow.use_64bit_precision()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("config", nargs="?", help="YAML run configuration")
    parser.add_argument("--end-time", type=float, default=porousflow.Time(seconds=100))
    parser.add_argument("--initial-time-step-size", type=float, default=1e-3)
    parser.add_argument("--restart-time", type=float, default=None)
    args = parser.parse_args(argv)

    if args.config is not None:
        config = porousflow.load_config(args.config)
    else:
        config = porousflow.Config(
            max_time_step_size=porousflow.Time(seconds=10),
            min_time_step_size=1e-6,
            max_time_step_divisions=10,
            output_directory="scenarios/output/power_injection",
        )

    grid = power_injection_grid()
    problem = PowerInjectionProblem(grid=grid, config=config)
    model = porousflow.ImmiscibleModel(
        wetting_phase=porousflow.SimpleH2O(), nonwetting_phase=porousflow.Air()
    )
    simulator = porousflow.Simulator(
        problem=problem,
        model=model,
        end_time=args.end_time,
        initial_time_step_size=args.initial_time_step_size,
        restart_time=args.restart_time,
    )
    try:
        simulator.run()
    except porousflow.ConvergenceError as exc:
        logger.error(f"Simulation aborted: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
